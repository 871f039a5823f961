import pandas as pd

from src.pairing import HighlightTracker, PointRef, format_tooltip
from src.projection import EntityPointPair, Scan, ScanPoint


def make_pairs():
    return (
        EntityPointPair(
            id="42",
            first_scan=ScanPoint(30.0, 50.0, pd.Timestamp("2023-01-01", tz="UTC")),
            latest_scan=ScanPoint(45.0, 60.0, pd.Timestamp("2023-06-01", tz="UTC")),
        ),
        EntityPointPair(
            id="7",
            first_scan=ScanPoint(20.0, 10.0, pd.NaT),
            latest_scan=ScanPoint(25.0, 30.0, pd.Timestamp("2023-03-02", tz="UTC")),
        ),
    )


def test_resolve_pair_is_symmetric():
    tracker = HighlightTracker(pairs=make_pairs())
    for index in range(2):
        for scan in Scan:
            ref = PointRef(index, scan)
            counterpart = tracker.resolve_pair(ref)
            assert tracker.resolve_pair(PointRef(index, scan.other)) is tracker.point_at(ref)
            assert counterpart is tracker.point_at(PointRef(index, scan.other))


def test_pairing_does_not_depend_on_active_entity():
    pairs = make_pairs()
    ref = PointRef(1, Scan.FIRST)
    idle = HighlightTracker(pairs=pairs)
    other_active = idle.set_active("42")
    assert other_active.resolve_pair(ref) is idle.resolve_pair(ref) is pairs[1].latest_scan


def test_activation_replaces_previous_entity():
    tracker = HighlightTracker(pairs=make_pairs())
    tracker, _ = tracker.activate(PointRef(0, Scan.FIRST))
    assert tracker.active_id == "42"
    tracker, _ = tracker.activate(PointRef(1, Scan.LATEST))
    assert tracker.active_id == "7"
    assert tracker.is_highlighted("7")
    assert not tracker.is_highlighted("42")


def test_clear_and_idle_highlight_everything():
    tracker = HighlightTracker(pairs=make_pairs()).set_active("42")
    cleared = tracker.clear()
    assert cleared.active_id is None
    assert cleared.is_highlighted("42") and cleared.is_highlighted("7")
    # Hovering nothing also clears
    after, comparison = tracker.activate(None)
    assert after.active_id is None
    assert comparison is None


def test_tracker_is_immutable():
    tracker = HighlightTracker(pairs=make_pairs())
    activated = tracker.set_active("42")
    assert tracker.active_id is None
    assert activated.active_id == "42"
    assert activated.set_active("42") is activated


def test_out_of_range_refs_resolve_to_none():
    tracker = HighlightTracker(pairs=make_pairs()).set_active("42")
    assert tracker.resolve_pair(PointRef(5, Scan.FIRST)) is None
    assert tracker.resolve_pair(PointRef(-1, Scan.FIRST)) is None
    after, comparison = tracker.activate(PointRef(9, Scan.LATEST))
    assert comparison is None
    assert after.active_id is None


def test_comparison_deltas_from_first_scan():
    _, comparison = HighlightTracker(pairs=make_pairs()).activate(PointRef(0, Scan.FIRST))
    assert comparison.id == "42"
    assert comparison.counterpart_scan is Scan.LATEST
    assert comparison.habit_index_change == 15.0
    assert comparison.trust_nps_change == 10.0


def test_comparison_deltas_from_latest_scan_are_negated():
    _, comparison = HighlightTracker(pairs=make_pairs()).activate(PointRef(0, Scan.LATEST))
    assert comparison.habit_index_change == -15.0
    assert comparison.trust_nps_change == -10.0


def test_format_tooltip():
    tracker = HighlightTracker(pairs=make_pairs())
    text = format_tooltip(tracker.compare(PointRef(0, Scan.FIRST)))
    assert text.splitlines() == [
        "ID: 42",
        "First Scan",
        "  Habit Index: 30.00",
        "  Trust NPS: 50",
        "  Date: 1/1/2023",
        "Latest Scan",
        "  Habit Index: 45.00",
        "  Trust NPS: 60",
        "  Date: 6/1/2023",
        "Habit Index Change: 15.00",
        "Trust NPS Change: 10",
    ]


def test_format_tooltip_invalid_date():
    tracker = HighlightTracker(pairs=make_pairs())
    text = format_tooltip(tracker.compare(PointRef(1, Scan.LATEST)))
    assert "  Date: Invalid Date" in text.splitlines()
    assert text.splitlines()[1] == "Latest Scan"


def test_with_pairs_keeps_active_id():
    tracker = HighlightTracker().set_active("7")
    updated = tracker.with_pairs(make_pairs())
    assert updated.active_id == "7"
    assert len(updated.pairs) == 2
