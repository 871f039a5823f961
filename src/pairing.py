"""
Active-entity tracking and first/latest point pairing for tooltips.

The tracker is an immutable value: set_active() and activate() return a new
tracker and leave the old one untouched, so the owner just keeps the latest.
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional, Tuple

try:
    from .projection import EntityPointPair, Scan, ScanPoint, format_date
except ImportError:
    from projection import EntityPointPair, Scan, ScanPoint, format_date  # type: ignore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PointRef:
    """A rendered point: position of its pair in the dataset plus which scan."""

    index: int
    scan: Scan


@dataclass(frozen=True)
class PairComparison:
    """What a tooltip shows for one hovered point."""

    id: str
    active_scan: Scan
    active: ScanPoint
    counterpart_scan: Scan
    counterpart: ScanPoint

    @property
    def habit_index_change(self) -> float:
        return self.counterpart.x - self.active.x

    @property
    def trust_nps_change(self) -> float:
        return self.counterpart.y - self.active.y


@dataclass(frozen=True)
class HighlightTracker:
    pairs: Tuple[EntityPointPair, ...] = ()
    active_id: Optional[str] = None

    def set_active(self, entity_id: Optional[str]) -> "HighlightTracker":
        """Replace the active entity (None clears it)."""
        if entity_id == self.active_id:
            return self
        logger.debug("Active entity %r -> %r", self.active_id, entity_id)
        return replace(self, active_id=entity_id)

    def clear(self) -> "HighlightTracker":
        return self.set_active(None)

    def pair_at(self, ref: PointRef) -> Optional[EntityPointPair]:
        if 0 <= ref.index < len(self.pairs):
            return self.pairs[ref.index]
        return None

    def point_at(self, ref: PointRef) -> Optional[ScanPoint]:
        pair = self.pair_at(ref)
        return pair.point(ref.scan) if pair is not None else None

    def resolve_pair(self, ref: PointRef) -> Optional[ScanPoint]:
        """
        The other point of the same pair (first <-> latest).

        Pairing is a property of the pair itself; the active entity does not
        affect the result.
        """
        pair = self.pair_at(ref)
        if pair is None:
            return None
        return pair.point(ref.scan.other)

    def compare(self, ref: PointRef) -> Optional[PairComparison]:
        pair = self.pair_at(ref)
        if pair is None:
            return None
        return PairComparison(
            id=pair.id,
            active_scan=ref.scan,
            active=pair.point(ref.scan),
            counterpart_scan=ref.scan.other,
            counterpart=pair.point(ref.scan.other),
        )

    def activate(
        self, ref: Optional[PointRef]
    ) -> Tuple["HighlightTracker", Optional[PairComparison]]:
        """
        Hover a point: its entity becomes active and the comparison is returned.
        Hovering nothing (or an unknown ref) clears the active entity.
        """
        comparison = self.compare(ref) if ref is not None else None
        if comparison is None:
            return self.clear(), None
        return self.set_active(comparison.id), comparison

    def is_highlighted(self, entity_id: str) -> bool:
        """True when nothing is active or entity_id is the active one."""
        return self.active_id is None or self.active_id == entity_id

    def with_pairs(self, pairs: Tuple[EntityPointPair, ...]) -> "HighlightTracker":
        """Tracker for a new dataset snapshot, keeping the active id."""
        return replace(self, pairs=tuple(pairs))


def _scan_block(scan: Scan, point: ScanPoint) -> list[str]:
    return [
        scan.label,
        f"  Habit Index: {point.x:.2f}",
        f"  Trust NPS: {point.y:.0f}",
        f"  Date: {format_date(point.date)}",
    ]


def format_tooltip(comparison: PairComparison) -> str:
    """Plain-text tooltip: both scans of the entity and the change between them."""
    lines = [f"ID: {comparison.id}"]
    lines += _scan_block(comparison.active_scan, comparison.active)
    lines += _scan_block(comparison.counterpart_scan, comparison.counterpart)
    lines.append(f"Habit Index Change: {comparison.habit_index_change:.2f}")
    lines.append(f"Trust NPS Change: {comparison.trust_nps_change:.0f}")
    return "\n".join(lines)
