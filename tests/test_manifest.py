from pathlib import Path

from src.main import (
    ChartParams,
    build_chart_state,
    build_manifest_dict,
    build_run_identity,
    utc_timestamp_seconds,
)
from src.records import (
    ALL_COLUMNS,
    Dataset,
    FilterResult,
    ParseParams,
    SourceResult,
    UploadBatch,
    ingest_batch,
)
from src.utils import canonical_json_hash, sanitize_for_json


def _build_test_batch():
    """One good source with two kept rows out of three, one failed source."""
    records = tuple(
        dict(zip(ALL_COLUMNS, [str(i), "40", "50", "2023-01-01", "45", "60", "2023-06-01"]))
        for i in range(2)
    )
    diag = FilterResult(label="parse a.csv")
    diag.original_rows, diag.filtered_rows = 3, 2
    return UploadBatch(
        sources=(
            SourceResult(name="a.csv", records=records, diagnostics=diag),
            SourceResult(name="b.csv", error="Error reading CSV source b.csv"),
        )
    )


def test_build_manifest_dict():
    """Test manifest generation for one upload batch."""
    batch = _build_test_batch()
    state = build_chart_state(ingest_batch(Dataset(), batch))
    effective_params = {"parse": {"chunksize": 10000}}
    hashes = ("testhash", "fulltesthash")
    artifact_paths = ["output/20250101T000000/lhp_chart.svg"]

    manifest = build_manifest_dict(
        ["/test/path/a.csv", "/test/path/b.csv"],
        state,
        batch,
        effective_params,
        hashes,
        artifact_paths,
    )

    assert manifest["version"] == "1"
    assert "timestamp_utc" in manifest
    assert manifest["absolute_input_paths"] == ["/test/path/a.csv", "/test/path/b.csv"]
    assert manifest["entity_count"] == 2
    assert manifest["sources"] == [
        {"name": "a.csv", "rows_read": 3, "rows_kept": 2, "error": None},
        {"name": "b.csv", "rows_read": 0, "rows_kept": 0, "error": "Error reading CSV source b.csv"},
    ]
    assert manifest["axes"]["x"] == {"domain": [40, 100], "ticks": [40, 52, 64, 76, 88, 100]}
    assert manifest["axes"]["y"]["ticks"] == [0, 20, 40, 60, 80, 100]
    assert manifest["effective_parameters"] == effective_params
    assert manifest["full_hash"] == "fulltesthash"
    assert manifest["short_hash"] == "testhash"
    assert manifest["artifacts"]["svg"] == artifact_paths


def test_run_identity_is_deterministic_and_param_sensitive(tmp_path: Path):
    sources = [tmp_path / "a.csv"]
    first = build_run_identity(sources, ParseParams(), ChartParams())
    again = build_run_identity(sources, ParseParams(), ChartParams())
    changed = build_run_identity(sources, ParseParams(chunksize=500), ChartParams())
    assert first[1:3] == again[1:3]
    assert first[1] != changed[1]
    assert len(first[1]) == 8
    assert first[0] == [(tmp_path / "a.csv").resolve().as_posix()]


def test_sanitize_for_json():
    payload = sanitize_for_json(
        {"nan": float("nan"), "params": ParseParams(), "path": Path("x.csv"), "t": (1, 2)}
    )
    assert payload["nan"] is None
    assert payload["params"]["chunksize"] == 10000
    assert payload["path"].endswith("/x.csv")
    assert payload["t"] == [1, 2]
    short, full = canonical_json_hash(payload)
    assert full.startswith(short)


def test_manifest_timestamp_format():
    """Test that manifest timestamp is in correct format."""
    timestamp = utc_timestamp_seconds()
    # Should be ISO-8601 UTC timestamp with seconds precision and Z suffix
    assert timestamp.endswith("Z")
    assert "T" in timestamp
    # Should be parseable
    import datetime

    datetime.datetime.fromisoformat(timestamp[:-1])  # Remove Z for parsing
