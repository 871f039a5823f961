import json
from pathlib import Path

import pandas as pd
import pytest

from src.main import (
    _args_to_params,
    _build_cli_parser,
    _parse_point_ref,
    main,
)
from src.pairing import PointRef
from src.projection import Scan
from src.records import ALL_COLUMNS


def make_temp_csv(tmp_path: Path, name: str, rows: list[tuple]) -> Path:
    data = [
        dict(zip(ALL_COLUMNS, [i, h1, t1, "2023-01-01", h2, t2, "2023-06-01"]))
        for i, h1, t1, h2, t2 in rows
    ]
    path = tmp_path / name
    pd.DataFrame(data, columns=list(ALL_COLUMNS)).to_csv(path, index=False)
    return path


def test_args_to_params_builds_sources_and_flags(tmp_path: Path):
    parser = _build_cli_parser()
    args = parser.parse_args(
        [
            "--csv",
            str(tmp_path / "a.csv"),
            "--csv",
            str(tmp_path / "b.csv"),
            "--chunksize",
            "2",
            "--inspect",
            "1:latest",
        ]
    )
    sources, parse_params, chart_params, inspect = _args_to_params(args)
    assert [p.name for p in sources] == ["a.csv", "b.csv"]
    assert all(p.is_absolute() for p in sources)
    assert parse_params.chunksize == 2
    assert parse_params.verbose is False
    assert chart_params.first_color == "#FF6384"
    assert inspect == PointRef(1, Scan.LATEST)


def test_args_to_params_requires_csv():
    args = _build_cli_parser().parse_args([])
    with pytest.raises(ValueError):
        _args_to_params(args)


@pytest.mark.parametrize("bad", ["x:first", "1:middle", "-1:first", "3"])
def test_parse_point_ref_rejects_bad_values(bad):
    with pytest.raises(ValueError):
        _parse_point_ref(bad)


def test_main_writes_svg_manifest_and_report(tmp_path: Path, capsys):
    a = make_temp_csv(
        tmp_path,
        "a.csv",
        [("42", "30", "50", "45", "60"), ("43", "20", "10", "80", "90"), ("44", "25", "15", "", "20")],
    )
    b = make_temp_csv(tmp_path, "b.csv", [("50", "60", "70", "65", "75")])
    out_root = tmp_path / "out"

    main(["--csv", str(a), "--csv", str(b), "--output-dir", str(out_root), "--inspect", "0:first"])

    (run_dir,) = [p for p in out_root.iterdir() if p.is_dir()]
    assert (run_dir / "lhp_chart.svg").exists()
    (manifest_path,) = list(run_dir.glob("manifest-*.json"))
    manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
    assert manifest["entity_count"] == 3
    assert manifest["axes"]["x"]["ticks"] == [20, 36, 52, 68, 84, 100]
    assert [s["name"] for s in manifest["sources"]] == ["a.csv", "b.csv"]
    assert manifest["sources"][0]["rows_read"] == 3
    assert manifest["sources"][0]["rows_kept"] == 2
    assert manifest_path.name == f"manifest-{manifest['short_hash']}.json"

    points = pd.read_csv(run_dir / "lhp_points.csv", dtype={"id": str})
    assert len(points) == 6
    assert points["id"].tolist()[:2] == ["42", "42"]
    assert manifest["artifacts"]["points_csv"].endswith("lhp_points.csv")

    out = capsys.readouterr().out
    assert "Data from: a.csv • 3 entries" in out
    assert "2 file(s) uploaded" in out
    assert "Habit Index Change: 15.00" in out
    assert "Trust NPS Change: 10" in out


def test_main_user_errors_exit_2(tmp_path: Path, capsys):
    with pytest.raises(SystemExit) as exc:
        main([])
    assert exc.value.code == 2

    with pytest.raises(SystemExit) as exc:
        main(["--csv", str(tmp_path / "missing.csv"), "--output-dir", str(tmp_path / "out")])
    assert exc.value.code == 2
    assert "could be read" in capsys.readouterr().err


def test_main_inspect_out_of_range_exits_2(tmp_path: Path):
    a = make_temp_csv(tmp_path, "a.csv", [("1", "30", "50", "45", "60")])
    with pytest.raises(SystemExit) as exc:
        main(["--csv", str(a), "--output-dir", str(tmp_path / "out"), "--inspect", "5:first"])
    assert exc.value.code == 2


def test_print_defaults(capsys):
    main(["--print-defaults"])
    payload = json.loads(capsys.readouterr().out)
    assert set(payload) == {"ParseParams", "ChartParams", "SessionParams"}
    assert payload["ParseParams"]["chunksize"] == 10000
    assert payload["ChartParams"]["dimmed_alpha"] == 0.2
