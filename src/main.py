#!/usr/bin/env python3
"""
LHP Report Exporter - paired first/latest scan chart pipeline.

Pipeline stages (each a plain function over immutable values):
- load_sources()        uploaded CSVs -> UploadBatch (records/parse diagnostics per source)
- ingest_batch()        Dataset + UploadBatch -> new Dataset (append-only)
- build_chart_state()   Dataset -> projected pairs, axes and highlight tracker
- render_chart()        ChartState -> SVG file

UploadSession holds the latest visible ChartState for the UI and the CLI and
publishes each new upload after a short reveal delay.
"""

import logging
import os
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

# Select a non-interactive Matplotlib backend before pyplot is imported so
# rendering works in headless environments (CLI, Gradio workers, tests).
import matplotlib

matplotlib.use("Agg", force=True)
import matplotlib.pyplot as plt

try:
    # When run as a package: python -m src.main
    from .axes import ChartAxes, compute_axes
    from .csv_processor import CSVProcessingError, SourceLike
    from .pairing import HighlightTracker, PairComparison, PointRef, format_tooltip
    from .projection import EntityPointPair, Scan, pairs_to_frame, project_records
    from .records import (
        Dataset,
        ParseParams,
        UploadBatch,
        ingest_batch,
        load_sources,
    )
    from .utils import (
        build_effective_parameters,
        canonical_json_hash,
        normalize_abs_posix,
        utc_timestamp_seconds,
        write_manifest,
    )
except ImportError:
    # When run directly: python src/main.py
    from axes import ChartAxes, compute_axes  # type: ignore
    from csv_processor import CSVProcessingError, SourceLike  # type: ignore
    from pairing import (  # type: ignore
        HighlightTracker,
        PairComparison,
        PointRef,
        format_tooltip,
    )
    from projection import (  # type: ignore
        EntityPointPair,
        Scan,
        pairs_to_frame,
        project_records,
    )
    from records import (  # type: ignore
        Dataset,
        ParseParams,
        UploadBatch,
        ingest_batch,
        load_sources,
    )
    from utils import (  # type: ignore
        build_effective_parameters,
        canonical_json_hash,
        normalize_abs_posix,
        utc_timestamp_seconds,
        write_manifest,
    )

# Configure logging for debugging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

EXPORT_FILENAME = "lhp_chart.svg"
POINTS_FILENAME = "lhp_points.csv"
DEFAULT_REVEAL_DELAY_SECONDS = 2.0


@dataclass(frozen=True)
class ChartParams:
    """
    Rendering controls for the paired scatter chart.

    Colors follow the chart legend: first scans in pink, latest scans in blue,
    connecting segments in grey. Marker sizes are matplotlib `s` values
    (points squared); the active entity's markers use highlighted_marker_size.
    """

    width: float = 10.0
    height: float = 6.0
    first_color: str = "#FF6384"
    latest_color: str = "#36A2EB"
    line_color: str = "#999999"
    grid_color: str = "#E5E5E5"
    dimmed_alpha: float = 0.2
    marker_size: float = 64.0
    highlighted_marker_size: float = 100.0


@dataclass(frozen=True)
class SessionParams:
    """
    Upload session behavior.

    Attributes:
        reveal_delay_seconds: Delay between a merged upload and it becoming
            visible. 0 publishes synchronously.
        max_workers: Thread pool size for concurrent source parsing (None = executor default).
    """

    reveal_delay_seconds: float = DEFAULT_REVEAL_DELAY_SECONDS
    max_workers: Optional[int] = None


def get_default_params() -> Tuple[ParseParams, ChartParams, SessionParams]:
    """
    Policy defaults. LHP_REVEAL_DELAY_SECONDS overrides the reveal delay.
    """
    delay = DEFAULT_REVEAL_DELAY_SECONDS
    raw_delay = os.getenv("LHP_REVEAL_DELAY_SECONDS")
    if raw_delay:
        try:
            delay = max(0.0, float(raw_delay))
        except ValueError:
            logger.warning(
                f"Ignoring invalid LHP_REVEAL_DELAY_SECONDS={raw_delay!r}; using {delay}"
            )
    return ParseParams(), ChartParams(), SessionParams(reveal_delay_seconds=delay)


@dataclass(frozen=True)
class ChartState:
    """Everything the renderer reads: one consistent snapshot."""

    dataset: Dataset
    pairs: Tuple[EntityPointPair, ...]
    axes: ChartAxes
    tracker: HighlightTracker


def build_chart_state(
    dataset: Dataset, tracker: Optional[HighlightTracker] = None
) -> ChartState:
    """Project the dataset and recompute axes. The active entity is carried over."""
    pairs = project_records(dataset.records)
    axes = compute_axes(pairs)
    tracker = (tracker or HighlightTracker()).with_pairs(pairs)
    return ChartState(dataset=dataset, pairs=pairs, axes=axes, tracker=tracker)


class UploadSession:
    """
    Owner of the visible chart snapshot.

    ingest() parses and merges a batch immediately, then schedules the reveal:
    the new snapshot replaces the visible one when the timer fires. Readers
    always see either the old or the new snapshot, never a partial one.
    Every write to state/pending happens under self._lock, since the reveal
    runs on the timer thread.
    """

    def __init__(
        self,
        parse_params: Optional[ParseParams] = None,
        session_params: Optional[SessionParams] = None,
    ) -> None:
        d_parse, _, d_session = get_default_params()
        self.parse_params = parse_params or d_parse
        self.session_params = session_params or d_session
        self.state: ChartState = build_chart_state(Dataset())
        self.pending: Optional[ChartState] = None
        self.last_batch: Optional[UploadBatch] = None
        self._lock = threading.Lock()

    @property
    def dataset(self) -> Dataset:
        return self.state.dataset

    @property
    def is_preparing(self) -> bool:
        return self.pending is not None

    def ingest(self, sources: Sequence[SourceLike]) -> Optional[threading.Timer]:
        """
        Parse all sources concurrently, merge them onto the latest dataset and
        schedule publication. Returns the started reveal timer, or None when
        the snapshot was published synchronously.
        """
        batch = load_sources(
            sources, self.parse_params, max_workers=self.session_params.max_workers
        )
        with self._lock:
            base = self.pending.dataset if self.pending is not None else self.dataset
            self.last_batch = batch
            staged = build_chart_state(ingest_batch(base, batch), self.state.tracker)
            self.pending = staged

        delay = self.session_params.reveal_delay_seconds
        if delay <= 0:
            self._reveal(staged)
            return None
        timer = threading.Timer(delay, self._reveal, args=(staged,))
        timer.daemon = True
        timer.start()
        logger.debug("Reveal of %d entries scheduled in %.1fs", len(staged.pairs), delay)
        return timer

    def _reveal(self, staged: ChartState) -> None:
        with self._lock:
            # Keep whatever entity was activated while the upload was pending
            tracker = self.state.tracker.with_pairs(staged.pairs)
            self.state = replace(staged, tracker=tracker)
            if self.pending is staged:
                self.pending = None
        logger.info(
            "Dataset visible: %d entries from %d source(s)",
            len(staged.dataset),
            len(staged.dataset.source_names),
        )

    def hover(self, ref: Optional[PointRef]) -> Optional[PairComparison]:
        """Activate the entity of `ref` (None clears) and return its comparison."""
        with self._lock:
            current = self.state
            tracker = current.tracker.with_pairs(current.pairs)
            tracker, comparison = tracker.activate(ref)
            self.state = replace(current, tracker=tracker)
        return comparison


# --- Display metadata ---


def build_summary(dataset: Dataset) -> str:
    """Chart header line: latest source name and number of entries."""
    name = dataset.current_source or "-"
    return f"Data from: {name} • {len(dataset)} entries"


def format_uploaded_files(dataset: Dataset, show_names: bool = True) -> str:
    """'<k> file(s) uploaded', followed by the names when show_names is set."""
    header = f"{len(dataset.source_names)} file(s) uploaded"
    if not show_names:
        return header
    lines = [header] + [f"- {name}" for name in dataset.source_names]
    return "\n".join(lines)


# --- Rendering ---


def render_chart(
    state: ChartState,
    output_svg: str = EXPORT_FILENAME,
    chart_params: Optional[ChartParams] = None,
) -> str:
    """
    Draw the paired scatter chart for `state` and save it as SVG.

    One grey segment joins the two scans of each pair; segments of entities
    other than the active one are dimmed. NaN coordinates are left to
    matplotlib, which skips them. Returns the output path.
    """
    params = chart_params or ChartParams()
    tracker = state.tracker
    x_axis, y_axis = state.axes.x, state.axes.y

    plt.figure(figsize=(params.width, params.height))

    for pair in state.pairs:
        alpha = 1.0 if tracker.is_highlighted(pair.id) else params.dimmed_alpha
        plt.plot(
            [pair.first_scan.x, pair.latest_scan.x],
            [pair.first_scan.y, pair.latest_scan.y],
            color=params.line_color,
            linewidth=1,
            alpha=alpha,
            zorder=1,
        )

    for scan, color in ((Scan.FIRST, params.first_color), (Scan.LATEST, params.latest_color)):
        points = [pair.point(scan) for pair in state.pairs]
        sizes = [
            params.highlighted_marker_size
            if tracker.active_id is not None and tracker.active_id == pair.id
            else params.marker_size
            for pair in state.pairs
        ]
        plt.scatter(
            [pt.x for pt in points],
            [pt.y for pt in points],
            s=sizes,
            color=color,
            edgecolors="#FFFFFF",
            linewidths=2,
            label=scan.label,
            zorder=2,
        )

    ax = plt.gca()
    ax.grid(True, linestyle=(0, (3, 3)), color=params.grid_color, alpha=0.5)
    ax.set_axisbelow(True)

    # A collapsed or inverted x domain only happens for degenerate data; let
    # matplotlib autoscale instead of setting identical limits.
    if x_axis.domain[0] < x_axis.domain[1]:
        plt.xlim(left=x_axis.domain[0], right=x_axis.domain[1])
    plt.xticks(list(x_axis.ticks), fontsize=12)
    plt.ylim(bottom=y_axis.domain[0], top=y_axis.domain[1])
    plt.yticks(list(y_axis.ticks), fontsize=12)

    plt.xlabel("Habit Index", fontsize=14, color="#666666")
    plt.ylabel("Trust NPS", fontsize=14, color="#666666")
    plt.legend(
        loc="upper center",
        bbox_to_anchor=(0.5, -0.12),
        ncol=2,
        frameon=False,
    )
    plt.tight_layout()

    plt.savefig(output_svg, format="svg")
    plt.close()
    return output_svg


def export_chart_svg(
    state: ChartState,
    output_dir: str | Path,
    chart_params: Optional[ChartParams] = None,
) -> Path:
    """Write the current chart to <output_dir>/lhp_chart.svg."""
    target = Path(output_dir) / EXPORT_FILENAME
    render_chart(state, output_svg=str(target), chart_params=chart_params)
    logger.info(f"Exported chart to {target}")
    return target


# --- Run identity / manifest ---


def build_run_identity(
    sources: Sequence[str | Path],
    parse_params: ParseParams,
    chart_params: ChartParams,
) -> tuple[list[str], str, str, dict[str, Any]]:
    """
    Returns (absolute input paths, short_hash, full_hash, effective_params).
    The hash covers the inputs and every parameter that affects the chart.
    """
    abs_inputs = [normalize_abs_posix(s) for s in sources]
    effective_params = build_effective_parameters(
        parse=parse_params, chart=chart_params
    )
    short_hash, full_hash = canonical_json_hash(
        {"inputs": abs_inputs, "params": effective_params}
    )
    return abs_inputs, short_hash, full_hash, effective_params


def build_manifest_dict(
    abs_inputs: list[str],
    state: ChartState,
    batch: Optional[UploadBatch],
    effective_params: dict[str, Any],
    hashes: tuple[str, str],
    artifact_paths: list[str],
    points_path: Optional[str] = None,
) -> Dict[str, Any]:
    short_hash, full_hash = hashes
    artifacts: Dict[str, Any] = {"svg": artifact_paths}
    if points_path is not None:
        artifacts["points_csv"] = points_path
    sources = []
    if batch is not None:
        for src in batch.sources:
            diag = src.diagnostics
            sources.append(
                {
                    "name": src.name,
                    "rows_read": diag.original_rows if diag else 0,
                    "rows_kept": len(src.records),
                    "error": src.error,
                }
            )
    return {
        "version": "1",
        "timestamp_utc": utc_timestamp_seconds(),
        "absolute_input_paths": abs_inputs,
        "sources": sources,
        "entity_count": len(state.pairs),
        "axes": {
            "x": {
                "domain": list(state.axes.x.domain),
                "ticks": list(state.axes.x.ticks),
            },
            "y": {
                "domain": list(state.axes.y.domain),
                "ticks": list(state.axes.y.ticks),
            },
        },
        "effective_parameters": effective_params,
        "short_hash": short_hash,
        "full_hash": full_hash,
        "artifacts": artifacts,
    }


def assemble_text_report(
    state: ChartState,
    batch: Optional[UploadBatch] = None,
    comparison: Optional[PairComparison] = None,
) -> str:
    parts = [build_summary(state.dataset), format_uploaded_files(state.dataset)]
    if batch is not None and batch.failed_sources:
        parts.append("Unreadable file(s) skipped: " + ", ".join(batch.failed_sources))
    parts.append(
        "Habit Index axis: "
        f"{state.axes.x.domain[0]}-{state.axes.x.domain[1]} ticks {list(state.axes.x.ticks)}"
    )
    parts.append(
        "Trust NPS axis: "
        f"{state.axes.y.domain[0]}-{state.axes.y.domain[1]} ticks {list(state.axes.y.ticks)}"
    )
    if comparison is not None:
        parts.append("")
        parts.append(format_tooltip(comparison))
    return "\n".join(parts)


def _orchestrate(
    sources: List[Path],
    parse_params: ParseParams,
    chart_params: ChartParams,
    inspect: Optional[PointRef] = None,
    output_root: str | Path = "output",
) -> Path:
    """
    Run one CLI batch: ingest, optionally inspect a point, export the chart
    and the long-form points table, write the manifest and print the report.
    Returns the run directory.
    """
    global_run_timestamp = datetime.now().strftime("%Y%m%dT%H%M%S")
    run_output_dir = Path(output_root) / global_run_timestamp
    run_output_dir.mkdir(parents=True, exist_ok=True)

    abs_inputs, short_hash, full_hash, effective_params = build_run_identity(
        sources, parse_params, chart_params
    )

    # No UI transition on the command line: publish synchronously.
    session = UploadSession(parse_params, SessionParams(reveal_delay_seconds=0))
    session.ingest(sources)
    batch = session.last_batch
    if batch is not None and batch.sources and len(batch.failed_sources) == len(
        batch.sources
    ):
        raise ValueError(
            "None of the supplied CSV files could be read: "
            + ", ".join(batch.failed_sources)
        )

    comparison = None
    if inspect is not None:
        comparison = session.hover(inspect)
        if comparison is None:
            raise ValueError(
                f"--inspect index {inspect.index} out of range for {len(session.state.pairs)} entries"
            )

    svg_path = export_chart_svg(session.state, run_output_dir, chart_params)
    points_path = run_output_dir / POINTS_FILENAME
    pairs_to_frame(session.state.pairs).to_csv(points_path, index=False)

    manifest = build_manifest_dict(
        abs_inputs=abs_inputs,
        state=session.state,
        batch=batch,
        effective_params=effective_params,
        hashes=(short_hash, full_hash),
        artifact_paths=[str(svg_path)],
        points_path=str(points_path),
    )
    write_manifest(str(run_output_dir / f"manifest-{short_hash}.json"), manifest)

    print(assemble_text_report(session.state, batch, comparison))
    return run_output_dir


# --- CLI ---


def _parse_point_ref(spec: str) -> PointRef:
    """Parse 'INDEX:first' / 'INDEX:latest' into a PointRef."""
    try:
        index_s, scan_s = spec.split(":", 1)
        index = int(index_s.strip())
    except ValueError:
        raise ValueError(f"Invalid --inspect value: '{spec}'. Expected INDEX:first|latest")
    scan_key = scan_s.strip().lower()
    scans = {"first": Scan.FIRST, "latest": Scan.LATEST}
    if scan_key not in scans:
        raise ValueError(f"Invalid scan in --inspect value: '{spec}'. Use first or latest")
    if index < 0:
        raise ValueError("Invalid --inspect: index must be a non-negative integer")
    return PointRef(index=index, scan=scans[scan_key])


def _build_cli_parser():
    import argparse

    parser = argparse.ArgumentParser(
        prog="lhp-report",
        description="LHP Report Exporter (upload CSVs -> paired scan chart SVG).",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--print-defaults",
        action="store_true",
        help="Print default parameter values and exit.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Show full tracebacks for debugging (also LHP_REPORT_DEBUG=1).",
    )

    g_load = parser.add_argument_group("ParseParams")
    g_load.add_argument(
        "--csv",
        action="append",
        dest="csv_paths",
        metavar="PATH",
        help="CSV file to upload. Repeatable; all files form one upload batch.",
    )
    g_load.add_argument(
        "--chunksize",
        type=int,
        default=None,
        help="Rows read per chunk while parsing each file (default: ParseParams).",
    )
    g_load.add_argument(
        "--verbose-parsing",
        action="store_true",
        help="Log per-file row filtering diagnostics.",
    )

    g_out = parser.add_argument_group("Output")
    g_out.add_argument(
        "--output-dir",
        default="output",
        help="Root directory; each run writes into <output-dir>/<timestamp>/.",
    )
    g_out.add_argument(
        "--inspect",
        metavar="INDEX:first|latest",
        help="Activate the entity of this point and print its tooltip.",
    )
    return parser


def _args_to_params(
    args,
) -> tuple[List[Path], ParseParams, ChartParams, Optional[PointRef]]:
    """
    Merge CLI args over defaults to build parameter objects.
    """
    d_parse, d_chart, _ = get_default_params()
    if not getattr(args, "csv_paths", None):
        raise ValueError("At least one --csv PATH is required")
    sources = [Path(p).resolve() for p in args.csv_paths]
    parse_params = replace(
        d_parse,
        chunksize=args.chunksize if args.chunksize is not None else d_parse.chunksize,
        verbose=bool(args.verbose_parsing) or d_parse.verbose,
    )
    inspect = _parse_point_ref(args.inspect) if getattr(args, "inspect", None) else None
    return sources, parse_params, d_chart, inspect


def main(argv: Optional[List[str]] = None) -> None:
    """
    CLI entry point. Parses arguments, builds parameter objects, then orchestrates.
    """
    import json
    import sys

    argv = sys.argv[1:] if argv is None else argv
    parser = _build_cli_parser()
    args = parser.parse_args(argv)

    if args.print_defaults:
        d_parse, d_chart, d_session = get_default_params()
        payload = build_effective_parameters(
            ParseParams=d_parse, ChartParams=d_chart, SessionParams=d_session
        )
        print(json.dumps(payload, indent=2))
        return

    debug_mode = bool(args.debug or os.getenv("LHP_REPORT_DEBUG", "") == "1")
    if debug_mode:
        logger.setLevel(logging.DEBUG)

    try:
        sources, parse_params, chart_params, inspect = _args_to_params(args)
        _orchestrate(
            sources,
            parse_params,
            chart_params,
            inspect=inspect,
            output_root=args.output_dir,
        )
    except (FileNotFoundError, ValueError, TypeError, CSVProcessingError) as e:
        # Concise, user-facing errors for common/user-correctable problems.
        logger.info("User-facing error: %s", e)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except Exception as e:
        logger.exception("Unhandled exception during execution")
        if debug_mode:
            import traceback

            traceback.print_exc()
        else:
            print(f"Unexpected error: {e}", file=sys.stderr)
            print(
                "Run with --debug or set LHP_REPORT_DEBUG=1 to see the full traceback.",
                file=sys.stderr,
            )
        sys.exit(1)


if __name__ == "__main__":
    main()
