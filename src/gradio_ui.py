"""Gradio UI for the LHP report exporter.

Upload one or more CSVs, view the paired scan chart, inspect an entity to
highlight it, and download the chart as lhp_chart.svg.
"""

import logging
import os
import shutil
import traceback
from pathlib import Path
from typing import List, Optional

# Backend selection is enforced centrally in src.main at import-time.
# Do NOT set or override MPLBACKEND here.

try:
    from .main import (
        UploadSession,
        build_summary,
        export_chart_svg,
        format_uploaded_files,
    )
    from .pairing import PointRef, format_tooltip
    from .projection import Scan
    from .utils import ensure_run_dir
except ImportError:
    from main import (  # type: ignore
        UploadSession,
        build_summary,
        export_chart_svg,
        format_uploaded_files,
    )
    from pairing import PointRef, format_tooltip  # type: ignore
    from projection import Scan  # type: ignore
    from utils import ensure_run_dir  # type: ignore

import gradio as gr

logger = logging.getLogger(__name__)

RUN_ROOT = Path("output_gradio")
STATUS_UPLOADING = "Uploading your files..."
STATUS_PREPARING = "Preparing your insights..."


def _parse_optional_int(val) -> Optional[int]:
    if val is None:
        return None
    try:
        s = val.strip() if isinstance(val, str) else val
        if s == "":
            return None
        # Gradio number inputs may deliver floats
        return int(float(s))
    except (TypeError, ValueError):
        return None


def _file_paths(file_objs) -> List[str]:
    """Normalize gr.File values (paths, dicts or tempfile wrappers) into paths."""
    if file_objs is None:
        return []
    if not isinstance(file_objs, (list, tuple)):
        file_objs = [file_objs]
    paths: List[str] = []
    for obj in file_objs:
        if isinstance(obj, str):
            paths.append(obj)
        elif isinstance(obj, dict):
            path = obj.get("path") or obj.get("name") or obj.get("tmp_path")
            if path:
                paths.append(path)
        elif getattr(obj, "name", None):
            paths.append(obj.name)
    return paths


def _prune_old_runs(run_root: Path, keep: Optional[int] = None) -> None:
    """
    Keep only the newest `keep` run directories under `run_root`.

    keep defaults to LHP_GRADIO_RETENTION_KEEP (10); 0 or less disables pruning.
    Timestamp-named directories (YYYYmmddTHHMMSS...) are ordered by name,
    anything else by mtime. Symlinks and paths resolving outside run_root are
    never deleted.
    """
    if keep is None:
        try:
            keep = int(os.getenv("LHP_GRADIO_RETENTION_KEEP", "10"))
        except ValueError:
            keep = 10
    if keep <= 0:
        logger.debug(f"retention keep <=0 ({keep}) -> skipping prune")
        return
    if not run_root.is_dir():
        return

    subdirs = [p for p in run_root.iterdir() if p.is_dir()]

    def _looks_like_run_ts(name: str) -> bool:
        return (
            len(name) >= 15
            and name[0:8].isdigit()
            and name[8] == "T"
            and name[9:15].isdigit()
        )

    if subdirs and all(_looks_like_run_ts(p.name) for p in subdirs):
        subdirs.sort(key=lambda p: p.name, reverse=True)
    else:
        subdirs.sort(key=lambda p: p.stat().st_mtime, reverse=True)

    root_resolved = run_root.resolve()
    for d in subdirs[keep:]:
        if d.is_symlink():
            logger.warning(f"Skipping symlink during prune: {d}")
            continue
        if os.path.commonpath([str(root_resolved), str(d.resolve())]) != str(
            root_resolved
        ):
            logger.warning(f"Skipping prune of {d} - resolved outside run_root")
            continue
        try:
            shutil.rmtree(d)
            logger.info(f"Pruned old run dir: {d}")
        except OSError as e:
            # A later run retries the deletion
            logger.warning(f"Failed to prune {d}: {e}")


def _render_html(session: UploadSession) -> str:
    """Render the visible snapshot into a fresh run dir and inline the SVG."""
    if len(session.dataset) == 0:
        return ""
    run_dir = ensure_run_dir(".", RUN_ROOT.as_posix())
    svg_path = export_chart_svg(session.state, run_dir)
    _prune_old_runs(RUN_ROOT)
    return f"<div>{svg_path.read_text(encoding='utf-8')}</div>"


def _view(session: UploadSession, status: str, show_files: bool):
    """(session, status, chart html, summary, file list) for the current snapshot."""
    summary = build_summary(session.dataset) if len(session.dataset) else ""
    files_text = (
        format_uploaded_files(session.dataset, show_names=show_files)
        if session.dataset.source_names
        else ""
    )
    return session, status, _render_html(session), summary, files_text


def _on_upload(file_objs, session: Optional[UploadSession], show_files: bool):
    """
    Generator handler: shows the progress states, then the chart once the
    session's reveal timer has published the merged upload.
    """
    session = session or UploadSession()
    paths = _file_paths(file_objs)
    if not paths:
        yield _view(session, "Error: No CSV file uploaded. Please upload a CSV file.", show_files)
        return

    yield session, STATUS_UPLOADING, gr.update(), gr.update(), gr.update()
    try:
        timer = session.ingest(paths)
    except Exception as e:
        logger.debug(f"_on_upload EXCEPTION: {e}\n{traceback.format_exc()}")
        yield _view(session, f"Error processing upload: {e}", show_files)
        return

    yield session, STATUS_PREPARING, gr.update(), gr.update(), gr.update()
    if timer is not None:
        timer.join()

    status = ""
    batch = session.last_batch
    if batch is not None and batch.failed_sources:
        status = "Skipped unreadable file(s): " + ", ".join(batch.failed_sources)
    yield _view(session, status, show_files)


def _on_toggle_files(session: Optional[UploadSession], show_files: bool):
    show_files = not show_files
    if session is None or not session.dataset.source_names:
        return show_files, "", gr.update(value="Show")
    return (
        show_files,
        format_uploaded_files(session.dataset, show_names=show_files),
        gr.update(value="Hide" if show_files else "Show"),
    )


def _on_inspect(session: Optional[UploadSession], index_v, scan_v: str):
    """Activate the entity of the chosen point and show its tooltip."""
    session = session or UploadSession()
    index = _parse_optional_int(index_v)
    if index is None or len(session.dataset) == 0:
        return session, "Upload data and choose a pair index to inspect.", gr.update()
    scan = Scan.LATEST if scan_v == Scan.LATEST.label else Scan.FIRST
    comparison = session.hover(PointRef(index=index, scan=scan))
    if comparison is None:
        return (
            session,
            f"No entry at index {index} (dataset has {len(session.dataset)} entries).",
            _render_html(session),
        )
    return session, format_tooltip(comparison), _render_html(session)


def _on_clear(session: Optional[UploadSession]):
    session = session or UploadSession()
    session.hover(None)
    return session, "", _render_html(session)


def _on_download(session: Optional[UploadSession]):
    if session is None or len(session.dataset) == 0:
        return None
    run_dir = ensure_run_dir(".", RUN_ROOT.as_posix())
    svg_path = export_chart_svg(session.state, run_dir)
    _prune_old_runs(RUN_ROOT)
    return str(svg_path)


def _build_ui():
    with gr.Blocks(title="LHP Report Exporter") as demo:
        gr.Markdown("### LHP Report Exporter")
        session_state = gr.State(None)
        show_files_state = gr.State(False)

        with gr.Row():
            file_input = gr.File(
                label="Drag and drop your CSV files here, or click to select",
                file_types=[".csv"],
                file_count="multiple",
            )
        status = gr.Markdown("")
        summary = gr.Markdown("")
        output_html = gr.HTML(label="LHP Chart")

        with gr.Row():
            index_input = gr.Number(label="Pair index", value=0, precision=0)
            scan_input = gr.Radio(
                label="Scan",
                choices=[Scan.FIRST.label, Scan.LATEST.label],
                value=Scan.FIRST.label,
            )
            inspect_button = gr.Button("Inspect")
            clear_button = gr.Button("Clear highlight")
        tooltip_box = gr.Textbox(label="Details", lines=10, interactive=False)

        with gr.Row():
            files_text = gr.Markdown("")
            toggle_button = gr.Button("Show", size="sm")
        download_button = gr.Button("Download")
        download_file = gr.File(label="lhp_chart.svg")

        file_input.upload(
            _on_upload,
            inputs=[file_input, session_state, show_files_state],
            outputs=[session_state, status, output_html, summary, files_text],
        )
        toggle_button.click(
            _on_toggle_files,
            inputs=[session_state, show_files_state],
            outputs=[show_files_state, files_text, toggle_button],
        )
        inspect_button.click(
            _on_inspect,
            inputs=[session_state, index_input, scan_input],
            outputs=[session_state, tooltip_box, output_html],
        )
        clear_button.click(
            _on_clear,
            inputs=[session_state],
            outputs=[session_state, tooltip_box, output_html],
        )
        download_button.click(
            _on_download, inputs=[session_state], outputs=[download_file]
        )

    return demo


if __name__ == "__main__":
    demo = _build_ui()
    demo.launch()
