from __future__ import annotations

import dataclasses
import datetime as _dt
import enum
import hashlib
import json
import logging
import time
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger(__name__)


# -------------------------
# Path utilities
# -------------------------
def normalize_abs_posix(path: str | Path) -> str:
    """
    Return an absolute POSIX-style path string for the given input.
    Ensures deterministic representation across platforms.
    """
    p = Path(path).resolve()
    return p.as_posix()


# -------------------------
# Hashing utilities
# -------------------------
def canonical_json_dumps(payload: dict[str, Any]) -> str:
    """
    Deterministic JSON string for hashing and storage:
    - separators=(',', ':')
    - sort_keys=True
    - ensure_ascii=False
    """
    return json.dumps(
        payload, ensure_ascii=False, separators=(",", ":"), sort_keys=True
    )


def canonical_json_hash(payload: dict[str, Any]) -> tuple[str, str]:
    """
    Return (short_hash8, full_hash_hex) computed over canonical JSON bytes (UTF-8).
    """
    s = canonical_json_dumps(payload)
    h = hashlib.sha256(s.encode("utf-8")).hexdigest()
    return h[:8], h


# -------------------------
# Manifest helpers
# -------------------------
def sanitize_for_json(obj: Any) -> Any:
    """
    Recursively convert parameter objects into JSON-serializable primitives.

    - Path -> normalized POSIX string
    - Enum -> .name
    - dataclass -> dict of sanitized fields
    - float NaN/inf -> None (JSON has no representation for them)
    - numpy scalars -> Python scalars via .item()
    - dict/list/tuple/set -> sanitized containers
    - datetime -> ISO-8601 string
    """
    if obj is None or isinstance(obj, (bool, int, str)):
        return obj
    if isinstance(obj, float):
        return obj if obj == obj and obj not in (float("inf"), float("-inf")) else None
    if isinstance(obj, Path):
        return normalize_abs_posix(obj)
    if isinstance(obj, _dt.datetime):
        return obj.isoformat()
    if isinstance(obj, enum.Enum):
        return obj.name
    if hasattr(obj, "item") and callable(obj.item) and not isinstance(obj, dict):
        try:
            return sanitize_for_json(obj.item())
        except (TypeError, ValueError):
            return str(obj)
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {
            f.name: sanitize_for_json(getattr(obj, f.name))
            for f in dataclasses.fields(obj)
        }
    if isinstance(obj, dict):
        return {str(k): sanitize_for_json(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [sanitize_for_json(x) for x in obj]
    return str(obj)


def build_effective_parameters(**params: Any) -> dict[str, Any]:
    """
    JSON-serializable mapping of the effective parameter objects of a run,
    keyed by the given names (e.g. parse=..., chart=...).
    """
    return {name: sanitize_for_json(value) for name, value in params.items()}


def write_manifest(path: str | Path, manifest: Dict[str, Any]) -> None:
    """
    Write manifest JSON with UTF-8 encoding and stable formatting (indent=2 for readability).
    """
    p = Path(path)
    p.write_text(json.dumps(manifest, ensure_ascii=False, indent=2), encoding="utf-8")


def utc_timestamp_seconds() -> str:
    """
    ISO-8601 UTC timestamp with seconds precision and Z suffix.
    """
    now = _dt.datetime.now(_dt.timezone.utc).replace(tzinfo=None)
    return now.isoformat(timespec="seconds") + "Z"


# -------------------------
# Run directories (shared by CLI and Gradio UI)
# -------------------------
def ensure_run_dir(base: Path | str = ".", prefix: str = "output_gradio") -> Path:
    """
    Ensure and return a per-run directory under `base`/`prefix`/<timestamp>.

    Timestamp format: time.strftime("%Y%m%dT%H%M%S", time.localtime()). When
    that directory already exists (two runs in the same second) a numeric
    suffix is added so runs never share a directory.
    """
    base_path = Path(base)
    run_ts = time.strftime("%Y%m%dT%H%M%S", time.localtime())
    run_dir = base_path / prefix / run_ts
    suffix = 1
    while run_dir.exists():
        run_dir = base_path / prefix / f"{run_ts}-{suffix:02d}"
        suffix += 1
    run_dir.mkdir(parents=True, exist_ok=True)
    logger.debug("Ensured run_dir=%s", str(run_dir))
    return run_dir
