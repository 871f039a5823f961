"""
Record parsing and merging for uploaded scan CSVs.

Parsing is lazy: each source is read in chunks and every chunk is filtered by
the completeness predicate before a row is yielded. Merging is append-only:
an upload batch is concatenated in source order and appended to the existing
Dataset, producing a new Dataset value.
"""

import itertools
import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, replace
from typing import Dict, Iterable, Iterator, Mapping, Optional, Sequence, Tuple

import pandas as pd

try:
    from .csv_processor import (
        CSVProcessingError,
        CSVSourceReader,
        SourceLike,
        source_name,
    )
except ImportError:
    from csv_processor import (  # type: ignore
        CSVProcessingError,
        CSVSourceReader,
        SourceLike,
        source_name,
    )

logger = logging.getLogger(__name__)

# Input columns (exact header names)
COL_ID = "ID"
COL_HABIT_FIRST = "Habit Index1"
COL_TRUST_FIRST = "Trust NPS 1"
COL_CREATED_FIRST = "Created At1"
COL_HABIT_LATEST = "Habit Index2"
COL_TRUST_LATEST = "Trust NPS 2"
COL_CREATED_LATEST = "Created At2"

ALL_COLUMNS: Tuple[str, ...] = (
    COL_ID,
    COL_HABIT_FIRST,
    COL_TRUST_FIRST,
    COL_CREATED_FIRST,
    COL_HABIT_LATEST,
    COL_TRUST_LATEST,
    COL_CREATED_LATEST,
)
# A row is kept only when the ID and all six scan fields are non-empty
REQUIRED_COLUMNS: Tuple[str, ...] = ALL_COLUMNS

RawRecord = Dict[str, str]


class FilterResult:
    """Container for row-filter results and diagnostics of one parse."""

    def __init__(self, label: Optional[str] = None) -> None:
        self.label: Optional[str] = label

        # Row counters
        self.original_rows: int = 0
        self.filtered_rows: int = 0
        self.excluded_rows: int = 0

        # Diagnostics
        self.warnings: list[str] = []
        self.metrics: dict[str, int | float | str] = {}
        self.skipped_reason: Optional[str] = None

        # Timing
        self.started_at: Optional[float] = None
        self.finished_at: Optional[float] = None
        self.elapsed_ms: Optional[float] = None

    def start(self) -> None:
        self.started_at = time.perf_counter()

    def stop(self) -> None:
        self.finished_at = time.perf_counter()
        if self.started_at is not None:
            self.elapsed_ms = (self.finished_at - self.started_at) * 1000.0

    def add_warning(self, message: str) -> None:
        """Add a warning message."""
        self.warnings.append(message)
        logger.warning(message)

    def add_metric(self, name: str, value: int | float | str) -> None:
        """Attach a named metric."""
        self.metrics[name] = value

    def set_skipped(self, reason: str) -> None:
        """Mark the step as skipped with a reason."""
        self.skipped_reason = reason

    def summarize(self) -> str:
        """Produce a concise summary string for diagnostics."""
        lbl = f"{self.label} " if self.label else ""
        parts = [f"{lbl}result: {self.original_rows} → {self.filtered_rows}"]
        if self.excluded_rows:
            parts.append(f"excluded_rows={self.excluded_rows}")
        if self.skipped_reason:
            parts.append(f"skipped={self.skipped_reason}")
        if self.elapsed_ms is not None:
            parts.append(f"elapsed_ms={self.elapsed_ms:.1f}")
        if self.metrics:
            parts.append(f"metrics={self.metrics}")
        return " | ".join(parts)


@dataclass(frozen=True)
class ParseParams:
    """
    Parameters for parsing one uploaded source.

    Attributes:
        chunksize: Rows read per chunk.
        encoding: Encoding for path sources.
        verbose: Log a FilterResult summary per source.
    """

    chunksize: int = 10000
    encoding: str = "utf-8-sig"
    verbose: bool = False


def is_complete(
    record: Mapping[str, object], required: Sequence[str] = REQUIRED_COLUMNS
) -> bool:
    """True when every required field is present and a non-empty string."""
    return all(
        isinstance(record.get(col), str) and record.get(col) != "" for col in required
    )


def completeness_mask(chunk: pd.DataFrame, required: Sequence[str]) -> pd.Series:
    """Vectorized is_complete over a string-typed chunk."""
    if any(col not in chunk.columns for col in required):
        return pd.Series(False, index=chunk.index)
    mask = pd.Series(True, index=chunk.index)
    for col in required:
        # Short rows leave NaN in trailing cells even with NA detection off
        mask &= chunk[col].notna() & chunk[col].ne("")
    return mask


def parse_records(
    source: SourceLike,
    params: Optional[ParseParams] = None,
    result: Optional[FilterResult] = None,
) -> Iterator[RawRecord]:
    """
    Lazily yield the complete rows of one CSV source as RawRecord dicts.

    Incomplete rows are dropped inside each chunk and never yielded. Read
    failures surface as FileAccessError on iteration. Pass a FilterResult to
    collect row counts; it is finalized once the iterator is exhausted.
    """
    params = params or ParseParams()
    required = REQUIRED_COLUMNS
    if result is None:
        result = FilterResult(label=f"parse {source_name(source)}")
    result.start()

    reader = CSVSourceReader(
        source, chunksize=params.chunksize, encoding=params.encoding
    )
    warned_missing = False
    with reader:
        for chunk in reader.iter_chunks():
            missing = [col for col in required if col not in chunk.columns]
            if missing and not warned_missing:
                result.add_warning(
                    f"Source {reader.name} lacks required columns {missing}; no rows kept"
                )
                warned_missing = True
            mask = completeness_mask(chunk, required)
            kept = chunk.loc[mask].fillna("")
            result.original_rows += len(chunk)
            result.filtered_rows += len(kept)
            for record in kept.to_dict(orient="records"):
                yield {str(k): v for k, v in record.items()}

    result.excluded_rows = result.original_rows - result.filtered_rows
    result.add_metric("required_columns", len(required))
    result.stop()
    if params.verbose:
        logger.info(result.summarize())


@dataclass(frozen=True)
class SourceResult:
    """Fully parsed records of one source, or the reason it failed."""

    name: str
    records: Tuple[RawRecord, ...] = ()
    diagnostics: Optional[FilterResult] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class UploadBatch:
    """All sources of one upload, in the order they were supplied."""

    sources: Tuple[SourceResult, ...] = ()

    @property
    def source_names(self) -> Tuple[str, ...]:
        return tuple(s.name for s in self.sources)

    @property
    def failed_sources(self) -> Tuple[str, ...]:
        return tuple(s.name for s in self.sources if not s.ok)

    @property
    def records(self) -> Tuple[RawRecord, ...]:
        return merge_batches(s.records for s in self.sources)


@dataclass(frozen=True)
class Dataset:
    """
    Append-only snapshot of every validated record uploaded in a session.

    current_source is the first file name of the most recent upload, which is
    what the chart header shows.
    """

    records: Tuple[RawRecord, ...] = ()
    source_names: Tuple[str, ...] = ()
    current_source: Optional[str] = None

    def __len__(self) -> int:
        return len(self.records)


def merge_batches(batches: Iterable[Iterable[RawRecord]]) -> Tuple[RawRecord, ...]:
    """Concatenate per-source record sequences in source order, then row order."""
    return tuple(itertools.chain.from_iterable(batches))


def append_batch(
    dataset: Dataset,
    records: Iterable[RawRecord],
    source_names: Sequence[str] = (),
) -> Dataset:
    """Return a new Dataset with records and source names appended."""
    names = tuple(source_names)
    return replace(
        dataset,
        records=dataset.records + tuple(records),
        source_names=dataset.source_names + names,
        current_source=names[0] if names else dataset.current_source,
    )


def load_source(source: SourceLike, params: Optional[ParseParams] = None) -> SourceResult:
    """
    Parse one source to completion.

    A CSVProcessingError is contained: the result carries the error text and no
    records, so sibling sources in the same batch are unaffected.
    """
    name = source_name(source)
    diagnostics = FilterResult(label=f"parse {name}")
    try:
        records = tuple(parse_records(source, params, diagnostics))
    except CSVProcessingError as e:
        logger.warning(f"Source {name} could not be parsed and was skipped: {e}")
        diagnostics.set_skipped(str(e))
        return SourceResult(name=name, diagnostics=diagnostics, error=str(e))
    logger.debug(diagnostics.summarize())
    return SourceResult(name=name, records=records, diagnostics=diagnostics)


def load_sources(
    sources: Sequence[SourceLike],
    params: Optional[ParseParams] = None,
    max_workers: Optional[int] = None,
) -> UploadBatch:
    """
    Parse every source of an upload concurrently and join them all.

    Results are ordered by the input order of `sources`, not by completion.
    """
    if not sources:
        return UploadBatch()
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [executor.submit(load_source, src, params) for src in sources]
        wait(futures)
    results = tuple(f.result() for f in futures)
    logger.info(
        "Parsed %d source(s): %d record(s) kept, %d source(s) failed",
        len(results),
        sum(len(r.records) for r in results),
        sum(1 for r in results if not r.ok),
    )
    return UploadBatch(sources=results)


def ingest_batch(dataset: Dataset, batch: UploadBatch) -> Dataset:
    """Append a completed upload batch to the dataset."""
    return append_batch(dataset, batch.records, batch.source_names)
