"""
Projection of validated records into paired chart points.

Each record becomes one EntityPointPair: a first-scan point and a latest-scan
point sharing the record's ID. Values that do not parse are kept as NaN (metrics)
or NaT (dates) rather than rejected.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence, Tuple

import numpy as np
import pandas as pd

try:
    from .records import (
        COL_CREATED_FIRST,
        COL_CREATED_LATEST,
        COL_HABIT_FIRST,
        COL_HABIT_LATEST,
        COL_ID,
        COL_TRUST_FIRST,
        COL_TRUST_LATEST,
        RawRecord,
    )
except ImportError:
    from records import (  # type: ignore
        COL_CREATED_FIRST,
        COL_CREATED_LATEST,
        COL_HABIT_FIRST,
        COL_HABIT_LATEST,
        COL_ID,
        COL_TRUST_FIRST,
        COL_TRUST_LATEST,
        RawRecord,
    )

logger = logging.getLogger(__name__)

INVALID_DATE_LABEL = "Invalid Date"


class Scan(Enum):
    """Which of an entity's two measurements a point belongs to."""

    FIRST = "First Scan"
    LATEST = "Latest Scan"

    @property
    def label(self) -> str:
        return self.value

    @property
    def other(self) -> "Scan":
        return Scan.LATEST if self is Scan.FIRST else Scan.FIRST


@dataclass(frozen=True)
class ScanPoint:
    """x = Habit Index, y = Trust NPS. x/y may be NaN and date may be NaT."""

    x: float
    y: float
    date: pd.Timestamp

    @property
    def has_valid_date(self) -> bool:
        return not pd.isna(self.date)


@dataclass(frozen=True)
class EntityPointPair:
    id: str
    first_scan: ScanPoint
    latest_scan: ScanPoint

    def point(self, scan: Scan) -> ScanPoint:
        return self.first_scan if scan is Scan.FIRST else self.latest_scan


def parse_metric(values: pd.Series) -> pd.Series:
    """Float parse; anything non-numeric becomes NaN."""
    return pd.to_numeric(values, errors="coerce").astype(float)


def parse_instant(values: pd.Series) -> pd.Series:
    """
    Parse date strings to UTC instants. Unparseable or empty values become NaT.

    format="mixed" parses each value on its own so one odd row does not make
    pandas infer a format that invalidates the rest of the column.
    """
    return pd.to_datetime(values, errors="coerce", utc=True, format="mixed")


def _records_frame(records: Sequence[RawRecord]) -> pd.DataFrame:
    columns = [
        COL_ID,
        COL_HABIT_FIRST,
        COL_TRUST_FIRST,
        COL_CREATED_FIRST,
        COL_HABIT_LATEST,
        COL_TRUST_LATEST,
        COL_CREATED_LATEST,
    ]
    rows = [{col: record.get(col, "") for col in columns} for record in records]
    return pd.DataFrame(rows, columns=columns, dtype=object).fillna("")


def project_records(records: Iterable[RawRecord]) -> Tuple[EntityPointPair, ...]:
    """
    Map each validated record to one EntityPointPair, preserving order and
    duplicates. Pure: inputs are not modified.
    """
    records = list(records)
    if not records:
        return ()

    df = _records_frame(records)
    x1 = parse_metric(df[COL_HABIT_FIRST]).to_numpy()
    y1 = parse_metric(df[COL_TRUST_FIRST]).to_numpy()
    d1 = parse_instant(df[COL_CREATED_FIRST])
    x2 = parse_metric(df[COL_HABIT_LATEST]).to_numpy()
    y2 = parse_metric(df[COL_TRUST_LATEST]).to_numpy()
    d2 = parse_instant(df[COL_CREATED_LATEST])

    nan_metrics = int(np.isnan(np.concatenate([x1, y1, x2, y2])).sum())
    invalid_dates = int(d1.isna().sum() + d2.isna().sum())
    if nan_metrics or invalid_dates:
        logger.debug(
            "Projected %d record(s) with %d non-numeric metric(s) and %d invalid date(s)",
            len(records),
            nan_metrics,
            invalid_dates,
        )

    return tuple(
        EntityPointPair(
            id=str(df.at[i, COL_ID]),
            first_scan=ScanPoint(x=float(x1[i]), y=float(y1[i]), date=d1.iat[i]),
            latest_scan=ScanPoint(x=float(x2[i]), y=float(y2[i]), date=d2.iat[i]),
        )
        for i in range(len(df))
    )


def pairs_to_frame(pairs: Sequence[EntityPointPair]) -> pd.DataFrame:
    """
    Long-form frame of all points: one row per (pair, scan).

    Columns: index (position of the pair), id, scan (label), x, y, date.
    """
    rows = []
    for idx, pair in enumerate(pairs):
        for scan in Scan:
            pt = pair.point(scan)
            rows.append(
                {
                    "index": idx,
                    "id": pair.id,
                    "scan": scan.label,
                    "x": pt.x,
                    "y": pt.y,
                    "date": pt.date,
                }
            )
    return pd.DataFrame(rows, columns=["index", "id", "scan", "x", "y", "date"])


def format_date(value: pd.Timestamp) -> str:
    """Locale-style short date (M/D/YYYY), or the invalid-date label for NaT."""
    if pd.isna(value):
        return INVALID_DATE_LABEL
    return f"{value.month}/{value.day}/{value.year}"
