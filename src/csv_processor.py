#!/usr/bin/env python3
"""
CSV Source Reader
Reads uploaded scan CSV files as all-string frames in chunks, so callers can
filter rows lazily without loading a whole source into memory.
"""

import logging
from pathlib import Path
from typing import IO, Iterator, Union

import pandas as pd

logger = logging.getLogger(__name__)

SourceLike = Union[str, Path, IO[str], IO[bytes]]


class CSVProcessingError(Exception):
    """Base exception for CSV processing errors."""

    pass


class FileAccessError(CSVProcessingError):
    """Raised when a source cannot be accessed or read at all."""

    pass


class SourceNotFoundError(FileAccessError, FileNotFoundError):
    """Raised when a path source does not exist."""

    pass


def source_name(source: SourceLike) -> str:
    """Human-readable name of a source (file name for paths, .name for handles)."""
    if isinstance(source, (str, Path)):
        return Path(source).name
    name = getattr(source, "name", None)
    return Path(name).name if isinstance(name, str) else "<stream>"


class CSVSourceReader:
    """
    Reads one uploaded CSV source.

    Every cell is read as a string and pandas' NA detection is disabled, so an
    empty cell stays the empty string instead of turning into NaN. Numeric and
    date interpretation is left to the projection step.
    """

    def __init__(
        self,
        source: SourceLike,
        chunksize: int = 10000,
        encoding: str = "utf-8-sig",
    ) -> None:
        """
        Args:
            source: Path to a CSV file, or an open text/binary handle.
            chunksize: Rows per chunk when iterating.
            encoding: Text encoding for path sources. utf-8-sig strips a BOM.

        Raises:
            SourceNotFoundError: If a path source does not exist
            FileAccessError: If a path source is not a regular file
        """
        self.source = source
        self.chunksize = chunksize
        self.encoding = encoding
        self.name = source_name(source)
        if isinstance(source, (str, Path)):
            path = Path(source)
            if not path.exists():
                raise SourceNotFoundError(f"CSV file not found: {path}")
            if not path.is_file():
                raise FileAccessError(f"Path is not a file: {path}")
            if path.suffix.lower() != ".csv":
                logger.warning(f"File does not have .csv extension: {path}")
            self.source = path

    def iter_chunks(self) -> Iterator[pd.DataFrame]:
        """
        Yield the source as string-typed DataFrame chunks.

        An empty file yields nothing. Any other read failure is raised as
        FileAccessError, including failures on later chunks.
        """
        try:
            reader = pd.read_csv(
                self.source,
                dtype=str,
                keep_default_na=False,
                na_filter=False,
                chunksize=self.chunksize,
                encoding=self.encoding,
            )
        except pd.errors.EmptyDataError:
            logger.info(f"Source {self.name} is empty")
            return
        except Exception as e:
            raise FileAccessError(f"Error reading CSV source {self.name}: {e}") from e

        try:
            with reader:
                for chunk in reader:
                    yield chunk
        except pd.errors.EmptyDataError:
            return
        except Exception as e:
            raise FileAccessError(f"Error reading CSV source {self.name}: {e}") from e

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        pass
