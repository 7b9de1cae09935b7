"""CSV trace sink module.

All trace file I/O is isolated here. A sink owns one file, which it
truncates on open and then appends to; every row is flushed as soon as it
is written so a crash loses at most the row in flight.
"""

import logging
from pathlib import Path
from typing import Any, IO, List, Optional, Sequence, Union

logger = logging.getLogger(__name__)

SEPARATOR = ","


def format_line(values: Sequence[Any]) -> str:
    """Join values into one unquoted CSV line.

    Raises:
        ValueError: If a value would break the row format
    """
    fields = [str(value) for value in values]
    for field in fields:
        if SEPARATOR in field or "\n" in field or "\r" in field:
            raise ValueError(f"Value {field!r} cannot be written without quoting")
    return SEPARATOR.join(fields) + "\n"


class CsvTraceSink:
    """Append-only CSV file with a fixed header."""

    def __init__(self, path: Union[str, Path], header: Sequence[str]) -> None:
        """Initialize the sink. No file is touched until open().

        Args:
            path: Trace file path
            header: Column names, written as the first row
        """
        self._path = Path(path)
        self._header = list(header)
        self._handle: Optional[IO[str]] = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def header(self) -> List[str]:
        return list(self._header)

    @property
    def closed(self) -> bool:
        return self._handle is None

    def open(self) -> None:
        """Truncate the file, reopen it for appending and write the header.

        Raises:
            OSError: If the file cannot be created or written
        """
        if self._handle is not None:
            raise RuntimeError(f"Trace file {self._path} is already open")

        # Truncate first so a shorter new trace never leaves stale rows
        # from a previous run behind it
        with self._path.open("w", encoding="utf-8"):
            pass
        handle = self._path.open("a", encoding="utf-8")
        try:
            handle.write(format_line(self._header))
            handle.flush()
        except Exception:
            handle.close()
            raise
        self._handle = handle

    def write(self, values: Sequence[Any]) -> None:
        """Append one row and flush it.

        Raises:
            ValueError: If the row does not match the header
            RuntimeError: If the sink is not open
        """
        if self._handle is None:
            raise RuntimeError(f"Trace file {self._path} is not open")
        if len(values) != len(self._header):
            raise ValueError(
                f"Row has {len(values)} fields, header has {len(self._header)}"
            )
        line = format_line(values)
        self._handle.write(line)
        self._handle.flush()

    def close(self) -> None:
        """Close the file. Safe to call more than once."""
        if self._handle is None:
            return
        handle, self._handle = self._handle, None
        handle.close()
        logger.debug(f"Closed trace file {self._path}")
