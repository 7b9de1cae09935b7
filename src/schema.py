"""Trace schema module.

A schema is an ordered list of (name, accessor) columns. The same list
produces the header row and every data row, so they cannot drift apart.
"""

import dataclasses
import operator
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Sequence, Tuple


TIMESTAMP_COLUMN = "timestamp"


@dataclass(frozen=True)
class Column:
    """A named field and how to read it from a status snapshot."""
    name: str
    accessor: Callable[[Any], Any]


@dataclass(frozen=True)
class SampleRecord:
    """One captured sample.

    timestamp_ns is host wall-clock time in nanoseconds since the Unix
    epoch; values follow the schema's column order.
    """
    timestamp_ns: int
    values: Tuple[Any, ...]


class TraceSchema:
    """Ordered columns of a trace, led by the capture timestamp."""

    def __init__(self, columns: Sequence[Column]) -> None:
        names = [column.name for column in columns]
        if not names:
            raise ValueError("A trace schema needs at least one column")
        if TIMESTAMP_COLUMN in names:
            raise ValueError(f"Column name {TIMESTAMP_COLUMN!r} is reserved")
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate column names in schema: {names}")
        self._columns = tuple(columns)

    @classmethod
    def from_dataclass(cls, record_type: type) -> "TraceSchema":
        """Build a schema with one column per dataclass field, in order."""
        return cls([
            Column(f.name, operator.attrgetter(f.name))
            for f in dataclasses.fields(record_type)
        ])

    @property
    def columns(self) -> Tuple[Column, ...]:
        return self._columns

    @property
    def header(self) -> List[str]:
        return [TIMESTAMP_COLUMN] + [column.name for column in self._columns]

    def capture(self, status: Any) -> SampleRecord:
        """Read every column from a status snapshot and timestamp it.

        All accessors run before the record is built, so an accessor failure
        yields no record at all.
        """
        values = tuple(column.accessor(status) for column in self._columns)
        return SampleRecord(timestamp_ns=time.time_ns(), values=values)

    def format_row(self, record: SampleRecord) -> List[Any]:
        """Flatten a record into row values matching the header."""
        if len(record.values) != len(self._columns):
            raise ValueError(
                f"Record has {len(record.values)} values, schema has {len(self._columns)} columns"
            )
        return [record.timestamp_ns, *record.values]


# Header names of the board profiler's power trace, keyed to PowerInfo fields
POWER_COLUMNS = [
    ("mTimeStamp", "time_stamp"),
    ("mVInt", "vint"),
    ("mCurrent", "current"),
    ("mVAux", "vaux"),
    ("mVBram", "vbram"),
    ("m12VPex", "v12_pex"),
    ("m12VAux", "v12_aux"),
    ("mPexCurr", "pex_curr"),
    ("mAuxCurr", "aux_curr"),
    ("m3v3Pex", "v3v3_pex"),
    ("m3v3Aux", "v3v3_aux"),
    ("mDDRVppBottom", "ddr_vpp_bottom"),
    ("mDDRVppTop", "ddr_vpp_top"),
    ("mSys5v5", "sys_5v5"),
    ("m1v2Top", "v1v2_top"),
    ("m1v8Top", "v1v8_top"),
    ("m0v85", "v0v85"),
    ("mMgt0v9", "mgt_0v9"),
    ("m12vSW", "v12_sw"),
    ("mMgtVtt", "mgt_vtt"),
    ("m1v2Bottom", "v1v2_bottom"),
]

POWER_SCHEMA = TraceSchema(
    [Column(header, operator.attrgetter(field)) for header, field in POWER_COLUMNS]
)
