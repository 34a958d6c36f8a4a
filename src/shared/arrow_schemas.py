"""Apache Arrow Schema-Definitionen für die Plugin-Grenze.

Dieses Modul definiert die dtype-Verträge der Exchange-Buffer zentral
als Arrow-Schemas. Der Marshaler baut die Kalender-Arrays über
``create_calendar_batch`` und übernimmt sie zero-copy als NumPy-Arrays.

Verwendung:
    from shared.arrow_schemas import (
        CALENDAR_SCHEMA,
        RESULT_DTYPE,
        SAMPLE_DTYPE,
        create_calendar_batch,
        get_schema_fingerprint,
    )
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Final, Sequence

import numpy as np
import pyarrow as pa

# Increment MAJOR on breaking changes (removed fields, type changes)
SCHEMA_REGISTRY_VERSION: Final[str] = "1.0.0"

# =============================================================================
# Type Mapping Reference (Host → Arrow → NumPy)
# =============================================================================
#
# Host Buffer       | Arrow Type | NumPy dtype
# ------------------|------------|------------
# sample value      | int16      | int16
# ce/year/month/day | int32      | int32
# result value      | int16      | int16
#
# =============================================================================

SAMPLE_DTYPE: Final = np.dtype(np.int16)
CALENDAR_DTYPE: Final = np.dtype(np.int32)
RESULT_DTYPE: Final = np.dtype(np.int16)

CALENDAR_FIELDS: Final[tuple[str, ...]] = ("ce", "year", "month", "day")


def get_calendar_schema() -> pa.Schema:
    """Schema für die Kalender-Felder eines Blocks.

    Arrow Schema:
        ce:    int32  - Lineare Tageszahl
        year:  int32  - Jahr
        month: int32  - Monat (1-12)
        day:   int32  - Tag (1-31)
    """
    return pa.schema(
        [pa.field(name, pa.int32(), nullable=False) for name in CALENDAR_FIELDS],
        metadata={"schema_version": SCHEMA_REGISTRY_VERSION},
    )


CALENDAR_SCHEMA: Final[pa.Schema] = get_calendar_schema()


def create_calendar_batch(
    ce: Sequence[int],
    year: Sequence[int],
    month: Sequence[int],
    day: Sequence[int],
) -> pa.RecordBatch:
    """Erstellt einen Arrow RecordBatch mit den Kalender-Feldern.

    Args:
        ce, year, month, day: Gleich lange Sequenzen von Integern

    Returns:
        RecordBatch mit CALENDAR_SCHEMA

    Raises:
        pyarrow.ArrowInvalid: Wenn Werte nicht in int32 passen
    """
    arrays = [
        pa.array(values, type=pa.int32())
        for values in (ce, year, month, day)
    ]
    return pa.RecordBatch.from_arrays(arrays, schema=CALENDAR_SCHEMA)


def calendar_columns(batch: pa.RecordBatch) -> dict[str, np.ndarray]:
    """Extrahiert die Kalender-Spalten als int32 NumPy-Arrays (zero-copy)."""
    return {
        name: batch.column(i).to_numpy(zero_copy_only=True)
        for i, name in enumerate(CALENDAR_FIELDS)
    }


def get_schema_fingerprint(schema: pa.Schema) -> str:
    """SHA-256 Fingerprint eines Schemas (Felder, Typen, Nullability)."""
    payload: list[dict[str, Any]] = [
        {"name": f.name, "type": str(f.type), "nullable": f.nullable}
        for f in schema
    ]
    raw = json.dumps(payload, sort_keys=True).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


__all__ = [
    "SCHEMA_REGISTRY_VERSION",
    "SAMPLE_DTYPE",
    "CALENDAR_DTYPE",
    "RESULT_DTYPE",
    "CALENDAR_FIELDS",
    "CALENDAR_SCHEMA",
    "get_calendar_schema",
    "create_calendar_batch",
    "calendar_columns",
    "get_schema_fingerprint",
]
