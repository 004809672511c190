import os
from collections import Counter
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from type_inference import (
    NUMBER,
    RATING,
    TEXT,
    infer_field_type,
    is_empty_value,
    is_serial_date,
    value_text,
)


# -----------------------------
# Detection limits
# -----------------------------
SCHEMA_SAMPLE_ROWS = int(os.getenv("SCHEMA_SAMPLE_ROWS", "10"))
MAX_OPTION_VALUES = int(os.getenv("MAX_OPTION_VALUES", "15"))
PRIMARY_FIELD_LIMIT = int(os.getenv("PRIMARY_FIELD_LIMIT", "6"))

CARD_DETAIL_FIELDS = 3

NON_PRIMARY_HINTS = ("description", "notes", "additional")


class FieldSchema(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: str = TEXT
    visible: bool = True
    primary: bool = False
    unique_value_count: int = 0
    options: Optional[List[str]] = None


def _column_keys(rows: Sequence[Any]) -> List[str]:
    first = rows[0]
    if not isinstance(first, Mapping):
        return []
    return [str(k) for k in first.keys()]


def _cell(row: Any, col: str) -> Any:
    if isinstance(row, Mapping):
        return row.get(col)
    return None


def _vote(samples: List[Any], col: str) -> str:
    """
    Majority vote over per-value guesses; ties go to the type seen first.

    Rating is a bounded refinement of number: once a sample is a plain
    number (out of the rating range), rating votes count as number votes.
    """
    tally: Counter = Counter()
    for v in samples:
        tally[infer_field_type(v, col)] += 1

    if not tally:
        return TEXT

    if tally.get(RATING) and tally.get(NUMBER):
        merged: Counter = Counter()
        for t, n in tally.items():
            merged[NUMBER if t == RATING else t] += n
        tally = merged

    # dict order == first-seen order, max() keeps the first maximum
    return max(tally, key=tally.get)


def _distinct_values(rows: Sequence[Any], col: str) -> List[str]:
    seen: Dict[str, None] = {}
    for row in rows:
        v = _cell(row, col)
        if is_empty_value(v):
            continue
        seen.setdefault(value_text(v), None)
    return list(seen)


def _is_hidden(col: str, position: int, rows: Sequence[Any]) -> bool:
    lower = col.lower()
    if "timestamp" in lower and any(is_serial_date(_cell(r, col)) for r in rows):
        return True
    if "id" in lower and position == 0:
        return True
    return False


def _is_primary(col: str, position: int) -> bool:
    lower = col.lower()
    if position >= PRIMARY_FIELD_LIMIT:
        return False
    return not any(h in lower for h in NON_PRIMARY_HINTS)


def detect_schema(rows: Sequence[Any]) -> List[FieldSchema]:
    """
    Infer one FieldSchema entry per column of `rows`.

    Columns come from the first row in key order. Types are voted over the
    first SCHEMA_SAMPLE_ROWS non-empty values; distinct counts and options
    use every row. Hidden columns (serial-encoded timestamps, a leading id
    column) are dropped from the result.
    """
    if not rows:
        return []

    out: List[FieldSchema] = []
    sample_rows = rows[:SCHEMA_SAMPLE_ROWS]

    for position, col in enumerate(_column_keys(rows)):
        if _is_hidden(col, position, rows):
            continue

        samples = [_cell(r, col) for r in sample_rows]
        samples = [v for v in samples if not is_empty_value(v)]

        distinct = _distinct_values(rows, col)
        unique_count = len(distinct)

        out.append(FieldSchema(
            name=col,
            type=_vote(samples, col),
            visible=True,
            primary=_is_primary(col, position),
            unique_value_count=unique_count,
            options=distinct if unique_count <= MAX_OPTION_VALUES else None,
        ))

    return out


def find_field(schema: Sequence[FieldSchema], name: str) -> Optional[FieldSchema]:
    for entry in schema:
        if entry.name == name:
            return entry
    return None


def primary_fields(schema: Sequence[FieldSchema]) -> List[FieldSchema]:
    return [f for f in schema if f.primary and f.visible]


def visible_fields(schema: Sequence[FieldSchema]) -> List[FieldSchema]:
    return [f for f in schema if f.visible]
