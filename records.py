"""
Canonical candidate records.

A Record wraps one raw row: the original key/value pairs stay untouched in
`data`, while identity and annotations (status, notes, tags) live beside
them so a raw column called "id" or "status" never collides with ours.
"""

from datetime import datetime
from typing import Any, Dict, List, Mapping, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

from schema_detect import CARD_DETAIL_FIELDS, FieldSchema, primary_fields
from type_inference import is_empty_value


# -----------------------------
# Status catalogue
# -----------------------------
STATUS_HIRED = "hired"
STATUS_NOT_HIRED = "not-hired"
STATUS_CONSIDERATION = "consideration"
STATUS_PENDING = "pending"

DEFAULT_STATUS = STATUS_PENDING

STATUSES: List[Dict[str, str]] = [
    {"label": "Hired", "value": STATUS_HIRED},
    {"label": "Not Hired", "value": STATUS_NOT_HIRED},
    {"label": "Consideration", "value": STATUS_CONSIDERATION},
    {"label": "Pending", "value": STATUS_PENDING},
]

STATUS_VALUES = tuple(s["value"] for s in STATUSES)

RECORD_ID_PREFIX = "record-"
UNNAMED_TITLE = "Unnamed Candidate"


class Note(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    timestamp: datetime


class Record(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    data: Dict[str, Any] = Field(default_factory=dict)
    status: str = DEFAULT_STATUS
    notes: Tuple[Note, ...] = ()
    tags: Tuple[str, ...] = ()

    def get(self, column: str, default: Any = None) -> Any:
        return self.data.get(column, default)


def record_id(index: int) -> str:
    return f"{RECORD_ID_PREFIX}{index + 1}"


def normalize_records(rows: Sequence[Any]) -> List[Record]:
    """
    Wrap raw rows into Records numbered record-1, record-2, ...

    Rows that are not mappings become empty records; nothing here raises
    for a single malformed row.
    """
    out: List[Record] = []
    for i, row in enumerate(rows):
        base = dict(row) if isinstance(row, Mapping) else {}
        out.append(Record(
            id=record_id(i),
            data={str(k): v for k, v in base.items()},
        ))
    return out


def summary_card(record: Record, schema: Sequence[FieldSchema]) -> Dict[str, Any]:
    """Condensed view: first primary field as title, the next few as details."""
    fields = primary_fields(schema)

    title = UNNAMED_TITLE
    if fields:
        v = record.get(fields[0].name)
        if not is_empty_value(v):
            title = str(v)

    details = [
        {"name": f.name, "type": f.type, "value": record.get(f.name)}
        for f in fields[1:1 + CARD_DETAIL_FIELDS]
    ]

    return {
        "id": record.id,
        "title": title,
        "status": record.status,
        "tags": list(record.tags),
        "fields": details,
    }
