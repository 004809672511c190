from datetime import datetime, timezone
from typing import Any, Callable, Sequence, Tuple
from uuid import uuid4

from records import Note, Record
from schema_detect import FieldSchema


# -----------------------------
# Record annotations
# -----------------------------
# Every function returns a new tuple; untouched entries are shared, the
# touched one is a fresh copy. Unknown ids leave the collection unchanged.

def _replace_record(
    records: Sequence[Record],
    record_id: str,
    change: Callable[[Record], Record],
) -> Tuple[Record, ...]:
    return tuple(change(r) if r.id == record_id else r for r in records)


def set_status(records: Sequence[Record], record_id: str, status: str) -> Tuple[Record, ...]:
    return _replace_record(records, record_id, lambda r: r.model_copy(update={"status": status}))


def add_note(
    records: Sequence[Record],
    record_id: str,
    text: str,
    *,
    now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
) -> Tuple[Record, ...]:
    if not text or not text.strip():
        return tuple(records)

    def _append(r: Record) -> Record:
        note = Note(id=uuid4().hex, text=text, timestamp=now())
        return r.model_copy(update={"notes": r.notes + (note,)})

    return _replace_record(records, record_id, _append)


def add_tag(records: Sequence[Record], record_id: str, tag: str) -> Tuple[Record, ...]:
    tag = (tag or "").strip()
    if not tag:
        return tuple(records)

    def _add(r: Record) -> Record:
        if tag in r.tags:
            return r
        return r.model_copy(update={"tags": r.tags + (tag,)})

    return _replace_record(records, record_id, _add)


def remove_tag(records: Sequence[Record], record_id: str, tag: str) -> Tuple[Record, ...]:
    def _remove(r: Record) -> Record:
        if tag not in r.tags:
            return r
        return r.model_copy(update={"tags": tuple(t for t in r.tags if t != tag)})

    return _replace_record(records, record_id, _remove)


# -----------------------------
# Schema overrides
# -----------------------------
def _update_field(schema: Sequence[FieldSchema], name: str, **changes: Any) -> Tuple[FieldSchema, ...]:
    return tuple(f.model_copy(update=changes) if f.name == name else f for f in schema)


def set_column_visibility(schema: Sequence[FieldSchema], name: str, visible: bool) -> Tuple[FieldSchema, ...]:
    return _update_field(schema, name, visible=bool(visible))


def set_column_primary(schema: Sequence[FieldSchema], name: str, primary: bool) -> Tuple[FieldSchema, ...]:
    return _update_field(schema, name, primary=bool(primary))
