"""
Process-local session state for one candidate dataset.

The session owns a single immutable Snapshot (records, schema, filters).
Writers build a new snapshot and swap it in under one lock; readers just
take the current reference, so every read sees a consistent triple.

Ingestion is sequenced by generation tickets: the most recently started
upload wins, and a slower, older upload finishing later is discarded.
"""

import json
import logging
import threading
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple

import annotation_store as store
import filters as flt
from file_ingest import Dataset, load_dataset
from records import STATUSES, Record
from schema_detect import FieldSchema, find_field


logger = logging.getLogger("candidates.session")


class Snapshot(NamedTuple):
    records: Tuple[Record, ...] = ()
    schema: Tuple[FieldSchema, ...] = ()
    filters: Tuple[Any, ...] = ()
    generation: int = 0


class IngestOutcome(NamedTuple):
    installed: bool
    generation: int
    record_count: int
    field_count: int


class CandidateSession:
    def __init__(self):
        self._lock = threading.Lock()
        self._state = Snapshot()
        self._latest_ticket = 0

    # -----------------------------
    # Reads
    # -----------------------------
    @property
    def snapshot(self) -> Snapshot:
        return self._state

    @property
    def records(self) -> Tuple[Record, ...]:
        return self._state.records

    @property
    def schema(self) -> Tuple[FieldSchema, ...]:
        return self._state.schema

    @property
    def filters(self) -> Tuple[Any, ...]:
        return self._state.filters

    def filtered_records(self, search: Optional[str] = None, state: Optional[Snapshot] = None) -> List[Record]:
        if state is None:
            state = self._state
        view = flt.evaluate(state.records, state.filters, state.schema)
        if search:
            view = flt.search_records(view, state.schema, search)
        return view

    def get_record(self, record_id: str) -> Optional[Record]:
        for r in self._state.records:
            if r.id == record_id:
                return r
        return None

    def available_filter_columns(self) -> List[FieldSchema]:
        state = self._state
        return flt.available_filter_columns(state.schema, state.filters)

    def analytics(self) -> Dict[str, Any]:
        state = self._state
        view = self.filtered_records(state=state)
        return {
            "total": len(state.records),
            "filtered": len(view),
            "status_counts": [
                {
                    "label": s["label"],
                    "value": s["value"],
                    "count": sum(1 for r in state.records if r.status == s["value"]),
                }
                for s in STATUSES
            ],
        }

    # -----------------------------
    # Writes
    # -----------------------------
    def _swap(self, change: Callable[[Snapshot], Snapshot]) -> Snapshot:
        with self._lock:
            self._state = change(self._state)
            return self._state

    def _records(self, change: Callable[[Tuple[Record, ...]], Tuple[Record, ...]]) -> Snapshot:
        return self._swap(lambda s: s._replace(records=change(s.records)))

    def _schema(self, change: Callable[[Tuple[FieldSchema, ...]], Tuple[FieldSchema, ...]]) -> Snapshot:
        return self._swap(lambda s: s._replace(schema=change(s.schema)))

    def _filters(self, change: Callable[[Tuple[Any, ...]], Tuple[Any, ...]]) -> Snapshot:
        return self._swap(lambda s: s._replace(filters=change(s.filters)))

    def set_status(self, record_id: str, status: str) -> Snapshot:
        return self._records(lambda rs: store.set_status(rs, record_id, status))

    def add_note(self, record_id: str, text: str) -> Snapshot:
        return self._records(lambda rs: store.add_note(rs, record_id, text))

    def add_tag(self, record_id: str, tag: str) -> Snapshot:
        return self._records(lambda rs: store.add_tag(rs, record_id, tag))

    def remove_tag(self, record_id: str, tag: str) -> Snapshot:
        return self._records(lambda rs: store.remove_tag(rs, record_id, tag))

    def set_column_visibility(self, name: str, visible: bool) -> Snapshot:
        return self._schema(lambda sc: store.set_column_visibility(sc, name, visible))

    def set_column_primary(self, name: str, primary: bool) -> Snapshot:
        return self._schema(lambda sc: store.set_column_primary(sc, name, primary))

    def add_filter(self, new: Any) -> Snapshot:
        logger.debug("filter_set column=%s kind=%s", new.column, new.kind)
        return self._filters(lambda fs: flt.upsert_filter(fs, new))

    def add_filter_for(
        self,
        column: str,
        value: Any = None,
        *,
        use_default: bool = False,
        multi_select: bool = False,
    ) -> Snapshot:
        """Build a filter from the column's schema entry (or the status pseudo-column)."""
        if column == flt.STATUS_COLUMN:
            return self.add_filter(flt.make_filter(column, "", value))
        entry = find_field(self._state.schema, column)
        if entry is None:
            raise KeyError(column)
        if use_default and not multi_select:
            new = flt.default_filter(entry)
        else:
            new = flt.filter_for_field(entry, value, multi_select=multi_select)
        return self.add_filter(new)

    def update_filter(self, column: str, value: Any) -> Snapshot:
        def _update(fs: Tuple[Any, ...]) -> Tuple[Any, ...]:
            return tuple(flt.with_value(f, value) if f.column == column else f for f in fs)
        return self._filters(_update)

    def remove_filter(self, column: str) -> Snapshot:
        return self._filters(lambda fs: flt.drop_filter(fs, column))

    def clear_filters(self) -> Snapshot:
        return self._filters(lambda fs: ())

    # -----------------------------
    # Ingestion
    # -----------------------------
    def begin_ingest(self) -> int:
        with self._lock:
            self._latest_ticket += 1
            return self._latest_ticket

    def install(self, ticket: int, dataset: Dataset) -> IngestOutcome:
        """Install a parsed dataset unless a newer ingestion has started."""
        with self._lock:
            installed = ticket == self._latest_ticket
            if installed:
                self._state = Snapshot(
                    records=tuple(dataset.records),
                    schema=tuple(dataset.schema),
                    filters=self._state.filters,
                    generation=ticket,
                )

        logger.info(json.dumps({
            "event": "ingest_installed" if installed else "ingest_superseded",
            "generation": ticket,
            "records": len(dataset.records),
            "fields": len(dataset.schema),
        }))
        return IngestOutcome(
            installed=installed,
            generation=ticket,
            record_count=len(dataset.records),
            field_count=len(dataset.schema),
        )

    def ingest(self, raw_bytes: bytes, filename: Optional[str]) -> IngestOutcome:
        ticket = self.begin_ingest()
        try:
            dataset = load_dataset(raw_bytes, filename)
        except Exception as e:
            logger.warning(json.dumps({
                "event": "ingest_failed",
                "generation": ticket,
                "file": filename,
                "error_type": type(e).__name__,
                "error": str(e),
            }))
            raise
        return self.install(ticket, dataset)

