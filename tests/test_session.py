"""
Tests for the candidate session: snapshot swaps, ingestion sequencing,
filter persistence and analytics.
"""

import sys
import threading
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from file_ingest import IngestionError, UnsupportedFileTypeError, load_dataset
from filters import STATUS_COLUMN, NumberRangeFilter, SubstringFilter
from session import CandidateSession


CSV = b"Name,Email,Years\nAlice,alice@x.com,3\nBob,bob@y.org,10\nCarol,carol@x.com,25\n"
OTHER_CSV = b"Name,Years\nDan,4\n"


@pytest.fixture
def session():
    s = CandidateSession()
    s.ingest(CSV, "people.csv")
    return s


def _names(records):
    return [r.get("Name") for r in records]


class TestIngest:
    def test_fresh_session_is_empty(self):
        s = CandidateSession()
        assert s.records == ()
        assert s.schema == ()
        assert s.filters == ()
        assert s.filtered_records() == []

    def test_successful_ingest_installs(self):
        s = CandidateSession()
        outcome = s.ingest(CSV, "people.csv")
        assert outcome.installed is True
        assert outcome.record_count == 3
        assert outcome.field_count == 3
        assert s.snapshot.generation == outcome.generation
        assert _names(s.records) == ["Alice", "Bob", "Carol"]

    def test_failed_ingest_keeps_previous_dataset(self, session):
        before = session.snapshot
        with pytest.raises(UnsupportedFileTypeError):
            session.ingest(b"whatever", "notes.txt")
        with pytest.raises(IngestionError):
            session.ingest(b"", "empty.csv")
        assert session.snapshot is before

    def test_reingest_replaces_annotations(self, session):
        session.set_status("record-1", "hired")
        session.ingest(OTHER_CSV, "other.csv")
        assert _names(session.records) == ["Dan"]
        assert session.records[0].status == "pending"

    def test_superseded_ticket_is_discarded(self):
        s = CandidateSession()
        slow = s.begin_ingest()
        fast = s.begin_ingest()
        assert s.install(fast, load_dataset(OTHER_CSV, "fast.csv")).installed is True
        outcome = s.install(slow, load_dataset(CSV, "slow.csv"))
        assert outcome.installed is False
        assert _names(s.records) == ["Dan"]
        assert s.snapshot.generation == fast

    def test_filters_persist_across_reingest(self, session):
        session.add_filter(SubstringFilter(column="Name", value="a"))
        session.add_filter(SubstringFilter(column="Email", value="x.com"))
        session.ingest(OTHER_CSV, "other.csv")
        assert [f.column for f in session.filters] == ["Name", "Email"]
        # Email no longer exists, so only the Name filter applies
        assert _names(session.filtered_records()) == ["Dan"]


class TestAnnotations:
    def test_writes_swap_snapshot(self, session):
        before = session.snapshot
        session.set_status("record-2", "consideration")
        session.add_note("record-2", "Good call")
        session.add_tag("record-2", "backend")
        r = session.get_record("record-2")
        assert r.status == "consideration"
        assert [n.text for n in r.notes] == ["Good call"]
        assert r.tags == ("backend",)
        assert before.records[1].status == "pending"

    def test_unknown_record(self, session):
        before = session.records
        session.set_status("record-99", "hired")
        assert session.records == before
        assert session.get_record("record-99") is None

    def test_remove_tag(self, session):
        session.add_tag("record-1", "x")
        session.remove_tag("record-1", "x")
        assert session.get_record("record-1").tags == ()

    def test_column_overrides(self, session):
        session.set_column_visibility("Email", False)
        session.set_column_primary("Years", False)
        email = next(f for f in session.schema if f.name == "Email")
        years = next(f for f in session.schema if f.name == "Years")
        assert email.visible is False
        assert years.primary is False

    def test_concurrent_tags_are_not_lost(self, session):
        def _tag(i):
            session.add_tag("record-1", f"t{i}")

        threads = [threading.Thread(target=_tag, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(session.get_record("record-1").tags) == 20


class TestFilters:
    def test_add_filter_for_uses_schema_type(self, session):
        session.add_filter_for("Years", [5, 30])
        (f,) = session.filters
        assert isinstance(f, NumberRangeFilter)
        assert _names(session.filtered_records()) == ["Bob", "Carol"]

    def test_number_default_range(self, session):
        session.add_filter_for("Years", use_default=True)
        assert session.filters[0].value == (0.0, 100.0)
        assert len(session.filtered_records()) == 3

    def test_unknown_column_raises(self, session):
        with pytest.raises(KeyError):
            session.add_filter_for("Salary", 1)

    def test_status_filter(self, session):
        session.set_status("record-3", "hired")
        session.add_filter_for(STATUS_COLUMN, "hired")
        assert _names(session.filtered_records()) == ["Carol"]

    def test_update_remove_clear(self, session):
        session.add_filter_for("Name", "o")
        session.add_filter_for("Years", [0, 5])
        session.update_filter("Years", [0, 50])
        assert _names(session.filtered_records()) == ["Bob", "Carol"]
        session.remove_filter("Name")
        assert [f.column for f in session.filters] == ["Years"]
        session.clear_filters()
        assert session.filters == ()

    def test_multi_select_on_number_column(self, session):
        session.add_filter_for("Years", ["25", "3"], multi_select=True)
        assert session.filters[0].kind == "options"
        assert _names(session.filtered_records()) == ["Alice", "Carol"]

        session.update_filter("Years", ["10", "3"])
        assert session.filters[0].kind == "options"
        assert _names(session.filtered_records()) == ["Alice", "Bob"]

    def test_multi_select_without_value_starts_empty(self, session):
        session.add_filter_for("Years", use_default=True, multi_select=True)
        assert session.filters[0].kind == "options"
        assert len(session.filtered_records()) == 3

    def test_search_narrows_filtered_view(self, session):
        session.add_filter_for("Email", "x.com")
        assert _names(session.filtered_records(search="carol")) == ["Carol"]

    def test_available_columns(self, session):
        session.add_filter_for("Name", "a")
        assert [f.name for f in session.available_filter_columns()] == ["Email", "Years"]


class TestAnalytics:
    def test_counts(self, session):
        session.set_status("record-1", "hired")
        session.set_status("record-2", "not-hired")
        session.add_filter_for("Email", "x.com")
        stats = session.analytics()
        assert stats["total"] == 3
        assert stats["filtered"] == 2
        counts = {s["value"]: s["count"] for s in stats["status_counts"]}
        assert counts == {"hired": 1, "not-hired": 1, "consideration": 0, "pending": 1}
