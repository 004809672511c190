"""
Tests for the CSV and XLSX exports.
"""

import io
import sys
from datetime import date, datetime
from pathlib import Path

import pandas as pd
import pytest
from openpyxl import load_workbook

sys.path.insert(0, str(Path(__file__).parent.parent))

import annotation_store as store
from csv_export import build_csv_text, export_filename, export_table
from records import normalize_records
from schema_detect import FieldSchema, detect_schema
from xlsx_export import build_xlsx_bytes


ROWS = [
    {"Name": "Alice", "Email": "alice@x.com", "Remote": "yes"},
    {"Name": "Bob", "Email": "", "Remote": "no"},
]


@pytest.fixture
def records():
    return tuple(normalize_records(ROWS))


@pytest.fixture
def schema():
    return detect_schema(ROWS)


class TestExportTable:
    def test_headers_follow_visible_schema(self, records, schema):
        headers, rows = export_table(records, schema)
        assert headers == ["Name", "Email", "Remote", "Status"]
        assert rows[0] == ["Alice", "alice@x.com", "yes", "pending"]
        assert rows[1] == ["Bob", "", "no", "pending"]

    def test_hidden_columns_are_left_out(self, records, schema):
        schema = store.set_column_visibility(schema, "Email", False)
        headers, rows = export_table(records, schema)
        assert headers == ["Name", "Remote", "Status"]
        assert rows[0] == ["Alice", "yes", "pending"]

    def test_tags_column_only_when_tagged(self, records, schema):
        headers, _ = export_table(records, schema)
        assert "Tags" not in headers

        records = store.add_tag(records, "record-2", "python")
        records = store.add_tag(records, "record-2", "remote")
        headers, rows = export_table(records, schema)
        assert headers[-1] == "Tags"
        assert rows[0][-1] == ""
        assert rows[1][-1] == "python, remote"

    def test_zero_records_still_has_header(self, schema):
        headers, rows = export_table([], schema)
        assert headers == ["Name", "Email", "Remote"]
        assert rows == []

    def test_structured_and_date_values(self):
        records = normalize_records([{"When": datetime(2024, 1, 2, 3, 4), "Meta": {"a": 1}}])
        schema = [FieldSchema(name="When", type="date"), FieldSchema(name="Meta")]
        _, rows = export_table(records, schema)
        assert rows[0][:2] == ["2024-01-02T03:04:00", '{"a": 1}']


class TestCsv:
    def test_csv_text_round_trips_through_pandas(self, records, schema):
        text = build_csv_text(records, schema)
        assert text.splitlines()[0] == "Name,Email,Remote,Status"
        df = pd.read_csv(io.StringIO(text), dtype=str, keep_default_na=False)
        assert df["Name"].tolist() == ["Alice", "Bob"]
        assert df["Email"].tolist() == ["alice@x.com", ""]

    def test_values_with_commas_are_quoted(self, schema):
        records = normalize_records([{"Name": "Smith, Alice", "Email": "", "Remote": ""}])
        text = build_csv_text(records, schema)
        assert '"Smith, Alice"' in text

    def test_no_fields_is_empty_text(self):
        assert build_csv_text([], []) == ""

    def test_filename(self):
        assert export_filename(date(2024, 3, 9)) == "candidates-2024-03-09.csv"
        assert export_filename(date(2024, 3, 9), "xlsx") == "candidates-2024-03-09.xlsx"


class TestXlsx:
    def test_sheet_has_header_and_rows(self, records, schema):
        data = build_xlsx_bytes(records, schema)
        ws = load_workbook(io.BytesIO(data)).active
        assert ws.title == "Candidates"
        values = [list(r) for r in ws.iter_rows(values_only=True)]
        assert values[0] == ["Name", "Email", "Remote", "Status"]
        assert values[1] == ["Alice", "alice@x.com", "yes", "pending"]
        assert ws.freeze_panes == "A2"
        assert ws["A1"].font.bold

    def test_boolean_columns_get_validation(self, records, schema):
        ws = load_workbook(io.BytesIO(build_xlsx_bytes(records, schema))).active
        ranges = [str(dv.sqref) for dv in ws.data_validations.dataValidation]
        assert ranges == ["C2:C3"]

    def test_boolean_data_column_named_like_status(self):
        records = normalize_records([
            {"Name": "Alice", "Status": "yes"},
            {"Name": "Bob", "Status": "no"},
        ])
        schema = [FieldSchema(name="Name"), FieldSchema(name="Status", type="boolean")]
        ws = load_workbook(io.BytesIO(build_xlsx_bytes(records, schema))).active
        assert [c.value for c in ws[1]] == ["Name", "Status", "Status"]
        ranges = [str(dv.sqref) for dv in ws.data_validations.dataValidation]
        assert ranges == ["B2:B3"]

    def test_empty_schema_gives_blank_sheet(self):
        ws = load_workbook(io.BytesIO(build_xlsx_bytes([], []))).active
        assert ws.max_row == 1
        assert ws["A1"].value is None
