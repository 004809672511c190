import io
from typing import Sequence

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.datavalidation import DataValidation

from csv_export import export_table
from records import Record
from schema_detect import FieldSchema, visible_fields
from type_inference import BOOLEAN


MAX_COLUMN_WIDTH = 60
MIN_COLUMN_WIDTH = 10


def build_xlsx_bytes(
    records: Sequence[Record],
    schema: Sequence[FieldSchema],
    sheet_name: str = "Candidates",
) -> bytes:
    """Same projection as the CSV export, as a single formatted sheet."""
    headers, rows = export_table(records, schema)

    wb = Workbook()
    ws = wb.active
    ws.title = sheet_name[:31] if sheet_name else "Candidates"

    if headers:
        ws.append(headers)
        for cell in ws[1]:
            cell.font = Font(bold=True)
            cell.alignment = Alignment(wrap_text=True, vertical="top")
        ws.freeze_panes = "A2"
        ws.auto_filter.ref = f"A1:{get_column_letter(len(headers))}1"

    for r in rows:
        ws.append(r)

    # TRUE/FALSE dropdown on boolean columns; data columns lead in visible order
    if headers and rows:
        bool_letters = [
            get_column_letter(i + 1)
            for i, f in enumerate(visible_fields(schema))
            if f.type == BOOLEAN
        ]
        if bool_letters:
            dv_bool = DataValidation(type="list", formula1='"TRUE,FALSE"', allow_blank=True)
            ws.add_data_validation(dv_bool)
            last_row = ws.max_row
            for L in bool_letters:
                dv_bool.add(f"{L}2:{L}{last_row}")

    # light autosize (cap width to avoid silly columns)
    for col_idx in range(1, ws.max_column + 1):
        letter = get_column_letter(col_idx)
        max_len = 0
        for cell in ws[letter]:
            v = "" if cell.value is None else str(cell.value)
            if len(v) > max_len:
                max_len = len(v)
        ws.column_dimensions[letter].width = min(max(MIN_COLUMN_WIDTH, max_len + 2), MAX_COLUMN_WIDTH)

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()
