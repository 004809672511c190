import json
from datetime import date, datetime
from typing import Any, List, Optional, Sequence, Tuple

import pandas as pd

from records import Record
from schema_detect import FieldSchema, visible_fields
from type_inference import is_empty_value


STATUS_HEADER = "Status"
TAGS_HEADER = "Tags"
TAG_SEPARATOR = ", "


def _cell(v: Any) -> Any:
    if is_empty_value(v):
        return ""
    if isinstance(v, (datetime, date)):
        return v.isoformat()
    if isinstance(v, (dict, list, tuple)):
        return json.dumps(v, ensure_ascii=False, default=str)
    return v


def export_table(
    records: Sequence[Record],
    schema: Sequence[FieldSchema],
) -> Tuple[List[str], List[List[Any]]]:
    """
    Headers and rows for the export of `records`.

    Headers come from the visible schema fields in schema order, so an
    empty record set still yields a header. Status and Tags are appended
    only when some exported record carries a value for them.
    """
    fields = [f.name for f in visible_fields(schema)]
    with_status = any(r.status for r in records)
    with_tags = any(r.tags for r in records)

    headers = list(fields)
    if with_status:
        headers.append(STATUS_HEADER)
    if with_tags:
        headers.append(TAGS_HEADER)

    rows: List[List[Any]] = []
    for r in records:
        row = [_cell(r.get(name)) for name in fields]
        if with_status:
            row.append(r.status or "")
        if with_tags:
            row.append(TAG_SEPARATOR.join(r.tags))
        rows.append(row)

    return headers, rows


def build_csv_text(records: Sequence[Record], schema: Sequence[FieldSchema]) -> str:
    headers, rows = export_table(records, schema)
    if not headers:
        return ""
    df = pd.DataFrame(rows, columns=headers)
    return df.to_csv(index=False, lineterminator="\n")


def export_filename(today: Optional[date] = None, extension: str = "csv") -> str:
    today = today or date.today()
    return f"candidates-{today.isoformat()}.{extension}"
