import io
import json
import logging
import math
import zipfile
from typing import Any, Dict, List, NamedTuple, Optional

import pandas as pd

from records import Record, normalize_records
from schema_detect import FieldSchema, detect_schema


logger = logging.getLogger("candidates.ingest")

SUPPORTED_FORMATS = ("csv", "xlsx", "xls", "json")


class IngestionError(ValueError):
    """The upload could not be read or parsed."""


class UnsupportedFileTypeError(IngestionError):
    def __init__(self, extension: str):
        self.extension = extension
        super().__init__(f"Unsupported file type: {extension}")


class Dataset(NamedTuple):
    records: List[Record]
    schema: List[FieldSchema]


def detect_format(filename: Optional[str]) -> str:
    name = (filename or "").strip()
    ext = name.rsplit(".", 1)[-1].lower() if "." in name else ""
    if ext not in SUPPORTED_FORMATS:
        raise UnsupportedFileTypeError(ext)
    return ext


# -----------------------------
# Cell cleanup
# -----------------------------
def _plain_value(v: Any) -> Any:
    """numpy/pandas scalars -> plain Python; NaN/NaT -> None."""
    if v is None or v is pd.NaT or v is pd.NA:
        return None
    if isinstance(v, pd.Timestamp):
        return None if pd.isna(v) else v.to_pydatetime()
    if hasattr(v, "item") and callable(getattr(v, "item")):
        try:
            v = v.item()
        except (ValueError, TypeError):
            pass
    if isinstance(v, float) and not math.isfinite(v):
        return None
    return v


def _frame_rows(df: pd.DataFrame) -> List[Dict[str, Any]]:
    df.columns = [str(c) for c in df.columns]
    return [
        {col: _plain_value(v) for col, v in zip(df.columns, row)}
        for row in df.itertuples(index=False, name=None)
    ]


# -----------------------------
# Per-format readers
# -----------------------------
def _read_csv(raw_bytes: bytes) -> List[Dict[str, Any]]:
    # Everything stays an untyped string; blank cells become ""
    df = pd.read_csv(
        io.BytesIO(raw_bytes),
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
        encoding="utf-8-sig",
    )
    return _frame_rows(df)


def _read_spreadsheet(raw_bytes: bytes) -> List[Dict[str, Any]]:
    df = pd.read_excel(io.BytesIO(raw_bytes), sheet_name=0)
    df = df.dropna(how="all")
    return _frame_rows(df)


def _read_json(raw_bytes: bytes) -> List[Any]:
    parsed = json.loads(raw_bytes.decode("utf-8-sig"))
    if isinstance(parsed, list):
        return parsed
    return [parsed]


_READERS = {
    "csv": _read_csv,
    "xlsx": _read_spreadsheet,
    "xls": _read_spreadsheet,
    "json": _read_json,
}


def read_rows(raw_bytes: bytes, fmt: str) -> List[Any]:
    reader = _READERS.get(fmt)
    if reader is None:
        raise UnsupportedFileTypeError(fmt)
    if not raw_bytes:
        raise IngestionError("Uploaded file is empty")

    try:
        return reader(raw_bytes)
    except pd.errors.EmptyDataError as e:
        raise IngestionError("Uploaded file is empty") from e
    except (pd.errors.ParserError, json.JSONDecodeError, UnicodeDecodeError) as e:
        raise IngestionError(f"Could not parse {fmt} file: {e}") from e
    except (ValueError, OSError, ImportError, zipfile.BadZipFile) as e:
        raise IngestionError(f"Could not read {fmt} file: {e}") from e


def load_dataset(raw_bytes: bytes, filename: Optional[str]) -> Dataset:
    """
    read -> parse -> detect schema -> normalize.

    Either returns a complete Dataset or raises IngestionError; callers
    install the result only on success.
    """
    fmt = detect_format(filename)
    logger.info("stage=parse_start file=%s format=%s bytes=%s", filename, fmt, len(raw_bytes))

    rows = read_rows(raw_bytes, fmt)
    schema = detect_schema(rows)
    records = normalize_records(rows)

    logger.info("stage=parse_end file=%s rows=%s fields=%s", filename, len(records), len(schema))
    return Dataset(records=records, schema=schema)
