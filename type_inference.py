import math
import numbers
import re
from datetime import date, datetime
from typing import Any, Callable, List, NamedTuple, Optional

import pandas as pd
from dateutil import parser as dateparser


# -----------------------------
# Field types (closed set)
# -----------------------------
TEXT = "text"
NUMBER = "number"
DATE = "date"
URL = "url"
EMAIL = "email"
RATING = "rating"
BOOLEAN = "boolean"

FIELD_TYPES = (TEXT, NUMBER, DATE, URL, EMAIL, RATING, BOOLEAN)

# Spreadsheet epoch-day encodings land in this open interval (roughly 2009..2036)
SERIAL_DATE_MIN = 40000
SERIAL_DATE_MAX = 50000
SPREADSHEET_EPOCH = pd.Timestamp("1899-12-30")

RATING_MIN = 0.0
RATING_MAX = 5.0


# -----------------------------
# Pattern regexes
# -----------------------------
RE_NUMBER = re.compile(r"^[-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?$")
RE_EMAIL = re.compile(r"(?i)^[^@\s]+@[^@\s]+\.[^@\s]+$")
RE_URL_PREFIX = re.compile(r"(?i)^(?:https?://|www\.)")

RE_ISO_DATE = re.compile(r"^\d{4}[-/]\d{1,2}[-/]\d{1,2}")
RE_DMY_MDY = re.compile(r"^\d{1,2}[-/.]\d{1,2}[-/.]\d{2,4}")
RE_MONTH_NAME = re.compile(
    r"\b(?:jan|january|feb|february|mar|march|apr|april|may|jun|june|jul|july|aug|august|sep|sept|september|oct|october|nov|november|dec|december)\b",
    re.IGNORECASE
)

BOOL_TOKENS = {"true", "false", "yes", "no", "1", "0"}

DATE_NAME_HINTS = ("timestamp", "date")
EMAIL_NAME_HINTS = ("email",)
URL_NAME_HINTS = ("url", "link", "portfolio", "github")
RATING_NAME_HINTS = ("rating", "score", "proficiency")


# -----------------------------
# Scalar helpers
# -----------------------------
def is_empty_value(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


def value_text(value: Any) -> str:
    """Stringify a cell; missing values become the empty string."""
    if is_empty_value(value):
        return ""
    if isinstance(value, pd.Timestamp):
        return value.isoformat()
    return str(value)


def parse_number(value: Any) -> Optional[float]:
    """
    Native numbers are taken as-is; text goes through a strict lexical check.
    Booleans, NaN/Inf and blanks are not numbers.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, numbers.Number):
        try:
            out = float(value)
        except (TypeError, ValueError, OverflowError):
            return None
        return out if math.isfinite(out) else None
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text or not RE_NUMBER.match(text):
        return None
    out = float(text)
    return out if math.isfinite(out) else None


def is_serial_date(value: Any) -> bool:
    num = parse_number(value)
    return num is not None and SERIAL_DATE_MIN < num < SERIAL_DATE_MAX


def _naive(ts: pd.Timestamp) -> pd.Timestamp:
    if ts.tzinfo is not None:
        return ts.tz_convert("UTC").tz_localize(None)
    return ts


def parse_date_value(value: Any) -> Optional[pd.Timestamp]:
    """
    Returns a tz-naive Timestamp or None.

    Serial numbers in the spreadsheet range are converted from epoch days.
    Other numbers are never treated as dates. Text must look date-like
    (ISO, d/m/y or a month name) before dateutil is asked to parse it.
    """
    if is_empty_value(value) or isinstance(value, bool):
        return None
    if isinstance(value, (datetime, date)):
        try:
            return _naive(pd.Timestamp(value))
        except (TypeError, ValueError):
            return None
    if is_serial_date(value):
        return SPREADSHEET_EPOCH + pd.Timedelta(days=parse_number(value))
    if not isinstance(value, str):
        return None

    text = value.strip()
    if parse_number(text) is not None:
        return None
    if not (RE_ISO_DATE.match(text) or RE_DMY_MDY.match(text) or RE_MONTH_NAME.search(text)):
        return None
    if not any(ch.isdigit() for ch in text):
        return None
    try:
        return _naive(pd.Timestamp(dateparser.parse(text)))
    except (ValueError, OverflowError, TypeError):
        return None


# -----------------------------
# Inference rules (first match wins)
# -----------------------------
class InferenceRule(NamedTuple):
    name: str
    field_type: str
    matches: Callable[[Any, str, str], bool]


def _name_has(column: str, hints) -> bool:
    return any(h in column for h in hints)


def _date_rule(value: Any, text: str, column: str) -> bool:
    if not _name_has(column, DATE_NAME_HINTS):
        return False
    if is_serial_date(value):
        return True
    return parse_date_value(value) is not None


def _email_rule(value: Any, text: str, column: str) -> bool:
    return _name_has(column, EMAIL_NAME_HINTS) or bool(RE_EMAIL.match(text))


def _url_rule(value: Any, text: str, column: str) -> bool:
    return _name_has(column, URL_NAME_HINTS) or bool(RE_URL_PREFIX.match(text))


def _rating_rule(value: Any, text: str, column: str) -> bool:
    if not _name_has(column, RATING_NAME_HINTS):
        return False
    num = parse_number(value)
    return num is not None and RATING_MIN <= num <= RATING_MAX


def _boolean_rule(value: Any, text: str, column: str) -> bool:
    return text.lower() in BOOL_TOKENS


def _number_rule(value: Any, text: str, column: str) -> bool:
    return parse_number(value) is not None


INFERENCE_RULES: List[InferenceRule] = [
    InferenceRule("date", DATE, _date_rule),
    InferenceRule("email", EMAIL, _email_rule),
    InferenceRule("url", URL, _url_rule),
    InferenceRule("rating", RATING, _rating_rule),
    InferenceRule("boolean", BOOLEAN, _boolean_rule),
    InferenceRule("number", NUMBER, _number_rule),
]


def infer_field_type(value: Any, column_name: str) -> str:
    if is_empty_value(value):
        return TEXT
    text = value_text(value).strip()
    column = (column_name or "").lower()
    for rule in INFERENCE_RULES:
        if rule.matches(value, text, column):
            return rule.field_type
    return TEXT
