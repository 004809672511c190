import math
from datetime import datetime
from typing import Annotated, Any, Callable, Dict, List, Literal, Optional, Sequence, Tuple, Union

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictInt, StrictStr, TypeAdapter

from records import Record
from schema_detect import FieldSchema
from type_inference import (
    BOOLEAN,
    DATE,
    EMAIL,
    NUMBER,
    RATING,
    TEXT,
    URL,
    is_empty_value,
    parse_date_value,
    parse_number,
    value_text,
)


# Reserved pseudo-column addressing Record.status
STATUS_COLUMN = "_status"

DEFAULT_NUMBER_RANGE = (0.0, 100.0)

NAN = float("nan")


# -----------------------------
# Filter variants
# -----------------------------
class _FilterBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    column: str
    field_type: str = TEXT

    def is_active(self) -> bool:
        return True


class SubstringFilter(_FilterBase):
    kind: Literal["substring"] = "substring"
    value: str = ""

    def is_active(self) -> bool:
        return self.value != ""


class NumberRangeFilter(_FilterBase):
    kind: Literal["number_range"] = "number_range"
    field_type: str = NUMBER
    value: Tuple[float, float]


class NumberEqualsFilter(_FilterBase):
    kind: Literal["number_equals"] = "number_equals"
    field_type: str = NUMBER
    value: Optional[float] = None

    def is_active(self) -> bool:
        return self.value is not None


class DateRangeFilter(_FilterBase):
    # value=None is the permissive case: the filter passes every record
    kind: Literal["date_range"] = "date_range"
    field_type: str = DATE
    value: Optional[Tuple[datetime, datetime]] = None

    def is_active(self) -> bool:
        return self.value is not None


class BooleanFilter(_FilterBase):
    kind: Literal["boolean"] = "boolean"
    field_type: str = BOOLEAN
    value: Union[StrictBool, StrictInt, StrictFloat, StrictStr, None] = None

    def is_active(self) -> bool:
        return self.value is not None and self.value != ""


class RatingFilter(_FilterBase):
    kind: Literal["rating"] = "rating"
    field_type: str = RATING
    value: Optional[float] = None

    def is_active(self) -> bool:
        return self.value is not None


class OptionsFilter(_FilterBase):
    kind: Literal["options"] = "options"
    value: Tuple[str, ...] = ()

    def is_active(self) -> bool:
        return len(self.value) > 0


class StatusFilter(_FilterBase):
    kind: Literal["status"] = "status"
    column: str = STATUS_COLUMN
    value: str = ""

    def is_active(self) -> bool:
        return self.value != ""


Filter = Annotated[
    Union[
        SubstringFilter,
        NumberRangeFilter,
        NumberEqualsFilter,
        DateRangeFilter,
        BooleanFilter,
        RatingFilter,
        OptionsFilter,
        StatusFilter,
    ],
    Field(discriminator="kind"),
]

FILTER_ADAPTER: TypeAdapter = TypeAdapter(Filter)


def parse_filter(payload: Dict[str, Any]) -> Filter:
    return FILTER_ADAPTER.validate_python(payload)


# -----------------------------
# Construction
# -----------------------------
def _is_collection(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))


def _is_pair(value: Any) -> bool:
    return isinstance(value, (list, tuple)) and len(value) == 2


def _required_number(value: Any, column: str) -> Optional[float]:
    if is_empty_value(value):
        return None
    num = parse_number(value)
    if num is None:
        raise ValueError(f"Filter value for '{column}' must be numeric, got {value!r}")
    return num


def _options(column: str, field_type: str, value: Any) -> OptionsFilter:
    if is_empty_value(value):
        items = []
    elif _is_collection(value):
        items = list(value)
    else:
        items = [value]
    return OptionsFilter(
        column=column,
        field_type=field_type,
        value=tuple(dict.fromkeys(value_text(v) for v in items if not is_empty_value(v))),
    )


def make_filter(column: str, field_type: str, value: Any = None, multi_select: bool = False) -> Filter:
    """
    Build the filter variant for a column of `field_type` from a loose value:
    a scalar, a two-element [low, high] range, or a collection of options.

    A list is ambiguous on number columns (range or two picked options);
    `multi_select=True` or a set value always means membership.
    """
    if column == STATUS_COLUMN:
        return StatusFilter(value=value_text(value))

    if multi_select or isinstance(value, (set, frozenset)):
        return _options(column, field_type, value)

    if field_type == NUMBER and _is_pair(value):
        low, high = (_required_number(v, column) for v in value)
        if low is None or high is None:
            raise ValueError(f"Range for '{column}' needs both bounds")
        return NumberRangeFilter(column=column, value=(low, high))

    if field_type == DATE:
        bounds = None
        if _is_pair(value):
            low, high = (parse_date_value(v) for v in value)
            if low is not None and high is not None:
                bounds = (low.to_pydatetime(), high.to_pydatetime())
        return DateRangeFilter(column=column, value=bounds)

    if field_type == RATING:
        if _is_collection(value):
            value = next(iter(value), None)
        return RatingFilter(column=column, value=_required_number(value, column))

    if _is_collection(value):
        return _options(column, field_type, value)

    if field_type in (TEXT, EMAIL, URL):
        return SubstringFilter(column=column, field_type=field_type, value=value_text(value))
    if field_type == NUMBER:
        return NumberEqualsFilter(column=column, value=_required_number(value, column))
    if field_type == BOOLEAN:
        return BooleanFilter(column=column, value=value)

    raise ValueError(f"Unknown field type: {field_type}")


def filter_for_field(entry: FieldSchema, value: Any, multi_select: bool = False) -> Filter:
    if multi_select and entry.options is None:
        raise ValueError(f"Column '{entry.name}' has too many distinct values for multi-select")
    return make_filter(entry.name, entry.type, value, multi_select=multi_select)


def default_filter(entry: FieldSchema) -> Filter:
    if entry.type == NUMBER:
        return make_filter(entry.name, NUMBER, list(DEFAULT_NUMBER_RANGE))
    return make_filter(entry.name, entry.type, None)


def with_value(f: Filter, value: Any) -> Filter:
    """Same column, field type and variant family, new value."""
    if f.kind == "options":
        return _options(f.column, f.field_type, value)
    if f.kind == "status":
        return StatusFilter(value=value_text(value))
    return make_filter(f.column, f.field_type, value)


# -----------------------------
# Filter set (at most one per column)
# -----------------------------
def upsert_filter(filters: Sequence[Filter], new: Filter) -> Tuple[Filter, ...]:
    if any(f.column == new.column for f in filters):
        return tuple(new if f.column == new.column else f for f in filters)
    return tuple(filters) + (new,)


def drop_filter(filters: Sequence[Filter], column: str) -> Tuple[Filter, ...]:
    return tuple(f for f in filters if f.column != column)


def get_filter(filters: Sequence[Filter], column: str) -> Optional[Filter]:
    for f in filters:
        if f.column == column:
            return f
    return None


def available_filter_columns(schema: Sequence[FieldSchema], filters: Sequence[Filter]) -> List[FieldSchema]:
    taken = {f.column for f in filters}
    return [e for e in schema if e.visible and e.name not in taken]


# -----------------------------
# Evaluation
# -----------------------------
def _as_float(v: Any) -> float:
    num = parse_number(v)
    return NAN if num is None else num


def _numbers(col: pd.Series) -> pd.Series:
    return col.map(_as_float).astype("float64")


def _texts(col: pd.Series) -> pd.Series:
    return col.map(value_text).astype(object)


def _same_value(a: Any, b: Any) -> bool:
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    if isinstance(a, float) and math.isnan(a):
        return False
    return a == b


def _mask_substring(col: pd.Series, f: SubstringFilter) -> pd.Series:
    needle = f.value.lower()
    return _texts(col).map(lambda s: needle in s.lower()).astype(bool)


def _mask_number_range(col: pd.Series, f: NumberRangeFilter) -> pd.Series:
    low, high = f.value
    return _numbers(col).between(low, high, inclusive="both")


def _mask_number_equals(col: pd.Series, f: NumberEqualsFilter) -> pd.Series:
    return _numbers(col) == f.value


def _mask_date_range(col: pd.Series, f: DateRangeFilter) -> pd.Series:
    low, high = (pd.Timestamp(b) for b in f.value)
    if low.tzinfo is not None:
        low = low.tz_convert("UTC").tz_localize(None)
    if high.tzinfo is not None:
        high = high.tz_convert("UTC").tz_localize(None)

    def _inside(v: Any) -> bool:
        ts = parse_date_value(v)
        return ts is not None and low <= ts <= high

    return col.map(_inside).astype(bool)


def _mask_boolean(col: pd.Series, f: BooleanFilter) -> pd.Series:
    return col.map(lambda v: _same_value(v, f.value)).astype(bool)


def _mask_rating(col: pd.Series, f: RatingFilter) -> pd.Series:
    return _numbers(col) >= f.value


def _mask_options(col: pd.Series, f: OptionsFilter) -> pd.Series:
    return _texts(col).isin(set(f.value))


def _mask_status(col: pd.Series, f: StatusFilter) -> pd.Series:
    return col.map(lambda v: v == f.value).astype(bool)


_MASKS: Dict[str, Callable[[pd.Series, Any], pd.Series]] = {
    "substring": _mask_substring,
    "number_range": _mask_number_range,
    "number_equals": _mask_number_equals,
    "date_range": _mask_date_range,
    "boolean": _mask_boolean,
    "rating": _mask_rating,
    "options": _mask_options,
    "status": _mask_status,
}


def _column(records: Sequence[Record], column: str) -> pd.Series:
    if column == STATUS_COLUMN:
        return pd.Series([r.status for r in records], dtype=object)
    return pd.Series([r.data.get(column) for r in records], dtype=object)


def evaluate(
    records: Sequence[Record],
    filters: Sequence[Filter],
    schema: Optional[Sequence[FieldSchema]] = None,
) -> List[Record]:
    """
    Records satisfying every active filter, in their original order.

    Filters with an empty value are inactive. When `schema` is given,
    filters on columns it does not know (other than status) are ignored.
    """
    records = list(records)
    known = None if schema is None else {e.name for e in schema} | {STATUS_COLUMN}

    active = [
        f for f in filters
        if f.is_active() and (known is None or f.column in known) and f.kind in _MASKS
    ]
    if not active or not records:
        return records

    mask = pd.Series(True, index=range(len(records)))
    for f in active:
        mask &= _MASKS[f.kind](_column(records, f.column), f).to_numpy(dtype=bool)

    return [r for r, keep in zip(records, mask.tolist()) if keep]


def search_records(
    records: Sequence[Record],
    schema: Sequence[FieldSchema],
    query: str,
) -> List[Record]:
    """Free-text search: any schema field containing `query`, case-insensitive."""
    needle = (query or "").strip().lower()
    if not needle:
        return list(records)
    names = [e.name for e in schema]
    return [
        r for r in records
        if any(needle in value_text(r.data.get(n)).lower() for n in names)
    ]
