"""Render raw Bitable cell values as flat strings for CSV/XLSX export.

Cell values returned by the records endpoint vary by field type and by how
the value was produced: plain scalars, lists of rich-text segments, user or
attachment objects, and `{"type": ..., "value": ...}` wrappers emitted by
lookups and formulas. Every value is first tagged with a shape, then the
rule registered for its (type group, shape) pair renders it.

Normalization never raises. A rule that fails on an unexpected value falls
back to generic stringification.
"""

import json
import math
import re
from collections.abc import Callable
from datetime import datetime
from typing import Any

from .fields import FieldDescriptor, FieldType


# ---------------------------------------------------------------------------
# Shapes and type groups
# ---------------------------------------------------------------------------

class Shape:
    """Structural tag of a raw cell value."""

    NONE = "none"
    SCALAR = "scalar"
    LIST = "list"
    MAPPING = "mapping"


def sniff_shape(value: Any) -> str:
    """Classify a raw value by structure."""
    if value is None:
        return Shape.NONE
    if isinstance(value, dict):
        return Shape.MAPPING
    if isinstance(value, (list, tuple)):
        return Shape.LIST
    return Shape.SCALAR


class TypeGroup:
    """Field types that share a rendering rule."""

    TEXT = "text"
    NUMBER = "number"
    SELECT = "select"
    DATE = "date"
    PERSON = "person"
    URL = "url"
    ATTACHMENT = "attachment"
    REFERENCE = "reference"
    OTHER = "other"


_TYPE_GROUPS: dict[int, str] = {
    FieldType.TEXT: TypeGroup.TEXT,
    FieldType.NUMBER: TypeGroup.NUMBER,
    FieldType.CHECKBOX: TypeGroup.NUMBER,
    FieldType.SINGLE_SELECT: TypeGroup.SELECT,
    FieldType.MULTI_SELECT: TypeGroup.SELECT,
    FieldType.DATE: TypeGroup.DATE,
    FieldType.CREATED_TIME: TypeGroup.DATE,
    FieldType.MODIFIED_TIME: TypeGroup.DATE,
    FieldType.PERSON: TypeGroup.PERSON,
    FieldType.CREATED_BY: TypeGroup.PERSON,
    FieldType.MODIFIED_BY: TypeGroup.PERSON,
    FieldType.URL: TypeGroup.URL,
    FieldType.ATTACHMENT: TypeGroup.ATTACHMENT,
    FieldType.ONE_WAY_LINK: TypeGroup.REFERENCE,
    FieldType.LOOKUP: TypeGroup.REFERENCE,
    FieldType.TWO_WAY_LINK: TypeGroup.REFERENCE,
}

# Relation columns the vendor CSV export leaves blank
_CSV_BLANK_TYPES = frozenset({FieldType.ONE_WAY_LINK, FieldType.TWO_WAY_LINK})

# Wrapper types that mark a lookup echoing the target's select choice
_SELECT_ECHO_TYPES = frozenset({"single_option", "multi_option", "single_select", "multi_select"})

IMAGE_EXTENSIONS = frozenset({
    "png", "jpg", "jpeg", "gif", "bmp", "webp", "svg", "tif", "tiff", "heic", "ico",
})

# Epoch values above this are milliseconds
MILLISECOND_THRESHOLD = 10 ** 11
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_RECORD_ID = re.compile(r"^rec[A-Za-z0-9]{6,}$")
_ATTACHMENT_TOKEN_KEYS = ("file_token", "attachmentToken", "attachment_token")


def type_group(type_code: int) -> str:
    """Get the rendering group of a field type code."""
    return _TYPE_GROUPS.get(type_code, TypeGroup.OTHER)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def stringify(value: Any) -> str:
    """Generic string form of a value.

    Integral floats lose their fractional part, booleans render as
    true/false and non-empty containers render as compact JSON.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (str, int)):
        return str(value)
    if isinstance(value, (list, tuple, dict)):
        if not value:
            return ""
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)
    return str(value)


def is_image_name(name: str) -> bool:
    """Check whether a file name has an image extension."""
    if "." not in name:
        return False
    return name.rsplit(".", 1)[-1].strip().lower() in IMAGE_EXTENSIONS


def is_attachment(value: Any) -> bool:
    """Check whether a value looks like an attachment object."""
    return isinstance(value, dict) and "name" in value and any(k in value for k in _ATTACHMENT_TOKEN_KEYS)


def _is_wrapper(value: Any) -> bool:
    return isinstance(value, dict) and "type" in value and "value" in value


def _is_select_echo(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and value.get("type") in _SELECT_ECHO_TYPES
        and value.get("value_extra") is not None
    )


def _text_of(value: dict[str, Any]) -> str:
    text = value.get("text")
    return text if isinstance(text, str) else ""


def _text_arr_of(value: dict[str, Any]) -> str:
    text_arr = value.get("text_arr")
    if isinstance(text_arr, (list, tuple)):
        return ",".join(stringify(t) for t in text_arr if stringify(t))
    return ""


def _join(parts: list[str], sep: str = ",") -> str:
    return sep.join(p for p in parts if p)


def format_timestamp(value: Any) -> str:
    """Format an epoch value (seconds or milliseconds) as local time."""
    if isinstance(value, bool) or value is None:
        return ""
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return ""
    if not isinstance(value, (int, float)) or not math.isfinite(value) or value <= 0:
        return ""
    seconds = value / 1000 if value > MILLISECOND_THRESHOLD else value
    try:
        return datetime.fromtimestamp(seconds).strftime(DATE_FORMAT)
    except (OverflowError, OSError, ValueError):
        return ""


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

Rule = Callable[["FieldValueNormalizer", FieldDescriptor, Any], str]


def _keep_name(normalizer: "FieldValueNormalizer", name: str) -> str:
    if normalizer.filter_images and is_image_name(name):
        return ""
    return name


def _text_scalar(n: "FieldValueNormalizer", field: FieldDescriptor, value: Any) -> str:
    return _keep_name(n, stringify(value))


def _text_item(n: "FieldValueNormalizer", item: Any) -> str:
    if isinstance(item, dict):
        return _keep_name(n, _text_of(item) or stringify(item.get("name")))
    return _keep_name(n, stringify(item))


def _text_list(n: "FieldValueNormalizer", field: FieldDescriptor, value: Any) -> str:
    return _join([_text_item(n, item) for item in value], "\n")


def _text_mapping(n: "FieldValueNormalizer", field: FieldDescriptor, value: Any) -> str:
    if "text" in value or "name" in value:
        return _text_item(n, value)
    return _default_mapping(n, field, value)


def _plain_scalar(n: "FieldValueNormalizer", field: FieldDescriptor, value: Any) -> str:
    return stringify(value)


def _select_item(field: FieldDescriptor, item: Any) -> str:
    if isinstance(item, dict):
        name = stringify(item.get("name"))
        if name:
            return name
        item = item.get("id")
    option_id = stringify(item)
    if not option_id:
        return ""
    resolved = field.option_name(option_id)
    return resolved if resolved else option_id


def _select_single(n: "FieldValueNormalizer", field: FieldDescriptor, value: Any) -> str:
    return _select_item(field, value)


def _select_list(n: "FieldValueNormalizer", field: FieldDescriptor, value: Any) -> str:
    return _join([_select_item(field, item) for item in value])


def _date_scalar(n: "FieldValueNormalizer", field: FieldDescriptor, value: Any) -> str:
    return format_timestamp(value)


def _date_list(n: "FieldValueNormalizer", field: FieldDescriptor, value: Any) -> str:
    return _join([format_timestamp(item) for item in value])


def _person_item(item: Any) -> str:
    if isinstance(item, dict):
        return stringify(item.get("name") or item.get("en_name"))
    return stringify(item)


def _person_mapping(n: "FieldValueNormalizer", field: FieldDescriptor, value: Any) -> str:
    return _person_item(value)


def _person_list(n: "FieldValueNormalizer", field: FieldDescriptor, value: Any) -> str:
    return _join([_person_item(item) for item in value])


def _url_item(item: Any) -> str:
    if isinstance(item, dict):
        link = item.get("link")
        if isinstance(link, str) and link:
            return link
        return _text_of(item) or stringify(item)
    return stringify(item)


def _url_mapping(n: "FieldValueNormalizer", field: FieldDescriptor, value: Any) -> str:
    return _url_item(value)


def _url_list(n: "FieldValueNormalizer", field: FieldDescriptor, value: Any) -> str:
    return _join([_url_item(item) for item in value])


def _attachment_item(n: "FieldValueNormalizer", item: Any) -> str:
    if isinstance(item, dict):
        return _keep_name(n, stringify(item.get("name")))
    return _keep_name(n, stringify(item))


def _attachment_single(n: "FieldValueNormalizer", field: FieldDescriptor, value: Any) -> str:
    return _attachment_item(n, value)


def _attachment_list(n: "FieldValueNormalizer", field: FieldDescriptor, value: Any) -> str:
    return _join([_attachment_item(n, item) for item in value])


def _reference_item(item: Any) -> str:
    if isinstance(item, dict):
        if _is_select_echo(item):
            return ""
        return _text_of(item) or _text_arr_of(item)
    if isinstance(item, str) and _RECORD_ID.match(item):
        return ""
    return stringify(item)


def _reference_scalar(n: "FieldValueNormalizer", field: FieldDescriptor, value: Any) -> str:
    return _reference_item(value)


def _reference_list(n: "FieldValueNormalizer", field: FieldDescriptor, value: Any) -> str:
    return _join([_reference_item(item) for item in value])


def _reference_mapping(n: "FieldValueNormalizer", field: FieldDescriptor, value: Any) -> str:
    return _reference_item(value)


def _default_item(n: "FieldValueNormalizer", item: Any) -> str:
    if isinstance(item, dict):
        if is_attachment(item):
            return _attachment_item(n, item)
        return _default_mapping(n, None, item)
    if isinstance(item, (list, tuple)):
        return _default_list(n, None, item)
    return stringify(item)


def _default_mapping(n: "FieldValueNormalizer", field: FieldDescriptor | None, value: Any) -> str:
    if not value:
        return ""
    text = _text_of(value)
    if text:
        return text
    name = value.get("name")
    if isinstance(name, str) and name:
        return name
    text_arr = _text_arr_of(value)
    if text_arr:
        return text_arr
    if isinstance(value.get("text"), str):
        return ""
    return stringify(value)


def _default_list(n: "FieldValueNormalizer", field: FieldDescriptor | None, value: Any) -> str:
    return _join([_default_item(n, item) for item in value])


_RULES: dict[tuple[str, str], Rule] = {
    (TypeGroup.TEXT, Shape.SCALAR): _text_scalar,
    (TypeGroup.TEXT, Shape.LIST): _text_list,
    (TypeGroup.TEXT, Shape.MAPPING): _text_mapping,
    (TypeGroup.NUMBER, Shape.SCALAR): _plain_scalar,
    (TypeGroup.SELECT, Shape.SCALAR): _select_single,
    (TypeGroup.SELECT, Shape.MAPPING): _select_single,
    (TypeGroup.SELECT, Shape.LIST): _select_list,
    (TypeGroup.DATE, Shape.SCALAR): _date_scalar,
    (TypeGroup.DATE, Shape.LIST): _date_list,
    (TypeGroup.PERSON, Shape.MAPPING): _person_mapping,
    (TypeGroup.PERSON, Shape.LIST): _person_list,
    (TypeGroup.URL, Shape.MAPPING): _url_mapping,
    (TypeGroup.URL, Shape.LIST): _url_list,
    (TypeGroup.ATTACHMENT, Shape.SCALAR): _attachment_single,
    (TypeGroup.ATTACHMENT, Shape.MAPPING): _attachment_single,
    (TypeGroup.ATTACHMENT, Shape.LIST): _attachment_list,
    (TypeGroup.REFERENCE, Shape.SCALAR): _reference_scalar,
    (TypeGroup.REFERENCE, Shape.MAPPING): _reference_mapping,
    (TypeGroup.REFERENCE, Shape.LIST): _reference_list,
}

_DEFAULT_RULES: dict[str, Rule] = {
    Shape.SCALAR: _plain_scalar,
    Shape.MAPPING: _default_mapping,
    Shape.LIST: _default_list,
}

_DATE_MAPPING_KEYS = ("value", "timestamp")


# ---------------------------------------------------------------------------
# Normalizer
# ---------------------------------------------------------------------------

class FieldValueNormalizer:
    """Renders raw cell values with fixed export options."""

    def __init__(self, is_csv_target: bool = False, filter_images: bool = False) -> None:
        self.is_csv_target = is_csv_target
        self.filter_images = filter_images

    def normalize(self, field: FieldDescriptor, raw: Any) -> str:
        """Render one cell. Never raises."""
        try:
            return self._normalize(field, raw)
        except Exception:
            try:
                return stringify(raw)
            except Exception:
                return ""

    def _normalize(self, field: FieldDescriptor, raw: Any) -> str:
        group = type_group(field.type_code)

        if group == TypeGroup.REFERENCE:
            if self.is_csv_target and field.type_code in _CSV_BLANK_TYPES:
                return ""
            if _is_select_echo(raw):
                return ""

        value = raw
        while _is_wrapper(value):
            if group == TypeGroup.REFERENCE and _is_select_echo(value):
                return ""
            value = value["value"]

        if isinstance(value, (list, tuple)) and len(value) == 1 and is_attachment(value[0]):
            return _attachment_item(self, value[0])

        shape = sniff_shape(value)
        if shape == Shape.NONE:
            return ""
        if group == TypeGroup.DATE and shape == Shape.MAPPING:
            for key in _DATE_MAPPING_KEYS:
                if key in value:
                    return format_timestamp(value[key])
            return ""

        rule = _RULES.get((group, shape)) or _DEFAULT_RULES[shape]
        return rule(self, field, value)

    def normalize_row(self, catalog: list[FieldDescriptor], record_fields: dict[str, Any]) -> list[str]:
        """Render one record as a row aligned with the catalog."""
        return [self.normalize(field, extract_field_value(record_fields, field)) for field in catalog]


def normalize(
    field: FieldDescriptor,
    raw: Any,
    is_csv_target: bool = False,
    filter_images: bool = False,
) -> str:
    """Render a raw cell value as an export string."""
    return FieldValueNormalizer(is_csv_target, filter_images).normalize(field, raw)


def extract_field_value(record_fields: dict[str, Any], field: FieldDescriptor) -> Any:
    """Look up a record's raw value for a field.

    Records are keyed by field name; the field ID and a case-insensitive
    name match are tried as fallbacks.
    """
    if not record_fields:
        return None
    if field.name in record_fields:
        return record_fields[field.name]
    if field.id and field.id in record_fields:
        return record_fields[field.id]
    lowered = field.name.lower()
    for key, value in record_fields.items():
        if isinstance(key, str) and key.lower() == lowered:
            return value
    return None
