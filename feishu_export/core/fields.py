"""Bitable field schemas and the export column catalog."""

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any


class FieldType:
    """Bitable field type codes."""

    TEXT = 1
    NUMBER = 2
    SINGLE_SELECT = 3
    MULTI_SELECT = 4
    DATE = 5
    CHECKBOX = 7
    PERSON = 11
    PHONE = 13
    URL = 15
    ATTACHMENT = 17
    ONE_WAY_LINK = 18
    LOOKUP = 19
    FORMULA = 20
    TWO_WAY_LINK = 21
    LOCATION = 22
    CREATED_TIME = 1001
    MODIFIED_TIME = 1002
    CREATED_BY = 1003
    MODIFIED_BY = 1004
    AUTO_NUMBER = 1005


# Audit columns the vendor's own export leaves out
SYSTEM_FIELD_TYPES = frozenset({
    FieldType.CREATED_TIME,
    FieldType.MODIFIED_TIME,
    FieldType.CREATED_BY,
    FieldType.MODIFIED_BY,
})

SELECT_FIELD_TYPES = frozenset({FieldType.SINGLE_SELECT, FieldType.MULTI_SELECT})


@dataclass(frozen=True)
class SelectOption:
    """A choice of a single or multi select field."""

    id: str
    name: str


@dataclass(frozen=True)
class FieldDescriptor:
    """Schema entry for one table column."""

    id: str
    name: str
    type_code: int
    options: tuple[SelectOption, ...] | None = None

    @property
    def is_system(self) -> bool:
        return self.type_code in SYSTEM_FIELD_TYPES

    @property
    def is_select(self) -> bool:
        return self.type_code in SELECT_FIELD_TYPES

    def option_name(self, option_id: str) -> str | None:
        """Resolve an option ID to its display name."""
        for option in self.options or ():
            if option.id == option_id:
                return option.name
        return None

    def option_names(self) -> list[str]:
        """Display names of all options, skipping blanks."""
        return [o.name for o in self.options or () if o.name]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FieldDescriptor":
        """Create from a field item of the fields list endpoint."""
        raw_options = ((data.get("property") or {}).get("options")) or None
        options = None
        if raw_options:
            options = tuple(
                SelectOption(id=str(o.get("id", "")), name=str(o.get("name", "")))
                for o in raw_options
                if isinstance(o, dict)
            )
        try:
            type_code = int(data.get("type") or 0)
        except (TypeError, ValueError):
            type_code = 0
        return cls(
            id=str(data.get("field_id", "")),
            name=str(data.get("field_name", "")),
            type_code=type_code,
            options=options,
        )


def build_catalog(
    all_fields: Iterable[FieldDescriptor],
    view_visible_keys: Iterable[str] | None = None,
    include_system_fields: bool = False,
) -> list[FieldDescriptor]:
    """Build the ordered list of columns to export.

    Args:
        all_fields: Field schemas in remote order
        view_visible_keys: Optional field names or IDs known to be visible
            in the view; fields matching neither are dropped
        include_system_fields: Keep created/modified time and user columns

    Returns:
        Descriptors in remote order, first occurrence of each ID only
    """
    visible = set(view_visible_keys) if view_visible_keys is not None else None
    catalog: list[FieldDescriptor] = []
    seen_ids: set[str] = set()
    for descriptor in all_fields:
        if descriptor.is_system and not include_system_fields:
            continue
        if visible is not None and descriptor.name not in visible and descriptor.id not in visible:
            continue
        if descriptor.id and descriptor.id in seen_ids:
            continue
        seen_ids.add(descriptor.id)
        catalog.append(descriptor)
    return catalog


def observed_field_keys(records: Iterable[dict[str, Any]]) -> set[str]:
    """Collect every field key present on a page of records."""
    keys: set[str] = set()
    for record in records:
        keys.update((record.get("fields") or {}).keys())
    return keys


def restrict_to_observed(catalog: list[FieldDescriptor], records: list[dict[str, Any]]) -> list[FieldDescriptor]:
    """Narrow a catalog to the fields seen on the first page of a view.

    The records endpoint omits fields hidden in the view, so keys observed
    on the first page approximate the view's visible columns. A field that
    is visible but empty on every first-page record is dropped too. An
    empty page leaves the catalog unchanged.
    """
    if not records:
        return catalog
    return build_catalog(catalog, observed_field_keys(records), include_system_fields=True)
