"""Core data helpers for the invoice annotator.

This module intentionally has no Qt dependency so it can be unit tested.

Every annotatable value in an ``InvoiceData`` tree is addressed by a field
locator rather than a dotted string path. Locators are small frozen
dataclasses resolved by one dispatch function, so the overlay, the gesture
controllers and the session read and write boxes without knowing the schema.
"""
from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, Optional, Tuple, Union

from pydantic.alias_generators import to_camel

from .schemas import (
    INVOICE_FIELD_NAMES,
    LINE_ITEM_FIELD_NAMES,
    NUMERIC_FIELD_NAMES,
    PARTY_FIELD_NAMES,
    PARTY_NAMES,
    BoundingBox,
    FieldMetadata,
    InvoiceData,
    LineItem,
    Table,
)


@dataclass(frozen=True)
class InvoiceField:
    name: str

    def __post_init__(self) -> None:
        if self.name not in INVOICE_FIELD_NAMES:
            raise ValueError(f"Unknown invoice field: {self.name!r}")


@dataclass(frozen=True)
class PartyField:
    party: str
    name: str

    def __post_init__(self) -> None:
        if self.party not in PARTY_NAMES:
            raise ValueError(f"Unknown party: {self.party!r}")
        if self.name not in PARTY_FIELD_NAMES:
            raise ValueError(f"Unknown party field: {self.name!r}")


@dataclass(frozen=True)
class LineItemField:
    index: int
    name: str

    def __post_init__(self) -> None:
        if self.index < 0:
            raise ValueError("Line item index must be >= 0.")
        if self.name not in LINE_ITEM_FIELD_NAMES:
            raise ValueError(f"Unknown line item field: {self.name!r}")


@dataclass(frozen=True)
class LineItemRow:
    index: int

    def __post_init__(self) -> None:
        if self.index < 0:
            raise ValueError("Line item index must be >= 0.")


@dataclass(frozen=True)
class TableRegion:
    index: int

    def __post_init__(self) -> None:
        if self.index < 0:
            raise ValueError("Table index must be >= 0.")


ValueLocator = Union[InvoiceField, PartyField, LineItemField]
FieldLocator = Union[InvoiceField, PartyField, LineItemField, LineItemRow, TableRegion]

_CAMEL_TO_SNAKE: Dict[str, str] = {
    to_camel(name): name for name in (*INVOICE_FIELD_NAMES, *PARTY_FIELD_NAMES, *LINE_ITEM_FIELD_NAMES)
}
_INVOICE_PATH_RE = re.compile(r"^fields\.(\w+)\.boundingBox$")
_PARTY_PATH_RE = re.compile(r"^(shipper|consignee)\.fields\.(\w+)\.boundingBox$")
_LINE_FIELD_PATH_RE = re.compile(r"^lineItems\[(\d+)\]\.fields\.(\w+)\.boundingBox$")
_LINE_ROW_PATH_RE = re.compile(r"^lineItems\[(\d+)\]\.boundingBox$")
_TABLE_PATH_RE = re.compile(r"^tables\[(\d+)\]\.boundingBox$")
_AMOUNT_STRIP_RE = re.compile(r"[,\s$€£¥]")


def locator_path(locator: FieldLocator) -> str:
    if isinstance(locator, InvoiceField):
        return f"fields.{to_camel(locator.name)}.boundingBox"
    if isinstance(locator, PartyField):
        return f"{locator.party}.fields.{to_camel(locator.name)}.boundingBox"
    if isinstance(locator, LineItemField):
        return f"lineItems[{locator.index}].fields.{to_camel(locator.name)}.boundingBox"
    if isinstance(locator, LineItemRow):
        return f"lineItems[{locator.index}].boundingBox"
    if isinstance(locator, TableRegion):
        return f"tables[{locator.index}].boundingBox"
    raise TypeError(f"Not a field locator: {locator!r}")


def _snake_name(camel: str) -> str:
    try:
        return _CAMEL_TO_SNAKE[camel]
    except KeyError:
        raise ValueError(f"Unknown field name in path: {camel!r}") from None


def parse_locator_path(path: str) -> FieldLocator:
    text = str(path or "").strip()
    match = _INVOICE_PATH_RE.match(text)
    if match:
        return InvoiceField(_snake_name(match.group(1)))
    match = _PARTY_PATH_RE.match(text)
    if match:
        return PartyField(match.group(1), _snake_name(match.group(2)))
    match = _LINE_FIELD_PATH_RE.match(text)
    if match:
        return LineItemField(int(match.group(1)), _snake_name(match.group(2)))
    match = _LINE_ROW_PATH_RE.match(text)
    if match:
        return LineItemRow(int(match.group(1)))
    match = _TABLE_PATH_RE.match(text)
    if match:
        return TableRegion(int(match.group(1)))
    raise ValueError(f"Unrecognized field path: {path!r}")


def _line_item(data: InvoiceData, index: int) -> LineItem:
    if index >= len(data.line_items):
        raise IndexError(f"Line item {index} does not exist ({len(data.line_items)} items).")
    return data.line_items[index]


def _table(data: InvoiceData, index: int) -> Table:
    if index >= len(data.tables):
        raise IndexError(f"Table {index} does not exist ({len(data.tables)} tables).")
    return data.tables[index]


def _record_for(data: InvoiceData, locator: ValueLocator) -> Any:
    if isinstance(locator, InvoiceField):
        return data
    if isinstance(locator, PartyField):
        return getattr(data, locator.party)
    if isinstance(locator, LineItemField):
        return _line_item(data, locator.index)
    raise TypeError(f"Locator does not address a scalar field: {locator!r}")


def get_metadata(data: InvoiceData, locator: ValueLocator) -> Optional[FieldMetadata]:
    record = _record_for(data, locator)
    return getattr(record.fields, locator.name)


def get_box(data: InvoiceData, locator: FieldLocator) -> Optional[BoundingBox]:
    if isinstance(locator, LineItemRow):
        return _line_item(data, locator.index).bounding_box
    if isinstance(locator, TableRegion):
        return _table(data, locator.index).bounding_box
    meta = get_metadata(data, locator)
    return meta.bounding_box if meta is not None else None


def set_box(data: InvoiceData, locator: FieldLocator, box: Optional[BoundingBox]) -> None:
    """Replace the box addressed by ``locator``, creating metadata if needed."""
    if isinstance(locator, LineItemRow):
        _line_item(data, locator.index).bounding_box = box
        return
    if isinstance(locator, TableRegion):
        if box is None:
            raise ValueError("A table region cannot be cleared.")
        _table(data, locator.index).bounding_box = box
        return
    record = _record_for(data, locator)
    meta = getattr(record.fields, locator.name)
    if meta is None:
        if box is None:
            return
        setattr(record.fields, locator.name, FieldMetadata(bounding_box=box))
        return
    meta.bounding_box = box


def set_metadata(data: InvoiceData, locator: ValueLocator, meta: Optional[FieldMetadata]) -> None:
    record = _record_for(data, locator)
    setattr(record.fields, locator.name, meta)


def get_confidence(data: InvoiceData, locator: ValueLocator) -> Optional[float]:
    meta = get_metadata(data, locator)
    return meta.confidence if meta is not None else None


def get_value(data: InvoiceData, locator: ValueLocator) -> Any:
    return getattr(_record_for(data, locator), locator.name)


def set_value(data: InvoiceData, locator: ValueLocator, value: Any) -> None:
    record = _record_for(data, locator)
    if locator.name in NUMERIC_FIELD_NAMES:
        setattr(record, locator.name, parse_amount(value))
    else:
        setattr(record, locator.name, "" if value is None else str(value))


def value_locators(data: InvoiceData) -> Iterator[ValueLocator]:
    """Yield every scalar field of ``data`` in display order."""
    for name in INVOICE_FIELD_NAMES:
        yield InvoiceField(name)
    for party in PARTY_NAMES:
        for name in PARTY_FIELD_NAMES:
            yield PartyField(party, name)
    for index in range(len(data.line_items)):
        for name in LINE_ITEM_FIELD_NAMES:
            yield LineItemField(index, name)


def iter_boxes(data: InvoiceData) -> Iterator[Tuple[FieldLocator, BoundingBox]]:
    for name in INVOICE_FIELD_NAMES:
        meta = getattr(data.fields, name)
        if meta is not None and meta.bounding_box is not None:
            yield InvoiceField(name), meta.bounding_box

    for party_name in PARTY_NAMES:
        party = getattr(data, party_name)
        for name in PARTY_FIELD_NAMES:
            meta = getattr(party.fields, name)
            if meta is not None and meta.bounding_box is not None:
                yield PartyField(party_name, name), meta.bounding_box

    for index, item in enumerate(data.line_items):
        if item.bounding_box is not None:
            yield LineItemRow(index), item.bounding_box
        for name in LINE_ITEM_FIELD_NAMES:
            meta = getattr(item.fields, name)
            if meta is not None and meta.bounding_box is not None:
                yield LineItemField(index, name), meta.bounding_box

    for index, table in enumerate(data.tables):
        yield TableRegion(index), table.bounding_box


def normalize_pixel_box(
    xmin: float,
    ymin: float,
    xmax: float,
    ymax: float,
    page_width: float,
    page_height: float,
    page_index: int,
) -> BoundingBox:
    """Convert a pixel rectangle on a zero-indexed page into a canonical box."""
    if page_width <= 0 or page_height <= 0:
        raise ValueError("Page dimensions must be positive.")
    return BoundingBox(
        page=int(page_index) + 1,
        x1=float(xmin) / page_width,
        y1=float(ymin) / page_height,
        x2=float(xmax) / page_width,
        y2=float(ymax) / page_height,
    )


def denormalize_box(box: BoundingBox, page_width: float, page_height: float) -> Tuple[float, float, float, float]:
    return (
        box.x1 * page_width,
        box.y1 * page_height,
        box.x2 * page_width,
        box.y2 * page_height,
    )


def union_boxes(boxes: Iterable[BoundingBox]) -> Optional[BoundingBox]:
    result: Optional[BoundingBox] = None
    for box in boxes:
        box = box.ordered()
        if result is None:
            result = box
            continue
        result = BoundingBox(
            page=result.page,
            x1=min(result.x1, box.x1),
            y1=min(result.y1, box.y1),
            x2=max(result.x2, box.x2),
            y2=max(result.y2, box.y2),
        )
    return result


def parse_amount(value: Any) -> float:
    """Parse an OCR'd amount, stripping thousands separators. Returns 0.0 on failure."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = _AMOUNT_STRIP_RE.sub("", str(value))
        try:
            number = float(text)
        except ValueError:
            return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def load_invoice_data(payload: Any) -> InvoiceData:
    if isinstance(payload, InvoiceData):
        return payload.model_copy(deep=True)
    return InvoiceData.model_validate(payload or {})


def serialize_invoice_json(data: InvoiceData) -> str:
    return json.dumps(data.model_dump(mode="json", by_alias=True), indent=2, ensure_ascii=False)


__all__ = [
    "FieldLocator",
    "InvoiceField",
    "LineItemField",
    "LineItemRow",
    "PartyField",
    "TableRegion",
    "ValueLocator",
    "denormalize_box",
    "get_box",
    "get_confidence",
    "get_metadata",
    "get_value",
    "iter_boxes",
    "load_invoice_data",
    "locator_path",
    "normalize_pixel_box",
    "parse_amount",
    "parse_locator_path",
    "serialize_invoice_json",
    "set_box",
    "set_metadata",
    "set_value",
    "union_boxes",
    "value_locators",
]
