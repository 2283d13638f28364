from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

INVOICE_FIELD_NAMES = ("invoice_number", "invoice_date", "total_declared_value", "currency")
PARTY_FIELD_NAMES = ("name", "address")
PARTY_NAMES = ("shipper", "consignee")
LINE_ITEM_FIELD_NAMES = (
    "description",
    "quantity",
    "unit_price",
    "total_price",
    "country_of_origin",
    "hs_code",
)
NUMERIC_FIELD_NAMES = frozenset({"quantity", "unit_price", "total_price", "total_declared_value"})


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BoundingBox(_CamelModel):
    """Page-anchored rectangle in normalized [0, 1] page coordinates.

    Coordinates are deliberately not range-checked: a box dragged past the
    page edge keeps its out-of-range values.
    """

    page: int = Field(ge=1)
    x1: float
    y1: float
    x2: float
    y2: float

    def is_ordered(self) -> bool:
        return self.x1 <= self.x2 and self.y1 <= self.y2

    def ordered(self) -> "BoundingBox":
        return BoundingBox(
            page=self.page,
            x1=min(self.x1, self.x2),
            y1=min(self.y1, self.y2),
            x2=max(self.x1, self.x2),
            y2=max(self.y1, self.y2),
        )

    @property
    def width(self) -> float:
        return abs(self.x2 - self.x1)

    @property
    def height(self) -> float:
        return abs(self.y2 - self.y1)


class FieldMetadata(_CamelModel):
    bounding_box: Optional[BoundingBox] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class InvoiceFields(_CamelModel):
    invoice_number: Optional[FieldMetadata] = None
    invoice_date: Optional[FieldMetadata] = None
    total_declared_value: Optional[FieldMetadata] = None
    currency: Optional[FieldMetadata] = None


class PartyFields(_CamelModel):
    name: Optional[FieldMetadata] = None
    address: Optional[FieldMetadata] = None


class LineItemFields(_CamelModel):
    description: Optional[FieldMetadata] = None
    quantity: Optional[FieldMetadata] = None
    unit_price: Optional[FieldMetadata] = None
    total_price: Optional[FieldMetadata] = None
    country_of_origin: Optional[FieldMetadata] = None
    hs_code: Optional[FieldMetadata] = None


class Party(_CamelModel):
    name: str = ""
    address: str = ""
    fields: PartyFields = Field(default_factory=PartyFields)


class LineItem(_CamelModel):
    description: str = ""
    quantity: float = 0.0
    unit_price: float = 0.0
    total_price: float = 0.0
    country_of_origin: str = ""
    hs_code: str = ""
    cds_overrides: List[str] = Field(default_factory=list)
    bounding_box: Optional[BoundingBox] = None
    fields: LineItemFields = Field(default_factory=LineItemFields)


class Table(_CamelModel):
    bounding_box: BoundingBox
    rows: List[float] = Field(default_factory=list)
    columns: List[float] = Field(default_factory=list)


class InvoiceData(_CamelModel):
    invoice_number: str = ""
    invoice_date: str = ""
    shipper: Party = Field(default_factory=Party)
    consignee: Party = Field(default_factory=Party)
    total_declared_value: float = 0.0
    currency: str = ""
    line_items: List[LineItem] = Field(default_factory=list)
    tables: List[Table] = Field(default_factory=list)
    fields: InvoiceFields = Field(default_factory=InvoiceFields)


class VendorTemplate(_CamelModel):
    id: str
    vendor_name: str
    invoice_data: InvoiceData


__all__ = [
    "BoundingBox",
    "FieldMetadata",
    "INVOICE_FIELD_NAMES",
    "InvoiceData",
    "InvoiceFields",
    "LINE_ITEM_FIELD_NAMES",
    "LineItem",
    "LineItemFields",
    "NUMERIC_FIELD_NAMES",
    "PARTY_FIELD_NAMES",
    "PARTY_NAMES",
    "Party",
    "PartyFields",
    "Table",
    "VendorTemplate",
]
