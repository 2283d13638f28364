from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Sequence

from .annotation_core import (
    LineItemField,
    ValueLocator,
    get_metadata,
    parse_locator_path,
    set_metadata,
    value_locators,
)
from .config import TemplateSettings
from .schemas import FieldMetadata, InvoiceData, VendorTemplate


@dataclass
class ReconciliationResult:
    data: InvoiceData
    template_applied: Optional[str] = None


def boost_confidence(data: InvoiceData, confidence: float = 0.99) -> InvoiceData:
    """Return a copy of ``data`` with every field's confidence set to ``confidence``."""
    boosted = data.model_copy(deep=True)
    for locator in value_locators(boosted):
        meta = get_metadata(boosted, locator)
        if meta is None:
            set_metadata(boosted, locator, FieldMetadata(confidence=confidence))
        else:
            meta.confidence = confidence
    return boosted


def _expand_patterns(data: InvoiceData, patterns: Iterable[str]) -> Iterator[ValueLocator]:
    for pattern in patterns:
        if "[*]" in pattern:
            for index in range(len(data.line_items)):
                yield parse_locator_path(pattern.replace("[*]", f"[{index}]"))
            continue
        locator = parse_locator_path(pattern)
        if isinstance(locator, LineItemField) and locator.index >= len(data.line_items):
            continue
        yield locator


def weaken_confidence(data: InvoiceData, field_patterns: Sequence[str], cap: float) -> InvoiceData:
    """Cap the confidence of a fixed set of fields; stands in for unguided accuracy."""
    weakened = data.model_copy(deep=True)
    for locator in _expand_patterns(weakened, field_patterns):
        meta = get_metadata(weakened, locator)
        if meta is not None and meta.confidence is not None:
            meta.confidence = min(meta.confidence, cap)
    return weakened


def _vendor_key(name: Optional[str]) -> str:
    return str(name or "").strip().casefold()


def find_template(templates: Iterable[VendorTemplate], vendor_name: Optional[str]) -> Optional[VendorTemplate]:
    key = _vendor_key(vendor_name)
    if not key:
        return None
    for template in templates:
        if _vendor_key(template.vendor_name) == key:
            return template
    return None


def reconcile(
    extracted: InvoiceData,
    templates: List[VendorTemplate],
    preselected: Optional[VendorTemplate] = None,
    settings: Optional[TemplateSettings] = None,
) -> ReconciliationResult:
    """Pick the data to surface: preselected template, then vendor match, then raw."""
    settings = settings or TemplateSettings()
    template = preselected or find_template(templates, extracted.shipper.name)
    if template is not None:
        return ReconciliationResult(
            data=boost_confidence(template.invoice_data, settings.applied_confidence),
            template_applied=template.vendor_name,
        )
    return ReconciliationResult(
        data=weaken_confidence(extracted, settings.weakened_fields, settings.weakened_confidence),
        template_applied=None,
    )


__all__ = [
    "ReconciliationResult",
    "boost_confidence",
    "find_template",
    "reconcile",
    "weaken_confidence",
]
