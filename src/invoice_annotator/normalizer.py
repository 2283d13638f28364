"""Fold a raw, pixel-addressed extraction response into ``InvoiceData``.

The response is best effort: missing or malformed entries are skipped and
the corresponding fields keep their empty defaults, so the output always has
the full canonical shape.
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .annotation_core import (
    InvoiceField,
    LineItemField,
    PartyField,
    ValueLocator,
    normalize_pixel_box,
    serialize_invoice_json,
    set_metadata,
    set_value,
    union_boxes,
)
from .schemas import BoundingBox, FieldMetadata, InvoiceData, LineItem, Table

logger = logging.getLogger("invoice_annotator.normalizer")

LINE_ITEMS_TABLE_LABEL = "line_items"
TABLE_GRID_LABEL = "table_grid"

TOP_LEVEL_LABELS: Tuple[Tuple[ValueLocator, Tuple[str, ...]], ...] = (
    (InvoiceField("invoice_number"), ("invoice_number", "invoice_no")),
    (InvoiceField("invoice_date"), ("invoice_date",)),
    (InvoiceField("total_declared_value"), ("total_declared_value", "total_amount", "invoice_total")),
    (InvoiceField("currency"), ("currency",)),
    (PartyField("shipper", "name"), ("shipper_name", "exporter_name")),
    (PartyField("shipper", "address"), ("shipper_address", "exporter_address")),
    (PartyField("consignee", "name"), ("consignee_name", "importer_name")),
    (PartyField("consignee", "address"), ("consignee_address", "importer_address")),
)

LINE_ITEM_LABELS: Dict[str, str] = {
    "description": "description",
    "quantity": "quantity",
    "qty": "quantity",
    "unit_price": "unit_price",
    "total_price": "total_price",
    "line_total": "total_price",
    "amount": "total_price",
    "country_of_origin": "country_of_origin",
    "origin": "country_of_origin",
    "hs_code": "hs_code",
    "hts_code": "hs_code",
    "tariff_code": "hs_code",
}


@dataclass
class _PageEntry:
    index: int
    width: float
    height: float
    predictions: List[Dict[str, Any]] = field(default_factory=list)
    tables: List[Dict[str, Any]] = field(default_factory=list)


def _to_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_int(value: Any) -> Optional[int]:
    number = _to_float(value)
    if number is None or not number.is_integer():
        return None
    return int(number)


def _label(raw: Dict[str, Any]) -> str:
    return str(raw.get("label") or "").strip().lower()


def _text(raw: Dict[str, Any]) -> str:
    value = raw.get("ocr_text")
    if value is None:
        value = raw.get("text")
    return "" if value is None else str(value).strip()


def _confidence(raw: Dict[str, Any]) -> Optional[float]:
    score = _to_float(raw.get("score", raw.get("confidence")))
    if score is None:
        return None
    return max(0.0, min(1.0, score))


def _dict_list(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _pixel_box(raw: Dict[str, Any], page: _PageEntry) -> Optional[BoundingBox]:
    coords = [_to_float(raw.get(key)) for key in ("xmin", "ymin", "xmax", "ymax")]
    if None in coords:
        bbox = raw.get("bbox")
        if isinstance(bbox, (list, tuple)) and len(bbox) == 4:
            coords = [_to_float(v) for v in bbox]
    if None in coords:
        return None
    xmin, ymin, xmax, ymax = coords
    return normalize_pixel_box(xmin, ymin, xmax, ymax, page.width, page.height, page.index)


def _metadata(raw: Dict[str, Any], page: _PageEntry) -> FieldMetadata:
    return FieldMetadata(bounding_box=_pixel_box(raw, page), confidence=_confidence(raw))


def _page_entries(response: Any, page_sizes: Optional[Mapping[int, Tuple[float, float]]]) -> List[_PageEntry]:
    if isinstance(response, dict):
        raw_pages = response.get("pages")
    else:
        raw_pages = response
    if not isinstance(raw_pages, list):
        logger.debug("Extraction response has no page list")
        return []

    sizes = page_sizes or {}
    entries: List[_PageEntry] = []
    for position, raw_page in enumerate(raw_pages):
        if not isinstance(raw_page, dict):
            logger.debug("Skipping malformed page entry at position %d", position)
            continue
        index = _to_int(raw_page.get("page", raw_page.get("page_index")))
        if index is None or index < 0:
            index = position
        if index in sizes:
            width, height = sizes[index]
        else:
            width, height = raw_page.get("width"), raw_page.get("height")
        width, height = _to_float(width), _to_float(height)
        if not width or not height or width <= 0 or height <= 0:
            logger.debug("Skipping page %d without usable pixel dimensions", index)
            continue
        entries.append(
            _PageEntry(
                index=index,
                width=width,
                height=height,
                predictions=_dict_list(raw_page.get("predictions")),
                tables=_dict_list(raw_page.get("tables")),
            )
        )
    entries.sort(key=lambda entry: entry.index)
    return entries


def _apply_top_level_fields(data: InvoiceData, pages: Sequence[_PageEntry]) -> None:
    for locator, labels in TOP_LEVEL_LABELS:
        match = _first_prediction(pages, labels)
        if match is None:
            continue
        page, prediction = match
        set_value(data, locator, _text(prediction))
        set_metadata(data, locator, _metadata(prediction, page))


def _first_prediction(pages: Sequence[_PageEntry], labels: Tuple[str, ...]) -> Optional[Tuple[_PageEntry, Dict[str, Any]]]:
    for page in pages:
        for prediction in page.predictions:
            if _label(prediction) in labels:
                return page, prediction
    return None


def _line_items_from_table(table: Dict[str, Any], page: _PageEntry) -> List[LineItem]:
    rows: Dict[int, List[Dict[str, Any]]] = {}
    for cell in _dict_list(table.get("cells")):
        row = _to_int(cell.get("row"))
        if row is None:
            logger.debug("Skipping line item cell without row index on page %d", page.index)
            continue
        rows.setdefault(row, []).append(cell)

    items: List[LineItem] = []
    for row_index in sorted(rows):
        cells = sorted(rows[row_index], key=lambda c: _to_int(c.get("col")) or 0)
        scratch = InvoiceData(line_items=[LineItem()])
        seen: set[str] = set()
        boxes: List[BoundingBox] = []
        for cell in cells:
            name = LINE_ITEM_LABELS.get(_label(cell))
            if name is None or name in seen:
                continue
            seen.add(name)
            locator = LineItemField(0, name)
            meta = _metadata(cell, page)
            set_value(scratch, locator, _text(cell))
            set_metadata(scratch, locator, meta)
            if meta.bounding_box is not None:
                boxes.append(meta.bounding_box)
        if not seen:
            logger.debug("Skipping row %d on page %d with no recognised cells", row_index, page.index)
            continue
        item = scratch.line_items[0]
        item.bounding_box = union_boxes(boxes)
        items.append(item)
    return items


def _table_from_grid(prediction: Dict[str, Any], page: _PageEntry) -> Optional[Table]:
    box = _pixel_box(prediction, page)
    if box is None:
        logger.debug("Skipping table grid without a box on page %d", page.index)
        return None
    return Table(
        bounding_box=box,
        rows=_scaled_lines(prediction.get("rows"), page.height),
        columns=_scaled_lines(prediction.get("columns"), page.width),
    )


def _scaled_lines(values: Any, extent: float) -> List[float]:
    if not isinstance(values, list):
        return []
    numbers = (_to_float(v) for v in values)
    return sorted(v / extent for v in numbers if v is not None)


def normalize_extraction(
    response: Any,
    page_sizes: Optional[Mapping[int, Tuple[float, float]]] = None,
) -> InvoiceData:
    """Build canonical ``InvoiceData`` from a raw machine-extraction response.

    ``page_sizes`` maps zero-based page index to ``(width, height)`` in pixels and
    overrides any dimensions carried by the response itself.
    """
    pages = _page_entries(response, page_sizes)
    data = InvoiceData()
    _apply_top_level_fields(data, pages)

    for page in pages:
        for table in page.tables:
            if _label(table) != LINE_ITEMS_TABLE_LABEL:
                continue
            data.line_items.extend(_line_items_from_table(table, page))

    for page in pages:
        for prediction in page.predictions:
            if _label(prediction) != TABLE_GRID_LABEL:
                continue
            table = _table_from_grid(prediction, page)
            if table is not None:
                data.tables.append(table)

    logger.debug(
        "Normalized %d page(s): %d line item(s), %d table(s)",
        len(pages),
        len(data.line_items),
        len(data.tables),
    )
    return data


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Normalize a raw extraction response into invoice JSON.")
    parser.add_argument("response", help="Path to the raw extraction response JSON.")
    parser.add_argument("--templates", default=None, help="Vendor template store (default: from config).")
    parser.add_argument("--template-vendor", default=None, help="Apply the saved template for this vendor.")
    parser.add_argument("--config", default=None, help="Path to invoice_annotator.yaml.")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    from .config import configure_logging, load_app_config, load_default_config
    from .reconciliation import find_template, reconcile
    from .template_store import TemplateStore

    args = parse_args(argv)
    try:
        cfg = load_app_config(args.config) if args.config else load_default_config()
    except (FileNotFoundError, ValueError) as exc:
        print(str(exc), file=sys.stderr)
        return 1
    configure_logging(cfg.logging)

    response_path = Path(args.response)
    try:
        response = json.loads(response_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        print(f"Could not read extraction response {response_path}: {exc}", file=sys.stderr)
        return 1

    store = TemplateStore(Path(args.templates) if args.templates else cfg.templates.store_path)
    templates = store.list_templates()
    preselected = None
    if args.template_vendor:
        preselected = find_template(templates, args.template_vendor)
        if preselected is None:
            print(f"No saved template for vendor {args.template_vendor!r}", file=sys.stderr)
            return 1

    result = reconcile(normalize_extraction(response), templates, preselected=preselected, settings=cfg.templates)
    if result.template_applied:
        logger.info("Applied vendor template %r", result.template_applied)
    print(serialize_invoice_json(result.data))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
