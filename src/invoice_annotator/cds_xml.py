"""Customs Declaration Service (WCO DEC-DMS) XML export of reviewed invoice data."""
from __future__ import annotations

import argparse
import json
import sys
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .annotation_core import load_invoice_data
from .schemas import InvoiceData, Party

CDS_NAMESPACE = "urn:wco:datamodel:WCO:DEC-DMS:2"
DEFAULT_CURRENCY = "USD"


def _format_number(value: float) -> str:
    number = float(value or 0)
    if number.is_integer():
        return str(int(number))
    return repr(number)


def _text_child(parent: ET.Element, tag: str, text: str) -> ET.Element:
    child = ET.SubElement(parent, tag)
    child.text = text
    return child


def _party(parent: ET.Element, tag: str, party: Party) -> None:
    node = ET.SubElement(parent, tag)
    _text_child(node, "Name", party.name)
    address = ET.SubElement(node, "Address")
    _text_child(address, "Line", party.address)


def export_cds_xml(data: InvoiceData) -> str:
    root = ET.Element("Declaration", xmlns=CDS_NAMESPACE)
    _text_child(root, "Function", "9")
    _text_child(root, "FunctionalReferenceID", data.invoice_number)
    _text_child(root, "TypeCode", "IM")

    shipment = ET.SubElement(root, "GoodsShipment")
    _party(shipment, "Exporter", data.shipper)
    _party(shipment, "Importer", data.consignee)

    currency = data.currency or DEFAULT_CURRENCY
    for sequence, item in enumerate(data.line_items, start=1):
        goods = ET.SubElement(shipment, "GovernmentAgencyGoodsItem")
        _text_child(goods, "SequenceNumeric", str(sequence))
        commodity = ET.SubElement(goods, "Commodity")
        _text_child(commodity, "Description", item.description)
        classification = ET.SubElement(commodity, "Classification")
        _text_child(classification, "ID", item.hs_code)
        origin = ET.SubElement(goods, "Origin")
        _text_child(origin, "CountryCode", item.country_of_origin)
        invoice_line = ET.SubElement(goods, "InvoiceLine")
        amount = _text_child(invoice_line, "ItemChargeAmount", _format_number(item.total_price))
        amount.set("currencyID", currency)
        measure = ET.SubElement(goods, "GoodsMeasure")
        _text_child(measure, "TariffQuantity", _format_number(item.quantity))
        for code in item.cds_overrides:
            info = ET.SubElement(goods, "AdditionalInformation")
            _text_child(info, "StatementCode", code)

    ET.indent(root, space="  ")
    body = ET.tostring(root, encoding="unicode")
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + body + "\n"


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Export reviewed invoice JSON as CDS declaration XML.")
    parser.add_argument("data", help="Path to invoice JSON.")
    parser.add_argument("-o", "--output", default=None, help="Write XML here instead of stdout.")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    try:
        payload = json.loads(Path(args.data).read_text(encoding="utf-8"))
        data = load_invoice_data(payload)
    except (OSError, ValueError, ValidationError) as exc:
        print(str(exc), file=sys.stderr)
        return 1

    xml_text = export_cds_xml(data)
    if args.output:
        Path(args.output).write_text(xml_text, encoding="utf-8")
    else:
        print(xml_text, end="")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
