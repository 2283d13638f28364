from __future__ import annotations

import json
import logging

import pytest

from invoice_annotator.schemas import InvoiceData
from invoice_annotator.template_store import TemplateStore


def test_missing_store_lists_nothing(tmp_path) -> None:
    assert TemplateStore(tmp_path / "none.json").list_templates() == []


def test_save_creates_then_updates_by_vendor_name(tmp_path) -> None:
    store = TemplateStore(tmp_path / "data" / "templates.json")
    first = store.save_template("Acme Exports", InvoiceData(invoice_number="A-1"))
    second = store.save_template("  acme exports", InvoiceData(invoice_number="A-2"))
    other = store.save_template("Globex", InvoiceData(invoice_number="G-1"))

    templates = store.list_templates()
    assert [t.id for t in templates] == [first.id, other.id]
    assert second.id == first.id
    assert templates[0].vendor_name == "acme exports"
    assert templates[0].invoice_data.invoice_number == "A-2"
    assert first.id != other.id

    payload = json.loads((tmp_path / "data" / "templates.json").read_text(encoding="utf-8"))
    assert payload[0]["vendorName"] == "acme exports"
    assert payload[0]["invoiceData"]["invoiceNumber"] == "A-2"


def test_save_requires_vendor_name(tmp_path) -> None:
    with pytest.raises(ValueError):
        TemplateStore(tmp_path / "t.json").save_template("   ", InvoiceData())


def test_saved_data_is_copied(tmp_path) -> None:
    store = TemplateStore(tmp_path / "t.json")
    data = InvoiceData(invoice_number="A-1")
    template = store.save_template("Acme", data)
    data.invoice_number = "changed"
    assert store.get_template(template.id).invoice_data.invoice_number == "A-1"


def test_update_and_delete_by_id(tmp_path, caplog) -> None:
    store = TemplateStore(tmp_path / "t.json")
    template = store.save_template("Acme", InvoiceData(invoice_number="A-1"))

    updated = store.update_template(template.id, InvoiceData(invoice_number="A-9"))
    assert updated.invoice_data.invoice_number == "A-9"
    assert store.get_template(template.id).invoice_data.invoice_number == "A-9"

    with caplog.at_level(logging.WARNING, logger="invoice_annotator.template_store"):
        assert store.update_template("missing", InvoiceData()) is None
    assert "missing" in caplog.text

    assert store.delete_template("missing") is False
    assert store.delete_template(template.id) is True
    assert store.list_templates() == []


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        json.dumps({"id": "x"}),
        json.dumps([{"id": "x", "vendorName": "Acme"}]),
    ],
)
def test_corrupt_store_degrades_to_empty(tmp_path, caplog, content) -> None:
    path = tmp_path / "t.json"
    path.write_text(content, encoding="utf-8")
    store = TemplateStore(path)

    with caplog.at_level(logging.WARNING, logger="invoice_annotator.template_store"):
        assert store.list_templates() == []
    assert "Ignoring unreadable template store" in caplog.text

    store.save_template("Acme", InvoiceData())
    assert [t.vendor_name for t in store.list_templates()] == ["Acme"]
