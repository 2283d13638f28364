from __future__ import annotations

import json
import logging
import secrets
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from .schemas import InvoiceData, VendorTemplate

logger = logging.getLogger("invoice_annotator.template_store")


def _new_template_id() -> str:
    return secrets.token_hex(8)


class TemplateStore:
    """Vendor templates persisted as one JSON list; last write wins."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path).expanduser()

    def list_templates(self) -> List[VendorTemplate]:
        if not self.path.is_file():
            return []
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(payload, list):
                raise ValueError("Template store must contain a JSON list.")
            return [VendorTemplate.model_validate(item) for item in payload]
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("Ignoring unreadable template store %s: %s", self.path, exc)
            return []

    def _write(self, templates: List[VendorTemplate]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = [t.model_dump(mode="json", by_alias=True) for t in templates]
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp_path.replace(self.path)

    def get_template(self, template_id: str) -> Optional[VendorTemplate]:
        for template in self.list_templates():
            if template.id == template_id:
                return template
        return None

    def save_template(self, vendor_name: str, invoice_data: InvoiceData) -> VendorTemplate:
        vendor_name = str(vendor_name or "").strip()
        if not vendor_name:
            raise ValueError("Vendor name is required to save a template.")
        templates = self.list_templates()
        key = vendor_name.casefold()
        for index, existing in enumerate(templates):
            if existing.vendor_name.strip().casefold() == key:
                updated = VendorTemplate(
                    id=existing.id,
                    vendor_name=vendor_name,
                    invoice_data=invoice_data.model_copy(deep=True),
                )
                templates[index] = updated
                self._write(templates)
                return updated

        created = VendorTemplate(
            id=_new_template_id(),
            vendor_name=vendor_name,
            invoice_data=invoice_data.model_copy(deep=True),
        )
        templates.append(created)
        self._write(templates)
        return created

    def update_template(self, template_id: str, invoice_data: InvoiceData) -> Optional[VendorTemplate]:
        templates = self.list_templates()
        for template in templates:
            if template.id == template_id:
                template.invoice_data = invoice_data.model_copy(deep=True)
                self._write(templates)
                return template
        logger.warning("Attempted to update a template that does not exist: %s", template_id)
        return None

    def delete_template(self, template_id: str) -> bool:
        templates = self.list_templates()
        remaining = [t for t in templates if t.id != template_id]
        if len(remaining) == len(templates):
            return False
        self._write(remaining)
        return True


__all__ = ["TemplateStore"]
