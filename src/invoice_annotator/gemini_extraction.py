from __future__ import annotations

import ast
import io
import json
import logging
import os
import re
from typing import Any, Optional, Sequence

try:  # pragma: no cover - import presence depends on runtime environment
    from google import genai
    from google.genai import types
except Exception:  # pragma: no cover
    genai = None
    types = None

from .config import ExtractionSettings
from .errors import ExtractionError
from .normalizer import LINE_ITEM_LABELS, LINE_ITEMS_TABLE_LABEL, TABLE_GRID_LABEL, TOP_LEVEL_LABELS
from .rendering import PageRaster
from .schemas import VendorTemplate

logger = logging.getLogger("invoice_annotator.gemini_extraction")

_PAGE_PROMPT = """You are reading page {page_number} of a commercial invoice.
The page image is {width} x {height} pixels. Report every coordinate in pixels of this image.

Return ONLY a JSON object of the form:
{{
  "predictions": [
    {{"label": "<field label>", "text": "<value as printed>", "score": <0..1>,
      "xmin": <px>, "ymin": <px>, "xmax": <px>, "ymax": <px>}}
  ],
  "tables": [
    {{"label": "{line_items_label}", "cells": [
      {{"row": <int>, "col": <int>, "label": "<column label>", "text": "<cell text>", "score": <0..1>,
        "xmin": <px>, "ymin": <px>, "xmax": <px>, "ymax": <px>}}
    ]}}
  ]
}}

Field labels: {field_labels}.
Line item column labels: {column_labels}.
For every ruled table also add a prediction with label "{grid_label}", its box, and
"rows" / "columns": lists of the y / x pixel positions of its interior grid lines.
Omit anything that is not on this page.{vendor_hint}"""

_TEXT_PROMPT = "Transcribe the text in this image exactly as printed. Return only the text, with no commentary."


def _require_google_genai() -> None:
    if genai is None or types is None:
        raise RuntimeError(
            "google-genai is required for Gemini calls. "
            "Install it with: python -m pip install google-genai"
        )


def resolve_api_key(explicit_api_key: Optional[str] = None, settings: Optional[ExtractionSettings] = None) -> Optional[str]:
    settings = settings or ExtractionSettings()
    return (
        explicit_api_key
        or os.getenv("GOOGLE_API_KEY")
        or os.getenv("GEMINI_API_KEY")
        or os.getenv(settings.api_key_env)
        or settings.api_key
    )


def _extract_balanced_json_block(text: str) -> Optional[str]:
    start_idx = -1
    open_char = ""
    close_char = ""
    for i, ch in enumerate(text):
        if ch in "{[":
            start_idx = i
            open_char = ch
            close_char = "}" if ch == "{" else "]"
            break
    if start_idx < 0:
        return None

    depth = 0
    in_str = False
    esc = False
    for i in range(start_idx, len(text)):
        ch = text[i]
        if in_str:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == "\"":
                in_str = False
            continue
        if ch == "\"":
            in_str = True
        elif ch == open_char:
            depth += 1
        elif ch == close_char:
            depth -= 1
            if depth == 0:
                return text[start_idx : i + 1]
    return None


def _clean_json_candidate(candidate: str) -> str:
    fixed = candidate.strip()
    fixed = fixed.replace("“", "\"").replace("”", "\"").replace("’", "'")
    return re.sub(r",\s*([}\]])", r"\1", fixed)


def parse_llm_json(text: str) -> Any:
    """Parse model output that should be JSON but may be fenced, padded or Python-literal."""
    raw = (text or "").strip()
    candidates: list[str] = [raw] if raw else []
    candidates.extend(m.strip() for m in re.findall(r"```(?:json)?\s*([\s\S]*?)```", raw, flags=re.IGNORECASE))
    balanced = _extract_balanced_json_block(raw)
    if balanced:
        candidates.append(balanced.strip())

    errors: list[str] = []
    seen: set[str] = set()
    for candidate in candidates:
        if not candidate or candidate in seen:
            continue
        seen.add(candidate)
        for variant in (candidate, _clean_json_candidate(candidate)):
            try:
                return json.loads(variant)
            except ValueError as exc:
                errors.append(str(exc))
            try:
                # Python-like output: single quotes, None/True/False.
                parsed = ast.literal_eval(variant)
            except (ValueError, SyntaxError) as exc:
                errors.append(str(exc))
                continue
            if isinstance(parsed, (dict, list)):
                return parsed

    raise ValueError(f"Could not parse Gemini output as JSON. Sample: {raw[:240]!r}. Last errors: {errors[-2:]}")


def _png_bytes(raster: PageRaster) -> bytes:
    buffer = io.BytesIO()
    raster.image.save(buffer, format="PNG")
    return buffer.getvalue()


def _page_prompt(raster: PageRaster, template: Optional[VendorTemplate]) -> str:
    hint = ""
    if template is not None:
        hint = f"\nThe invoice was issued by {template.vendor_name}; expect its usual layout."
    return _PAGE_PROMPT.format(
        page_number=raster.page,
        width=raster.width,
        height=raster.height,
        line_items_label=LINE_ITEMS_TABLE_LABEL,
        grid_label=TABLE_GRID_LABEL,
        field_labels=", ".join(labels[0] for _, labels in TOP_LEVEL_LABELS),
        column_labels=", ".join(sorted(set(LINE_ITEM_LABELS.values()))),
        vendor_hint=hint,
    )


def _page_payload(parsed: Any) -> dict[str, Any]:
    if isinstance(parsed, dict):
        return dict(parsed)
    if isinstance(parsed, list):
        return {"predictions": parsed}
    raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}.")


class GeminiExtractionClient:
    """Machine extraction over rendered page images, one request per page."""

    def __init__(self, settings: Optional[ExtractionSettings] = None, api_key: Optional[str] = None) -> None:
        self.settings = settings or ExtractionSettings()
        self.api_key = api_key
        self._client: Any = None

    def _get_client(self) -> Any:
        _require_google_genai()
        if self._client is None:
            key = resolve_api_key(self.api_key, self.settings)
            self._client = genai.Client(api_key=key) if key else genai.Client()
        return self._client

    def _generate(self, image_bytes: bytes, prompt: str) -> str:
        client = self._get_client()
        response = client.models.generate_content(
            model=self.settings.model,
            contents=[
                types.Part.from_bytes(data=image_bytes, mime_type="image/png"),
                prompt,
            ],
        )
        return response.text or ""

    def extract(self, rasters: Sequence[PageRaster], template: Optional[VendorTemplate] = None) -> dict[str, Any]:
        """Return ``{"pages": [...]}`` stamped with zero-based page index and pixel size."""
        if not rasters:
            raise ExtractionError("No pages to extract.")
        pages: list[dict[str, Any]] = []
        for index, raster in enumerate(rasters):
            try:
                text = self._generate(_png_bytes(raster), _page_prompt(raster, template))
                page = _page_payload(parse_llm_json(text))
            except Exception as exc:
                logger.exception("Extraction failed on page %d", raster.page)
                raise ExtractionError(f"Extraction failed on page {raster.page}: {exc}") from exc
            page["page"] = index
            page["width"] = raster.width
            page["height"] = raster.height
            pages.append(page)

        if not any(page.get("predictions") or page.get("tables") for page in pages):
            raise ExtractionError("The extraction service returned no fields.")
        logger.info("Extracted %d page(s) with %s", len(pages), self.settings.model)
        return {"pages": pages}

    def extract_text(self, png_bytes: bytes) -> str:
        try:
            text = self._generate(png_bytes, _TEXT_PROMPT)
        except Exception as exc:
            logger.exception("Text re-extraction failed")
            raise ExtractionError(f"Text re-extraction failed: {exc}") from exc
        text = text.strip()
        if not text:
            raise ExtractionError("No text found in the selected region.")
        return text


__all__ = [
    "GeminiExtractionClient",
    "parse_llm_json",
    "resolve_api_key",
]
