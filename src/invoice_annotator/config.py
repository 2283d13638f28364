from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator

from .annotation_core import InvoiceField, LineItemField, PartyField, parse_locator_path

CONFIG_FILENAME = "invoice_annotator.yaml"
CONFIG_ENV_VAR = "INVOICE_ANNOTATOR_CONFIG"


class ViewportSettings(BaseModel):
    frame_fraction: float = 0.3
    max_scale: float = 5.0
    min_scale: float = 0.05
    zoom_step: float = 1.2
    handle_px: float = 8.0
    gridline_tolerance_px: float = 5.0
    min_selection: float = 0.005

    @model_validator(mode="after")
    def _validate_limits(self) -> "ViewportSettings":
        if not (0.0 < self.frame_fraction <= 1.0):
            raise ValueError("viewport.frame_fraction must be in (0, 1].")
        if not (0.0 < self.min_scale < self.max_scale):
            raise ValueError("viewport.min_scale must be positive and below viewport.max_scale.")
        if self.zoom_step <= 1.0:
            raise ValueError("viewport.zoom_step must be greater than 1.")
        return self


class RenderSettings(BaseModel):
    dpi: int = Field(default=150, gt=0)
    use_pdftocairo: bool = True


class ExtractionSettings(BaseModel):
    model: str = "gemini-2.5-flash"
    api_key: Optional[str] = None
    api_key_env: str = "INVOICE_ANNOTATOR_GEMINI_API_KEY"


class TemplateSettings(BaseModel):
    store_path: Path = Path("data/vendor_templates.json")
    applied_confidence: float = Field(default=0.99, ge=0.0, le=1.0)
    weakened_confidence: float = Field(default=0.6, ge=0.0, le=1.0)
    weakened_fields: List[str] = Field(
        default_factory=lambda: [
            "fields.invoiceDate.boundingBox",
            "consignee.fields.address.boundingBox",
            "lineItems[*].fields.hsCode.boundingBox",
            "lineItems[*].fields.countryOfOrigin.boundingBox",
        ]
    )

    @model_validator(mode="after")
    def _validate_weakened_fields(self) -> "TemplateSettings":
        for pattern in self.weakened_fields:
            locator = parse_locator_path(pattern.replace("[*]", "[0]"))
            if not isinstance(locator, (InvoiceField, PartyField, LineItemField)):
                raise ValueError(f"weakened_fields entry must address a field, not a region: {pattern}")
        return self


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class AppConfig(BaseModel):
    viewport: ViewportSettings = Field(default_factory=ViewportSettings)
    render: RenderSettings = Field(default_factory=RenderSettings)
    extraction: ExtractionSettings = Field(default_factory=ExtractionSettings)
    templates: TemplateSettings = Field(default_factory=TemplateSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def _read_yaml_file(path: Path) -> dict:
    try:
        import yaml  # type: ignore
    except Exception as exc:  # pragma: no cover
        raise RuntimeError(
            "PyYAML is required to read config files. Install with `pip install pyyaml`."
        ) from exc

    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config file must contain a YAML object at top level: {path}")
    return raw


def resolve_config_path() -> Optional[Path]:
    candidates: list[Path] = []
    env_path = os.getenv(CONFIG_ENV_VAR)
    if env_path:
        candidates.append(Path(env_path).expanduser())

    candidates.append(Path.cwd() / CONFIG_FILENAME)
    for parent in Path(__file__).resolve().parents:
        candidates.append(parent / CONFIG_FILENAME)

    seen: set[Path] = set()
    for path in candidates:
        resolved = path.resolve()
        if resolved in seen:
            continue
        seen.add(resolved)
        if resolved.is_file():
            return resolved
    return None


def load_app_config(config_path: Path | str) -> AppConfig:
    path = Path(config_path).expanduser().resolve()
    if not path.is_file():
        raise FileNotFoundError(f"Config not found: {path}")
    payload = _read_yaml_file(path)
    try:
        cfg = AppConfig.model_validate(payload)
    except ValidationError as exc:
        raise ValueError(f"Invalid config at {path}:\n{exc}") from exc

    cfg.templates.store_path = cfg.templates.store_path.expanduser()
    return cfg


def load_default_config() -> AppConfig:
    path = resolve_config_path()
    if path is None:
        return AppConfig()
    return load_app_config(path)


def configure_logging(settings: LoggingSettings) -> None:
    logging.basicConfig(level=getattr(logging, settings.level), format=settings.format)


__all__ = [
    "AppConfig",
    "ExtractionSettings",
    "LoggingSettings",
    "RenderSettings",
    "TemplateSettings",
    "ViewportSettings",
    "configure_logging",
    "load_app_config",
    "load_default_config",
    "resolve_config_path",
]
