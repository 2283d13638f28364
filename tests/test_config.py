from __future__ import annotations

from pathlib import Path

import pytest

from invoice_annotator import config as config_module
from invoice_annotator.config import AppConfig, TemplateSettings, ViewportSettings, load_app_config, load_default_config


def test_defaults_validate() -> None:
    cfg = AppConfig.model_validate({})
    assert cfg.viewport.frame_fraction == 0.3
    assert cfg.viewport.max_scale == 5.0
    assert cfg.render.dpi == 150
    assert cfg.extraction.api_key_env == "INVOICE_ANNOTATOR_GEMINI_API_KEY"
    assert cfg.templates.applied_confidence == 0.99
    assert cfg.templates.weakened_confidence == 0.6
    assert "lineItems[*].fields.hsCode.boundingBox" in cfg.templates.weakened_fields
    assert cfg.logging.level == "INFO"


def test_viewport_limits_are_checked() -> None:
    with pytest.raises(ValueError):
        ViewportSettings(frame_fraction=0)
    with pytest.raises(ValueError):
        ViewportSettings(min_scale=6.0, max_scale=5.0)
    with pytest.raises(ValueError):
        ViewportSettings(zoom_step=1.0)


def test_weakened_fields_must_be_field_paths() -> None:
    with pytest.raises(ValueError):
        TemplateSettings(weakened_fields=["fields.dueDate.boundingBox"])
    with pytest.raises(ValueError):
        TemplateSettings(weakened_fields=["lineItems[*].boundingBox"])
    with pytest.raises(ValueError):
        TemplateSettings(weakened_fields=["tables[0].boundingBox"])


def test_load_app_config_reads_yaml(tmp_path) -> None:
    path = tmp_path / "invoice_annotator.yaml"
    path.write_text(
        "viewport:\n"
        "  frame_fraction: 0.5\n"
        "extraction:\n"
        "  model: gemini-2.5-pro\n"
        "templates:\n"
        "  store_path: ~/templates.json\n"
        "logging:\n"
        "  level: DEBUG\n",
        encoding="utf-8",
    )
    cfg = load_app_config(path)
    assert cfg.viewport.frame_fraction == 0.5
    assert cfg.extraction.model == "gemini-2.5-pro"
    assert cfg.templates.store_path == Path("~/templates.json").expanduser()
    assert cfg.logging.level == "DEBUG"


def test_load_app_config_errors(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_app_config(tmp_path / "missing.yaml")

    bad = tmp_path / "bad.yaml"
    bad.write_text("render:\n  dpi: -1\n", encoding="utf-8")
    with pytest.raises(ValueError, match="Invalid config"):
        load_app_config(bad)

    not_a_mapping = tmp_path / "list.yaml"
    not_a_mapping.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_app_config(not_a_mapping)


def test_load_default_config_uses_env_path(tmp_path, monkeypatch) -> None:
    path = tmp_path / "custom.yaml"
    path.write_text("render:\n  dpi: 200\n", encoding="utf-8")
    monkeypatch.setenv("INVOICE_ANNOTATOR_CONFIG", str(path))
    assert load_default_config().render.dpi == 200


def test_load_default_config_falls_back_to_defaults(monkeypatch) -> None:
    monkeypatch.setattr(config_module, "resolve_config_path", lambda: None)
    assert load_default_config() == AppConfig()
