from __future__ import annotations

from pathlib import Path

import pytest

from autotransocr.config import (
    AppConfig,
    RegionSpec,
    config_from_dict,
    load_config,
    parse_region_spec,
    write_default_config,
)


def test_empty_config_uses_local_defaults():
    cfg = config_from_dict({})

    assert cfg.translate.base_url == "http://127.0.0.1:1234/v1"
    assert cfg.translate.timeout_sec == 30.0
    assert cfg.translate.retry_failed is True
    assert cfg.capture.interval_ms == 200
    assert cfg.ocr.psm == 6
    assert cfg.ocr.oem == 1
    assert cfg.ocr.timeout_sec == 10.0
    assert cfg.regions == ()


def test_sections_are_parsed():
    cfg = config_from_dict(
        {
            "translate": {
                "base_url": "http://localhost:8080/v1/",
                "model": "qwen",
                "headers": {"X-Test": 1, " ": "skip"},
                "retry_failed": False,
            },
            "capture": {"backend": "MSS", "dpi_scale": 1.25},
            "ocr": {"upscale": 3, "threshold": 170, "tesseract_cmd": ""},
            "logging": {"level": "debug", "file": "logs"},
            "regions": [{"x": 1, "y": 2, "width": 3, "height": 4}],
        }
    )

    assert cfg.translate.base_url == "http://localhost:8080/v1"
    assert cfg.translate.model == "qwen"
    assert cfg.translate.headers == {"X-Test": "1"}
    assert cfg.translate.retry_failed is False
    assert cfg.capture.backend == "mss"
    assert cfg.capture.dpi_scale == 1.25
    assert cfg.ocr.upscale == 3
    assert cfg.ocr.tesseract_cmd is None
    assert cfg.logging.level == "DEBUG"
    assert cfg.logging.file == Path("logs")
    assert cfg.regions == (RegionSpec(1, 2, 3, 4),)


@pytest.mark.parametrize(
    "raw",
    [
        {"capture": {"backend": "qt"}},
        {"capture": {"interval_ms": 0}},
        {"translate": {"timeout_sec": 0}},
        {"ocr": {"upscale": 0}},
        {"regions": [{"x": 1, "y": 2, "width": 0, "height": 4}]},
        {"regions": [{"x": 1, "y": 2}]},
    ],
)
def test_invalid_values_raise(raw):
    with pytest.raises(ValueError):
        config_from_dict(raw)


def test_parse_region_spec_from_cli_string():
    assert parse_region_spec("100, 100,200,50") == RegionSpec(100, 100, 200, 50)
    with pytest.raises(ValueError):
        parse_region_spec("1,2,3")


def test_default_template_round_trips(tmp_path):
    path = tmp_path / "config.toml"

    created = write_default_config(path)
    cfg = load_config(created)

    assert isinstance(cfg, AppConfig)
    assert cfg.config_path == path
    assert cfg.translate.model == "plamo-2-translate"
    assert cfg.regions == ()


def test_write_default_config_keeps_existing_file(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text("[capture]\ninterval_ms = 500\n", encoding="utf-8")

    write_default_config(path)

    assert load_config(path).capture.interval_ms == 500


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.toml")
