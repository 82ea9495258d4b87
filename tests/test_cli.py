from __future__ import annotations

import pytest
import pytesseract

from autotransocr import cli
from autotransocr.config import OcrConfig
from autotransocr.diagnostics import diagnose_tesseract
from autotransocr.pipeline.orchestrator import TranslatedUpdate
from autotransocr.ui.console import ConsoleControl, ConsoleDisplay
from autotransocr.util.geometry import Region


def test_version_flag(capsys):
    assert cli.main(["--version"]) == 0
    assert "autotransocr" in capsys.readouterr().out


def test_missing_config_writes_template(tmp_path, capsys):
    path = tmp_path / "config.toml"

    assert cli.main(["--config", str(path)]) == 2
    assert path.exists()
    assert str(path) in capsys.readouterr().out


def test_invalid_config_is_reported(tmp_path, capsys):
    path = tmp_path / "config.toml"
    path.write_text("[capture]\nbackend = \"qt\"\n", encoding="utf-8")

    assert cli.main(["--config", str(path)]) == 2
    assert "backend" in capsys.readouterr().err


def test_bad_region_argument_exits(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text("", encoding="utf-8")

    with pytest.raises(SystemExit):
        cli.main(["--config", str(path), "--region", "1,2,3"])


def test_console_display_tracks_latest_translation():
    display = ConsoleDisplay()
    r1 = Region(1, 0, 0, 10, 10)
    r2 = Region(2, 0, 0, 10, 10)
    display.update_regions([r1, r2])
    display.update_translation(TranslatedUpdate(1, 0, 0, 10, 10, "a"))
    display.update_translation(TranslatedUpdate(2, 0, 0, 10, 10, "b"))

    display.update_regions([r2])
    display.remove_translation(2)

    assert display.translations == {}


def test_console_control_records_status():
    control = ConsoleControl()

    control.capture_status(True)
    control.regions_updated([Region(1, 0, 0, 1, 1)])

    assert control.capturing is True
    assert [r.id for r in control.regions] == [1]


def test_diagnose_tesseract_reports_missing_binary(monkeypatch):
    def missing():
        raise pytesseract.TesseractNotFoundError()

    monkeypatch.setattr(pytesseract, "get_tesseract_version", missing)

    report = "\n".join(diagnose_tesseract(OcrConfig()))

    assert "tesseract" in report.lower()
    assert "version" not in report


def test_diagnose_tesseract_checks_language(monkeypatch):
    monkeypatch.setattr(pytesseract, "get_tesseract_version", lambda: "5.3.0")
    monkeypatch.setattr(pytesseract, "get_languages",
                        lambda config="": ["osd", "jpn"])

    report = "\n".join(diagnose_tesseract(OcrConfig(lang="eng")))

    assert "version: 5.3.0" in report
    assert "'eng'" in report
