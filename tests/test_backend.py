"""Orchestration helpers shared by the HTTP and UI surfaces."""
import pytest

import backend
from docauto.config import Settings
from docauto.errors import NoContentError


def test_store_document_sanitizes_the_id(settings, make_docx):
    with open(make_docx([("p", "hello")]), "rb") as f:
        document_id = backend.store_document("../Q3 report (final).docx", f.read(), settings=settings)
    assert document_id.startswith("Q3_report_final-")
    assert backend.document_path(document_id, settings).endswith(f"{document_id}.docx")


def test_preview_marks_images(settings, make_sectioned_docx, make_service):
    with open(make_sectioned_docx(["Steps"]), "rb") as f:
        document_id = backend.store_document("steps.docx", f.read(), settings=settings)
    backend.run_infographic_job(document_id, "section", settings=settings, service=make_service(wants={"Steps"}), sleep=lambda s: None)
    preview = backend.get_document_preview_text(document_id, settings)
    assert preview.split("\n\n")[:3] == ["Steps", "[IMAGE]", "Figure: Steps"]


def test_unknown_job_kind(settings):
    with pytest.raises(ValueError):
        backend.run_infographic_job("whatever", "poster", settings=settings)


def test_settings_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("BATCH_SIZE", "3")
    monkeypatch.setenv("MAX_TOTAL_INFOGRAPHICS", "not a number")
    monkeypatch.setenv("DOCAUTO_REFERENCE_IMAGES", "a.png, https://example.com/b.png,")
    monkeypatch.setenv("DOCAUTO_OUTPUT_DIR", str(tmp_path))
    monkeypatch.setenv("FORMAT_TIME_BUDGET_SECONDS", "45")
    settings = Settings.from_env()
    assert settings.batch_size == 3
    assert settings.max_total_infographics == 50
    assert settings.reference_images == ["a.png", "https://example.com/b.png"]
    assert settings.progress_dir == str(tmp_path / "progress")
    assert settings.format_time_budget_seconds == 45.0


def test_jump_on_document_without_sections_leaves_no_progress(settings, make_docx, make_service):
    with open(make_docx([("p", "short")]), "rb") as f:
        document_id = backend.store_document("tiny.docx", f.read(), settings=settings)
    with pytest.raises(NoContentError):
        backend.run_infographic_job(document_id, "section", resume="jump", jump_to=2, settings=settings, service=make_service())
    assert backend.get_progress(document_id, "section", settings) is None
