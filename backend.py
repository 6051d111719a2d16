import logging
import os
import re
import time
import uuid

from docx import Document
from docx.opc.exceptions import PackageNotFoundError

from docauto.batch_runner import (
    CANCEL,
    JobSummary,
    ResumeDecision,
    apply_resume_decision,
    load_resume_state,
    require_content,
    run_section_job,
    run_smart_job,
)
from docauto.config import Settings
from docauto.document_store import _paragraph_has_bottom_border, DocxDocumentStore, has_drawing
from docauto.generation import OpenAIGenerationService, ReferenceImageCache, build_client
from docauto.key_store import API_KEY_NAME, EnvKeyStore
from docauto.progress_store import JOB_KINDS, JOB_SECTION, JOB_SMART, JsonProgressStore
from docauto.style_formatter import FormatReport, run_formatting

logger = logging.getLogger(__name__)

JOBS = {
    JOB_SECTION: run_section_job,
    JOB_SMART: run_smart_job,
}

_DOCUMENT_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def _settings(settings: Settings | None) -> Settings:
    return settings or Settings.from_env()


def _check_job_kind(job_kind: str) -> str:
    if job_kind not in JOB_KINDS:
        raise ValueError(f"unknown job kind {job_kind!r}; expected one of {', '.join(JOB_KINDS)}")
    return job_kind


def document_path(document_id: str, settings: Settings | None = None) -> str:
    """Path of a stored document. Raises FileNotFoundError for unknown (or malformed) ids."""
    settings = _settings(settings)
    if not document_id or not _DOCUMENT_ID_RE.match(document_id):
        raise FileNotFoundError(f"no document {document_id!r}")
    path = os.path.join(settings.documents_dir, f"{document_id}.docx")
    if not os.path.isfile(path):
        raise FileNotFoundError(f"no document {document_id!r}")
    return path


def open_document(document_id: str, settings: Settings | None = None) -> DocxDocumentStore:
    return DocxDocumentStore(document_path(document_id, settings), document_id=document_id)


def store_document(filename: str, data: bytes, settings: Settings | None = None) -> str:
    """Save an uploaded .docx under output/documents and return its document id."""
    settings = _settings(settings)
    stem = os.path.splitext(os.path.basename(filename or "document"))[0]
    stem = re.sub(r"[^A-Za-z0-9_-]+", "_", stem).strip("_")[:40] or "document"
    document_id = f"{stem}-{uuid.uuid4().hex[:8]}"
    os.makedirs(settings.documents_dir, exist_ok=True)
    path = os.path.join(settings.documents_dir, f"{document_id}.docx")
    with open(path, "wb") as f:
        f.write(data)
    try:
        Document(path)
    except (PackageNotFoundError, KeyError, ValueError) as exc:
        os.unlink(path)
        raise ValueError(f"{filename} is not a readable .docx file") from exc
    logger.info("Stored %s as %s", filename, document_id)
    return document_id


def get_document_preview_text(document_id: str, settings: Settings | None = None) -> str:
    """Plain-text preview of the stored document. Rules are shown as [SECTION_UNDERLINE],
    inserted pictures as [IMAGE]."""
    doc = Document(document_path(document_id, settings))
    lines = []
    for para in doc.paragraphs:
        text = (para.text or "").strip()
        if not text and has_drawing(para):
            lines.append("[IMAGE]")
        elif not text and _paragraph_has_bottom_border(para):
            lines.append("[SECTION_UNDERLINE]")
        else:
            lines.append(text)
    return "\n\n".join(lines).strip()


def get_progress(document_id: str, job_kind: str, settings: Settings | None = None) -> dict | None:
    settings = _settings(settings)
    document_path(document_id, settings)
    state = load_resume_state(JsonProgressStore(settings.progress_dir), document_id, _check_job_kind(job_kind))
    return state.to_dict() if state else None


def reset_progress(document_id: str, job_kind: str, settings: Settings | None = None) -> bool:
    settings = _settings(settings)
    document_path(document_id, settings)
    return JsonProgressStore(settings.progress_dir).delete(document_id, _check_job_kind(job_kind))


def build_generation_service(settings: Settings, key_store: EnvKeyStore | None = None) -> OpenAIGenerationService:
    """Raises MissingCredentialError when no key is configured."""
    key_store = key_store or EnvKeyStore()
    client = build_client(key_store.get(API_KEY_NAME))
    return OpenAIGenerationService(
        client,
        text_model=settings.text_model,
        image_model=settings.image_model,
        image_size=settings.image_size,
    )


def run_infographic_job(
    document_id: str,
    job_kind: str = JOB_SECTION,
    resume: str | None = None,
    jump_to: int | None = None,
    settings: Settings | None = None,
    service=None,
    key_store: EnvKeyStore | None = None,
    sleep=time.sleep,
) -> JobSummary:
    """
    Run one invocation of an infographic job on a stored document.
    resume: continue | jump | restart | cancel (jump needs jump_to, 1-based).
    Returns a JobSummary; re-invoke with resume=continue until it reports complete.
    """
    settings = _settings(settings)
    run_job = JOBS[_check_job_kind(job_kind)]
    decision = ResumeDecision.parse(resume, jump_to)
    store = open_document(document_id, settings)
    if decision.action == CANCEL:
        logger.info("%s job for %s cancelled", job_kind, document_id)
        return JobSummary(job_kind=job_kind, cancelled=True)
    # Credentials and content are checked before progress is touched.
    if service is None:
        service = build_generation_service(settings, key_store)
    require_content(store, settings)
    progress = JsonProgressStore(settings.progress_dir)
    start = apply_resume_decision(progress, document_id, job_kind, decision)
    references = ReferenceImageCache(settings.reference_images)
    summary = run_job(store, service, progress, settings, start_index=start, references=references, sleep=sleep)
    logger.info("%s job for %s: %s", job_kind, document_id, summary.message)
    return summary


def run_format(
    document_id: str,
    passes: list[str] | None = None,
    fresh: bool = False,
    settings: Settings | None = None,
) -> FormatReport:
    """Run the formatting passes on a stored document; unchanged elements are skipped unless fresh."""
    settings = _settings(settings)
    store = open_document(document_id, settings)
    return run_formatting(store, passes=passes, fresh=fresh, time_budget=settings.format_time_budget_seconds)


def set_api_key(value: str, key_store: EnvKeyStore | None = None) -> None:
    value = (value or "").strip()
    if not value:
        raise ValueError("API key must not be empty")
    (key_store or EnvKeyStore()).set(API_KEY_NAME, value)
    logger.info("Stored %s", API_KEY_NAME)


def has_api_key(key_store: EnvKeyStore | None = None) -> bool:
    return bool((key_store or EnvKeyStore()).get(API_KEY_NAME))
