"""
FastAPI backend for the document infographics and formatting engine.
Run from project root: uvicorn api.main:app --reload --port 8000
"""
import logging
import os
import sys

from dotenv import load_dotenv
load_dotenv()

# Ensure project root is on path when running as api.main
_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _ROOT not in sys.path:
    sys.path.insert(0, _ROOT)

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel

import backend
from docauto.config import Settings
from docauto.errors import DocAutoError, MissingCredentialError, NoContentError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

app = FastAPI(title="Document Infographics API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class ApiKeyBody(BaseModel):
    api_key: str


def get_settings() -> Settings:
    return Settings.from_env()


def _not_found(exc: FileNotFoundError):
    return HTTPException(status_code=404, detail=str(exc))


@app.get("/api/health")
def health():
    return {"status": "ok"}


@app.post("/api/documents")
async def api_upload_document(file: UploadFile = File(...)):
    """Upload a .docx; returns the document id used by every other endpoint."""
    if not file.filename or not file.filename.lower().endswith(".docx"):
        raise HTTPException(status_code=400, detail="Upload a .docx file")
    contents = await file.read()
    try:
        document_id = backend.store_document(file.filename, contents, settings=get_settings())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"document_id": document_id, "filename": file.filename}


@app.get("/api/documents/{document_id}/progress/{job_kind}")
def api_get_progress(document_id: str, job_kind: str):
    try:
        record = backend.get_progress(document_id, job_kind, settings=get_settings())
    except FileNotFoundError as e:
        raise _not_found(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"document_id": document_id, "job_kind": job_kind, "progress": record}


@app.delete("/api/documents/{document_id}/progress/{job_kind}")
def api_reset_progress(document_id: str, job_kind: str):
    try:
        deleted = backend.reset_progress(document_id, job_kind, settings=get_settings())
    except FileNotFoundError as e:
        raise _not_found(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"document_id": document_id, "job_kind": job_kind, "deleted": deleted}


@app.post("/api/documents/{document_id}/infographics/{job_kind}")
def api_run_infographics(
    document_id: str,
    job_kind: str,
    resume: str = Form("continue"),
    jump_to: int | None = Form(None),
):
    """Run one batch of the infographic job; call again while the summary is not complete."""
    try:
        summary = backend.run_infographic_job(
            document_id,
            job_kind,
            resume=resume,
            jump_to=jump_to,
            settings=get_settings(),
        )
    except FileNotFoundError as e:
        raise _not_found(e)
    except (MissingCredentialError, NoContentError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DocAutoError as e:
        logger.error("Infographic job for %s failed: %s", document_id, e, exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))
    return summary.to_dict()


@app.post("/api/documents/{document_id}/format")
def api_format(
    document_id: str,
    fresh: bool = Form(False),
    passes: str = Form(""),
):
    """Apply the formatting passes (comma-separated names, empty for all)."""
    selected = [p.strip() for p in passes.split(",") if p.strip()] or None
    try:
        report = backend.run_format(document_id, passes=selected, fresh=fresh, settings=get_settings())
    except FileNotFoundError as e:
        raise _not_found(e)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return report.to_dict()


@app.get("/api/documents/{document_id}/download")
def api_download(document_id: str):
    try:
        path = backend.document_path(document_id, settings=get_settings())
    except FileNotFoundError as e:
        raise _not_found(e)
    with open(path, "rb") as f:
        docx_bytes = f.read()
    return Response(
        content=docx_bytes,
        media_type=DOCX_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename={document_id}.docx"},
    )


@app.post("/api/settings/api-key")
def api_set_api_key(body: ApiKeyBody):
    try:
        backend.set_api_key(body.api_key)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"status": "ok"}
