"""
Shared fixtures for the docauto tests.

Documents are real .docx files built with python-docx under tmp_path. The generation
service is a scripted fake: it says "needs infographic" for the section headings it is
told to, and returns a 1x1 PNG for every image request.
"""
import base64
import json
import os
import re

import pytest
from docx import Document
from docx.opc.constants import RELATIONSHIP_TYPE as RT
from docx.oxml import OxmlElement
from docx.oxml.ns import qn

from docauto.config import Settings
from docauto.document_store import DocxDocumentStore
from docauto.errors import GenerationError
from docauto.generation import GeneratedImage
from docauto.progress_store import JsonProgressStore

PNG_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)

# Long enough to make a section on its own (>= 100 characters).
BODY_TEXT = (
    "The quarterly review covers onboarding, deployment and support. Each stage has an owner, "
    "a deadline and a short checklist that teams follow."
)

_TITLE_RE = re.compile(r"^Section title: (.*)$", re.MULTILINE)


class FakeGenerationService:
    def __init__(self, wants=(), plan=None, image=PNG_BYTES, fail_on=()):
        self.wants = set(wants)
        self.plan = plan
        self.image = image
        self.fail_on = set(fail_on)
        self.analyzed = []
        self.plan_requests = 0
        self.image_prompts = []

    def generate_text(self, prompt, temperature=0.4, max_tokens=2048):
        if prompt.startswith("You plan infographics"):
            self.plan_requests += 1
            return self.plan if isinstance(self.plan, str) else json.dumps(self.plan or {})
        heading = _TITLE_RE.search(prompt).group(1)
        self.analyzed.append(heading)
        if heading in self.fail_on:
            raise GenerationError("simulated outage")
        if heading in self.wants:
            return (
                "Here is my answer:\n```json\n"
                '{"needs_infographic": true, "reason": "sequential steps", '
                f'"infographic_type": "process_flow", "prompt": "Flow diagram for {heading}"}}\n```'
            )
        return '{"needs_infographic": false, "reason": "narrative prose", "infographic_type": "none"}'

    def generate_image(self, prompt, references):
        self.image_prompts.append(prompt)
        if self.image is None:
            return None
        return GeneratedImage(data=self.image)


def add_hyperlink(paragraph, url, text):
    """Append a w:hyperlink holding one plain run."""
    r_id = paragraph.part.relate_to(url, RT.HYPERLINK, is_external=True)
    link = OxmlElement("w:hyperlink")
    link.set(qn("r:id"), r_id)
    run = OxmlElement("w:r")
    t = OxmlElement("w:t")
    t.set(qn("xml:space"), "preserve")
    t.text = text
    run.append(t)
    link.append(run)
    paragraph._p.append(link)
    return link


def _build(path, blocks):
    doc = Document()
    for block in blocks:
        kind, value = block[0], block[1]
        if kind == "title":
            doc.add_heading(value, level=0)
        elif kind.startswith("h"):
            doc.add_heading(value, level=int(kind[1:]))
        elif kind == "p":
            doc.add_paragraph(value)
        elif kind == "li":
            doc.add_paragraph(value, style="List Bullet")
        elif kind == "table":
            rows = value
            table = doc.add_table(rows=len(rows), cols=len(rows[0]))
            for i, row in enumerate(rows):
                for j, text in enumerate(row):
                    table.cell(i, j).text = text
        elif kind == "link":
            para = doc.add_paragraph(value)
            for url, text, tail in block[2]:
                add_hyperlink(para, url, text)
                if tail:
                    para.add_run(tail)
        else:
            raise ValueError(kind)
    doc.save(path)
    return path


@pytest.fixture
def make_docx(tmp_path):
    """Build a .docx from (kind, value) blocks and return its path."""

    def build(blocks, name="doc"):
        return _build(str(tmp_path / f"{name}.docx"), blocks)

    return build


@pytest.fixture
def make_sectioned_docx(make_docx):
    """A document with one Heading 1 plus a long body paragraph per heading."""

    def build(headings, name="doc"):
        blocks = []
        for heading in headings:
            blocks.append(("h1", heading))
            blocks.append(("p", f"{heading}: {BODY_TEXT}"))
        return make_docx(blocks, name=name)

    return build


@pytest.fixture
def open_store():
    def _open(path):
        return DocxDocumentStore(path)

    return _open


@pytest.fixture
def make_service():
    return FakeGenerationService


@pytest.fixture
def settings(tmp_path):
    return Settings(
        batch_size=10,
        success_cooldown_seconds=0,
        failure_cooldown_seconds=0,
        output_dir=str(tmp_path / "output"),
    )


@pytest.fixture
def progress(settings):
    return JsonProgressStore(settings.progress_dir)


@pytest.fixture
def no_sleep():
    calls = []

    def sleep(seconds):
        calls.append(seconds)

    sleep.calls = calls
    return sleep


@pytest.fixture
def isolated_env(monkeypatch, tmp_path):
    """Blank credentials in the process environment; .env lives in tmp_path."""
    for name in (
        "OPENAI_API_KEY",
        "AZURE_OPENAI_API_KEY",
        "AZURE_OPENAI_KEY",
        "AZURE_OPENAI_ENDPOINT",
        "AZURE_OPENAI_DEPLOYMENT",
    ):
        monkeypatch.setenv(name, "")
    return os.path.join(str(tmp_path), ".env")
