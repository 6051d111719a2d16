"""python-docx backed document store: typed top-level elements, positional inserts, flush-and-reopen.

Offsets are indexes into the body's top-level content list (paragraphs and tables, in
document order; the trailing sectPr is not counted). Every structural change bumps
``revision`` so callers can tell whether a previously read section list is still valid.
"""

import logging
import os
import re
from dataclasses import dataclass
from io import BytesIO

from docx import Document
from docx.enum.style import WD_STYLE_TYPE
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.shared import Inches
from docx.table import Table
from docx.text.paragraph import Paragraph

logger = logging.getLogger(__name__)

HEADING = "heading"
PARAGRAPH = "paragraph"
LIST_ITEM = "list_item"
TABLE = "table"
HORIZONTAL_RULE = "horizontal_rule"
INLINE_IMAGE = "inline_image"
CAPTION = "caption"

# Style given to captions written by the insertion writer; used to recognise our own output.
CAPTION_STYLE = "Infographic Caption"

_HEADING_STYLE_RE = re.compile(r"^heading\s+(\d)$", re.IGNORECASE)
# Glyphs the heading pass prefixes; any of them at the start of a heading is ours to replace.
HEADING_MARKER_RE = re.compile(r"^\s*(?:[■▶◆●▸]\s*)+")


@dataclass
class Element:
    """One top-level body element with its type tag."""

    index: int
    kind: str
    block: object  # Paragraph or Table

    @property
    def text(self) -> str:
        if self.kind == TABLE:
            return "\n".join(" | ".join(row) for row in table_rows(self.block))
        return self.block.text or ""


def table_rows(table: Table) -> list[list[str]]:
    """Cell text per row, whitespace-trimmed."""
    rows = []
    for row in table.rows:
        rows.append([(cell.text or "").strip() for cell in row.cells])
    return rows


def style_name(paragraph: Paragraph) -> str:
    try:
        return paragraph.style.name or ""
    except (AttributeError, KeyError):
        return ""


def heading_level(paragraph: Paragraph) -> int | None:
    """1-9 for 'Heading N' styles, 1 for 'Title', else None."""
    name = style_name(paragraph).strip()
    if name.lower() == "title":
        return 1
    m = _HEADING_STYLE_RE.match(name)
    if m:
        return int(m.group(1))
    # Direct outline level set on the paragraph (documents converted from other editors)
    pPr = paragraph._p.pPr
    if pPr is not None:
        outline = pPr.find(qn("w:outlineLvl"))
        if outline is not None:
            try:
                level = int(outline.get(qn("w:val"))) + 1
            except (TypeError, ValueError):
                return None
            if 1 <= level <= 9:
                return level
    return None


def is_list_item(paragraph: Paragraph) -> bool:
    pPr = paragraph._p.pPr
    if pPr is not None and pPr.numPr is not None:
        return True
    return style_name(paragraph).lower().startswith("list")


def strip_heading_marker(text: str) -> str:
    return HEADING_MARKER_RE.sub("", text or "", count=1)


def has_drawing(paragraph: Paragraph) -> bool:
    return bool(paragraph._p.xpath(".//w:drawing"))


def _paragraph_has_bottom_border(paragraph: Paragraph) -> bool:
    pPr = paragraph._p.find(qn("w:pPr"))
    if pPr is None:
        return False
    pBdr = pPr.find(qn("w:pBdr"))
    if pBdr is None:
        return False
    return pBdr.find(qn("w:bottom")) is not None


def classify_paragraph(paragraph: Paragraph) -> str:
    text = (paragraph.text or "").strip()
    if style_name(paragraph) == CAPTION_STYLE:
        return CAPTION
    if heading_level(paragraph) is not None and text:
        return HEADING
    if not text and has_drawing(paragraph):
        return INLINE_IMAGE
    if not text and _paragraph_has_bottom_border(paragraph):
        return HORIZONTAL_RULE
    if is_list_item(paragraph):
        return LIST_ITEM
    return PARAGRAPH


class DocxDocumentStore:
    """Live handle on one .docx file, identified by ``document_id``."""

    def __init__(self, path: str, document_id: str | None = None):
        self.path = os.path.abspath(path)
        self.document_id = document_id or os.path.splitext(os.path.basename(self.path))[0]
        self.revision = 0
        self._doc = Document(self.path)

    @property
    def document(self):
        return self._doc

    def _body(self):
        return self._doc.element.body

    def _children(self) -> list:
        qp, qt = qn("w:p"), qn("w:tbl")
        return [child for child in self._body().iterchildren() if child.tag in (qp, qt)]

    def __len__(self) -> int:
        return len(self._children())

    def elements(self) -> list[Element]:
        """Ordered top-level elements with their type tags."""
        out = []
        for i, child in enumerate(self._children()):
            if child.tag == qn("w:tbl"):
                out.append(Element(i, TABLE, Table(child, self._doc._body)))
            else:
                para = Paragraph(child, self._doc._body)
                out.append(Element(i, classify_paragraph(para), para))
        return out

    def paragraphs_of_kind(self, *kinds: str) -> list[Paragraph]:
        return [el.block for el in self.elements() if el.kind in kinds]

    def tables(self) -> list[Table]:
        return [el.block for el in self.elements() if el.kind == TABLE]

    def full_text(self) -> str:
        parts = []
        for el in self.elements():
            if el.kind in (CAPTION, INLINE_IMAGE, HORIZONTAL_RULE):
                continue
            text = el.text.strip()
            if text:
                parts.append(text)
        return "\n".join(parts)

    def _place(self, element, offset: int) -> None:
        children = self._children()
        if offset < 0:
            offset = 0
        if offset < len(children):
            children[offset].addprevious(element)
            return
        sect_pr = self._body().find(qn("w:sectPr"))
        if sect_pr is not None:
            sect_pr.addprevious(element)
        else:
            self._body().append(element)

    def ensure_paragraph_style(self, name: str, base: str = "Normal"):
        styles = self._doc.styles
        try:
            return styles[name]
        except KeyError:
            style = styles.add_style(name, WD_STYLE_TYPE.PARAGRAPH)
            try:
                style.base_style = styles[base]
            except KeyError:
                pass
            return style

    def insert_paragraph(self, offset: int, text: str = "", style: str | None = None) -> Paragraph:
        """Insert a new paragraph so that it ends up at ``offset``."""
        p_el = OxmlElement("w:p")
        self._place(p_el, offset)
        para = Paragraph(p_el, self._doc._body)
        if style:
            para.style = self.ensure_paragraph_style(style)
        if text:
            para.add_run(text)
        self.revision += 1
        return para

    def insert_picture(self, offset: int, data: bytes, width_inches: float) -> Paragraph:
        """Insert a paragraph holding a single inline picture at ``offset``."""
        para = self.insert_paragraph(offset)
        para.add_run().add_picture(BytesIO(data), width=Inches(width_inches))
        return para

    def remove(self, block) -> None:
        el = block._element
        parent = el.getparent()
        if parent is not None:
            parent.remove(el)
            self.revision += 1

    def save(self) -> None:
        self._doc.save(self.path)

    def flush(self) -> None:
        """Persist pending changes and reopen from disk, dropping the in-memory change buffer."""
        self._doc.save(self.path)
        self._doc = Document(self.path)
        self.revision += 1
        logger.debug("Flushed and reopened %s (revision %d)", self.document_id, self.revision)
