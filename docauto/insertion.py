"""Write an infographic (picture, caption, spacer) into the document at a given offset."""

import logging

from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.shared import Pt, RGBColor

from docauto.document_store import CAPTION_STYLE, DocxDocumentStore
from docauto.generation import GeneratedImage

logger = logging.getLogger(__name__)

INFOGRAPHIC_WIDTH_INCHES = 6.0
CAPTION_FONT_SIZE_PT = 10
CAPTION_COLOR_HEX = "595959"


def _ensure_caption_style(store: DocxDocumentStore):
    style = store.ensure_paragraph_style(CAPTION_STYLE)
    style.font.italic = True
    style.font.size = Pt(CAPTION_FONT_SIZE_PT)
    style.font.color.rgb = RGBColor.from_string(CAPTION_COLOR_HEX)
    pf = style.paragraph_format
    pf.alignment = WD_ALIGN_PARAGRAPH.CENTER
    pf.space_before = Pt(2)
    pf.space_after = Pt(6)
    return style


def caption_text(title: str, infographic_type: str = "") -> str:
    title = (title or "").strip()
    if title:
        return f"Figure: {title}"
    label = (infographic_type or "").replace("_", " ").strip()
    return f"Figure: {label.capitalize()}" if label else "Figure"


def insert_infographic(
    store: DocxDocumentStore,
    offset: int,
    image: GeneratedImage,
    title: str,
    infographic_type: str = "",
    width_inches: float = INFOGRAPHIC_WIDTH_INCHES,
) -> int:
    """Insert picture, caption and an empty spacer starting at ``offset``. Returns elements inserted."""
    _ensure_caption_style(store)
    picture = store.insert_picture(offset, image.data, width_inches)
    picture.alignment = WD_ALIGN_PARAGRAPH.CENTER
    picture.paragraph_format.space_before = Pt(6)
    picture.paragraph_format.keep_with_next = True
    store.insert_paragraph(offset + 1, caption_text(title, infographic_type), style=CAPTION_STYLE)
    store.insert_paragraph(offset + 2)
    logger.info("Inserted infographic %r at offset %d in %s", title, offset, store.document_id)
    return 3
