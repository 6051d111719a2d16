"""Idempotent formatting passes over a live document.

Every pass enumerates its element type, skips elements that already carry the target
formatting (unless ``fresh``), formats the rest, and flushes/reopens the document every
``batch_size`` elements. An interrupted pass therefore leaves a valid, partly formatted
document, and the next run picks up exactly the elements that still differ.
"""

import copy
import logging
import time
from dataclasses import dataclass, field

from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.shape import InlineShape
from docx.shared import Emu, Inches, Pt, RGBColor
from docx.text.hyperlink import Hyperlink
from docx.text.run import Run

from docauto.batch_runner import process_in_batches
from docauto.document_store import (
    HEADING,
    LIST_ITEM,
    PARAGRAPH,
    DocxDocumentStore,
    has_drawing,
    heading_level,
    strip_heading_marker,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextStyle:
    font: str
    size_pt: float
    color_hex: str
    bold: bool | None = None
    space_before_pt: float | None = None
    space_after_pt: float | None = None
    line_spacing: float | None = None
    marker: str = ""


HEADING_STYLES = {
    1: TextStyle("Georgia", 20, "1F3864", bold=True, space_before_pt=24, space_after_pt=12, marker="■ "),
    2: TextStyle("Georgia", 16, "2E5597", bold=True, space_before_pt=18, space_after_pt=8, marker="▶ "),
    3: TextStyle("Georgia", 14, "2E5597", bold=True, space_before_pt=14, space_after_pt=6, marker="◆ "),
    4: TextStyle("Calibri", 12, "404040", bold=True, space_before_pt=12, space_after_pt=4, marker="● "),
    5: TextStyle("Calibri", 11, "404040", bold=True, space_before_pt=10, space_after_pt=4, marker="▸ "),
}
BODY_STYLE = TextStyle("Calibri", 11, "262626", space_before_pt=0, space_after_pt=8, line_spacing=1.15)
LIST_STYLE = TextStyle("Calibri", 11, "262626", space_before_pt=0, space_after_pt=4, line_spacing=1.15)

TERM_DELIMITERS = (":", " - ", " – ", " — ")
TERM_SEARCH_CHARS = 60

TABLE_HEADER_FILL = "1F3864"
TABLE_HEADER_TEXT = "FFFFFF"
TABLE_ZEBRA_FILL = "F2F2F2"
TABLE_PLAIN_FILL = "FFFFFF"
TABLE_FONT_SIZE_PT = 10
TABLE_CELL_PADDING_TWIPS = 80
MIN_COLUMN_WIDTH_INCHES = 0.75

LINK_COLOR_HEX = "1155CC"

IMAGE_SPACE_PT = 6

BATCH_SIZES = {
    "headings": 40,
    "body": 80,
    "lists": 60,
    "tables": 200,
    "links": 25,
    "images": 50,
}

PASS_ORDER = ("headings", "body", "lists", "tables", "links", "images")


@dataclass
class PassReport:
    name: str
    total: int = 0
    processed: int = 0
    skipped: int = 0
    complete: bool = True

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "total": self.total,
            "processed": self.processed,
            "skipped": self.skipped,
            "complete": self.complete,
        }


@dataclass
class FormatReport:
    passes: list = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return all(p.complete for p in self.passes)

    @property
    def processed(self) -> int:
        return sum(p.processed for p in self.passes)

    @property
    def message(self) -> str:
        done = ", ".join(f"{p.name}: {p.processed} formatted, {p.skipped} already done" for p in self.passes)
        if self.complete:
            return f"Formatting complete ({done})."
        return f"Formatting paused ({done}). Run again to continue; finished elements will be skipped."

    def to_dict(self) -> dict:
        return {
            "complete": self.complete,
            "processed": self.processed,
            "passes": [p.to_dict() for p in self.passes],
            "message": self.message,
        }


def _close(a, b, tolerance=0.01) -> bool:
    if a is None or b is None:
        return a is None and b is None
    return abs(float(a) - float(b)) <= tolerance


def _length_matches(value, target_pt) -> bool:
    if target_pt is None:
        return True
    if value is None:
        return target_pt == 0
    return _close(value.pt, target_pt)


def _rgb(hex_color: str) -> RGBColor:
    return RGBColor.from_string(hex_color)


def _all_runs(paragraph) -> list[Run]:
    """Direct runs plus runs nested in hyperlinks, in reading order."""
    return [Run(r, paragraph) for r in paragraph._p.xpath("./w:r | ./w:hyperlink/w:r")]


def _text_runs(runs) -> list[Run]:
    return [r for r in runs if r.text]


def _run_matches(run: Run, style: TextStyle) -> bool:
    font = run.font
    if font.name != style.font:
        return False
    if font.size is None or not _close(font.size.pt, style.size_pt):
        return False
    if font.color.rgb != _rgb(style.color_hex):
        return False
    if style.bold is not None and bool(font.bold) != style.bold:
        return False
    return True


def _apply_run_style(run: Run, style: TextStyle) -> None:
    font = run.font
    font.name = style.font
    font.size = Pt(style.size_pt)
    font.color.rgb = _rgb(style.color_hex)
    if style.bold is not None:
        font.bold = style.bold


def _spacing_matches(paragraph, style: TextStyle) -> bool:
    pf = paragraph.paragraph_format
    if not _length_matches(pf.space_before, style.space_before_pt):
        return False
    if not _length_matches(pf.space_after, style.space_after_pt):
        return False
    if style.line_spacing is not None:
        ls = pf.line_spacing
        if not isinstance(ls, float) or not _close(ls, style.line_spacing):
            return False
    return True


def _apply_spacing(paragraph, style: TextStyle) -> None:
    pf = paragraph.paragraph_format
    if style.space_before_pt is not None:
        pf.space_before = Pt(style.space_before_pt)
    if style.space_after_pt is not None:
        pf.space_after = Pt(style.space_after_pt)
    if style.line_spacing is not None:
        pf.line_spacing = style.line_spacing


def _paragraph_matches(paragraph, runs, style: TextStyle) -> bool:
    runs = _text_runs(runs)
    if not runs:
        return _spacing_matches(paragraph, style)
    return all(_run_matches(r, style) for r in runs) and _spacing_matches(paragraph, style)


# ---------------------------------------------------------------------------
# Headings
# ---------------------------------------------------------------------------

def _replace_marker(paragraph, marker: str) -> None:
    """Remove any marker glyph at the start of the heading, then prefix ``marker``."""
    runs = _all_runs(paragraph)
    text_runs = _text_runs(runs)
    if text_runs:
        first = text_runs[0]
        first.text = strip_heading_marker(first.text)
        # A previous run may have put the glyph in its own run; drop leading runs emptied above.
        if not first.text and len(text_runs) > 1:
            first._r.getparent().remove(first._r)
            first = text_runs[1]
            first.text = strip_heading_marker(first.text)
        first.text = marker + first.text
    else:
        paragraph.add_run(marker)


def heading_is_formatted(paragraph, level: int) -> bool:
    style = HEADING_STYLES[level]
    if not (paragraph.text or "").startswith(style.marker):
        return False
    return _paragraph_matches(paragraph, _all_runs(paragraph), style)


def format_heading(paragraph, level: int, fresh: bool = False) -> bool:
    """Returns True when the heading was changed."""
    style = HEADING_STYLES[level]
    if not fresh and heading_is_formatted(paragraph, level):
        return False
    _replace_marker(paragraph, style.marker)
    for run in _all_runs(paragraph):
        _apply_run_style(run, style)
    _apply_spacing(paragraph, style)
    paragraph.paragraph_format.keep_with_next = True
    return True


# ---------------------------------------------------------------------------
# Body paragraphs
# ---------------------------------------------------------------------------

def body_is_formatted(paragraph) -> bool:
    return _paragraph_matches(paragraph, paragraph.runs, BODY_STYLE)


def format_body_paragraph(paragraph, fresh: bool = False) -> bool:
    if not fresh and body_is_formatted(paragraph):
        return False
    # Direct runs only: hyperlink runs keep their link styling.
    for run in paragraph.runs:
        if run.text:
            _apply_run_style(run, BODY_STYLE)
    _apply_spacing(paragraph, BODY_STYLE)
    return True


# ---------------------------------------------------------------------------
# List items
# ---------------------------------------------------------------------------

def find_term_boundary(text: str) -> int | None:
    """Length of the leading 'term' of a definition-style list item, or None.

    The term ends at the earliest of ':', ' - ', ' – ', ' — ' found within the first
    60 characters; a colon is kept with the term.
    """
    head = (text or "")[:TERM_SEARCH_CHARS]
    best = None
    best_delim = None
    for delim in TERM_DELIMITERS:
        pos = head.find(delim)
        if pos > 0 and (best is None or pos < best):
            best, best_delim = pos, delim
    if best is None:
        return None
    if not text[:best].strip():
        return None
    return best + 1 if best_delim == ":" else best


def _split_run(run: Run, offset: int) -> Run:
    """Split ``run`` at ``offset``; ``run`` keeps the head, the returned run holds the tail."""
    text = run.text
    tail_r = copy.deepcopy(run._r)
    run._r.addnext(tail_r)
    run.text = text[:offset]
    tail = Run(tail_r, run._parent)
    tail.text = text[offset:]
    return tail


def _term_is_bold(paragraph, length: int) -> bool:
    consumed = 0
    for run in paragraph.runs:
        if consumed >= length:
            break
        if run.text and not run.font.bold:
            return False
        consumed += len(run.text)
    return True


def bold_term(paragraph, length: int) -> None:
    consumed = 0
    for run in list(paragraph.runs):
        if consumed >= length:
            break
        size = len(run.text)
        if consumed + size > length:
            _split_run(run, length - consumed)
            size = len(run.text)
        run.font.bold = True
        consumed += size


def _list_term_length(paragraph) -> int | None:
    if paragraph._p.xpath("./w:hyperlink"):
        return None
    text = "".join(r.text for r in paragraph.runs)
    return find_term_boundary(text)


def list_item_is_formatted(paragraph) -> bool:
    if not _paragraph_matches(paragraph, paragraph.runs, LIST_STYLE):
        return False
    term = _list_term_length(paragraph)
    return term is None or _term_is_bold(paragraph, term)


def format_list_item(paragraph, fresh: bool = False) -> bool:
    if not fresh and list_item_is_formatted(paragraph):
        return False
    for run in paragraph.runs:
        if run.text:
            _apply_run_style(run, LIST_STYLE)
    _apply_spacing(paragraph, LIST_STYLE)
    term = _list_term_length(paragraph)
    if term:
        bold_term(paragraph, term)
    return True


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------

def _cell_fill(cell) -> str | None:
    tcPr = cell._tc.tcPr
    if tcPr is None:
        return None
    shd = tcPr.find(qn("w:shd"))
    if shd is None:
        return None
    fill = shd.get(qn("w:fill"))
    return fill.upper() if fill else None


def _set_cell_fill(cell, fill: str) -> None:
    tcPr = cell._tc.get_or_add_tcPr()
    shd = tcPr.find(qn("w:shd"))
    if shd is None:
        shd = OxmlElement("w:shd")
        tcPr.insert_element_before(
            shd, "w:noWrap", "w:tcMar", "w:textDirection", "w:tcFitText", "w:vAlign", "w:hideMark"
        )
    shd.set(qn("w:val"), "clear")
    shd.set(qn("w:color"), "auto")
    shd.set(qn("w:fill"), fill)


def _set_cell_padding(table, twips: int) -> None:
    tblPr = table._tbl.tblPr
    mar = tblPr.find(qn("w:tblCellMar"))
    if mar is not None:
        tblPr.remove(mar)
    mar = OxmlElement("w:tblCellMar")
    for side in ("top", "left", "bottom", "right"):
        el = OxmlElement(f"w:{side}")
        el.set(qn("w:w"), str(twips))
        el.set(qn("w:type"), "dxa")
        mar.append(el)
    tblPr.insert_element_before(mar, "w:tblLook", "w:tblCaption", "w:tblDescription")


def table_is_formatted(table) -> bool:
    if not table.rows:
        return True
    return _cell_fill(table.rows[0].cells[0]) == TABLE_HEADER_FILL


def _available_width(store: DocxDocumentStore) -> int:
    section = store.document.sections[0]
    try:
        width = section.page_width - section.left_margin - section.right_margin
    except TypeError:
        width = Inches(6.5)
    return int(width) if width and width > 0 else int(Inches(6.5))


def column_widths(table, available: int, min_width: int = int(Inches(MIN_COLUMN_WIDTH_INCHES))) -> list[int]:
    """Width per column proportional to its longest text line, never below ``min_width``."""
    ncols = len(table.columns)
    longest = [1] * ncols
    for row in table.rows:
        for j, cell in enumerate(row.cells[:ncols]):
            for line in (cell.text or "").split("\n"):
                longest[j] = max(longest[j], len(line.strip()))
    total = sum(longest)
    return [max(min_width, int(available * n / total)) for n in longest]


def format_table(table, available_width: int, fresh: bool = False) -> bool:
    if not fresh and table_is_formatted(table):
        return False
    if not table.rows:
        return False
    widths = column_widths(table, available_width)
    table.autofit = False
    for j, column in enumerate(table.columns):
        column.width = Emu(widths[j])
    for ri, row in enumerate(table.rows):
        if ri == 0:
            fill = TABLE_HEADER_FILL
        else:
            fill = TABLE_ZEBRA_FILL if ri % 2 == 0 else TABLE_PLAIN_FILL
        for j, cell in enumerate(row.cells):
            if j < len(widths):
                cell.width = Emu(widths[j])
            _set_cell_fill(cell, fill)
            for para in cell.paragraphs:
                para.paragraph_format.space_before = Pt(2)
                para.paragraph_format.space_after = Pt(2)
                for run in para.runs:
                    run.font.size = Pt(TABLE_FONT_SIZE_PT)
                    if ri == 0:
                        run.font.bold = True
                        run.font.color.rgb = _rgb(TABLE_HEADER_TEXT)
    _set_cell_padding(table, TABLE_CELL_PADDING_TWIPS)
    return True


# ---------------------------------------------------------------------------
# Links
# ---------------------------------------------------------------------------

@dataclass
class LinkSpan:
    start: int
    end: int
    url: str


def _style_changes(paragraph) -> list[tuple[int, str | None, Run]]:
    """(offset, link target or None, run) at every point where character attributes change."""
    changes = []
    offset = 0
    for item in paragraph.iter_inner_content():
        if isinstance(item, Hyperlink):
            url = item.url or (f"#{item.fragment}" if item.fragment else "#")
            for run in item.runs:
                changes.append((offset, url, run))
                offset += len(run.text)
        else:
            changes.append((offset, None, item))
            offset += len(item.text)
    return changes


def link_spans(paragraph) -> list[LinkSpan]:
    """Spans carrying a link target. Each span ends at the next change to a different target,
    or at the end of the text."""
    changes = _style_changes(paragraph)
    text_end = len(paragraph.text or "")
    spans = []
    for i, (start, url, _run) in enumerate(changes):
        if url is None:
            continue
        if spans and spans[-1].url == url and start < spans[-1].end:
            continue
        end = text_end
        for next_start, next_url, _ in changes[i + 1:]:
            if next_url != url:
                end = next_start
                break
        if end > start:
            spans.append(LinkSpan(start, end, url))
    return spans


def _runs_in_span(changes, span: LinkSpan) -> list[Run]:
    return [run for offset, _url, run in changes if span.start <= offset < span.end and run.text]


def _link_run_ok(run: Run) -> bool:
    return bool(run.font.underline) and run.font.color.rgb == _rgb(LINK_COLOR_HEX)


def links_are_formatted(paragraph) -> bool:
    changes = _style_changes(paragraph)
    for span in link_spans(paragraph):
        if not all(_link_run_ok(run) for run in _runs_in_span(changes, span)):
            return False
    return True


def restore_links(paragraph, fresh: bool = False) -> bool:
    if not fresh and links_are_formatted(paragraph):
        return False
    changes = _style_changes(paragraph)
    spans = link_spans(paragraph)
    for span in spans:
        for run in _runs_in_span(changes, span):
            run.font.underline = True
            run.font.color.rgb = _rgb(LINK_COLOR_HEX)
    return bool(spans)


def _has_hyperlink(paragraph) -> bool:
    return bool(paragraph._p.xpath("./w:hyperlink"))


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------

def _inline_shapes(paragraph) -> list[InlineShape]:
    return [InlineShape(inline) for inline in paragraph._p.xpath(".//wp:inline")]


def image_is_formatted(paragraph, max_width: int) -> bool:
    if paragraph.alignment != WD_ALIGN_PARAGRAPH.CENTER:
        return False
    pf = paragraph.paragraph_format
    if not (_length_matches(pf.space_before, IMAGE_SPACE_PT) and _length_matches(pf.space_after, IMAGE_SPACE_PT)):
        return False
    return all(shape.width <= max_width for shape in _inline_shapes(paragraph))


def format_image_paragraph(paragraph, max_width: int, fresh: bool = False) -> bool:
    if not fresh and image_is_formatted(paragraph, max_width):
        return False
    paragraph.alignment = WD_ALIGN_PARAGRAPH.CENTER
    paragraph.paragraph_format.space_before = Pt(IMAGE_SPACE_PT)
    paragraph.paragraph_format.space_after = Pt(IMAGE_SPACE_PT)
    for shape in _inline_shapes(paragraph):
        width, height = shape.width, shape.height
        if width > max_width and width:
            shape.width = Emu(max_width)
            shape.height = Emu(int(height * max_width / width))
    return True


# ---------------------------------------------------------------------------
# Pass driver
# ---------------------------------------------------------------------------

def _run_pass(store: DocxDocumentStore, name: str, collect, handle, fresh: bool, batch_size: int | None, should_stop=None) -> PassReport:
    """Shared loop: collect targets, handle each, flush/reopen every ``batch_size`` targets."""
    state = {"items": collect(store), "dirty": False}
    report = PassReport(name=name, total=len(state["items"]))

    def per_unit(i, _unit):
        if handle(state["items"][i], fresh):
            report.processed += 1
            state["dirty"] = True
        else:
            report.skipped += 1

    def checkpoint(_next):
        if state["dirty"]:
            store.flush()
            state["dirty"] = False
        # Reopened handles invalidate the old element objects.
        state["items"] = collect(store)

    next_i = process_in_batches(
        range(report.total),
        batch_size or BATCH_SIZES[name],
        per_unit,
        checkpoint,
        should_stop=should_stop,
    )
    report.complete = next_i >= report.total
    logger.info("%s pass on %s: %d formatted, %d skipped of %d", name, store.document_id, report.processed, report.skipped, report.total)
    return report


def format_headings(store: DocxDocumentStore, fresh: bool = False, batch_size: int | None = None, levels=(1, 2, 3, 4, 5), should_stop=None) -> PassReport:
    def collect(s):
        out = []
        for para in s.paragraphs_of_kind(HEADING):
            level = heading_level(para)
            if level in levels:
                out.append((para, level))
        return out

    return _run_pass(store, "headings", collect, lambda item, f: format_heading(item[0], item[1], f), fresh, batch_size, should_stop)


def format_body(store: DocxDocumentStore, fresh: bool = False, batch_size: int | None = None, should_stop=None) -> PassReport:
    def collect(s):
        return [p for p in s.paragraphs_of_kind(PARAGRAPH) if (p.text or "").strip()]

    return _run_pass(store, "body", collect, format_body_paragraph, fresh, batch_size, should_stop)


def format_lists(store: DocxDocumentStore, fresh: bool = False, batch_size: int | None = None, should_stop=None) -> PassReport:
    def collect(s):
        return [p for p in s.paragraphs_of_kind(LIST_ITEM) if (p.text or "").strip()]

    return _run_pass(store, "lists", collect, format_list_item, fresh, batch_size, should_stop)


def format_tables(store: DocxDocumentStore, fresh: bool = False, batch_size: int | None = None, should_stop=None) -> PassReport:
    def collect(s):
        return s.tables()

    def handle(table, f):
        return format_table(table, _available_width(store), f)

    return _run_pass(store, "tables", collect, handle, fresh, batch_size, should_stop)


def format_links(store: DocxDocumentStore, fresh: bool = False, batch_size: int | None = None, should_stop=None) -> PassReport:
    def collect(s):
        return [p for p in s.paragraphs_of_kind(PARAGRAPH, LIST_ITEM) if _has_hyperlink(p)]

    return _run_pass(store, "links", collect, restore_links, fresh, batch_size, should_stop)


def format_images(store: DocxDocumentStore, fresh: bool = False, batch_size: int | None = None, should_stop=None) -> PassReport:
    def collect(s):
        return [p for p in s.document.paragraphs if has_drawing(p)]

    def handle(para, f):
        return format_image_paragraph(para, _available_width(store), f)

    return _run_pass(store, "images", collect, handle, fresh, batch_size, should_stop)


PASSES = {
    "headings": format_headings,
    "body": format_body,
    "lists": format_lists,
    "tables": format_tables,
    "links": format_links,
    "images": format_images,
}


def run_formatting(store: DocxDocumentStore, passes=None, fresh: bool = False, time_budget: float | None = None, clock=time.monotonic) -> FormatReport:
    """Run the selected passes in order; stop between batches once ``time_budget`` seconds are spent."""
    names = list(passes or PASS_ORDER)
    unknown = [n for n in names if n not in PASSES]
    if unknown:
        raise ValueError(f"unknown formatting pass(es): {', '.join(unknown)}")
    started = clock()

    def out_of_time() -> bool:
        return time_budget is not None and clock() - started >= time_budget

    report = FormatReport()
    for name in names:
        if out_of_time():
            report.passes.append(PassReport(name=name, complete=False))
            continue
        result = PASSES[name](store, fresh=fresh, should_stop=out_of_time)
        report.passes.append(result)
    store.save()
    return report
