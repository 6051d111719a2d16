"""Formatting passes: target formatting, skip-aware idempotence, resumability."""
import copy
import itertools

import pytest
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.shared import Inches

from docauto.document_store import HEADING, LIST_ITEM, PARAGRAPH, DocxDocumentStore
from docauto.style_formatter import (
    BODY_STYLE,
    HEADING_STYLES,
    LINK_COLOR_HEX,
    PASS_ORDER,
    PASSES,
    TABLE_HEADER_FILL,
    _cell_fill,
    column_widths,
    find_term_boundary,
    format_body,
    format_headings,
    format_images,
    format_lists,
    format_tables,
    link_spans,
    run_formatting,
)

from tests.conftest import PNG_BYTES, add_hyperlink


@pytest.fixture
def mixed_docx(make_docx):
    path = make_docx([
        ("title", "Annual Report"),
        ("h1", "Summary"),
        ("p", "The year closed ahead of plan."),
        ("h2", "▶ Already marked"),
        ("li", "Revenue: grew twelve percent"),
        ("li", "Headcount - flat"),
        ("li", "No delimiter in this item"),
        ("table", [["Region", "Revenue"], ["North", "1.2m"], ["South", "0.9m"]]),
        ("link", "See ", [("https://example.com/a", "the appendix", " and "), ("https://example.com/b", "notes", "")]),
        ("h3", "Details"),
        ("p", "Closing paragraph."),
    ])
    store = DocxDocumentStore(path)
    store.insert_picture(3, PNG_BYTES, 9.0)
    store.flush()
    return path


@pytest.mark.parametrize("name", PASS_ORDER)
def test_every_pass_is_idempotent(mixed_docx, name):
    first = PASSES[name](DocxDocumentStore(mixed_docx))
    assert first.processed > 0
    second = PASSES[name](DocxDocumentStore(mixed_docx))
    assert second.processed == 0
    assert second.skipped == second.total


def test_full_run_then_rerun_touches_nothing(mixed_docx):
    first = run_formatting(DocxDocumentStore(mixed_docx))
    assert first.complete and first.processed > 0
    second = run_formatting(DocxDocumentStore(mixed_docx))
    assert second.complete and second.processed == 0


def test_fresh_mode_reformats_everything(mixed_docx):
    format_body(DocxDocumentStore(mixed_docx))
    again = format_body(DocxDocumentStore(mixed_docx), fresh=True)
    assert again.processed == again.total > 0


def test_headings_get_level_marker_and_style(mixed_docx):
    format_headings(DocxDocumentStore(mixed_docx))
    store = DocxDocumentStore(mixed_docx)
    headings = store.paragraphs_of_kind(HEADING)
    assert [h.text for h in headings] == ["■ Annual Report", "■ Summary", "▶ Already marked", "◆ Details"]
    run = headings[1].runs[0]
    assert run.font.name == HEADING_STYLES[1].font
    assert run.font.bold
    assert headings[1].paragraph_format.space_before.pt == HEADING_STYLES[1].space_before_pt


def test_body_style_applied(mixed_docx):
    format_body(DocxDocumentStore(mixed_docx))
    para = DocxDocumentStore(mixed_docx).paragraphs_of_kind(PARAGRAPH)[0]
    assert para.text == "The year closed ahead of plan."
    assert para.runs[0].font.name == BODY_STYLE.font
    assert para.runs[0].font.size.pt == BODY_STYLE.size_pt
    assert para.paragraph_format.line_spacing == pytest.approx(BODY_STYLE.line_spacing)


def test_list_terms_are_bolded(mixed_docx):
    format_lists(DocxDocumentStore(mixed_docx))
    items = DocxDocumentStore(mixed_docx).paragraphs_of_kind(LIST_ITEM)
    revenue, headcount, plain = items
    assert [(r.text, bool(r.font.bold)) for r in revenue.runs] == [("Revenue:", True), (" grew twelve percent", False)]
    assert [(r.text, bool(r.font.bold)) for r in headcount.runs] == [("Headcount", True), (" - flat", False)]
    assert not any(r.font.bold for r in plain.runs)


@pytest.mark.parametrize("text, expected", [
    ("Term: definition", 5),
    ("Term - definition", 4),
    ("Term — definition: with colon later", 4),
    ("Nothing to split here", None),
    (": leading colon", None),
    ("x" * 70 + ": too far", None),
])
def test_find_term_boundary(text, expected):
    assert find_term_boundary(text) == expected


def test_table_header_and_widths(mixed_docx):
    format_tables(DocxDocumentStore(mixed_docx))
    table = DocxDocumentStore(mixed_docx).tables()[0]
    assert _cell_fill(table.rows[0].cells[0]) == TABLE_HEADER_FILL
    assert _cell_fill(table.rows[2].cells[0]) == "F2F2F2"
    assert table.rows[0].cells[0].paragraphs[0].runs[0].font.bold


def test_column_widths_are_proportional_with_a_floor(make_docx):
    path = make_docx([("table", [["ID", "A much longer description column"], ["1", "x"]])])
    table = DocxDocumentStore(path).tables()[0]
    narrow, wide = column_widths(table, int(Inches(6)))
    assert narrow == int(Inches(0.75))
    assert wide > narrow


def test_link_spans(make_docx):
    path = make_docx([
        ("link", "See ", [("https://example.com/a", "the appendix", " and "), ("https://example.com/b", "notes", "")]),
    ])
    para = DocxDocumentStore(path).paragraphs_of_kind(PARAGRAPH)[0]
    spans = [(s.start, s.end, s.url) for s in link_spans(para)]
    assert spans == [(4, 16, "https://example.com/a"), (21, 26, "https://example.com/b")]


def test_link_split_over_two_runs_is_one_span(make_docx):
    path = make_docx([("p", "Go ")])
    store = DocxDocumentStore(path)
    para = store.paragraphs_of_kind(PARAGRAPH)[0]
    link = add_hyperlink(para, "https://example.com", "here")
    link.append(copy.deepcopy(link[0]))
    spans = link_spans(para)
    assert [(s.start, s.end) for s in spans] == [(3, 11)]


def test_links_restored(mixed_docx):
    PASSES["links"](DocxDocumentStore(mixed_docx))
    para = [p for p in DocxDocumentStore(mixed_docx).paragraphs_of_kind(PARAGRAPH) if "appendix" in p.text][0]
    link_runs = [r for link in para.hyperlinks for r in link.runs]
    assert link_runs and all(r.font.underline for r in link_runs)
    assert all(str(r.font.color.rgb) == LINK_COLOR_HEX for r in link_runs)
    assert not para.runs[0].font.underline


def test_images_centered_and_fitted(mixed_docx):
    format_images(DocxDocumentStore(mixed_docx))
    store = DocxDocumentStore(mixed_docx)
    picture = [p for p in store.document.paragraphs if p._p.xpath(".//w:drawing")][0]
    assert picture.alignment == WD_ALIGN_PARAGRAPH.CENTER
    section = store.document.sections[0]
    shape = store.document.inline_shapes[0]
    assert shape.width <= section.page_width - section.left_margin - section.right_margin


def test_small_batches_flush_between_checkpoints(mixed_docx):
    report = format_lists(DocxDocumentStore(mixed_docx), batch_size=1)
    assert report.complete and report.processed == 3
    assert format_lists(DocxDocumentStore(mixed_docx)).processed == 0


def test_time_budget_pauses_and_a_rerun_finishes(mixed_docx):
    ticks = itertools.count(0, 10)
    paused = run_formatting(DocxDocumentStore(mixed_docx), time_budget=15, clock=lambda: next(ticks))
    assert not paused.complete
    assert [p.name for p in paused.passes if p.complete] == ["headings"]
    assert "Run again" in paused.message

    finished = run_formatting(DocxDocumentStore(mixed_docx))
    assert finished.complete
    assert finished.passes[0].processed == 0
    assert finished.passes[1].processed > 0


def test_unknown_pass_is_rejected(mixed_docx):
    with pytest.raises(ValueError):
        run_formatting(DocxDocumentStore(mixed_docx), passes=["headings", "colours"])
