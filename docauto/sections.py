"""Split a document into heading-bounded sections."""

from dataclasses import dataclass, field

from docauto.document_store import (
    CAPTION,
    HEADING,
    LIST_ITEM,
    PARAGRAPH,
    TABLE,
    DocxDocumentStore,
    strip_heading_marker,
    table_rows,
)

MIN_SECTION_LENGTH = 100
TABLE_MARKER = "[TABLE]"


@dataclass
class Section:
    text: str
    heading: str
    start_index: int
    has_infographic: bool = False


@dataclass(frozen=True)
class SectionSnapshot:
    """Sections as read at one document revision. Positions are only valid at that revision."""

    sections: tuple
    revision: int
    document_id: str = ""

    def __len__(self) -> int:
        return len(self.sections)

    def __iter__(self):
        return iter(self.sections)

    def __getitem__(self, index):
        return self.sections[index]

    def is_fresh(self, store: DocxDocumentStore) -> bool:
        return store.document_id == self.document_id and store.revision == self.revision


@dataclass
class _OpenSection:
    heading: str
    start_index: int
    parts: list = field(default_factory=list)
    has_infographic: bool = False

    def close(self, min_length: int) -> Section | None:
        text = "\n".join(self.parts)
        if len(text) < min_length:
            return None
        return Section(text=text, heading=self.heading, start_index=self.start_index, has_infographic=self.has_infographic)


def serialize_table(table) -> str:
    lines = [TABLE_MARKER]
    for row in table_rows(table):
        lines.append(" | ".join(row))
    return "\n".join(lines)


def extract_sections(store: DocxDocumentStore, min_length: int = MIN_SECTION_LENGTH) -> SectionSnapshot:
    """Scan the live document and return its sections.

    Sections shorter than ``min_length`` are dropped. The document is not modified.
    """
    sections = []
    current = None
    for el in store.elements():
        if el.kind == HEADING:
            if current is not None:
                done = current.close(min_length)
                if done:
                    sections.append(done)
            current = _OpenSection(heading=strip_heading_marker(el.text).strip(), start_index=el.index + 1)
            continue
        if current is None:
            current = _OpenSection(heading="", start_index=el.index)
        if el.kind == CAPTION:
            current.has_infographic = True
        elif el.kind in (PARAGRAPH, LIST_ITEM):
            text = el.text.strip()
            if text:
                current.parts.append(text)
        elif el.kind == TABLE:
            current.parts.append(serialize_table(el.block))
    if current is not None:
        done = current.close(min_length)
        if done:
            sections.append(done)
    return SectionSnapshot(sections=tuple(sections), revision=store.revision, document_id=store.document_id)
