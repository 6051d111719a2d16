"""Map a planned infographic to an insertion offset in the live document.

Offsets move every time something is inserted, so resolution always takes a snapshot
read at the store's current revision and refuses an older one.
"""

from docauto.analyzer import SCOPE_DOCUMENT, InfographicSpec
from docauto.document_store import DocxDocumentStore
from docauto.errors import StaleSnapshotError
from docauto.sections import SectionSnapshot


def _require_fresh(snapshot: SectionSnapshot, store: DocxDocumentStore) -> None:
    if not snapshot.is_fresh(store):
        raise StaleSnapshotError(
            f"section snapshot is from revision {snapshot.revision}, document is at {store.revision}"
        )


def valid_indices(spec: InfographicSpec, snapshot: SectionSnapshot) -> list[int]:
    if spec.section_indices == "all":
        return list(range(len(snapshot)))
    out = []
    for value in spec.section_indices:
        if isinstance(value, int) and 0 <= value < len(snapshot):
            out.append(value)
    return sorted(set(out))


def resolve_position(spec: InfographicSpec, snapshot: SectionSnapshot, store: DocxDocumentStore) -> int:
    """0 for document scope, else the start of the lowest-numbered section still in range."""
    _require_fresh(snapshot, store)
    if spec.scope == SCOPE_DOCUMENT or spec.section_indices == "all":
        return 0
    indices = valid_indices(spec, snapshot)
    if not indices:
        raise ValueError(f"no section index of {spec.section_indices!r} is in range (have {len(snapshot)})")
    return snapshot[indices[0]].start_index


def resolve_section_position(section_index: int, snapshot: SectionSnapshot, store: DocxDocumentStore) -> int:
    _require_fresh(snapshot, store)
    if not 0 <= section_index < len(snapshot):
        raise ValueError(f"section {section_index} is out of range (have {len(snapshot)})")
    return snapshot[section_index].start_index


def order_by_position_desc(specs: list[InfographicSpec], snapshot: SectionSnapshot, store: DocxDocumentStore) -> list[InfographicSpec]:
    """Latest insertion point first, so earlier inserts never move a later one. Stable for ties."""
    keyed = []
    for i, spec in enumerate(specs):
        try:
            pos = resolve_position(spec, snapshot, store)
        except ValueError:
            continue
        keyed.append((pos, i, spec))
    keyed.sort(key=lambda item: (-item[0], item[1]))
    return [spec for _pos, _i, spec in keyed]
