"""Ask the model which sections need an infographic, per section or for the whole document."""

import logging
from dataclasses import asdict, dataclass, field

from docauto.errors import GenerationError
from docauto.json_recovery import recover_object
from docauto.sections import Section, SectionSnapshot

logger = logging.getLogger(__name__)

HOLISTIC_EXCERPT_CHARS = 8000
SECTION_PREVIEW_CHARS = 150
UNIT_TEXT_CHARS = 6000

SCOPE_DOCUMENT = "document"
SCOPE_MULTI = "multi_section"
SCOPE_SINGLE = "single_section"
SCOPES = (SCOPE_DOCUMENT, SCOPE_MULTI, SCOPE_SINGLE)

INFOGRAPHIC_TYPES = (
    "process_flow",
    "timeline",
    "comparison",
    "statistics",
    "hierarchy",
    "cycle",
    "checklist",
    "concept_map",
    "none",
)

# Aliases the model tends to use instead of the canonical names.
_TYPE_ALIASES = {
    "process": "process_flow",
    "flow": "process_flow",
    "flowchart": "process_flow",
    "steps": "process_flow",
    "stats": "statistics",
    "chart": "statistics",
    "data": "statistics",
    "tree": "hierarchy",
    "org_chart": "hierarchy",
    "list": "checklist",
    "mind_map": "concept_map",
    "mindmap": "concept_map",
    "versus": "comparison",
    "vs": "comparison",
}

UNIT_PROMPT = """You decide whether a section of a document would benefit from an infographic.

Section title: {heading}
Section text:
---
{text}
---

Reply with JSON only:
{{"needs_infographic": true or false,
  "reason": "<one sentence>",
  "infographic_type": one of {types},
  "prompt": "<only when needs_infographic is true: a detailed image-generation prompt describing layout, labels and content, using facts from the section>"}}"""

HOLISTIC_PROMPT = """You plan infographics for a whole document. Choose the few places where a visual adds the most: one infographic may cover the whole document, several related sections, or a single section.

Sections (index, title, preview):
{summary}

Document excerpt (first {limit} characters):
---
{excerpt}
---

Reply with JSON only:
{{"reasoning": "<short explanation of the overall plan>",
  "infographics": [
    {{"scope": "document" | "multi_section" | "single_section",
      "section_indices": [<section index>, ...] or "all",
      "title": "<caption title>",
      "infographic_type": one of {types},
      "reason": "<why this helps the reader>",
      "visual_prompt": "<detailed image-generation prompt>"}}
  ]}}"""


@dataclass
class UnitAnalysis:
    needs_infographic: bool
    reason: str = ""
    infographic_type: str = "none"
    prompt: str = ""

    @classmethod
    def declined(cls, reason: str = "analysis unavailable") -> "UnitAnalysis":
        return cls(needs_infographic=False, reason=reason, infographic_type="none", prompt="")


@dataclass
class InfographicSpec:
    scope: str
    section_indices: list | str
    title: str = ""
    infographic_type: str = "none"
    reason: str = ""
    visual_prompt: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "InfographicSpec":
        return cls(
            scope=data.get("scope", SCOPE_SINGLE),
            section_indices=data.get("section_indices", []),
            title=data.get("title", ""),
            infographic_type=data.get("infographic_type", "none"),
            reason=data.get("reason", ""),
            visual_prompt=data.get("visual_prompt", ""),
        )


@dataclass
class InfographicPlan:
    infographics: list = field(default_factory=list)
    reasoning: str = ""

    def __len__(self) -> int:
        return len(self.infographics)

    def to_dict(self) -> dict:
        return {"reasoning": self.reasoning, "infographics": [spec.to_dict() for spec in self.infographics]}

    @classmethod
    def from_dict(cls, data: dict | None) -> "InfographicPlan":
        if not data:
            return cls()
        return cls(
            infographics=[InfographicSpec.from_dict(item) for item in data.get("infographics", []) if isinstance(item, dict)],
            reasoning=data.get("reasoning", ""),
        )


def normalize_type(value) -> str | None:
    if not isinstance(value, str):
        return None
    key = value.strip().lower().replace("-", "_").replace(" ", "_")
    key = _TYPE_ALIASES.get(key, key)
    return key if key in INFOGRAPHIC_TYPES else None


def _as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return False


def analyze_unit(section: Section, service) -> UnitAnalysis:
    """One verdict for one section. Any unusable response means 'no infographic'."""
    prompt = UNIT_PROMPT.format(
        heading=section.heading or "(untitled)",
        text=section.text[:UNIT_TEXT_CHARS],
        types=", ".join(INFOGRAPHIC_TYPES),
    )
    raw = service.generate_text(prompt, temperature=0.3, max_tokens=1024)
    data = recover_object(raw)
    if data is None:
        logger.warning("Unparseable analysis for section %r; treating as no infographic", section.heading)
        return UnitAnalysis.declined("unparseable response")
    needs = _as_bool(data.get("needs_infographic", data.get("needsInfographic")))
    kind = normalize_type(data.get("infographic_type", data.get("infographicType")))
    prompt_text = (data.get("prompt") or "").strip() if isinstance(data.get("prompt"), str) else ""
    reason = str(data.get("reason") or "")
    if not needs:
        return UnitAnalysis(needs_infographic=False, reason=reason, infographic_type="none")
    if kind is None or kind == "none" or not prompt_text:
        logger.warning("Analysis for section %r said yes without a usable type/prompt", section.heading)
        return UnitAnalysis.declined(reason or "incomplete response")
    return UnitAnalysis(needs_infographic=True, reason=reason, infographic_type=kind, prompt=prompt_text)


def summarize_sections(snapshot: SectionSnapshot) -> str:
    lines = []
    for i, section in enumerate(snapshot):
        preview = " ".join(section.text.split())[:SECTION_PREVIEW_CHARS]
        lines.append(f"[{i}] {section.heading or '(untitled)'} — {preview}")
    return "\n".join(lines)


def _clean_spec(item: dict, section_count: int) -> InfographicSpec | None:
    kind = normalize_type(item.get("infographic_type", item.get("infographicType", item.get("type"))))
    visual_prompt = item.get("visual_prompt", item.get("visualPrompt", item.get("prompt")))
    if kind is None or kind == "none" or not isinstance(visual_prompt, str) or not visual_prompt.strip():
        return None
    scope = str(item.get("scope") or "").strip().lower().replace("-", "_")
    raw_indices = item.get("section_indices", item.get("sectionIndices"))
    if scope == SCOPE_DOCUMENT or raw_indices == "all":
        indices = "all"
        scope = SCOPE_DOCUMENT
    else:
        if isinstance(raw_indices, int):
            raw_indices = [raw_indices]
        if not isinstance(raw_indices, list):
            return None
        indices = []
        for value in raw_indices:
            try:
                idx = int(value)
            except (TypeError, ValueError):
                continue
            if 0 <= idx < section_count and idx not in indices:
                indices.append(idx)
        if not indices:
            return None
        scope = SCOPE_SINGLE if len(indices) == 1 else SCOPE_MULTI
    return InfographicSpec(
        scope=scope,
        section_indices=indices,
        title=str(item.get("title") or "").strip(),
        infographic_type=kind,
        reason=str(item.get("reason") or ""),
        visual_prompt=visual_prompt.strip(),
    )


def analyze_holistically(snapshot: SectionSnapshot, full_text: str, service, excerpt_chars: int = HOLISTIC_EXCERPT_CHARS) -> InfographicPlan:
    """Plan infographics for the whole document. Returns an empty plan when nothing usable comes back."""
    prompt = HOLISTIC_PROMPT.format(
        summary=summarize_sections(snapshot),
        limit=excerpt_chars,
        excerpt=full_text[:excerpt_chars],
        types=", ".join(INFOGRAPHIC_TYPES),
    )
    try:
        raw = service.generate_text(prompt, temperature=0.4, max_tokens=4096)
    except GenerationError as exc:
        logger.error("Holistic analysis failed: %s", exc)
        return InfographicPlan()
    data = recover_object(raw)
    if data is None:
        logger.warning("Holistic analysis returned nothing parseable")
        return InfographicPlan()
    items = data.get("infographics")
    if not isinstance(items, list):
        return InfographicPlan(reasoning=str(data.get("reasoning") or ""))
    specs = []
    for item in items:
        if not isinstance(item, dict):
            continue
        spec = _clean_spec(item, len(snapshot))
        if spec is not None:
            specs.append(spec)
    return InfographicPlan(infographics=specs, reasoning=str(data.get("reasoning") or ""))
