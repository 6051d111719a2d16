"""Resumable infographic jobs.

A job handles at most ``batch_size`` units per invocation and checkpoints its progress
record after every unit, so an invocation cut short loses at most the unit in flight.
Per-section jobs walk sections in ascending order; plan-based ("smart") jobs walk the
stored plan, which is ordered by descending insertion position.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable

from docauto.analyzer import InfographicPlan, analyze_holistically, analyze_unit
from docauto.config import Settings
from docauto.document_store import DocxDocumentStore
from docauto.errors import NoContentError
from docauto.generation import ReferenceImageCache
from docauto.insertion import insert_infographic
from docauto.positions import order_by_position_desc, resolve_position, resolve_section_position
from docauto.progress_store import JOB_SECTION, JOB_SMART, JsonProgressStore, ProgressRecord
from docauto.sections import extract_sections

logger = logging.getLogger(__name__)

CONTINUE = "continue"
JUMP = "jump"
RESTART = "restart"
CANCEL = "cancel"
RESUME_ACTIONS = (CONTINUE, JUMP, RESTART, CANCEL)

SUCCESS = "success"
FAILED = "failed"
SKIPPED = "skipped"

IMAGE_STYLE_PROMPT = (
    "Create a clean, professional {kind} infographic suitable for a printed report. "
    "Flat design, white background, clear hierarchy, short legible labels, no watermark. "
    "If reference images are supplied, follow their colour palette and visual style.\n\n{prompt}"
)


def build_image_prompt(prompt: str, infographic_type: str) -> str:
    kind = (infographic_type or "").replace("_", " ").strip() or "explanatory"
    return IMAGE_STYLE_PROMPT.format(kind=kind, prompt=prompt.strip())


def process_in_batches(
    units: Iterable,
    batch_size: int,
    per_unit: Callable,
    checkpoint: Callable[[int], None],
    should_stop: Callable[[], bool] | None = None,
    start: int = 0,
) -> int:
    """Call ``per_unit(i, unit)`` for each unit from ``start``, ``checkpoint(next_i)`` after every
    ``batch_size`` units and after the last one.

    ``should_stop`` is consulted after each checkpoint. Returns the position of the next
    unprocessed unit (``len(units)`` when everything ran).
    """
    units = list(units)
    batch_size = max(1, batch_size)
    pending = 0
    i = start
    while i < len(units):
        per_unit(i, units[i])
        i += 1
        pending += 1
        if pending >= batch_size:
            checkpoint(i)
            pending = 0
            if should_stop is not None and should_stop():
                return i
    if pending:
        checkpoint(i)
    return i


@dataclass
class ResumeDecision:
    action: str = CONTINUE
    jump_to: int | None = None  # 1-based unit number

    @classmethod
    def parse(cls, action: str | None, jump_to: int | None = None) -> "ResumeDecision":
        action = (action or CONTINUE).strip().lower()
        if action not in RESUME_ACTIONS:
            raise ValueError(f"unknown resume action {action!r}; expected one of {', '.join(RESUME_ACTIONS)}")
        if action == JUMP and (jump_to is None or jump_to < 1):
            raise ValueError("jump needs a unit number of 1 or more")
        return cls(action=action, jump_to=jump_to)


@dataclass
class ResumeState:
    """What a paused job looks like to the operator deciding how to proceed."""

    record: ProgressRecord

    @property
    def next_unit(self) -> int:
        return self.record.next_index + 1

    @property
    def message(self) -> str:
        r = self.record
        return (
            f"A previous run stopped after unit {r.next_index} of {r.total_units} "
            f"({r.success} inserted, {r.skipped} skipped, {r.failed} failed)."
        )

    def to_dict(self) -> dict:
        data = self.record.to_dict()
        data["nextUnit"] = self.next_unit
        data["message"] = self.message
        return data


def load_resume_state(progress: JsonProgressStore, document_id: str, job_kind: str) -> ResumeState | None:
    record = progress.load(document_id, job_kind)
    return ResumeState(record) if record is not None else None


def apply_resume_decision(progress: JsonProgressStore, document_id: str, job_kind: str, decision: ResumeDecision) -> int | None:
    """Turn the operator's choice into a start index. None means cancelled."""
    record = progress.load(document_id, job_kind)
    if decision.action == CANCEL:
        return None
    if decision.action == RESTART:
        if record is not None:
            progress.delete(document_id, job_kind)
            logger.info("Progress for %s/%s cleared; starting over", job_kind, document_id)
        return 0
    if decision.action == JUMP:
        start = decision.jump_to - 1
        # Units before the jump target are bypassed, not processed; the skip count is synthetic.
        # total_generated carries over so the ceiling still counts earlier runs.
        seeded = ProgressRecord(
            document_id=document_id,
            job_kind=job_kind,
            last_processed_index=start - 1,
            skipped=start,
            total_generated=record.total_generated if record else 0,
            total_units=record.total_units if record else 0,
            plan=record.plan if record else None,
        )
        progress.save(seeded)
        logger.info("Jumping %s/%s to unit %d", job_kind, document_id, decision.jump_to)
        return start
    return record.next_index if record is not None else 0


@dataclass
class JobSummary:
    job_kind: str
    success: int = 0
    failed: int = 0
    skipped: int = 0
    total_generated: int = 0
    total_units: int = 0
    next_index: int = 0
    complete: bool = False
    cancelled: bool = False
    ceiling_reached: bool = False
    fallback_offered: bool = False
    reasoning: str = ""

    @property
    def remaining(self) -> int:
        if self.complete:
            return 0
        return max(0, self.total_units - self.next_index)

    @property
    def message(self) -> str:
        if self.cancelled:
            return "Cancelled. Nothing was changed."
        if self.fallback_offered:
            return "No infographic plan could be made for this document. Try the per-section mode instead."
        counts = f"{self.success} inserted, {self.skipped} skipped, {self.failed} failed"
        if self.complete:
            text = f"Done: {counts}."
            if self.ceiling_reached:
                text += " The infographic limit for this document has been reached."
            return text
        return f"Paused after unit {self.next_index} of {self.total_units}: {counts}. {self.remaining} unit(s) remain; run again to continue."

    def to_dict(self) -> dict:
        return {
            "job_kind": self.job_kind,
            "success": self.success,
            "failed": self.failed,
            "skipped": self.skipped,
            "total_generated": self.total_generated,
            "total_units": self.total_units,
            "next_index": self.next_index,
            "remaining": self.remaining,
            "complete": self.complete,
            "cancelled": self.cancelled,
            "ceiling_reached": self.ceiling_reached,
            "fallback_offered": self.fallback_offered,
            "reasoning": self.reasoning,
            "message": self.message,
        }

    @classmethod
    def from_record(cls, record: ProgressRecord, **kwargs) -> "JobSummary":
        return cls(
            job_kind=record.job_kind,
            success=record.success,
            failed=record.failed,
            skipped=record.skipped,
            total_generated=record.total_generated,
            total_units=record.total_units,
            next_index=record.next_index,
            **kwargs,
        )


class _JobRun:
    """Shared per-unit bookkeeping for both job kinds."""

    def __init__(self, store, service, progress, settings, record, references, sleep):
        self.store = store
        self.service = service
        self.progress = progress
        self.settings = settings
        self.record = record
        self.references = references or ReferenceImageCache([])
        self.sleep = sleep

    def at_ceiling(self) -> bool:
        return self.record.total_generated >= self.settings.max_total_infographics

    def count(self, outcome: str) -> None:
        if outcome == SUCCESS:
            self.record.success += 1
            self.record.total_generated += 1
        elif outcome == SKIPPED:
            self.record.skipped += 1
        else:
            self.record.failed += 1

    def checkpoint(self, next_index: int) -> None:
        self.record.last_processed_index = next_index - 1
        self.progress.save(self.record)

    def run_unit(self, index: int, handler: Callable[[int], str]) -> None:
        try:
            outcome = handler(index)
        except Exception as exc:
            logger.error("%s unit %d of %s failed: %s", self.record.job_kind, index, self.store.document_id, exc, exc_info=True)
            self.count(FAILED)
            self.sleep(self.settings.failure_cooldown_seconds)
            return
        self.count(outcome)
        logger.info("%s unit %d of %s: %s", self.record.job_kind, index, self.store.document_id, outcome)
        if outcome == SUCCESS:
            self.sleep(self.settings.success_cooldown_seconds)

    def drive(self, start: int, handler: Callable[[int], str]) -> JobSummary:
        total = self.record.total_units
        end = min(start + self.settings.batch_size, total)
        if start < end and not self.at_ceiling():
            process_in_batches(
                range(end),
                1,
                lambda i, _unit: self.run_unit(i, handler),
                self.checkpoint,
                should_stop=self.at_ceiling,
                start=start,
            )
        ceiling = self.at_ceiling()
        complete = self.record.next_index >= total or ceiling
        if complete:
            self.progress.delete(self.record.document_id, self.record.job_kind)
            logger.info("%s job for %s complete", self.record.job_kind, self.store.document_id)
        return JobSummary.from_record(self.record, complete=complete, ceiling_reached=ceiling)

    def insert(self, offset_for, image, title: str, infographic_type: str) -> str:
        # Re-read the document right before inserting; earlier inserts moved everything after them.
        snapshot = extract_sections(self.store, self.settings.min_section_length)
        offset = offset_for(snapshot)
        insert_infographic(self.store, offset, image, title, infographic_type)
        self.store.flush()
        return SUCCESS


def require_content(store: DocxDocumentStore, settings: Settings):
    """Sections of the document, or NoContentError when none is long enough to illustrate."""
    snapshot = extract_sections(store, settings.min_section_length)
    if not len(snapshot):
        raise NoContentError("The document has no section long enough to illustrate.")
    return snapshot


def _load_or_create(progress, document_id, job_kind, start_index, total_units) -> ProgressRecord:
    record = progress.load(document_id, job_kind)
    if record is None:
        record = ProgressRecord(document_id=document_id, job_kind=job_kind)
    record.last_processed_index = start_index - 1
    record.total_units = total_units
    return record


def run_section_job(
    store: DocxDocumentStore,
    service,
    progress: JsonProgressStore,
    settings: Settings,
    start_index: int = 0,
    references: ReferenceImageCache | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> JobSummary:
    """Analyze, generate and insert for up to ``settings.batch_size`` sections from ``start_index``."""
    snapshot = require_content(store, settings)
    record = _load_or_create(progress, store.document_id, JOB_SECTION, start_index, len(snapshot))
    run = _JobRun(store, service, progress, settings, record, references, sleep)

    def handle(index: int) -> str:
        current = extract_sections(store, settings.min_section_length)
        if index >= len(current):
            return SKIPPED
        section = current[index]
        if section.has_infographic:
            logger.info("Section %d (%r) already has an infographic", index, section.heading)
            return SKIPPED
        analysis = analyze_unit(section, service)
        if not analysis.needs_infographic:
            return SKIPPED
        image = service.generate_image(build_image_prompt(analysis.prompt, analysis.infographic_type), run.references.images())
        if image is None:
            logger.warning("No image produced for section %d (%r)", index, section.heading)
            return FAILED
        return run.insert(
            lambda snap: resolve_section_position(index, snap, store),
            image,
            section.heading,
            analysis.infographic_type,
        )

    return run.drive(start_index, handle)


def run_smart_job(
    store: DocxDocumentStore,
    service,
    progress: JsonProgressStore,
    settings: Settings,
    start_index: int = 0,
    references: ReferenceImageCache | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> JobSummary:
    """Apply a whole-document plan, asking for one only when no stored plan exists."""
    snapshot = require_content(store, settings)
    record = progress.load(store.document_id, JOB_SMART)
    if record is not None and record.plan:
        plan = InfographicPlan.from_dict(record.plan)
    else:
        plan = analyze_holistically(snapshot, store.full_text(), service, settings.holistic_excerpt_chars)
        plan.infographics = order_by_position_desc(plan.infographics, snapshot, store)[: settings.max_total_infographics]
        if not len(plan):
            logger.warning("Empty infographic plan for %s", store.document_id)
            return JobSummary(job_kind=JOB_SMART, fallback_offered=True, reasoning=plan.reasoning)
        if record is None:
            record = ProgressRecord(document_id=store.document_id, job_kind=JOB_SMART, last_processed_index=start_index - 1)
        record.plan = plan.to_dict()
        record.total_units = len(plan)
        # Persist the plan before any unit so a resumed run never asks for a new one.
        progress.save(record)
        logger.info("Stored plan with %d infographic(s) for %s", len(plan), store.document_id)
    record.last_processed_index = start_index - 1
    record.total_units = len(plan)
    run = _JobRun(store, service, progress, settings, record, references, sleep)

    def handle(index: int) -> str:
        spec = plan.infographics[index]
        try:
            resolve_position(spec, extract_sections(store, settings.min_section_length), store)
        except ValueError:
            logger.warning("Planned infographic %r no longer maps to a section", spec.title)
            return SKIPPED
        image = service.generate_image(build_image_prompt(spec.visual_prompt, spec.infographic_type), run.references.images())
        if image is None:
            logger.warning("No image produced for planned infographic %r", spec.title)
            return FAILED
        return run.insert(lambda snap: resolve_position(spec, snap, store), image, spec.title, spec.infographic_type)

    summary = run.drive(start_index, handle)
    summary.reasoning = plan.reasoning
    return summary
