"""Durable per-(document, job kind) progress records stored as JSON files."""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

JOB_SECTION = "section"
JOB_SMART = "smart"
JOB_KINDS = (JOB_SECTION, JOB_SMART)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ProgressRecord:
    document_id: str
    job_kind: str
    last_processed_index: int = -1
    success: int = 0
    failed: int = 0
    skipped: int = 0
    total_generated: int = 0
    total_units: int = 0
    plan: dict | None = None
    timestamp: str = field(default_factory=_now_iso)

    @property
    def next_index(self) -> int:
        return self.last_processed_index + 1

    def to_dict(self) -> dict:
        data = {
            "documentId": self.document_id,
            "jobKind": self.job_kind,
            "lastProcessedIndex": self.last_processed_index,
            "success": self.success,
            "failed": self.failed,
            "skipped": self.skipped,
            "totalGenerated": self.total_generated,
            "totalUnits": self.total_units,
            "timestamp": self.timestamp,
        }
        if self.plan is not None:
            data["plan"] = self.plan
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ProgressRecord":
        return cls(
            document_id=data.get("documentId", ""),
            job_kind=data.get("jobKind", JOB_SECTION),
            last_processed_index=int(data.get("lastProcessedIndex", -1)),
            success=int(data.get("success", 0)),
            failed=int(data.get("failed", 0)),
            skipped=int(data.get("skipped", 0)),
            total_generated=int(data.get("totalGenerated", 0)),
            total_units=int(data.get("totalUnits", data.get("totalSections", 0))),
            plan=data.get("plan"),
            timestamp=data.get("timestamp") or _now_iso(),
        )


class JsonProgressStore:
    """One JSON file per (document, job kind). Last writer wins."""

    def __init__(self, base_dir: str):
        self.base_dir = base_dir

    def _path(self, document_id: str, job_kind: str) -> str:
        safe_id = re.sub(r"[^A-Za-z0-9_.-]", "_", document_id)
        return os.path.join(self.base_dir, f"{job_kind}_{safe_id}.json")

    def load(self, document_id: str, job_kind: str) -> ProgressRecord | None:
        """Return the stored record, or None if there is none (or it is unreadable)."""
        filepath = self._path(document_id, job_kind)
        if not os.path.isfile(filepath):
            return None
        try:
            with open(filepath, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable progress record %s: %s", filepath, exc)
            return None
        return ProgressRecord.from_dict(data)

    def save(self, record: ProgressRecord) -> str:
        record.timestamp = _now_iso()
        os.makedirs(self.base_dir, exist_ok=True)
        filepath = self._path(record.document_id, record.job_kind)
        tmp_path = filepath + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(record.to_dict(), f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, filepath)
        return filepath

    def delete(self, document_id: str, job_kind: str) -> bool:
        filepath = self._path(document_id, job_kind)
        if os.path.isfile(filepath):
            os.unlink(filepath)
            return True
        return False
