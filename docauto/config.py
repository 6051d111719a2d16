"""Runtime settings read from the environment (.env is loaded by the entry points)."""

import os
from dataclasses import dataclass, field


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, str(default)))
    except ValueError:
        return default


def _env_float(name: str, default: float | None) -> float | None:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str) -> list[str]:
    raw = os.environ.get(name) or ""
    return [part.strip() for part in raw.split(",") if part.strip()]


def _project_dir():
    return os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


@dataclass
class Settings:
    batch_size: int = 10
    max_total_infographics: int = 50
    min_section_length: int = 100
    success_cooldown_seconds: float = 2.0
    failure_cooldown_seconds: float = 1.0
    holistic_excerpt_chars: int = 8000
    text_model: str = "gpt-4o-mini"
    image_model: str = "gpt-image-1"
    image_size: str = "1536x1024"
    reference_images: list[str] = field(default_factory=list)
    output_dir: str = os.path.join(_project_dir(), "output")
    format_time_budget_seconds: float | None = None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            batch_size=_env_int("BATCH_SIZE", 10),
            max_total_infographics=_env_int("MAX_TOTAL_INFOGRAPHICS", 50),
            min_section_length=_env_int("MIN_SECTION_LENGTH", 100),
            success_cooldown_seconds=_env_float("SUCCESS_COOLDOWN_SECONDS", 2.0),
            failure_cooldown_seconds=_env_float("FAILURE_COOLDOWN_SECONDS", 1.0),
            holistic_excerpt_chars=_env_int("HOLISTIC_EXCERPT_CHARS", 8000),
            text_model=os.environ.get("DOCAUTO_TEXT_MODEL", "gpt-4o-mini"),
            image_model=os.environ.get("DOCAUTO_IMAGE_MODEL", "gpt-image-1"),
            image_size=os.environ.get("DOCAUTO_IMAGE_SIZE", "1536x1024"),
            reference_images=_env_list("DOCAUTO_REFERENCE_IMAGES"),
            output_dir=os.environ.get("DOCAUTO_OUTPUT_DIR") or os.path.join(_project_dir(), "output"),
            format_time_budget_seconds=_env_float("FORMAT_TIME_BUDGET_SECONDS", None),
        )

    @property
    def documents_dir(self) -> str:
        return os.path.join(self.output_dir, "documents")

    @property
    def progress_dir(self) -> str:
        return os.path.join(self.output_dir, "progress")
