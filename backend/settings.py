"""Runtime settings for the Inkwell backend, read from INKWELL_* environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


def _env_flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _env_optional(name: str) -> Optional[str]:
    value = os.environ.get(name, "").strip()
    return value or None


@dataclass
class AssistantSettings:
    completion_batch_delay_ms: int = 100
    min_settle_ms: int = 1000
    batch_followup_delay_ms: int = 100
    countdown_interval_ms: int = 100
    min_batch_content_length: int = 10
    min_custom_content_length: int = 10
    enable_ai_feedback: bool = True
    llm_service: str = "groq"
    llm_model: str = "llama3-8b-8192"
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    storage_dir: Path = Path(__file__).resolve().parent / "storage"
    associations_key: str = "feedback_associations"
    request_timeout_s: float = 60.0

    @classmethod
    def from_env(cls) -> "AssistantSettings":
        default_storage = Path(__file__).resolve().parent / "storage"
        return cls(
            completion_batch_delay_ms=int(os.environ.get("INKWELL_COMPLETION_BATCH_DELAY_MS", "100")),
            min_settle_ms=int(os.environ.get("INKWELL_MIN_SETTLE_MS", "1000")),
            batch_followup_delay_ms=int(os.environ.get("INKWELL_BATCH_FOLLOWUP_DELAY_MS", "100")),
            countdown_interval_ms=int(os.environ.get("INKWELL_COUNTDOWN_INTERVAL_MS", "100")),
            min_batch_content_length=int(os.environ.get("INKWELL_MIN_BATCH_CONTENT_LENGTH", "10")),
            min_custom_content_length=int(os.environ.get("INKWELL_MIN_CUSTOM_CONTENT_LENGTH", "10")),
            enable_ai_feedback=_env_flag("INKWELL_ENABLE_AI_FEEDBACK", "1"),
            llm_service=os.environ.get("INKWELL_LLM_SERVICE", "groq"),
            llm_model=os.environ.get("INKWELL_LLM_MODEL", "llama3-8b-8192"),
            api_key=_env_optional("INKWELL_API_KEY"),
            base_url=_env_optional("INKWELL_BASE_URL"),
            storage_dir=Path(os.environ.get("INKWELL_STORAGE_DIR") or default_storage),
            associations_key=os.environ.get("INKWELL_ASSOCIATIONS_KEY", "feedback_associations"),
            request_timeout_s=float(os.environ.get("INKWELL_REQUEST_TIMEOUT_S", "60")),
        )
