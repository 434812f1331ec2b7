"""
Value objects shared across the transcription service.

Jobs, results and staged audio are plain dataclasses.  Only
:class:`TranscriptionJob` is mutable, and only through :meth:`advance`, so
its state never moves backwards once observed.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

DEFAULT_LANGUAGE_CODE = "es-MX"
DEFAULT_MODEL = "latest_long"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobState(enum.Enum):
    SUBMITTED = "SUBMITTED"
    RUNNING = "RUNNING"
    DONE = "DONE"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES

    @property
    def rank(self) -> int:
        if self is JobState.SUBMITTED:
            return 0
        if self is JobState.RUNNING:
            return 1
        return 2


_TERMINAL_STATES = frozenset({JobState.DONE, JobState.FAILED, JobState.TIMED_OUT})


@dataclass(frozen=True)
class TranscriptionConfig:
    language_code: str = DEFAULT_LANGUAGE_CODE
    model: str = DEFAULT_MODEL
    enable_punctuation: bool = True
    # Always requested; not exposed to callers.
    enable_word_timestamps: bool = True
    enable_word_confidence: bool = True

    @classmethod
    def from_options(
        cls,
        *,
        language_code: Optional[str] = None,
        model: Optional[str] = None,
        enable_punctuation: Optional[bool] = None,
        default_language_code: str = DEFAULT_LANGUAGE_CODE,
        default_model: str = DEFAULT_MODEL,
    ) -> "TranscriptionConfig":
        """Build a config, treating ``None`` and empty strings as "use the default"."""
        return cls(
            language_code=(language_code or "").strip() or default_language_code,
            model=(model or "").strip() or default_model,
            enable_punctuation=enable_punctuation is not False,
        )


@dataclass(frozen=True)
class AudioEncoding:
    """Recognizer encoding name plus the sample rate when the encoding mandates one."""

    encoding: str
    sample_rate_hertz: Optional[int] = None


@dataclass(frozen=True)
class StagedAudio:
    bucket: str
    key: str
    uri: str
    retention_deadline: datetime


@dataclass(frozen=True)
class Word:
    text: str
    start_seconds: float
    end_seconds: float
    confidence: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "word": self.text,
            "startTime": self.start_seconds,
            "endTime": self.end_seconds,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class TranscriptionResult:
    text: str
    confidence: Optional[float]
    words: List[Word] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": JobState.DONE.value,
            "text": self.text,
            "confidence": self.confidence,
            "words": [word.to_dict() for word in self.words],
        }


@dataclass(frozen=True)
class JobProgress:
    job_id: str
    progress_percent: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"status": "PROCESSING", "jobId": self.job_id, "progress": self.progress_percent}


@dataclass(frozen=True)
class OperationStatus:
    """One snapshot of an upstream long-running operation."""

    name: str
    done: bool
    response: Optional[Dict[str, Any]] = None
    error_code: Optional[int] = None
    error_message: Optional[str] = None
    progress_percent: Optional[int] = None
    source_uri: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.done and (self.error_code is not None or self.error_message is not None)


@dataclass
class TranscriptionJob:
    id: str
    source_uri: str
    config: TranscriptionConfig
    encoding: Optional[AudioEncoding] = None
    state: JobState = JobState.SUBMITTED
    created_at: datetime = field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    def advance(self, state: JobState) -> bool:
        """Move to ``state`` if that is forward progress.

        Returns ``True`` when the state changed.  Regressions and any move
        out of a terminal state are ignored.
        """
        if self.state.is_terminal or state.rank < self.state.rank or state is self.state:
            return False
        self.state = state
        if state.is_terminal:
            self.completed_at = _utcnow()
        return True
