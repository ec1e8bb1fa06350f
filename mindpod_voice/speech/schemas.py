"""Data exchanged between the assistant and the speech controllers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from itertools import count
from typing import Callable, Optional


class AssistantStatus(str, Enum):
    """Single source of truth for what the assistant is doing."""

    IDLE = "idle"
    LISTENING = "listening"
    THINKING = "thinking"
    SPEAKING = "speaking"
    ERROR = "error"


class UtteranceOutcome(str, Enum):
    """How an utterance request finished."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RecognitionErrorKind(str, Enum):
    """Errors a recognition backend may report."""

    NO_SPEECH = "no-speech"
    ABORTED = "aborted"
    AUDIO_CAPTURE = "audio-capture"
    NOT_ALLOWED = "not-allowed"
    NETWORK = "network"
    SERVICE_NOT_ALLOWED = "service-not-allowed"
    UNAVAILABLE = "unavailable"

    @property
    def benign(self) -> bool:
        return self is RecognitionErrorKind.NO_SPEECH


@dataclass(slots=True, frozen=True)
class Voice:
    """A synthesis voice exposed by the platform."""

    name: str
    lang: str
    identifier: str | None = None


_utterance_ids = count(1)


@dataclass(slots=True)
class UtteranceRequest:
    """One unit of speech to synthesize."""

    text: str
    on_complete: Optional[Callable[[], None]] = None
    id: int = field(default_factory=lambda: next(_utterance_ids))


@dataclass(slots=True, frozen=True)
class RecognitionAlternative:
    """One hypothesis of a recognition result."""

    text: str
    confidence: float = 0.0


@dataclass(slots=True, frozen=True)
class TranscriptEvent:
    """Final transcript of one recognition session."""

    text: str
    confidence: Optional[float] = None
