"""Shared state model for the voice assistant."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from ..core.errors import DocumentUnavailableError


class Screen(str, Enum):
    """Application screens reachable by voice."""

    NOTES = "notes"
    READING = "reading"
    TASKS = "tasks"
    PROGRESS = "progress"
    QUIZ = "quiz"
    CODE = "code"


@dataclass(slots=True)
class Document:
    """A stored document the reading screen can show."""

    id: str
    title: str
    content: str | None = None
    path: Path | None = None

    def read_text(self) -> str:
        """Return the document text from memory or from its file."""
        if self.content is not None:
            return self.content
        if self.path is None:
            raise DocumentUnavailableError(f"document {self.id} has no content")
        try:
            return self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise DocumentUnavailableError(f"cannot read document {self.id}: {exc}") from exc


@dataclass(slots=True)
class AppContext:
    """What the surrounding application currently shows."""

    screen: Screen = Screen.NOTES
    selected_document: Document | None = None


@dataclass(slots=True)
class SessionState:
    """Process-wide assistant session state."""

    display_name: str | None = None
    is_gathering_name: bool = False

    def start_gathering_name(self) -> None:
        if self.display_name is not None:
            raise ValueError("display name already set")
        self.is_gathering_name = True

    def stop_gathering_name(self) -> None:
        self.is_gathering_name = False

    def set_display_name(self, name: str | None) -> None:
        self.display_name = name
        if name is not None:
            self.is_gathering_name = False
