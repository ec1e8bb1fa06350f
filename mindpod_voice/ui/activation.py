"""The single start/stop affordance, driven only by the assistant status."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from ..runtime.coordinator import AssistantCoordinator
from ..speech.schemas import AssistantStatus


@dataclass(slots=True, frozen=True)
class ActivationAppearance:
    """What the activation button should look like."""

    status: AssistantStatus
    title: str
    pulsing: bool
    enabled: bool


_TITLES: dict[AssistantStatus, str] = {
    AssistantStatus.IDLE: "Click to activate voice assistant",
    AssistantStatus.LISTENING: "Listening... Click to stop",
    AssistantStatus.SPEAKING: "Speaking...",
    AssistantStatus.THINKING: "Thinking...",
    AssistantStatus.ERROR: "An error occurred. Please restart the assistant.",
}


def appearance_for(status: AssistantStatus) -> ActivationAppearance:
    return ActivationAppearance(
        status=status,
        title=_TITLES[status],
        pulsing=status in (AssistantStatus.LISTENING, AssistantStatus.THINKING),
        enabled=status is not AssistantStatus.ERROR,
    )


class ActivationControl:
    """Starts or stops listening depending on the current status."""

    def __init__(self, coordinator: AssistantCoordinator) -> None:
        self.coordinator = coordinator
        self._callback: Optional[Callable[[ActivationAppearance], None]] = None
        self.appearance = appearance_for(coordinator.status)
        self._unsubscribe = coordinator.add_status_callback(self._on_status)

    def press(self) -> None:
        if self.coordinator.status is AssistantStatus.LISTENING:
            self.coordinator.stop_listening()
        else:
            self.coordinator.start_listening()

    def on_change(self, callback: Optional[Callable[[ActivationAppearance], None]]) -> None:
        """Register the renderer notified on every appearance change."""
        self._callback = callback

    def close(self) -> None:
        self._unsubscribe()

    def _on_status(self, status: AssistantStatus) -> None:
        self.appearance = appearance_for(status)
        if self._callback is not None:
            self._callback(self.appearance)
