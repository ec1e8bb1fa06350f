from __future__ import annotations

from typing import Any, Dict


class AssistantError(Exception):
    """Base class for voice assistant errors."""

    code = "assistant_error"


class CapabilityError(AssistantError):
    """The platform speech input or output capability failed."""

    code = "capability_error"


class CapabilityUnavailable(CapabilityError):
    """The platform does not provide the speech capability at all."""

    code = "capability_unavailable"


class RecognitionError(CapabilityError):
    """Speech recognition reported a genuine failure."""

    code = "recognition_error"

    def __init__(self, kind: str, message: str | None = None) -> None:
        self.kind = kind
        super().__init__(message or f"speech recognition failed: {kind}")


class SynthesisError(CapabilityError):
    """Speech synthesis reported a failure for an utterance."""

    code = "synthesis_error"


class AlreadyActiveError(AssistantError):
    """A recognition session is already running."""

    code = "already_active"


class CollaboratorError(AssistantError):
    """The AI completion collaborator failed to answer."""

    code = "collaborator_error"


class DocumentUnavailableError(AssistantError):
    """The selected document text could not be read."""

    code = "document_unavailable"


def error_payload(
    code: str,
    message: str,
    *,
    details: Any | None = None,
    trace_id: str | None = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "error": {
            "code": code,
            "message": message,
        }
    }
    if details is not None:
        payload["error"]["details"] = details
    if trace_id is not None:
        payload["error"]["trace_id"] = trace_id
    return payload
