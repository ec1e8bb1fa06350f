"""Wires the stores, controllers, coordinator and UI affordance together."""

from __future__ import annotations

from typing import Optional

from ..core.ai import AIService
from ..core.config import Settings, get_settings
from ..core.logger import get_logger
from ..core.paths import data_dir
from ..core.store import USER_NAME_KEY, JsonFileStore, KeyValueStore, MemoryStore
from ..speech.input import RecognitionBackend, SpeechInputController
from ..speech.output import SpeechOutputController, SynthesisBackend
from ..state.app_state import AppContext, SessionState
from ..ui.activation import ActivationControl
from .coordinator import AssistantCoordinator, TranscriptCallback
from .onboarding import OnboardingFlow
from .router import Collaborator, CommandRouter, Navigator

LOGGER = get_logger("assistant")


class VoiceAssistant:
    """The assembled voice assistant for one application process."""

    def __init__(
        self,
        *,
        synthesis: SynthesisBackend | None,
        recognition: RecognitionBackend | None,
        settings: Settings | None = None,
        ai: Collaborator | None = None,
        durable: KeyValueStore | None = None,
        session_flags: KeyValueStore | None = None,
        context: AppContext | None = None,
        navigator: Navigator | None = None,
        on_transcript: Optional[TranscriptCallback] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.durable = durable or JsonFileStore(data_dir(self.settings) / "store.json")
        self.session_flags = session_flags or MemoryStore()
        self.context = context or AppContext()
        self.state = SessionState(display_name=self.durable.get(USER_NAME_KEY))
        self.ai = ai or AIService(self.settings)

        self.output = SpeechOutputController(
            synthesis,
            lang=self.settings.voice_lang,
            preferred_voice=self.settings.voice_preferred,
        )
        self.input = SpeechInputController(recognition, timeout=self.settings.listen_timeout_sec)
        self.coordinator = AssistantCoordinator(self.output, self.input)
        self.onboarding = OnboardingFlow(
            self.coordinator,
            self.state,
            durable=self.durable,
            session_flags=self.session_flags,
            max_attempts=self.settings.onboarding_max_attempts,
            fallback_name=self.settings.onboarding_fallback_name,
        )
        self.router = CommandRouter(
            self.ai,
            state=self.state,
            context=self.context,
            navigator=navigator,
            fallback_name=self.settings.onboarding_fallback_name,
        )
        self.coordinator.attach(router=self.router, onboarding=self.onboarding, on_transcript=on_transcript)
        self.activation = ActivationControl(self.coordinator)

    def start(self) -> None:
        """Run the first-activation greeting when no name is stored."""
        LOGGER.info("Assistant started (name known: %s)", self.state.display_name is not None)
        self.onboarding.begin()

    def forget_name(self) -> None:
        self.durable.delete(USER_NAME_KEY)
        self.state.set_display_name(None)

    def shutdown(self) -> None:
        self.activation.close()
        self.coordinator.shutdown()


def build_assistant(settings: Settings | None = None, **kwargs) -> VoiceAssistant:
    """Build the assistant on top of the sounddevice/Piper/faster-whisper backends."""
    from ..audio.recognition import WhisperRecognitionBackend
    from ..audio.synthesis import PiperSynthesisBackend

    settings = settings or get_settings()
    return VoiceAssistant(
        synthesis=PiperSynthesisBackend(settings),
        recognition=WhisperRecognitionBackend(settings),
        settings=settings,
        **kwargs,
    )
