from __future__ import annotations

import asyncio

import pytest

from conftest import DEFAULT_VOICE, FakeRecognitionBackend, FakeSynthesisBackend, settle
from mindpod_voice.core.errors import CollaboratorError
from mindpod_voice.core.store import MemoryStore
from mindpod_voice.runtime.assistant import VoiceAssistant
from mindpod_voice.speech.schemas import AssistantStatus, RecognitionErrorKind
from mindpod_voice.state.app_state import Screen


def _exclusive(assistant: VoiceAssistant) -> bool:
    return not (assistant.input.active and assistant.output.is_speaking)


@pytest.mark.asyncio
async def test_listening_and_speaking_never_overlap(assistant, synthesis) -> None:
    coordinator = assistant.coordinator
    for step in (
        coordinator.start_listening,
        lambda: coordinator.speak("first"),
        coordinator.start_listening,
        lambda: coordinator.speak("second"),
        lambda: coordinator.speak("third"),
        coordinator.start_listening,
        coordinator.start_listening,
    ):
        step()
        assert _exclusive(assistant)
    assert coordinator.status is AssistantStatus.LISTENING


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["", None, "   "])
async def test_empty_speak_is_a_noop(assistant, synthesis, text) -> None:
    statuses: list[AssistantStatus] = []
    assistant.coordinator.add_status_callback(statuses.append)

    assert assistant.coordinator.speak(text) is None

    assert statuses == []
    assert synthesis.spoken == []
    assert synthesis.cancel_calls == 0


@pytest.mark.asyncio
async def test_speak_waits_for_catalog_and_runs_once(settings, recognition, ai, durable) -> None:
    synthesis = FakeSynthesisBackend(voices=[])
    assistant = VoiceAssistant(synthesis=synthesis, recognition=recognition, settings=settings, ai=ai, durable=durable)

    assistant.coordinator.speak("hello")
    assert synthesis.spoken == []
    asyncio.get_running_loop().call_later(0.05, synthesis.publish, [DEFAULT_VOICE])
    await asyncio.sleep(0.1)

    assert synthesis.spoken == ["hello"]
    assert assistant.coordinator.status is AssistantStatus.SPEAKING
    synthesis.finish()
    assert assistant.coordinator.status is AssistantStatus.IDLE


@pytest.mark.asyncio
async def test_speak_completion_returns_to_idle_and_calls_on_end(assistant, synthesis) -> None:
    ended: list[bool] = []
    assistant.coordinator.speak("Hello there", lambda: ended.append(True))
    assert assistant.coordinator.status is AssistantStatus.SPEAKING
    synthesis.finish()
    assert assistant.coordinator.status is AssistantStatus.IDLE
    assert ended == [True]


@pytest.mark.asyncio
async def test_no_speech_returns_to_idle(assistant, recognition) -> None:
    assistant.coordinator.start_listening()
    recognition.error(RecognitionErrorKind.NO_SPEECH)
    assert assistant.coordinator.status is AssistantStatus.IDLE
    assert assistant.coordinator.last_error is None


@pytest.mark.asyncio
async def test_recognition_failure_is_terminal(assistant, recognition, synthesis) -> None:
    coordinator = assistant.coordinator
    coordinator.start_listening()
    recognition.error(RecognitionErrorKind.NOT_ALLOWED)

    assert coordinator.status is AssistantStatus.ERROR
    assert coordinator.last_error["error"]["code"] == "recognition_error"

    coordinator.start_listening()
    coordinator.speak("anyone there?")
    coordinator.stop_speaking()
    await settle()
    assert recognition.starts == 1
    assert synthesis.spoken == []
    assert coordinator.status is AssistantStatus.ERROR


@pytest.mark.asyncio
async def test_synthesis_failure_moves_to_error(assistant, synthesis) -> None:
    assistant.coordinator.speak("Hello")
    synthesis.fail("audio device lost")
    await settle()
    assert assistant.coordinator.status is AssistantStatus.ERROR
    assert assistant.coordinator.last_error["error"]["code"] == "synthesis_error"


@pytest.mark.asyncio
async def test_missing_recognition_capability_starts_in_error(settings, synthesis, ai, durable) -> None:
    recognition = FakeRecognitionBackend()
    recognition.available = False
    assistant = VoiceAssistant(synthesis=synthesis, recognition=recognition, settings=settings, ai=ai, durable=durable)
    assert assistant.coordinator.status is AssistantStatus.ERROR
    assert assistant.coordinator.last_error["error"]["code"] == "capability_unavailable"


@pytest.mark.asyncio
async def test_stop_listening_is_idempotent(assistant, recognition) -> None:
    coordinator = assistant.coordinator
    coordinator.stop_listening()
    assert coordinator.status is AssistantStatus.IDLE

    coordinator.start_listening()
    coordinator.stop_listening()
    statuses: list[AssistantStatus] = []
    coordinator.add_status_callback(statuses.append)
    coordinator.stop_listening()

    assert coordinator.status is AssistantStatus.IDLE
    assert statuses == []
    assert recognition.stops == 1


@pytest.mark.asyncio
async def test_start_listening_cancels_speech_first(assistant, events) -> None:
    assistant.coordinator.speak("A long answer")
    assert assistant.coordinator.status is AssistantStatus.SPEAKING
    events.clear()

    assistant.coordinator.start_listening()

    assert "cancel" in events and "listen:start" in events
    assert events.index("cancel") < events.index("listen:start")
    assert assistant.coordinator.status is AssistantStatus.LISTENING
    assert assistant.output.is_speaking is False


@pytest.mark.asyncio
async def test_stale_recognition_end_is_ignored(assistant, recognition, synthesis, ai) -> None:
    ai.gate = asyncio.Event()
    assistant.coordinator.start_listening()
    recognition.say("what's the capital of France")
    assert assistant.coordinator.status is AssistantStatus.THINKING
    ai.gate.set()
    await settle()

    assert synthesis.spoken == ["Paris is the capital of France."]
    assert assistant.coordinator.status is AssistantStatus.SPEAKING


@pytest.mark.asyncio
async def test_navigation_command(assistant, recognition, synthesis, navigations) -> None:
    assistant.coordinator.start_listening()
    recognition.say("Show my tasks")
    await settle()

    assert navigations == [Screen.TASKS]
    assert assistant.context.screen is Screen.TASKS
    assert synthesis.spoken == ["Here are your tasks."]
    assert assistant.coordinator.status is AssistantStatus.SPEAKING
    synthesis.finish()
    assert assistant.coordinator.status is AssistantStatus.IDLE


@pytest.mark.asyncio
async def test_fallback_speaks_ai_reply_verbatim(assistant, recognition, synthesis, ai) -> None:
    ai.reply = "The capital of France is Paris."
    assistant.coordinator.start_listening()
    recognition.say("what's the capital of France")
    await settle()

    assert ai.queries == ["what's the capital of France"]
    assert synthesis.spoken == ["The capital of France is Paris."]


@pytest.mark.asyncio
async def test_ai_failure_is_spoken_not_raised(assistant, recognition, synthesis, ai) -> None:
    ai.error = CollaboratorError("model offline")
    assistant.coordinator.start_listening()
    recognition.say("tell me a joke")
    await settle()

    assert synthesis.spoken == ["I had trouble understanding that. Could you please try again?"]
    assert assistant.coordinator.status is AssistantStatus.SPEAKING
    assert assistant.coordinator.last_error is None


@pytest.mark.asyncio
async def test_control_command_returns_to_idle_silently(assistant, recognition, synthesis) -> None:
    assistant.coordinator.start_listening()
    recognition.say("please stop speaking")
    await settle()
    assert synthesis.spoken == []
    assert assistant.coordinator.status is AssistantStatus.IDLE


@pytest.mark.asyncio
async def test_reply_superseded_by_new_listening_is_dropped(assistant, recognition, synthesis, ai) -> None:
    ai.gate = asyncio.Event()
    coordinator = assistant.coordinator
    coordinator.start_listening()
    recognition.say("why is the sky blue")
    assert coordinator.status is AssistantStatus.THINKING

    coordinator.start_listening()
    ai.gate.set()
    await settle()

    assert synthesis.spoken == []
    assert coordinator.status is AssistantStatus.LISTENING


@pytest.mark.asyncio
async def test_stop_speaking_during_deferred_reply(settings, recognition, ai, durable) -> None:
    synthesis = FakeSynthesisBackend(voices=[])
    assistant = VoiceAssistant(synthesis=synthesis, recognition=recognition, settings=settings, ai=ai, durable=durable)
    assistant.coordinator.start_listening()
    recognition.say("hello")
    await settle()
    assert assistant.output.has_pending
    assert assistant.coordinator.status is AssistantStatus.THINKING

    assistant.coordinator.stop_speaking()

    assert assistant.coordinator.status is AssistantStatus.IDLE
    synthesis.publish([DEFAULT_VOICE])
    assert synthesis.spoken == []


@pytest.mark.asyncio
async def test_transcript_observer_sees_text(assistant, recognition) -> None:
    seen: list[str] = []
    assistant.coordinator.attach(
        router=assistant.router,
        onboarding=assistant.onboarding,
        on_transcript=lambda event: seen.append(event.text),
    )
    assistant.coordinator.start_listening()
    recognition.say("hello")
    await settle()
    assert seen == ["hello"]


@pytest.mark.asyncio
async def test_synthesis_backend_crash_reaches_error_state(settings, recognition, ai) -> None:
    class CrashingSynthesis(FakeSynthesisBackend):
        def speak(self, text, voice, *, on_start, on_end, on_error) -> None:
            raise RuntimeError("driver crashed")

    assistant = VoiceAssistant(
        synthesis=CrashingSynthesis(),
        recognition=recognition,
        settings=settings,
        ai=ai,
        durable=MemoryStore(),
    )
    assistant.coordinator.start_listening()
    recognition.say("tell me a joke")
    await settle()

    assert assistant.coordinator.status is AssistantStatus.ERROR
    assert assistant.coordinator.last_error["error"]["code"] == "synthesis_error"


@pytest.mark.asyncio
async def test_start_listening_with_open_session_returns_to_idle(assistant, recognition, synthesis, ai, caplog) -> None:
    ai.gate = asyncio.Event()
    assistant.coordinator.start_listening()
    recognition.hear("what's the capital of France")
    assert assistant.coordinator.status is AssistantStatus.THINKING
    assert assistant.input.active

    with caplog.at_level("WARNING"):
        assistant.coordinator.start_listening()

    assert assistant.coordinator.status is AssistantStatus.IDLE
    assert recognition.starts == 1
    assert any("Start listening ignored" in record.getMessage() for record in caplog.records)

    recognition.end()
    ai.gate.set()
    await settle()
    assert assistant.coordinator.status is AssistantStatus.IDLE
    assert synthesis.spoken == []
