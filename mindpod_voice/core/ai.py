"""AI completion collaborator used for free-form answers and summaries.

The assistant talks to an OpenAI compatible ``/chat/completions`` endpoint.
Two sessions are kept: a "general" one for document work and an
"assistant" persona for spoken replies. Both are created lazily and owned by
:class:`AIService`, so tests can hand the router a fake service instead.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Iterable, Sequence

import httpx

from .config import Settings, get_settings
from .errors import CollaboratorError
from .logger import get_logger

LOGGER = get_logger("ai")

OFFLINE_REPLY = "I'm sorry, I'm running in offline mode and can't answer that question right now."
OFFLINE_SUMMARY = "This is a mocked summary because the AI service is offline."


def build_chat_messages(
    *,
    system: str | None = None,
    history: Iterable[tuple[str, str]] | None = None,
    prompt: str,
) -> list[dict[str, str]]:
    messages: list[dict[str, str]] = []
    if system:
        messages.append({"role": "system", "content": system})
    for role, content in history or ():
        messages.append({"role": role, "content": content})
    messages.append({"role": "user", "content": prompt})
    return messages


class AIClient:
    """Thin async client for the chat completion endpoint."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._transport = transport
        base_url = self.settings.ai_base_url or ""
        endpoint = self.settings.ai_chat_endpoint or "/v1/chat/completions"
        self.base_url = base_url.rstrip("/")
        self.chat_endpoint = endpoint if endpoint.startswith("/") else f"/{endpoint}"

    @property
    def online(self) -> bool:
        return bool(self.base_url and self.settings.ai_model)

    async def chat(
        self,
        messages: Sequence[dict[str, str]],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        if not self.online:
            raise CollaboratorError("AI service is not configured (ai_base_url / ai_model).")
        url = f"{self.base_url}{self.chat_endpoint}"
        payload: dict[str, Any] = {
            "model": self.settings.ai_model,
            "messages": list(messages),
            "temperature": temperature if temperature is not None else self.settings.ai_temperature,
            "max_tokens": max_tokens if max_tokens is not None else self.settings.ai_max_output_tokens,
            "stream": False,
        }
        headers = {"Content-Type": "application/json"}
        if self.settings.ai_api_key:
            headers["Authorization"] = f"Bearer {self.settings.ai_api_key}"
        timeout = httpx.Timeout(self.settings.ai_timeout_sec)
        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            try:
                resp = await client.post(url, json=payload, headers=headers)
                resp.raise_for_status()
            except httpx.HTTPStatusError as exc:
                detail = exc.response.text.strip() or exc.response.reason_phrase or "HTTP error"
                raise CollaboratorError(
                    f"AI service answered {exc.response.status_code}: {detail}"
                ) from exc
            except httpx.RequestError as exc:
                raise CollaboratorError(f"AI service unreachable at {self.base_url}") from exc
            try:
                data = resp.json()
            except ValueError as exc:
                raise CollaboratorError("AI service returned invalid JSON") from exc
        return _extract_content(data)


def _extract_content(data: Any) -> str:
    if not isinstance(data, dict):
        return ""
    choices = data.get("choices") or []
    choice = choices[0] if choices else {}
    message = choice.get("message") or {}
    content = message.get("content")
    if not content:
        content = choice.get("text") or ""
    return str(content).strip()


class AISession:
    """A conversation with a fixed system instruction and bounded history."""

    def __init__(self, client: AIClient, system_prompt: str, *, history_limit: int = 0) -> None:
        self.client = client
        self.system_prompt = system_prompt
        self._history: deque[tuple[str, str]] = deque(maxlen=max(0, history_limit) or None)
        self._keep_history = history_limit > 0
        self._lock = asyncio.Lock()

    async def prompt(self, text: str) -> str:
        async with self._lock:
            messages = build_chat_messages(
                system=self.system_prompt,
                history=list(self._history) if self._keep_history else None,
                prompt=text,
            )
            reply = await self.client.chat(messages)
            if self._keep_history:
                self._history.append(("user", text))
                self._history.append(("assistant", reply))
            return reply


class AIService:
    """Owns the lazily created AI sessions used by the assistant."""

    def __init__(self, settings: Settings | None = None, *, client: AIClient | None = None) -> None:
        self.settings = settings or get_settings()
        self.client = client or AIClient(self.settings)
        self._general: AISession | None = None
        self._assistant: AISession | None = None

    @property
    def online(self) -> bool:
        return self.client.online

    def general_session(self) -> AISession:
        if self._general is None:
            self._general = AISession(self.client, self.settings.ai_general_prompt)
        return self._general

    def assistant_session(self) -> AISession:
        if self._assistant is None:
            self._assistant = AISession(
                self.client,
                self.settings.ai_assistant_prompt,
                history_limit=self.settings.ai_history_max_messages,
            )
        return self._assistant

    async def query(self, text: str) -> str:
        """Answer a free-form spoken question."""
        if not self.online:
            return OFFLINE_REPLY
        try:
            return await self.assistant_session().prompt(text)
        except CollaboratorError:
            LOGGER.exception("Assistant reply failed")
            raise

    async def summarize(self, text: str) -> str:
        """Summarize document text in one or two short paragraphs."""
        if not self.online:
            return OFFLINE_SUMMARY
        excerpt = text[: self.settings.ai_summary_max_chars]
        prompt = (
            "Summarize the following text concisely. Capture the main points in one or two "
            f"short paragraphs. Text to summarize: \n\n---\n{excerpt}\n---"
        )
        try:
            return await self.general_session().prompt(prompt)
        except CollaboratorError:
            LOGGER.exception("Summary failed")
            raise
