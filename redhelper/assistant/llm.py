"""LLM assist clients.

Every client exposes ``assist(session_id, user_text, screen_context, status)``
and returns an :class:`AssistReply`: the text to speak plus an ordered list
of device actions. Failures (network, HTTP status, malformed payload,
timeout) raise :class:`AssistError`; the dialog engine turns them into a
spoken apology.
"""

from __future__ import annotations

import asyncio
import json
import logging
import urllib.error
import urllib.request
from collections import OrderedDict
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from redhelper.utils import coerce_str

from .config import AssistConfig
from .device_status import DeviceStatus
from .element_locator import Selector

LOGGER = logging.getLogger(__name__)

ACTION_TYPES = {"click", "back", "home", "highlight", "scroll"}
MAX_SESSION_MESSAGES = 20
MAX_SESSIONS = 8


class AssistError(RuntimeError):
    """Generic assist call failure."""


class AssistHTTPError(AssistError):
    """Raised when the assist endpoint answers with an error status."""

    def __init__(self, status_code: int, detail: str = "") -> None:
        super().__init__(f"Assist endpoint error {status_code}: {detail}".rstrip(": "))
        self.status_code = status_code


@dataclass(frozen=True)
class DeviceAction:
    type: str
    selector: Selector | None = None

    @property
    def direction(self) -> str | None:
        return self.selector.value if self.selector else None


@dataclass
class AssistReply:
    reply_text: str
    actions: list[DeviceAction] = field(default_factory=list)


def _parse_actions(raw_actions: Any) -> list[DeviceAction]:
    if not isinstance(raw_actions, list):
        return []
    actions: list[DeviceAction] = []
    for raw in raw_actions:
        if not isinstance(raw, Mapping):
            continue
        action_type = coerce_str(raw.get("type")).lower()
        if action_type not in ACTION_TYPES:
            continue
        selector = Selector.from_dict(raw.get("selector"))
        if selector is None and action_type == "scroll":
            direction = coerce_str(raw.get("direction"))
            if direction:
                selector = Selector(by="direction", value=direction)
        actions.append(DeviceAction(type=action_type, selector=selector))
    return actions


def _parse_assist_payload(payload: Any) -> AssistReply:
    if not isinstance(payload, Mapping):
        raise AssistError("Assist reply must be a JSON object")
    reply_text = coerce_str(payload.get("reply_text")) or coerce_str(payload.get("response"))
    if not reply_text:
        raise AssistError("Assist reply is missing reply_text")
    return AssistReply(reply_text=reply_text, actions=_parse_actions(payload.get("actions")))


def _parse_model_content(content: str) -> AssistReply:
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        text = content.strip()
        if not text:
            raise AssistError("LLM response was empty") from None
        return AssistReply(reply_text=text)
    return _parse_assist_payload(parsed)


class AssistClient:
    async def assist(
        self,
        session_id: str,
        user_text: str,
        screen_context: str | None,
        status: DeviceStatus,
    ) -> AssistReply:
        raise NotImplementedError

    async def close(self) -> None:
        return None


@dataclass(slots=True)
class BackendAssistClient(AssistClient):
    """Talk to the RedHelper assist backend over HTTP (JSON)."""

    config: AssistConfig
    log_messages: bool = False
    logger: logging.Logger = field(default=LOGGER, repr=False)
    _client: httpx.AsyncClient = field(init=False, repr=False)
    _closed: bool = field(init=False, default=True, repr=False)

    def __post_init__(self) -> None:
        if not self.config.backend_url:
            raise ValueError("Assist backend URL is not configured")
        headers = {"Content-Type": "application/json"}
        if self.config.backend_token:
            headers["Authorization"] = f"Bearer {self.config.backend_token}"
        self._client = httpx.AsyncClient(
            base_url=self.config.backend_url.rstrip("/"),
            headers=headers,
            timeout=self.config.backend_timeout,
        )
        self._closed = False

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._client.aclose()

    async def assist(
        self,
        session_id: str,
        user_text: str,
        screen_context: str | None,
        status: DeviceStatus,
    ) -> AssistReply:
        body = {
            "session_id": session_id,
            "user_text": user_text,
            "screen_context": screen_context,
            "status": json.dumps(status.to_dict(), ensure_ascii=False),
        }
        if self.log_messages:
            self.logger.info("[llm] -> backend (%s): %s", session_id, user_text)
        try:
            response = await self._client.post("/assist", json=body)
        except httpx.RequestError as exc:
            raise AssistError(f"Failed to contact assist backend: {exc}") from exc
        if response.status_code >= 400:
            raise AssistHTTPError(response.status_code, response.text[:200])
        try:
            payload = response.json()
        except ValueError as exc:
            raise AssistError("Assist backend returned invalid JSON") from exc
        reply = _parse_assist_payload(payload)
        if self.log_messages:
            self.logger.info("[llm] <- backend (%s): %s (%d actions)", session_id, reply.reply_text, len(reply.actions))
        return reply


def _format_system_prompt(config: AssistConfig, screen_context: str | None, status: DeviceStatus) -> str:
    screen_section = (screen_context or "").strip() or "(screen content is unavailable)"
    status_section = json.dumps(status.to_dict(), ensure_ascii=False)
    return f"""{config.system_prompt.strip()}

Current screen:
{screen_section}

Device status: {status_section}

Always respond **only** with JSON in the form:
{{
  "reply_text": "text to say aloud",
  "actions": [
    {{"type": "click|highlight", "selector": {{"by": "text|id|content_desc", "value": "..."}}}},
    {{"type": "scroll", "selector": {{"by": "direction", "value": "up|down"}}}},
    {{"type": "back|home"}}
  ]
}}
"""


class OpenAIAssistClient(AssistClient):
    """Call OpenAI-compatible chat completion endpoints, keeping per-session history."""

    def __init__(
        self,
        config: AssistConfig,
        *,
        log_messages: bool = False,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.log_messages = log_messages
        self._logger = logger or LOGGER
        self._history: OrderedDict[str, list[dict[str, str]]] = OrderedDict()

    async def assist(
        self,
        session_id: str,
        user_text: str,
        screen_context: str | None,
        status: DeviceStatus,
    ) -> AssistReply:
        history = self._session_history(session_id)
        user_message = {"role": "user", "content": user_text.strip()}
        payload = self._build_payload(history + [user_message], screen_context, status)
        if self.log_messages:
            self._logger.info("[llm] -> openai (%s): %s", session_id, user_text)
        try:
            content = await asyncio.to_thread(self._call_api, payload)
        except AssistError:
            raise
        except (OSError, ValueError) as exc:
            raise AssistError(f"LLM call failed: {exc}") from exc
        reply = _parse_model_content(content)
        history.append(user_message)
        history.append({"role": "assistant", "content": reply.reply_text})
        del history[:-MAX_SESSION_MESSAGES]
        if self.log_messages:
            self._logger.info("[llm] <- openai (%s): %s", session_id, reply.reply_text)
        return reply

    def _session_history(self, session_id: str) -> list[dict[str, str]]:
        history = self._history.get(session_id)
        if history is None:
            history = []
            self._history[session_id] = history
            while len(self._history) > MAX_SESSIONS:
                self._history.popitem(last=False)
        else:
            self._history.move_to_end(session_id)
        return history

    def _build_payload(
        self,
        messages: list[dict[str, str]],
        screen_context: str | None,
        status: DeviceStatus,
    ) -> dict:
        system_content = _format_system_prompt(self.config, screen_context, status)
        return {
            "model": self.config.openai_model,
            "messages": [{"role": "system", "content": system_content}, *messages],
            "temperature": 0.3,
            "max_tokens": 400,
            "response_format": {"type": "json_object"},
        }

    def _call_api(self, payload: dict) -> str:
        if not self.config.openai_api_key:
            raise AssistError("OPENAI_API_KEY is not set")

        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(
            url=f"{self.config.openai_base_url.rstrip('/')}/chat/completions",
            data=data,
            headers={
                "Authorization": f"Bearer {self.config.openai_api_key}",
                "Content-Type": "application/json",
            },
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self.config.openai_timeout) as response:
                body = response.read().decode("utf-8")
        except urllib.error.HTTPError as exc:
            raise AssistHTTPError(exc.code) from exc

        parsed = json.loads(body)
        choices = parsed.get("choices") or []
        if not choices:
            raise AssistError("LLM response missing choices")
        message = choices[0].get("message") or {}
        content = message.get("content")
        if not content:
            raise AssistError("LLM response missing content")
        return str(content)


def build_assist_client(
    config: AssistConfig,
    *,
    log_messages: bool = False,
    logger: logging.Logger | None = None,
) -> AssistClient:
    if config.provider == "openai":
        return OpenAIAssistClient(config, log_messages=log_messages, logger=logger)
    return BackendAssistClient(config, log_messages=log_messages, logger=logger or LOGGER)
