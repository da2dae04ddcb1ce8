"""Multi-turn dialog engine.

The engine owns the conversation state. Every recognized utterance (and the
synthetic ``FOLLOW_UP`` token emitted after a screen change) is queued and
handled one turn at a time:

- IDLE: first-run name capture, follow-up escalation, local commands, or
  escalation to the LLM for anything the parser does not recognize
- AWAITING_SETTING_CHOICE: pick name, language or speed
- AWAITING_NEW_NAME / AWAITING_NEW_LANGUAGE / AWAITING_NEW_SPEED: collect
  the new value

Every AWAITING_* state allows one re-prompt; a second miss apologizes and
returns to IDLE. Returning to IDLE always clears the retry flag and the LLM
session id.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from .actions import ActionSink, dispatch_actions
from .commands import Command, CommandParser, ParsedCommand, primary_alternate
from .config import DEFAULT_LANGUAGES
from .device_status import DeviceStatus
from .follow_up import FOLLOW_UP_TOKEN, FollowUpWindow
from .llm import AssistClient
from .settings_store import SettingsStore
from .speech import Listener, QueueMode, SpeechOutput
from .strings import language_key, localized

LOGGER = logging.getLogger(__name__)

SPEECH_RATE_STEP = 0.2
MIN_SPEECH_RATE = 0.1
MAX_SPEECH_RATE = 2.5

RUSSIAN_HINTS = ("русск", "на русский", "русский", "russian")
ENGLISH_HINTS = ("англ", "english", "на англий", "to english")
FASTER_HINTS = ("faster", "быстрее", "быстрей", "побыстрее")
SLOWER_HINTS = ("slower", "медленнее", "помедленней")


class DialogState(enum.Enum):
    IDLE = "idle"
    AWAITING_SETTING_CHOICE = "awaiting_setting_choice"
    AWAITING_NEW_NAME = "awaiting_new_name"
    AWAITING_NEW_LANGUAGE = "awaiting_new_language"
    AWAITING_NEW_SPEED = "awaiting_new_speed"


class StatusProvider(Protocol):
    def gather(self) -> DeviceStatus: ...


class LocaleNotifier(Protocol):
    def notify_locale_changed(self, language_tag: str) -> None: ...


@dataclass(frozen=True)
class Utterance:
    text: str
    screen_context: str | None = None


def detect_language_target(text: str) -> str | None:
    """Pick ``ru-RU`` or ``en-US`` from keyword hints; None when ambiguous."""
    lowered = text.lower()
    want_ru = any(hint in lowered for hint in RUSSIAN_HINTS)
    want_en = any(hint in lowered for hint in ENGLISH_HINTS)
    if want_ru == want_en:
        return None
    return "ru-RU" if want_ru else "en-US"


def detect_speed_change(text: str) -> Command:
    lowered = text.lower()
    want_faster = any(hint in lowered for hint in FASTER_HINTS)
    want_slower = any(hint in lowered for hint in SLOWER_HINTS)
    if want_faster == want_slower:
        return Command.UNKNOWN
    return Command.CHANGE_SPEECH_RATE_FASTER if want_faster else Command.CHANGE_SPEECH_RATE_SLOWER


def adjust_speech_rate(current: float, delta: float) -> float:
    return round(max(MIN_SPEECH_RATE, min(MAX_SPEECH_RATE, current + delta)), 1)


def speech_rate_key(rate: float) -> str:
    if rate < 0.9:
        return "speech_rate_slow"
    if rate > 1.1:
        return "speech_rate_fast"
    return "speech_rate_normal"


def _guess_token(text: str) -> str:
    for token in reversed(text.split(" ")):
        if len(token) > 2:
            return token
    return text


class DialogEngine:
    """Conversation state machine. Only the engine mutates its state."""

    def __init__(
        self,
        *,
        speech: SpeechOutput,
        listener: Listener,
        settings: SettingsStore,
        assist: AssistClient,
        status_provider: StatusProvider,
        action_sink: ActionSink,
        locale_notifier: LocaleNotifier | None = None,
        follow_up_window: FollowUpWindow | None = None,
        parser: CommandParser | None = None,
        languages: Sequence[str] = DEFAULT_LANGUAGES,
        listen_timeout_seconds: int = 15,
        follow_up_seconds: float = 20.0,
        logger: logging.Logger | None = None,
    ) -> None:
        if len(languages) != 2:
            raise ValueError("Exactly two languages are required for toggling")
        self._speech = speech
        self._listener = listener
        self._settings = settings
        self._assist = assist
        self._status_provider = status_provider
        self._action_sink = action_sink
        self._locale_notifier = locale_notifier
        self._follow_up_window = follow_up_window
        self._parser = parser or CommandParser()
        self._languages = (languages[0], languages[1])
        self._listen_timeout = listen_timeout_seconds
        self._follow_up_seconds = follow_up_seconds
        self._logger = logger or LOGGER

        self._state = DialogState.IDLE
        self._retry_pending = False
        self._session_id: str | None = None
        self._awaiting_first_run_name = False
        self._last_reply: str | None = None

        self._turn_lock = asyncio.Lock()
        self._queue: asyncio.Queue[Utterance] = asyncio.Queue()

    @property
    def state(self) -> DialogState:
        return self._state

    @property
    def retry_pending(self) -> bool:
        return self._retry_pending

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def awaiting_first_run_name(self) -> bool:
        return self._awaiting_first_run_name

    # ------------------------------------------------------------------
    # Turn scheduling
    # ------------------------------------------------------------------

    def submit(self, text: str, screen_context: str | None = None) -> None:
        """Queue an utterance for the next turn. Must be called on the engine's loop."""
        self._queue.put_nowait(Utterance(text, screen_context))

    async def run(self) -> None:
        """Consume queued utterances forever, one turn at a time."""
        while True:
            utterance = await self._queue.get()
            try:
                await self.on_user_input(utterance.text, utterance.screen_context)
            except Exception:
                self._logger.exception("[dialog] Turn failed for input %r", utterance.text)
            finally:
                self._queue.task_done()

    async def join(self) -> None:
        """Wait until every queued utterance has been handled."""
        await self._queue.join()

    async def start_first_run_setup(self) -> None:
        """Greet a new user and take the next utterance as their name."""
        async with self._turn_lock:
            self._awaiting_first_run_name = True
            self._logger.info("[dialog] Starting first-run setup")
            await self._say(localized(self._language(), "welcome_message"), QueueMode.FLUSH)
            self._listener.start_session(self._listen_timeout)

    async def on_user_input(self, text: str, screen_context: str | None = None) -> None:
        async with self._turn_lock:
            self._logger.debug("[dialog] Input in %s: %r", self._state.name, text)
            if self._state is DialogState.IDLE:
                await self._handle_idle(text, screen_context)
            elif self._state is DialogState.AWAITING_SETTING_CHOICE:
                await self._handle_setting_choice(text)
            elif self._state is DialogState.AWAITING_NEW_NAME:
                await self._handle_new_name(text)
            elif self._state is DialogState.AWAITING_NEW_LANGUAGE:
                await self._handle_new_language(text)
            elif self._state is DialogState.AWAITING_NEW_SPEED:
                await self._handle_new_speed(text)

    # ------------------------------------------------------------------
    # State handlers
    # ------------------------------------------------------------------

    async def _handle_idle(self, text: str, screen_context: str | None) -> None:
        if self._awaiting_first_run_name:
            await self._handle_first_run_name(text)
            return

        if text.strip().casefold() == FOLLOW_UP_TOKEN.casefold():
            self._logger.debug("[dialog] Handling follow-up after screen change")
            await self._query_llm(FOLLOW_UP_TOKEN, screen_context)
            return

        if self._follow_up_window is not None:
            self._follow_up_window.cancel()

        parsed = self._parser.parse(text)
        if parsed.command is Command.UNKNOWN:
            primary = primary_alternate(text)
            if primary:
                await self._query_llm(primary, screen_context)
            return

        self._retry_pending = False
        await self._run_local_command(parsed)

    async def _handle_setting_choice(self, text: str) -> None:
        command = self._parser.parse(text).command
        language = self._language()
        if command is Command.INTENT_CHANGE_NAME:
            self._retry_pending = False
            await self._speak_and_listen(localized(language, "choose_name_prompt"), DialogState.AWAITING_NEW_NAME)
        elif command is Command.INTENT_CHANGE_LANGUAGE:
            self._retry_pending = False
            await self._speak_and_listen(
                localized(language, "choose_language_prompt"), DialogState.AWAITING_NEW_LANGUAGE
            )
        elif command is Command.INTENT_CHANGE_SPEED:
            self._retry_pending = False
            await self._speak_and_listen(localized(language, "choose_speed_prompt"), DialogState.AWAITING_NEW_SPEED)
        else:
            await self._retry_or_exit(
                localized(language, "didnt_understand_rephrase"),
                localized(language, "command_not_recognized_exit"),
            )

    async def _handle_new_name(self, text: str) -> None:
        name = primary_alternate(text)
        if name:
            self._settings.save_user_name(name)
            await self._say(localized(self._language(), "name_confirmation", name=name), QueueMode.APPEND)
        self._reset_to_idle()

    async def _handle_new_language(self, text: str) -> None:
        primary = primary_alternate(text)
        target = detect_language_target(primary)
        if target is not None:
            self._retry_pending = False
            self._apply_language(target)
            await self._say(localized(target, "language_set_confirmation"), QueueMode.APPEND)
            self._reset_to_idle()
            return
        language = self._language()
        guess = _guess_token(primary)
        if guess:
            reprompt = localized(language, "language_not_recognized_reprompt", guess=guess)
        else:
            reprompt = localized(language, "choose_language_prompt")
        await self._retry_or_exit(
            reprompt,
            localized(language, "language_not_recognized_exit"),
        )

    async def _handle_new_speed(self, text: str) -> None:
        command = detect_speed_change(primary_alternate(text))
        if command is Command.UNKNOWN:
            command = self._parser.parse(text).command

        if command is Command.CHANGE_SPEECH_RATE_FASTER:
            rate = self._bump_speech_rate(SPEECH_RATE_STEP)
        elif command is Command.CHANGE_SPEECH_RATE_SLOWER:
            rate = self._bump_speech_rate(-SPEECH_RATE_STEP)
        else:
            language = self._language()
            await self._retry_or_exit(
                localized(language, "didnt_understand_speed"),
                localized(language, "command_not_recognized_exit"),
            )
            return

        self._retry_pending = False
        language = self._language()
        description = localized(language, speech_rate_key(rate))
        await self._say(localized(language, "speed_confirmation", speed=description), QueueMode.APPEND)
        self._reset_to_idle()

    async def _handle_first_run_name(self, text: str) -> None:
        self._awaiting_first_run_name = False
        language = self._language()
        name = primary_alternate(text)
        if name:
            self._settings.save_user_name(name)
            confirmation = localized(language, "name_confirmation", name=name)
        else:
            name = self._settings.user_name()
            self._settings.save_user_name(name)
            confirmation = localized(language, "default_name_confirmation", name=name)
        await self._say(confirmation, QueueMode.APPEND)
        await self._speak_final_settings()

    async def _speak_final_settings(self) -> None:
        language = self._language()
        summary = localized(
            language,
            "final_settings_confirmation",
            name=self._settings.user_name(),
            language=localized(language, "language_name"),
            speed=localized(language, speech_rate_key(self._settings.speech_rate())),
        )
        await self._say(summary, QueueMode.APPEND)

    async def _run_local_command(self, parsed: ParsedCommand) -> None:
        language = self._language()
        command = parsed.command
        if command is Command.CHANGE_NAME:
            if parsed.payload and parsed.payload.strip():
                name = parsed.payload.strip()
                self._settings.save_user_name(name)
                await self._say(localized(language, "name_confirmation", name=name), QueueMode.APPEND)
        elif command is Command.CHANGE_SPEECH_RATE_FASTER:
            self._bump_speech_rate(SPEECH_RATE_STEP)
            await self._say(localized(language, "speak_faster_confirmation"), QueueMode.APPEND)
        elif command is Command.CHANGE_SPEECH_RATE_SLOWER:
            self._bump_speech_rate(-SPEECH_RATE_STEP)
            await self._say(localized(language, "speak_slower_confirmation"), QueueMode.APPEND)
        elif command is Command.CHANGE_LANGUAGE:
            target = parsed.payload or self._toggled_language()
            self._apply_language(target)
            await self._say(localized(target, "language_set_confirmation"), QueueMode.APPEND)
        elif command is Command.INTENT_CHANGE_NAME:
            await self._speak_and_listen(localized(language, "choose_name_prompt"), DialogState.AWAITING_NEW_NAME)
        elif command is Command.INTENT_CHANGE_LANGUAGE:
            await self._speak_and_listen(
                localized(language, "choose_language_prompt"), DialogState.AWAITING_NEW_LANGUAGE
            )
        elif command is Command.INTENT_CHANGE_SPEED:
            await self._speak_and_listen(localized(language, "choose_speed_prompt"), DialogState.AWAITING_NEW_SPEED)
        elif command is Command.OPEN_SETTINGS:
            await self._speak_and_listen(
                localized(language, "open_settings_prompt"), DialogState.AWAITING_SETTING_CHOICE
            )
        elif command is Command.REPEAT:
            if self._last_reply:
                await self._speech.speak(self._last_reply, QueueMode.FLUSH)
            else:
                await self._speech.speak(localized(language, "nothing_to_repeat"), QueueMode.FLUSH)

    # ------------------------------------------------------------------
    # LLM escalation
    # ------------------------------------------------------------------

    async def _query_llm(self, user_text: str, screen_context: str | None) -> None:
        if self._session_id is None:
            self._session_id = str(uuid.uuid4())
            self._logger.debug("[dialog] Starting new LLM session %s", self._session_id)
        session_id = self._session_id
        try:
            status = await asyncio.to_thread(self._status_provider.gather)
            reply = await self._assist.assist(session_id, user_text, screen_context, status)
        except Exception:
            self._logger.exception("[dialog] Failed to get a reply from the assistant")
            await self._say(localized(self._language(), "llm_error_fallback"), QueueMode.FLUSH)
            return

        await self._say(reply.reply_text, QueueMode.FLUSH)
        if reply.actions:
            await dispatch_actions(reply.actions, self._action_sink, self._logger)
        if self._follow_up_window is not None:
            self._follow_up_window.open(self._follow_up_seconds)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _say(self, text: str, mode: QueueMode) -> None:
        self._last_reply = text
        await self._speech.speak(text, mode)

    async def _speak_and_listen(self, prompt: str, next_state: DialogState) -> None:
        self._state = next_state
        self._logger.debug("[dialog] Transitioning to %s", next_state.name)
        await self._say(prompt, QueueMode.FLUSH)
        self._listener.start_session(self._listen_timeout)

    async def _retry_or_exit(self, reprompt: str, exit_phrase: str) -> None:
        if not self._retry_pending:
            self._retry_pending = True
            await self._speak_and_listen(reprompt, self._state)
            return
        self._logger.debug("[dialog] Second unrecognized input in %s; leaving settings", self._state.name)
        await self._say(exit_phrase, QueueMode.APPEND)
        self._reset_to_idle()

    def _reset_to_idle(self) -> None:
        self._state = DialogState.IDLE
        self._retry_pending = False
        self._session_id = None
        self._logger.debug("[dialog] State and session reset to IDLE")

    def _language(self) -> str:
        return self._settings.language()

    def _toggled_language(self) -> str:
        primary, secondary = self._languages
        if language_key(self._language()) == language_key(primary):
            return secondary
        return primary

    def _apply_language(self, language_tag: str) -> None:
        self._settings.save_language(language_tag)
        self._speech.set_language(language_tag)
        if self._locale_notifier is not None:
            self._locale_notifier.notify_locale_changed(language_tag)

    def _bump_speech_rate(self, delta: float) -> float:
        rate = adjust_speech_rate(self._settings.speech_rate(), delta)
        self._settings.save_speech_rate(rate)
        self._speech.set_speech_rate(rate)
        return rate
