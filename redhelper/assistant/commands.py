"""Voice command parsing for RedHelper.

This module classifies free-form recognized speech into discrete commands with
an optional payload. It is a pure function of its input: no state is kept
between calls.

Speech recognizers return ranked alternates; the capture service joins them
with ``ALTERNATE_DELIMITER``. Each alternate is tried in order and the first
one that matches anything wins.

Per alternate, rules are checked in strict priority order:
1. Cross-lingual "switch to language X" phrases (whole-string equality)
2. Payload triggers such as "change name to Alex" (prefix, remainder is payload)
3. Speech-rate triggers (faster / slower)
4. Settings intent triggers (name / language / speed)
5. Repeat triggers
6. Open-settings triggers
"""

from __future__ import annotations

import enum
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

ALTERNATE_DELIMITER = "|||"


class Command(enum.Enum):
    REPEAT = "repeat"
    OPEN_SETTINGS = "open_settings"
    CHANGE_NAME = "change_name"
    CHANGE_LANGUAGE = "change_language"
    CHANGE_SPEECH_RATE_FASTER = "change_speech_rate_faster"
    CHANGE_SPEECH_RATE_SLOWER = "change_speech_rate_slower"
    INTENT_CHANGE_NAME = "intent_change_name"
    INTENT_CHANGE_LANGUAGE = "intent_change_language"
    INTENT_CHANGE_SPEED = "intent_change_speed"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ParsedCommand:
    """A classified utterance; ``payload`` carries extracted text or a language tag."""

    command: Command
    payload: str | None = None


UNKNOWN_COMMAND = ParsedCommand(Command.UNKNOWN)


def split_alternates(text: str | None) -> list[str]:
    """Split a delimiter-joined recognizer result into trimmed alternates."""
    if not text:
        return []
    return [part.strip() for part in text.split(ALTERNATE_DELIMITER)]


def primary_alternate(text: str | None) -> str:
    """Return the top-ranked alternate, trimmed (empty string when there is none)."""
    alternates = split_alternates(text)
    return alternates[0] if alternates else ""


@dataclass(frozen=True)
class TriggerSet:
    """Trigger phrases for every rule, lower-case, English and Russian."""

    language_switch: Mapping[str, tuple[str, ...]]
    name_change: tuple[str, ...]
    rate_faster: tuple[str, ...]
    rate_slower: tuple[str, ...]
    intent_name: tuple[str, ...]
    intent_language: tuple[str, ...]
    intent_speed: tuple[str, ...]
    repeat: tuple[str, ...]
    settings: tuple[str, ...]
    fillers: frozenset[str] = field(default_factory=lambda: frozenset({"to", "на"}))


DEFAULT_TRIGGERS = TriggerSet(
    language_switch={
        "ru-RU": (
            "change language russian",
            "switch language russian",
            "set language russian",
            "speak russian",
            "сменить язык русский",
            "измени язык русский",
            "поставь русский",
            "говори русском",
            "говори по-русски",
        ),
        "en-US": (
            "change language english",
            "switch language english",
            "set language english",
            "speak english",
            "сменить язык английский",
            "измени язык английский",
            "поставь английский",
            "говори английском",
            "говори по-английски",
        ),
    },
    name_change=(
        "сменить имя",
        "запомни имя",
        "измени имя",
        "зови меня",
        "меня зовут",
        "change name",
        "set name",
        "update name",
        "my name is",
        "my name",
    ),
    rate_faster=(
        "ускорь речь",
        "скорость речи",
        "говори быстрее",
        "speed up speech",
        "faster speech",
        "talk faster",
        "speak faster",
        "speech speed",
    ),
    rate_slower=(
        "замедли речь",
        "говори медленнее",
        "speed down speech",
        "slow speech",
        "talk slower",
        "speak slower",
    ),
    intent_name=("имя", "name", "change name", "измени имя"),
    intent_language=("язык", "language"),
    intent_speed=("скорость", "скорость речи", "speed", "speech speed"),
    repeat=(
        "повтори",
        "скажи ещё раз",
        "скажи еще раз",
        "что ты сказал",
        "не расслышал",
        "не расслышала",
        "я не услышал",
        "я не услышала",
        "плохо слышно",
        "не понял",
        "не поняла",
        "давай ещё раз",
        "можно ещё раз",
        "ещё раз",
        "еще раз",
        "что-что",
        "как ты сказал",
        "repeat",
        "say it again",
        "say that again",
        "once more",
        "once again",
        "one more time",
        "could you repeat",
        "can you repeat",
        "tell me again",
        "didn't hear you",
        "didn't catch that",
        "missed that",
        "what did you say",
        "what was that",
        "pardon",
        "come again",
    ),
    settings=(
        "настройки",
        "открой настройки",
        "открыть настройки",
        "покажи настройки",
        "зайди в настройки",
        "давай в настройки",
        "меню настроек",
        "помоги настроить",
        "хочу поменять",
        "хочу изменить",
        "изменить параметры",
        "параметры",
        "конфигурация",
        "установки",
        "опции",
        "меню",
        "сетап",
        "settings",
        "open settings",
        "app settings",
        "change settings",
        "setup",
        "configuration",
        "config",
        "options",
        "preferences",
        "open menu",
        "menu",
    ),
)


class CommandParser:
    """Classifies recognized speech into a :class:`ParsedCommand`.

    Parsing is total: any string (including empty or whitespace-only input)
    yields a result, with ``Command.UNKNOWN`` when nothing matches.
    """

    def __init__(self, triggers: TriggerSet = DEFAULT_TRIGGERS) -> None:
        self.triggers = triggers
        self._simple_rules: tuple[tuple[Command, tuple[str, ...]], ...] = (
            (Command.INTENT_CHANGE_NAME, triggers.intent_name),
            (Command.INTENT_CHANGE_LANGUAGE, triggers.intent_language),
            (Command.INTENT_CHANGE_SPEED, triggers.intent_speed),
            (Command.REPEAT, triggers.repeat),
            (Command.OPEN_SETTINGS, triggers.settings),
        )

    def parse(self, text: str | None) -> ParsedCommand:
        """Classify ``text``, trying each recognizer alternate in order."""
        for variant in split_alternates(text):
            parsed = self.parse_variant(variant)
            if parsed is not None:
                return parsed
        return UNKNOWN_COMMAND

    def parse_variant(self, variant: str) -> ParsedCommand | None:
        """Classify a single alternate, or return None when no rule matches."""
        kept_tokens = [token for token in variant.split() if token.lower() not in self.triggers.fillers]
        normalized = " ".join(kept_tokens).lower()
        lowered = " ".join(variant.lower().split())
        if not lowered:
            return None

        for language_tag, phrases in self.triggers.language_switch.items():
            if normalized in phrases:
                return ParsedCommand(Command.CHANGE_LANGUAGE, language_tag)

        payload = self.extract_payload(normalized, kept_tokens, self.triggers.name_change)
        if payload is not None:
            return ParsedCommand(Command.CHANGE_NAME, payload)

        if _starts_with_any(normalized, self.triggers.rate_faster):
            return ParsedCommand(Command.CHANGE_SPEECH_RATE_FASTER)
        if _starts_with_any(normalized, self.triggers.rate_slower):
            return ParsedCommand(Command.CHANGE_SPEECH_RATE_SLOWER)

        for command, phrases in self._simple_rules:
            if _starts_with_any(lowered, phrases):
                return ParsedCommand(command)
        return None

    @staticmethod
    def extract_payload(normalized: str, kept_tokens: list[str], triggers: Iterable[str]) -> str | None:
        """Return the text following the first matching trigger.

        Args:
            normalized: Lower-cased text with filler words removed
            kept_tokens: The same tokens in their original casing
            triggers: Prefix triggers to try in order

        Returns:
            The trimmed remainder in its original casing, or None when no
            trigger matches or every matching trigger leaves an empty remainder
        """
        for trigger in triggers:
            if not normalized.startswith(trigger):
                continue
            boundary = len(trigger)
            if boundary < len(normalized) and normalized[boundary] != " ":
                continue
            payload = " ".join(kept_tokens[len(trigger.split()) :]).strip()
            if payload:
                return payload
        return None


def _starts_with_any(text: str, triggers: Iterable[str]) -> bool:
    return any(text.startswith(trigger) for trigger in triggers)


_DEFAULT_PARSER = CommandParser()


def parse_command(text: str | None) -> ParsedCommand:
    """Classify ``text`` with the default English/Russian trigger set."""
    return _DEFAULT_PARSER.parse(text)
