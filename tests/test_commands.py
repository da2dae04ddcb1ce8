"""Tests for voice command parsing (redhelper/assistant/commands.py)."""

from __future__ import annotations

from dataclasses import replace

import pytest

from redhelper.assistant.commands import (
    DEFAULT_TRIGGERS,
    UNKNOWN_COMMAND,
    Command,
    CommandParser,
    ParsedCommand,
    parse_command,
    primary_alternate,
    split_alternates,
)


class TestAlternates:
    """Test splitting recognizer alternates."""

    def test_split_trims_each_alternate(self):
        assert split_alternates("hello ||| hallo |||  yellow ") == ["hello", "hallo", "yellow"]

    def test_split_empty(self):
        assert split_alternates("") == []
        assert split_alternates(None) == []

    def test_primary_alternate(self):
        assert primary_alternate("  Alex ||| Alexa") == "Alex"
        assert primary_alternate("") == ""


class TestLanguageSwitch:
    """Cross-lingual switch phrases use whole-string equality."""

    def test_english_phrase_to_russian(self):
        assert parse_command("change language to russian") == ParsedCommand(Command.CHANGE_LANGUAGE, "ru-RU")

    def test_russian_phrase_with_filler(self):
        assert parse_command("Сменить язык на английский") == ParsedCommand(Command.CHANGE_LANGUAGE, "en-US")

    def test_extra_words_do_not_match(self):
        """A switch phrase inside a longer sentence is not a language change."""
        result = parse_command("can you change language to russian please")
        assert result.command is not Command.CHANGE_LANGUAGE

    def test_language_switch_beats_settings_trigger(self):
        """When a phrase is both a switch phrase and a settings trigger, the switch wins."""
        triggers = replace(DEFAULT_TRIGGERS, settings=DEFAULT_TRIGGERS.settings + ("speak",))
        parser = CommandParser(triggers)
        assert parser.parse("speak english") == ParsedCommand(Command.CHANGE_LANGUAGE, "en-US")
        assert parser.parse("speak loudly") == ParsedCommand(Command.OPEN_SETTINGS)


class TestPayloadTriggers:
    """Payload triggers extract the remainder after the prefix."""

    def test_change_name_payload(self):
        assert parse_command("change name to Alex") == ParsedCommand(Command.CHANGE_NAME, "Alex")

    def test_payload_keeps_original_casing(self):
        assert parse_command("Change name to Mary Ann") == ParsedCommand(Command.CHANGE_NAME, "Mary Ann")

    def test_russian_payload(self):
        assert parse_command("меня зовут Иван") == ParsedCommand(Command.CHANGE_NAME, "Иван")

    def test_empty_remainder_falls_through(self):
        """"change name to" has no payload and resolves to the name intent instead."""
        result = parse_command("change name to")
        assert result == ParsedCommand(Command.INTENT_CHANGE_NAME)

    def test_longer_trigger_wins_over_shorter(self):
        assert parse_command("my name is Alex") == ParsedCommand(Command.CHANGE_NAME, "Alex")

    @pytest.mark.parametrize("text", ["call Melissa", "call mechanic", "set names of icons", "My NamesAlex"])
    def test_trigger_must_end_on_word_boundary(self, text):
        assert parse_command(text).command is not Command.CHANGE_NAME


class TestRateAndIntentTriggers:
    """Rate, intent, repeat and settings triggers match by prefix."""

    @pytest.mark.parametrize(
        ("text", "command"),
        [
            ("speak faster please", Command.CHANGE_SPEECH_RATE_FASTER),
            ("говори быстрее", Command.CHANGE_SPEECH_RATE_FASTER),
            ("talk slower", Command.CHANGE_SPEECH_RATE_SLOWER),
            ("замедли речь", Command.CHANGE_SPEECH_RATE_SLOWER),
            ("имя", Command.INTENT_CHANGE_NAME),
            ("Language", Command.INTENT_CHANGE_LANGUAGE),
            ("скорость", Command.INTENT_CHANGE_SPEED),
            ("повтори", Command.REPEAT),
            ("say that again", Command.REPEAT),
            ("настройки", Command.OPEN_SETTINGS),
            ("Open settings", Command.OPEN_SETTINGS),
        ],
    )
    def test_prefix_commands(self, text, command):
        assert parse_command(text) == ParsedCommand(command)

    def test_rate_before_intent(self):
        """"speech speed" is both a rate and an intent trigger; rate has priority."""
        assert parse_command("speech speed").command is Command.CHANGE_SPEECH_RATE_FASTER

    def test_repeat_before_settings(self):
        triggers = replace(DEFAULT_TRIGGERS, settings=DEFAULT_TRIGGERS.settings + ("repeat",))
        assert CommandParser(triggers).parse("repeat").command is Command.REPEAT


class TestAlternateOrdering:
    """Alternates are tried in rank order."""

    def test_first_matching_alternate_wins(self):
        result = parse_command("what is this ||| настройки ||| повтори")
        assert result == ParsedCommand(Command.OPEN_SETTINGS)

    def test_no_alternate_matches(self):
        assert parse_command("what is the weather ||| what's the weather") is UNKNOWN_COMMAND


class TestTotality:
    """parse never raises and is deterministic."""

    @pytest.mark.parametrize("text", ["", "   ", "|||", " ||| ||| ", "на", "to to to", "\u0000", "💬 hello"])
    def test_edge_inputs(self, text):
        first = parse_command(text)
        assert isinstance(first, ParsedCommand)
        assert parse_command(text) == first

    def test_none_input(self):
        assert parse_command(None) is UNKNOWN_COMMAND
