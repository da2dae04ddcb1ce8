"""Configuration helpers for the RedHelper assistant."""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from redhelper.utils import parse_bool, parse_float, parse_int, split_csv


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


DEFAULT_CONFIG_PATH = Path("/opt/redhelper/redhelper.conf")
DEFAULT_LANGUAGES = ("ru-RU", "en-US")
ASSIST_PROVIDERS = {"backend", "openai"}
SPEECH_BACKENDS = {"mqtt", "wyoming"}


@dataclass(frozen=True)
class WyomingEndpoint:
    host: str
    port: int
    model: str | None = None


@dataclass(frozen=True)
class MqttConfig:
    host: str | None
    port: int
    username: str | None
    password: str | None
    tls_enabled: bool
    cert: str | None
    key: str | None
    ca_cert: str | None
    topic_base: str


@dataclass(frozen=True)
class AssistConfig:
    provider: Literal["backend", "openai"]
    system_prompt: str
    backend_url: str | None
    backend_token: str | None
    backend_timeout: float
    openai_model: str
    openai_api_key: str | None
    openai_base_url: str
    openai_timeout: int


@dataclass(frozen=True)
class SpeechConfig:
    backend: Literal["mqtt", "wyoming"]
    tts_endpoint: WyomingEndpoint
    tts_voice: str | None
    tts_voices: dict[str, str]
    audio_player: str
    completion_timeout: float


@dataclass(frozen=True)
class DialogConfig:
    languages: tuple[str, str]
    listen_timeout_seconds: int
    follow_up_seconds: float
    highlight_ms: int


@dataclass(frozen=True)
class SettingsDefaults:
    user_name: str | None
    language: str
    speech_rate: float


@dataclass(frozen=True)
class AssistantConfig:
    hostname: str
    config_file: Path
    mqtt: MqttConfig
    assist: AssistConfig
    speech: SpeechConfig
    dialog: DialogConfig
    settings: SettingsDefaults
    transcript_topic: str
    ui_tree_topic: str
    device_status_topic: str
    follow_up_topic: str
    first_run_topic: str
    speak_topic: str
    speak_done_topic: str
    listen_topic: str
    action_topic: str
    locale_topic: str
    log_llm_messages: bool

    @staticmethod
    def from_env(env: dict[str, str] | None = None) -> AssistantConfig:
        source = env or os.environ
        hostname = source.get("REDHELPER_HOSTNAME") or socket.gethostname()
        config_file = Path(source.get("REDHELPER_CONFIG_FILE") or DEFAULT_CONFIG_PATH)

        topic_base = source.get("REDHELPER_TOPIC_BASE") or f"redhelper/{hostname}"
        mqtt = MqttConfig(
            host=_strip_or_none(source.get("MQTT_HOST")),
            port=parse_int(source.get("MQTT_PORT"), 1883),
            username=_strip_or_none(source.get("MQTT_USER") or source.get("MQTT_USERNAME")),
            password=_strip_or_none(source.get("MQTT_PASS") or source.get("MQTT_PASSWORD")),
            tls_enabled=parse_bool(source.get("MQTT_TLS_ENABLED"), False),
            cert=_strip_or_none(source.get("MQTT_CERT")),
            key=_strip_or_none(source.get("MQTT_KEY")),
            ca_cert=_strip_or_none(source.get("MQTT_CA_CERT")),
            topic_base=topic_base.rstrip("/"),
        )

        system_prompt = source.get("REDHELPER_SYSTEM_PROMPT", "").strip()
        prompt_file = source.get("REDHELPER_SYSTEM_PROMPT_FILE")
        if not system_prompt and prompt_file:
            candidate = Path(prompt_file)
            if candidate.is_file():
                system_prompt = candidate.read_text(encoding="utf-8").strip()
        if not system_prompt:
            system_prompt = DEFAULT_SYSTEM_PROMPT

        backend_url = _strip_or_none(source.get("REDHELPER_BACKEND_URL"))
        assist = AssistConfig(
            provider=_normalize_choice(source.get("REDHELPER_ASSIST_PROVIDER"), ASSIST_PROVIDERS, "backend"),
            system_prompt=system_prompt,
            backend_url=backend_url.rstrip("/") if backend_url else None,
            backend_token=_strip_or_none(source.get("REDHELPER_BACKEND_TOKEN")),
            backend_timeout=max(1.0, parse_float(source.get("REDHELPER_BACKEND_TIMEOUT_SECONDS"), 30.0)),
            openai_model=source.get("OPENAI_MODEL", "gpt-4o-mini"),
            openai_api_key=_strip_or_none(source.get("OPENAI_API_KEY")),
            openai_base_url=source.get("OPENAI_BASE_URL", "https://api.openai.com/v1"),
            openai_timeout=parse_int(source.get("OPENAI_TIMEOUT_SECONDS"), 45),
        )

        speech = SpeechConfig(
            backend=_normalize_choice(source.get("REDHELPER_SPEECH_BACKEND"), SPEECH_BACKENDS, "mqtt"),
            tts_endpoint=WyomingEndpoint(
                host=source.get("WYOMING_PIPER_HOST", "127.0.0.1"),
                port=parse_int(source.get("WYOMING_PIPER_PORT"), 10200),
            ),
            tts_voice=_strip_or_none(source.get("REDHELPER_TTS_VOICE")),
            tts_voices=_parse_voice_map(source.get("REDHELPER_TTS_VOICES")),
            audio_player=_strip_or_none(source.get("REDHELPER_AUDIO_PLAYER")) or "aplay",
            completion_timeout=max(0.0, parse_float(source.get("REDHELPER_SPEECH_TIMEOUT_SECONDS"), 20.0)),
        )

        dialog = DialogConfig(
            languages=_parse_language_pair(source.get("REDHELPER_LANGUAGES")),
            listen_timeout_seconds=max(1, parse_int(source.get("REDHELPER_LISTEN_TIMEOUT_SECONDS"), 15)),
            follow_up_seconds=max(1.0, parse_float(source.get("REDHELPER_FOLLOW_UP_SECONDS"), 20.0)),
            highlight_ms=max(100, parse_int(source.get("REDHELPER_HIGHLIGHT_MS"), 5000)),
        )

        settings = SettingsDefaults(
            user_name=_strip_or_none(source.get("REDHELPER_USER_NAME")),
            language=(source.get("REDHELPER_LANGUAGE") or dialog.languages[0]).strip(),
            speech_rate=parse_float(source.get("REDHELPER_SPEECH_RATE"), 1.0),
        )

        return AssistantConfig(
            hostname=hostname,
            config_file=config_file,
            mqtt=mqtt,
            assist=assist,
            speech=speech,
            dialog=dialog,
            settings=settings,
            transcript_topic=f"{mqtt.topic_base}/transcript",
            ui_tree_topic=f"{mqtt.topic_base}/ui_tree",
            device_status_topic=f"{mqtt.topic_base}/device_status",
            follow_up_topic=f"{mqtt.topic_base}/follow_up_window",
            first_run_topic=f"{mqtt.topic_base}/first_run",
            speak_topic=f"{mqtt.topic_base}/speech/say",
            speak_done_topic=f"{mqtt.topic_base}/speech/done",
            listen_topic=f"{mqtt.topic_base}/speech/listen",
            action_topic=f"{mqtt.topic_base}/actions",
            locale_topic=f"{mqtt.topic_base}/locale",
            log_llm_messages=parse_bool(source.get("REDHELPER_LOG_LLM"), False),
        )


DEFAULT_SYSTEM_PROMPT = """You are RedHelper, a patient assistant that helps people use their phone by voice.
- Answer in the user's language using short, plain sentences.
- Use the screen context to explain what is visible and what to tap next.
- When the user asks you to act on the screen, describe the step and include the
  matching action in your reply JSON. Only target elements present in the screen context.
- Never invent buttons, apps or settings that are not listed.
- When unsure, ask one clarifying question instead of guessing."""


def _parse_language_pair(value: str | None) -> tuple[str, str]:
    tags = split_csv(value)
    if len(tags) < 2:
        return DEFAULT_LANGUAGES
    return tags[0], tags[1]


def _parse_voice_map(value: str | None) -> dict[str, str]:
    """Parse ``ru-RU=ru_RU-irina-medium,en-US=en_US-amy-medium`` into a mapping."""
    voices: dict[str, str] = {}
    for entry in split_csv(value):
        tag, sep, voice = entry.partition("=")
        if sep and tag.strip() and voice.strip():
            voices[tag.strip()] = voice.strip()
    return voices


def _normalize_choice(value: str | None, allowed: set[str], default: str) -> str:
    if not value:
        return default
    lowered = value.strip().lower()
    if lowered in allowed:
        return lowered
    return default
