"""In-process user settings with debounced persistence."""

from __future__ import annotations

import logging
import threading

from redhelper.config_persist import SettingsPersister

from .config import SettingsDefaults
from .strings import localized

LOGGER = logging.getLogger(__name__)

USER_NAME_VAR = "REDHELPER_USER_NAME"
LANGUAGE_VAR = "REDHELPER_LANGUAGE"
SPEECH_RATE_VAR = "REDHELPER_SPEECH_RATE"


class SettingsStore:
    """User name, language tag and speech rate.

    Reads reflect writes immediately; the config file catches up through the
    persister's debounce.
    """

    def __init__(
        self,
        defaults: SettingsDefaults,
        persister: SettingsPersister | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._user_name = defaults.user_name
        self._language = defaults.language
        self._speech_rate = defaults.speech_rate
        self._persister = persister
        self._logger = logger or LOGGER

    def user_name(self) -> str:
        """Saved name, or the localized default when none was set."""
        with self._lock:
            name, language = self._user_name, self._language
        return name or localized(language, "default_user_name")

    def is_user_name_set(self) -> bool:
        with self._lock:
            return bool(self._user_name)

    def save_user_name(self, name: str) -> None:
        with self._lock:
            self._user_name = name
        self._persist(USER_NAME_VAR, name)

    def language(self) -> str:
        with self._lock:
            return self._language

    def save_language(self, language_tag: str) -> None:
        with self._lock:
            self._language = language_tag
        self._persist(LANGUAGE_VAR, language_tag)

    def speech_rate(self) -> float:
        with self._lock:
            return self._speech_rate

    def save_speech_rate(self, rate: float) -> None:
        with self._lock:
            self._speech_rate = rate
        self._persist(SPEECH_RATE_VAR, f"{rate:.1f}")

    def _persist(self, var_name: str, value: str) -> None:
        self._logger.debug("[settings] %s=%r", var_name, value)
        if self._persister is not None:
            self._persister.update(var_name, value)


class MqttLocaleNotifier:
    """Publish locale changes so device-side components can reload strings."""

    def __init__(self, mqtt, topic: str, logger: logging.Logger | None = None) -> None:
        self._mqtt = mqtt
        self._topic = topic
        self._logger = logger or LOGGER

    def notify_locale_changed(self, language_tag: str) -> None:
        self._logger.info("[settings] Locale changed to %s", language_tag)
        self._mqtt.publish(self._topic, language_tag, retain=True)
