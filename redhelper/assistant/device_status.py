"""Device status snapshot sent along with every LLM request.

The snapshot is opaque to the dialog engine: it is gathered at call time and
forwarded to the assistant backend so answers can take connectivity, battery
and lock state into account.

Fields reported by the phone over MQTT take precedence. Battery and
connectivity fall back to the local host via psutil when the device has not
reported them yet.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass
from typing import Any

import psutil

from redhelper.utils import coerce_str

LOGGER = logging.getLogger(__name__)

CONNECTION_TYPES = {"WIFI", "MOBILE", "ETHERNET", "NONE", "UNKNOWN"}
RINGER_MODES = {"NORMAL", "SILENT", "VIBRATE"}


@dataclass(frozen=True)
class DeviceStatus:
    is_airplane_mode_on: bool
    internet_connection_status: str
    ringer_mode: str
    battery_level: int | None
    installed_apps: str
    is_keyguard_locked: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class DeviceStatusProvider:
    """Merges device telemetry with local psutil readings. Thread-safe."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or LOGGER
        self._lock = threading.Lock()
        self._reported: dict[str, Any] = {}

    def update(self, payload: Mapping[str, Any]) -> None:
        """Record the latest device telemetry (partial updates are merged)."""
        if not isinstance(payload, Mapping):
            return
        with self._lock:
            self._reported.update(payload)

    def gather(self) -> DeviceStatus:
        with self._lock:
            reported = dict(self._reported)

        connection = coerce_str(reported.get("internet_connection_status")).upper()
        if connection not in CONNECTION_TYPES:
            connection = self._local_connection_type()

        battery = reported.get("battery_level")
        if not isinstance(battery, int) or isinstance(battery, bool):
            battery = self._local_battery_level()

        ringer = coerce_str(reported.get("ringer_mode")).upper()
        if ringer not in RINGER_MODES:
            ringer = "NORMAL"

        return DeviceStatus(
            is_airplane_mode_on=bool(reported.get("is_airplane_mode_on", False)),
            internet_connection_status=connection,
            ringer_mode=ringer,
            battery_level=battery,
            installed_apps=_format_app_labels(reported.get("installed_apps")),
            is_keyguard_locked=bool(reported.get("is_keyguard_locked", False)),
        )

    def _local_battery_level(self) -> int | None:
        try:
            battery = psutil.sensors_battery()
        except (AttributeError, NotImplementedError, OSError) as exc:
            self.logger.debug("[status] Battery reading unavailable: %s", exc)
            return None
        if battery is None:
            return None
        return int(round(battery.percent))

    def _local_connection_type(self) -> str:
        try:
            stats = psutil.net_if_stats()
        except OSError as exc:
            self.logger.debug("[status] Network interface stats unavailable: %s", exc)
            return "UNKNOWN"
        active = [name for name, info in stats.items() if info.isup and not _is_loopback(name)]
        if not active:
            return "NONE"
        for name in active:
            if name.startswith(("wl", "wlan", "wifi")):
                return "WIFI"
        for name in active:
            if name.startswith(("rmnet", "wwan", "ccmni")):
                return "MOBILE"
        for name in active:
            if name.startswith(("eth", "en")):
                return "ETHERNET"
        return "UNKNOWN"


def _is_loopback(name: str) -> bool:
    return name == "lo" or name.startswith("lo0") or name.lower().startswith("loopback")


def _format_app_labels(value: Any) -> str:
    """Join app labels into a single comma-separated line safe for JSON prompts."""
    if isinstance(value, str):
        labels: Iterable[Any] = value.split(",")
    elif isinstance(value, (list, tuple)):
        labels = value
    else:
        return ""
    cleaned = (" ".join(str(label).split()) for label in labels)
    return ", ".join(label for label in cleaned if label)
