"""MQTT link between the assistant and the device."""

from __future__ import annotations

import logging
import ssl
import threading
from collections.abc import Callable

import paho.mqtt.client as mqtt

from .config import MqttConfig


class AssistantMqtt:
    """Thin paho-mqtt wrapper: one background network loop, topic-scoped callbacks."""

    def __init__(self, config: MqttConfig, logger: logging.Logger | None = None) -> None:
        self.config = config
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._lock = threading.Lock()

    def connect(self) -> bool:
        if not self.config.host:
            self._logger.warning("[mqtt] MQTT host not configured; device link disabled")
            return False
        with self._lock:
            if self._client is not None:
                return True
            client = mqtt.Client(
                callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
                client_id=f"redhelper-{self.config.topic_base.replace('/', '-')}",
                clean_session=True,
            )
            if self.config.username:
                client.username_pw_set(self.config.username, self.config.password or "")
            if self.config.tls_enabled:
                tls_kwargs: dict[str, object] = {"tls_version": ssl.PROTOCOL_TLS_CLIENT}
                if self.config.ca_cert:
                    tls_kwargs["ca_certs"] = self.config.ca_cert
                if self.config.cert:
                    tls_kwargs["certfile"] = self.config.cert
                if self.config.key:
                    tls_kwargs["keyfile"] = self.config.key
                client.tls_set(**tls_kwargs)
            try:
                client.connect(self.config.host, self.config.port, keepalive=30)
            except (OSError, ValueError) as exc:
                self._logger.warning("[mqtt] Failed to connect to %s:%s: %s", self.config.host, self.config.port, exc)
                return False
            client.loop_start()
            self._client = client
        self._logger.info("[mqtt] Connected to %s:%s", self.config.host, self.config.port)
        return True

    def disconnect(self) -> None:
        with self._lock:
            client = self._client
            self._client = None
        if client:
            client.loop_stop()
            client.disconnect()

    def is_connected(self) -> bool:
        client = self._client
        return bool(client and client.is_connected())

    def publish(self, topic: str, payload: str, retain: bool = False, qos: int = 0) -> None:
        client = self._client
        if not client:
            self._logger.debug("[mqtt] Dropping message for %s; not connected", topic)
            return
        result = client.publish(topic, payload=payload, qos=qos, retain=retain)
        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            self._logger.debug("[mqtt] Failed to publish to %s (rc=%s)", topic, result.rc)

    def subscribe(self, topic: str, on_message: Callable[[str], None]) -> None:
        client = self._client
        if not client:
            raise RuntimeError("MQTT client is not connected")

        def _callback(_client, _userdata, message):  # type: ignore[no-untyped-def]
            try:
                payload = message.payload.decode("utf-8", errors="ignore")
                on_message(payload)
            except Exception as exc:
                self._logger.error("[mqtt] Subscriber callback failed for topic '%s': %s", topic, exc, exc_info=True)

        result, _mid = client.subscribe(topic)
        if result != mqtt.MQTT_ERR_SUCCESS:
            self._logger.warning("[mqtt] Failed to subscribe to topic: %s (rc=%s)", topic, result)
        client.message_callback_add(topic, _callback)
