"""MQTT connection used for device commands and assistant telemetry."""

from __future__ import annotations

import json
import logging
import ssl
import threading
from typing import Any

import paho.mqtt.client as mqtt

from .config import MqttConfig

KEEPALIVE_SECONDS = 30


class AssistantMqtt:
    """One paho client shared by the command executor and the session hosts.

    Without a broker host, or after a failed connect, the client stays offline
    and every publish returns False.
    """

    def __init__(self, config: MqttConfig, logger: logging.Logger | None = None) -> None:
        self.config = config
        self._logger = logger or logging.getLogger("hark-assistant.mqtt")
        self._client: mqtt.Client | None = None
        self._lock = threading.Lock()

    @property
    def client_id(self) -> str:
        return "hark-assistant-" + self.config.topic_base.replace("/", "-")

    def connect(self) -> bool:
        if not self.config.host:
            self._logger.debug("[mqtt] No broker configured; device commands and telemetry are off")
            return False
        with self._lock:
            if self._client is None:
                self._client = self._open()
            return self._client is not None

    def disconnect(self) -> None:
        with self._lock:
            client, self._client = self._client, None
        if client is None:
            return
        client.loop_stop()
        client.disconnect()

    def is_connected(self) -> bool:
        client = self._client
        return client is not None and bool(client.is_connected())

    def publish(self, topic: str, payload: str, retain: bool = False, qos: int = 0) -> bool:
        client = self._client
        if client is None:
            return False
        try:
            info = client.publish(topic, payload=payload, qos=qos, retain=retain)
        except (OSError, RuntimeError, ValueError) as exc:
            self._logger.debug("[mqtt] Publish to %s raised: %s", topic, exc)
            return False
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            self._logger.debug("[mqtt] Publish to %s rejected: %s", topic, mqtt.error_string(info.rc))
            return False
        return True

    def publish_json(self, topic: str, payload: dict[str, Any], retain: bool = False, qos: int = 0) -> bool:
        return self.publish(topic, json.dumps(payload), retain=retain, qos=qos)

    def _open(self) -> mqtt.Client | None:
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            clean_session=True,
        )
        if self.config.username:
            client.username_pw_set(self.config.username, self.config.password or "")
        if self.config.tls_enabled:
            client.tls_set(**self._tls_options())
        host, port = self.config.host, self.config.port
        try:
            client.connect(host, port, keepalive=KEEPALIVE_SECONDS)
        except (OSError, ValueError) as exc:
            self._logger.warning("[mqtt] Could not reach broker %s:%s: %s", host, port, exc)
            return None
        client.loop_start()
        self._logger.info("[mqtt] Connected to %s:%s as %s", host, port, self.client_id)
        return client

    def _tls_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {"tls_version": ssl.PROTOCOL_TLS_CLIENT}
        for key, value in (
            ("ca_certs", self.config.ca_cert),
            ("certfile", self.config.cert),
            ("keyfile", self.config.key),
        ):
            if value:
                options[key] = value
        return options
