"""Thin paho-mqtt wrapper: connect with backoff, publish, receive commands."""

from __future__ import annotations

import logging
import ssl
from typing import Callable, Optional

import paho.mqtt.client as mqtt

from .adapter import OFF
from .config import Config

logger = logging.getLogger(__name__)


class MqttBus:
    """Bus client used by the supervisor.

    paho's network thread reconnects on its own, with a delay doubling from
    one second up to ``mqtt_backoff_max``.
    """

    def __init__(
        self,
        cfg: Config,
        on_connect: Callable[["MqttBus"], None],
        on_disconnect: Callable[[], None],
        on_message: Callable[[str, bytes], None],
        will_topic: Optional[str] = None,
    ) -> None:
        self.cfg = cfg
        self._on_connect_cb = on_connect
        self._on_disconnect_cb = on_disconnect
        self._on_message_cb = on_message
        self._client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=f"deskbridge-{cfg.id}",
        )
        if cfg.mqtt.username:
            self._client.username_pw_set(cfg.mqtt.username, cfg.mqtt.password or "")
        if cfg.mqtt.transport == "tls":
            self._client.tls_set(cert_reqs=ssl.CERT_REQUIRED)
        if will_topic:
            self._client.will_set(will_topic, OFF, qos=1, retain=True)
        self._client.reconnect_delay_set(min_delay=1, max_delay=int(cfg.mqtt_backoff_max))
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message

    def start(self) -> None:
        host, port = self.cfg.mqtt.host, self.cfg.mqtt.effective_port
        logger.info("connecting to MQTT broker %s:%d", host, port)
        self._client.connect_async(host, port, keepalive=self.cfg.mqtt.keepalive)
        self._client.loop_start()

    def stop(self) -> None:
        self._client.disconnect()
        self._client.loop_stop()

    def publish(self, topic: str, payload: str, retain: bool = True) -> None:
        info = self._client.publish(topic, payload, qos=1, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.warning("MQTT publish failed: topic=%s rc=%s", topic, info.rc)

    def subscribe(self, topics: list[str]) -> None:
        if topics:
            self._client.subscribe([(topic, 0) for topic in topics])

    def _on_connect(self, client, userdata, flags, reason_code, properties) -> None:
        if reason_code.is_failure:
            logger.error("MQTT connection refused: %s", reason_code)
            return
        logger.info("MQTT connected")
        self._on_connect_cb(self)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties) -> None:
        logger.warning("MQTT disconnected: %s", reason_code)
        self._on_disconnect_cb()

    def _on_message(self, client, userdata, msg) -> None:
        try:
            self._on_message_cb(msg.topic, bytes(msg.payload))
        except Exception:
            logger.exception("failed to handle message on %s", msg.topic)
