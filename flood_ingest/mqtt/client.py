"""Cliente MQTT (paho) con reconexión automática."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

import paho.mqtt.client as mqtt

from ..monitoring.metrics import MQTT_CONNECTED

logger = logging.getLogger(__name__)

MessageCallback = Callable[[str, bytes], None]
ConnectionListener = Callable[[], None]


class MQTTClient:
    """Cliente MQTT ligero.

    Responsabilidades:
    - Conexión/desconexión al broker (con backoff de reconexión de paho)
    - Suscripción a los topics en cada (re)conexión
    - Delegación de mensajes al handler
    - Avisar a los listeners de conexión/desconexión
    """

    def __init__(
        self,
        broker_host: str = "localhost",
        broker_port: int = 1883,
        username: Optional[str] = None,
        password: Optional[str] = None,
        client_id: str = "flood-ingest",
        subscriptions: Optional[list[str]] = None,
        qos: int = 1,
        keepalive: int = 60,
        reconnect_min_delay: int = 1,
        reconnect_max_delay: int = 60,
    ):
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.username = username
        self.password = password
        self.client_id = f"{client_id}-{int(time.time())}"
        self.subscriptions = list(subscriptions or [])
        self.qos = qos
        self.keepalive = keepalive
        self._reconnect_delays = (reconnect_min_delay, reconnect_max_delay)

        self._client: Optional[mqtt.Client] = None
        self._connected = threading.Event()
        self._message_handler: Optional[MessageCallback] = None
        self._on_connect_listeners: list[ConnectionListener] = []
        self._on_disconnect_listeners: list[ConnectionListener] = []

    def set_message_handler(self, handler: MessageCallback) -> None:
        """Registra el callback (topic, payload) para cada mensaje."""
        self._message_handler = handler

    def add_connect_listener(self, listener: ConnectionListener) -> None:
        """Se invoca en cada conexión exitosa, incluidas las reconexiones."""
        self._on_connect_listeners.append(listener)

    def add_disconnect_listener(self, listener: ConnectionListener) -> None:
        """Se invoca al perder una conexión establecida."""
        self._on_disconnect_listeners.append(listener)

    def connect(self, wait_seconds: float = 5.0) -> bool:
        """Arranca el loop de red. Devuelve si conectó dentro de ``wait_seconds``.

        Si el broker no responde, paho sigue reintentando en background.
        """
        try:
            self._client = mqtt.Client(
                callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
                client_id=self.client_id,
                protocol=mqtt.MQTTv311,
            )
            self._client.on_connect = self._on_connect
            self._client.on_disconnect = self._on_disconnect
            self._client.on_message = self._on_message
            self._client.reconnect_delay_set(*self._reconnect_delays)

            if self.username and self.password:
                self._client.username_pw_set(self.username, self.password)

            logger.info("[MQTT] Connecting to %s:%d", self.broker_host, self.broker_port)
            self._client.connect_async(self.broker_host, self.broker_port, keepalive=self.keepalive)
            self._client.loop_start()
        except Exception as e:
            logger.exception("[MQTT] Connection failed: %s", e)
            return False

        if self._connected.wait(wait_seconds):
            return True
        logger.warning("[MQTT] Not connected after %.1fs, retrying in background", wait_seconds)
        return False

    def disconnect(self) -> None:
        """Desconecta del broker y detiene el loop de red."""
        if self._client:
            try:
                self._client.disconnect()
                self._client.loop_stop()
            except Exception as e:
                logger.warning("[MQTT] Disconnect error: %s", e)
        if self._connected.is_set():
            self._connected.clear()
            self._notify(self._on_disconnect_listeners)
        MQTT_CONNECTED.set(0)

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.error("[MQTT] Connection refused: %s", reason_code)
            return

        self._connected.set()
        MQTT_CONNECTED.set(1)
        logger.info("[MQTT] Connected to broker")
        for topic in self.subscriptions:
            client.subscribe(topic, qos=self.qos)
            logger.info("[MQTT] Subscribed to %s", topic)
        self._notify(self._on_connect_listeners)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        was_connected = self._connected.is_set()
        self._connected.clear()
        MQTT_CONNECTED.set(0)
        logger.warning("[MQTT] Disconnected (%s)", reason_code)
        if was_connected:
            self._notify(self._on_disconnect_listeners)

    def _on_message(self, client, userdata, msg):
        if self._message_handler:
            self._message_handler(msg.topic, msg.payload)

    @staticmethod
    def _notify(listeners: list[ConnectionListener]) -> None:
        for listener in listeners:
            try:
                listener()
            except Exception as e:
                logger.exception("[MQTT] Connection listener failed: %s", e)

    @property
    def is_connected(self) -> bool:
        """Estado actual de la conexión con el broker."""
        return self._connected.is_set()
