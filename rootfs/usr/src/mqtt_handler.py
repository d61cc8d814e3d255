"""
MQTT Handler

Manages the MQTT connection, publishing of bridge state and delivery of
inbound command messages.
"""

from collections.abc import Callable
from dataclasses import dataclass
import logging
import ssl
import threading
import time
from typing import TypeAlias

import paho.mqtt.client as mqtt

from constants import NO_ERROR, ConnectionStatus, TopicSegment
import discovery
from exceptions import TransportError
import state as state_module
from state import StatusSnapshot

logger = logging.getLogger(__name__)

MessageHandler: TypeAlias = Callable[[str, str], object]


@dataclass
class MqttTaskState:
    """Internal state for the MQTT connection."""

    connected: bool = False
    ever_connected: bool = False
    mqttc: mqtt.Client | None = None
    last_error_msg: str | None = None


class MqttHandler:
    """
    Broker side of the bridge.

    Connects to the broker, keeps the status/last will topic up to date,
    subscribes to the command topics and hands inbound messages to a handler.
    paho's network thread delivers the callbacks.
    """

    def __init__(
        self,
        context: state_module.AppContext,
        subscriptions: list[str],
        stopper: threading.Event,
        on_command: MessageHandler | None = None,
        on_reconnect: Callable[[], None] | None = None,
    ) -> None:
        """
        Initialize the MQTT handler.

        Args:
            context: Application context.
            subscriptions: Topic filters to subscribe to on every (re)connect.
            stopper: Event to signal when connecting should be abandoned.
            on_command: Called with (topic, payload) for every inbound message.
            on_reconnect: Called when the connection is re-established after a loss.
        """
        self.app_context = context
        self.subscriptions = list(subscriptions)
        self.on_command = on_command
        self.on_reconnect = on_reconnect
        self._stopper = stopper
        self._state = MqttTaskState()

    @property
    def topic_root(self) -> str:
        return self.app_context.config.topic_root

    @property
    def connected(self) -> bool:
        return self._state.connected

    # --------------------------------------------------------------------------------
    # paho callbacks
    # --------------------------------------------------------------------------------

    def on_connect(self, mqttc, obj, flags, reason_code, properties):
        context = self.app_context
        if reason_code == 0:
            reconnect = self._state.ever_connected
            self._state.connected = True
            self._state.ever_connected = True
            logger.info("MQTT successfully connected to broker")
            context.set_error(None, category="mqtt", notify=False)
            self._state.mqttc.publish(f"{self.topic_root}/{TopicSegment.STATUS}", ConnectionStatus.ONLINE, qos=1, retain=True)
            for topic in self.subscriptions:
                self._state.mqttc.subscribe(topic, qos=1)
            self.publish_error(context.lasterror_share, force=True)
            if reconnect and self.on_reconnect:
                self.on_reconnect()
        else:
            self._state.connected = False
            context.set_error(f"MQTT failed to connect to broker: {mqtt.connack_string(reason_code)}", category="mqtt")

    def on_disconnect(self, mqttc, obj, flags, reason_code, properties):
        context = self.app_context
        self._state.connected = False
        if reason_code != 0:
            context.set_error(f"MQTT disconnected unexpectedly: {reason_code}", category="mqtt", notify=False)

    def on_message(self, mqttc, obj, msg):
        logger.debug("MQTT on_message: " + msg.topic + " " + str(msg.qos) + " " + str(msg.payload))
        if not self.on_command:
            return
        try:
            payload = msg.payload.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning(f"Ignoring non UTF-8 payload on '{msg.topic}'")
            return
        try:
            self.on_command(msg.topic, payload)
        except Exception as e:
            self.app_context.set_error(f"Failed to process MQTT command on '{msg.topic}': {e}", category="mqtt")

    # --------------------------------------------------------------------------------
    # Connection
    # --------------------------------------------------------------------------------

    def _setup_mqtt_client(self, use_tls):
        context = self.app_context
        mqtt_config = context.config.mqtt
        self._state.mqttc = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=mqtt_config.client_id or "",
            protocol=mqtt_config.version,
        )
        self._state.mqttc.on_connect = self.on_connect
        self._state.mqttc.on_disconnect = self.on_disconnect
        self._state.mqttc.on_message = self.on_message

        if mqtt_config.username is not None:
            self._state.mqttc.username_pw_set(mqtt_config.username, mqtt_config.password)

        if use_tls:
            ssl_context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
            if mqtt_config.tls_ca == "":
                ssl_context.check_hostname = False
                ssl_context.verify_mode = ssl.CERT_NONE
            else:
                if mqtt_config.tls_check_peer:
                    ssl_context.verify_mode = ssl.CERT_REQUIRED
                    ssl_context.check_hostname = True
                else:
                    ssl_context.check_hostname = False
                    ssl_context.verify_mode = ssl.CERT_NONE

                try:
                    ssl_context.load_verify_locations(cafile=mqtt_config.tls_ca)
                except (OSError, ssl.SSLError) as e:
                    context.set_error(f"Failed to load TLS CA file '{mqtt_config.tls_ca}': {e}", category="mqtt")
                    return False
            self._state.mqttc.tls_set_context(context=ssl_context)

        self._state.mqttc.will_set(f"{self.topic_root}/{TopicSegment.STATUS}", ConnectionStatus.OFFLINE, qos=1, retain=True)
        return True

    def connect(self) -> bool:
        """
        Connect to the broker, retrying until connected or stopped.

        A TLS failure falls back to a plain connection once. After the first
        successful connect paho reconnects on its own.

        Returns:
            bool: True when connected, False when stopped before connecting.
        """
        context = self.app_context
        mqtt_config = context.config.mqtt
        use_tls = mqtt_config.tls
        fallback_happened = False

        while not self._stopper.is_set():
            if not self._state.mqttc and not self._setup_mqtt_client(use_tls):
                time.sleep(mqtt_config.connect_retry)
                continue

            port = int(mqtt_config.tls_port if use_tls else mqtt_config.port)
            logger.debug(f"Connecting to MQTT Broker '{mqtt_config.host}:{port}' (TLS: {use_tls})")

            try:
                self._state.mqttc.connect(mqtt_config.host, port, 60)
                self._state.mqttc.loop_start()

                timeout = time.time() + 10
                while time.time() < timeout and not self._state.connected and not self._stopper.is_set():
                    time.sleep(0.5)

                if self._state.connected:
                    return True
                raise ConnectionError("Timeout waiting for MQTT CONNACK")

            except (OSError, ssl.SSLError, ConnectionError) as e:
                if self._state.mqttc:
                    self._state.mqttc.loop_stop()
                    self._state.mqttc = None
                if use_tls and not fallback_happened:
                    context.set_error(f"MQTT TLS failed: {e}. Falling back to plain.", category="mqtt", notify=False)
                    use_tls = False
                    fallback_happened = True
                else:
                    context.set_error(f"MQTT connection failed: {e}", category="mqtt", notify=False)
                    time.sleep(mqtt_config.connect_retry)
        return False

    def disconnect(self) -> None:
        """Publish the offline status and close the connection."""
        if not self._state.mqttc:
            return
        if self._state.connected:
            info = self._state.mqttc.publish(
                f"{self.topic_root}/{TopicSegment.STATUS}", ConnectionStatus.OFFLINE, qos=1, retain=True
            )
            try:
                info.wait_for_publish(timeout=2)
            except (RuntimeError, ValueError) as e:
                logger.debug(f"Offline status not delivered: {e}")
        self._state.mqttc.disconnect()
        self._state.mqttc.loop_stop()
        self._state.mqttc = None
        self._state.connected = False

    # --------------------------------------------------------------------------------
    # Publishing
    # --------------------------------------------------------------------------------

    def publish(self, topic: str, payload: str) -> None:
        """
        Publish a retained message with at-least-once delivery.

        Raises:
            TransportError: If the message could not be handed to the broker connection.
        """
        if not self._state.mqttc:
            raise TransportError(f"MQTT client not connected, cannot publish '{topic}'")
        info = self._state.mqttc.publish(topic, payload, qos=1, retain=True)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(f"MQTT publish to '{topic}' failed: {mqtt.error_string(info.rc)}")

    def publish_error(self, error_msg: str | None, force: bool = False) -> None:
        """Publish the combined error state, only on change unless forced."""
        error_to_publish = error_msg if error_msg else NO_ERROR
        if not force and self._state.last_error_msg == error_to_publish:
            return
        try:
            self.publish(f"{self.topic_root}/{TopicSegment.ERROR}", error_to_publish)
            self._state.last_error_msg = error_to_publish
        except TransportError as e:
            logger.error(f"MQTT Publish Failed for error: {e}")

    def send_discovery(self, snapshot: StatusSnapshot, previous: StatusSnapshot | None = None) -> None:
        """Announce entities to Home Assistant and clear those that disappeared."""
        if not self._state.mqttc:
            return
        try:
            if previous is not None:
                discovery.cleanup_removed(self._state.mqttc, previous, snapshot)
            discovery.send_discovery(self._state.mqttc, snapshot)
        except Exception as e:
            logger.error(f"Failed to send MQTT discovery: {e}")
