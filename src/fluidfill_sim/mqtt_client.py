"""MQTT bridge: republishes changed machine values and accepts method calls."""

import json
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from queue import Empty, Queue
from typing import Any, Callable, Dict, Iterable, List, Optional

import paho.mqtt.client as mqtt

from .config import MQTTConfig, TopicConfig

logger = logging.getLogger(__name__)


@dataclass
class Message:
    """MQTT message to be published."""

    topic: str
    payload: Optional[Dict[str, Any]]
    retain: bool = False
    qos: int = 1


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class MQTTClient:
    """MQTT client with buffered publishing and remote method dispatch.

    Values are published to ``{base_topic}/{path}`` only when they changed
    since the last snapshot. Method calls arrive on
    ``{base_topic}/Methods/{name}`` with a JSON list of arguments (or
    ``{"args": [...]}``) and are answered on ``.../Methods/{name}/Result``.
    """

    # Control topics - ROOT level (outside the machine path)
    CONTROL_ROOT = "fluidfill-sim"
    STATUS_TOPIC = f"{CONTROL_ROOT}/status"
    METHODS_SEGMENT = "Methods"

    def __init__(
        self,
        mqtt_config: MQTTConfig,
        topic_config: TopicConfig,
        on_method_call: Optional[Callable[..., Any]] = None,
    ):
        self.mqtt_config = mqtt_config
        self.topic_config = topic_config
        self.on_method_call = on_method_call

        self._client: Optional[mqtt.Client] = None
        self._connected = False
        self._publish_queue: Queue = Queue()
        self._publish_thread: Optional[threading.Thread] = None
        self._running = False
        self._dry_run = False
        self._last_values: Dict[str, Any] = {}
        self._values_lock = threading.Lock()

        # Stats
        self._messages_published = 0
        self._messages_dropped = 0
        self._methods_called = 0

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def base_topic(self) -> str:
        return self.topic_config.base_topic

    @property
    def methods_topic(self) -> str:
        return f"{self.base_topic}/{self.METHODS_SEGMENT}"

    def connect(self, dry_run: bool = False) -> bool:
        """Connect to the MQTT broker."""
        self._dry_run = dry_run

        if dry_run:
            logger.info("Dry run mode - not connecting to MQTT broker")
            self._connected = True
            self._start_publish_thread()
            return True

        try:
            self._client = mqtt.Client(
                client_id=self.mqtt_config.client_id,
                callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            )

            if self.mqtt_config.username:
                self._client.username_pw_set(
                    self.mqtt_config.username, self.mqtt_config.password
                )

            self._client.on_connect = self._on_connect
            self._client.on_disconnect = self._on_disconnect
            self._client.on_message = self._on_message

            logger.info(
                f"Connecting to MQTT broker {self.mqtt_config.broker}:{self.mqtt_config.port}"
            )
            self._client.connect(self.mqtt_config.broker, self.mqtt_config.port)
            self._client.loop_start()

            # Wait for connection
            timeout = 10
            start = time.time()
            while not self._connected and (time.time() - start) < timeout:
                time.sleep(0.1)

            if self._connected:
                self._start_publish_thread()
                self._publish_status("online")

            return self._connected

        except Exception as e:
            logger.error(f"Failed to connect to MQTT broker: {e}")
            return False

    def disconnect(self) -> None:
        """Disconnect from the MQTT broker."""
        if self._connected and not self._dry_run:
            self._publish_status("offline")
            # Give the publish thread a moment to drain
            deadline = time.time() + 2
            while not self._publish_queue.empty() and time.time() < deadline:
                time.sleep(0.05)

        self._running = False

        if self._publish_thread:
            self._publish_thread.join(timeout=2)

        if self._client and not self._dry_run:
            self._client.loop_stop()
            self._client.disconnect()

        self._connected = False
        logger.info("Disconnected from MQTT broker")

    # =========================================================================
    # Publishing
    # =========================================================================

    def publish(self, path: str, value: Any, retain: Optional[bool] = None) -> None:
        """Queue one machine value for publishing below the base topic."""
        if retain is None:
            retain = self.topic_config.retain
        msg = Message(
            topic=f"{self.base_topic}/{path}",
            payload={"value": value, "timestamp": _timestamp()},
            retain=retain,
            qos=self.mqtt_config.qos,
        )
        self._publish_queue.put(msg)

    def publish_raw(self, topic: str, payload: Optional[Dict[str, Any]], retain: bool = False) -> None:
        """Publish to a raw topic (no base path)."""
        msg = Message(topic=topic, payload=payload, retain=retain, qos=self.mqtt_config.qos)
        self._publish_queue.put(msg)

    def publish_snapshot(self, snapshot: Dict[str, Any]) -> int:
        """Publish every value that changed since the previous snapshot."""
        with self._values_lock:
            changed = {
                path: value
                for path, value in snapshot.items()
                if path not in self._last_values or self._last_values[path] != value
            }
            self._last_values.update(changed)

        for path, value in changed.items():
            self.publish(path, value)
        return len(changed)

    def clear_retained_topics(self, paths: Iterable[str]) -> int:
        """Wipe retained values of the given paths with empty retained messages."""
        count = 0
        for path in paths:
            self.publish_raw(f"{self.base_topic}/{path}", None, retain=True)
            count += 1
        with self._values_lock:
            self._last_values.clear()
        logger.info(f"Clearing {count} retained topics")
        return count

    def _start_publish_thread(self) -> None:
        """Start the background publish thread."""
        self._running = True
        self._publish_thread = threading.Thread(target=self._publish_loop, daemon=True)
        self._publish_thread.start()

    def _publish_loop(self) -> None:
        """Background thread that publishes queued messages."""
        while self._running:
            try:
                msg = self._publish_queue.get(timeout=0.1)
                self._do_publish(msg)
            except Empty:
                continue

    def _do_publish(self, msg: Message) -> None:
        """Actually publish a message."""
        payload_str = json.dumps(msg.payload) if msg.payload is not None else None

        if self._dry_run:
            logger.debug(f"[DRY RUN] {msg.topic}: {(payload_str or '')[:100]}")
            self._messages_published += 1
            return

        if self._client and self._connected:
            try:
                result = self._client.publish(
                    msg.topic, payload_str, qos=msg.qos, retain=msg.retain
                )
                if result.rc == mqtt.MQTT_ERR_SUCCESS:
                    self._messages_published += 1
                else:
                    self._messages_dropped += 1
                    logger.warning(f"Failed to publish to {msg.topic}: {result.rc}")
            except Exception as e:
                self._messages_dropped += 1
                logger.error(f"Error publishing to {msg.topic}: {e}")

    def _publish_status(self, state: str) -> None:
        """Publish bridge status to the root-level topic."""
        status = {
            "state": state,
            "base_topic": self.base_topic,
            "messages_published": self._messages_published,
            "messages_dropped": self._messages_dropped,
            "methods_called": self._methods_called,
            "timestamp_ms": int(time.time() * 1000),
        }
        self.publish_raw(self.STATUS_TOPIC, status, retain=True)

    # =========================================================================
    # Callbacks
    # =========================================================================

    def _on_connect(self, client, userdata, flags, rc, properties=None) -> None:
        """Handle connection callback."""
        if rc == 0:
            self._connected = True
            logger.info("Connected to MQTT broker")
            client.subscribe(f"{self.methods_topic}/+", qos=1)
            logger.info(f"Subscribed to method topics: {self.methods_topic}/+")
        else:
            logger.error(f"Connection failed with code {rc}")

    def _on_disconnect(self, client, userdata, flags, rc, properties=None) -> None:
        """Handle disconnection callback."""
        self._connected = False
        if rc != 0:
            logger.warning(f"Unexpected disconnection (rc={rc})")

    @staticmethod
    def parse_arguments(raw: bytes) -> List[Any]:
        """Decode a method payload into a positional argument list."""
        text = raw.decode().strip() if raw else ""
        if not text:
            return []
        data = json.loads(text)
        if isinstance(data, dict):
            data = data.get("args", [])
        if not isinstance(data, list):
            data = [data]
        return data

    def _on_message(self, client, userdata, msg) -> None:
        """Handle incoming method calls."""
        prefix = f"{self.methods_topic}/"
        if not msg.topic.startswith(prefix):
            return

        name = msg.topic[len(prefix):]
        try:
            args = self.parse_arguments(msg.payload)
        except (ValueError, UnicodeDecodeError) as e:
            logger.error(f"Invalid arguments for method {name}: {e}")
            self._publish_result(name, {"outcome": "failed", "output": None, "error": str(e)})
            return

        if not self.on_method_call:
            logger.warning(f"Method call {name} ignored, no handler attached")
            return

        self._methods_called += 1
        result = self.on_method_call(name, *args)
        self._publish_result(name, result.to_dict())

    def _publish_result(self, name: str, payload: Dict[str, Any]) -> None:
        payload["timestamp"] = _timestamp()
        self.publish_raw(f"{self.methods_topic}/{name}/Result", payload)
