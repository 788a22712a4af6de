"""
MQTT transport binding for UL2.0.

Subscribes to /<api_key>/+/attrs, /<api_key>/+/attrs/+ and /<api_key>/+/cmdexe,
decodes payloads with the UL2.0 codec and pushes them to the backend.
Publishes commands to /<api_key>/<device_id>/cmd.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Optional

import paho.mqtt.client as mqtt

from iotagent_ul import ul_parser
from iotagent_ul.bindings.base import BindingContext, BindingEvent, TransportBinding
from iotagent_ul.bindings.mqtt_topics import TopicSchema, TopicSchemaError, parse_topic
from iotagent_ul.config import MqttConfig
from iotagent_ul.errors import BackendError, BindingError, ParseError

KEEPALIVE_S = 0  # 0 disables keepalive pings
CONNECT_TIMEOUT_S = 60 * 60


def connect_options(mqtt_cfg: MqttConfig) -> dict[str, Any]:
    """
    Connection options for the broker. Credentials are only included when
    both username and password are configured.
    """
    options: dict[str, Any] = {
        "keepalive": KEEPALIVE_S,
        "connect_timeout": CONNECT_TIMEOUT_S,
    }
    if mqtt_cfg.has_credentials:
        options["username"] = mqtt_cfg.username
        options["password"] = mqtt_cfg.password
    return options


def _to_attributes(group: Mapping[str, str]) -> list[dict[str, Any]]:
    return [{"name": k, "type": "string", "value": v} for k, v in group.items()]


def _command_params(value: Any) -> dict[str, Any]:
    if value is None or value == "":
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    return {"value": value}


class MqttBinding(TransportBinding):
    """UL2.0 over MQTT (paho-mqtt, threaded network loop)."""

    handles = frozenset({BindingEvent.DEVICE_PROVISIONING, BindingEvent.COMMAND})

    def __init__(self, context: BindingContext, *, max_workers: int = 4) -> None:
        super().__init__(context)
        self.log = context.logger(self.binding_id)
        self._max_workers = max_workers
        self._client: Optional[mqtt.Client] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._topics: Optional[TopicSchema] = None

    @property
    def binding_id(self) -> str:
        return "mqtt"

    @property
    def topics(self) -> Optional[TopicSchema]:
        return self._topics

    # -------------------------
    # Lifecycle
    # -------------------------
    def start(self, config: Any) -> None:
        if self._client is not None:
            self.log.warning("start called while already started; ignoring")
            return

        try:
            self._topics = TopicSchema(config.default_api_key)
        except TopicSchemaError as exc:
            raise BindingError(self.binding_id, f"invalid api key: {exc}") from exc

        options = connect_options(config.mqtt)
        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=f"iotagent-ul-{uuid.uuid4().hex[:8]}",
            protocol=mqtt.MQTTv311,
        )
        if "username" in options:
            client.username_pw_set(options["username"], options["password"])
        client.connect_timeout = options["connect_timeout"]
        client.enable_logger(self.log)

        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message

        self._executor = ThreadPoolExecutor(
            max_workers=self._max_workers, thread_name_prefix="mqtt-ul"
        )
        try:
            client.connect(config.mqtt.host, config.mqtt.port, keepalive=options["keepalive"])
        except Exception as exc:
            self._executor.shutdown(wait=False)
            self._executor = None
            raise BindingError(
                self.binding_id,
                f"connect to {config.mqtt.host}:{config.mqtt.port} failed: {exc}",
            ) from exc

        client.loop_start()
        self._client = client
        self.log.info("Started (broker=%s:%s)", config.mqtt.host, config.mqtt.port)

    def stop(self) -> None:
        client, self._client = self._client, None
        executor, self._executor = self._executor, None
        try:
            if client is not None:
                client.loop_stop()
                client.disconnect()
        finally:
            if executor is not None:
                executor.shutdown(wait=False, cancel_futures=True)
        self.log.info("Stopped")

    def is_connected(self) -> bool:
        return bool(self._client and self._client.is_connected())

    # -------------------------
    # paho callbacks
    # -------------------------
    def _on_connect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any = None) -> None:
        if reason_code != 0:
            self.log.error("MQTT connect failed rc=%s", reason_code)
            return
        if self._topics is None:
            self.log.error("Connected without a topic schema; not subscribing")
            return
        for topic in self._topics.subscriptions():
            client.subscribe(topic, qos=1)
            self.log.info("Subscribed: %s", topic)

    def _on_disconnect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any = None) -> None:
        if reason_code != 0:
            self.log.warning("Unexpected disconnect rc=%s", reason_code)

    def _on_message(self, client: mqtt.Client, userdata: Any, msg: mqtt.MQTTMessage) -> None:
        try:
            payload_str = msg.payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            self.log.error("Payload decode failed topic=%s err=%s", msg.topic, exc)
            return
        if self._executor is None:
            return
        self._executor.submit(self.handle_message, msg.topic, payload_str)

    # -------------------------
    # Inbound
    # -------------------------
    def handle_message(self, topic: str, payload: str) -> None:
        """
        Decode one inbound message and push it to the backend. Malformed
        topics and payloads are logged and dropped.
        """
        try:
            parsed = parse_topic(topic)
        except TopicSchemaError as exc:
            self.log.warning("Dropping message: %s", exc)
            return

        backend = self.context.backend
        try:
            if parsed.kind == "cmdexe":
                result = ul_parser.parse_result(payload)
                if result.device_id != parsed.device_id:
                    self.log.warning(
                        "Command result device mismatch: topic=%s payload=%s",
                        parsed.device_id,
                        result.device_id,
                    )
                backend.update_command(parsed.device_id, result.command, result.result)
            elif parsed.attribute is not None:
                backend.update(parsed.device_id, [
                    {"name": parsed.attribute, "type": "string", "value": payload},
                ])
            else:
                for group in ul_parser.parse_measures(payload):
                    backend.update(parsed.device_id, _to_attributes(group))
        except ParseError as exc:
            self.log.warning("Dropping malformed payload on %s: %s", topic, exc)
        except BackendError as exc:
            self.log.error("Backend rejected message on %s: %s", topic, exc)

    # -------------------------
    # Event handlers
    # -------------------------
    def device_provisioning_handler(self, device: Any) -> None:
        api_key = getattr(device, "api_key", None) or (self._topics.api_key if self._topics else None)
        try:
            schema = TopicSchema(api_key)
            measures, results = schema.attrs(device.device_id), schema.cmd_exe(device.device_id)
        except TopicSchemaError as exc:
            raise BindingError(self.binding_id, f"device {device.device_id!r} not addressable: {exc}") from exc
        self.log.info(
            "Device %s provisioned; measures on %s, command results on %s",
            device.device_id,
            measures,
            results,
        )

    def command_handler(self, entity_id: str, entity_type: str, attributes: list[dict[str, Any]]) -> None:
        if self._client is None:
            raise BindingError(self.binding_id, "not started")

        device = self.context.backend.get_device_by_name(entity_id)
        if device is None:
            raise BindingError(self.binding_id, f"no device for entity {entity_type}:{entity_id}")

        schema = TopicSchema(device.api_key) if device.api_key else self._topics
        if schema is None:
            raise BindingError(self.binding_id, f"no api key for device {device.device_id!r}")
        topic = schema.cmd(device.device_id)
        if not self.is_connected():
            self.log.warning("Broker not connected; commands for %s are queued", device.device_id)

        for attr in attributes:
            try:
                payload = ul_parser.encode_command(
                    device.device_id, attr["name"], _command_params(attr.get("value"))
                )
            except ParseError as exc:
                raise BindingError(self.binding_id, f"cannot encode command {attr.get('name')!r}: {exc}") from exc
            info = self._client.publish(topic, payload=payload, qos=1)
            if info.rc != mqtt.MQTT_ERR_SUCCESS:
                raise BindingError(self.binding_id, f"publish to {topic} failed rc={info.rc}")
            self.log.info("Command sent: %s -> %s", topic, payload)
