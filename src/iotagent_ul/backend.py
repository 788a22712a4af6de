"""
Context-management backend seam.

The agent core drives the backend through the Backend protocol below; any
object exposing it can be plugged in. LocalBackend is an in-process
implementation holding provisioned devices and last known entity state in
memory. It is what `iotagent-ul run` uses when no external backend is wired.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Optional, Protocol

from iotagent_ul.errors import BackendError

logger = logging.getLogger(__name__)

Attribute = dict[str, Any]  # {"name": ..., "type": ..., "value": ...}
UpdateMiddleware = Callable[["Entity", Optional[dict[str, Any]]], "Entity"]


@dataclass(frozen=True, slots=True)
class Device:
    """
    A provisioned device.

    attributes maps wire keys (object_id) to entity attribute names, e.g.
    [{"object_id": "t", "name": "temperature", "type": "float"}].
    """

    device_id: str
    entity_name: str
    entity_type: str = "Thing"
    api_key: Optional[str] = None
    protocol: str = "UL20"
    attributes: tuple[dict[str, Any], ...] = ()
    commands: tuple[dict[str, Any], ...] = ()

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Device":
        device_id = data.get("device_id")
        if not isinstance(device_id, str) or not device_id:
            raise BackendError("device_id must be a non-empty string")
        return Device(
            device_id=device_id,
            entity_name=data.get("entity_name") or f"{data.get('entity_type', 'Thing')}:{device_id}",
            entity_type=data.get("entity_type", "Thing"),
            api_key=data.get("api_key"),
            protocol=data.get("protocol", "UL20"),
            attributes=tuple(data.get("attributes", ())),
            commands=tuple(data.get("commands", ())),
        )

    def type_information(self) -> dict[str, Any]:
        return {"attributes": list(self.attributes), "commands": list(self.commands)}


@dataclass(frozen=True, slots=True)
class Entity:
    """An entity update travelling through the update middleware chain."""

    name: str
    type: str
    attributes: tuple[Attribute, ...] = field(default_factory=tuple)


class Backend(Protocol):
    """
    Interface the agent core needs from the context-management backend.
    Keep it small to prevent tight coupling.
    """

    def activate(self, iota_config: dict[str, Any]) -> None: ...

    def deactivate(self) -> None: ...

    def set_provisioning_handler(self, fn: Callable[..., None]) -> None: ...

    def set_configuration_handler(self, fn: Callable[..., None]) -> None: ...

    def set_command_handler(self, fn: Callable[..., None]) -> None: ...

    def set_data_update_handler(self, fn: Callable[..., None]) -> None: ...

    def add_update_middleware(self, fn: UpdateMiddleware) -> None: ...

    def reset_middlewares(self) -> None: ...

    def attribute_alias_update(self, entity: Entity, type_information: Optional[dict[str, Any]]) -> Entity: ...

    # Called by bindings from their transport threads.
    def update(self, device_id: str, attributes: list[Attribute]) -> Entity: ...

    def update_command(self, device_id: str, command: str, result: Optional[str]) -> None: ...

    def get_device(self, device_id: str) -> Optional[Device]: ...

    def get_device_by_name(self, entity_name: str) -> Optional[Device]: ...


def attribute_alias_update(entity: Entity, type_information: Optional[dict[str, Any]]) -> Entity:
    """
    Update middleware renaming wire keys (object_id) to the attribute names
    declared for the device. Attributes without an alias pass through.
    """
    if not type_information:
        return entity

    aliases = {
        a["object_id"]: a
        for a in type_information.get("attributes", [])
        if isinstance(a, dict) and a.get("object_id")
    }
    if not aliases:
        return entity

    renamed = []
    for attr in entity.attributes:
        alias = aliases.get(attr.get("name"))
        if alias is None:
            renamed.append(attr)
            continue
        renamed.append({
            **attr,
            "name": alias.get("name", attr.get("name")),
            "type": alias.get("type", attr.get("type")),
        })
    return replace(entity, attributes=tuple(renamed))


class LocalBackend:
    """
    In-memory backend. Not persistent: everything is lost on deactivate.
    Thread-safe; bindings call update() from their transport threads.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._active = False
        self._iota_config: dict[str, Any] = {}
        self._devices: dict[str, Device] = {}
        self._entities: dict[str, dict[str, Attribute]] = {}
        self._middlewares: list[UpdateMiddleware] = []

        self._provisioning_handler: Optional[Callable[..., None]] = None
        self._configuration_handler: Optional[Callable[..., None]] = None
        self._command_handler: Optional[Callable[..., None]] = None
        self._data_update_handler: Optional[Callable[..., None]] = None

    # -------------------------
    # Lifecycle
    # -------------------------
    def activate(self, iota_config: dict[str, Any]) -> None:
        with self._lock:
            if self._active:
                raise BackendError("backend already active")
            self._iota_config = dict(iota_config or {})
            self._active = True
        logger.info("Backend activated (service=%s)", self._iota_config.get("service", "-"))

    def deactivate(self) -> None:
        with self._lock:
            self._active = False
            self._devices.clear()
            self._entities.clear()
            self._provisioning_handler = None
            self._configuration_handler = None
            self._command_handler = None
            self._data_update_handler = None
        logger.info("Backend deactivated")

    @property
    def active(self) -> bool:
        return self._active

    @property
    def iota_config(self) -> dict[str, Any]:
        return dict(self._iota_config)

    # -------------------------
    # Handler registration
    # -------------------------
    def set_provisioning_handler(self, fn: Callable[..., None]) -> None:
        self._provisioning_handler = fn

    def set_configuration_handler(self, fn: Callable[..., None]) -> None:
        self._configuration_handler = fn

    def set_command_handler(self, fn: Callable[..., None]) -> None:
        self._command_handler = fn

    def set_data_update_handler(self, fn: Callable[..., None]) -> None:
        self._data_update_handler = fn

    def add_update_middleware(self, fn: UpdateMiddleware) -> None:
        with self._lock:
            self._middlewares.append(fn)

    def reset_middlewares(self) -> None:
        with self._lock:
            self._middlewares = []

    attribute_alias_update = staticmethod(attribute_alias_update)

    def _require_active(self) -> None:
        if not self._active:
            raise BackendError("backend is not active")

    # -------------------------
    # Southbound: provisioning and commands
    # -------------------------
    def provision_device(self, data: dict[str, Any]) -> Device:
        """
        Register a device. The provisioning handler runs first; if it raises,
        the device is not stored.
        """
        self._require_active()
        data = {"entity_type": self._iota_config.get("default_type", "Thing"), **data}
        device = Device.from_dict(data)
        if device.api_key is None:
            device = replace(device, api_key=self._iota_config.get("default_api_key"))

        if self._provisioning_handler is not None:
            self._provisioning_handler(device)

        with self._lock:
            self._devices[device.device_id] = device
        logger.info("Provisioned device %s as %s", device.device_id, device.entity_name)
        return device

    def configure(self, configuration: dict[str, Any]) -> None:
        self._require_active()
        if self._configuration_handler is not None:
            self._configuration_handler(configuration)

    def send_command(self, device_id: str, command: str, value: Any = "") -> None:
        """Ask the bindings to deliver a command to the given device."""
        self._require_active()
        device = self.get_device(device_id)
        if device is None:
            raise BackendError(f"unknown device: {device_id}")
        attributes = [{"name": command, "type": "command", "value": value}]
        with self._lock:
            self._store(device.entity_name, [
                {"name": f"{command}_status", "type": "commandStatus", "value": "PENDING"},
            ])
        if self._command_handler is not None:
            self._command_handler(device.entity_name, device.entity_type, attributes)

    def data_update(self, entity_name: str, entity_type: str, attributes: list[Attribute]) -> None:
        """Northbound update of lazy attributes; routed to the data update handler."""
        self._require_active()
        if self._data_update_handler is not None:
            self._data_update_handler(entity_name, entity_type, attributes)

    # -------------------------
    # Northbound: updates from bindings
    # -------------------------
    def get_device(self, device_id: str) -> Optional[Device]:
        with self._lock:
            return self._devices.get(device_id)

    def get_device_by_name(self, entity_name: str) -> Optional[Device]:
        with self._lock:
            for device in self._devices.values():
                if device.entity_name == entity_name:
                    return device
        return None

    def get_entity(self, entity_name: str) -> dict[str, Attribute]:
        with self._lock:
            return {k: dict(v) for k, v in self._entities.get(entity_name, {}).items()}

    def _store(self, entity_name: str, attributes: list[Attribute]) -> None:
        current = self._entities.setdefault(entity_name, {})
        for attr in attributes:
            current[attr["name"]] = dict(attr)

    def update(self, device_id: str, attributes: list[Attribute]) -> Entity:
        """
        Apply a measure update from a device. Runs the update middlewares in
        registration order, then stores the resulting attributes.
        """
        self._require_active()
        device = self.get_device(device_id)
        if device is None:
            raise BackendError(f"unknown device: {device_id}")

        entity = Entity(name=device.entity_name, type=device.entity_type, attributes=tuple(attributes))
        with self._lock:
            middlewares = list(self._middlewares)
        type_information = device.type_information()
        for middleware in middlewares:
            entity = middleware(entity, type_information)

        with self._lock:
            self._store(entity.name, list(entity.attributes))
        logger.debug("Updated %s: %s", entity.name, [a["name"] for a in entity.attributes])
        return entity

    def update_command(self, device_id: str, command: str, result: Optional[str]) -> None:
        """Record a finished command: <command>_status=OK, <command>_info=result."""
        self._require_active()
        device = self.get_device(device_id)
        if device is None:
            raise BackendError(f"unknown device: {device_id}")
        with self._lock:
            self._store(device.entity_name, [
                {"name": f"{command}_status", "type": "commandStatus", "value": "OK"},
                {"name": f"{command}_info", "type": "commandResult", "value": result},
            ])
        logger.info("Command %s on %s finished: %s", command, device_id, result)
