# iotagent_ul/bindings/base.py

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar


class BindingEvent(str, Enum):
    """Agent-level events fanned out to transport bindings."""

    DEVICE_PROVISIONING = "device_provisioning"
    CONFIGURATION = "configuration"
    COMMAND = "command"
    UPDATE = "update"

    @property
    def handler_name(self) -> str:
        return f"{self.value}_handler"


@dataclass(frozen=True, slots=True)
class BindingContext:
    """
    Shared runtime passed to every binding at construction.

    Rules:
    - backend is the context-management backend bindings push decoded data to.
    - config is the agent configuration snapshot for this run.
    """

    backend: Any
    config: Any

    def logger(self, binding_id: str) -> logging.Logger:
        """
        Binding-scoped logger name.
        """
        return logging.getLogger(f"iotagent_ul.binding.{binding_id}")


class TransportBinding(ABC):
    """
    Base class for all transport bindings.

    Bindings are instantiated and owned by the BindingRegistry. A binding
    declares the events it handles in ``handles``; the registry only invokes
    handlers for declared events and never looks methods up by name.

    Handler signatures:
        device_provisioning_handler(device)
        configuration_handler(configuration)
        command_handler(entity_id, entity_type, attributes)
        update_handler(entity_id, entity_type, attributes)
    """

    handles: ClassVar[frozenset[BindingEvent]] = frozenset()

    def __init__(self, context: BindingContext) -> None:
        self.context = context

    @property
    @abstractmethod
    def binding_id(self) -> str:
        raise NotImplementedError

    @abstractmethod
    def start(self, config: Any) -> None:
        """Acquire transport resources. Raise on failure."""
        raise NotImplementedError

    @abstractmethod
    def stop(self) -> None:
        """Release all transport resources."""
        raise NotImplementedError

    def handles_event(self, event: BindingEvent) -> bool:
        return event in self.handles

    def handler_for(self, event: BindingEvent):
        if not self.handles_event(event):
            raise LookupError(f"{self.binding_id} does not handle {event.value}")
        return getattr(self, event.handler_name)
