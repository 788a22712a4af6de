"""
Agent lifecycle: wires the binding registry to the context-management backend.

    STOPPED -> STARTING -> RUNNING -> STOPPING -> STOPPED

start() activates the backend, registers the event callbacks, installs the
alias update middleware and starts every binding. stop() is best effort:
it always ends in STOPPED and never raises.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Any, Callable, Optional

from iotagent_ul.backend import Backend
from iotagent_ul.bindings.base import BindingContext, BindingEvent
from iotagent_ul.bindings.registry import BindingRegistry, build_bindings
from iotagent_ul.errors import AgentStateError

logger = logging.getLogger(__name__)

RegistryFactory = Callable[[BindingContext], BindingRegistry]


class AgentState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


def default_registry_factory(context: BindingContext) -> BindingRegistry:
    return BindingRegistry(build_bindings(context.config.bindings, context))


class IoTAgent:
    """
    One agent run. Holds the lifecycle state, the configuration snapshot and
    the binding registry; all of them change only inside start()/stop().
    """

    def __init__(self, backend: Backend, *, registry_factory: Optional[RegistryFactory] = None) -> None:
        self.backend = backend
        self._registry_factory = registry_factory or default_registry_factory
        self._lock = threading.Lock()
        self._state = AgentState.STOPPED
        self._config: Optional[Any] = None
        self._registry: Optional[BindingRegistry] = None

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def config(self) -> Optional[Any]:
        return self._config

    @property
    def registry(self) -> Optional[BindingRegistry]:
        return self._registry

    def start(self, config: Any) -> None:
        with self._lock:
            if self._state is not AgentState.STOPPED:
                raise AgentStateError(f"cannot start agent in state {self._state.value}")
            self._state = AgentState.STARTING
            self._config = config

            try:
                self.backend.activate(config.iota)
            except Exception:
                self._state = AgentState.STOPPED
                self._config = None
                logger.error("Backend activation failed; agent not started")
                raise

            logger.info("IoT Agent services activated")

            self.backend.set_provisioning_handler(self.device_provisioning_handler)
            self.backend.set_configuration_handler(self.configuration_handler)
            self.backend.set_command_handler(self.command_handler)
            self.backend.set_data_update_handler(self.update_handler)
            self.backend.add_update_middleware(self.backend.attribute_alias_update)

            # A failure below leaves the agent in STARTING; stop() still cleans up.
            self._registry = self._registry_factory(BindingContext(backend=self.backend, config=config))
            self._registry.start_all(config)

            self._state = AgentState.RUNNING
            logger.info("IoT Agent started with %d binding(s)", len(self._registry))

    def stop(self) -> None:
        with self._lock:
            if self._state is AgentState.STOPPED:
                logger.debug("Agent already stopped")
                return

            logger.info("Stopping IoT Agent")
            self._state = AgentState.STOPPING

            if self._registry is not None:
                try:
                    self._registry.stop_all()
                except Exception:
                    logger.exception("Error stopping transport bindings")

            try:
                self.backend.reset_middlewares()
            except Exception:
                logger.exception("Error resetting update middlewares")

            try:
                self.backend.deactivate()
            except Exception:
                logger.exception("Error deactivating backend")

            self._registry = None
            self._config = None
            self._state = AgentState.STOPPED
            logger.info("Agent stopped")

    # -------------------------
    # Backend callbacks
    # -------------------------
    def _broadcast(self, event: BindingEvent, *args: Any) -> None:
        registry = self._registry
        if registry is None:
            logger.warning("Dropping %s event: no active bindings", event.value)
            return
        registry.broadcast(event, *args)

    def device_provisioning_handler(self, device: Any) -> None:
        self._broadcast(BindingEvent.DEVICE_PROVISIONING, device)

    def configuration_handler(self, configuration: Any) -> None:
        self._broadcast(BindingEvent.CONFIGURATION, configuration)

    def command_handler(self, entity_id: str, entity_type: str, attributes: list[dict[str, Any]]) -> None:
        self._broadcast(BindingEvent.COMMAND, entity_id, entity_type, attributes)

    def update_handler(self, entity_id: str, entity_type: str, attributes: list[dict[str, Any]]) -> None:
        # Lazy attributes are not supported yet; accept and do nothing.
        return None
