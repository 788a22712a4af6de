from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from iotagent_ul.agent import AgentState, IoTAgent
from iotagent_ul.bindings.base import BindingEvent
from iotagent_ul.errors import AgentStateError, BackendError, BindingError


@pytest.fixture
def backend():
    return MagicMock(name="backend")


@pytest.fixture
def registry():
    reg = MagicMock(name="registry")
    reg.__len__.return_value = 1
    return reg


@pytest.fixture
def agent(backend, registry):
    return IoTAgent(backend, registry_factory=lambda ctx: registry)


def test_start_activates_backend_registers_handlers_and_starts_bindings(agent, backend, registry, agent_config):
    agent.start(agent_config)

    backend.activate.assert_called_once_with(agent_config.iota)
    backend.set_provisioning_handler.assert_called_once_with(agent.device_provisioning_handler)
    backend.set_configuration_handler.assert_called_once_with(agent.configuration_handler)
    backend.set_command_handler.assert_called_once_with(agent.command_handler)
    backend.set_data_update_handler.assert_called_once_with(agent.update_handler)
    backend.add_update_middleware.assert_called_once_with(backend.attribute_alias_update)
    registry.start_all.assert_called_once_with(agent_config)
    assert agent.state is AgentState.RUNNING
    assert agent.config is agent_config


def test_start_order_is_activate_then_handlers_then_bindings(backend, registry, agent_config):
    order = []
    backend.activate.side_effect = lambda cfg: order.append("activate")
    backend.add_update_middleware.side_effect = lambda fn: order.append("middleware")
    registry.start_all.side_effect = lambda cfg: order.append("start_all")

    IoTAgent(backend, registry_factory=lambda ctx: registry).start(agent_config)

    assert order == ["activate", "middleware", "start_all"]


def test_backend_failure_aborts_before_any_binding(backend, agent_config):
    factory = MagicMock()
    backend.activate.side_effect = BackendError("no context broker")
    agent = IoTAgent(backend, registry_factory=factory)

    with pytest.raises(BackendError, match="no context broker"):
        agent.start(agent_config)

    factory.assert_not_called()
    backend.set_provisioning_handler.assert_not_called()
    assert agent.state is AgentState.STOPPED


def test_backend_activation_error_surfaces_unchanged(backend, agent_config):
    error = ConnectionRefusedError("refused")
    backend.activate.side_effect = error
    agent = IoTAgent(backend, registry_factory=MagicMock())

    with pytest.raises(ConnectionRefusedError) as exc:
        agent.start(agent_config)

    assert exc.value is error
    assert agent.state is AgentState.STOPPED


def test_binding_start_failure_surfaces_and_leaves_agent_starting(agent, registry, agent_config):
    registry.start_all.side_effect = BindingError("mqtt", "broker unreachable")

    with pytest.raises(BindingError):
        agent.start(agent_config)

    assert agent.state is AgentState.STARTING


def test_stop_after_partial_start_converges(agent, backend, registry, agent_config):
    registry.start_all.side_effect = BindingError("mqtt", "broker unreachable")
    with pytest.raises(BindingError):
        agent.start(agent_config)

    agent.stop()

    registry.stop_all.assert_called_once()
    backend.deactivate.assert_called_once()
    assert agent.state is AgentState.STOPPED


def test_start_twice_raises(agent, agent_config):
    agent.start(agent_config)
    with pytest.raises(AgentStateError):
        agent.start(agent_config)


def test_stop_order_is_bindings_middlewares_backend(agent, backend, registry, agent_config):
    agent.start(agent_config)
    order = []
    registry.stop_all.side_effect = lambda: order.append("stop_all")
    backend.reset_middlewares.side_effect = lambda: order.append("reset_middlewares")
    backend.deactivate.side_effect = lambda: order.append("deactivate")

    agent.stop()

    assert order == ["stop_all", "reset_middlewares", "deactivate"]
    assert agent.state is AgentState.STOPPED
    assert agent.registry is None


def test_stop_is_best_effort(agent, backend, registry, agent_config):
    agent.start(agent_config)
    registry.stop_all.side_effect = BindingError("mqtt", "stuck")
    backend.reset_middlewares.side_effect = RuntimeError("boom")
    backend.deactivate.side_effect = BackendError("gone")

    agent.stop()

    backend.reset_middlewares.assert_called_once()
    backend.deactivate.assert_called_once()
    assert agent.state is AgentState.STOPPED


def test_repeated_stop_never_raises(agent, backend, agent_config):
    agent.stop()
    agent.start(agent_config)
    agent.stop()
    agent.stop()
    assert agent.state is AgentState.STOPPED
    backend.deactivate.assert_called_once()


def test_agent_can_restart_after_stop(agent, registry, agent_config):
    agent.start(agent_config)
    agent.stop()
    agent.start(agent_config)
    assert agent.state is AgentState.RUNNING
    assert registry.start_all.call_count == 2


# -------------------------
# Callbacks
# -------------------------
def test_provisioning_callback_broadcasts(agent, registry, agent_config):
    agent.start(agent_config)
    device = object()
    agent.device_provisioning_handler(device)
    registry.broadcast.assert_called_once_with(BindingEvent.DEVICE_PROVISIONING, device)


def test_configuration_callback_broadcasts(agent, registry, agent_config):
    agent.start(agent_config)
    agent.configuration_handler({"apikey": "k"})
    registry.broadcast.assert_called_once_with(BindingEvent.CONFIGURATION, {"apikey": "k"})


def test_command_callback_broadcasts_and_propagates_failure(agent, registry, agent_config):
    agent.start(agent_config)
    registry.broadcast.side_effect = BindingError("mqtt", "publish failed")
    attrs = [{"name": "ping", "type": "command", "value": ""}]

    with pytest.raises(BindingError):
        agent.command_handler("TheRoom", "Room", attrs)

    registry.broadcast.assert_called_once_with(BindingEvent.COMMAND, "TheRoom", "Room", attrs)


def test_update_callback_is_a_noop(agent, registry, agent_config):
    agent.start(agent_config)
    assert agent.update_handler("TheRoom", "Room", []) is None
    registry.broadcast.assert_not_called()


def test_callbacks_before_start_do_nothing(agent, registry):
    agent.command_handler("TheRoom", "Room", [])
    registry.broadcast.assert_not_called()
