"""
Error taxonomy for the UL2.0 agent.

- ParseError: malformed UL2.0 wire payload (never retried, payload is dropped).
- BindingError: a transport binding failed to start, stop or handle an event.
- BackendError: the context-management backend failed to activate/deactivate.
"""

from __future__ import annotations

from typing import Optional


class IoTAgentError(RuntimeError):
    """Base class for all agent errors."""


class ParseError(IoTAgentError, ValueError):
    """Raised when a UL2.0 payload does not follow the grammar."""

    def __init__(self, message: str, payload: Optional[str] = None) -> None:
        super().__init__(message)
        self.payload = payload


class BindingError(IoTAgentError):
    """Raised when a transport binding operation fails."""

    def __init__(self, binding_id: str, message: str) -> None:
        super().__init__(f"[{binding_id}] {message}")
        self.binding_id = binding_id


class BackendError(IoTAgentError):
    """Raised when the context-management backend fails."""


class AgentStateError(IoTAgentError):
    """Raised when a lifecycle transition is requested from the wrong state."""
