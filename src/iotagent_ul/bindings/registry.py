"""
Binding registry: static name -> factory table and the dispatcher that owns
the active bindings for one agent run.

start_all/stop_all fan out concurrently and wait for every binding.
broadcast fans out sequentially in registration order and stops at the
first failing handler.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from iotagent_ul.bindings.base import BindingContext, BindingEvent, TransportBinding
from iotagent_ul.bindings.mqtt import MqttBinding
from iotagent_ul.errors import BindingError

logger = logging.getLogger(__name__)

BindingFactory = Callable[[BindingContext], TransportBinding]

BINDING_FACTORIES: dict[str, BindingFactory] = {
    "mqtt": MqttBinding,
}


def build_bindings(
    names: Iterable[str],
    context: BindingContext,
    *,
    factories: Optional[Mapping[str, BindingFactory]] = None,
) -> list[TransportBinding]:
    """
    Instantiate the configured bindings, in configuration order.

    Raises BindingError for a name missing from the factory table or a
    factory that does not produce a TransportBinding.
    """
    table = factories if factories is not None else BINDING_FACTORIES
    bindings: list[TransportBinding] = []

    for name in names:
        factory = table.get(name)
        if factory is None:
            raise BindingError(name, f"unknown binding; available: {sorted(table)}")
        binding = factory(context)
        if not isinstance(binding, TransportBinding):
            raise BindingError(name, "factory did not return a TransportBinding")
        if binding.binding_id != name:
            context.logger(name).warning(
                "binding_id mismatch: registry=%s class=%s; using registry name for lookup",
                name,
                binding.binding_id,
            )
        bindings.append(binding)

    return bindings


def _as_binding_error(binding: TransportBinding, exc: BaseException) -> BindingError:
    if isinstance(exc, BindingError):
        return exc
    err = BindingError(binding.binding_id, str(exc) or type(exc).__name__)
    err.__cause__ = exc
    return err


class BindingRegistry:
    """
    Owns the set of active bindings. The set is fixed at construction and
    never changes during a run.
    """

    def __init__(self, bindings: Sequence[TransportBinding], *, max_workers: Optional[int] = None) -> None:
        self._bindings: tuple[TransportBinding, ...] = tuple(bindings)
        self._max_workers = max_workers

    @property
    def bindings(self) -> tuple[TransportBinding, ...]:
        return self._bindings

    def __len__(self) -> int:
        return len(self._bindings)

    def _run_all(self, action: str, call: Callable[[TransportBinding], Any]) -> None:
        if not self._bindings:
            return

        workers = self._max_workers or len(self._bindings)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"binding-{action}") as pool:
            futures = [(b, pool.submit(call, b)) for b in self._bindings]
            errors = []
            for binding, future in futures:
                exc = future.exception()
                if exc is None:
                    logger.info("Binding %s: %s ok", binding.binding_id, action)
                    continue
                logger.error("Binding %s: %s failed: %s", binding.binding_id, action, exc)
                errors.append(_as_binding_error(binding, exc))

        if errors:
            raise errors[0]

    def start_all(self, config: Any) -> None:
        """
        Start every binding concurrently and wait for all of them.
        Raises the first failure (registration order) as BindingError.
        """
        self._run_all("start", lambda b: b.start(config))

    def stop_all(self) -> None:
        """Stop every binding concurrently; same aggregation as start_all."""
        self._run_all("stop", lambda b: b.stop())

    def handlers_for(self, event: BindingEvent) -> list[TransportBinding]:
        return [b for b in self._bindings if b.handles_event(event)]

    def broadcast(self, event: BindingEvent | str, *args: Any) -> None:
        """
        Invoke the event handler of every binding declaring it, one after the
        other in registration order. The first failure aborts the fan-out.
        """
        event = BindingEvent(event)
        targets = self.handlers_for(event)
        if not targets:
            logger.debug("No binding handles %s", event.value)
            return

        for binding in targets:
            handler = binding.handler_for(event)
            try:
                handler(*args)
            except BindingError:
                logger.error("Binding %s: %s handler failed", binding.binding_id, event.value)
                raise
            except Exception as exc:
                logger.error("Binding %s: %s handler failed: %s", binding.binding_id, event.value, exc)
                raise BindingError(binding.binding_id, str(exc) or type(exc).__name__) from exc
