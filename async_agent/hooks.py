"""
Lifecycle observers.

The manager reports every delegation transition here. Observers are awaited
one after another, lowest priority value first and in registration order
within a priority. An observer that raises is logged and skipped; nothing it
does can change or block the transition it observes.
"""

import bisect
import itertools
import logging
from collections.abc import Awaitable
from collections.abc import Callable
from dataclasses import dataclass
from dataclasses import field
from typing import Any

logger = logging.getLogger(__name__)

Observer = Callable[[str, dict[str, Any]], Awaitable[None]]


@dataclass(order=True)
class _Registration:
    priority: int
    seq: int
    callback: Observer = field(compare=False)
    name: str = field(compare=False)


class HookRegistry:
    """Observers of delegation lifecycle events, keyed by event name."""

    def __init__(self):
        self._observers: dict[str, list[_Registration]] = {}
        self._defaults: dict[str, Any] = {}
        self._seq = itertools.count()

    def register(
        self,
        event: str,
        handler: Observer,
        priority: int = 0,
        name: str | None = None,
    ) -> Callable[[], None]:
        """
        Observe ``event``.

        Args:
            event: Event name from ``events``
            handler: Awaited with ``(event, payload)``
            priority: Lower values run first
            name: Label used in logs and ``list_handlers``

        Returns:
            A function that removes this observer again
        """
        registration = _Registration(
            priority, next(self._seq), handler, name or getattr(handler, "__name__", "observer")
        )
        bisect.insort(self._observers.setdefault(event, []), registration)
        logger.debug(f"Observer '{registration.name}' added for {event}")

        def unregister() -> None:
            observers = self._observers.get(event, [])
            if registration in observers:
                observers.remove(registration)
                logger.debug(f"Observer '{registration.name}' removed from {event}")

        return unregister

    on = register

    def set_default_fields(self, **defaults: Any) -> None:
        """Fields merged under every payload; the event's own fields win."""
        self._defaults = defaults

    async def emit(self, event: str, data: dict[str, Any]) -> None:
        """Deliver ``data`` to every observer of ``event``."""
        observers = list(self._observers.get(event, ()))
        if not observers:
            return

        payload = {**self._defaults, **(data or {})}
        for registration in observers:
            try:
                await registration.callback(event, payload)
            except Exception as e:
                logger.error(f"Observer '{registration.name}' failed on {event}: {e}")

    def list_handlers(self, event: str | None = None) -> dict[str, list[str]]:
        """Observer names per event, in the order they run."""
        events = [event] if event else list(self._observers)
        return {evt: [r.name for r in self._observers.get(evt, ())] for evt in events}
