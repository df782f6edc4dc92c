"""Per-object property change streams.

The mirror feeds every ``PropertiesChanged`` signal into
:class:`PropertyWatchers` after applying it to its own copy.  A signal that
carries several properties is split into one :class:`PropertyChange` per
property, in the order the signal listed them; invalidated properties follow
with a value of None.
"""

import functools
import logging
from typing import Any, NamedTuple

from ..events import EventBus, Subscription
from .paths import ObjectPath, is_descendant

logger = logging.getLogger(__name__)


class PropertyChange(NamedTuple):
    interface: str
    name: str
    value: Any


class PropertyWatchers:
    """Registry of property subscriptions keyed by object path."""

    def __init__(self):
        self._buses: dict[ObjectPath, EventBus[PropertyChange]] = {}

    def watch(self, path: str, interface: str | None = None) -> Subscription[PropertyChange]:
        """Subscribe to changes on *path*, optionally limited to one interface."""
        path = ObjectPath(path)
        bus = self._buses.get(path)
        if bus is None:
            bus = self._buses[path] = EventBus(
                f"properties {path}", on_empty=functools.partial(self._forget, path)
            )
        accept = None
        if interface is not None:
            accept = lambda change: change.interface == interface  # noqa: E731
        return bus.subscribe(accept)

    def publish(
        self,
        path: str,
        interface: str,
        changed: dict[str, Any],
        invalidated: list[str] | None = None,
    ) -> None:
        bus = self._buses.get(path)
        if bus is None:
            return
        for name, value in changed.items():
            bus.emit(PropertyChange(interface, name, value))
        for name in invalidated or ():
            bus.emit(PropertyChange(interface, name, None))

    def _forget(self, path: ObjectPath, bus: EventBus[PropertyChange]) -> None:
        # Last subscriber on the path closed
        if self._buses.get(path) is bus:
            del self._buses[path]

    def end(self, path: str) -> None:
        """Terminate streams on *path* and on every object beneath it."""
        for watched in list(self._buses):
            if watched == path or is_descendant(watched, path):
                logger.debug("Ending property streams for %s", watched)
                self._buses.pop(watched).finish()

    def end_all(self) -> None:
        for bus in self._buses.values():
            bus.finish()
        self._buses.clear()

    def watched_paths(self) -> set[ObjectPath]:
        return set(self._buses)
