"""In-memory mirror of BlueZ's managed object tree.

The mirror is the only holder of mutable shared state in the package.  It is
written exclusively from its own bus message handler (and the initial
``GetManagedObjects`` load); every read hands out copies.

Startup ordering: the message handler and match rules are installed before
the full tree is fetched, and signals arriving during the fetch are parked
and replayed afterwards, so nothing that happens mid-fetch is lost.
"""

import asyncio
import copy
import enum
import logging
from dataclasses import dataclass
from typing import Any

from dbus_next import Message, MessageType

from ..events import EventBus, Subscription
from .constants import (
    ADAPTER_INTERFACE,
    BLUEZ_SERVICE,
    DBUS_INTERFACE,
    DBUS_SERVICE,
    DEVICE_INTERFACE,
    GATT_CHARACTERISTIC_INTERFACE,
    GATT_DESCRIPTOR_INTERFACE,
    GATT_SERVICE_INTERFACE,
    OBJECT_MANAGER_INTERFACE,
    PROPERTIES_INTERFACE,
    STANDARD_INTERFACES,
)
from .errors import (
    BluezError,
    InvalidPathError,
    NotFoundError,
    ServiceUnavailableError,
)
from .exchange import BusExchange, unpack_variants
from .paths import PARENT_KIND, ObjectKind, ObjectPath, is_descendant, kind_of, parent_of
from .properties import PropertyChange, PropertyWatchers

logger = logging.getLogger(__name__)

MATCH_RULES = (
    f"type='signal',sender='{BLUEZ_SERVICE}',interface='{OBJECT_MANAGER_INTERFACE}'",
    f"type='signal',sender='{BLUEZ_SERVICE}',interface='{PROPERTIES_INTERFACE}',"
    "member='PropertiesChanged'",
    f"type='signal',sender='{DBUS_SERVICE}',interface='{DBUS_INTERFACE}',"
    f"member='NameOwnerChanged',arg0='{BLUEZ_SERVICE}'",
)

# Interface membership decides the object kind, checked in this order
_KIND_BY_INTERFACE = (
    (ADAPTER_INTERFACE, ObjectKind.ADAPTER),
    (DEVICE_INTERFACE, ObjectKind.DEVICE),
    (GATT_SERVICE_INTERFACE, ObjectKind.SERVICE),
    (GATT_CHARACTERISTIC_INTERFACE, ObjectKind.CHARACTERISTIC),
    (GATT_DESCRIPTOR_INTERFACE, ObjectKind.DESCRIPTOR),
)


class MirrorState(enum.Enum):
    DISCONNECTED = "disconnected"
    STARTING = "starting"
    READY = "ready"


@dataclass(frozen=True, eq=False)
class ManagedObject:
    """Point-in-time copy of one object in the BlueZ tree."""

    path: ObjectPath
    kind: ObjectKind
    interfaces: frozenset[str]
    properties: dict[str, dict[str, Any]]

    def has_interface(self, interface: str) -> bool:
        return interface in self.interfaces

    def get(self, interface: str, name: str, default: Any = None) -> Any:
        return self.properties.get(interface, {}).get(name, default)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ManagedObject):
            return NotImplemented
        return (
            self.path == other.path
            and self.kind is other.kind
            and self.interfaces == other.interfaces
            and self.properties == other.properties
        )

    def __hash__(self) -> int:
        return hash(self.path)


def _resolve_kind(interfaces) -> ObjectKind:
    for interface, kind in _KIND_BY_INTERFACE:
        if interface in interfaces:
            return kind
    return ObjectKind.UNKNOWN


def _depth(path: str) -> int:
    return path.count("/")


class ObjectManagerMirror:
    """Tracks org.bluez's ObjectManager tree and property changes."""

    def __init__(self, exchange: BusExchange):
        self._exchange = exchange
        self._objects: dict[ObjectPath, dict[str, dict[str, Any]]] = {}
        self._kinds: dict[ObjectPath, ObjectKind] = {}
        self._state = MirrorState.DISCONNECTED
        self._owner: str | None = None
        self._pending: list[Message] | None = None
        self._handler_installed = False
        self._rules: list[str] = []
        self._loaded_once = False
        self._start_lock: asyncio.Lock | None = None
        self._additions: EventBus[ManagedObject] = EventBus("object additions")
        self._removals: EventBus[ObjectPath] = EventBus("object removals")
        self._watchers = PropertyWatchers()

    @property
    def state(self) -> MirrorState:
        return self._state

    @property
    def owner(self) -> str | None:
        """Unique bus name currently owning org.bluez."""
        return self._owner

    # -- lifecycle --

    async def start(self) -> None:
        """Fetch the full tree, then begin applying incremental signals.

        Raises ServiceUnavailableError (and stays DISCONNECTED) when the bus
        or BlueZ cannot be reached.
        """
        if self._start_lock is None:
            self._start_lock = asyncio.Lock()
        async with self._start_lock:
            if self._state is MirrorState.READY:
                return
            await self._start()

    async def _start(self) -> None:
        self._state = MirrorState.STARTING
        self._pending = []
        if not self._handler_installed:
            self._exchange.add_message_handler(self._on_message)
            self._handler_installed = True

        try:
            for rule in MATCH_RULES:
                if rule not in self._rules:
                    await self._exchange.add_match(rule)
                    self._rules.append(rule)
            self._owner = await self._exchange.get_name_owner(BLUEZ_SERVICE)
            body = await self._exchange.call(
                "/", OBJECT_MANAGER_INTERFACE, "GetManagedObjects"
            )
        except BluezError as e:
            self._state = MirrorState.DISCONNECTED
            self._pending = None
            self._owner = None
            logger.error("Initial object enumeration failed: %s", e)
            raise ServiceUnavailableError(f"initial object enumeration failed: {e}") from e

        self._load(unpack_variants(body[0]), publish=self._loaded_once)
        self._loaded_once = True

        pending, self._pending = self._pending, None
        self._state = MirrorState.READY
        if pending:
            logger.debug("Replaying %d signal(s) received during enumeration", len(pending))
        for msg in pending:
            self._dispatch(msg)
        logger.info(
            "Object mirror ready: %d objects from %s (%s)",
            len(self._objects), BLUEZ_SERVICE, self._owner,
        )

    async def reconnect(self) -> None:
        """Caller-triggered retry after the mirror went DISCONNECTED."""
        logger.info("Reconnecting object mirror (state: %s)", self._state.value)
        await self.start()

    async def close(self) -> None:
        """Detach from the bus and end every subscription."""
        if self._handler_installed:
            self._exchange.remove_message_handler(self._on_message)
            self._handler_installed = False
        rules, self._rules = self._rules, []
        for rule in rules:
            try:
                await self._exchange.remove_match(rule)
            except BluezError as e:
                logger.debug("RemoveMatch failed (bus may be gone): %s", e)
        self._objects.clear()
        self._kinds.clear()
        self._watchers.end_all()
        self._additions.finish()
        self._removals.finish()
        self._state = MirrorState.DISCONNECTED
        self._owner = None
        logger.info("Object mirror closed")

    # -- reads --

    def _require_ready(self) -> None:
        if self._state is not MirrorState.READY:
            raise ServiceUnavailableError(f"object mirror is {self._state.value}")

    def _entry(self, path: str) -> tuple[ObjectPath, dict[str, dict[str, Any]]]:
        path = ObjectPath(path)
        self._require_ready()
        entry = self._objects.get(path)
        if entry is None:
            raise NotFoundError(path)
        return path, entry

    def _copy(self, path: ObjectPath) -> ManagedObject:
        entry = self._objects[path]
        return ManagedObject(
            path=path,
            kind=self._kinds[path],
            interfaces=frozenset(entry),
            properties=copy.deepcopy(entry),
        )

    def snapshot(self) -> set[ManagedObject]:
        """Point-in-time copy of every object in the tree."""
        self._require_ready()
        return {self._copy(path) for path in self._objects}

    def get(self, path: str) -> ManagedObject:
        path, _ = self._entry(path)
        return self._copy(path)

    def contains(self, path: str) -> bool:
        self._require_ready()
        return path in self._objects

    def kind(self, path: str) -> ObjectKind:
        path, _ = self._entry(path)
        return self._kinds[path]

    def properties(self, path: str, interface: str) -> dict[str, Any]:
        path, entry = self._entry(path)
        if interface not in entry:
            raise NotFoundError(path, f"does not implement {interface}")
        return copy.deepcopy(entry[interface])

    def get_property(self, path: str, interface: str, name: str, default: Any = None) -> Any:
        path, entry = self._entry(path)
        if interface not in entry:
            raise NotFoundError(path, f"does not implement {interface}")
        return copy.deepcopy(entry[interface].get(name, default))

    def objects(self, kind: ObjectKind | None = None) -> list[ManagedObject]:
        """All objects (optionally of one kind), sorted by path."""
        self._require_ready()
        return [
            self._copy(path)
            for path in sorted(self._objects)
            if kind is None or self._kinds[path] is kind
        ]

    def children(self, path: str, kind: ObjectKind | None = None) -> list[ManagedObject]:
        """Direct structural children of *path*, sorted by path."""
        path, _ = self._entry(path)
        return [
            self._copy(child)
            for child in sorted(self._objects)
            if parent_of(child) == path and (kind is None or self._kinds[child] is kind)
        ]

    # -- subscriptions --

    def subscribe_additions(self) -> Subscription[ManagedObject]:
        """Objects that appear (or gain interfaces) from now on."""
        return self._additions.subscribe()

    def subscribe_removals(self) -> Subscription[ObjectPath]:
        """Paths of objects removed from now on."""
        return self._removals.subscribe()

    def watch(self, path: str, interface: str | None = None) -> Subscription[PropertyChange]:
        """Property changes on one object; ends when the object goes away."""
        path, entry = self._entry(path)
        if interface is not None and interface not in entry:
            raise NotFoundError(path, f"does not implement {interface}")
        return self._watchers.watch(path, interface)

    # -- signal handling --

    def _on_message(self, msg: Message):
        if msg.message_type != MessageType.SIGNAL:
            return False
        if not self._is_relevant(msg):
            return False
        if self._pending is not None:
            self._pending.append(msg)
        elif self._state is MirrorState.READY or msg.member == "NameOwnerChanged":
            self._dispatch(msg)
        return False  # don't consume

    @staticmethod
    def _is_relevant(msg: Message) -> bool:
        if msg.interface == OBJECT_MANAGER_INTERFACE:
            return msg.member in ("InterfacesAdded", "InterfacesRemoved")
        if msg.interface == PROPERTIES_INTERFACE:
            return msg.member == "PropertiesChanged"
        if msg.interface == DBUS_INTERFACE:
            return (
                msg.member == "NameOwnerChanged"
                and bool(msg.body)
                and msg.body[0] == BLUEZ_SERVICE
            )
        return False

    def _dispatch(self, msg: Message) -> None:
        if msg.member == "NameOwnerChanged":
            self._on_owner_changed(msg.body[1], msg.body[2])
            return
        if msg.sender != self._owner:
            return

        if msg.member == "InterfacesAdded":
            path, interfaces = msg.body[0], unpack_variants(msg.body[1])
            logger.debug("InterfacesAdded %s %s", path, sorted(interfaces))
            self._admit(path, interfaces, publish=True)
        elif msg.member == "InterfacesRemoved":
            path, interfaces = msg.body[0], msg.body[1]
            logger.debug("InterfacesRemoved %s %s", path, interfaces)
            self._remove_interfaces(path, interfaces)
        elif msg.member == "PropertiesChanged":
            interface = msg.body[0]
            changed = unpack_variants(msg.body[1])
            invalidated = list(msg.body[2]) if len(msg.body) > 2 else []
            self._apply_properties(msg.path, interface, changed, invalidated)

    def _load(self, objects: dict[str, dict[str, dict[str, Any]]], publish: bool) -> None:
        # Parents before children so containment checks see the parent
        for path in sorted(objects, key=lambda p: (_depth(p), p)):
            self._admit(path, objects[path], publish=publish)

    def _admit(self, raw_path: str, interfaces: dict[str, dict[str, Any]], publish: bool) -> None:
        try:
            path = ObjectPath(raw_path)
        except InvalidPathError as e:
            logger.warning("Ignoring object with bad path: %s", e)
            return

        entry = self._objects.get(path)
        is_new = entry is None
        if is_new:
            parent = parent_of(path)
            if parent is not None:
                expected = PARENT_KIND[kind_of(path)]
                if self._kinds.get(parent) is not expected:
                    logger.warning(
                        "Ignoring %s: parent %s is not a known %s", path, parent, expected.value
                    )
                    return
            entry = self._objects[path] = {}

        gained = [name for name in interfaces if name not in entry]
        for name, props in interfaces.items():
            entry.setdefault(name, {}).update(props)
        self._kinds[path] = _resolve_kind(entry)

        if is_new:
            logger.debug("Object added: %s (%s)", path, self._kinds[path].value)
        if publish and (is_new or gained):
            self._additions.emit(self._copy(path))

    def _remove_interfaces(self, raw_path: str, interfaces: list[str]) -> None:
        entry = self._objects.get(raw_path)
        if entry is None:
            return
        path = ObjectPath(raw_path)
        for name in interfaces:
            entry.pop(name, None)
        if not set(entry) - STANDARD_INTERFACES:
            self._drop(path)
            return

        kind = _resolve_kind(entry)
        shape = kind_of(path)
        if self._kinds[path] is shape and kind is not shape:
            # Lost its defining interface; what is left can't hold children
            logger.debug("%s is no longer a %s", path, shape.value)
            self._drop(path)
            return
        self._kinds[path] = kind

    def _drop(self, path: ObjectPath) -> None:
        """Remove *path* and everything beneath it, deepest first."""
        doomed = [p for p in self._objects if is_descendant(p, path)]
        doomed.sort(key=_depth, reverse=True)
        doomed.append(path)
        for gone in doomed:
            self._objects.pop(gone, None)
            self._kinds.pop(gone, None)
            self._watchers.end(gone)
            logger.debug("Object removed: %s", gone)
            self._removals.emit(gone)

    def _apply_properties(
        self, path: str, interface: str, changed: dict[str, Any], invalidated: list[str]
    ) -> None:
        entry = self._objects.get(path)
        if entry is None or interface not in entry:
            logger.debug("PropertiesChanged for untracked %s on %s", interface, path)
            return
        props = entry[interface]
        props.update(changed)
        for name in invalidated:
            props.pop(name, None)
        self._watchers.publish(path, interface, changed, invalidated)

    def _on_owner_changed(self, old_owner: str, new_owner: str) -> None:
        if old_owner and old_owner == self._owner:
            logger.warning("%s left the bus; object mirror disconnected", BLUEZ_SERVICE)
            for path in sorted(self._objects, key=_depth, reverse=True):
                self._removals.emit(path)
            self._objects.clear()
            self._kinds.clear()
            self._watchers.end_all()
            self._owner = None
            self._state = MirrorState.DISCONNECTED
        elif new_owner and self._state is MirrorState.DISCONNECTED:
            logger.info("%s is back on the bus as %s; call reconnect()", BLUEZ_SERVICE, new_owner)
