"""Request/response primitive every proxy, the mirror and the agent build on.

One :class:`BusExchange` wraps one connected ``dbus_next.aio.MessageBus``.
Each call sends a single method call and awaits its reply; error replies are
mapped onto :mod:`bluez_client.bluez.errors`.  Nothing here retries.
"""

import logging
from typing import Any, Callable

from dbus_next import Message, MessageType, Variant
from dbus_next.aio import MessageBus

from .constants import (
    BLUEZ_SERVICE,
    DBUS_INTERFACE,
    DBUS_PATH,
    DBUS_SERVICE,
    PROPERTIES_INTERFACE,
)
from .errors import BusConnectionError, map_remote_error

logger = logging.getLogger(__name__)


def unpack_variants(value: Any) -> Any:
    """Recursively replace dbus-next Variants with their plain values."""
    if isinstance(value, Variant):
        return unpack_variants(value.value)
    if isinstance(value, dict):
        return {k: unpack_variants(v) for k, v in value.items()}
    if isinstance(value, list):
        return [unpack_variants(v) for v in value]
    return value


class BusExchange:
    """Sends method calls to BlueZ over an already connected bus."""

    def __init__(self, bus: MessageBus, destination: str = BLUEZ_SERVICE):
        self._bus = bus
        self._destination = destination

    @property
    def bus(self) -> MessageBus:
        return self._bus

    @property
    def connected(self) -> bool:
        return bool(getattr(self._bus, "connected", False))

    async def call(
        self,
        path: str,
        interface: str,
        member: str,
        signature: str = "",
        body: list | None = None,
        destination: str | None = None,
    ) -> list:
        """Perform one exchange and return the reply body.

        Raises the mapped local error when the reply is an error.
        """
        if not self.connected:
            raise BusConnectionError("message bus is not connected")

        msg = Message(
            destination=destination or self._destination,
            path=path,
            interface=interface,
            member=member,
            signature=signature,
            body=body or [],
        )
        logger.debug("D-Bus call %s.%s path=%s", interface, member, path)
        try:
            reply = await self._bus.call(msg)
        except (EOFError, OSError) as e:
            raise BusConnectionError(f"{interface}.{member} on {path}: {e}") from e

        if reply is None:
            return []
        if reply.message_type == MessageType.ERROR:
            text = reply.body[0] if reply.body and isinstance(reply.body[0], str) else ""
            raise map_remote_error(reply.error_name, text, path)
        return list(reply.body)

    async def get_property(self, path: str, interface: str, name: str) -> Any:
        body = await self.call(
            path, PROPERTIES_INTERFACE, "Get", "ss", [interface, name]
        )
        return unpack_variants(body[0])

    async def get_all(self, path: str, interface: str) -> dict[str, Any]:
        body = await self.call(path, PROPERTIES_INTERFACE, "GetAll", "s", [interface])
        return unpack_variants(body[0])

    async def set_property(self, path: str, interface: str, name: str, value: Variant) -> None:
        await self.call(
            path, PROPERTIES_INTERFACE, "Set", "ssv", [interface, name, value]
        )

    async def call_bus(self, member: str, signature: str = "", body: list | None = None) -> list:
        """Call a method on the bus daemon itself."""
        return await self.call(
            DBUS_PATH, DBUS_INTERFACE, member, signature, body, destination=DBUS_SERVICE
        )

    async def add_match(self, rule: str) -> None:
        await self.call_bus("AddMatch", "s", [rule])

    async def remove_match(self, rule: str) -> None:
        await self.call_bus("RemoveMatch", "s", [rule])

    async def get_name_owner(self, name: str) -> str:
        body = await self.call_bus("GetNameOwner", "s", [name])
        return body[0]

    def add_message_handler(self, handler: Callable[[Message], Any]) -> None:
        self._bus.add_message_handler(handler)

    def remove_message_handler(self, handler: Callable[[Message], Any]) -> None:
        self._bus.remove_message_handler(handler)

    def export(self, path: str, interface) -> None:
        self._bus.export(path, interface)

    def unexport(self, path: str, interface) -> None:
        self._bus.unexport(path, interface)
