"""GATT service, characteristic and descriptor proxies.

These objects only exist in the mirror once BlueZ has resolved the remote
GATT database; see ``Device.discover_services()``.
"""

import logging
from typing import AsyncIterator, Mapping

from dbus_next import Variant

from ..events import Subscription
from .constants import (
    GATT_CHARACTERISTIC_INTERFACE,
    GATT_DESCRIPTOR_INTERFACE,
    GATT_SERVICE_INTERFACE,
    WRITE_TYPES,
    CharacteristicFlag,
    DescriptorFlag,
)
from .errors import ArgumentError
from .paths import ObjectKind, parent_of
from .properties import PropertyChange
from .proxy import BluezProxy, validate_bytes, validate_offset

logger = logging.getLogger(__name__)

# Option keys accepted for WriteValue through write_value_with_options()
WRITE_OPTION_KEYS = frozenset({"offset", "type"})


def _parse_flags(raw, enum_cls) -> frozenset:
    flags = set()
    for value in raw or ():
        try:
            flags.add(enum_cls(value))
        except ValueError:
            logger.debug("Ignoring unknown %s %r", enum_cls.__name__, value)
    return frozenset(flags)


class GattService(BluezProxy):
    """Wraps org.bluez.GattService1."""

    INTERFACE = GATT_SERVICE_INTERFACE
    KIND = ObjectKind.SERVICE

    @property
    def uuid(self) -> str | None:
        return self._prop("UUID")

    @property
    def primary(self) -> bool:
        return bool(self._prop("Primary", False))

    @property
    def handle(self) -> int | None:
        return self._prop("Handle")

    @property
    def includes(self) -> list[str]:
        return list(self._prop("Includes") or ())

    @property
    def device(self):
        from .device import Device

        return Device(self._exchange, self._mirror, self._prop("Device") or parent_of(self._path))

    def characteristics(self) -> list["GattCharacteristic"]:
        return [
            GattCharacteristic(self._exchange, self._mirror, obj.path)
            for obj in self._mirror.children(self._path, ObjectKind.CHARACTERISTIC)
        ]

    def characteristic(self, uuid: str) -> "GattCharacteristic | None":
        """First characteristic with *uuid*, if any."""
        for char in self.characteristics():
            if char.uuid == uuid.lower():
                return char
        return None


class GattCharacteristic(BluezProxy):
    """Wraps org.bluez.GattCharacteristic1."""

    INTERFACE = GATT_CHARACTERISTIC_INTERFACE
    KIND = ObjectKind.CHARACTERISTIC

    # -- methods --

    async def read_value(self, offset: int = 0) -> bytes:
        options = {}
        if validate_offset(offset):
            options["offset"] = Variant("q", offset)
        body = await self._call("ReadValue", "a{sv}", options)
        return bytes(body[0])

    async def write_value(self, data, offset: int = 0, type: str | None = None) -> None:
        """Write *data* to the characteristic.

        *type* selects the ATT procedure: ``request`` (write with response),
        ``command`` (write without response) or ``reliable``.  Arguments are
        validated before anything is sent.
        """
        value = validate_bytes(data)
        options: dict[str, Variant] = {}
        if validate_offset(offset):
            options["offset"] = Variant("q", offset)
        if type is not None:
            if type not in WRITE_TYPES:
                raise ArgumentError(
                    f"write type must be one of {sorted(WRITE_TYPES)}, got {type!r}"
                )
            options["type"] = Variant("s", type)
        await self._call("WriteValue", "aya{sv}", value, options)
        logger.debug("Wrote %d byte(s) to %s", len(value), self._path)

    async def write_value_with_options(self, data, options: Mapping[str, object]) -> None:
        """Like write_value() but takes a raw options mapping."""
        unknown = set(options) - WRITE_OPTION_KEYS
        if unknown:
            raise ArgumentError(f"unrecognized WriteValue option(s): {sorted(unknown)}")
        await self.write_value(
            data, offset=options.get("offset", 0), type=options.get("type")
        )

    async def start_notify(self) -> None:
        await self._call("StartNotify")
        logger.debug("Notifications started on %s", self._path)

    async def stop_notify(self) -> None:
        await self._call("StopNotify")
        logger.debug("Notifications stopped on %s", self._path)

    def notifications(self) -> AsyncIterator[bytes]:
        """Stream of values delivered through Value property changes.

        The subscription is taken immediately, so no value emitted after this
        call is missed.  Call start_notify() to make BlueZ send them.
        """
        return self._values(self.watch())

    @staticmethod
    async def _values(sub: Subscription[PropertyChange]) -> AsyncIterator[bytes]:
        try:
            async for change in sub:
                if change.name == "Value" and change.value is not None:
                    yield bytes(change.value)
        finally:
            sub.close()

    # -- properties --

    @property
    def uuid(self) -> str | None:
        return self._prop("UUID")

    @property
    def service(self) -> GattService:
        return GattService(self._exchange, self._mirror, self._prop("Service") or parent_of(self._path))

    @property
    def value(self) -> bytes | None:
        """Last value BlueZ cached for this characteristic."""
        value = self._prop("Value")
        return None if value is None else bytes(value)

    @property
    def flags(self) -> frozenset[CharacteristicFlag]:
        return _parse_flags(self._prop("Flags"), CharacteristicFlag)

    @property
    def notifying(self) -> bool:
        return bool(self._prop("Notifying", False))

    @property
    def mtu(self) -> int | None:
        return self._prop("MTU")

    @property
    def write_acquired(self) -> bool:
        return bool(self._prop("WriteAcquired", False))

    @property
    def notify_acquired(self) -> bool:
        return bool(self._prop("NotifyAcquired", False))

    @property
    def handle(self) -> int | None:
        return self._prop("Handle")

    def descriptors(self) -> list["GattDescriptor"]:
        return [
            GattDescriptor(self._exchange, self._mirror, obj.path)
            for obj in self._mirror.children(self._path, ObjectKind.DESCRIPTOR)
        ]


class GattDescriptor(BluezProxy):
    """Wraps org.bluez.GattDescriptor1."""

    INTERFACE = GATT_DESCRIPTOR_INTERFACE
    KIND = ObjectKind.DESCRIPTOR

    async def read_value(self, offset: int = 0) -> bytes:
        options = {}
        if validate_offset(offset):
            options["offset"] = Variant("q", offset)
        body = await self._call("ReadValue", "a{sv}", options)
        return bytes(body[0])

    async def write_value(self, data, offset: int = 0) -> None:
        value = validate_bytes(data)
        options = {}
        if validate_offset(offset):
            options["offset"] = Variant("q", offset)
        await self._call("WriteValue", "aya{sv}", value, options)

    @property
    def uuid(self) -> str | None:
        return self._prop("UUID")

    @property
    def characteristic(self) -> GattCharacteristic:
        return GattCharacteristic(
            self._exchange, self._mirror, self._prop("Characteristic") or parent_of(self._path)
        )

    @property
    def value(self) -> bytes | None:
        value = self._prop("Value")
        return None if value is None else bytes(value)

    @property
    def flags(self) -> frozenset[DescriptorFlag]:
        return _parse_flags(self._prop("Flags"), DescriptorFlag)

    @property
    def handle(self) -> int | None:
        return self._prop("Handle")
