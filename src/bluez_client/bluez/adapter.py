"""BlueZ Adapter1 D-Bus wrapper."""

import asyncio
import logging
from typing import Any

from dbus_next import Variant

from .constants import ADAPTER_INTERFACE, DISCOVERY_TRANSPORTS
from .device import Device
from .errors import ArgumentError, InvalidPathError
from .managers import GattManager
from .paths import ObjectKind, ObjectPath, kind_of, parent_of
from .proxy import BluezProxy

logger = logging.getLogger(__name__)


class Adapter(BluezProxy):
    """Wraps org.bluez.Adapter1 on one local controller (``/org/bluez/hciN``).

    BlueZ reference-counts StartDiscovery/StopDiscovery per D-Bus client, so
    a discovery session started here does not disturb other clients.
    """

    INTERFACE = ADAPTER_INTERFACE
    KIND = ObjectKind.ADAPTER

    # -- methods --

    async def start_discovery(self) -> None:
        await self._call("StartDiscovery")
        logger.info("Discovery started on %s", self._path)

    async def stop_discovery(self) -> None:
        await self._call("StopDiscovery")
        logger.info("Discovery stopped on %s", self._path)

    async def remove_device(self, device: "Device | str") -> None:
        """Remove a device (and its pairing) from this adapter."""
        path = ObjectPath(device.path if isinstance(device, Device) else device)
        if kind_of(path) is not ObjectKind.DEVICE or parent_of(path) != self._path:
            raise InvalidPathError(f"{path} is not a device of {self._path}")
        await self._call("RemoveDevice", "o", path)
        logger.info("Removed device %s", path)

    async def set_discovery_filter(
        self,
        *,
        uuids: list[str] | None = None,
        rssi: int | None = None,
        pathloss: int | None = None,
        transport: str | None = None,
        duplicate_data: bool | None = None,
        discoverable: bool | None = None,
        pattern: str | None = None,
    ) -> None:
        """Set the discovery filter for this client's sessions.

        Calling with no arguments clears the filter.
        """
        if rssi is not None and pathloss is not None:
            raise ArgumentError("rssi and pathloss filters are mutually exclusive")

        filter_: dict[str, Variant] = {}
        if uuids is not None:
            filter_["UUIDs"] = Variant("as", [str(u) for u in uuids])
        if rssi is not None:
            if not -127 <= rssi <= 20:
                raise ArgumentError(f"rssi out of range: {rssi}")
            filter_["RSSI"] = Variant("n", rssi)
        if pathloss is not None:
            if not 0 <= pathloss <= 0xFFFF:
                raise ArgumentError(f"pathloss out of range: {pathloss}")
            filter_["Pathloss"] = Variant("q", pathloss)
        if transport is not None:
            if transport not in DISCOVERY_TRANSPORTS:
                raise ArgumentError(
                    f"transport must be one of {sorted(DISCOVERY_TRANSPORTS)}, got {transport!r}"
                )
            filter_["Transport"] = Variant("s", transport)
        if duplicate_data is not None:
            filter_["DuplicateData"] = Variant("b", duplicate_data)
        if discoverable is not None:
            filter_["Discoverable"] = Variant("b", discoverable)
        if pattern is not None:
            filter_["Pattern"] = Variant("s", pattern)

        await self._call("SetDiscoveryFilter", "a{sv}", filter_)
        logger.debug("Discovery filter on %s: %s", self._path, sorted(filter_))

    async def get_discovery_filters(self) -> list[str]:
        """Filter keys this adapter supports."""
        body = await self._call("GetDiscoveryFilters")
        return list(body[0])

    async def discover(self, seconds: float) -> list[Device]:
        """Run discovery for a fixed duration and return the known devices."""
        await self.start_discovery()
        try:
            await asyncio.sleep(seconds)
        finally:
            await self.stop_discovery()
        return self.devices()

    # -- tree --

    def devices(self) -> list[Device]:
        """Devices currently known under this adapter."""
        return [
            Device(self._exchange, self._mirror, obj.path)
            for obj in self._mirror.children(self._path, ObjectKind.DEVICE)
        ]

    def device(self, address: str) -> Device:
        """Proxy for the device with *address* under this adapter."""
        return Device.from_address(self._exchange, self._mirror, address, self._path)

    @property
    def gatt_manager(self) -> GattManager:
        return GattManager(self._exchange, self._mirror, self._path)

    # -- properties --

    @property
    def name(self) -> str:
        """hciN name taken from the object path."""
        return self._path.name

    @property
    def address(self) -> str | None:
        return self._prop("Address")

    @property
    def address_type(self) -> str | None:
        return self._prop("AddressType")

    @property
    def system_name(self) -> str | None:
        """The ``Name`` property (system-assigned controller name)."""
        return self._prop("Name")

    @property
    def alias(self) -> str | None:
        return self._prop("Alias")

    async def set_alias(self, alias: str) -> None:
        await self._set("Alias", "s", alias)

    @property
    def class_(self) -> int | None:
        return self._prop("Class")

    @property
    def powered(self) -> bool:
        return bool(self._prop("Powered", False))

    async def set_powered(self, powered: bool) -> None:
        """Request a power change; watch ``Powered`` for the outcome."""
        await self._set("Powered", "b", bool(powered))
        logger.info("Requested Powered=%s on %s", powered, self._path)

    @property
    def discoverable(self) -> bool:
        return bool(self._prop("Discoverable", False))

    async def set_discoverable(self, discoverable: bool) -> None:
        await self._set("Discoverable", "b", bool(discoverable))

    @property
    def discoverable_timeout(self) -> int | None:
        return self._prop("DiscoverableTimeout")

    async def set_discoverable_timeout(self, seconds: int) -> None:
        await self._set("DiscoverableTimeout", "u", int(seconds))

    @property
    def pairable(self) -> bool:
        return bool(self._prop("Pairable", False))

    async def set_pairable(self, pairable: bool) -> None:
        await self._set("Pairable", "b", bool(pairable))

    @property
    def pairable_timeout(self) -> int | None:
        return self._prop("PairableTimeout")

    async def set_pairable_timeout(self, seconds: int) -> None:
        await self._set("PairableTimeout", "u", int(seconds))

    @property
    def discovering(self) -> bool:
        return bool(self._prop("Discovering", False))

    @property
    def uuids(self) -> frozenset[str]:
        return frozenset(self._prop("UUIDs") or ())

    @property
    def modalias(self) -> str | None:
        return self._prop("Modalias")

    @property
    def roles(self) -> list[str]:
        return list(self._prop("Roles") or ())

    def summary(self) -> dict[str, Any]:
        """Flat description used by the status dump."""
        return {
            "path": str(self._path),
            "name": self.name,
            "address": self.address or "unknown",
            "alias": self.alias or "",
            "powered": self.powered,
            "discovering": self.discovering,
            "devices": len(self._mirror.children(self._path, ObjectKind.DEVICE)),
        }
