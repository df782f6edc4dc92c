"""BlueZ Device1 D-Bus wrapper for individual remote devices."""

import logging
from typing import Any

from .constants import DEFAULT_ADAPTER_PATH, DEVICE_INTERFACE, ERROR_NOT_CONNECTED
from .errors import NotConnectedError
from .gatt import GattService
from .paths import ObjectKind, ObjectPath, address_to_path, parent_of, path_to_address
from .proxy import BluezProxy

logger = logging.getLogger(__name__)


class Device(BluezProxy):
    """Wraps org.bluez.Device1 for pairing, connecting and GATT access."""

    INTERFACE = DEVICE_INTERFACE
    KIND = ObjectKind.DEVICE

    @classmethod
    def from_address(
        cls, exchange, mirror, address: str, adapter_path: str = DEFAULT_ADAPTER_PATH
    ) -> "Device":
        return cls(exchange, mirror, address_to_path(address, adapter_path))

    # -- methods --

    async def connect(self) -> None:
        """Connect all auto-connectable profiles."""
        logger.info("Connecting to %s...", self._path)
        await self._call("Connect")
        logger.info("Connected to %s", self._path)

    async def disconnect(self) -> None:
        logger.info("Disconnecting from %s...", self._path)
        await self._call("Disconnect")

    async def connect_profile(self, uuid: str) -> None:
        """Connect a specific profile by UUID."""
        logger.info("ConnectProfile %s on %s...", uuid, self._path)
        await self._call("ConnectProfile", "s", uuid)

    async def disconnect_profile(self, uuid: str) -> None:
        """Tear down a single profile without dropping the whole connection."""
        logger.info("DisconnectProfile %s on %s...", uuid, self._path)
        await self._call("DisconnectProfile", "s", uuid)

    async def pair(self) -> None:
        """Initiate pairing; the registered agent answers any challenge."""
        logger.info("Pairing with %s...", self._path)
        await self._call("Pair")
        logger.info("Paired with %s", self._path)

    async def cancel_pairing(self) -> None:
        await self._call("CancelPairing")
        logger.info("Pairing with %s canceled", self._path)

    # -- GATT --

    def services(self) -> list[GattService]:
        """GATT services mirrored so far (empty until discovery resolved)."""
        return [
            GattService(self._exchange, self._mirror, obj.path)
            for obj in self._mirror.children(self._path, ObjectKind.SERVICE)
        ]

    async def discover_services(self, timeout: float | None = 10.0) -> list[GattService]:
        """Wait for BlueZ to resolve GATT services and return them.

        The device must already be connected; GATT objects are only handed
        out once ServicesResolved is true.
        """
        if not self.connected:
            raise NotConnectedError(ERROR_NOT_CONNECTED, f"{self._path} is not connected")
        await self.wait_for_property("ServicesResolved", True, timeout)
        services = self.services()
        logger.info("Resolved %d GATT service(s) on %s", len(services), self._path)
        return services

    # -- properties --

    @property
    def adapter(self):
        """Adapter proxy owning this device."""
        from .adapter import Adapter

        return Adapter(self._exchange, self._mirror, self._prop("Adapter") or parent_of(self._path))

    @property
    def address(self) -> str:
        return self._prop("Address") or path_to_address(self._path)

    @property
    def address_type(self) -> str | None:
        return self._prop("AddressType")

    @property
    def name(self) -> str | None:
        """Remote name, None until the device reported one."""
        return self._prop("Name")

    @property
    def alias(self) -> str | None:
        return self._prop("Alias")

    async def set_alias(self, alias: str) -> None:
        await self._set("Alias", "s", alias)

    @property
    def appearance(self) -> int | None:
        return self._prop("Appearance")

    @property
    def icon(self) -> str | None:
        return self._prop("Icon")

    @property
    def class_(self) -> int | None:
        return self._prop("Class")

    @property
    def paired(self) -> bool:
        return bool(self._prop("Paired", False))

    @property
    def bonded(self) -> bool:
        return bool(self._prop("Bonded", False))

    @property
    def connected(self) -> bool:
        return bool(self._prop("Connected", False))

    @property
    def trusted(self) -> bool:
        return bool(self._prop("Trusted", False))

    async def set_trusted(self, trusted: bool = True) -> None:
        """Set the device as trusted (allows BlueZ auto-reconnect)."""
        await self._set("Trusted", "b", bool(trusted))
        logger.info("Requested Trusted=%s on %s", trusted, self._path)

    @property
    def blocked(self) -> bool:
        return bool(self._prop("Blocked", False))

    async def set_blocked(self, blocked: bool = True) -> None:
        await self._set("Blocked", "b", bool(blocked))

    @property
    def legacy_pairing(self) -> bool:
        return bool(self._prop("LegacyPairing", False))

    @property
    def rssi(self) -> int | None:
        """Signal strength; only present while advertisements are seen."""
        return self._prop("RSSI")

    @property
    def tx_power(self) -> int | None:
        return self._prop("TxPower")

    @property
    def uuids(self) -> frozenset[str]:
        return frozenset(self._prop("UUIDs") or ())

    @property
    def manufacturer_data(self) -> dict[int, bytes]:
        return {k: bytes(v) for k, v in (self._prop("ManufacturerData") or {}).items()}

    @property
    def service_data(self) -> dict[str, bytes]:
        return {k: bytes(v) for k, v in (self._prop("ServiceData") or {}).items()}

    @property
    def services_resolved(self) -> bool:
        return bool(self._prop("ServicesResolved", False))

    @property
    def modalias(self) -> str | None:
        return self._prop("Modalias")

    @property
    def wake_allowed(self) -> bool:
        return bool(self._prop("WakeAllowed", False))

    async def set_wake_allowed(self, allowed: bool) -> None:
        await self._set("WakeAllowed", "b", bool(allowed))

    def summary(self) -> dict[str, Any]:
        """Flat description used by the status dump."""
        return {
            "path": str(self._path),
            "adapter": ObjectPath(self._path).segments[2],
            "address": self.address,
            "name": self.name or "Unknown Device",
            "paired": self.paired,
            "connected": self.connected,
            "trusted": self.trusted,
            "rssi": self.rssi,
            "uuids": sorted(self.uuids),
        }
