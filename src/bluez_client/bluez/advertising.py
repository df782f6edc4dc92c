"""LE advertisements exported to BlueZ (org.bluez.LEAdvertisement1).

BlueZ reads every property of a registered advertisement with GetAll.  An
optional field that is not set must be absent from that reply rather than
empty, so each combination of unset fields gets its own interface class in
which those properties are disabled.
"""

import functools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping

from dbus_next import Variant
from dbus_next.constants import PropertyAccess
from dbus_next.service import ServiceInterface, dbus_property, method

from .application import normalize_uuid
from .constants import (
    ADVERTISEMENT_PATH,
    ADVERTISEMENT_TYPES,
    ADVERTISING_INCLUDES,
    LE_ADVERTISEMENT_INTERFACE,
)
from .errors import AlreadyExistsError, AlreadyRegisteredError, ArgumentError, BluezError
from .exchange import BusExchange
from .managers import LEAdvertisingManager
from .paths import ObjectPath

logger = logging.getLogger(__name__)


def _u16(value: Any, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 0xFFFF:
        raise ArgumentError(f"{what} must be an integer in 0..65535, got {value!r}")
    return value


def _byte_map(data: Mapping[Any, Any], what: str) -> dict:
    result = {}
    for key, value in data.items():
        if isinstance(value, str):
            raise ArgumentError(f"{what} values must be bytes, not str")
        result[key] = bytes(value)
    return result


@dataclass
class Advertisement:
    """Content of one LE advertisement.

    Intervals are in milliseconds, durations and timeouts in seconds.
    """

    type: str = "peripheral"
    local_name: str | None = None
    service_uuids: list[str] = field(default_factory=list)
    solicit_uuids: list[str] = field(default_factory=list)
    manufacturer_data: dict[int, bytes] = field(default_factory=dict)
    service_data: dict[str, bytes] = field(default_factory=dict)
    data: dict[int, bytes] = field(default_factory=dict)
    includes: Iterable[str] = ()
    appearance: int | None = None
    duration: int | None = None
    timeout: int | None = None
    discoverable: bool | None = None
    discoverable_timeout: int | None = None
    min_interval: int | None = None
    max_interval: int | None = None
    tx_power: int | None = None

    def properties(self) -> dict[str, Any]:
        """Validated D-Bus property values; unset fields are left out."""
        if self.type not in ADVERTISEMENT_TYPES:
            raise ArgumentError(
                f"advertisement type must be one of {sorted(ADVERTISEMENT_TYPES)}, got {self.type!r}"
            )
        props: dict[str, Any] = {"Type": self.type}

        if self.service_uuids:
            props["ServiceUUIDs"] = [normalize_uuid(u) for u in self.service_uuids]
        if self.solicit_uuids:
            props["SolicitUUIDs"] = [normalize_uuid(u) for u in self.solicit_uuids]
        if self.manufacturer_data:
            props["ManufacturerData"] = {
                _u16(company, "manufacturer id"): Variant("ay", value)
                for company, value in _byte_map(self.manufacturer_data, "manufacturer data").items()
            }
        if self.service_data:
            props["ServiceData"] = {
                normalize_uuid(u): Variant("ay", value)
                for u, value in _byte_map(self.service_data, "service data").items()
            }
        if self.data:
            entries = {}
            for ad_type, value in _byte_map(self.data, "advertising data").items():
                if isinstance(ad_type, bool) or not isinstance(ad_type, int) or not 0 <= ad_type <= 0xFF:
                    raise ArgumentError(f"advertising data type must be in 0..255, got {ad_type!r}")
                entries[ad_type] = Variant("ay", value)
            props["Data"] = entries

        includes = sorted(set(self.includes))
        unknown = set(includes) - ADVERTISING_INCLUDES
        if unknown:
            raise ArgumentError(f"unknown advertising includes: {sorted(unknown)}")
        if includes:
            props["Includes"] = includes

        if self.local_name is not None:
            props["LocalName"] = self.local_name
        if self.appearance is not None:
            props["Appearance"] = _u16(self.appearance, "appearance")
        if self.duration is not None:
            props["Duration"] = _u16(self.duration, "duration")
        if self.timeout is not None:
            props["Timeout"] = _u16(self.timeout, "timeout")
        if self.discoverable is not None:
            props["Discoverable"] = bool(self.discoverable)
        if self.discoverable_timeout is not None:
            props["DiscoverableTimeout"] = _u16(self.discoverable_timeout, "discoverable timeout")

        for name, value in (("MinInterval", self.min_interval), ("MaxInterval", self.max_interval)):
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ArgumentError(f"{name} must be a positive number of milliseconds, got {value!r}")
            props[name] = value
        if "MinInterval" in props and "MaxInterval" in props and props["MinInterval"] > props["MaxInterval"]:
            raise ArgumentError("MinInterval is greater than MaxInterval")

        if self.tx_power is not None:
            if isinstance(self.tx_power, bool) or not isinstance(self.tx_power, int) or not -127 <= self.tx_power <= 20:
                raise ArgumentError(f"tx power must be in -127..20 dBm, got {self.tx_power!r}")
            props["TxPower"] = self.tx_power
        return props


class AdvertisementInterface(ServiceInterface):
    """D-Bus implementation of org.bluez.LEAdvertisement1."""

    def __init__(self, values: dict[str, Any], on_release: Callable[[], None] | None = None):
        super().__init__(LE_ADVERTISEMENT_INTERFACE)
        self._values = values
        self._on_release = on_release

    def release(self) -> None:
        logger.info("Advertisement released by BlueZ")
        if self._on_release is not None:
            self._on_release()

    @method()
    def Release(self) -> None:
        self.release()

    @dbus_property(access=PropertyAccess.READ)
    def Type(self) -> "s":
        return self._values["Type"]

    @dbus_property(access=PropertyAccess.READ)
    def ServiceUUIDs(self) -> "as":
        return self._values["ServiceUUIDs"]

    @dbus_property(access=PropertyAccess.READ)
    def SolicitUUIDs(self) -> "as":
        return self._values["SolicitUUIDs"]

    @dbus_property(access=PropertyAccess.READ)
    def ManufacturerData(self) -> "a{qv}":
        return self._values["ManufacturerData"]

    @dbus_property(access=PropertyAccess.READ)
    def ServiceData(self) -> "a{sv}":
        return self._values["ServiceData"]

    @dbus_property(access=PropertyAccess.READ)
    def Data(self) -> "a{yv}":
        return self._values["Data"]

    @dbus_property(access=PropertyAccess.READ)
    def Includes(self) -> "as":
        return self._values["Includes"]

    @dbus_property(access=PropertyAccess.READ)
    def LocalName(self) -> "s":
        return self._values["LocalName"]

    @dbus_property(access=PropertyAccess.READ)
    def Appearance(self) -> "q":
        return self._values["Appearance"]

    @dbus_property(access=PropertyAccess.READ)
    def Duration(self) -> "q":
        return self._values["Duration"]

    @dbus_property(access=PropertyAccess.READ)
    def Timeout(self) -> "q":
        return self._values["Timeout"]

    @dbus_property(access=PropertyAccess.READ)
    def Discoverable(self) -> "b":
        return self._values["Discoverable"]

    @dbus_property(access=PropertyAccess.READ)
    def DiscoverableTimeout(self) -> "q":
        return self._values["DiscoverableTimeout"]

    @dbus_property(access=PropertyAccess.READ)
    def MinInterval(self) -> "u":
        return self._values["MinInterval"]

    @dbus_property(access=PropertyAccess.READ)
    def MaxInterval(self) -> "u":
        return self._values["MaxInterval"]

    @dbus_property(access=PropertyAccess.READ)
    def TxPower(self) -> "n":
        return self._values["TxPower"]


@functools.lru_cache(maxsize=None)
def _interface_class(hidden: frozenset[str]) -> type[AdvertisementInterface]:
    if not hidden:
        return AdvertisementInterface
    namespace = {}
    for name in hidden:
        prop = getattr(AdvertisementInterface, name)
        namespace[name] = dbus_property(access=PropertyAccess.READ, name=prop.name, disabled=True)(
            prop.prop_getter
        )
    return type("AdvertisementInterface", (AdvertisementInterface,), namespace)


_OPTIONAL_PROPERTIES = frozenset({
    "ServiceUUIDs", "SolicitUUIDs", "ManufacturerData", "ServiceData", "Data", "Includes",
    "LocalName", "Appearance", "Duration", "Timeout", "Discoverable", "DiscoverableTimeout",
    "MinInterval", "MaxInterval", "TxPower",
})


def advertisement_interface(
    advertisement: Advertisement, on_release: Callable[[], None] | None = None
) -> AdvertisementInterface:
    """Interface exposing exactly the fields *advertisement* sets."""
    values = advertisement.properties()
    cls = _interface_class(_OPTIONAL_PROPERTIES.difference(values))
    return cls(values, on_release)


class AdvertisementHandle:
    """A registered advertisement; unregister() is the only way to drop it."""

    def __init__(
        self,
        service: "AdvertisingService",
        path: ObjectPath,
        advertisement: Advertisement,
        interface: AdvertisementInterface,
        manager: LEAdvertisingManager,
    ):
        self._service = service
        self.path = path
        self.advertisement = advertisement
        self.interface = interface
        self.manager = manager
        self.registered = True

    @property
    def adapter(self) -> ObjectPath:
        return self.manager.path

    async def unregister(self) -> None:
        await self._service.unregister(self)

    def __repr__(self) -> str:
        return f"AdvertisementHandle({str(self.path)!r}, adapter={str(self.adapter)!r})"


class AdvertisingService:
    """Exports advertisements and registers them with LEAdvertisingManager1."""

    def __init__(self, exchange: BusExchange):
        self._exchange = exchange
        self._handles: dict[ObjectPath, AdvertisementHandle] = {}
        self._counter = 0

    @property
    def advertisements(self) -> list[AdvertisementHandle]:
        return list(self._handles.values())

    def _next_path(self) -> ObjectPath:
        while True:
            path = ObjectPath(f"{ADVERTISEMENT_PATH}{self._counter}")
            self._counter += 1
            if path not in self._handles:
                return path

    async def register(
        self,
        advertisement: Advertisement,
        manager: LEAdvertisingManager,
        path: str | None = None,
    ) -> AdvertisementHandle:
        """Export *advertisement* and register it through *manager*.

        Raises ArgumentError for invalid content before anything is
        exported, and AlreadyRegisteredError when *path* is in use.
        """
        path = ObjectPath(path) if path else self._next_path()
        if path in self._handles:
            raise AlreadyRegisteredError(f"an advertisement is already registered at {path}")

        handle: AdvertisementHandle | None = None

        def released() -> None:
            if handle is not None:
                self._release(handle)

        interface = advertisement_interface(advertisement, released)
        self._exchange.export(path, interface)
        try:
            await manager.register_advertisement(path)
        except BluezError as e:
            self._exchange.unexport(path, interface)
            if isinstance(e, AlreadyExistsError):
                raise AlreadyRegisteredError(f"BlueZ refused advertisement at {path}: {e}") from e
            raise

        handle = AdvertisementHandle(self, path, advertisement, interface, manager)
        self._handles[path] = handle
        logger.info("Advertising %s from %s on %s", advertisement.type, path, manager.path)
        return handle

    def _release(self, handle: AdvertisementHandle) -> None:
        # BlueZ already dropped it; only local state is left
        if not handle.registered:
            return
        self._exchange.unexport(handle.path, handle.interface)
        self._handles.pop(handle.path, None)
        handle.registered = False
        logger.info("Advertisement at %s released", handle.path)

    async def unregister(self, handle: AdvertisementHandle) -> None:
        """Unregister from BlueZ and unexport; local state is dropped even on error."""
        if not handle.registered:
            return
        try:
            await handle.manager.unregister_advertisement(handle.path)
        finally:
            self._exchange.unexport(handle.path, handle.interface)
            self._handles.pop(handle.path, None)
            handle.registered = False

    async def unregister_all(self) -> None:
        for handle in list(self._handles.values()):
            try:
                await handle.unregister()
            except BluezError as e:
                logger.warning("Advertisement unregister failed for %s: %s", handle.path, e)
