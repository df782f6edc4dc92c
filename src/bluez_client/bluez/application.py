"""Local GATT applications exported to BlueZ (the GATT server role).

An application is a tree of services, characteristics and descriptors
exported beneath one root path::

    /org/bluez_client/app
    /org/bluez_client/app/service0
    /org/bluez_client/app/service0/char0
    /org/bluez_client/app/service0/char0/desc0

After ``GattManager1.RegisterApplication`` BlueZ reads the tree with
``org.freedesktop.DBus.ObjectManager.GetManagedObjects`` on the root path.
dbus-next answers that call itself from the interfaces exported beneath the
root, so nothing here exports an ObjectManager; :meth:`GattApplication.managed_objects`
builds the same reply locally.

Remote centrals reach the exported objects through ReadValue/WriteValue and
StartNotify/StopNotify.  The local side updates a value with
:meth:`ExportedCharacteristic.set_value` and follows remote writes with
:meth:`ExportedCharacteristic.writes`.
"""

import logging
import uuid as uuid_lib
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from dbus_next import Variant
from dbus_next.constants import PropertyAccess
from dbus_next.errors import DBusError
from dbus_next.service import ServiceInterface, dbus_property, method

from ..events import EventBus, Subscription
from .constants import (
    APPLICATION_PATH,
    BASE_UUID_SUFFIX,
    ERROR_INVALID_OFFSET,
    ERROR_NOT_PERMITTED,
    ERROR_NOT_SUPPORTED,
    GATT_CHARACTERISTIC_INTERFACE,
    GATT_DESCRIPTOR_INTERFACE,
    GATT_SERVICE_INTERFACE,
    CharacteristicFlag,
    DescriptorFlag,
)
from .errors import AlreadyExistsError, AlreadyRegisteredError, ArgumentError, BluezError, NotFoundError
from .exchange import BusExchange, unpack_variants
from .managers import GattManager
from .paths import ObjectPath

logger = logging.getLogger(__name__)

_READ_FLAGS = frozenset({
    "read", "encrypt-read", "encrypt-authenticated-read", "secure-read",
})
_WRITE_FLAGS = frozenset({
    "write", "write-without-response", "reliable-write", "authenticated-signed-writes",
    "encrypt-write", "encrypt-authenticated-write", "secure-write",
})
_NOTIFY_FLAGS = frozenset({
    "notify", "indicate", "encrypt-notify", "encrypt-indicate",
    "encrypt-authenticated-notify", "encrypt-authenticated-indicate",
    "secure-notify", "secure-indicate",
})


def normalize_uuid(value: Any) -> str:
    """Return *value* as a lowercase 128-bit UUID string.

    16- and 32-bit short forms ("180f", "0000180f") are expanded with the
    Bluetooth Base UUID.
    """
    text = str(value).strip().lower()
    if len(text) in (4, 8):
        try:
            short = int(text, 16)
        except ValueError:
            raise ArgumentError(f"not a UUID: {value!r}") from None
        return f"{short:08x}{BASE_UUID_SUFFIX}"
    try:
        return str(uuid_lib.UUID(text))
    except ValueError:
        raise ArgumentError(f"not a UUID: {value!r}") from None


def _flag_values(flags: Iterable, flag_type) -> tuple[str, ...]:
    values = []
    for flag in flags:
        try:
            values.append(flag_type(flag).value)
        except ValueError:
            raise ArgumentError(f"unknown {flag_type.__name__} {flag!r}") from None
    return tuple(values)


def exported_properties(interface: ServiceInterface) -> dict[str, Variant]:
    """Current values of every enabled, readable property of *interface*."""
    return {
        prop.name: Variant(prop.signature, getattr(interface, prop.prop_getter.__name__))
        for prop in ServiceInterface._get_properties(interface)
        if not prop.disabled and prop.access.readable()
    }


def _offset(options: dict) -> int:
    offset = unpack_variants(options or {}).get("offset", 0)
    if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
        raise DBusError(ERROR_INVALID_OFFSET, f"Invalid offset {offset!r}")
    return offset


def _read_at(value: bytes, options: dict) -> bytes:
    offset = _offset(options)
    if offset > len(value):
        raise DBusError(ERROR_INVALID_OFFSET, f"Offset {offset} beyond {len(value)} byte value")
    return value[offset:]


def _write_at(current: bytes, data: bytes, options: dict) -> bytes:
    # Bytes past the written range are dropped; a long write rebuilds the value
    offset = _offset(options)
    if offset > len(current):
        raise DBusError(ERROR_INVALID_OFFSET, f"Offset {offset} beyond {len(current)} byte value")
    return current[:offset] + bytes(data)


# ── Definitions ──────────────────────────────────────────────────────


@dataclass
class LocalDescriptor:
    uuid: str
    flags: Sequence[DescriptorFlag | str] = (DescriptorFlag.READ,)
    value: bytes = b""


@dataclass
class LocalCharacteristic:
    uuid: str
    flags: Sequence[CharacteristicFlag | str] = (CharacteristicFlag.READ,)
    value: bytes = b""
    descriptors: list[LocalDescriptor] = field(default_factory=list)


@dataclass
class LocalService:
    uuid: str
    primary: bool = True
    characteristics: list[LocalCharacteristic] = field(default_factory=list)


# ── Exported objects ─────────────────────────────────────────────────


class ExportedService(ServiceInterface):
    """org.bluez.GattService1 served from this process."""

    def __init__(self, path: ObjectPath, definition: LocalService):
        super().__init__(GATT_SERVICE_INTERFACE)
        self.path = path
        self.uuid = normalize_uuid(definition.uuid)
        self.primary = bool(definition.primary)
        self.characteristics: list[ExportedCharacteristic] = []

    @dbus_property(access=PropertyAccess.READ)
    def UUID(self) -> "s":
        return self.uuid

    @dbus_property(access=PropertyAccess.READ)
    def Primary(self) -> "b":
        return self.primary


class ExportedCharacteristic(ServiceInterface):
    """org.bluez.GattCharacteristic1 served from this process.

    The D-Bus methods only unpack their arguments; the behaviour lives in
    :meth:`read`, :meth:`write`, :meth:`start_notify` and :meth:`stop_notify`.
    """

    def __init__(self, path: ObjectPath, service_path: ObjectPath, definition: LocalCharacteristic):
        super().__init__(GATT_CHARACTERISTIC_INTERFACE)
        self.path = path
        self.service_path = service_path
        self.uuid = normalize_uuid(definition.uuid)
        self.flags = _flag_values(definition.flags, CharacteristicFlag)
        self.notifying = False
        self.descriptors: list[ExportedDescriptor] = []
        self._value = bytes(definition.value)
        self._writes: EventBus[bytes] = EventBus(f"writes {path}")

    @property
    def value(self) -> bytes:
        return self._value

    def set_value(self, value: bytes) -> None:
        """Replace the value; subscribed centrals are notified."""
        self._value = bytes(value)
        if self.notifying:
            self.emit_properties_changed({"Value": self._value})
            logger.debug("Notified %d byte(s) on %s", len(self._value), self.path)

    def writes(self) -> Subscription[bytes]:
        """Stream of the full value after every remote write."""
        return self._writes.subscribe()

    def read(self, options: dict) -> bytes:
        if not _READ_FLAGS.intersection(self.flags):
            raise DBusError(ERROR_NOT_PERMITTED, f"Read not permitted on {self.uuid}")
        return _read_at(self._value, options)

    def write(self, data: bytes, options: dict) -> None:
        if not _WRITE_FLAGS.intersection(self.flags):
            raise DBusError(ERROR_NOT_PERMITTED, f"Write not permitted on {self.uuid}")
        self._value = _write_at(self._value, data, options)
        logger.debug("Remote write of %d byte(s) to %s", len(data), self.path)
        self._writes.emit(self._value)

    def start_notify(self) -> None:
        if not _NOTIFY_FLAGS.intersection(self.flags):
            raise DBusError(ERROR_NOT_SUPPORTED, f"{self.uuid} does not notify")
        if self.notifying:
            return
        self.notifying = True
        self.emit_properties_changed({"Notifying": True})
        logger.info("Notifications started on %s", self.path)

    def stop_notify(self) -> None:
        if not self.notifying:
            return
        self.notifying = False
        self.emit_properties_changed({"Notifying": False})
        logger.info("Notifications stopped on %s", self.path)

    @dbus_property(access=PropertyAccess.READ)
    def UUID(self) -> "s":
        return self.uuid

    @dbus_property(access=PropertyAccess.READ)
    def Service(self) -> "o":
        return self.service_path

    @dbus_property(access=PropertyAccess.READ)
    def Flags(self) -> "as":
        return list(self.flags)

    @dbus_property(access=PropertyAccess.READ)
    def Descriptors(self) -> "ao":
        return [d.path for d in self.descriptors]

    @dbus_property(access=PropertyAccess.READ)
    def Notifying(self) -> "b":
        return self.notifying

    @dbus_property(access=PropertyAccess.READ)
    def Value(self) -> "ay":
        return self._value

    @method()
    def ReadValue(self, options: "a{sv}") -> "ay":
        return self.read(options)

    @method()
    def WriteValue(self, value: "ay", options: "a{sv}") -> None:
        self.write(value, options)

    @method()
    def StartNotify(self) -> None:
        self.start_notify()

    @method()
    def StopNotify(self) -> None:
        self.stop_notify()

    @method()
    def Confirm(self) -> None:
        logger.debug("Indication confirmed on %s", self.path)


class ExportedDescriptor(ServiceInterface):
    """org.bluez.GattDescriptor1 served from this process."""

    def __init__(self, path: ObjectPath, characteristic_path: ObjectPath, definition: LocalDescriptor):
        super().__init__(GATT_DESCRIPTOR_INTERFACE)
        self.path = path
        self.characteristic_path = characteristic_path
        self.uuid = normalize_uuid(definition.uuid)
        self.flags = _flag_values(definition.flags, DescriptorFlag)
        self.value = bytes(definition.value)

    def read(self, options: dict) -> bytes:
        if not _READ_FLAGS.intersection(self.flags):
            raise DBusError(ERROR_NOT_PERMITTED, f"Read not permitted on {self.uuid}")
        return _read_at(self.value, options)

    def write(self, data: bytes, options: dict) -> None:
        if not _WRITE_FLAGS.intersection(self.flags):
            raise DBusError(ERROR_NOT_PERMITTED, f"Write not permitted on {self.uuid}")
        self.value = _write_at(self.value, data, options)

    @dbus_property(access=PropertyAccess.READ)
    def UUID(self) -> "s":
        return self.uuid

    @dbus_property(access=PropertyAccess.READ)
    def Characteristic(self) -> "o":
        return self.characteristic_path

    @dbus_property(access=PropertyAccess.READ)
    def Flags(self) -> "as":
        return list(self.flags)

    @dbus_property(access=PropertyAccess.READ)
    def Value(self) -> "ay":
        return self.value

    @method()
    def ReadValue(self, options: "a{sv}") -> "ay":
        return self.read(options)

    @method()
    def WriteValue(self, value: "ay", options: "a{sv}") -> None:
        self.write(value, options)


class GattApplication:
    """A tree of exported GATT objects under one root path."""

    def __init__(self, services: Iterable[LocalService], path: str = APPLICATION_PATH):
        self.path = ObjectPath(path)
        self.services: list[ExportedService] = []
        for i, service_def in enumerate(services):
            service = ExportedService(self.path.child(f"service{i}"), service_def)
            for j, char_def in enumerate(service_def.characteristics):
                char = ExportedCharacteristic(service.path.child(f"char{j}"), service.path, char_def)
                for k, desc_def in enumerate(char_def.descriptors):
                    char.descriptors.append(
                        ExportedDescriptor(char.path.child(f"desc{k}"), char.path, desc_def)
                    )
                service.characteristics.append(char)
            self.services.append(service)
        if not self.services:
            raise ArgumentError("a GATT application needs at least one service")

    def objects(self) -> list[ServiceInterface]:
        """Every exported object, parents before children."""
        result: list[ServiceInterface] = []
        for service in self.services:
            result.append(service)
            for char in service.characteristics:
                result.append(char)
                result.extend(char.descriptors)
        return result

    def characteristic(self, uuid: str) -> ExportedCharacteristic:
        wanted = normalize_uuid(uuid)
        for service in self.services:
            for char in service.characteristics:
                if char.uuid == wanted:
                    return char
        raise NotFoundError(self.path, f"no characteristic {wanted}")

    def managed_objects(self) -> dict[str, dict[str, dict[str, Variant]]]:
        """The GetManagedObjects reply BlueZ receives for this application."""
        return {obj.path: {obj.name: exported_properties(obj)} for obj in self.objects()}

    def export(self, exchange: BusExchange) -> None:
        for obj in self.objects():
            exchange.export(obj.path, obj)

    def unexport(self, exchange: BusExchange) -> None:
        for obj in reversed(self.objects()):
            exchange.unexport(obj.path, obj)


class ApplicationHandle:
    """A registered application; unregister() is the only way to drop it."""

    def __init__(self, service: "GattApplicationService", application: GattApplication, manager: GattManager):
        self._service = service
        self.application = application
        self.manager = manager
        self.registered = True

    @property
    def path(self) -> ObjectPath:
        return self.application.path

    @property
    def adapter(self) -> ObjectPath:
        return self.manager.path

    async def unregister(self) -> None:
        await self._service.unregister(self)

    def __repr__(self) -> str:
        return f"ApplicationHandle({str(self.path)!r}, adapter={str(self.adapter)!r})"


class GattApplicationService:
    """Exports GATT applications and registers them with BlueZ."""

    def __init__(self, exchange: BusExchange):
        self._exchange = exchange
        self._handles: dict[ObjectPath, ApplicationHandle] = {}

    @property
    def applications(self) -> list[ApplicationHandle]:
        return list(self._handles.values())

    async def register(self, application: GattApplication, manager: GattManager) -> ApplicationHandle:
        """Export *application* and register it through *manager*.

        The objects are unexported again when BlueZ refuses the
        registration.  Raises AlreadyRegisteredError when the root path is
        already in use.
        """
        if application.path in self._handles:
            raise AlreadyRegisteredError(f"an application is already registered at {application.path}")

        application.export(self._exchange)
        try:
            await manager.register_application(application.path)
        except BluezError as e:
            application.unexport(self._exchange)
            if isinstance(e, AlreadyExistsError):
                raise AlreadyRegisteredError(f"BlueZ refused application at {application.path}: {e}") from e
            raise

        handle = ApplicationHandle(self, application, manager)
        self._handles[application.path] = handle
        logger.info(
            "GATT application at %s serving %d service(s) on %s",
            application.path, len(application.services), manager.path,
        )
        return handle

    async def unregister(self, handle: ApplicationHandle) -> None:
        """Unregister from BlueZ and unexport; local state is dropped even on error."""
        if not handle.registered:
            return
        try:
            await handle.manager.unregister_application(handle.path)
        finally:
            handle.application.unexport(self._exchange)
            self._handles.pop(handle.path, None)
            handle.registered = False

    async def unregister_all(self) -> None:
        for handle in list(self._handles.values()):
            try:
                await handle.unregister()
            except BluezError as e:
                logger.warning("Application unregister failed for %s: %s", handle.path, e)
