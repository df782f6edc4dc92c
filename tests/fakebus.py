"""In-memory stand-in for a connected dbus-next bus, plus canned BlueZ trees."""

from __future__ import annotations

import copy
import itertools

from dbus_next import Message, MessageType, Variant

BLUEZ_OWNER = ":1.7"

ADAPTER = "/org/bluez/hci0"
DEVICE = "/org/bluez/hci0/dev_AA_BB_CC_DD_EE_FF"
SERVICE = DEVICE + "/service000a"
CHAR = SERVICE + "/char000b"
DESC = CHAR + "/desc000d"


def adapter_ifaces(address: str = "00:11:22:33:44:55", powered: bool = True) -> dict:
    return {
        "org.bluez.Adapter1": {
            "Address": Variant("s", address),
            "AddressType": Variant("s", "public"),
            "Name": Variant("s", "host"),
            "Alias": Variant("s", "host"),
            "Powered": Variant("b", powered),
            "Discoverable": Variant("b", False),
            "Pairable": Variant("b", True),
            "Discovering": Variant("b", False),
            "UUIDs": Variant("as", ["0000110e-0000-1000-8000-00805f9b34fb"]),
        },
        "org.bluez.GattManager1": {},
        "org.bluez.LEAdvertisingManager1": {
            "ActiveInstances": Variant("y", 0),
            "SupportedInstances": Variant("y", 5),
            "SupportedIncludes": Variant("as", ["tx-power", "appearance", "local-name"]),
        },
        "org.freedesktop.DBus.Properties": {},
    }


def device_ifaces(
    address: str = "AA:BB:CC:DD:EE:FF",
    adapter: str = ADAPTER,
    connected: bool = False,
    resolved: bool = False,
) -> dict:
    return {
        "org.bluez.Device1": {
            "Address": Variant("s", address),
            "AddressType": Variant("s", "random"),
            "Name": Variant("s", "Thermometer"),
            "Alias": Variant("s", "Thermometer"),
            "Paired": Variant("b", False),
            "Connected": Variant("b", connected),
            "Trusted": Variant("b", False),
            "Blocked": Variant("b", False),
            "ServicesResolved": Variant("b", resolved),
            "Adapter": Variant("o", adapter),
            "RSSI": Variant("n", -60),
            "UUIDs": Variant("as", ["0000181a-0000-1000-8000-00805f9b34fb"]),
            "ManufacturerData": Variant("a{qv}", {0x004C: Variant("ay", b"\x02\x15")}),
        },
        "org.freedesktop.DBus.Properties": {},
    }


def gatt_ifaces() -> dict:
    return {
        SERVICE: {
            "org.bluez.GattService1": {
                "UUID": Variant("s", "0000181a-0000-1000-8000-00805f9b34fb"),
                "Primary": Variant("b", True),
                "Device": Variant("o", DEVICE),
            }
        },
        CHAR: {
            "org.bluez.GattCharacteristic1": {
                "UUID": Variant("s", "00002a6e-0000-1000-8000-00805f9b34fb"),
                "Service": Variant("o", SERVICE),
                "Flags": Variant("as", ["read", "notify", "write", "vendor-specific"]),
                "Notifying": Variant("b", False),
                "Value": Variant("ay", b"\x10\x09"),
            }
        },
        DESC: {
            "org.bluez.GattDescriptor1": {
                "UUID": Variant("s", "00002902-0000-1000-8000-00805f9b34fb"),
                "Characteristic": Variant("o", CHAR),
                "Flags": Variant("as", ["read", "write"]),
            }
        },
    }


def base_tree() -> dict:
    return {
        "/org/bluez": {
            "org.bluez.AgentManager1": {},
            "org.bluez.ProfileManager1": {},
        },
        ADAPTER: adapter_ifaces(),
        DEVICE: device_ifaces(),
    }


class FakeBus:
    """Answers method calls from canned data and delivers injected signals."""

    def __init__(self, objects: dict | None = None):
        self.connected = True
        self.objects = objects if objects is not None else base_tree()
        self.handlers: list = []
        self.calls: list[Message] = []
        self.exported: dict = {}
        self.replies: dict = {}
        self.errors: dict = {}
        self.owner: str | None = BLUEZ_OWNER
        self.enumeration_error: str | None = None
        self.on_call = None
        self._serial = itertools.count(1)

    # -- MessageBus surface used by the client --

    async def call(self, msg: Message) -> Message:
        msg.serial = next(self._serial)
        self.calls.append(msg)
        if self.on_call is not None:
            self.on_call(msg)

        key = (msg.path, msg.interface, msg.member)
        if key in self.errors:
            name, text = self.errors[key]
            return Message.new_error(msg, name, text)
        if msg.member in ("AddMatch", "RemoveMatch"):
            return Message.new_method_return(msg)
        if msg.member == "GetNameOwner":
            if self.owner is None:
                return Message.new_error(
                    msg, "org.freedesktop.DBus.Error.NameHasNoOwner", "no owner"
                )
            return Message.new_method_return(msg, "s", [self.owner])
        if msg.member == "GetManagedObjects":
            if self.enumeration_error:
                return Message.new_error(msg, self.enumeration_error, "enumeration failed")
            return Message.new_method_return(
                msg, "a{oa{sa{sv}}}", [copy.deepcopy(self.objects)]
            )
        if key in self.replies:
            signature, body = self.replies[key]
            return Message.new_method_return(msg, signature, body)
        return Message.new_method_return(msg)

    def add_message_handler(self, handler) -> None:
        self.handlers.append(handler)

    def remove_message_handler(self, handler) -> None:
        if handler in self.handlers:
            self.handlers.remove(handler)

    def export(self, path, interface) -> None:
        exported = self.exported.setdefault(path, [])
        if any(i.name == interface.name for i in exported):
            raise ValueError(f"{interface.name} already exported at {path}")
        exported.append(interface)

    def unexport(self, path, interface=None) -> None:
        exported = self.exported.get(path, [])
        if interface is None:
            exported.clear()
        elif interface in exported:
            exported.remove(interface)
        if not exported:
            self.exported.pop(path, None)

    def exported_at(self, path):
        """The single interface exported at *path*."""
        (interface,) = self.exported[path]
        return interface

    def disconnect(self) -> None:
        self.connected = False

    # -- test helpers --

    def calls_to(self, member: str) -> list[Message]:
        return [m for m in self.calls if m.member == member]

    def emit(self, path, interface, member, signature, body, sender=BLUEZ_OWNER) -> None:
        msg = Message(
            message_type=MessageType.SIGNAL,
            path=path,
            interface=interface,
            member=member,
            signature=signature,
            body=body,
            sender=sender,
        )
        for handler in list(self.handlers):
            handler(msg)

    def interfaces_added(self, path: str, interfaces: dict, sender=BLUEZ_OWNER) -> None:
        self.emit(
            "/", "org.freedesktop.DBus.ObjectManager", "InterfacesAdded",
            "oa{sa{sv}}", [path, interfaces], sender,
        )

    def interfaces_removed(self, path: str, names: list[str]) -> None:
        self.emit(
            "/", "org.freedesktop.DBus.ObjectManager", "InterfacesRemoved",
            "oas", [path, names],
        )

    def properties_changed(self, path, interface, changed: dict, invalidated=None) -> None:
        self.emit(
            path, "org.freedesktop.DBus.Properties", "PropertiesChanged",
            "sa{sv}as", [interface, changed, invalidated or []],
        )

    def name_owner_changed(self, old: str, new: str) -> None:
        self.emit(
            "/org/freedesktop/DBus", "org.freedesktop.DBus", "NameOwnerChanged",
            "sss", ["org.bluez", old, new], sender="org.freedesktop.DBus",
        )
