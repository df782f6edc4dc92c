"""Object path parsing and kind inference for BlueZ's object tree.

BlueZ lays its objects out as::

    /org/bluez/hci0                                         adapter
    /org/bluez/hci0/dev_AA_BB_CC_DD_EE_FF                   device
    /org/bluez/hci0/dev_AA_BB_CC_DD_EE_FF/service000a       GATT service
    /org/bluez/hci0/dev_.../service000a/char000b            GATT characteristic
    /org/bluez/hci0/dev_.../service000a/char000b/desc000d   GATT descriptor

Everything here works on path shape alone and never consults the mirror.
"""

import enum
import re

from .constants import BLUEZ_ROOT_PATH, DEFAULT_ADAPTER_PATH
from .errors import InvalidPathError

_SEGMENT_RE = re.compile(r"^[A-Za-z0-9_]+$")
_ADAPTER_RE = re.compile(r"^hci[0-9]+$")
_DEVICE_RE = re.compile(r"^dev(_[0-9A-Fa-f]{2}){6}$")
_SERVICE_RE = re.compile(r"^service[0-9A-Fa-f]{4,}$")
_CHARACTERISTIC_RE = re.compile(r"^char[0-9A-Fa-f]{4,}$")
_DESCRIPTOR_RE = re.compile(r"^desc[0-9A-Fa-f]{4,}$")

_BLUEZ_ROOT_SEGMENTS = ("org", "bluez")


class ObjectKind(enum.Enum):
    ADAPTER = "adapter"
    DEVICE = "device"
    SERVICE = "service"
    CHARACTERISTIC = "characteristic"
    DESCRIPTOR = "descriptor"
    UNKNOWN = "unknown"


# kind -> (segment pattern, kind of the immediate parent)
_HIERARCHY = {
    ObjectKind.DEVICE: (_DEVICE_RE, ObjectKind.ADAPTER),
    ObjectKind.SERVICE: (_SERVICE_RE, ObjectKind.DEVICE),
    ObjectKind.CHARACTERISTIC: (_CHARACTERISTIC_RE, ObjectKind.SERVICE),
    ObjectKind.DESCRIPTOR: (_DESCRIPTOR_RE, ObjectKind.CHARACTERISTIC),
}

PARENT_KIND = {kind: parent for kind, (_, parent) in _HIERARCHY.items()}


class ObjectPath(str):
    """A validated, immutable D-Bus object path.

    Behaves as a plain ``str`` so it can be handed to dbus-next and used as
    a dict key interchangeably with the raw string.
    """

    __slots__ = ()

    def __new__(cls, raw: str) -> "ObjectPath":
        if isinstance(raw, ObjectPath):
            return raw
        if not isinstance(raw, str):
            raise InvalidPathError(f"object path must be a string, got {type(raw).__name__}")
        if raw != "/":
            if not raw.startswith("/") or raw.endswith("/"):
                raise InvalidPathError(f"malformed object path: {raw!r}")
            for segment in raw[1:].split("/"):
                if not _SEGMENT_RE.match(segment):
                    raise InvalidPathError(
                        f"invalid segment {segment!r} in object path {raw!r}"
                    )
        return super().__new__(cls, raw)

    @property
    def segments(self) -> tuple[str, ...]:
        if self == "/":
            return ()
        return tuple(self[1:].split("/"))

    @property
    def name(self) -> str:
        """Last path segment ('' for the root path)."""
        return self.rsplit("/", 1)[-1]

    @property
    def kind(self) -> ObjectKind:
        return kind_of(self)

    @property
    def parent(self) -> "ObjectPath | None":
        return parent_of(self)

    def child(self, segment: str) -> "ObjectPath":
        if self == "/":
            return ObjectPath(f"/{segment}")
        return ObjectPath(f"{self}/{segment}")

    def __repr__(self) -> str:
        return f"ObjectPath({str.__repr__(self)})"


def parse(raw: str) -> ObjectPath:
    """Validate *raw* and return it as an :class:`ObjectPath`."""
    return ObjectPath(raw)


def kind_of(path: str) -> ObjectKind:
    """Infer the object kind from the shape of *path*.

    Inference is depth-consistent: a ``charXXXX`` segment is only a
    characteristic when the path above it is a service, and so on.
    """
    segments = ObjectPath(path).segments
    if len(segments) < 3 or segments[:2] != _BLUEZ_ROOT_SEGMENTS:
        return ObjectKind.UNKNOWN
    if not _ADAPTER_RE.match(segments[2]):
        return ObjectKind.UNKNOWN

    kind = ObjectKind.ADAPTER
    for segment in segments[3:]:
        for child_kind, (pattern, parent_kind) in _HIERARCHY.items():
            if parent_kind is kind and pattern.match(segment):
                kind = child_kind
                break
        else:
            return ObjectKind.UNKNOWN
    return kind


def parent_of(path: str) -> ObjectPath | None:
    """Return the structural parent of *path*.

    Adapters sit at the root of the hierarchy and unknown paths have no
    structural parent; both return None.
    """
    path = ObjectPath(path)
    if kind_of(path) in (ObjectKind.ADAPTER, ObjectKind.UNKNOWN):
        return None
    return ObjectPath(path.rsplit("/", 1)[0])


def is_descendant(path: str, ancestor: str) -> bool:
    """True when *path* lies strictly beneath *ancestor*."""
    if ancestor == "/":
        return path != "/"
    return path.startswith(ancestor + "/")


def ancestor_of_kind(path: str, kind: ObjectKind) -> ObjectPath | None:
    """Walk up from *path* to the nearest ancestor (or self) of *kind*."""
    current: ObjectPath | None = ObjectPath(path)
    while current is not None:
        if kind_of(current) is kind:
            return current
        current = parent_of(current)
    return None


def address_to_path(address: str, adapter_path: str = DEFAULT_ADAPTER_PATH) -> ObjectPath:
    """Convert a MAC address to a BlueZ device object path."""
    if not re.match(r"^([0-9A-Fa-f]{2}:){5}[0-9A-Fa-f]{2}$", address):
        raise InvalidPathError(f"not a Bluetooth address: {address!r}")
    adapter_path = ObjectPath(adapter_path)
    if kind_of(adapter_path) is not ObjectKind.ADAPTER:
        raise InvalidPathError(f"{adapter_path} is not an adapter path")
    return adapter_path.child(f"dev_{address.upper().replace(':', '_')}")


def path_to_address(path: str) -> str:
    """Extract the MAC address from a device path (or any path beneath one)."""
    device_path = ancestor_of_kind(path, ObjectKind.DEVICE)
    if device_path is None:
        raise InvalidPathError(f"{path} is not a device path")
    return device_path.name[4:].replace("_", ":").upper()


def adapter_name(path: str) -> str:
    """Return the hciN name of the adapter owning *path*."""
    adapter_path = ancestor_of_kind(path, ObjectKind.ADAPTER)
    if adapter_path is None:
        raise InvalidPathError(f"{path} is not under an adapter")
    return adapter_path.name


def is_bluez_path(path: str) -> bool:
    return path == BLUEZ_ROOT_PATH or path.startswith(BLUEZ_ROOT_PATH + "/")
