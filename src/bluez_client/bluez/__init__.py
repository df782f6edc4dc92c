"""BlueZ D-Bus interface wrappers: paths, mirror, proxies and exported objects."""

from .adapter import Adapter
from .advertising import Advertisement, AdvertisementHandle, AdvertisingService
from .agent import AgentHandle, Challenge, PairingAgentService, PairingRequest, RequestState
from .application import (
    ApplicationHandle,
    ExportedCharacteristic,
    GattApplication,
    GattApplicationService,
    LocalCharacteristic,
    LocalDescriptor,
    LocalService,
)
from .device import Device
from .gatt import GattCharacteristic, GattDescriptor, GattService
from .managers import AgentManager, GattManager, LEAdvertisingManager, ProfileManager
from .mirror import ManagedObject, MirrorState, ObjectManagerMirror
from .paths import ObjectKind, ObjectPath, kind_of, parent_of, parse
from .properties import PropertyChange

__all__ = [
    "Adapter",
    "Advertisement",
    "AdvertisementHandle",
    "AdvertisingService",
    "AgentHandle",
    "AgentManager",
    "ApplicationHandle",
    "Challenge",
    "Device",
    "ExportedCharacteristic",
    "GattApplication",
    "GattApplicationService",
    "GattCharacteristic",
    "GattDescriptor",
    "GattManager",
    "GattService",
    "LEAdvertisingManager",
    "LocalCharacteristic",
    "LocalDescriptor",
    "LocalService",
    "ManagedObject",
    "MirrorState",
    "ObjectKind",
    "ObjectManagerMirror",
    "ObjectPath",
    "PairingAgentService",
    "PairingRequest",
    "ProfileManager",
    "PropertyChange",
    "RequestState",
    "kind_of",
    "parent_of",
    "parse",
]
