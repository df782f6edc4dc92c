"""Typed asyncio/blocking client for BlueZ's D-Bus object tree."""

from .blocking import BlockingClient, BlockingRunner
from .bluez import errors
from .bluez.adapter import Adapter
from .bluez.advertising import Advertisement
from .bluez.agent import Challenge, PairingRequest
from .bluez.application import GattApplication, LocalCharacteristic, LocalDescriptor, LocalService
from .bluez.device import Device
from .bluez.gatt import GattCharacteristic, GattDescriptor, GattService
from .bluez.mirror import ManagedObject
from .bluez.paths import ObjectKind, ObjectPath
from .bluez.properties import PropertyChange
from .client import BluezClient
from .config import ClientConfig

__version__ = "0.1.0"

__all__ = [
    "Adapter",
    "Advertisement",
    "BlockingClient",
    "BlockingRunner",
    "BluezClient",
    "Challenge",
    "ClientConfig",
    "Device",
    "GattApplication",
    "GattCharacteristic",
    "GattDescriptor",
    "GattService",
    "LocalCharacteristic",
    "LocalDescriptor",
    "LocalService",
    "ManagedObject",
    "ObjectKind",
    "ObjectPath",
    "PairingRequest",
    "PropertyChange",
    "errors",
]
