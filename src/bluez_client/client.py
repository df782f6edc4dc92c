"""Asyncio client façade over BlueZ.

Owns the bus handle, the object mirror and the services that export agents,
GATT applications and advertisements.  Hands out typed proxies for objects
in the mirror.
"""

import logging
from typing import Iterable

from dbus_next import BusType
from dbus_next.aio import MessageBus

from .bluez.adapter import Adapter
from .bluez.advertising import Advertisement, AdvertisementHandle, AdvertisingService
from .bluez.agent import AgentHandle, Challenge, DecisionHandler, PairingAgentService
from .bluez.application import ApplicationHandle, GattApplication, GattApplicationService, LocalService
from .bluez.device import Device
from .bluez.errors import BusConnectionError, NotFoundError
from .bluez.exchange import BusExchange
from .bluez.gatt import GattCharacteristic, GattDescriptor, GattService
from .bluez.managers import AgentManager, GattManager, LEAdvertisingManager, ProfileManager
from .bluez.mirror import ManagedObject, MirrorState, ObjectManagerMirror
from .bluez.paths import ObjectKind, ObjectPath, address_to_path
from .bluez.properties import PropertyChange
from .config import ClientConfig
from .events import Subscription

logger = logging.getLogger(__name__)


class BluezClient:
    """Typed access to BlueZ adapters, devices and GATT objects."""

    def __init__(self, bus: MessageBus, config: ClientConfig | None = None, owns_bus: bool = False):
        self.config = config or ClientConfig()
        self._bus = bus
        self._owns_bus = owns_bus
        self.exchange = BusExchange(bus)
        self.mirror = ObjectManagerMirror(self.exchange)
        self.agent_manager = AgentManager(self.exchange, self.mirror)
        self.profile_manager = ProfileManager(self.exchange, self.mirror)
        self.agents = PairingAgentService(
            self.exchange, self.agent_manager, self.config.agent_timeout_seconds
        )
        self.applications = GattApplicationService(self.exchange)
        self.advertising = AdvertisingService(self.exchange)

    @classmethod
    async def connect(cls, config: ClientConfig | None = None) -> "BluezClient":
        """Connect to the configured bus and start the mirror."""
        config = config or ClientConfig()
        bus_type = BusType.SESSION if config.bus_type == "session" else BusType.SYSTEM
        try:
            bus = await MessageBus(bus_type=bus_type).connect()
        except (OSError, EOFError) as e:
            raise BusConnectionError(f"cannot connect to the {config.bus_type} bus: {e}") from e
        logger.info("Connected to %s D-Bus", config.bus_type)
        client = cls(bus, config, owns_bus=True)
        try:
            await client.start()
        except Exception:
            bus.disconnect()
            raise
        return client

    @property
    def bus(self) -> MessageBus:
        return self._bus

    @property
    def state(self) -> MirrorState:
        return self.mirror.state

    async def start(self) -> None:
        await self.mirror.start()

    async def reconnect(self) -> None:
        await self.mirror.reconnect()

    async def close(self) -> None:
        """Unregister everything exported, stop the mirror and drop an owned bus."""
        if self.exchange.connected:
            await self.advertising.unregister_all()
            await self.applications.unregister_all()
            await self.agents.unregister_all()
        await self.mirror.close()
        if self._owns_bus:
            self._bus.disconnect()
            logger.info("Disconnected from D-Bus")

    async def __aenter__(self) -> "BluezClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # -- mirror access --

    def snapshot(self) -> set[ManagedObject]:
        return self.mirror.snapshot()

    def get(self, path: str) -> ManagedObject:
        return self.mirror.get(path)

    def subscribe_additions(self) -> Subscription[ManagedObject]:
        return self.mirror.subscribe_additions()

    def subscribe_removals(self) -> Subscription[ObjectPath]:
        return self.mirror.subscribe_removals()

    def watch(self, path: str, interface: str | None = None) -> Subscription[PropertyChange]:
        return self.mirror.watch(path, interface)

    # -- typed constructors --

    def _existing(self, proxy):
        if not self.mirror.contains(proxy.path):
            raise NotFoundError(proxy.path)
        return proxy

    def adapters(self) -> list[Adapter]:
        return [
            Adapter(self.exchange, self.mirror, obj.path)
            for obj in self.mirror.objects(ObjectKind.ADAPTER)
        ]

    def adapter(self, path: str | None = None) -> Adapter:
        """Adapter at *path*, or the configured/first adapter."""
        if path is None and self.config.adapter != "auto":
            path = self.config.adapter
        if path is None:
            adapters = self.adapters()
            if not adapters:
                raise NotFoundError("adapter", "no Bluetooth adapter present")
            return adapters[0]
        return self._existing(Adapter(self.exchange, self.mirror, path))

    def device(self, path: str) -> Device:
        return self._existing(Device(self.exchange, self.mirror, path))

    def device_by_address(self, address: str, adapter: str | None = None) -> Device:
        adapter_path = adapter or self.adapter().path
        return self.device(address_to_path(address, adapter_path))

    def devices(self) -> list[Device]:
        return [
            Device(self.exchange, self.mirror, obj.path)
            for obj in self.mirror.objects(ObjectKind.DEVICE)
        ]

    def gatt_service(self, path: str) -> GattService:
        return self._existing(GattService(self.exchange, self.mirror, path))

    def gatt_characteristic(self, path: str) -> GattCharacteristic:
        return self._existing(GattCharacteristic(self.exchange, self.mirror, path))

    def gatt_descriptor(self, path: str) -> GattDescriptor:
        return self._existing(GattDescriptor(self.exchange, self.mirror, path))

    # -- pairing agent --

    async def register_agent(
        self,
        challenges: Challenge,
        handler: DecisionHandler,
        path: str | None = None,
        default: bool = True,
    ) -> AgentHandle:
        return await self.agents.register(
            challenges, handler, path=path or self.config.agent_path, default=default
        )

    # -- local GATT applications and advertising --

    def gatt_manager(self, adapter: str | None = None) -> GattManager:
        """GattManager1 of *adapter* (default: the configured adapter)."""
        return self._manager(GattManager, adapter)

    def advertising_manager(self, adapter: str | None = None) -> LEAdvertisingManager:
        """LEAdvertisingManager1 of *adapter* (default: the configured adapter)."""
        return self._manager(LEAdvertisingManager, adapter)

    def _manager(self, cls, adapter: str | None):
        path = self.adapter(adapter).path
        if not self.mirror.get(path).has_interface(cls.INTERFACE):
            raise NotFoundError(path, f"adapter does not provide {cls.INTERFACE}")
        return cls(self.exchange, self.mirror, path)

    async def register_application(
        self,
        application: GattApplication | Iterable[LocalService],
        adapter: str | None = None,
    ) -> ApplicationHandle:
        """Export a GATT application and register it on *adapter*.

        A plain list of services is wrapped in an application at the
        default path.
        """
        if not isinstance(application, GattApplication):
            application = GattApplication(application)
        return await self.applications.register(application, self.gatt_manager(adapter))

    async def register_advertisement(
        self,
        advertisement: Advertisement,
        adapter: str | None = None,
        path: str | None = None,
    ) -> AdvertisementHandle:
        return await self.advertising.register(
            advertisement, self.advertising_manager(adapter), path=path
        )
