"""Shared fixtures built on the in-memory fake bus."""

import pytest
import pytest_asyncio

from bluez_client.client import BluezClient
from fakebus import DEVICE, FakeBus, base_tree, device_ifaces, gatt_ifaces


@pytest.fixture
def bus() -> FakeBus:
    return FakeBus()


@pytest.fixture
def gatt_bus() -> FakeBus:
    tree = base_tree()
    tree[DEVICE] = device_ifaces(connected=True, resolved=True)
    tree.update(gatt_ifaces())
    return FakeBus(tree)


@pytest_asyncio.fixture
async def client(bus):
    c = BluezClient(bus)
    await c.start()
    yield c
    await c.close()


@pytest_asyncio.fixture
async def gatt_client(gatt_bus):
    c = BluezClient(gatt_bus)
    await c.start()
    yield c
    await c.close()
