"""Tests for the ObjectManager mirror: startup, signals, cascades, owner changes."""

import asyncio

import pytest
from dbus_next import Variant

from bluez_client.bluez.errors import NotFoundError, ServiceUnavailableError
from bluez_client.bluez.exchange import BusExchange
from bluez_client.bluez.mirror import MATCH_RULES, MirrorState, ObjectManagerMirror
from bluez_client.bluez.paths import ObjectKind

from fakebus import ADAPTER, DEVICE, FakeBus, adapter_ifaces, base_tree, device_ifaces

DEVICE2 = "/org/bluez/hci0/dev_11_22_33_44_55_66"


async def started(bus: FakeBus) -> ObjectManagerMirror:
    mirror = ObjectManagerMirror(BusExchange(bus))
    await mirror.start()
    return mirror


def paths(objects) -> set[str]:
    return {obj.path for obj in objects}


@pytest.mark.asyncio
async def test_snapshot_after_start():
    bus = FakeBus({ADAPTER: adapter_ifaces(), DEVICE: device_ifaces()})
    mirror = await started(bus)

    assert mirror.state is MirrorState.READY
    snapshot = mirror.snapshot()
    assert paths(snapshot) == {ADAPTER, DEVICE}
    kinds = {obj.path: obj.kind for obj in snapshot}
    assert kinds == {ADAPTER: ObjectKind.ADAPTER, DEVICE: ObjectKind.DEVICE}

    device = mirror.get(DEVICE)
    assert device.has_interface("org.bluez.Device1")
    assert device.get("org.bluez.Device1", "Address") == "AA:BB:CC:DD:EE:FF"
    assert device.get("org.bluez.Device1", "RSSI") == -60


@pytest.mark.asyncio
async def test_startup_installs_rules_before_enumerating(bus):
    await started(bus)
    members = [m.member for m in bus.calls]
    assert members[: len(MATCH_RULES)] == ["AddMatch"] * len(MATCH_RULES)
    assert members.index("GetNameOwner") < members.index("GetManagedObjects")
    assert [m.body[0] for m in bus.calls_to("AddMatch")] == list(MATCH_RULES)
    assert len(bus.handlers) == 1


@pytest.mark.asyncio
async def test_snapshot_is_a_copy(bus):
    mirror = await started(bus)
    obj = mirror.get(DEVICE)
    obj.properties["org.bluez.Device1"]["Name"] = "changed"
    assert mirror.get(DEVICE).get("org.bluez.Device1", "Name") == "Thermometer"


@pytest.mark.asyncio
async def test_get_missing_path(bus):
    mirror = await started(bus)
    with pytest.raises(NotFoundError):
        mirror.get(DEVICE2)
    assert not mirror.contains(DEVICE2)


@pytest.mark.asyncio
async def test_interfaces_added_publishes_addition(bus):
    mirror = await started(bus)
    sub = mirror.subscribe_additions()

    bus.interfaces_added(DEVICE2, device_ifaces(address="11:22:33:44:55:66"))

    added = await sub.next(timeout=1)
    assert added.path == DEVICE2
    assert added.kind is ObjectKind.DEVICE
    assert mirror.contains(DEVICE2)
    assert paths(mirror.children(ADAPTER, ObjectKind.DEVICE)) == {DEVICE, DEVICE2}


@pytest.mark.asyncio
async def test_device_removed(bus):
    mirror = await started(bus)
    removals = mirror.subscribe_removals()

    bus.interfaces_removed(DEVICE, ["org.bluez.Device1", "org.freedesktop.DBus.Properties"])

    assert await removals.next(timeout=1) == DEVICE
    assert not mirror.contains(DEVICE)
    assert mirror.contains(ADAPTER)


@pytest.mark.asyncio
async def test_partial_interface_removal_keeps_object(bus):
    mirror = await started(bus)
    removals = mirror.subscribe_removals()

    bus.interfaces_removed(ADAPTER, ["org.bluez.GattManager1"])

    # Adapter1 survives, so the adapter and its devices stay
    assert mirror.contains(ADAPTER)
    assert mirror.contains(DEVICE)
    assert not mirror.get(ADAPTER).has_interface("org.bluez.GattManager1")
    assert mirror.kind(ADAPTER) is ObjectKind.ADAPTER
    with pytest.raises(asyncio.TimeoutError):
        await removals.next(timeout=0.01)


@pytest.mark.asyncio
async def test_partial_removal_keeps_object_of_unknown_kind():
    tree = base_tree()
    tree["/org/bluez/hci0/extra"] = {"org.bluez.Media1": {}, "org.bluez.NetworkServer1": {}}
    bus = FakeBus(tree)
    mirror = await started(bus)
    assert mirror.kind("/org/bluez/hci0/extra") is ObjectKind.UNKNOWN

    bus.interfaces_removed("/org/bluez/hci0/extra", ["org.bluez.Media1"])

    assert mirror.contains("/org/bluez/hci0/extra")


@pytest.mark.asyncio
async def test_adapter_losing_adapter1_takes_devices_with_it(bus):
    mirror = await started(bus)
    removals = mirror.subscribe_removals()

    bus.interfaces_removed(ADAPTER, ["org.bluez.Adapter1"])

    assert [await removals.next(1) for _ in range(2)] == [DEVICE, ADAPTER]
    assert not mirror.contains(ADAPTER)
    with pytest.raises(NotFoundError):
        mirror.get(DEVICE)


@pytest.mark.asyncio
async def test_device_losing_device1_takes_gatt_objects_with_it(gatt_bus):
    gatt_bus.objects[DEVICE]["org.bluez.Battery1"] = {"Percentage": Variant("y", 80)}
    mirror = await started(gatt_bus)

    gatt_bus.interfaces_removed(DEVICE, ["org.bluez.Device1"])

    assert paths(mirror.snapshot()) == {"/org/bluez", ADAPTER}


@pytest.mark.asyncio
async def test_device_under_parent_of_wrong_kind_is_rejected():
    tree = base_tree()
    tree[ADAPTER] = {"org.bluez.GattManager1": {}}
    mirror = await started(FakeBus(tree))

    assert mirror.kind(ADAPTER) is ObjectKind.UNKNOWN
    with pytest.raises(NotFoundError):
        mirror.get(DEVICE)
    assert mirror.objects(ObjectKind.DEVICE) == []


@pytest.mark.asyncio
async def test_added_device_under_parent_of_wrong_kind_is_rejected(bus):
    mirror = await started(bus)
    bus.interfaces_added("/org/bluez/hci1", {"org.bluez.GattManager1": {}})
    stray = "/org/bluez/hci1/dev_11_22_33_44_55_66"

    bus.interfaces_added(stray, device_ifaces(adapter="/org/bluez/hci1"))

    assert mirror.contains("/org/bluez/hci1")
    assert not mirror.contains(stray)


@pytest.mark.asyncio
async def test_adapter_removal_cascades_deepest_first(gatt_bus):
    mirror = await started(gatt_bus)
    removals = mirror.subscribe_removals()

    gatt_bus.interfaces_removed(ADAPTER, ["org.bluez.Adapter1", "org.bluez.GattManager1"])

    removed = [await removals.next(timeout=1) for _ in range(5)]
    assert removed[-1] == ADAPTER
    assert removed.index(DEVICE) > removed.index(DEVICE + "/service000a")
    assert removed[0].endswith("desc000d")
    assert paths(mirror.snapshot()) == {"/org/bluez"}


@pytest.mark.asyncio
async def test_orphan_is_not_admitted(bus):
    mirror = await started(bus)
    orphan = "/org/bluez/hci1/dev_11_22_33_44_55_66"
    bus.interfaces_added(orphan, device_ifaces(adapter="/org/bluez/hci1"))
    assert not mirror.contains(orphan)


@pytest.mark.asyncio
async def test_orphans_in_initial_tree_are_dropped():
    tree = base_tree()
    tree["/org/bluez/hci1/dev_11_22_33_44_55_66"] = device_ifaces(adapter="/org/bluez/hci1")
    mirror = await started(FakeBus(tree))
    assert paths(mirror.snapshot()) == {"/org/bluez", ADAPTER, DEVICE}


@pytest.mark.asyncio
async def test_signals_during_enumeration_are_replayed():
    bus = FakeBus()

    def race(msg):
        if msg.member == "GetManagedObjects":
            # Both land after the reply was computed from the old tree
            bus.interfaces_removed(DEVICE, ["org.bluez.Device1"])
            bus.interfaces_added(DEVICE2, device_ifaces(address="11:22:33:44:55:66"))

    bus.on_call = race
    mirror = await started(bus)

    assert not mirror.contains(DEVICE)
    assert mirror.contains(DEVICE2)


@pytest.mark.asyncio
async def test_property_changes_during_enumeration_are_applied():
    bus = FakeBus()

    def race(msg):
        if msg.member == "GetManagedObjects":
            bus.properties_changed(DEVICE, "org.bluez.Device1", {"RSSI": Variant("n", -42)})

    bus.on_call = race
    mirror = await started(bus)
    assert mirror.get_property(DEVICE, "org.bluez.Device1", "RSSI") == -42


@pytest.mark.asyncio
async def test_signals_from_other_senders_are_ignored(bus):
    mirror = await started(bus)
    bus.interfaces_added(DEVICE2, device_ifaces(), sender=":1.99")
    assert not mirror.contains(DEVICE2)


@pytest.mark.asyncio
async def test_enumeration_failure_then_reconnect():
    bus = FakeBus()
    bus.enumeration_error = "org.freedesktop.DBus.Error.ServiceUnknown"
    mirror = ObjectManagerMirror(BusExchange(bus))

    with pytest.raises(ServiceUnavailableError):
        await mirror.start()
    assert mirror.state is MirrorState.DISCONNECTED
    with pytest.raises(ServiceUnavailableError):
        mirror.snapshot()

    bus.enumeration_error = None
    await mirror.reconnect()
    assert mirror.state is MirrorState.READY
    assert mirror.contains(DEVICE)


@pytest.mark.asyncio
async def test_bluez_not_on_bus():
    bus = FakeBus()
    bus.owner = None
    mirror = ObjectManagerMirror(BusExchange(bus))
    with pytest.raises(ServiceUnavailableError):
        await mirror.start()
    assert not bus.calls_to("GetManagedObjects")


@pytest.mark.asyncio
async def test_bluez_leaving_disconnects_mirror(bus):
    mirror = await started(bus)
    removals = mirror.subscribe_removals()
    watcher = mirror.watch(DEVICE)

    bus.name_owner_changed(":1.7", "")

    assert mirror.state is MirrorState.DISCONNECTED
    assert [await removals.next(1) for _ in range(3)] == [DEVICE, ADAPTER, "/org/bluez"]
    assert [c async for c in watcher] == []
    with pytest.raises(ServiceUnavailableError):
        mirror.get(ADAPTER)


@pytest.mark.asyncio
async def test_reconnect_after_bluez_restart(bus):
    mirror = await started(bus)
    bus.name_owner_changed(":1.7", "")

    bus.owner = ":1.9"
    bus.name_owner_changed("", ":1.9")
    additions = mirror.subscribe_additions()
    await mirror.reconnect()

    assert mirror.owner == ":1.9"
    assert mirror.contains(DEVICE)
    reloaded = {(await additions.next(1)).path for _ in range(3)}
    assert reloaded == {"/org/bluez", ADAPTER, DEVICE}

    # Signals from the previous owner no longer count
    bus.interfaces_added(DEVICE2, device_ifaces(), sender=":1.7")
    assert not mirror.contains(DEVICE2)
    bus.interfaces_added(DEVICE2, device_ifaces(), sender=":1.9")
    assert mirror.contains(DEVICE2)


@pytest.mark.asyncio
async def test_close_ends_streams(bus):
    mirror = await started(bus)
    additions = mirror.subscribe_additions()
    await mirror.close()

    assert mirror.state is MirrorState.DISCONNECTED
    assert bus.handlers == []
    assert len(bus.calls_to("RemoveMatch")) == len(MATCH_RULES)
    assert [obj async for obj in additions] == []


@pytest.mark.asyncio
async def test_match_rules_are_not_duplicated_after_partial_failure():
    bus = FakeBus()
    add_match = ("/org/freedesktop/DBus", "org.freedesktop.DBus", "AddMatch")
    refused = []

    def refuse_second_rule_once(msg):
        if msg.member == "AddMatch" and msg.body[0] == MATCH_RULES[1] and not refused:
            refused.append(msg)
            bus.errors[add_match] = ("org.freedesktop.DBus.Error.LimitsExceeded", "too many")
        else:
            bus.errors.pop(add_match, None)

    bus.on_call = refuse_second_rule_once
    mirror = ObjectManagerMirror(BusExchange(bus))
    with pytest.raises(ServiceUnavailableError):
        await mirror.start()

    await mirror.reconnect()
    added = [m.body[0] for m in bus.calls_to("AddMatch")]
    assert added == [MATCH_RULES[0], MATCH_RULES[1], MATCH_RULES[1], MATCH_RULES[2]]

    await mirror.close()
    assert sorted(m.body[0] for m in bus.calls_to("RemoveMatch")) == sorted(MATCH_RULES)
