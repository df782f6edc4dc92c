"""Tests for the typed Adapter, Device, GATT and manager proxies."""

import asyncio

import pytest
from dbus_next import Variant

from bluez_client.bluez.constants import CharacteristicFlag, DescriptorFlag
from bluez_client.bluez.errors import (
    ArgumentError,
    BluezTimeoutError,
    BusConnectionError,
    FailedError,
    InProgressError,
    InvalidPathError,
    NotConnectedError,
    NotFoundError,
    NotPermittedError,
    ServiceUnavailableError,
    UnknownRemoteError,
)
from bluez_client.bluez.gatt import GattCharacteristic

from fakebus import ADAPTER, CHAR, DESC, DEVICE, SERVICE

ADAPTER1 = "org.bluez.Adapter1"
DEVICE1 = "org.bluez.Device1"
CHAR1 = "org.bluez.GattCharacteristic1"


class TestAdapter:
    @pytest.mark.asyncio
    async def test_reads_come_from_mirror(self, client, bus):
        calls_before = len(bus.calls)
        adapter = client.adapter()
        assert adapter.path == ADAPTER
        assert adapter.name == "hci0"
        assert adapter.address == "00:11:22:33:44:55"
        assert adapter.powered is True
        assert adapter.discovering is False
        assert "0000110e-0000-1000-8000-00805f9b34fb" in adapter.uuids
        assert len(bus.calls) == calls_before

    @pytest.mark.asyncio
    async def test_set_powered_is_not_reflected_locally(self, client, bus):
        adapter = client.adapter()
        await adapter.set_powered(False)

        set_call = bus.calls_to("Set")[-1]
        assert set_call.path == ADAPTER
        assert set_call.interface == "org.freedesktop.DBus.Properties"
        assert set_call.body == [ADAPTER1, "Powered", Variant("b", False)]
        assert adapter.powered is True

        bus.properties_changed(ADAPTER, ADAPTER1, {"Powered": Variant("b", False)})
        assert adapter.powered is False

    @pytest.mark.asyncio
    async def test_wait_for_property(self, client, bus):
        adapter = client.adapter()
        waiter = asyncio.create_task(adapter.wait_for_property("Powered", False, timeout=1))
        await asyncio.sleep(0)
        bus.properties_changed(ADAPTER, ADAPTER1, {"Powered": Variant("b", False)})
        assert await waiter is False

    @pytest.mark.asyncio
    async def test_wait_for_property_already_satisfied(self, client):
        assert await client.adapter().wait_for_property("Powered", True, timeout=0.01) is True

    @pytest.mark.asyncio
    async def test_wait_for_property_times_out(self, client):
        with pytest.raises(BluezTimeoutError):
            await client.adapter().wait_for_property("Powered", False, timeout=0.01)

    @pytest.mark.asyncio
    async def test_discovery_calls(self, client, bus):
        adapter = client.adapter()
        await adapter.start_discovery()
        await adapter.stop_discovery()
        assert [m.member for m in bus.calls if m.interface == ADAPTER1] == [
            "StartDiscovery",
            "StopDiscovery",
        ]

    @pytest.mark.asyncio
    async def test_discovery_error_is_mapped(self, client, bus):
        bus.errors[(ADAPTER, ADAPTER1, "StartDiscovery")] = ("org.bluez.Error.InProgress", "busy")
        with pytest.raises(InProgressError) as exc_info:
            await client.adapter().start_discovery()
        assert exc_info.value.code == "org.bluez.Error.InProgress"

    @pytest.mark.asyncio
    async def test_discovery_filter(self, client, bus):
        await client.adapter().set_discovery_filter(rssi=-70, transport="le")
        call = bus.calls_to("SetDiscoveryFilter")[-1]
        assert call.signature == "a{sv}"
        assert call.body == [{"RSSI": Variant("n", -70), "Transport": Variant("s", "le")}]

    @pytest.mark.asyncio
    async def test_discovery_filter_validation(self, client, bus):
        adapter = client.adapter()
        with pytest.raises(ArgumentError):
            await adapter.set_discovery_filter(rssi=-70, pathloss=10)
        with pytest.raises(ArgumentError):
            await adapter.set_discovery_filter(transport="usb")
        with pytest.raises(ArgumentError):
            await adapter.set_discovery_filter(rssi=-200)
        assert not bus.calls_to("SetDiscoveryFilter")

    @pytest.mark.asyncio
    async def test_remove_device(self, client, bus):
        adapter = client.adapter()
        await adapter.remove_device(client.device(DEVICE))
        assert bus.calls_to("RemoveDevice")[-1].body == [DEVICE]

        with pytest.raises(InvalidPathError):
            await adapter.remove_device("/org/bluez/hci1/dev_AA_BB_CC_DD_EE_FF")
        with pytest.raises(InvalidPathError):
            await adapter.remove_device(ADAPTER)
        assert len(bus.calls_to("RemoveDevice")) == 1

    @pytest.mark.asyncio
    async def test_devices(self, client):
        adapter = client.adapter()
        assert adapter.devices() == [client.device(DEVICE)]
        assert adapter.device("aa:bb:cc:dd:ee:ff").path == DEVICE
        assert adapter.summary()["devices"] == 1


class TestDevice:
    @pytest.mark.asyncio
    async def test_properties(self, client):
        device = client.device(DEVICE)
        assert device.address == "AA:BB:CC:DD:EE:FF"
        assert device.name == "Thermometer"
        assert device.rssi == -60
        assert device.paired is False
        assert device.connected is False
        assert device.manufacturer_data == {0x004C: b"\x02\x15"}
        assert device.adapter == client.adapter()

    @pytest.mark.asyncio
    async def test_connect_and_pair(self, client, bus):
        device = client.device(DEVICE)
        await device.connect()
        await device.pair()
        await device.connect_profile("0000110b-0000-1000-8000-00805f9b34fb")
        members = [m.member for m in bus.calls if m.interface == DEVICE1]
        assert members == ["Connect", "Pair", "ConnectProfile"]
        assert bus.calls_to("ConnectProfile")[-1].body == ["0000110b-0000-1000-8000-00805f9b34fb"]

    @pytest.mark.asyncio
    async def test_remote_failure(self, client, bus):
        bus.errors[(DEVICE, DEVICE1, "Connect")] = ("org.bluez.Error.Failed", "Page Timeout")
        with pytest.raises(FailedError) as exc_info:
            await client.device(DEVICE).connect()
        assert exc_info.value.code == "org.bluez.Error.Failed"
        assert exc_info.value.message == "Page Timeout"

    @pytest.mark.asyncio
    async def test_unknown_remote_failure(self, client, bus):
        bus.errors[(DEVICE, DEVICE1, "Pair")] = ("org.bluez.Error.Weird", "???")
        with pytest.raises(UnknownRemoteError) as exc_info:
            await client.device(DEVICE).pair()
        assert exc_info.value.code == "org.bluez.Error.Weird"

    @pytest.mark.asyncio
    async def test_bus_gone(self, client, bus):
        bus.connected = False
        with pytest.raises(BusConnectionError):
            await client.device(DEVICE).connect()
        assert not bus.calls_to("Connect")

    @pytest.mark.asyncio
    async def test_set_trusted(self, client, bus):
        await client.device(DEVICE).set_trusted()
        assert bus.calls_to("Set")[-1].body == [DEVICE1, "Trusted", Variant("b", True)]

    @pytest.mark.asyncio
    async def test_discover_services_requires_connection(self, client, bus):
        with pytest.raises(NotConnectedError):
            await client.device(DEVICE).discover_services(timeout=0.01)

    @pytest.mark.asyncio
    async def test_discover_services_waits_for_resolution(self, client, bus):
        bus.properties_changed(DEVICE, DEVICE1, {"Connected": Variant("b", True)})
        device = client.device(DEVICE)
        task = asyncio.create_task(device.discover_services(timeout=1))
        await asyncio.sleep(0)
        bus.properties_changed(DEVICE, DEVICE1, {"ServicesResolved": Variant("b", True)})
        assert await task == []

    @pytest.mark.asyncio
    async def test_proxy_outlives_object(self, client, bus):
        device = client.device(DEVICE)
        bus.interfaces_removed(DEVICE, [DEVICE1])
        assert not device.exists
        with pytest.raises(NotFoundError):
            device.name


class TestClientLookups:
    @pytest.mark.asyncio
    async def test_wrong_kind(self, client):
        with pytest.raises(InvalidPathError):
            client.device(ADAPTER)
        with pytest.raises(InvalidPathError):
            client.adapter(DEVICE)

    @pytest.mark.asyncio
    async def test_missing_object(self, client):
        with pytest.raises(NotFoundError):
            client.device("/org/bluez/hci0/dev_11_22_33_44_55_66")
        with pytest.raises(NotFoundError):
            client.adapter("/org/bluez/hci1")

    @pytest.mark.asyncio
    async def test_device_by_address(self, client):
        assert client.device_by_address("aa:bb:cc:dd:ee:ff").path == DEVICE

    @pytest.mark.asyncio
    async def test_reads_fail_when_disconnected(self, client, bus):
        device = client.device(DEVICE)
        bus.name_owner_changed(":1.7", "")
        with pytest.raises(ServiceUnavailableError):
            device.connected


class TestGatt:
    @pytest.mark.asyncio
    async def test_tree(self, gatt_client):
        device = gatt_client.device(DEVICE)
        services = await device.discover_services()
        assert [s.path for s in services] == [SERVICE]

        service = services[0]
        assert service.primary is True
        assert service.device == device
        char = service.characteristic("00002A6E-0000-1000-8000-00805F9B34FB")
        assert char.path == CHAR
        assert char.service == service
        (desc,) = char.descriptors()
        assert desc.path == DESC
        assert desc.characteristic == char
        assert desc.flags == {DescriptorFlag.READ, DescriptorFlag.WRITE}

    @pytest.mark.asyncio
    async def test_flags_and_cached_value(self, gatt_client):
        char = gatt_client.gatt_characteristic(CHAR)
        assert char.flags == {
            CharacteristicFlag.READ,
            CharacteristicFlag.NOTIFY,
            CharacteristicFlag.WRITE,
        }
        assert char.value == b"\x10\x09"

    @pytest.mark.asyncio
    async def test_read_value(self, gatt_client, gatt_bus):
        gatt_bus.replies[(CHAR, CHAR1, "ReadValue")] = ("ay", [b"\x01\x02"])
        char = gatt_client.gatt_characteristic(CHAR)
        assert await char.read_value() == b"\x01\x02"
        assert gatt_bus.calls_to("ReadValue")[-1].body == [{}]

        await char.read_value(offset=4)
        assert gatt_bus.calls_to("ReadValue")[-1].body == [{"offset": Variant("q", 4)}]

    @pytest.mark.asyncio
    async def test_write_value(self, gatt_client, gatt_bus):
        char = gatt_client.gatt_characteristic(CHAR)
        await char.write_value(bytearray(b"\x01"), type="command")
        call = gatt_bus.calls_to("WriteValue")[-1]
        assert call.signature == "aya{sv}"
        assert call.body == [b"\x01", {"type": Variant("s", "command")}]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"data": b""},
            {"data": "text"},
            {"data": None},
            {"data": b"\x01", "offset": -1},
            {"data": b"\x01", "offset": 0x10000},
            {"data": b"\x01", "type": "fast"},
        ],
    )
    async def test_write_value_rejected_locally(self, gatt_client, gatt_bus, kwargs):
        char = gatt_client.gatt_characteristic(CHAR)
        with pytest.raises(ArgumentError):
            await char.write_value(**kwargs)
        assert not gatt_bus.calls_to("WriteValue")

    @pytest.mark.asyncio
    async def test_write_value_with_options(self, gatt_client, gatt_bus):
        char = gatt_client.gatt_characteristic(CHAR)
        with pytest.raises(ArgumentError):
            await char.write_value_with_options(b"\x01", {"prepare-authorize": True})
        await char.write_value_with_options(b"\x01", {"offset": 2, "type": "request"})
        assert gatt_bus.calls_to("WriteValue")[-1].body == [
            b"\x01",
            {"offset": Variant("q", 2), "type": Variant("s", "request")},
        ]

    @pytest.mark.asyncio
    async def test_write_failure_is_mapped(self, gatt_client, gatt_bus):
        gatt_bus.errors[(CHAR, CHAR1, "WriteValue")] = (
            "org.bluez.Error.NotPermitted",
            "Write not permitted",
        )
        with pytest.raises(NotPermittedError) as exc_info:
            await gatt_client.gatt_characteristic(CHAR).write_value(b"\x01")
        assert exc_info.value.code == "org.bluez.Error.NotPermitted"

    @pytest.mark.asyncio
    async def test_notifications(self, gatt_client, gatt_bus):
        char = gatt_client.gatt_characteristic(CHAR)
        stream = char.notifications()
        await char.start_notify()
        gatt_bus.properties_changed(CHAR, CHAR1, {"Notifying": Variant("b", True)})
        gatt_bus.properties_changed(CHAR, CHAR1, {"Value": Variant("ay", b"\x11")})
        gatt_bus.properties_changed(CHAR, CHAR1, {"Value": Variant("ay", b"\x12")})

        assert await asyncio.wait_for(stream.__anext__(), 1) == b"\x11"
        assert await asyncio.wait_for(stream.__anext__(), 1) == b"\x12"
        await stream.aclose()
        assert char.notifying is True

    @pytest.mark.asyncio
    async def test_descriptor_write(self, gatt_client, gatt_bus):
        desc = gatt_client.gatt_descriptor(DESC)
        await desc.write_value(b"\x01\x00")
        assert gatt_bus.calls_to("WriteValue")[-1].path == DESC
        with pytest.raises(ArgumentError):
            await desc.write_value(b"")

    @pytest.mark.asyncio
    async def test_wrong_kind_path(self, gatt_client):
        with pytest.raises(InvalidPathError):
            GattCharacteristic(gatt_client.exchange, gatt_client.mirror, SERVICE)


class TestManagers:
    @pytest.mark.asyncio
    async def test_register_profile(self, client, bus):
        await client.profile_manager.register_profile(
            "/org/bluez_client/profile", "0000110b-0000-1000-8000-00805f9b34fb",
            {"Name": "sink", "AutoConnect": True},
        )
        call = bus.calls_to("RegisterProfile")[-1]
        assert call.signature == "osa{sv}"
        assert call.body[2] == {"Name": Variant("s", "sink"), "AutoConnect": Variant("b", True)}

    @pytest.mark.asyncio
    async def test_register_profile_unknown_option(self, client, bus):
        with pytest.raises(ArgumentError):
            await client.profile_manager.register_profile(
                "/org/bluez_client/profile", "0000110b-0000-1000-8000-00805f9b34fb", {"Bogus": 1}
            )
        assert not bus.calls_to("RegisterProfile")

    @pytest.mark.asyncio
    async def test_gatt_manager(self, client, bus):
        await client.adapter().gatt_manager.register_application("/org/bluez_client/app")
        call = bus.calls_to("RegisterApplication")[-1]
        assert call.path == ADAPTER
        assert call.body == ["/org/bluez_client/app", {}]
