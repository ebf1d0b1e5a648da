"""Tests for the bleak-backed central, adapter enumeration and scan listing."""

import asyncio

import pytest
from bleak.exc import BleakError

from userapp_flasher.errors import TransportError
from userapp_flasher.protocol import ble_transport
from userapp_flasher.protocol.ble_transport import (
    BleakCentral,
    DeviceFilter,
    DeviceUploader,
    PeripheralInfo,
    list_adapters,
    scan_peripherals,
)

from ble_fakes import FakeCentral, peripheral


class FakeDevice:
    def __init__(self, address, details=None):
        self.address = address
        self.details = details


class FakeAdvertisement:
    def __init__(self, local_name=None, rssi=-60, manufacturer_data=None, platform_data=()):
        self.local_name = local_name
        self.rssi = rssi
        self.manufacturer_data = manufacturer_data or {}
        self.platform_data = platform_data


def make_scanner(found, error=None):
    """Build a BleakScanner stand-in reporting ``found`` ({address: (device, adv)})."""

    class FakeScanner:
        created = []

        def __init__(self, **kwargs):
            self.kwargs = kwargs
            self.started = False
            self.stopped = False
            FakeScanner.created.append(self)

        async def start(self):
            if error is not None:
                raise error
            self.started = True

        async def stop(self):
            self.stopped = True

        @property
        def discovered_devices_and_advertisement_data(self):
            return found

    return FakeScanner


class RecordingClient:
    def __init__(self, target, timeout, **kwargs):
        self.target = target
        self.timeout = timeout
        self.kwargs = kwargs


def _scan(central, adapter):
    return asyncio.run(central.scan(adapter, 0))


class TestBleakCentralScan:
    def test_maps_bluez_scan_results(self, monkeypatch):
        device = FakeDevice(
            "AA:BB:CC:DD:EE:01",
            details={"path": "/org/bluez/hci0/dev_AA_BB_CC_DD_EE_01", "props": {"Connected": True}},
        )
        adv = FakeAdvertisement(
            local_name="Ledx",
            rssi=-42,
            manufacturer_data={0x0059: b"\x01\x02"},
            platform_data=("/org/bluez/hci0/dev_AA_BB_CC_DD_EE_01", {"Connected": True}),
        )
        scanner_cls = make_scanner({device.address: (device, adv)})
        monkeypatch.setattr(ble_transport, "BleakScanner", scanner_cls)

        found = _scan(BleakCentral(), "hci0")

        assert scanner_cls.created[0].kwargs == {"adapter": "hci0"}
        assert scanner_cls.created[0].started and scanner_cls.created[0].stopped
        assert len(found) == 1
        p = found[0]
        assert p.address == "AA:BB:CC:DD:EE:01"
        assert p.name == "Ledx"
        assert p.rssi == -42
        assert p.manufacturer_data == {0x0059: b"\x01\x02"}
        assert p.connected is True
        assert p.connectable is None
        assert p.device is device

    def test_reads_corebluetooth_connectable_flag(self, monkeypatch):
        device = FakeDevice("12345678-ABCD-ABCD-ABCD-1234567890AB", details=(object(), object()))
        adv = FakeAdvertisement(
            local_name="Ledx",
            platform_data=(object(), {"kCBAdvDataIsConnectable": 1, "kCBAdvDataLocalName": "Ledx"}, -50),
        )
        scanner_cls = make_scanner({device.address: (device, adv)})
        monkeypatch.setattr(ble_transport, "BleakScanner", scanner_cls)

        found = _scan(BleakCentral(), None)

        assert scanner_cls.created[0].kwargs == {}
        assert found[0].connectable is True
        assert found[0].connected is False

    def test_unnamed_advertisement_has_no_name(self, monkeypatch):
        device = FakeDevice("AA:BB:CC:DD:EE:02", details={"props": {}})
        monkeypatch.setattr(
            ble_transport, "BleakScanner",
            make_scanner({device.address: (device, FakeAdvertisement())}),
        )
        found = _scan(BleakCentral(), "hci0")
        assert found[0].name is None
        assert found[0].connected is False

    @pytest.mark.parametrize(
        "error", [BleakError("adapter not powered"), OSError(19, "No such device")]
    )
    def test_scan_failure_becomes_transport_error(self, monkeypatch, error):
        monkeypatch.setattr(ble_transport, "BleakScanner", make_scanner({}, error=error))
        with pytest.raises(TransportError) as ei:
            _scan(BleakCentral(), "hci1")
        assert "hci1" in str(ei.value)


class TestBleakCentralClient:
    def test_passes_adapter_and_timeout(self, monkeypatch):
        monkeypatch.setattr(ble_transport, "BleakClient", RecordingClient)
        device = FakeDevice("AA:BB:CC:DD:EE:01")
        target = PeripheralInfo(address="AA:BB:CC:DD:EE:01", name="Ledx", device=device)

        client = BleakCentral(connect_timeout=5.0).client_for(target, "hci1")

        assert client.target is device
        assert client.timeout == 5.0
        assert client.kwargs == {"adapter": "hci1"}

    def test_falls_back_to_address_without_adapter(self, monkeypatch):
        monkeypatch.setattr(ble_transport, "BleakClient", RecordingClient)
        target = PeripheralInfo(address="AA:BB:CC:DD:EE:01", name="Ledx")

        client = BleakCentral().client_for(target, None)

        assert client.target == "AA:BB:CC:DD:EE:01"
        assert client.kwargs == {}


class TestListAdapters:
    def test_non_linux_has_single_default_adapter(self, monkeypatch):
        monkeypatch.setattr(ble_transport.sys, "platform", "darwin")
        assert list_adapters() == [None]

    def test_sorted_by_hci_index(self, monkeypatch, tmp_path):
        for name in ("hci10", "hci2", "hci0", "rfkill3"):
            (tmp_path / name).mkdir()
        monkeypatch.setattr(ble_transport.sys, "platform", "linux")
        monkeypatch.setattr(ble_transport, "SYSFS_BLUETOOTH", tmp_path)
        assert list_adapters() == ["hci0", "hci2", "hci10"]

    def test_missing_sysfs_means_no_adapters(self, monkeypatch, tmp_path):
        monkeypatch.setattr(ble_transport.sys, "platform", "linux")
        monkeypatch.setattr(ble_transport, "SYSFS_BLUETOOTH", tmp_path / "bluetooth")
        assert list_adapters() == []

    def test_unreadable_sysfs_is_transport_error(self, monkeypatch, tmp_path):
        not_a_dir = tmp_path / "bluetooth"
        not_a_dir.write_text("")
        monkeypatch.setattr(ble_transport.sys, "platform", "linux")
        monkeypatch.setattr(ble_transport, "SYSFS_BLUETOOTH", not_a_dir)
        with pytest.raises(TransportError):
            list_adapters()


class TestUploaderWithBleakCentral:
    def test_adapter_enumeration_failure_is_fatal(self, monkeypatch, tmp_path):
        not_a_dir = tmp_path / "bluetooth"
        not_a_dir.write_text("")
        monkeypatch.setattr(ble_transport.sys, "platform", "linux")
        monkeypatch.setattr(ble_transport, "SYSFS_BLUETOOTH", not_a_dir)

        uploader = DeviceUploader(DeviceFilter(name="Ledx"), central=BleakCentral(), scan_seconds=0)
        with pytest.raises(TransportError):
            asyncio.run(uploader.upload([b"\x02"]))

    def test_scan_failure_is_fatal(self, monkeypatch):
        monkeypatch.setattr(
            ble_transport, "BleakScanner", make_scanner({}, error=BleakError("powered off"))
        )
        uploader = DeviceUploader(DeviceFilter(name="Ledx"), central=BleakCentral(), scan_seconds=0)
        with pytest.raises(TransportError):
            asyncio.run(uploader.upload([b"\x02"], adapters=["hci0"]))


class TestScanPeripherals:
    def test_keys_results_by_adapter(self):
        central = FakeCentral(
            {"hci0": [], "hci1": [peripheral("Ledx", "AA:BB:CC:DD:EE:01")]}
        )
        results = asyncio.run(scan_peripherals(central=central, duration=0))
        assert list(results) == ["hci0", "hci1"]
        assert results["hci0"] == []
        assert results["hci1"][0].name == "Ledx"

    def test_default_adapter_label(self):
        central = FakeCentral({None: [peripheral("Ledx", "AA:BB:CC:DD:EE:01")]})
        results = asyncio.run(scan_peripherals(central=central, duration=0))
        assert list(results) == ["default"]

    def test_scan_error_propagates(self):
        central = FakeCentral({"hci0": []}, scan_error="hci0")
        with pytest.raises(TransportError):
            asyncio.run(scan_peripherals(central=central, duration=0))
