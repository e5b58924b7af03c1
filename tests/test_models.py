"""Tests for fusion_vm.models."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from fusion_vm.exceptions import ConfigurationError
from fusion_vm.models import (
    ArbitrationConfig,
    BusAddress,
    DeviceClass,
    HardwareInventory,
    PciDevice,
    Snapshot,
    UsbDevice,
)


class TestBusAddress:
    @pytest.mark.parametrize("text", ["01:00.0", "0a:00.0", "ff:1f.7", "00:02.0"])
    def test_canonical_text_round_trips(self, text):
        assert str(BusAddress.parse(text)) == text

    def test_hex_bus_is_not_decimal(self):
        address = BusAddress.parse("0a:00.0")
        assert address.bus == 10
        assert str(address) == "0a:00.0"

    @pytest.mark.parametrize("text", ["0000:01:00.1", "pci_0000_01_00_1", " 01:00.1 "])
    def test_accepts_domain_and_nodedev_forms(self, text):
        assert BusAddress.parse(text) == BusAddress(1, 0, 1)

    @pytest.mark.parametrize("text", ["", "01:00", "1:2:3", "01:00.8", "zz:00.0", "0001:01:00.0"])
    def test_rejects_malformed(self, text):
        with pytest.raises(ConfigurationError):
            BusAddress.parse(text)

    def test_range_checked_on_construction(self):
        with pytest.raises(ConfigurationError):
            BusAddress(0, 32, 0)
        with pytest.raises(ConfigurationError):
            BusAddress(256, 0, 0)

    def test_derived_names(self):
        address = BusAddress(0x0A, 0, 1)
        assert address.sysfs_name == "0000:0a:00.1"
        assert address.nodedev_name == "pci_0000_0a_00_1"
        assert address.xml_attributes() == {
            "domain": "0x0000",
            "bus": "0x0a",
            "slot": "0x00",
            "function": "0x1",
        }

    def test_sibling_shares_device(self):
        gpu = BusAddress(1, 0, 0)
        assert gpu.sibling(1) == BusAddress(1, 0, 1)
        assert gpu.same_device(gpu.sibling(1))
        assert not gpu.same_device(BusAddress(2, 0, 0))


class TestDeviceClass:
    @pytest.mark.parametrize(
        "description, expected",
        [
            ("VGA compatible controller", DeviceClass.VGA),
            ("Display controller", DeviceClass.VGA),
            ("3D controller", DeviceClass.THREE_D),
            ("Audio device", DeviceClass.AUDIO),
            ("Non-Volatile memory controller", DeviceClass.OTHER),
        ],
    )
    def test_from_description(self, description, expected):
        assert DeviceClass.from_description(description) is expected

    def test_display_classes(self):
        assert DeviceClass.VGA.is_display
        assert DeviceClass.THREE_D.is_display
        assert not DeviceClass.AUDIO.is_display


class TestHardwareInventory:
    def _inventory(self):
        return HardwareInventory(pci_devices=[
            PciDevice(BusAddress(1, 0, 1), "HDMI Audio", "10de:228b", DeviceClass.AUDIO),
            PciDevice(BusAddress(1, 0, 0), "RTX 3070", "10de:2484", DeviceClass.VGA, "nvidia"),
            PciDevice(BusAddress(0, 2, 0), "UHD 770", "8086:4680", DeviceClass.VGA, "i915"),
            PciDevice(BusAddress(0, 0x1F, 3), "PCH Audio", "8086:7ad0", DeviceClass.AUDIO),
        ])

    def test_gpus_in_bus_order(self):
        names = [gpu.name for gpu in self._inventory().gpus()]
        assert names == ["UHD 770", "RTX 3070"]

    def test_companion_audio_same_slot_only(self):
        inventory = self._inventory()
        nvidia, intel = inventory.gpus()[1], inventory.gpus()[0]
        assert inventory.companion_audio(nvidia).address == BusAddress(1, 0, 1)
        assert inventory.companion_audio(intel) is None

    def test_device_at(self):
        inventory = self._inventory()
        assert inventory.device_at(BusAddress(1, 0, 0)).vendor_id == "10de"
        assert inventory.device_at(BusAddress(9, 0, 0)) is None


class TestUsbDevice:
    def test_parse_normalizes_case(self):
        device = UsbDevice.parse("046D:C52B")
        assert device.id_string == "046d:c52b"

    def test_parse_rejects_garbage(self):
        with pytest.raises(ConfigurationError):
            UsbDevice.parse("logitech")


class TestArbitrationConfig:
    def test_host_threads_must_leave_guest_cpus(self):
        with pytest.raises(ConfigurationError):
            ArbitrationConfig(total_threads=4, host_threads=4, last_environment_name="w")
        with pytest.raises(ConfigurationError):
            ArbitrationConfig(total_threads=4, host_threads=0, last_environment_name="w")

    def test_dict_round_trip(self, arbitration_config):
        data = arbitration_config.to_dict()
        assert data["last_gpu_address"] == "01:00.0"
        assert ArbitrationConfig.from_dict(data) == arbitration_config

    def test_from_dict_missing_key(self):
        with pytest.raises(ConfigurationError):
            ArbitrationConfig.from_dict({"total_threads": 16})


class TestSnapshot:
    def test_age_display(self):
        now = datetime(2026, 3, 10, 12, 0)
        snap = Snapshot("pre-update", "", now - timedelta(hours=5), "running")
        assert snap.age_display(now) == "5h ago"
        assert Snapshot("old", "", now - timedelta(days=3), "shutoff").age_display(now) == "3d ago"
