"""Tests for fusion_vm.services.inventory."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from fusion_vm.exceptions import ExternalCommandError
from fusion_vm.models import BusAddress, DeviceClass
from fusion_vm.services.inventory import HardwareInventoryReader, parse_lspci, parse_lsusb


class TestParseLspci:
    def test_parses_devices_and_drivers(self, lspci_output):
        devices = parse_lspci(lspci_output)
        assert [str(d.address) for d in devices] == ["00:02.0", "01:00.0", "01:00.1", "0a:00.0"]

        nvidia = devices[1]
        assert nvidia.name == "NVIDIA Corporation GA104 [GeForce RTX 3070]"
        assert nvidia.vendor_device_id == "10de:2484"
        assert nvidia.device_class is DeviceClass.VGA
        assert nvidia.driver == "nvidia"
        assert devices[2].device_class is DeviceClass.AUDIO
        assert devices[3].device_class is DeviceClass.OTHER

    def test_device_without_driver_line(self):
        text = "01:00.0 VGA compatible controller [0300]: NVIDIA Corporation GA104 [10de:2484] (rev a1)\n"
        (device,) = parse_lspci(text)
        assert device.driver == ""

    def test_domain_prefixed_address(self):
        text = (
            "0000:01:00.0 3D controller [0302]: NVIDIA Corporation GA100 [10de:20b0]\n"
            "\tKernel driver in use: vfio-pci\n"
        )
        (device,) = parse_lspci(text)
        assert device.address == BusAddress(1, 0, 0)
        assert device.device_class is DeviceClass.THREE_D
        assert device.is_vfio_bound


class TestParseLsusb:
    def test_skips_root_hubs(self, lsusb_output):
        devices = parse_lsusb(lsusb_output)
        assert [d.id_string for d in devices] == ["046d:c52b", "1532:0084"]
        assert devices[0].name == "Logitech, Inc. Unifying Receiver"
        assert devices[0].bus == "001"


class TestHardwareInventoryReader:
    def test_read_full_inventory(self, host_executor, tmp_path):
        (tmp_path / "Win11_24H2.iso").touch()
        (tmp_path / "virtio-win.iso").touch()
        (tmp_path / "notes.txt").touch()

        inventory = HardwareInventoryReader(host_executor, iso_dir=tmp_path).read()
        assert len(inventory.pci_devices) == 4
        assert len(inventory.usb_devices) == 2
        assert inventory.total_logical_cpus == 16
        assert inventory.available_images == ["Win11_24H2.iso", "virtio-win.iso"]

    def test_list_gpus_pairs_audio(self, host_executor):
        pairs = HardwareInventoryReader(host_executor).list_gpus()
        assert [(str(g.address), a and str(a.address)) for g, a in pairs] == [
            ("00:02.0", None),
            ("01:00.0", "01:00.1"),
        ]

    def test_find_display_device_is_first_on_bus(self, host_executor):
        device = HardwareInventoryReader(host_executor).find_display_device()
        assert device.address == BusAddress(0, 2, 0)

    def test_pci_enumeration_failure_raises(self, executor):
        executor.on("lspci", returncode=1, stderr="lspci: Cannot open /sys/bus/pci/devices")
        reader = HardwareInventoryReader(executor)
        with pytest.raises(ExternalCommandError) as excinfo:
            reader.find_display_device()
        assert excinfo.value.returncode == 1
        assert "Cannot open /sys/bus/pci" in excinfo.value.output

    def test_usb_enumeration_failure_raises(self, executor):
        executor.on("lsusb", returncode=127, stderr="lsusb: command not found")
        with pytest.raises(ExternalCommandError, match="command not found"):
            HardwareInventoryReader(executor).list_usb_devices()

    def test_cpu_count_falls_back(self, executor):
        executor.on("nproc", returncode=127)
        with patch("fusion_vm.services.inventory.os.cpu_count", return_value=12):
            assert HardwareInventoryReader(executor).logical_cpu_count() == 12

    def test_missing_iso_dir(self, executor, tmp_path):
        reader = HardwareInventoryReader(executor, iso_dir=tmp_path / "missing")
        assert reader.list_available_images() == []
