"""Hardware inventory: PCI and USB enumeration, CPU count, installer images."""

import logging
import os
import re
from pathlib import Path

from fusion_vm.config import ISO_DIR
from fusion_vm.models import BusAddress, DeviceClass, HardwareInventory, PciDevice, UsbDevice
from fusion_vm.services.executor import CommandExecutor

logger = logging.getLogger(__name__)

# Pattern: 01:00.0 VGA compatible controller [0300]: NVIDIA Corporation GA104 [10de:2484] (rev a1)
_PCI_LINE = re.compile(
    r"^(?:[0-9a-f]{4}:)?([0-9a-f]{2}:[0-9a-f]{2}\.[0-7])\s+"
    r"(.+?)(?:\s+\[[0-9a-f]{4}\])?:\s+"
    r"(.+?)\s+\[([0-9a-f]{4}:[0-9a-f]{4})\]",
    re.IGNORECASE,
)
_DRIVER_LINE = re.compile(r"^\s+Kernel driver in use:\s*(\S+)")

# Pattern: Bus 001 Device 002: ID 046d:c52b Logitech, Inc. Unifying Receiver
_USB_LINE = re.compile(
    r"Bus\s+(\d+)\s+Device\s+(\d+):\s+ID\s+([0-9a-f]{4}):([0-9a-f]{4})\s*(.*)",
    re.IGNORECASE,
)

# Linux Foundation (virtual root hubs)
_USB_SYSTEM_VENDOR = "1d6b"


def parse_lspci(text: str) -> list[PciDevice]:
    """Parse ``lspci -nnk`` output into devices, in listing order."""
    devices: list[PciDevice] = []
    current: dict[str, object] | None = None

    def flush() -> None:
        if current is not None:
            devices.append(PciDevice(**current))  # type: ignore[arg-type]

    for line in text.splitlines():
        head = _PCI_LINE.match(line)
        if head:
            flush()
            current = {
                "address": BusAddress.parse(head.group(1)),
                "name": head.group(3).strip(),
                "vendor_device_id": head.group(4).lower(),
                "device_class": DeviceClass.from_description(head.group(2)),
                "driver": "",
            }
            continue

        driver = _DRIVER_LINE.match(line)
        if driver and current is not None:
            current["driver"] = driver.group(1)

    flush()
    return devices


def parse_lsusb(text: str) -> list[UsbDevice]:
    """Parse ``lsusb`` output, skipping root hubs."""
    devices: list[UsbDevice] = []

    for line in text.strip().splitlines():
        match = _USB_LINE.match(line.strip())
        if not match:
            continue

        bus, device, vendor_id, product_id, name = match.groups()
        vendor_id = vendor_id.lower()
        if vendor_id == _USB_SYSTEM_VENDOR or "root hub" in name.lower():
            continue

        devices.append(UsbDevice(
            vendor_id=vendor_id,
            product_id=product_id.lower(),
            name=name.strip(),
            bus=bus,
            device=device,
        ))

    return devices


class HardwareInventoryReader:
    """Reads the host's hardware inventory on demand."""

    def __init__(self, executor: CommandExecutor | None = None, iso_dir: Path | None = None) -> None:
        self.executor = executor or CommandExecutor()
        self.iso_dir = iso_dir or ISO_DIR

    def list_pci_devices(self) -> list[PciDevice]:
        """List PCI devices with class, ids and bound driver.

        Raises ExternalCommandError if ``lspci`` fails.
        """
        return parse_lspci(self.executor.run(["lspci", "-nnk"]).check().stdout)

    def list_usb_devices(self) -> list[UsbDevice]:
        """List USB devices available for passthrough."""
        return parse_lsusb(self.executor.run(["lsusb"]).check().stdout)

    def logical_cpu_count(self) -> int:
        """Number of logical CPUs (hardware threads)."""
        result = self.executor.run(["nproc", "--all"])
        if result.ok:
            try:
                return int(result.stdout.strip())
            except ValueError:
                logger.warning("Unexpected nproc output: %r", result.stdout)
        return os.cpu_count() or 1

    def list_available_images(self) -> list[str]:
        """Installer ISO file names in the essentials directory."""
        if not self.iso_dir.is_dir():
            return []
        try:
            return sorted(p.name for p in self.iso_dir.iterdir() if p.suffix.lower() == ".iso")
        except OSError as e:
            logger.warning("Cannot list %s: %s", self.iso_dir, e)
            return []

    def list_gpus(self) -> list[tuple[PciDevice, PciDevice | None]]:
        """GPUs paired with their companion audio function."""
        inventory = HardwareInventory(pci_devices=self.list_pci_devices())
        return [(gpu, inventory.companion_audio(gpu)) for gpu in inventory.gpus()]

    def find_display_device(self) -> PciDevice | None:
        """First VGA or 3D class device on the bus."""
        gpus = HardwareInventory(pci_devices=self.list_pci_devices()).gpus()
        return gpus[0] if gpus else None

    def read(self) -> HardwareInventory:
        """Read the complete inventory."""
        return HardwareInventory(
            pci_devices=self.list_pci_devices(),
            usb_devices=self.list_usb_devices(),
            total_logical_cpus=self.logical_cpu_count(),
            available_images=self.list_available_images(),
        )
