"""Hardware-related models."""

import re
from dataclasses import dataclass, field
from enum import Enum

from fusion_vm.exceptions import ConfigurationError

# Accepts "0a:00.0", "0000:0a:00.0" and libvirt node-device names "pci_0000_0a_00_0"
_ADDRESS_PATTERN = re.compile(
    r"^(?:([0-9a-f]{4}):)?([0-9a-f]{1,2}):([0-9a-f]{1,2})\.([0-7])$",
    re.IGNORECASE,
)
_NODEDEV_PATTERN = re.compile(
    r"^pci_([0-9a-f]{4})_([0-9a-f]{2})_([0-9a-f]{2})_([0-7])$",
    re.IGNORECASE,
)


@dataclass(frozen=True, order=True)
class BusAddress:
    """PCI bus/slot/function triple on PCI domain 0000."""

    bus: int
    slot: int
    function: int

    def __post_init__(self) -> None:
        if not 0 <= self.bus <= 0xFF:
            raise ConfigurationError(f"PCI bus out of range: {self.bus}")
        if not 0 <= self.slot <= 0x1F:
            raise ConfigurationError(f"PCI slot out of range: {self.slot}")
        if not 0 <= self.function <= 0x7:
            raise ConfigurationError(f"PCI function out of range: {self.function}")

    @classmethod
    def parse(cls, text: str) -> "BusAddress":
        """Parse ``bb:ss.f`` (optionally domain-prefixed) or a node-device name."""
        value = text.strip()
        match = _ADDRESS_PATTERN.match(value) or _NODEDEV_PATTERN.match(value)
        if match is None:
            raise ConfigurationError(f"Unparsable PCI address: {text!r}")

        domain, bus, slot, function = match.groups()
        if domain is not None and int(domain, 16) != 0:
            raise ConfigurationError(f"Only PCI domain 0000 is supported: {text!r}")

        return cls(bus=int(bus, 16), slot=int(slot, 16), function=int(function, 16))

    def __str__(self) -> str:
        return f"{self.bus:02x}:{self.slot:02x}.{self.function:x}"

    @property
    def sysfs_name(self) -> str:
        """Name under /sys/bus/pci/devices."""
        return f"0000:{self}"

    @property
    def nodedev_name(self) -> str:
        """libvirt node-device name, e.g. ``pci_0000_01_00_0``."""
        return f"pci_0000_{self.bus:02x}_{self.slot:02x}_{self.function:x}"

    def xml_attributes(self) -> dict[str, str]:
        """Attributes of a libvirt ``<address>`` element."""
        return {
            "domain": "0x0000",
            "bus": f"0x{self.bus:02x}",
            "slot": f"0x{self.slot:02x}",
            "function": f"0x{self.function:x}",
        }

    def sibling(self, function: int) -> "BusAddress":
        """Another function of the same physical device."""
        return BusAddress(bus=self.bus, slot=self.slot, function=function)

    def same_device(self, other: "BusAddress") -> bool:
        """Check if both addresses share a bus and slot."""
        return self.bus == other.bus and self.slot == other.slot


class DeviceClass(Enum):
    """Coarse PCI device class."""

    VGA = "VGA"
    THREE_D = "3D"
    AUDIO = "AUDIO"
    OTHER = "OTHER"

    @property
    def is_display(self) -> bool:
        """Check if the class drives a display or compute GPU."""
        return self in (DeviceClass.VGA, DeviceClass.THREE_D)

    @classmethod
    def from_description(cls, description: str) -> "DeviceClass":
        """Classify an lspci class description."""
        lowered = description.lower()
        if "vga" in lowered or "display controller" in lowered:
            return cls.VGA
        if "3d controller" in lowered:
            return cls.THREE_D
        if "audio" in lowered:
            return cls.AUDIO
        return cls.OTHER


@dataclass(frozen=True)
class PciDevice:
    """PCI device as enumerated on the host."""

    address: BusAddress
    name: str  # e.g., "NVIDIA Corporation GA104 [GeForce RTX 3070]"
    vendor_device_id: str  # e.g., "10de:2484"
    device_class: DeviceClass = DeviceClass.OTHER
    driver: str = ""  # Kernel driver in use, "" when unbound

    @property
    def vendor_id(self) -> str:
        """PCI vendor id, e.g. ``10de``."""
        return self.vendor_device_id.split(":", 1)[0]

    @property
    def is_vfio_bound(self) -> bool:
        """Check if the device is bound to vfio-pci."""
        return self.driver == "vfio-pci"

    @property
    def full_description(self) -> str:
        """Full description with PCI address."""
        return f"[{self.address}] {self.name} [{self.vendor_device_id}]"


@dataclass(frozen=True)
class UsbDevice:
    """USB device for passthrough."""

    vendor_id: str  # e.g., "046d"
    product_id: str  # e.g., "c52b"
    name: str = ""
    bus: str = ""
    device: str = ""

    @classmethod
    def parse(cls, id_string: str) -> "UsbDevice":
        """Build an identity from a ``vendor:product`` string."""
        match = re.match(r"^([0-9a-f]{4}):([0-9a-f]{4})$", id_string.strip(), re.IGNORECASE)
        if match is None:
            raise ConfigurationError(f"Invalid USB id (expected vvvv:pppp): {id_string!r}")
        return cls(vendor_id=match.group(1).lower(), product_id=match.group(2).lower())

    @property
    def id_string(self) -> str:
        """Get vendor:product ID string."""
        return f"{self.vendor_id}:{self.product_id}"

    @property
    def full_description(self) -> str:
        """Full description with IDs."""
        return f"[{self.id_string}] {self.name}".rstrip()


@dataclass
class HardwareInventory:
    """Snapshot of the host's enumerable hardware. Re-read on demand."""

    pci_devices: list[PciDevice] = field(default_factory=list)
    usb_devices: list[UsbDevice] = field(default_factory=list)
    total_logical_cpus: int = 0
    available_images: list[str] = field(default_factory=list)

    def gpus(self) -> list[PciDevice]:
        """Display and 3D class devices, in bus order."""
        return sorted(
            (dev for dev in self.pci_devices if dev.device_class.is_display),
            key=lambda d: d.address,
        )

    def companion_audio(self, gpu: PciDevice) -> PciDevice | None:
        """The audio function sharing the GPU's bus and slot, if any."""
        for dev in self.pci_devices:
            if dev.device_class is DeviceClass.AUDIO and dev.address.same_device(gpu.address):
                return dev
        return None

    def device_at(self, address: BusAddress) -> PciDevice | None:
        """Look up a PCI device by address."""
        for dev in self.pci_devices:
            if dev.address == address:
                return dev
        return None
