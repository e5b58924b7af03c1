"""Domain configuration (synthesis input) and descriptor (synthesis output)."""

from dataclasses import dataclass, field

from fusion_vm.config import STORAGE_POOL
from fusion_vm.models.hardware import BusAddress, UsbDevice


@dataclass(frozen=True)
class DomainConfig:
    """Operator choices for a new guest environment.

    ``host_threads`` reserves the low CPU range ``[0, host_threads)`` for the
    host; every CPU in ``[host_threads, total_threads)`` belongs to the guest.
    """

    name: str
    memory_gb: int
    total_threads: int
    host_threads: int
    disk_size_gb: int
    gpu_address: BusAddress | None = None
    audio_address: BusAddress | None = None
    usb_devices: tuple[UsbDevice, ...] = ()
    installer_images: tuple[str, ...] = ()
    stealth: bool = False  # hide the hypervisor from the guest
    disable_hyperv: bool = False  # drop all Hyper-V enlightenments
    looking_glass: bool = False  # shared-memory video channel
    looking_glass_resolution: str = "1080p"
    scream: bool = False  # shared-memory audio channel
    paired_threads: bool = True  # two hardware threads per core
    storage_pool: str = STORAGE_POOL  # pool holding the main disk volume

    @property
    def volume_name(self) -> str:
        """Storage volume backing the guest's main disk."""
        return f"{self.name}.qcow2"


@dataclass(frozen=True)
class VcpuPin:
    """One vCPU fixed to one physical CPU."""

    vcpu: int
    cpu: int


@dataclass(frozen=True)
class CpuTopology:
    """Guest CPU topology on a single socket."""

    cores: int
    threads: int


@dataclass(frozen=True)
class Firmware:
    """UEFI loader and NVRAM paths."""

    loader: str
    nvram_template: str
    nvram: str


@dataclass(frozen=True)
class FeatureSet:
    """Hypervisor visibility toggles."""

    stealth: bool = False
    disable_hyperv: bool = False


@dataclass(frozen=True)
class DiskDevice:
    """Block device attached to the guest."""

    source: str
    target: str  # e.g., "vda", "sdb"
    device: str = "disk"  # "disk" or "cdrom"
    bus: str = "virtio"
    format: str = "qcow2"
    pool: str | None = None  # set for pool volumes; source is then the volume name

    @property
    def is_cdrom(self) -> bool:
        """Check if this is a read-only optical image."""
        return self.device == "cdrom"


@dataclass(frozen=True)
class PciHostdev:
    """PCI function passed through to the guest."""

    address: BusAddress


@dataclass(frozen=True)
class UsbHostdev:
    """USB device passed through by vendor/product id."""

    vendor_id: str
    product_id: str


@dataclass(frozen=True)
class ShmemDevice:
    """ivshmem region shared between host and guest."""

    name: str
    size_mb: int


@dataclass(frozen=True)
class DomainDescriptor:
    """Complete, immutable hardware description of the guest."""

    name: str
    memory_kib: int
    vcpu_count: int
    vcpu_pins: tuple[VcpuPin, ...]
    emulator_cpuset: str
    iothread_cpuset: str
    topology: CpuTopology
    firmware: Firmware
    features: FeatureSet
    disks: tuple[DiskDevice, ...]
    pci_hostdevs: tuple[PciHostdev, ...] = ()
    usb_hostdevs: tuple[UsbHostdev, ...] = ()
    shmem: tuple[ShmemDevice, ...] = ()
    warnings: tuple[str, ...] = field(default=(), compare=False)

    @property
    def pinned_cpus(self) -> list[int]:
        """Physical CPUs used by vCPU pins, in vCPU order."""
        return [pin.cpu for pin in self.vcpu_pins]

    @property
    def main_disk(self) -> DiskDevice:
        """Boot disk backed by the storage pool volume."""
        return self.disks[0]

    def to_xml(self) -> str:
        """Serialize to libvirt domain XML."""
        from fusion_vm.services.synthesizer import render_domain_xml

        return render_domain_xml(self)
