"""Domain descriptor synthesis: operator choices to libvirt domain XML.

``synthesize`` is pure. It validates a ``DomainConfig``, computes the CPU pin
table and device list, and returns an immutable ``DomainDescriptor``;
``render_domain_xml`` turns that descriptor into the document libvirt defines.

Pinning: vCPU ``i`` runs on physical CPU ``i + host_threads``, so the pin
table is a bijection onto the guest range and never touches the host-reserved
CPUs. The emulator and io threads stay on the host range.

Feature flags: ``stealth`` hides KVM and presents a retail SMBIOS identity;
``disable_hyperv`` removes every Hyper-V enlightenment and clears the
hypervisor CPUID bit. Setting both is a legitimate power-user combination for
anti-VM-detection, but the guest loses paravirtual timers and spinlock hints,
so timer accuracy and performance degrade.
"""

import logging
import re
import xml.etree.ElementTree as ET
from pathlib import Path

from fusion_vm.config import (
    DEFAULT_NETWORK,
    EMULATOR_PATH,
    ISO_DIR,
    LOOKING_GLASS_SIZES_MB,
    MACHINE_TYPE,
    NVRAM_DIR,
    OVMF_CODE,
    OVMF_VARS_TEMPLATE,
    SCREAM_SIZE_MB,
    STEALTH_MANUFACTURER,
    STEALTH_PRODUCT,
)
from fusion_vm.exceptions import ConfigurationError
from fusion_vm.models import (
    CpuTopology,
    DiskDevice,
    DomainConfig,
    DomainDescriptor,
    FeatureSet,
    Firmware,
    PciHostdev,
    ShmemDevice,
    UsbHostdev,
    VcpuPin,
)
from fusion_vm.utils.cpuset import format_cpuset

logger = logging.getLogger(__name__)

_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")

LOOKING_GLASS_SHMEM = "looking-glass"
SCREAM_SHMEM = "scream-ivshmem"

# cdrom targets run sdb..sdz
MAX_INSTALLER_IMAGES = 25

# Hyper-V enlightenments, in libvirt schema order
_HYPERV_FEATURES: tuple[str, ...] = (
    "relaxed",
    "vapic",
    "spinlocks",
    "vpindex",
    "runtime",
    "synic",
    "stimer",
    "tlbflush",
    "ipi",
    "avic",
)


def _validate(config: DomainConfig) -> None:
    """Raise ConfigurationError for any constraint violation."""
    if not _NAME_PATTERN.match(config.name):
        raise ConfigurationError(f"Invalid environment name: {config.name!r}")
    if config.memory_gb < 1:
        raise ConfigurationError(f"Memory must be at least 1 GB, got {config.memory_gb}")
    if config.disk_size_gb < 1:
        raise ConfigurationError(f"Disk size must be at least 1 GB, got {config.disk_size_gb}")
    if config.total_threads < 2:
        raise ConfigurationError(f"Need at least 2 logical CPUs, got {config.total_threads}")
    if not 1 <= config.host_threads < config.total_threads:
        raise ConfigurationError(
            f"Host threads must be in [1, {config.total_threads}), got {config.host_threads}"
        )
    if len(config.installer_images) > MAX_INSTALLER_IMAGES:
        raise ConfigurationError(
            f"At most {MAX_INSTALLER_IMAGES} installer images can be attached, "
            f"got {len(config.installer_images)}"
        )
    if not config.storage_pool:
        raise ConfigurationError("Storage pool name must not be empty")

    gpu, audio = config.gpu_address, config.audio_address
    if (gpu is None) != (audio is None):
        missing = "audio" if audio is None else "GPU"
        raise ConfigurationError(
            f"GPU and its audio function must be passed through together ({missing} function missing)"
        )
    if gpu is not None and audio is not None:
        if gpu == audio:
            raise ConfigurationError(f"GPU and audio function share an address: {gpu}")
        if not gpu.same_device(audio):
            raise ConfigurationError(
                f"Audio function {audio} is not a companion of GPU {gpu}"
            )


def _topology(config: DomainConfig, vcpu_count: int, warnings: list[str]) -> CpuTopology:
    if not config.paired_threads:
        return CpuTopology(cores=vcpu_count, threads=1)
    if vcpu_count >= 2 and vcpu_count % 2 == 0:
        return CpuTopology(cores=vcpu_count // 2, threads=2)

    warnings.append(
        f"{vcpu_count} guest vCPUs cannot form two-thread cores; "
        f"using {vcpu_count} single-thread cores instead"
    )
    return CpuTopology(cores=vcpu_count, threads=1)


def _disks(config: DomainConfig) -> tuple[DiskDevice, ...]:
    disks = [DiskDevice(source=config.volume_name, target="vda", pool=config.storage_pool)]
    for index, image in enumerate(config.installer_images):
        source = Path(image) if Path(image).is_absolute() else ISO_DIR / image
        disks.append(DiskDevice(
            source=str(source),
            target=f"sd{chr(ord('b') + index)}",
            device="cdrom",
            bus="sata",
            format="raw",
        ))
    return tuple(disks)


def looking_glass_size_mb(resolution: str) -> int:
    """Shared-memory buffer size for a resolution tier.

    Unknown tiers get the smallest buffer; this only limits the maximum
    guest resolution.
    """
    size = LOOKING_GLASS_SIZES_MB.get(resolution)
    if size is None:
        size = min(LOOKING_GLASS_SIZES_MB.values())
        logger.warning("Unknown resolution tier %r, using %d MiB buffer", resolution, size)
    return size


def synthesize(config: DomainConfig) -> DomainDescriptor:
    """Build the domain descriptor for ``config``."""
    _validate(config)

    warnings: list[str] = []
    vcpu_count = config.total_threads - config.host_threads
    pins = tuple(VcpuPin(vcpu=i, cpu=i + config.host_threads) for i in range(vcpu_count))
    host_cpuset = format_cpuset(range(0, config.host_threads))

    if config.stealth and config.disable_hyperv:
        warnings.append(
            "Hypervisor hidden and Hyper-V enlightenments removed: "
            "guest timers and scheduling lose paravirtual assistance"
        )

    pci_hostdevs: list[PciHostdev] = []
    for address in (config.gpu_address, config.audio_address):
        if address is not None:
            pci_hostdevs.append(PciHostdev(address=address))

    usb_hostdevs: list[UsbHostdev] = []
    seen_usb: set[str] = set()
    for usb in config.usb_devices:
        if usb.id_string in seen_usb:
            continue
        seen_usb.add(usb.id_string)
        usb_hostdevs.append(UsbHostdev(vendor_id=usb.vendor_id, product_id=usb.product_id))

    shmem: list[ShmemDevice] = []
    if config.looking_glass:
        shmem.append(ShmemDevice(
            name=LOOKING_GLASS_SHMEM,
            size_mb=looking_glass_size_mb(config.looking_glass_resolution),
        ))
    if config.scream:
        shmem.append(ShmemDevice(name=SCREAM_SHMEM, size_mb=SCREAM_SIZE_MB))

    topology = _topology(config, vcpu_count, warnings)
    for warning in warnings:
        logger.warning("%s: %s", config.name, warning)

    return DomainDescriptor(
        name=config.name,
        memory_kib=config.memory_gb * 1024 * 1024,
        vcpu_count=vcpu_count,
        vcpu_pins=pins,
        emulator_cpuset=host_cpuset,
        iothread_cpuset=host_cpuset,
        topology=topology,
        firmware=Firmware(
            loader=str(OVMF_CODE),
            nvram_template=str(OVMF_VARS_TEMPLATE),
            nvram=str(NVRAM_DIR / f"{config.name}_VARS.fd"),
        ),
        features=FeatureSet(stealth=config.stealth, disable_hyperv=config.disable_hyperv),
        disks=_disks(config),
        pci_hostdevs=tuple(pci_hostdevs),
        usb_hostdevs=tuple(usb_hostdevs),
        shmem=tuple(shmem),
        warnings=tuple(warnings),
    )


def _sub(parent: ET.Element, tag: str, text: str | None = None, **attrs: str) -> ET.Element:
    element = ET.SubElement(parent, tag, attrs)
    if text is not None:
        element.text = text
    return element


def _render_cputune(root: ET.Element, desc: DomainDescriptor) -> None:
    cputune = _sub(root, "cputune")
    for pin in desc.vcpu_pins:
        _sub(cputune, "vcpupin", vcpu=str(pin.vcpu), cpuset=str(pin.cpu))
    _sub(cputune, "emulatorpin", cpuset=desc.emulator_cpuset)
    _sub(cputune, "iothreadpin", iothread="1", cpuset=desc.iothread_cpuset)
    _sub(cputune, "emulatorsched", scheduler="fifo", priority="1")
    for pin in desc.vcpu_pins:
        _sub(cputune, "vcpusched", vcpus=str(pin.vcpu), scheduler="fifo", priority="1")


def _render_os(root: ET.Element, desc: DomainDescriptor) -> None:
    os_elem = _sub(root, "os", firmware="efi")
    _sub(os_elem, "type", "hvm", arch="x86_64", machine=MACHINE_TYPE)
    _sub(
        os_elem, "loader", desc.firmware.loader,
        readonly="yes", secure="yes", type="pflash", format="raw",
    )
    _sub(
        os_elem, "nvram", desc.firmware.nvram,
        template=desc.firmware.nvram_template, templateFormat="raw", format="raw",
    )
    _sub(os_elem, "boot", dev="hd")
    if desc.features.stealth:
        _sub(os_elem, "smbios", mode="sysinfo")


def _render_features(root: ET.Element, desc: DomainDescriptor) -> None:
    features = _sub(root, "features")
    _sub(features, "acpi")
    _sub(features, "apic")
    if not desc.features.disable_hyperv:
        hyperv = _sub(features, "hyperv", mode="custom")
        for name in _HYPERV_FEATURES:
            if name == "spinlocks":
                _sub(hyperv, name, state="on", retries="8191")
            else:
                _sub(hyperv, name, state="on")
    kvm = _sub(features, "kvm")
    _sub(kvm, "hidden", state="on" if desc.features.stealth else "off")
    _sub(kvm, "hint-dedicated", state="on")
    _sub(features, "vmport", state="off")
    _sub(features, "smm", state="on")


def _render_cpu(root: ET.Element, desc: DomainDescriptor) -> None:
    cpu = _sub(root, "cpu", mode="host-passthrough", check="none", migratable="on")
    _sub(
        cpu, "topology",
        sockets="1", dies="1", clusters="1",
        cores=str(desc.topology.cores), threads=str(desc.topology.threads),
    )
    _sub(cpu, "cache", mode="passthrough")
    if desc.features.disable_hyperv:
        _sub(cpu, "feature", policy="disable", name="hypervisor")
    _sub(cpu, "feature", policy="require", name="topoext")


def _render_clock(root: ET.Element, desc: DomainDescriptor) -> None:
    clock = _sub(root, "clock", offset="localtime")
    _sub(clock, "timer", name="rtc", tickpolicy="catchup")
    _sub(clock, "timer", name="pit", tickpolicy="delay")
    _sub(clock, "timer", name="hpet", present="no")
    if not desc.features.disable_hyperv:
        _sub(clock, "timer", name="hypervclock", present="yes")
    _sub(clock, "timer", name="tsc", present="yes", mode="native")


def _render_sysinfo(root: ET.Element) -> None:
    sysinfo = _sub(root, "sysinfo", type="smbios")
    for section in ("baseBoard", "system"):
        block = _sub(sysinfo, section)
        _sub(block, "entry", STEALTH_MANUFACTURER, name="manufacturer")
        _sub(block, "entry", STEALTH_PRODUCT, name="product")


def _render_devices(root: ET.Element, desc: DomainDescriptor) -> None:
    devices = _sub(root, "devices")
    _sub(devices, "emulator", EMULATOR_PATH)

    for disk in desc.disks:
        elem = _sub(devices, "disk", type="volume" if disk.pool else "file", device=disk.device)
        if disk.is_cdrom:
            _sub(elem, "driver", name="qemu", type=disk.format)
        else:
            _sub(
                elem, "driver",
                name="qemu", type=disk.format, cache="none", io="native", discard="unmap",
            )
        if disk.pool:
            _sub(elem, "source", pool=disk.pool, volume=disk.source)
        else:
            _sub(elem, "source", file=disk.source)
        _sub(elem, "target", dev=disk.target, bus=disk.bus)
        if disk.is_cdrom:
            _sub(elem, "readonly")

    _sub(devices, "controller", type="usb", index="0", model="qemu-xhci", ports="15")

    interface = _sub(devices, "interface", type="network")
    _sub(interface, "source", network=DEFAULT_NETWORK)
    _sub(interface, "model", type="virtio")
    _sub(interface, "driver", queues="8")

    tpm = _sub(devices, "tpm", model="tpm-crb")
    _sub(tpm, "backend", type="emulator", version="2.0")

    graphics = _sub(devices, "graphics", type="spice", autoport="yes")
    _sub(graphics, "listen", type="address")
    _sub(graphics, "image", compression="off")
    _sub(devices, "audio", id="1", type="spice")

    video = _sub(devices, "video")
    _sub(
        video, "model",
        type="qxl", ram="65536", vram="65536", vgamem="16384", heads="1", primary="yes",
    )

    for usb in desc.usb_hostdevs:
        hostdev = _sub(devices, "hostdev", mode="subsystem", type="usb", managed="yes")
        source = _sub(hostdev, "source")
        _sub(source, "vendor", id=f"0x{usb.vendor_id}")
        _sub(source, "product", id=f"0x{usb.product_id}")

    for pci in desc.pci_hostdevs:
        hostdev = _sub(devices, "hostdev", mode="subsystem", type="pci", managed="yes")
        _sub(hostdev, "driver", name="vfio")
        source = _sub(hostdev, "source")
        _sub(source, "address", **pci.address.xml_attributes())

    for region in desc.shmem:
        shmem = _sub(devices, "shmem", name=region.name)
        _sub(shmem, "model", type="ivshmem-plain")
        _sub(shmem, "size", str(region.size_mb), unit="M")


def render_domain_xml(desc: DomainDescriptor) -> str:
    """Serialize a descriptor to libvirt domain XML."""
    root = ET.Element("domain", type="kvm")
    _sub(root, "name", desc.name)
    _sub(root, "memory", str(desc.memory_kib), unit="KiB")
    _sub(root, "currentMemory", str(desc.memory_kib), unit="KiB")
    _sub(root, "vcpu", str(desc.vcpu_count), placement="static")
    _sub(root, "iothreads", "1")
    _render_cputune(root, desc)
    if desc.features.stealth:
        _render_sysinfo(root)
    _render_os(root, desc)
    _render_features(root, desc)
    _render_cpu(root, desc)
    _render_clock(root, desc)

    pm = _sub(root, "pm")
    _sub(pm, "suspend-to-mem", enabled="no")
    _sub(pm, "suspend-to-disk", enabled="no")

    _render_devices(root, desc)

    ET.indent(root)
    return ET.tostring(root, encoding="unicode")
