"""Configuration and constants for Fusion VM."""

import os
from pathlib import Path

# Paths
IMAGES_DIR: Path = Path(os.environ.get("FUSION_VM_IMAGES_DIR", "/var/lib/libvirt/images"))
ISO_DIR: Path = IMAGES_DIR / "fusionos-essentials"
NVRAM_DIR: Path = Path("/var/lib/libvirt/qemu/nvram")
ARBITRATION_CONFIG_PATH: Path = Path(
    os.environ.get("FUSION_VM_CONFIG", "/var/lib/fusion-vm/arbitration.json")
)

# Firmware
OVMF_CODE: Path = Path("/usr/share/edk2/x64/OVMF_CODE.secboot.4m.fd")
OVMF_VARS_TEMPLATE: Path = Path("/usr/share/edk2/x64/OVMF_VARS.4m.fd")

# libvirt connection URI and storage pool
LIBVIRT_URI: str = os.environ.get("FUSION_VM_LIBVIRT_URI", "qemu:///system")
STORAGE_POOL: str = os.environ.get("FUSION_VM_POOL", "default")

# Default environment settings
DEFAULT_ENV_NAME: str = "win11"
DEFAULT_MEMORY_GB: int = 16
DEFAULT_DISK_GB: int = 128
DEFAULT_NETWORK: str = "default"
MACHINE_TYPE: str = "q35"
EMULATOR_PATH: str = "/usr/bin/qemu-system-x86_64"

# systemd slices restricted while the guest owns its cores, in application order
HOST_SLICES: tuple[str, ...] = (
    "background.slice",
    "session.slice",
    "system.slice",
    "user.slice",
)
READBACK_SLICE: str = "system.slice"

# Kernel modules
PASSTHROUGH_DRIVER: str = "vfio-pci"
PASSTHROUGH_MODULES: tuple[str, ...] = ("vfio_pci", "vfio_pci_core", "vfio_iommu_type1")
HOST_GPU_MODULES: dict[str, tuple[str, ...]] = {
    "10de": ("nvidia_drm", "nvidia_modeset", "nvidia_uvm", "nvidia"),
    "1002": ("amdgpu",),
    "8086": ("i915",),
}
DEFAULT_HOST_GPU_MODULES: tuple[str, ...] = HOST_GPU_MODULES["10de"]

# Shared-memory buffers (MiB), ordered smallest first
LOOKING_GLASS_SIZES_MB: dict[str, int] = {
    "1080p": 32,
    "1440p": 64,
    "4K": 128,
}
SCREAM_SIZE_MB: int = 2

# SMBIOS identity presented when hiding the hypervisor
STEALTH_MANUFACTURER: str = "ASUSTeK COMPUTER INC."
STEALTH_PRODUCT: str = "ROG STRIX X570-E GAMING"

# Color scheme
COLORS: dict[str, str] = {
    "running": "green",
    "stopped": "red",
    "host": "cyan",
    "guest": "magenta",
    "unknown": "yellow",
}
