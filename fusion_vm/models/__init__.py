"""Data models for Fusion VM."""

from fusion_vm.models.domain import (
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
from fusion_vm.models.hardware import (
    BusAddress,
    DeviceClass,
    HardwareInventory,
    PciDevice,
    UsbDevice,
)
from fusion_vm.models.ownership import (
    ArbitrationConfig,
    CpuTarget,
    GpuOwner,
    LiveState,
    OwnershipState,
    VmPower,
)
from fusion_vm.models.snapshot import Snapshot
from fusion_vm.models.vm import PowerAction, VMState

__all__ = [
    "ArbitrationConfig",
    "BusAddress",
    "CpuTarget",
    "CpuTopology",
    "DeviceClass",
    "DiskDevice",
    "DomainConfig",
    "DomainDescriptor",
    "FeatureSet",
    "Firmware",
    "GpuOwner",
    "HardwareInventory",
    "LiveState",
    "OwnershipState",
    "PciDevice",
    "PciHostdev",
    "PowerAction",
    "ShmemDevice",
    "Snapshot",
    "UsbDevice",
    "UsbHostdev",
    "VMState",
    "VcpuPin",
    "VmPower",
]
