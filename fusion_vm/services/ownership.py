"""Ownership inference from live system state.

Nothing here is stored: ownership can change behind our back (a raw
``systemctl`` call, a crashed guest), so every answer is recomputed from a
fresh reading. The rules are heuristics, and readings they cannot classify
come back as ``unknown`` instead of a guess.

CPU target, read from the representative slice's ``AllowedCPUs``:

* empty (no restriction) or an upper bound of at least ``total_threads - 1``
  means the host has every core: ``host``;
* exactly the reserved range ``[0, host_threads)`` means the guest owns the
  rest: ``guest``;
* any other partial range was set by something else: ``unknown``.

GPU owner, read from the device's bound kernel driver:

* ``vfio-pci`` on a VGA/3D class device: ``guest``;
* no driver bound (mid-rebind, or a failed handoff): ``unknown``;
* any other driver: ``host``.
"""

from fusion_vm.config import PASSTHROUGH_DRIVER
from fusion_vm.exceptions import ConfigurationError
from fusion_vm.models import (
    ArbitrationConfig,
    CpuTarget,
    DeviceClass,
    GpuOwner,
    LiveState,
    OwnershipState,
    VMState,
    VmPower,
)
from fusion_vm.utils.cpuset import parse_cpuset

_RUNNING_STATES = frozenset({
    VMState.RUNNING,
    VMState.BLOCKED,
    VMState.PAUSED,
    VMState.PMSUSPENDED,
})
_STOPPED_STATES = frozenset({VMState.SHUTOFF, VMState.CRASHED})


def infer_cpu_target(allowed_cpus: str | None, config: ArbitrationConfig | None) -> CpuTarget:
    """Classify an AllowedCPUs reading against the arbitration config."""
    if allowed_cpus is None or config is None:
        return CpuTarget.UNKNOWN

    try:
        cpus = parse_cpuset(allowed_cpus)
    except ConfigurationError:
        return CpuTarget.UNKNOWN

    if not cpus:
        return CpuTarget.HOST
    if cpus == frozenset(config.host_range):
        return CpuTarget.GUEST
    if max(cpus) >= config.total_threads - 1:
        return CpuTarget.HOST
    return CpuTarget.UNKNOWN


def infer_gpu_owner(driver: str | None, device_class: DeviceClass | None) -> GpuOwner:
    """Classify the GPU's bound driver."""
    if not driver:
        return GpuOwner.UNKNOWN
    if driver == PASSTHROUGH_DRIVER:
        if device_class is None:
            return GpuOwner.UNKNOWN
        return GpuOwner.GUEST if device_class.is_display else GpuOwner.HOST
    return GpuOwner.HOST


def infer_vm_power(state: VMState | None) -> VmPower:
    """Collapse a libvirt domain state to running/stopped."""
    if state in _RUNNING_STATES:
        return VmPower.RUNNING
    if state in _STOPPED_STATES:
        return VmPower.STOPPED
    return VmPower.UNKNOWN


def infer_ownership(live: LiveState, config: ArbitrationConfig | None) -> OwnershipState:
    """Derive the full ownership picture from one poll's readings."""
    return OwnershipState(
        cpu_target=infer_cpu_target(live.allowed_cpus, config),
        gpu_owner=infer_gpu_owner(live.gpu_driver, live.gpu_class),
        vm_power=infer_vm_power(live.domain_state),
    )
