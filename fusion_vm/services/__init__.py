"""Services for Fusion VM.

The libvirt-backed control plane lives in ``fusion_vm.services.libvirt_service``
and is imported where it is needed.
"""

from fusion_vm.services.cpu import CpuArbiter, SliceLimiter
from fusion_vm.services.executor import CommandExecutor, CommandResult
from fusion_vm.services.gpu import DriverBinder, GpuArbiter
from fusion_vm.services.inventory import HardwareInventoryReader
from fusion_vm.services.lifecycle import DomainLifecycleManager, ProvisionResult
from fusion_vm.services.sequence import SequenceOutcome, SequenceState, Step, StepSequence
from fusion_vm.services.state import ArbitrationConfigStore
from fusion_vm.services.status import OwnershipProbe
from fusion_vm.services.synthesizer import render_domain_xml, synthesize

__all__ = [
    "ArbitrationConfigStore",
    "CommandExecutor",
    "CommandResult",
    "CpuArbiter",
    "DomainLifecycleManager",
    "DriverBinder",
    "GpuArbiter",
    "HardwareInventoryReader",
    "OwnershipProbe",
    "ProvisionResult",
    "SequenceOutcome",
    "SequenceState",
    "SliceLimiter",
    "Step",
    "StepSequence",
    "render_domain_xml",
    "synthesize",
]
