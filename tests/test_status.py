"""Tests for fusion_vm.services.status."""

from __future__ import annotations

from unittest.mock import MagicMock

from fusion_vm.exceptions import ExternalCommandError, LibvirtError, NoGpuFoundError
from fusion_vm.models import CpuTarget, DeviceClass, GpuOwner, VMState, VmPower
from fusion_vm.services.cpu import CpuArbiter
from fusion_vm.services.gpu import GpuArbiter
from fusion_vm.services.lifecycle import DomainLifecycleManager
from fusion_vm.services.status import OwnershipProbe


def _probe(store, allowed="0-1", binding=("vfio-pci", DeviceClass.VGA), state=VMState.RUNNING):
    cpu = MagicMock(spec=CpuArbiter)
    cpu.read_allowed_cpus.return_value = allowed
    gpu = MagicMock(spec=GpuArbiter)
    gpu.read_binding.return_value = binding
    lifecycle = MagicMock(spec=DomainLifecycleManager)
    lifecycle.read_domain_state.return_value = state
    return OwnershipProbe(cpu, gpu, lifecycle, store), cpu, gpu, lifecycle


class TestOwnershipProbe:
    def test_guest_owns_everything(self, saved_store):
        probe, *_ = _probe(saved_store)
        state = probe.poll()
        assert state.cpu_target is CpuTarget.GUEST
        assert state.gpu_owner is GpuOwner.GUEST
        assert state.vm_power is VmPower.RUNNING

    def test_host_owns_everything(self, saved_store):
        probe, *_ = _probe(
            saved_store,
            allowed="0-15",
            binding=("nvidia", DeviceClass.VGA),
            state=VMState.SHUTOFF,
        )
        state = probe.poll()
        assert state.cpu_target is CpuTarget.HOST
        assert state.gpu_owner is GpuOwner.HOST
        assert state.vm_power is VmPower.STOPPED

    def test_read_failures_become_unknown(self, saved_store):
        probe, _, gpu, lifecycle = _probe(saved_store)
        gpu.read_binding.side_effect = NoGpuFoundError("no display device")
        lifecycle.read_domain_state.side_effect = LibvirtError("connect", "Connection refused")
        state = probe.poll()
        assert state.cpu_target is CpuTarget.GUEST
        assert state.gpu_owner is GpuOwner.UNKNOWN
        assert state.vm_power is VmPower.UNKNOWN

    def test_corrupt_config_makes_cpu_unknown(self, store):
        store.path.parent.mkdir(parents=True)
        store.path.write_text("[]")
        probe, *_ = _probe(store)
        assert probe.poll().cpu_target is CpuTarget.UNKNOWN

    def test_failed_lspci_makes_gpu_unknown(self, saved_store):
        probe, _, gpu, _ = _probe(saved_store)
        gpu.read_binding.side_effect = ExternalCommandError("lspci -nnk", 1, "Cannot open /sys/bus/pci")
        state = probe.poll()
        assert state.gpu_owner is GpuOwner.UNKNOWN
        assert state.vm_power is VmPower.RUNNING
