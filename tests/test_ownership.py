"""Tests for fusion_vm.services.ownership."""

from __future__ import annotations

import pytest

from fusion_vm.models import (
    ArbitrationConfig,
    CpuTarget,
    DeviceClass,
    GpuOwner,
    LiveState,
    VMState,
    VmPower,
)
from fusion_vm.services.ownership import (
    infer_cpu_target,
    infer_gpu_owner,
    infer_ownership,
    infer_vm_power,
)


class TestInferCpuTarget:
    @pytest.mark.parametrize(
        "allowed, expected",
        [
            ("0-1", CpuTarget.GUEST),
            ("0,1", CpuTarget.GUEST),
            ("", CpuTarget.HOST),
            ("0-15", CpuTarget.HOST),
            ("0-3", CpuTarget.UNKNOWN),
            ("0", CpuTarget.UNKNOWN),
            ("garbage", CpuTarget.UNKNOWN),
            (None, CpuTarget.UNKNOWN),
        ],
    )
    def test_classification(self, arbitration_config, allowed, expected):
        assert infer_cpu_target(allowed, arbitration_config) is expected

    def test_without_config(self):
        assert infer_cpu_target("0-1", None) is CpuTarget.UNKNOWN

    def test_other_split(self):
        config = ArbitrationConfig(total_threads=8, host_threads=4, last_environment_name="w")
        assert infer_cpu_target("0-3", config) is CpuTarget.GUEST
        assert infer_cpu_target("0-7", config) is CpuTarget.HOST


class TestInferGpuOwner:
    @pytest.mark.parametrize(
        "driver, device_class, expected",
        [
            ("vfio-pci", DeviceClass.VGA, GpuOwner.GUEST),
            ("vfio-pci", DeviceClass.THREE_D, GpuOwner.GUEST),
            ("vfio-pci", None, GpuOwner.UNKNOWN),
            ("nvidia", DeviceClass.VGA, GpuOwner.HOST),
            ("amdgpu", DeviceClass.VGA, GpuOwner.HOST),
            ("", DeviceClass.VGA, GpuOwner.UNKNOWN),
            (None, None, GpuOwner.UNKNOWN),
        ],
    )
    def test_classification(self, driver, device_class, expected):
        assert infer_gpu_owner(driver, device_class) is expected


class TestInferVmPower:
    @pytest.mark.parametrize(
        "state, expected",
        [
            (VMState.RUNNING, VmPower.RUNNING),
            (VMState.PAUSED, VmPower.RUNNING),
            (VMState.BLOCKED, VmPower.RUNNING),
            (VMState.SHUTOFF, VmPower.STOPPED),
            (VMState.CRASHED, VmPower.STOPPED),
            (VMState.SHUTDOWN, VmPower.UNKNOWN),
            (None, VmPower.UNKNOWN),
        ],
    )
    def test_classification(self, state, expected):
        assert infer_vm_power(state) is expected


class TestInferOwnership:
    def test_guest_owns_everything(self, arbitration_config):
        live = LiveState(
            allowed_cpus="0-1",
            gpu_driver="vfio-pci",
            gpu_class=DeviceClass.VGA,
            domain_state=VMState.RUNNING,
        )
        state = infer_ownership(live, arbitration_config)
        assert state.cpu_target is CpuTarget.GUEST
        assert state.gpu_owner is GpuOwner.GUEST
        assert state.vm_power is VmPower.RUNNING

    def test_nothing_readable(self):
        state = infer_ownership(LiveState(), None)
        assert (state.cpu_target, state.gpu_owner, state.vm_power) == (
            CpuTarget.UNKNOWN,
            GpuOwner.UNKNOWN,
            VmPower.UNKNOWN,
        )
