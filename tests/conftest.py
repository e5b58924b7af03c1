"""Shared fakes and fixtures."""

from __future__ import annotations

from datetime import datetime

import pytest

from fusion_vm.exceptions import LibvirtError
from fusion_vm.models import ArbitrationConfig, BusAddress, DomainConfig, Snapshot, VMState
from fusion_vm.services.executor import CommandResult
from fusion_vm.services.state import ArbitrationConfigStore

LSPCI_OUTPUT = """\
00:02.0 VGA compatible controller [0300]: Intel Corporation AlderLake-S GT1 [8086:4680] (rev 0c)
\tSubsystem: ASUSTeK Computer Inc. Device [1043:8694]
\tKernel driver in use: i915
\tKernel modules: i915
01:00.0 VGA compatible controller [0300]: NVIDIA Corporation GA104 [GeForce RTX 3070] [10de:2484] (rev a1)
\tSubsystem: Micro-Star International Co., Ltd. [MSI] Device [1462:3900]
\tKernel driver in use: nvidia
\tKernel modules: nouveau, nvidia_drm, nvidia
01:00.1 Audio device [0403]: NVIDIA Corporation GA104 High Definition Audio Controller [10de:228b] (rev a1)
\tSubsystem: Micro-Star International Co., Ltd. [MSI] Device [1462:3900]
\tKernel driver in use: snd_hda_intel
\tKernel modules: snd_hda_intel
0a:00.0 Non-Volatile memory controller [0108]: Samsung Electronics Co Ltd NVMe SSD Controller PM9A1/PM9A3/980PRO [144d:a80a]
\tKernel driver in use: nvme
"""

LSUSB_OUTPUT = """\
Bus 002 Device 001: ID 1d6b:0003 Linux Foundation 3.0 root hub
Bus 001 Device 003: ID 046d:c52b Logitech, Inc. Unifying Receiver
Bus 001 Device 002: ID 1532:0084 Razer USA, Ltd RZ01-0321 Gaming Mouse [DeathAdder V2]
Bus 001 Device 001: ID 1d6b:0002 Linux Foundation 2.0 root hub
"""


class FakeExecutor:
    """Records commands and answers them from scripted rules.

    A rule matches when the command starts with its prefix; the most recently
    added matching rule wins. Unmatched commands succeed with no output.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, ...]] = []
        self.privileged_calls: list[tuple[str, ...]] = []
        self._rules: list[tuple[tuple[str, ...], int, str, str]] = []

    def on(self, *prefix: str, returncode: int = 0, stdout: str = "", stderr: str = "") -> FakeExecutor:
        self._rules.append((prefix, returncode, stdout, stderr))
        return self

    def run(self, args, privileged=False, timeout=None) -> CommandResult:
        argv = tuple(args)
        self.calls.append(argv)
        if privileged:
            self.privileged_calls.append(argv)
        for prefix, returncode, stdout, stderr in reversed(self._rules):
            if argv[: len(prefix)] == prefix:
                return CommandResult(argv, returncode, stdout, stderr)
        return CommandResult(argv, 0)

    def ran(self, *prefix: str) -> bool:
        return any(call[: len(prefix)] == prefix for call in self.calls)


class FakeControlPlane:
    """In-memory stand-in for the libvirt control plane."""

    def __init__(self, pool_name: str = "default") -> None:
        self.pool_name = pool_name
        self.volumes: dict[str, int] = {}
        self.defined: dict[str, str] = {}
        self.states: dict[str, VMState] = {}
        self.snapshots: dict[str, list[Snapshot]] = {}
        self.calls: list[tuple] = []
        self.fail_define = False

    def define_domain(self, xml):
        self.calls.append(("define_domain",))
        if self.fail_define:
            raise LibvirtError("define", "XML error: invalid domain")
        name = xml.split("<name>", 1)[1].split("</name>", 1)[0]
        self.defined[name] = xml
        self.states.setdefault(name, VMState.SHUTOFF)

    def volume_exists(self, name):
        self.calls.append(("volume_exists", name))
        return name in self.volumes

    def create_volume(self, name, size_gb):
        self.calls.append(("create_volume", name, size_gb))
        self.volumes[name] = size_gb

    def volume_capacity_gb(self, name):
        self.calls.append(("volume_capacity_gb", name))
        if name not in self.volumes:
            raise LibvirtError("vol-info", f"Storage volume not found: {name}")
        return self.volumes[name]

    def resize_volume(self, name, size_gb):
        self.calls.append(("resize_volume", name, size_gb))
        self.volumes[name] = size_gb

    def start(self, name):
        self.calls.append(("start", name))
        self.states[name] = VMState.RUNNING

    def shutdown(self, name):
        self.calls.append(("shutdown", name))
        self.states[name] = VMState.SHUTOFF

    def domain_state(self, name):
        self.calls.append(("domain_state", name))
        return self.states.get(name)

    def snapshot_create(self, name, snap_name, description=""):
        self.calls.append(("snapshot_create", name, snap_name, description))
        existing = self.snapshots.setdefault(name, [])
        existing.append(Snapshot(
            name=snap_name,
            description=description,
            created_at=datetime(2026, 1, 1, 12, len(existing)),
            state=self.states.get(name, VMState.SHUTOFF).display_name,
        ))

    def snapshot_revert(self, name, snap_name):
        self.calls.append(("snapshot_revert", name, snap_name))
        if not any(s.name == snap_name for s in self.snapshots.get(name, [])):
            raise LibvirtError("snapshot-revert", f"no snapshot named '{snap_name}'")
        self.states[name] = VMState.RUNNING

    def snapshot_delete(self, name, snap_name):
        self.calls.append(("snapshot_delete", name, snap_name))
        self.snapshots[name] = [s for s in self.snapshots.get(name, []) if s.name != snap_name]

    def snapshot_list(self, name):
        self.calls.append(("snapshot_list", name))
        return list(reversed(self.snapshots.get(name, [])))


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def control_plane() -> FakeControlPlane:
    return FakeControlPlane()


@pytest.fixture
def store(tmp_path) -> ArbitrationConfigStore:
    return ArbitrationConfigStore(tmp_path / "state" / "arbitration.json")


@pytest.fixture
def arbitration_config() -> ArbitrationConfig:
    return ArbitrationConfig(
        total_threads=16,
        host_threads=2,
        last_environment_name="win11",
        last_gpu_address=BusAddress(1, 0, 0),
        last_audio_address=BusAddress(1, 0, 1),
    )


@pytest.fixture
def saved_store(store, arbitration_config) -> ArbitrationConfigStore:
    store.save(arbitration_config)
    return store


@pytest.fixture
def domain_config() -> DomainConfig:
    """16 logical CPUs, 2 kept for the host, GPU at 01:00.0 with its audio function."""
    return DomainConfig(
        name="win11",
        memory_gb=16,
        total_threads=16,
        host_threads=2,
        disk_size_gb=128,
        gpu_address=BusAddress(1, 0, 0),
        audio_address=BusAddress(1, 0, 1),
        storage_pool="default",
    )


@pytest.fixture
def lspci_output() -> str:
    return LSPCI_OUTPUT


@pytest.fixture
def lsusb_output() -> str:
    return LSUSB_OUTPUT


@pytest.fixture
def host_executor(executor) -> FakeExecutor:
    """Executor scripted with a two-GPU host (Intel iGPU, NVIDIA dGPU)."""
    executor.on("lspci", stdout=LSPCI_OUTPUT)
    executor.on("lsusb", stdout=LSUSB_OUTPUT)
    executor.on("nproc", stdout="16\n")
    return executor
