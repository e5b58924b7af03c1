"""Guest lifecycle: define, power, snapshots and disk growth."""

import logging
from dataclasses import dataclass
from typing import Protocol

from fusion_vm.config import DEFAULT_ENV_NAME
from fusion_vm.exceptions import ConfigurationError
from fusion_vm.models import (
    ArbitrationConfig,
    DomainConfig,
    DomainDescriptor,
    PowerAction,
    Snapshot,
    VMState,
    VmPower,
)
from fusion_vm.services.ownership import infer_vm_power
from fusion_vm.services.state import ArbitrationConfigStore
from fusion_vm.services.synthesizer import synthesize

logger = logging.getLogger(__name__)


class ControlPlane(Protocol):
    """Operations the lifecycle manager needs from the virtualization layer."""

    pool_name: str

    def define_domain(self, xml: str) -> None: ...

    def volume_exists(self, name: str) -> bool: ...

    def create_volume(self, name: str, size_gb: int) -> None: ...

    def volume_capacity_gb(self, name: str) -> int: ...

    def resize_volume(self, name: str, size_gb: int) -> None: ...

    def start(self, name: str) -> None: ...

    def shutdown(self, name: str) -> None: ...

    def domain_state(self, name: str) -> VMState | None: ...

    def snapshot_create(self, name: str, snap_name: str, description: str = "") -> None: ...

    def snapshot_revert(self, name: str, snap_name: str) -> None: ...

    def snapshot_delete(self, name: str, snap_name: str) -> None: ...

    def snapshot_list(self, name: str) -> list[Snapshot]: ...


@dataclass(frozen=True)
class ProvisionResult:
    """Outcome of defining an environment."""

    name: str
    volume_name: str
    volume_created: bool
    warnings: tuple[str, ...] = ()


def volume_name_for(name: str) -> str:
    """Storage volume backing an environment's main disk."""
    return f"{name}.qcow2"


class DomainLifecycleManager:
    """Manages the single guest environment through the control plane."""

    def __init__(
        self,
        control_plane: ControlPlane,
        store: ArbitrationConfigStore,
        name: str | None = None,
    ) -> None:
        self.control_plane = control_plane
        self.store = store
        self._name = name

    @property
    def name(self) -> str:
        """Environment under management."""
        if self._name:
            return self._name
        config = self.store.load()
        return config.last_environment_name if config else DEFAULT_ENV_NAME

    @property
    def volume_name(self) -> str:
        """Volume backing the managed environment."""
        return volume_name_for(self.name)

    def define_and_create_disk(self, descriptor: DomainDescriptor, disk_size_gb: int) -> ProvisionResult:
        """Create the backing volume if absent, then define the domain.

        Safe to repeat: an existing volume is never recreated or resized.
        """
        if disk_size_gb < 1:
            raise ConfigurationError(f"Disk size must be at least 1 GB, got {disk_size_gb}")

        disk = descriptor.main_disk
        if disk.pool != self.control_plane.pool_name:
            raise ConfigurationError(
                f"Main disk is in pool '{disk.pool}' but volumes are managed in "
                f"'{self.control_plane.pool_name}'"
            )

        volume = disk.source
        created = False
        if self.control_plane.volume_exists(volume):
            logger.info("Volume %s already exists, keeping it", volume)
        else:
            logger.info("Creating %d GB volume %s", disk_size_gb, volume)
            self.control_plane.create_volume(volume, disk_size_gb)
            created = True

        self.control_plane.define_domain(descriptor.to_xml())
        logger.info("Defined environment %s", descriptor.name)
        return ProvisionResult(
            name=descriptor.name,
            volume_name=volume,
            volume_created=created,
            warnings=descriptor.warnings,
        )

    def create_environment(self, config: DomainConfig) -> ProvisionResult:
        """Synthesize, provision and define; record arbitration parameters on success."""
        descriptor = synthesize(config)
        result = self.define_and_create_disk(descriptor, config.disk_size_gb)

        self.store.save(ArbitrationConfig(
            total_threads=config.total_threads,
            host_threads=config.host_threads,
            last_environment_name=config.name,
            last_gpu_address=config.gpu_address,
            last_audio_address=config.audio_address,
        ))
        self._name = config.name
        return result

    def power(self, action: PowerAction | str) -> None:
        """Start or gracefully shut down the guest."""
        action = PowerAction(action)
        logger.info("%s %s", action.value, self.name)
        if action is PowerAction.START:
            self.control_plane.start(self.name)
        else:
            self.control_plane.shutdown(self.name)

    def create_snapshot(self, snap_name: str, description: str = "") -> None:
        """Create an atomic snapshot."""
        self.control_plane.snapshot_create(self.name, _snapshot_name(snap_name), description)
        logger.info("Created snapshot %s of %s", snap_name, self.name)

    def revert_snapshot(self, snap_name: str) -> None:
        """Revert to a snapshot; the guest is left running."""
        self.control_plane.snapshot_revert(self.name, _snapshot_name(snap_name))
        logger.info("Reverted %s to snapshot %s", self.name, snap_name)

    def delete_snapshot(self, snap_name: str) -> None:
        """Delete a snapshot. Irreversible; callers confirm beforehand."""
        self.control_plane.snapshot_delete(self.name, _snapshot_name(snap_name))
        logger.info("Deleted snapshot %s of %s", snap_name, self.name)

    def list_snapshots(self) -> list[Snapshot]:
        """Snapshots of the managed environment, newest first."""
        return self.control_plane.snapshot_list(self.name)

    def disk_size_gb(self) -> int:
        """Current virtual size of the main disk."""
        return self.control_plane.volume_capacity_gb(self.volume_name)

    def resize_disk(self, delta_gb: int) -> int:
        """Grow the main disk by ``delta_gb`` and return the new size.

        Shrinking destroys guest data and is rejected outright.
        """
        if delta_gb <= 0:
            raise ConfigurationError(f"Disk can only grow; got a change of {delta_gb} GB")

        volume = self.volume_name
        current = self.control_plane.volume_capacity_gb(volume)
        new_size = current + delta_gb
        logger.info("Growing %s from %d GB to %d GB", volume, current, new_size)
        self.control_plane.resize_volume(volume, new_size)
        return new_size

    def read_domain_state(self) -> VMState | None:
        """Raw libvirt state, or None if the environment is not defined."""
        return self.control_plane.domain_state(self.name)

    def status(self) -> VmPower:
        """Coarse power state of the guest."""
        return infer_vm_power(self.read_domain_state())


def _snapshot_name(snap_name: str) -> str:
    name = snap_name.strip()
    if not name:
        raise ConfigurationError("Snapshot name must not be empty")
    return name
