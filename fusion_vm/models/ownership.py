"""Ownership of contended resources and the persisted arbitration record."""

from dataclasses import dataclass
from enum import Enum

from fusion_vm.exceptions import ConfigurationError
from fusion_vm.models.hardware import BusAddress, DeviceClass
from fusion_vm.models.vm import VMState


class CpuTarget(Enum):
    """Which side has exclusive use of the guest CPU range."""

    HOST = "host"
    GUEST = "guest"
    UNKNOWN = "unknown"


class GpuOwner(Enum):
    """Which side has the passthrough GPU bound."""

    HOST = "host"
    GUEST = "guest"
    UNKNOWN = "unknown"


class VmPower(Enum):
    """Coarse guest power state."""

    RUNNING = "running"
    STOPPED = "stopped"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class OwnershipState:
    """Ownership derived from live system state. Never stored."""

    cpu_target: CpuTarget
    gpu_owner: GpuOwner
    vm_power: VmPower


@dataclass(frozen=True)
class LiveState:
    """Raw readings gathered in one poll cycle; ``None`` where unreadable."""

    allowed_cpus: str | None = None
    gpu_driver: str | None = None
    gpu_class: DeviceClass | None = None
    domain_state: VMState | None = None


@dataclass(frozen=True)
class ArbitrationConfig:
    """Parameters the arbiters need after the environment is created."""

    total_threads: int
    host_threads: int
    last_environment_name: str
    last_gpu_address: BusAddress | None = None
    last_audio_address: BusAddress | None = None

    def __post_init__(self) -> None:
        if self.host_threads < 1 or self.host_threads >= self.total_threads:
            raise ConfigurationError(
                f"host threads must be in [1, {self.total_threads}), got {self.host_threads}"
            )

    @property
    def host_range(self) -> range:
        """CPUs reserved for the host."""
        return range(0, self.host_threads)

    @property
    def full_range(self) -> range:
        """Every logical CPU."""
        return range(0, self.total_threads)

    def to_dict(self) -> dict[str, object]:
        """JSON-ready representation."""
        return {
            "total_threads": self.total_threads,
            "host_threads": self.host_threads,
            "last_environment_name": self.last_environment_name,
            "last_gpu_address": str(self.last_gpu_address) if self.last_gpu_address else None,
            "last_audio_address": str(self.last_audio_address) if self.last_audio_address else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "ArbitrationConfig":
        """Build from a decoded JSON record."""
        try:
            total = int(data["total_threads"])  # type: ignore[arg-type]
            host = int(data["host_threads"])  # type: ignore[arg-type]
            name = str(data["last_environment_name"])
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Incomplete arbitration config: {e}") from e

        gpu = data.get("last_gpu_address")
        audio = data.get("last_audio_address")
        return cls(
            total_threads=total,
            host_threads=host,
            last_environment_name=name,
            last_gpu_address=BusAddress.parse(str(gpu)) if gpu else None,
            last_audio_address=BusAddress.parse(str(audio)) if audio else None,
        )
