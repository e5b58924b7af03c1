"""CPU core ownership via systemd slice AllowedCPUs.

The guest's own vCPU pins already fix where it runs, so ownership is moved
by confining everything else: the host slices are narrowed to the reserved
range while the guest owns its cores, and widened to every CPU when the host
takes them back.
"""

import logging
import threading

from fusion_vm.config import HOST_SLICES, READBACK_SLICE
from fusion_vm.exceptions import ArbitrationBusyError
from fusion_vm.models import ArbitrationConfig, CpuTarget
from fusion_vm.services.executor import CommandExecutor, CommandResult
from fusion_vm.services.ownership import infer_cpu_target
from fusion_vm.services.sequence import SequenceOutcome, Step, StepSequence
from fusion_vm.services.state import ArbitrationConfigStore
from fusion_vm.utils.cpuset import format_cpuset

logger = logging.getLogger(__name__)


class SliceLimiter:
    """Reads and writes AllowedCPUs on systemd slices."""

    def __init__(self, executor: CommandExecutor | None = None) -> None:
        self.executor = executor or CommandExecutor()

    def set_allowed_cpus(self, slice_name: str, cpuset: str) -> CommandResult:
        """Restrict a slice at runtime only, so a reboot always frees every core."""
        return self.executor.run(
            ["systemctl", "set-property", "--runtime", slice_name, f"AllowedCPUs={cpuset}"],
            privileged=True,
        )

    def get_allowed_cpus(self, slice_name: str) -> str | None:
        """Current AllowedCPUs expression, or None if it cannot be read."""
        result = self.executor.run(["systemctl", "show", slice_name, "-p", "AllowedCPUs"])
        if not result.ok:
            logger.warning("Cannot read AllowedCPUs of %s: %s", slice_name, result.output)
            return None

        for line in result.stdout.splitlines():
            key, sep, value = line.partition("=")
            if sep and key.strip() == "AllowedCPUs":
                return value.strip()
        return None


class CpuArbiter:
    """Moves the guest CPU range between host and guest exclusivity."""

    def __init__(
        self,
        store: ArbitrationConfigStore,
        limiter: SliceLimiter | None = None,
        slices: tuple[str, ...] = HOST_SLICES,
        readback_slice: str = READBACK_SLICE,
    ) -> None:
        self.store = store
        self.limiter = limiter or SliceLimiter()
        self.slices = slices
        self.readback_slice = readback_slice
        self._lock = threading.Lock()

    def cpuset_for(self, target: CpuTarget, config: ArbitrationConfig) -> str:
        """AllowedCPUs value the host slices get for ``target``."""
        if target is CpuTarget.GUEST:
            return format_cpuset(config.host_range)
        if target is CpuTarget.HOST:
            return format_cpuset(config.full_range)
        raise ValueError(f"Cannot arbitrate CPUs toward {target.value!r}")

    def build_sequence(self, target: CpuTarget, config: ArbitrationConfig) -> StepSequence:
        """One step per slice, applied in the fixed slice order."""
        cpuset = self.cpuset_for(target, config)
        steps = [
            Step(
                name=slice_name,
                action=lambda s=slice_name: self.limiter.set_allowed_cpus(s, cpuset),
            )
            for slice_name in self.slices
        ]
        return StepSequence(f"cpu->{target.value}", steps)

    def set_cpu_target(self, target: CpuTarget | str) -> SequenceOutcome:
        """Give the guest range to ``target``.

        Raises SequenceAbortedError naming the slice that failed; slices before
        it keep their new restriction and need manual reconciliation.
        """
        target = CpuTarget(target)
        config = self.store.require()
        sequence = self.build_sequence(target, config)

        if not self._lock.acquire(blocking=False):
            raise ArbitrationBusyError("CPU range")
        try:
            logger.info(
                "Moving CPUs %d-%d to %s",
                config.host_threads,
                config.total_threads - 1,
                target.value,
            )
            return sequence.run().raise_for_abort()
        finally:
            self._lock.release()

    def read_allowed_cpus(self) -> str | None:
        """Raw AllowedCPUs of the representative slice."""
        return self.limiter.get_allowed_cpus(self.readback_slice)

    def get_cpu_target(self) -> CpuTarget:
        """Infer the current owner from the representative slice."""
        return infer_cpu_target(self.read_allowed_cpus(), self.store.load())
