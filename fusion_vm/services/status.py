"""One poll of every ownership reading."""

import logging

from fusion_vm.exceptions import FusionError
from fusion_vm.models import LiveState, OwnershipState
from fusion_vm.services.cpu import CpuArbiter
from fusion_vm.services.gpu import GpuArbiter
from fusion_vm.services.lifecycle import DomainLifecycleManager
from fusion_vm.services.ownership import infer_ownership
from fusion_vm.services.state import ArbitrationConfigStore

logger = logging.getLogger(__name__)


class OwnershipProbe:
    """Gathers live readings and derives ``OwnershipState``.

    A reading that fails is reported as unknown rather than failing the poll.
    """

    def __init__(
        self,
        cpu: CpuArbiter,
        gpu: GpuArbiter,
        lifecycle: DomainLifecycleManager,
        store: ArbitrationConfigStore,
    ) -> None:
        self.cpu = cpu
        self.gpu = gpu
        self.lifecycle = lifecycle
        self.store = store

    def read_live_state(self) -> LiveState:
        """Collect raw readings for one poll cycle."""
        allowed_cpus = None
        try:
            allowed_cpus = self.cpu.read_allowed_cpus()
        except FusionError as e:
            logger.warning("CPU reading unavailable: %s", e)

        gpu_driver = gpu_class = None
        try:
            gpu_driver, gpu_class = self.gpu.read_binding()
        except FusionError as e:
            logger.warning("GPU reading unavailable: %s", e)

        domain_state = None
        try:
            domain_state = self.lifecycle.read_domain_state()
        except FusionError as e:
            logger.warning("Domain state unavailable: %s", e)

        return LiveState(
            allowed_cpus=allowed_cpus,
            gpu_driver=gpu_driver,
            gpu_class=gpu_class,
            domain_state=domain_state,
        )

    def poll(self) -> OwnershipState:
        """Current ownership of CPU range, GPU and guest power."""
        try:
            config = self.store.load()
        except FusionError as e:
            logger.warning("Arbitration config unreadable: %s", e)
            config = None
        return infer_ownership(self.read_live_state(), config)
