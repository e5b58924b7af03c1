"""GPU ownership: ordered driver handoff between host and passthrough."""

import logging
import threading
from pathlib import Path

from fusion_vm.config import (
    DEFAULT_HOST_GPU_MODULES,
    HOST_GPU_MODULES,
    LIBVIRT_URI,
    PASSTHROUGH_MODULES,
)
from fusion_vm.exceptions import ArbitrationBusyError, NoGpuFoundError
from fusion_vm.models import BusAddress, DeviceClass, GpuOwner, HardwareInventory, PciDevice
from fusion_vm.services.executor import CommandExecutor, CommandResult
from fusion_vm.services.inventory import HardwareInventoryReader
from fusion_vm.services.ownership import infer_gpu_owner
from fusion_vm.services.sequence import SequenceOutcome, Step, StepSequence
from fusion_vm.services.state import ArbitrationConfigStore

logger = logging.getLogger(__name__)

SYSFS_PCI_DEVICES = Path("/sys/bus/pci/devices")


class DriverBinder:
    """Kernel module and node-device operations for one host."""

    def __init__(
        self,
        executor: CommandExecutor | None = None,
        uri: str = LIBVIRT_URI,
        sysfs_root: Path = SYSFS_PCI_DEVICES,
    ) -> None:
        self.executor = executor or CommandExecutor()
        self.uri = uri
        self.sysfs_root = sysfs_root

    def unbind_driver(self, modules: tuple[str, ...]) -> CommandResult:
        """Unload kernel modules, in the given order."""
        return self.executor.run(["rmmod", *modules], privileged=True)

    def load_driver(self, modules: tuple[str, ...]) -> CommandResult:
        """Load kernel modules."""
        return self.executor.run(["modprobe", "-a", *modules], privileged=True)

    def detach_device(self, address: BusAddress) -> CommandResult:
        """Detach a PCI function from its host driver for passthrough."""
        return self.executor.run(
            ["virsh", "-c", self.uri, "nodedev-detach", address.nodedev_name],
            privileged=True,
        )

    def reattach_device(self, address: BusAddress) -> CommandResult:
        """Return a PCI function to host driver management."""
        return self.executor.run(
            ["virsh", "-c", self.uri, "nodedev-reattach", address.nodedev_name],
            privileged=True,
        )

    def current_driver(self, address: BusAddress) -> str | None:
        """Name of the bound driver, "" when unbound, None if unreadable."""
        device_path = self.sysfs_root / address.sysfs_name
        if not device_path.exists():
            return None

        driver_path = device_path / "driver"
        if not driver_path.exists():
            return ""  # No driver bound

        try:
            # The driver symlink points to the driver module
            return driver_path.resolve().name
        except (ValueError, OSError):
            return None


class GpuArbiter:
    """Moves one GPU (and its companion audio function) between host and guest.

    Toward the guest: unload host driver, load vfio, detach. Toward the host:
    reattach, unload vfio, load host driver. The first failing step stops the
    handoff; nothing after it runs.
    """

    def __init__(
        self,
        store: ArbitrationConfigStore,
        binder: DriverBinder | None = None,
        inventory: HardwareInventoryReader | None = None,
        host_modules: tuple[str, ...] | None = None,
        passthrough_modules: tuple[str, ...] = PASSTHROUGH_MODULES,
    ) -> None:
        self.store = store
        self.binder = binder or DriverBinder()
        self.inventory = inventory or HardwareInventoryReader()
        self.host_modules = host_modules
        self.passthrough_modules = passthrough_modules
        self._lock = threading.Lock()

    def _pci_inventory(self) -> HardwareInventory:
        return HardwareInventory(pci_devices=self.inventory.list_pci_devices())

    def resolve_gpu(self, address: BusAddress | None = None) -> BusAddress:
        """Explicit address, else the last bound GPU, else the first display device."""
        if address is not None:
            return address

        config = self.store.load()
        if config is not None and config.last_gpu_address is not None:
            return config.last_gpu_address

        device = self.inventory.find_display_device()
        if device is None:
            raise NoGpuFoundError("No GPU address given, none saved, and no display device found")
        logger.info("Using first display device %s", device.full_description)
        return device.address

    def resolve_audio(
        self,
        gpu: BusAddress,
        audio_address: BusAddress | None = None,
        inventory: HardwareInventory | None = None,
    ) -> BusAddress | None:
        """Companion audio function of ``gpu``, if one is known."""
        if audio_address is not None:
            return audio_address

        config = self.store.load()
        if config is not None and config.last_audio_address is not None:
            saved = config.last_audio_address
            if saved != gpu and saved.same_device(gpu):
                return saved

        inventory = inventory or self._pci_inventory()
        device = inventory.device_at(gpu)
        if device is None:
            return None
        companion = inventory.companion_audio(device)
        return companion.address if companion else None

    def host_modules_for(self, device: PciDevice | None) -> tuple[str, ...]:
        """Host driver modules for the GPU's vendor."""
        if self.host_modules:
            return self.host_modules
        if device is not None and device.vendor_id in HOST_GPU_MODULES:
            return HOST_GPU_MODULES[device.vendor_id]
        return DEFAULT_HOST_GPU_MODULES

    def build_sequence(
        self,
        target: GpuOwner,
        gpu: BusAddress,
        audio: BusAddress | None,
        host_modules: tuple[str, ...],
    ) -> StepSequence:
        """Ordered steps for a handoff toward ``target``."""
        binder = self.binder
        if target is GpuOwner.GUEST:
            steps = [
                Step("unload-host-driver", lambda: binder.unbind_driver(host_modules)),
                Step(
                    "load-passthrough-driver",
                    lambda: binder.load_driver(self.passthrough_modules),
                ),
                Step("detach-device", lambda: binder.detach_device(gpu)),
            ]
            if audio is not None:
                steps.append(Step("detach-audio-device", lambda: binder.detach_device(audio)))
        elif target is GpuOwner.HOST:
            steps = [Step("reattach-device", lambda: binder.reattach_device(gpu))]
            if audio is not None:
                steps.append(Step("reattach-audio-device", lambda: binder.reattach_device(audio)))
            steps += [
                Step(
                    "unload-passthrough-driver",
                    lambda: binder.unbind_driver(self.passthrough_modules),
                ),
                Step("load-host-driver", lambda: binder.load_driver(host_modules)),
            ]
        else:
            raise ValueError(f"Cannot hand the GPU to {target.value!r}")

        return StepSequence(f"gpu->{target.value}", steps)

    def set_gpu_owner(
        self,
        target: GpuOwner | str,
        address: BusAddress | None = None,
        audio_address: BusAddress | None = None,
    ) -> SequenceOutcome:
        """Hand the GPU to ``target``.

        Raises NoGpuFoundError if no address resolves, SequenceAbortedError if
        a step fails.
        """
        target = GpuOwner(target)
        if target is GpuOwner.UNKNOWN:
            raise ValueError("Cannot hand the GPU to 'unknown'")

        gpu = self.resolve_gpu(address)
        inventory = self._pci_inventory()
        audio = self.resolve_audio(gpu, audio_address, inventory)
        host_modules = self.host_modules_for(inventory.device_at(gpu))
        sequence = self.build_sequence(target, gpu, audio, host_modules)

        if not self._lock.acquire(blocking=False):
            raise ArbitrationBusyError("GPU")
        try:
            logger.info(
                "Handing GPU %s%s to %s",
                gpu,
                f" (+ audio {audio})" if audio else "",
                target.value,
            )
            return sequence.run().raise_for_abort()
        finally:
            self._lock.release()

    def read_binding(self, address: BusAddress | None = None) -> tuple[str | None, DeviceClass | None]:
        """Bound driver and device class of the managed GPU."""
        gpu = self.resolve_gpu(address)
        device = self._pci_inventory().device_at(gpu)
        return self.binder.current_driver(gpu), device.device_class if device else None

    def get_gpu_owner(self, address: BusAddress | None = None) -> GpuOwner:
        """Infer the current owner from the live driver binding."""
        driver, device_class = self.read_binding(address)
        return infer_gpu_owner(driver, device_class)
