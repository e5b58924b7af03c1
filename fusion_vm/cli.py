"""Command-line front end for Fusion VM."""

import argparse
import logging
import sys
from pathlib import Path

from fusion_vm import __version__
from fusion_vm.config import (
    DEFAULT_DISK_GB,
    DEFAULT_ENV_NAME,
    DEFAULT_MEMORY_GB,
    LIBVIRT_URI,
    LOOKING_GLASS_SIZES_MB,
    STORAGE_POOL,
)
from fusion_vm.exceptions import FusionError
from fusion_vm.models import (
    BusAddress,
    CpuTarget,
    DomainConfig,
    GpuOwner,
    PowerAction,
    UsbDevice,
)
from fusion_vm.services import (
    ArbitrationConfigStore,
    CommandExecutor,
    CpuArbiter,
    DomainLifecycleManager,
    DriverBinder,
    GpuArbiter,
    HardwareInventoryReader,
    OwnershipProbe,
    SliceLimiter,
    synthesize,
)
from fusion_vm.ui.theme import Theme

logger = logging.getLogger(__name__)


class Services:
    """Wires services together from command-line options."""

    def __init__(self, args: argparse.Namespace) -> None:
        self.args = args
        self.executor = CommandExecutor()
        self.store = ArbitrationConfigStore(Path(args.config) if args.config else None)
        self.inventory = HardwareInventoryReader(self.executor)
        self.control_plane = None

    def cpu(self) -> CpuArbiter:
        return CpuArbiter(self.store, SliceLimiter(self.executor))

    def gpu(self) -> GpuArbiter:
        return GpuArbiter(
            self.store,
            DriverBinder(self.executor, uri=self.args.uri),
            self.inventory,
        )

    def lifecycle(self) -> DomainLifecycleManager:
        # Deferred so commands that never touch libvirt work without the bindings
        from fusion_vm.services.libvirt_service import LibvirtControlPlane

        if self.control_plane is None:
            self.control_plane = LibvirtControlPlane(uri=self.args.uri, pool=self.args.pool)
        return DomainLifecycleManager(self.control_plane, self.store, name=self.args.name)

    def close(self) -> None:
        """Release the libvirt connection, if one was opened."""
        if self.control_plane is not None:
            self.control_plane.disconnect()
            self.control_plane = None


def _address(text: str) -> BusAddress:
    try:
        return BusAddress.parse(text)
    except FusionError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def _usb(text: str) -> UsbDevice:
    try:
        return UsbDevice.parse(text)
    except FusionError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


def domain_config_from_args(args: argparse.Namespace, services: Services) -> DomainConfig:
    """Build the synthesis input from ``synthesize``/``create`` options."""
    total = args.total_threads or services.inventory.logical_cpu_count()
    return DomainConfig(
        name=args.name or DEFAULT_ENV_NAME,
        memory_gb=args.memory,
        total_threads=total,
        host_threads=args.host_threads,
        disk_size_gb=args.disk,
        gpu_address=args.gpu,
        audio_address=args.audio,
        usb_devices=tuple(args.usb),
        installer_images=tuple(args.iso),
        stealth=args.stealth,
        disable_hyperv=args.disable_hyperv,
        looking_glass=args.looking_glass is not None,
        looking_glass_resolution=args.looking_glass or "1080p",
        scream=args.scream,
        paired_threads=not args.no_paired_threads,
        storage_pool=args.pool,
    )


def cmd_inventory(args: argparse.Namespace, services: Services, theme: Theme) -> int:
    inventory = services.inventory.read()
    print(theme.header("GPUs"))
    gpus = inventory.gpus()
    if not gpus:
        print(theme.dim("  (none)"))
    for gpu in gpus:
        print(f"  {gpu.full_description}  {theme.dim(gpu.driver or 'unbound')}")
        audio = inventory.companion_audio(gpu)
        if audio is not None:
            print(f"    audio {audio.full_description}  {theme.dim(audio.driver or 'unbound')}")

    print(theme.header("USB devices"))
    for usb in inventory.usb_devices:
        print(f"  {usb.full_description}")

    print(theme.header("Host"))
    print(theme.field("Logical CPUs", str(inventory.total_logical_cpus)))
    print(theme.field("Images", ", ".join(inventory.available_images) or "-"))
    return 0


def _print_warnings(warnings: tuple[str, ...], theme: Theme) -> None:
    for warning in warnings:
        print(theme.warning(f"warning: {warning}"), file=sys.stderr)


def cmd_synthesize(args: argparse.Namespace, services: Services, theme: Theme) -> int:
    descriptor = synthesize(domain_config_from_args(args, services))
    _print_warnings(descriptor.warnings, theme)
    print(descriptor.to_xml())
    return 0


def cmd_create(args: argparse.Namespace, services: Services, theme: Theme) -> int:
    config = domain_config_from_args(args, services)
    result = services.lifecycle().create_environment(config)
    _print_warnings(result.warnings, theme)
    volume = "created" if result.volume_created else "kept existing"
    print(theme.success(f"Defined {result.name}") + theme.dim(f" (volume {result.volume_name}: {volume})"))
    return 0


def cmd_cpu(args: argparse.Namespace, services: Services, theme: Theme) -> int:
    arbiter = services.cpu()
    if args.target == "status":
        print(theme.ownership(arbiter.get_cpu_target()))
        return 0

    arbiter.set_cpu_target(CpuTarget(args.target))
    print(theme.success(f"CPUs moved to {args.target}"))
    return 0


def cmd_gpu(args: argparse.Namespace, services: Services, theme: Theme) -> int:
    arbiter = services.gpu()
    if args.target == "status":
        print(theme.ownership(arbiter.get_gpu_owner(args.address)))
        return 0

    arbiter.set_gpu_owner(GpuOwner(args.target), args.address, args.audio)
    print(theme.success(f"GPU handed to {args.target}"))
    return 0


def cmd_power(args: argparse.Namespace, services: Services, theme: Theme) -> int:
    lifecycle = services.lifecycle()
    lifecycle.power(PowerAction(args.action))
    print(theme.success(f"{args.action} requested for {lifecycle.name}"))
    return 0


def cmd_status(args: argparse.Namespace, services: Services, theme: Theme) -> int:
    lifecycle = services.lifecycle()
    probe = OwnershipProbe(services.cpu(), services.gpu(), lifecycle, services.store)
    state = probe.poll()
    print(theme.header(lifecycle.name))
    print(theme.field("CPU", theme.ownership(state.cpu_target)))
    print(theme.field("GPU", theme.ownership(state.gpu_owner)))
    print(theme.field("Power", theme.ownership(state.vm_power)))
    return 0


def cmd_snapshot(args: argparse.Namespace, services: Services, theme: Theme) -> int:
    lifecycle = services.lifecycle()
    if args.action == "list":
        snapshots = lifecycle.list_snapshots()
        if not snapshots:
            print(theme.dim("No snapshots"))
        for snap in snapshots:
            marker = "*" if snap.is_current else " "
            print(f"{marker} {snap.name:<24} {snap.age_display():>10}  {theme.dim(snap.state)}  {snap.description}")
        return 0

    if not args.snapshot:
        raise FusionError(f"snapshot {args.action} needs a snapshot name")

    if args.action == "create":
        lifecycle.create_snapshot(args.snapshot, args.description)
        print(theme.success(f"Created snapshot {args.snapshot}"))
    elif args.action == "revert":
        lifecycle.revert_snapshot(args.snapshot)
        print(theme.success(f"Reverted to {args.snapshot}"))
    else:
        if not args.yes:
            print(theme.warning(f"Refusing to delete {args.snapshot} without --yes"), file=sys.stderr)
            return 1
        lifecycle.delete_snapshot(args.snapshot)
        print(theme.success(f"Deleted snapshot {args.snapshot}"))
    return 0


def cmd_disk(args: argparse.Namespace, services: Services, theme: Theme) -> int:
    lifecycle = services.lifecycle()
    if args.action == "info":
        print(theme.field("Disk", f"{lifecycle.disk_size_gb()} GB"))
        return 0

    new_size = lifecycle.resize_disk(args.amount)
    print(theme.success(f"Disk grown to {new_size} GB"))
    return 0


def cmd_config(args: argparse.Namespace, services: Services, theme: Theme) -> int:
    config = services.store.load()
    if config is None:
        print(theme.dim(f"No arbitration config at {services.store.path}"))
        return 0
    for key, value in config.to_dict().items():
        print(theme.field(key, "-" if value is None else str(value), width=24))
    return 0


def _add_domain_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--memory", type=int, default=DEFAULT_MEMORY_GB, help="Guest memory in GB")
    parser.add_argument("--total-threads", type=int, help="Logical CPUs on the host (default: detected)")
    parser.add_argument("--host-threads", type=int, required=True, help="Logical CPUs reserved for the host")
    parser.add_argument("--disk", type=int, default=DEFAULT_DISK_GB, help="Main disk size in GB")
    parser.add_argument("--gpu", type=_address, help="GPU PCI address (bb:ss.f)")
    parser.add_argument("--audio", type=_address, help="GPU audio function PCI address")
    parser.add_argument("--usb", type=_usb, action="append", default=[], metavar="VVVV:PPPP")
    parser.add_argument("--iso", action="append", default=[], help="Installer image to attach")
    parser.add_argument("--stealth", action="store_true", help="Hide the hypervisor from the guest")
    parser.add_argument("--disable-hyperv", action="store_true", help="Remove Hyper-V enlightenments")
    parser.add_argument(
        "--looking-glass",
        nargs="?",
        const="1080p",
        choices=sorted(LOOKING_GLASS_SIZES_MB),
        help="Add a Looking Glass buffer for the given resolution",
    )
    parser.add_argument("--scream", action="store_true", help="Add a Scream audio buffer")
    parser.add_argument("--no-paired-threads", action="store_true", help="One thread per guest core")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fusion-vm", description="GPU-passthrough guest arbitration")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--config", help="Arbitration config path")
    parser.add_argument("--uri", default=LIBVIRT_URI, help="libvirt connection URI")
    parser.add_argument("--pool", default=STORAGE_POOL, help="libvirt storage pool")
    parser.add_argument("--name", help="Environment name (default: last created)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("inventory", help="List GPUs, USB devices, CPUs and images").set_defaults(func=cmd_inventory)

    for name, func, help_text in (
        ("synthesize", cmd_synthesize, "Print the domain XML"),
        ("create", cmd_create, "Create and define the environment"),
    ):
        p = sub.add_parser(name, help=help_text)
        _add_domain_options(p)
        p.set_defaults(func=func)

    p = sub.add_parser("cpu", help="Move the guest CPU range")
    p.add_argument("target", choices=["host", "guest", "status"])
    p.set_defaults(func=cmd_cpu)

    p = sub.add_parser("gpu", help="Hand the GPU between host and guest")
    p.add_argument("target", choices=["host", "guest", "status"])
    p.add_argument("--address", type=_address, help="GPU PCI address")
    p.add_argument("--audio", type=_address, help="Audio function PCI address")
    p.set_defaults(func=cmd_gpu)

    p = sub.add_parser("power", help="Start or shut down the guest")
    p.add_argument("action", choices=[a.value for a in PowerAction])
    p.set_defaults(func=cmd_power)

    sub.add_parser("status", help="Show CPU, GPU and power ownership").set_defaults(func=cmd_status)

    p = sub.add_parser("snapshot", help="Manage snapshots")
    p.add_argument("action", choices=["list", "create", "revert", "delete"])
    p.add_argument("snapshot", nargs="?")
    p.add_argument("--description", default="")
    p.add_argument("--yes", action="store_true", help="Confirm deletion")
    p.set_defaults(func=cmd_snapshot)

    p = sub.add_parser("disk", help="Inspect or grow the main disk")
    p.add_argument("action", choices=["info", "grow"])
    p.add_argument("amount", type=int, nargs="?", default=0, help="GB to add")
    p.set_defaults(func=cmd_disk)

    sub.add_parser("config", help="Show the arbitration config").set_defaults(func=cmd_config)
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    theme = Theme()
    services = Services(args)
    try:
        return args.func(args, services, theme)
    except FusionError as e:
        logger.debug("Command failed", exc_info=True)
        print(theme.error(f"error: {e}"), file=sys.stderr)
        return 1
    finally:
        services.close()
