"""CPU list expressions as used by systemd AllowedCPUs and libvirt cpuset."""

from collections.abc import Iterable

from fusion_vm.exceptions import ConfigurationError


def format_cpuset(cpus: Iterable[int]) -> str:
    """Format CPUs as a compact list, e.g. ``0-3,8,10-11``."""
    ordered = sorted(set(cpus))
    if not ordered:
        raise ConfigurationError("Empty CPU set")

    parts: list[str] = []
    start = prev = ordered[0]
    for cpu in ordered[1:]:
        if cpu == prev + 1:
            prev = cpu
            continue
        parts.append(f"{start}-{prev}" if prev > start else str(start))
        start = prev = cpu
    parts.append(f"{start}-{prev}" if prev > start else str(start))
    return ",".join(parts)


def parse_cpuset(text: str) -> frozenset[int]:
    """Parse a CPU list such as ``0-1``, ``0,2,4`` or ``0-3 8-11``.

    systemd prints ranges separated by spaces; libvirt uses commas.
    """
    cpus: set[int] = set()
    for part in text.replace(" ", ",").split(","):
        part = part.strip()
        if not part:
            continue
        try:
            if "-" in part:
                start, end = part.split("-", 1)
                low, high = int(start), int(end)
                if high < low:
                    raise ValueError(part)
                cpus.update(range(low, high + 1))
            else:
                cpus.add(int(part))
        except ValueError as e:
            raise ConfigurationError(f"Invalid CPU list: {text!r}") from e
    return frozenset(cpus)
