"""Guest power state and actions."""

from enum import Enum


class VMState(Enum):
    """libvirt domain state, by its numeric code."""

    NOSTATE = 0
    RUNNING = 1
    BLOCKED = 2
    PAUSED = 3
    SHUTDOWN = 4
    SHUTOFF = 5
    CRASHED = 6
    PMSUSPENDED = 7

    @property
    def display_name(self) -> str:
        """Human-readable state name, as virsh domstate prints it."""
        names: dict[VMState, str] = {
            VMState.NOSTATE: "no state",
            VMState.RUNNING: "running",
            VMState.BLOCKED: "idle",
            VMState.PAUSED: "paused",
            VMState.SHUTDOWN: "in shutdown",
            VMState.SHUTOFF: "shut off",
            VMState.CRASHED: "crashed",
            VMState.PMSUSPENDED: "pmsuspended",
        }
        return names.get(self, "unknown")


class PowerAction(Enum):
    """Operator power request."""

    START = "start"
    SHUTDOWN = "shutdown"
