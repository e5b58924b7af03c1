"""Exceptions raised by Fusion VM."""


class FusionError(RuntimeError):
    """Base class for every error surfaced to the operator."""


class ConfigurationError(FusionError):
    """Invalid input, detected before any external command runs."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ExternalCommandError(FusionError):
    """A shelled-out operation failed to launch or exited nonzero."""

    def __init__(self, command: str, returncode: int, output: str) -> None:
        detail = output.strip() or "no output"
        super().__init__(f"'{command}' failed ({returncode}): {detail}")
        self.command = command
        self.returncode = returncode
        self.output = output


class LibvirtError(ExternalCommandError):
    """Libvirt operation error."""

    def __init__(self, operation: str, output: str) -> None:
        super().__init__(operation, -1, output)


class SequenceAbortedError(FusionError):
    """A multi-step arbitration stopped partway.

    ``completed_steps`` lists what already ran, in order, so the operator can
    finish or reverse the handoff by hand.
    """

    def __init__(
        self,
        sequence: str,
        failed_step: str,
        completed_steps: list[str],
        output: str = "",
    ) -> None:
        done = ", ".join(completed_steps) if completed_steps else "none"
        message = f"{sequence} aborted at '{failed_step}' (completed: {done})"
        if output.strip():
            message += f": {output.strip()}"
        super().__init__(message)
        self.sequence = sequence
        self.failed_step = failed_step
        self.completed_steps = list(completed_steps)
        self.output = output


class NoDeviceFoundError(FusionError):
    """A device could not be resolved."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class NoGpuFoundError(NoDeviceFoundError):
    """No GPU address could be resolved for a handoff."""


class ArbitrationBusyError(FusionError):
    """Another arbitration against the same resource is still in flight."""

    def __init__(self, resource: str) -> None:
        super().__init__(f"an arbitration on the {resource} is already in progress")
        self.resource = resource
