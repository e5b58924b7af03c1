"""Snapshot model."""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class Snapshot:
    """Guest snapshot as reported by the control plane."""

    name: str
    description: str
    created_at: datetime
    state: str  # domain state captured: "running", "shutoff", ...
    parent: str | None = None
    is_current: bool = False

    def age_display(self, now: datetime | None = None) -> str:
        """Format age relative to ``now``."""
        delta = (now or datetime.now()) - self.created_at
        if delta.days > 30:
            return f"{delta.days // 30}mo ago"
        if delta.days > 0:
            return f"{delta.days}d ago"
        hours = delta.seconds // 3600
        if hours > 0:
            return f"{hours}h ago"
        return f"{delta.seconds // 60}m ago"
