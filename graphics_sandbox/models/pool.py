"""Slot pool data models.

A slot is one unit of sandbox capacity: a virtual display number paired
with the TCP port its stream engine binds to.
"""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class Slot:
    """A (display, port) pair drawn from the fixed slot range."""

    index: int
    display: int
    port: int

    @property
    def display_name(self) -> str:
        """X display name, e.g. ``:100``."""
        return f":{self.display}"


@dataclass
class PoolStats:
    """Slot pool statistics for monitoring."""

    capacity: int
    held_count: int = 0
    available_count: int = 0
    total_allocations: int = 0
    total_releases: int = 0
    capacity_rejections: int = 0
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "capacity": self.capacity,
            "held": self.held_count,
            "available": self.available_count,
            "total_allocations": self.total_allocations,
            "total_releases": self.total_releases,
            "capacity_rejections": self.capacity_rejections,
            "timestamp": self.timestamp.isoformat(),
        }
