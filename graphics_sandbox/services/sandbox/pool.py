"""Display/port slot pool.

This module provides the fixed pool of (display, port) slots that bounds
sandbox concurrency:
1. Allocation scans the slot range and hands out the first free slot
2. Release is idempotent and owner-checked
3. Both operations are synchronous, so under the single event loop they
   can never interleave with another allocation
"""

from typing import Dict, List, Optional

import structlog

from ...config import settings
from ...models.errors import CapacityExceededError
from ...models.pool import PoolStats, Slot

logger = structlog.get_logger(__name__)


class ResourcePool:
    """Fixed pool of display/port slots.

    Key behaviors:
    - Slot ``i`` is display ``base_display + i`` and port ``base_port + i``
    - At most one owner holds a slot at a time
    - Releasing a slot held by a different owner is a no-op, so a stale
      double teardown can never free another session's slot
    """

    def __init__(
        self,
        base_display: int = None,
        base_port: int = None,
        size: int = None,
    ):
        """Initialize the slot pool.

        Args:
            base_display: First display number (defaults to settings)
            base_port: First stream port (defaults to settings)
            size: Number of slots, i.e. maximum concurrent sessions
        """
        self._base_display = base_display if base_display is not None else settings.base_display
        self._base_port = base_port if base_port is not None else settings.base_stream_port
        self._size = size if size is not None else settings.max_sessions

        # slot index -> owner id
        self._holders: Dict[int, str] = {}

        self._stats = PoolStats(capacity=self._size, available_count=self._size)

    @property
    def capacity(self) -> int:
        return self._size

    def slot_at(self, index: int) -> Slot:
        """Build the slot for a given index."""
        if not 0 <= index < self._size:
            raise IndexError(f"slot index {index} outside [0, {self._size})")
        return Slot(
            index=index,
            display=self._base_display + index,
            port=self._base_port + index,
        )

    def allocate(self, owner: str) -> Slot:
        """Hand out the first free slot.

        Args:
            owner: Identifier of the session taking the slot

        Returns:
            The allocated Slot

        Raises:
            CapacityExceededError: if every slot is held
        """
        for index in range(self._size):
            if index not in self._holders:
                self._holders[index] = owner
                self._stats.total_allocations += 1
                slot = self.slot_at(index)
                logger.info(
                    "Slot allocated",
                    owner=owner[:8],
                    display=slot.display,
                    port=slot.port,
                    held=len(self._holders),
                    capacity=self._size,
                )
                return slot

        self._stats.capacity_rejections += 1
        logger.warning(
            "Slot allocation failed, pool exhausted",
            owner=owner[:8],
            capacity=self._size,
        )
        raise CapacityExceededError(capacity=self._size)

    def release(self, slot: Optional[Slot], owner: str = None) -> bool:
        """Return a slot to the pool.

        Args:
            slot: Slot to release (None is accepted and ignored)
            owner: If given, only release when this owner holds the slot

        Returns:
            True if the slot was freed by this call, False otherwise
        """
        if slot is None:
            return False

        holder = self._holders.get(slot.index)
        if holder is None:
            return False
        if owner is not None and holder != owner:
            logger.warning(
                "Ignoring release of slot held by another owner",
                display=slot.display,
                owner=owner[:8],
                holder=holder[:8],
            )
            return False

        del self._holders[slot.index]
        self._stats.total_releases += 1
        logger.debug(
            "Slot released",
            display=slot.display,
            port=slot.port,
            held=len(self._holders),
        )
        return True

    def holder_of(self, slot: Slot) -> Optional[str]:
        """Get the owner currently holding a slot."""
        return self._holders.get(slot.index)

    def held_slots(self) -> List[Slot]:
        """List currently held slots in index order."""
        return [self.slot_at(index) for index in sorted(self._holders)]

    @property
    def available_count(self) -> int:
        return self._size - len(self._holders)

    def get_stats(self) -> PoolStats:
        """Get pool statistics."""
        self._stats.held_count = len(self._holders)
        self._stats.available_count = self.available_count
        return self._stats
