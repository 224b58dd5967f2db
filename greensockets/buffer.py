from __future__ import annotations

from greensockets.descriptor import FileDescriptor

DEFAULT_READ_BUFFER_SIZE: int = 4096
# Room behind the data for the terminating zero byte
READ_BUFFER_MARGIN: int = 2


class ReadBuffer:
    """Owned byte region that reads land in.

    Resizing swaps in fresh storage (only when the size actually
    changes); callers only ever see read-only views of the current data.
    """

    __slots__ = ("_storage", "_capacity", "allocations")

    def __init__(self, capacity: int = DEFAULT_READ_BUFFER_SIZE) -> None:
        if capacity < 1:
            raise ValueError(f"read buffer capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._storage = bytearray(capacity + READ_BUFFER_MARGIN)
        self.allocations = 1

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def allocation_size(self) -> int:
        return len(self._storage)

    def resize(self, capacity: int) -> bool:
        """Set a new capacity. Returns True if the storage was replaced."""
        if capacity == self._capacity:
            return False
        if capacity < 1:
            raise ValueError(f"read buffer capacity must be positive, got {capacity}")
        self._storage = bytearray(capacity + READ_BUFFER_MARGIN)
        self._capacity = capacity
        self.allocations += 1
        return True

    def fill(self, descriptor: FileDescriptor) -> tuple[int, int]:
        """One read from *descriptor* into the buffer. Returns (count, errno)."""
        storage = self._storage
        count, error = descriptor.read_into(storage, self._capacity)
        storage[max(count, 0)] = 0
        return count, error

    def view(self, count: int) -> memoryview:
        return memoryview(self._storage)[:max(count, 0)].toreadonly()
