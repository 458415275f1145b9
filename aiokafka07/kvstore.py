from bisect import bisect_left, insort

from aiokafka07.abc import KeyValueStore

__all__ = ["MemoryKeyValueStore"]


class MemoryKeyValueStore(KeyValueStore):
    """In-memory :class:`KeyValueStore`. Useful for tests and for consumers
    that only need offsets to survive a restart of the consumer, not of the
    process.
    """

    def __init__(self):
        self._data = {}
        self._keys = []

    def write(self, key, value):
        key = bytes(key)
        if key not in self._data:
            insort(self._keys, key)
        self._data[key] = bytes(value)

    def read(self, key):
        """Return the value stored under `key` or `None`."""
        return self._data.get(bytes(key))

    def scan(self, start, stop):
        keys = self._keys
        idx = bisect_left(keys, bytes(start))
        stop = bytes(stop)
        # Copy, writes during iteration must not shift our position
        for key in keys[idx : bisect_left(keys, stop, lo=idx)]:
            yield key, self._data[key]

    def __len__(self):
        return len(self._data)
