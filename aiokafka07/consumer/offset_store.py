import logging
import struct

from aiokafka07.structs import TopicPartition

log = logging.getLogger(__name__)

OFFSET_STRUCT = struct.Struct(">q")


class OffsetStore:
    """Persists per broker read offsets into a :class:`KeyValueStore`.

    Every offset is stored under ``"<topic>:<partition>:<broker id>"`` as a
    big endian 8 byte integer. A consumer without a store (`kv_store` is
    `None`) keeps offsets in memory only; saving does nothing and loading
    finds nothing.
    """

    def __init__(self, kv_store):
        self._kv_store = kv_store

    @property
    def enabled(self):
        return self._kv_store is not None

    @staticmethod
    def _prefix(tp):
        return f"{tp.topic}:{tp.partition}:".encode("utf-8")

    @classmethod
    def key_for(cls, tp, broker_id):
        return cls._prefix(tp) + broker_id.encode("utf-8")

    def save(self, offsets):
        """Write ``{TopicPartition: {broker_id: offset}}``."""
        if self._kv_store is None:
            return
        for tp, broker_offsets in offsets.items():
            for broker_id, offset in broker_offsets.items():
                self._kv_store.write(
                    self.key_for(tp, broker_id), OFFSET_STRUCT.pack(offset))
        log.debug("Saved offsets %s", offsets)

    def load(self, tp: TopicPartition) -> dict[str, int]:
        """Read all saved broker offsets of `tp`."""
        if self._kv_store is None:
            return {}
        prefix = self._prefix(tp)
        # Every key of `tp` sorts before the prefix with its last byte bumped
        stop = prefix[:-1] + bytes([prefix[-1] + 1])
        offsets = {}
        for key, value in self._kv_store.scan(prefix, stop):
            broker_id = bytes(key)[len(prefix):].decode("utf-8")
            if len(value) != OFFSET_STRUCT.size:
                log.warning(
                    "Ignoring malformed offset of %s for broker %s", tp,
                    broker_id)
                continue
            (offsets[broker_id],) = OFFSET_STRUCT.unpack(value)
        return offsets
