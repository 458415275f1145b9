import logging

from aiokafka07.protocol.offset import EARLIEST_TIME, LATEST_TIME

log = logging.getLogger(__name__)


class OffsetTracker:
    """Read positions of the consumed partitions, one per broker.

    In Kafka 0.7 every broker hosting a partition keeps its own log, so the
    read position of a partition is a map from broker id to the byte position
    of the next message to read on that broker. Brokers appear in the map
    only once their position was resolved.

    Arguments:
        default_offset: callable ``(broker, tp) -> int`` giving the start
            position of a broker without a known one. Negative values are
            resolved with an offsets request, ``-2`` to the earliest and
            ``-1`` to the latest available offset.
    """

    def __init__(self, default_offset):
        self._default_offset = default_offset
        self._offsets = {}

    def offsets(self, tp):
        """Live offset map of `tp`, created empty on first access."""
        return self._offsets.setdefault(tp, {})

    def seed(self, tp, offsets):
        """Take over previously saved positions of `tp`."""
        if offsets:
            log.info("Resuming %s from offsets %s", tp, offsets)
        self.offsets(tp).update(offsets)

    def update(self, tp, broker_id, offset):
        self.offsets(tp)[broker_id] = offset

    def forget(self, tp):
        self._offsets.pop(tp, None)

    def snapshot(self):
        """Copy of all offset maps, safe to hand out and persist."""
        return {tp: dict(offsets) for tp, offsets in self._offsets.items()}

    async def offset_for(self, broker, tp, conn):
        """Return the read position of `tp` on `broker`, resolving and
        storing the default position if none is known yet.
        """
        offsets = self.offsets(tp)
        offset = offsets.get(broker.broker_id)
        if offset is not None:
            return offset

        offset = self._default_offset(broker, tp)
        if offset < 0:
            offset = await self._resolve(broker, tp, conn, offset)
        log.debug("Starting %s on broker %s at offset %s", tp, broker, offset)
        offsets[broker.broker_id] = offset
        return offset

    async def reset_out_of_range(self, broker, tp, conn, begin_offset):
        """Pick a new position for `tp` on `broker` after a fetch from
        `begin_offset` was rejected as out of range.

        Reading continues from the earliest available offset, unless that is
        behind `begin_offset` in which case we skip to the latest.
        """
        offset = await self._resolve(broker, tp, conn, EARLIEST_TIME)
        if offset < begin_offset:
            offset = await self._resolve(broker, tp, conn, LATEST_TIME)
        log.info(
            "Offset %s of %s out of range on broker %s, resetting to %s",
            begin_offset, tp, broker, offset)
        self.update(tp, broker.broker_id, offset)
        return offset

    async def _resolve(self, broker, tp, conn, time):
        offsets = await conn.offsets_before(tp.topic, tp.partition, time, 1)
        if not offsets:
            # Nothing was ever written to the partition on this broker
            return 0
        return offsets[0]
