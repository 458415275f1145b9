import asyncio
import logging
from itertools import chain

import aiokafka07.errors as Errors
from aiokafka07.record.message_set import MessageSet
from aiokafka07.structs import KafkaMessage

log = logging.getLogger(__name__)


class OffsetResetStrategy:
    LATEST = -1
    EARLIEST = -2

    @classmethod
    def from_str(cls, name):
        name = name.lower()
        if name == "latest":
            return cls.LATEST
        if name == "earliest":
            return cls.EARLIEST
        raise ValueError(
            f"Unrecognized auto_offset_reset {name!r}, expected "
            "'earliest' or 'latest'")

    @classmethod
    def to_str(cls, value):
        if value == cls.LATEST:
            return "latest"
        if value == cls.EARLIEST:
            return "earliest"
        return f"timestamp({value})"


class FetchResult:
    """Outcome of one fetch from one broker: the decoded messages, or the
    error that made the fetch fail.
    """

    def __init__(self, broker, tp, begin_offset, *, messages=None, error=None):
        self.broker = broker
        self.topic_partition = tp
        self.begin_offset = begin_offset
        self._messages = messages if messages is not None else []
        self._error = error

    def is_success(self):
        return self._error is None

    @property
    def failure_cause(self):
        return self._error

    def __iter__(self):
        if self._error is not None:
            raise Errors.IllegalStateError(
                f"Fetch of {self.topic_partition} from {self.broker} failed")
        return iter(self._messages)

    def __len__(self):
        return len(self._messages)

    def __repr__(self):
        if self._error is not None:
            state = f"error={self._error!r}"
        else:
            state = f"messages={len(self._messages)}"
        return (
            f"<FetchResult broker={self.broker} tp={self.topic_partition} "
            f"begin_offset={self.begin_offset} {state}>")


async def fetch_messages(conn, broker, tp, offset, max_size, *, check_crcs=True):
    """Fetch `tp` from `broker` starting at `offset`.

    Never raises. Broker error codes and any transport or decoding error are
    returned as a failed :class:`FetchResult`.
    """
    try:
        response = await conn.fetch(tp.topic, tp.partition, offset, max_size)
        error_type = Errors.for_code(response.error_code)
        if error_type is not Errors.NoError:
            raise error_type(
                f"Fetch of {tp} at offset {offset} rejected by broker")
        messages = list(MessageSet(
            response.message_set, offset, check_crcs=check_crcs))
    except Errors.OffsetOutOfRangeError as err:
        log.warning(
            "Offset %s of %s out of range on broker %s", offset, tp, broker)
        return FetchResult(broker, tp, offset, error=err)
    except Exception as err:
        log.error(
            "Failed to fetch %s at offset %s from broker %s: %r",
            tp, offset, broker, err)
        return FetchResult(broker, tp, offset, error=err)
    log.debug(
        "Fetched %s messages of %s at offset %s from broker %s",
        len(messages), tp, offset, broker)
    return FetchResult(broker, tp, offset, messages=messages)


class Fetcher:
    """Runs fetch cycles of a partition over all brokers hosting it.

    Each cycle asks the directory for the brokers of the partition, fetches
    from each of them starting at its tracked offset and concatenates the
    results in broker order. With several brokers the fetches run
    concurrently. Failures of one broker never affect the others: an out of
    range offset is corrected in the tracker, any other failure drops the
    broker's connection so the next cycle reconnects.

    Arguments:
        directory (BrokerDirectory): source of the brokers of a partition
        connections (ConnectionCache): per broker connections
        tracker (OffsetTracker): per broker read offsets
        fetch_size (int): maximum bytes fetched per broker and cycle
        check_crcs (bool): verify message checksums
    """

    def __init__(
            self, directory, connections, tracker, *, fetch_size=1024 * 1024,
            check_crcs=True):
        self._directory = directory
        self._connections = connections
        self._tracker = tracker
        self._fetch_size = fetch_size
        self._check_crcs = check_crcs
        self._closed = False
        self._cycles = 0
        self._idle = asyncio.Event()
        self._idle.set()

    def close(self):
        """Stop accepting fetch cycles. Cycles already running stop
        dispatching to further brokers, see :meth:`wait_closed`.
        """
        self._closed = True

    async def wait_closed(self):
        """Wait for the fetch cycles running at close to finish."""
        await self._idle.wait()

    async def read_messages(self, tp, fetch_size=None):
        """Run one fetch cycle of `tp`.

        Returns an iterator over the fetched messages. The tracked offset of
        a broker advances as its messages are taken from the iterator.
        """
        if self._closed:
            raise Errors.ConsumerStoppedError()
        if fetch_size is None:
            fetch_size = self._fetch_size

        self._cycles += 1
        self._idle.clear()
        try:
            return await self._fetch_cycle(tp, fetch_size)
        finally:
            self._cycles -= 1
            if not self._cycles:
                self._idle.set()

    async def _fetch_cycle(self, tp, fetch_size):
        brokers = await self._directory.get_brokers(tp.topic, tp.partition)
        if not brokers:
            log.debug("No brokers known for %s", tp)
            return iter(())
        if len(brokers) == 1:
            return await self._single_fetch(tp, brokers[0], fetch_size)
        return await self._multi_fetch(tp, brokers, fetch_size)

    async def _start_fetch(self, tp, broker, fetch_size):
        # Returns the connection and offset to fetch from, None if the
        # broker has to be skipped this cycle
        if self._closed:
            raise Errors.ConsumerStoppedError()
        try:
            conn = await self._connections.connection_for(broker, fetch_size)
        except Errors.IllegalStateError as err:
            # Connection cache closed under us
            raise Errors.ConsumerStoppedError() from err
        try:
            offset = await self._tracker.offset_for(broker, tp, conn)
        except Errors.KafkaError as err:
            log.error(
                "Failed to resolve start offset of %s on broker %s: %r",
                tp, broker, err)
            self._connections.invalidate(broker)
            return None
        return conn, offset

    async def _single_fetch(self, tp, broker, fetch_size):
        started = await self._start_fetch(tp, broker, fetch_size)
        if started is None:
            return iter(())
        conn, offset = started
        result = await fetch_messages(
            conn, broker, tp, offset, fetch_size, check_crcs=self._check_crcs)
        return await self._handle_fetch(result, conn)

    async def _multi_fetch(self, tp, brokers, fetch_size):
        dispatched = []
        for broker in brokers:
            started = await self._start_fetch(tp, broker, fetch_size)
            if started is not None:
                conn, offset = started
                dispatched.append((broker, conn, offset))
        if not dispatched:
            return iter(())

        try:
            results = await asyncio.gather(*(
                fetch_messages(
                    conn, broker, tp, offset, fetch_size,
                    check_crcs=self._check_crcs)
                for broker, conn, offset in dispatched))
        except Exception:
            log.exception("Concurrent fetch of %s failed", tp)
            return iter(())

        iterators = []
        for (_, conn, _), result in zip(dispatched, results):
            iterators.append(await self._handle_fetch(result, conn))
        return chain.from_iterable(iterators)

    async def _handle_fetch(self, result, conn):
        broker = result.broker
        tp = result.topic_partition
        if result.is_success():
            return self._message_iterator(result)

        error = result.failure_cause
        if isinstance(error, Errors.OffsetOutOfRangeError):
            try:
                await self._tracker.reset_out_of_range(
                    broker, tp, conn, result.begin_offset)
            except Errors.KafkaError as err:
                log.error(
                    "Failed to reset offset of %s on broker %s: %r",
                    tp, broker, err)
                self._connections.invalidate(broker)
        else:
            self._connections.invalidate(broker)
        return iter(())

    def _message_iterator(self, result):
        tp = result.topic_partition
        broker_id = result.broker.broker_id
        offsets = self._tracker.offsets(tp)
        for message in result:
            # The broker may answer with messages before the offset asked for
            if message.offset < result.begin_offset:
                continue
            offsets[broker_id] = message.offset
            yield KafkaMessage(
                topic_partition=tp,
                offsets=dict(offsets),
                key=None,
                payload=message.payload,
            )
