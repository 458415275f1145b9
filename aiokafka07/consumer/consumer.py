import asyncio
import logging
from itertools import chain

from aiokafka07 import __version__
from aiokafka07.client import ConnectionCache
from aiokafka07.directory import StaticBrokerDirectory, ZooKeeperBrokerDirectory
from aiokafka07.errors import ConsumerStoppedError, IllegalStateError
from aiokafka07.structs import KafkaMessage, TopicPartition
from aiokafka07.util import create_task

from .fetcher import Fetcher, OffsetResetStrategy
from .offset_store import OffsetStore
from .offset_tracker import OffsetTracker

log = logging.getLogger(__name__)


class Kafka07Consumer:
    """A consumer of Kafka 0.7 topic partitions.

    In Kafka 0.7 a partition is hosted independently by every broker that
    registered it, each with its own log. The consumer reads every assigned
    partition from all brokers hosting it and keeps a read offset per broker.
    Partitions are assigned manually, there is no group management.

    Brokers are looked up in the ZooKeeper registry (`zookeeper_connect`), in
    a static broker list (`broker_list`), or in any other
    :class:`.BrokerDirectory` passed as `broker_directory`.

    Arguments:
        *partitions (list(TopicPartition)): partitions to consume. Can also be
            set later with :meth:`assign`.
        zookeeper_connect (str): ZooKeeper quorum the brokers register in,
            ``host:port[,host:port]``. Default: None
        broker_list (str or list(str)): static brokers as ``id:host:port``,
            either a list or a comma separated string. Default: None
        broker_directory (BrokerDirectory): custom broker lookup, takes
            precedence over `zookeeper_connect` and `broker_list`.
            Default: None
        handler (ConsumerHandler): callbacks used by :meth:`poll`, also
            provides the offset store and the default start offsets.
            Default: None
        client_id (str): a name for this client, used in log messages.
            Default: ``aiokafka07-{version}``
        fetch_size (int): maximum number of bytes fetched from one broker in
            one cycle. A message bigger than this can not be consumed.
            Default: 1048576.
        request_timeout_ms (int): timeout of a single broker request.
            Default: 30000.
        connections_max_idle_ms (int): close broker connections not used
            for this long. Default: 60000.
        auto_offset_reset (str): where to start reading a broker without a
            known offset, ``earliest`` or ``latest``. A handler returning an
            offset from :meth:`.ConsumerHandler.get_default_offset` takes
            precedence. Default: ``earliest``.
        enable_auto_commit (bool): periodically save read offsets to the
            offset store of the handler. Default: True.
        auto_commit_interval_ms (int): milliseconds between automatic offset
            saves. Default: 5000.
        consumer_timeout_ms (int): time to wait after a cycle returned no
            messages before running the next one when iterating.
            Default: 200.
        check_crcs (bool): verify the CRC32 of consumed messages.
            Default: True.
    """

    _closed = None

    def __init__(
        self,
        *partitions,
        zookeeper_connect=None,
        broker_list=None,
        broker_directory=None,
        handler=None,
        client_id="aiokafka07-" + __version__,
        fetch_size=1024 * 1024,
        request_timeout_ms=30000,
        connections_max_idle_ms=60000,
        auto_offset_reset="earliest",
        enable_auto_commit=True,
        auto_commit_interval_ms=5000,
        consumer_timeout_ms=200,
        check_crcs=True,
    ):
        if not isinstance(fetch_size, int) or fetch_size <= 0:
            raise ValueError("`fetch_size` should be positive Integer")
        if auto_commit_interval_ms <= 0:
            raise ValueError("`auto_commit_interval_ms` should be positive")

        if broker_directory is None:
            if zookeeper_connect:
                broker_directory = ZooKeeperBrokerDirectory(
                    zookeeper_connect, timeout_ms=request_timeout_ms)
            elif broker_list:
                if isinstance(broker_list, str):
                    broker_list = broker_list.split(",")
                broker_directory = StaticBrokerDirectory(broker_list)
            else:
                raise ValueError(
                    "No broker directory configured, set `zookeeper_connect`,"
                    " `broker_list` or `broker_directory`")

        self._client_id = client_id
        self._handler = handler
        self._auto_offset_reset = OffsetResetStrategy.from_str(
            auto_offset_reset)
        self._enable_auto_commit = enable_auto_commit
        self._auto_commit_interval = auto_commit_interval_ms / 1000
        self._consumer_timeout = consumer_timeout_ms / 1000

        self._directory = broker_directory
        self._connections = ConnectionCache(
            request_timeout_ms=request_timeout_ms,
            connections_max_idle_ms=connections_max_idle_ms)
        self._tracker = OffsetTracker(self._default_offset)
        self._fetcher = Fetcher(
            self._directory, self._connections, self._tracker,
            fetch_size=fetch_size, check_crcs=check_crcs)
        self._offset_store = OffsetStore(None)

        self._assignment = []
        self._pending = iter(())
        self._commit_task = None
        self._started = False
        self._closed = False

        if partitions:
            self.assign(*partitions)

    def __repr__(self):
        return f"<Kafka07Consumer client_id={self._client_id}>"

    def _default_offset(self, broker, tp):
        if self._handler is not None:
            offset = self._handler.get_default_offset(broker, tp)
            if offset is not None:
                return offset
        return self._auto_offset_reset

    async def start(self):
        """Start the broker directory, restore saved offsets of the assigned
        partitions and start committing offsets in the background.
        """
        if self._closed:
            raise ConsumerStoppedError()
        assert not self._started, "Did you call `start` twice?"
        log.debug("Starting the Kafka07Consumer %s", self._client_id)
        await self._directory.start()
        if self._handler is not None:
            self._offset_store = OffsetStore(self._handler.get_offset_store())
        self._started = True
        for tp in self._assignment:
            self._tracker.seed(tp, self._offset_store.load(tp))

        if self._enable_auto_commit and self._offset_store.enabled:
            self._commit_task = create_task(self._auto_commit_routine())

    async def stop(self):
        """Close the consumer. Offsets are saved one last time."""
        if self._closed:
            return
        log.debug("Closing the Kafka07Consumer.")
        self._closed = True
        self._fetcher.close()
        # In-flight fetches finish on the still open connections
        await self._fetcher.wait_closed()
        if self._commit_task is not None:
            self._commit_task.cancel()
            try:
                await self._commit_task
            except asyncio.CancelledError:
                pass
            self._commit_task = None
        if self._started:
            self._commit_offsets()
        self._connections.close()
        await self._directory.close()
        log.debug("The Kafka07Consumer has closed.")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    def assign(self, *partitions):
        """Set the partitions to consume, replacing any previous assignment.

        Arguments:
            *partitions (TopicPartition): partitions to consume
        """
        if self._closed:
            raise ConsumerStoppedError()
        assignment = []
        for tp in partitions:
            if not isinstance(tp, TopicPartition):
                tp = TopicPartition(*tp)
            if tp not in assignment:
                assignment.append(tp)

        for tp in self._assignment:
            if tp not in assignment:
                self._tracker.forget(tp)
        if self._started:
            for tp in assignment:
                if tp not in self._assignment:
                    self._tracker.seed(tp, self._offset_store.load(tp))
        self._assignment = assignment
        self._pending = iter(())

    def assignment(self):
        """Get the partitions currently assigned to this consumer.

        Returns:
            set(TopicPartition)
        """
        return set(self._assignment)

    def offsets(self, tp):
        """Copy of the per broker read offsets of `tp`."""
        return dict(self._tracker.offsets(tp))

    def _check_running(self):
        if self._closed:
            raise ConsumerStoppedError()
        if not self._started:
            raise IllegalStateError("Consumer is not started")

    async def getmany(self, *partitions) -> dict[
            TopicPartition, list[KafkaMessage]]:
        """Run one fetch cycle of each given partition.

        Arguments:
            partitions (list[TopicPartition]): partitions to fetch. All
                assigned partitions if none given.

        Returns:
            dict(TopicPartition, list[KafkaMessage]): fetched messages of the
            partitions that had any
        """
        self._check_running()
        if not partitions:
            partitions = self._assignment
        result = {}
        for tp in partitions:
            messages = list(await self._fetcher.read_messages(tp))
            if messages:
                result[tp] = messages
        return result

    async def poll(self):
        """Run one fetch cycle over all assigned partitions and hand every
        message to the handler.

        Every payload is decoded with :meth:`.ConsumerHandler.decode_payload`
        and passed to :meth:`.ConsumerHandler.process_message` in the order
        messages are read. Errors raised by the handler are propagated, the
        read offset of the broker has already moved past the failed message
        at that point.

        Returns:
            int: number of processed messages
        """
        self._check_running()
        if self._handler is None:
            raise IllegalStateError("`poll` requires a handler")
        count = 0
        for tp in self._assignment:
            for message in await self._fetcher.read_messages(tp):
                value = self._handler.decode_payload(message.payload)
                res = self._handler.process_message(value, message)
                if asyncio.iscoroutine(res):
                    await res
                count += 1
        return count

    async def commit(self):
        """Save the current read offsets of all assigned partitions to the
        offset store of the handler. Does nothing without a store.
        """
        self._check_running()
        self._commit_offsets()

    def _commit_offsets(self):
        if not self._offset_store.enabled:
            return
        snapshot = self._tracker.snapshot()
        self._offset_store.save(
            {tp: snapshot[tp] for tp in self._assignment if tp in snapshot})

    async def _auto_commit_routine(self):
        while True:
            await asyncio.sleep(self._auto_commit_interval)
            try:
                self._commit_offsets()
            except Exception:
                log.exception("Failed to commit offsets")

    async def _next_cycle(self):
        iterators = []
        for tp in self._assignment:
            iterators.append(await self._fetcher.read_messages(tp))
        return chain.from_iterable(iterators)

    def __aiter__(self):
        if self._closed:
            raise ConsumerStoppedError()
        return self

    async def __anext__(self) -> KafkaMessage:
        """Iterate over messages of all assigned partitions.

        Messages are taken from fetch cycles one by one, so the read offsets
        only move past messages that were actually returned.
        """
        while True:
            if self._closed:
                raise StopAsyncIteration
            self._check_running()
            try:
                return next(self._pending)
            except StopIteration:
                pass
            try:
                self._pending = await self._next_cycle()
            except ConsumerStoppedError:
                raise StopAsyncIteration from None
            try:
                return next(self._pending)
            except StopIteration:
                await asyncio.sleep(self._consumer_timeout)
