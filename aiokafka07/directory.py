import abc
import functools
import logging

from kazoo.client import KazooClient
from kazoo.exceptions import KazooException, NoNodeError
from kazoo.handlers.threading import KazooTimeoutError
from kazoo.retry import KazooRetry

from aiokafka07.structs import KafkaBroker
from aiokafka07.util import get_running_loop

__all__ = [
    "BrokerDirectory",
    "StaticBrokerDirectory",
    "ZooKeeperBrokerDirectory",
]

log = logging.getLogger(__name__)

BROKER_IDS_PATH = "/brokers/ids"
BROKER_TOPICS_PATH = "/brokers/topics"

# Fixed delay between ZooKeeper connection attempts, retried forever
ZK_RETRY_DELAY = 2


def _broker_sort_key(broker):
    broker_id = broker.broker_id
    if broker_id.isdigit():
        return (0, int(broker_id), broker_id)
    return (1, 0, broker_id)


class BrokerDirectory(abc.ABC):
    """Tells which brokers host a given topic partition.

    Lookups never raise: when the brokers can't be determined an empty list is
    returned and the failure is logged.
    """

    async def start(self):
        pass

    async def close(self):
        pass

    @abc.abstractmethod
    async def get_brokers(self, topic, partition) -> list[KafkaBroker]:
        pass


class StaticBrokerDirectory(BrokerDirectory):
    """Directory over a fixed broker list, the 0.7 ``broker.list`` setting.

    Every broker is assumed to serve every partition of `topics` (or of all
    topics, if `topics` is `None`).

    Arguments:
        brokers: ``"id:host:port"`` strings or :class:`KafkaBroker` values
        topics (list[str]): topics served by the brokers. Default: all.
    """

    def __init__(self, brokers, topics=None):
        parsed = []
        for broker in brokers:
            if not isinstance(broker, KafkaBroker):
                try:
                    broker = KafkaBroker.from_string(broker)
                except ValueError as err:
                    raise ValueError(
                        f"Invalid broker {broker!r}, expected 'id:host:port'"
                    ) from err
            parsed.append(broker)
        if not parsed:
            raise ValueError("Static broker list is empty")
        self._brokers = sorted(set(parsed), key=_broker_sort_key)
        self._topics = None if topics is None else frozenset(topics)

    @property
    def brokers(self):
        return list(self._brokers)

    async def get_brokers(self, topic, partition):
        if self._topics is not None and topic not in self._topics:
            log.warning("Topic %s is not served by the static broker list", topic)
            return []
        return list(self._brokers)


class ZooKeeperBrokerDirectory(BrokerDirectory):
    """Directory reading the Kafka 0.7 broker registry in ZooKeeper.

    The registry layout is::

        /brokers/ids/<broker id>            "<creator>:<host>:<port>"
        /brokers/topics/<topic>/<broker id> number of partitions on the broker

    A broker serves partition ``p`` of a topic if ``p`` is less than the
    number of partitions it registered for the topic. Lookups are cached per
    topic until ZooKeeper reports a change of the registry.

    Arguments:
        zookeeper_connect (str): ZooKeeper quorum, ``host:port[,host:port]``
        timeout_ms (int): session timeout and the time :meth:`start` waits
            for the first connection. Default: 10000.
        client (kazoo.client.KazooClient): use this client instead of
            creating one. It is still started and stopped by the directory.
    """

    def __init__(self, zookeeper_connect=None, *, timeout_ms=10000, client=None):
        if client is None:
            if not zookeeper_connect:
                raise ValueError("ZooKeeper quorum is not configured")
            client = KazooClient(
                hosts=zookeeper_connect,
                timeout=timeout_ms / 1000,
                connection_retry=KazooRetry(
                    max_tries=-1,
                    delay=ZK_RETRY_DELAY,
                    backoff=1,
                    max_delay=ZK_RETRY_DELAY,
                ),
            )
        self._zk = client
        self._timeout = timeout_ms / 1000
        self._loop = None
        self._topics = {}
        # Bumped on every registry change of a topic
        self._generations = {}
        self._started = False

    async def _run(self, func, *args):
        return await self._loop.run_in_executor(
            None, functools.partial(func, *args)
        )

    async def start(self):
        if self._started:
            return
        self._loop = get_running_loop()
        self._started = True
        event = self._zk.start_async()
        connected = await self._run(event.wait, self._timeout)
        if not connected:
            # The client keeps retrying in the background
            log.warning(
                "Not connected to ZooKeeper after %.1fs, lookups will return no"
                " brokers until the connection is established",
                self._timeout,
            )
        else:
            log.info("Connected to ZooKeeper")

    async def close(self):
        if not self._started:
            return
        self._started = False
        self._topics.clear()
        try:
            await self._run(self._zk.stop)
            await self._run(self._zk.close)
        except (KazooException, KazooTimeoutError):
            log.exception("Failed to close ZooKeeper client")

    async def get_brokers(self, topic, partition):
        if not self._started:
            log.warning("Broker lookup for %s-%s before start", topic, partition)
            return []
        registered = self._topics.get(topic)
        if registered is None:
            generation = self._generations.get(topic, 0)
            try:
                registered = await self._run(self._read_topic, topic)
            except NoNodeError:
                log.warning("Topic %s is not registered in ZooKeeper", topic)
                return []
            except (KazooException, KazooTimeoutError, ValueError) as err:
                log.error("Failed to read brokers of topic %s: %r", topic, err)
                return []
            # A change seen during the read may predate part of it
            if self._generations.get(topic, 0) == generation:
                self._topics[topic] = registered
        brokers = [
            broker for broker, num_parts in registered if partition < num_parts
        ]
        if not brokers:
            log.warning("No broker serves partition %s-%s", topic, partition)
        return brokers

    def _read_topic(self, topic):
        # Runs in the executor. Watches are one-shot and set again by the
        # next read after they invalidated the cache.
        watch = functools.partial(self._on_change, topic)
        topic_path = f"{BROKER_TOPICS_PATH}/{topic}"
        registered = []
        for broker_id in self._zk.get_children(topic_path, watch=watch):
            try:
                data, _ = self._zk.get(f"{topic_path}/{broker_id}", watch=watch)
                num_parts = int(data.decode("utf-8").strip())
                data, _ = self._zk.get(f"{BROKER_IDS_PATH}/{broker_id}", watch=watch)
            except NoNodeError:
                # Broker went away between listing and reading
                log.debug("Broker %s vanished while reading %s", broker_id, topic)
                continue
            _, host, port = data.decode("utf-8").strip().rsplit(":", 2)
            registered.append((KafkaBroker(broker_id, host, int(port)), num_parts))
        registered.sort(key=lambda item: _broker_sort_key(item[0]))
        log.debug("Brokers of topic %s: %s", topic, registered)
        return registered

    def _on_change(self, topic, event):
        # Called from a kazoo thread
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(self._invalidate, topic)

    def _invalidate(self, topic):
        self._generations[topic] = self._generations.get(topic, 0) + 1
        if self._topics.pop(topic, None) is not None:
            log.debug("Broker registry of topic %s changed", topic)
