import asyncio
import logging
import weakref
from collections import defaultdict

from aiokafka07.conn import CloseReason, Kafka07Connection
from aiokafka07.errors import IllegalStateError
from aiokafka07.util import get_running_loop

__all__ = ["ConnectionCache"]

log = logging.getLogger(__name__)


class _CacheEntry:
    __slots__ = ("conn", "accessed", "idle_handle")

    def __init__(self, conn, accessed):
        self.conn = conn
        self.accessed = accessed
        self.idle_handle = None


class ConnectionCache:
    """Keeps at most one connection per broker and drops the ones left idle.

    Connections are created on first use and closed once they were not
    accessed for `connections_max_idle_ms`. Creating the connection for one
    broker never waits on another broker.

    Arguments:
        request_timeout_ms (int): passed to every created connection.
            Default: 30000.
        connections_max_idle_ms (int): close connections not accessed for
            this long. A connection with a request in flight is never
            considered idle. Default: 60000.
    """

    def __init__(self, *, request_timeout_ms=30000, connections_max_idle_ms=60000):
        self._request_timeout_ms = request_timeout_ms
        self._max_idle_ms = connections_max_idle_ms
        self._entries = {}
        self._locks = defaultdict(asyncio.Lock)
        self._closed = False

    def __len__(self):
        return len(self._entries)

    def __contains__(self, broker):
        return broker in self._entries

    async def connection_for(self, broker, fetch_size) -> Kafka07Connection:
        """Return the cached connection to `broker`, creating it if needed.

        The connection itself connects on its first request, so this never
        does network I/O.
        """
        if self._closed:
            raise IllegalStateError("Connection cache is closed")
        loop = get_running_loop()

        entry = self._entries.get(broker)
        if entry is not None:
            entry.accessed = loop.time()
            return entry.conn

        async with self._locks[broker]:
            if self._closed:
                raise IllegalStateError("Connection cache is closed")
            entry = self._entries.get(broker)
            if entry is None:
                log.debug("Creating connection to broker %s", broker)
                conn = Kafka07Connection(
                    broker.host,
                    broker.port,
                    request_timeout_ms=self._request_timeout_ms,
                    buffer_size=fetch_size,
                )
                entry = _CacheEntry(conn, loop.time())
                self._entries[broker] = entry
                if self._max_idle_ms is not None:
                    entry.idle_handle = loop.call_later(
                        self._max_idle_ms / 1000,
                        self._idle_check,
                        weakref.ref(self),
                        broker,
                        entry,
                    )
            else:
                entry.accessed = loop.time()
            return entry.conn

    @staticmethod
    def _idle_check(self_ref, broker, entry):
        self = self_ref()
        if self is None or self._entries.get(broker) is not entry:
            return
        loop = get_running_loop()
        last_access = entry.accessed
        if entry.conn.last_action is not None:
            last_access = max(last_access, entry.conn.last_action)
        idle_for = loop.time() - last_access
        timeout = self._max_idle_ms / 1000
        # Requests in flight are bounded by `request_timeout_ms`, not by us
        if idle_for >= timeout and not entry.conn.in_flight():
            log.debug("Dropping connection to broker %s idle for %.1fs",
                      broker, idle_for)
            self._evict(broker, CloseReason.IDLE_DROP)
        else:
            if entry.conn.in_flight():
                wake_up_in = timeout
            else:
                wake_up_in = timeout - idle_for
            entry.idle_handle = loop.call_later(
                wake_up_in, self._idle_check, self_ref, broker, entry
            )

    def _evict(self, broker, reason):
        entry = self._entries.pop(broker, None)
        if entry is None:
            return
        lock = self._locks.get(broker)
        if lock is not None and not lock.locked():
            # Only cached brokers keep a lock
            del self._locks[broker]
        if entry.idle_handle is not None:
            entry.idle_handle.cancel()
            entry.idle_handle = None
        try:
            entry.conn.close(reason=reason)
        except Exception:
            log.exception("Failed to close connection to broker %s", broker)

    def invalidate(self, broker):
        """Drop and close the connection to `broker`, if any."""
        if broker in self._entries:
            log.info("Invalidating connection to broker %s", broker)
        self._evict(broker, CloseReason.INVALIDATED)

    def close(self):
        """Close all connections. The cache can't be used afterwards."""
        if self._closed:
            return
        self._closed = True
        for broker in list(self._entries):
            self._evict(broker, CloseReason.SHUTDOWN)
        self._locks.clear()
