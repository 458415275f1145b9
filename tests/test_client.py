import asyncio
import unittest
from unittest import mock

import pytest

from aiokafka07.client import ConnectionCache
from aiokafka07.conn import CloseReason, Kafka07Connection
from aiokafka07.errors import IllegalStateError
from aiokafka07.structs import KafkaBroker

from ._testutil import run_until_complete

BROKER_A = KafkaBroker("0", "127.0.0.1", 9092)
BROKER_B = KafkaBroker("1", "127.0.0.1", 9093)


@pytest.mark.usefixtures("setup_test_class_serverless")
class ConnectionCacheTest(unittest.TestCase):
    @run_until_complete
    async def test_connection_for(self):
        cache = ConnectionCache(request_timeout_ms=1000)
        conn = await cache.connection_for(BROKER_A, 1024)
        self.assertIsInstance(conn, Kafka07Connection)
        self.assertEqual(conn.host, BROKER_A.host)
        self.assertEqual(conn.port, BROKER_A.port)
        self.assertEqual(conn.buffer_size, 1024)
        # Created lazily, no connection attempt yet
        self.assertFalse(conn.connected())

        self.assertIs(await cache.connection_for(BROKER_A, 1024), conn)
        other = await cache.connection_for(BROKER_B, 1024)
        self.assertIsNot(other, conn)
        self.assertEqual(len(cache), 2)
        self.assertIn(BROKER_A, cache)
        self.assertIn(BROKER_B, cache)
        cache.close()

    @run_until_complete
    async def test_concurrent_creation(self):
        cache = ConnectionCache()
        conns = await asyncio.gather(
            *(cache.connection_for(BROKER_A, 1024) for _ in range(10)),
            *(cache.connection_for(BROKER_B, 1024) for _ in range(10)),
        )
        self.assertEqual(len({id(conn) for conn in conns[:10]}), 1)
        self.assertEqual(len({id(conn) for conn in conns[10:]}), 1)
        self.assertEqual(len(cache), 2)
        cache.close()

    @run_until_complete
    async def test_invalidate(self):
        cache = ConnectionCache()
        conn = await cache.connection_for(BROKER_A, 1024)
        with mock.patch.object(conn, "close") as mocked:
            cache.invalidate(BROKER_A)
            mocked.assert_called_once_with(reason=CloseReason.INVALIDATED)
            self.assertNotIn(BROKER_A, cache)
            self.assertNotIn(BROKER_A, cache._locks)
            # Unknown brokers are ignored
            cache.invalidate(BROKER_A)
            mocked.assert_called_once_with(reason=CloseReason.INVALIDATED)

        new_conn = await cache.connection_for(BROKER_A, 1024)
        self.assertIsNot(new_conn, conn)
        cache.close()

    @run_until_complete
    async def test_broker_churn(self):
        cache = ConnectionCache()
        for port in range(10000, 10100):
            broker = KafkaBroker(str(port), "127.0.0.1", port)
            await cache.connection_for(broker, 1024)
            cache.invalidate(broker)
        self.assertEqual(len(cache), 0)
        self.assertEqual(len(cache._locks), 0)
        cache.close()

    @run_until_complete
    async def test_close_failure_is_logged(self):
        cache = ConnectionCache()
        conn = await cache.connection_for(BROKER_A, 1024)
        with mock.patch.object(conn, "close", side_effect=RuntimeError("boom")):
            with self.assertLogs("aiokafka07.client", "ERROR"):
                cache.invalidate(BROKER_A)
        self.assertEqual(len(cache), 0)
        cache.close()

    @run_until_complete
    async def test_idle_expiry(self):
        cache = ConnectionCache(connections_max_idle_ms=50)
        conn = await cache.connection_for(BROKER_A, 1024)
        with mock.patch.object(conn, "close") as mocked:
            await asyncio.sleep(0.3)
            self.assertNotIn(BROKER_A, cache)
            mocked.assert_called_once_with(reason=CloseReason.IDLE_DROP)
            self.assertNotIn(BROKER_A, cache._locks)

        new_conn = await cache.connection_for(BROKER_A, 1024)
        self.assertIsNot(new_conn, conn)
        cache.close()

    @run_until_complete
    async def test_access_keeps_connection(self):
        cache = ConnectionCache(connections_max_idle_ms=200)
        conn = await cache.connection_for(BROKER_A, 1024)
        for _ in range(6):
            await asyncio.sleep(0.05)
            self.assertIs(await cache.connection_for(BROKER_A, 1024), conn)
        self.assertIn(BROKER_A, cache)

        await asyncio.sleep(0.5)
        self.assertNotIn(BROKER_A, cache)
        cache.close()

    @run_until_complete
    async def test_in_flight_not_idle(self):
        cache = ConnectionCache(connections_max_idle_ms=50)
        conn = await cache.connection_for(BROKER_A, 1024)
        with mock.patch.object(conn, "in_flight", return_value=True):
            await asyncio.sleep(0.2)
            self.assertIn(BROKER_A, cache)
        await asyncio.sleep(0.2)
        self.assertNotIn(BROKER_A, cache)
        cache.close()

    @run_until_complete
    async def test_close(self):
        cache = ConnectionCache()
        conn_a = await cache.connection_for(BROKER_A, 1024)
        conn_b = await cache.connection_for(BROKER_B, 1024)
        with mock.patch.object(conn_a, "close") as close_a, mock.patch.object(
            conn_b, "close"
        ) as close_b:
            cache.close()
            close_a.assert_called_once_with(reason=CloseReason.SHUTDOWN)
            close_b.assert_called_once_with(reason=CloseReason.SHUTDOWN)
            # Closing twice does nothing
            cache.close()
            close_a.assert_called_once_with(reason=CloseReason.SHUTDOWN)
        self.assertEqual(len(cache), 0)

        with self.assertRaises(IllegalStateError):
            await cache.connection_for(BROKER_A, 1024)
