import asyncio
import unittest
from unittest import mock

import pytest

from aiokafka07 import (
    ConsumerHandler,
    Kafka07Consumer,
    MemoryKeyValueStore,
    StaticBrokerDirectory,
    ZooKeeperBrokerDirectory,
)
from aiokafka07.consumer.offset_store import OffsetStore
from aiokafka07.errors import ConsumerStoppedError, IllegalStateError
from aiokafka07.protocol.offset import LATEST_TIME
from aiokafka07.structs import KafkaBroker, TopicPartition

from ._testutil import BlockingDirectory, FakeKafka07Broker, run_until_complete

TP = TopicPartition("topic", 0)


class RecordingHandler(ConsumerHandler):
    def __init__(self, kv_store=None, default_offset=None):
        self.kv_store = kv_store
        self.default_offset = default_offset
        self.received = []

    def decode_payload(self, payload):
        return payload.decode("utf-8")

    async def process_message(self, value, message):
        self.received.append((value, message))

    def get_offset_store(self):
        return self.kv_store

    def get_default_offset(self, broker, tp):
        return self.default_offset


class SyncHandler(ConsumerHandler):
    def __init__(self):
        self.values = []

    def process_message(self, value, message):
        self.values.append(value)


@pytest.mark.usefixtures("setup_test_class_serverless")
class ConsumerTest(unittest.TestCase):
    def test_config_errors(self):
        with self.assertRaises(ValueError):
            Kafka07Consumer(TP)
        with self.assertRaises(ValueError):
            Kafka07Consumer(TP, broker_list="0:localhost:9092", fetch_size=0)
        with self.assertRaises(ValueError):
            Kafka07Consumer(
                TP, broker_list="0:localhost:9092", auto_offset_reset="none")
        with self.assertRaises(ValueError):
            Kafka07Consumer(TP, broker_list="localhost:9092")

    def test_directory_selection(self):
        consumer = Kafka07Consumer(TP, broker_list="1:host-b:9093,0:host-a:9092")
        self.assertIsInstance(consumer._directory, StaticBrokerDirectory)
        self.assertEqual(
            consumer._directory.brokers,
            [KafkaBroker("0", "host-a", 9092), KafkaBroker("1", "host-b", 9093)],
        )

        consumer = Kafka07Consumer(
            TP, zookeeper_connect="localhost:2181", broker_list="0:h:1")
        self.assertIsInstance(consumer._directory, ZooKeeperBrokerDirectory)

        directory = StaticBrokerDirectory(["0:h:1"])
        consumer = Kafka07Consumer(
            TP, zookeeper_connect="localhost:2181", broker_directory=directory)
        self.assertIs(consumer._directory, directory)

    def test_assign(self):
        consumer = Kafka07Consumer(
            TP, ("topic", 1), TP, broker_list="0:localhost:9092")
        self.assertEqual(
            consumer.assignment(), {TP, TopicPartition("topic", 1)})
        consumer.assign(TopicPartition("other", 0))
        self.assertEqual(consumer.assignment(), {TopicPartition("other", 0)})

    @run_until_complete
    async def test_lifecycle(self):
        consumer = Kafka07Consumer(TP, broker_list="0:localhost:9092")
        with self.assertRaises(IllegalStateError):
            await consumer.getmany()
        await consumer.start()
        await consumer.stop()
        # Stopping twice does nothing
        await consumer.stop()
        with self.assertRaises(ConsumerStoppedError):
            await consumer.getmany()
        with self.assertRaises(ConsumerStoppedError):
            await consumer.poll()
        with self.assertRaises(ConsumerStoppedError):
            await consumer.commit()
        with self.assertRaises(ConsumerStoppedError):
            consumer.assign(TP)
        with self.assertRaises(ConsumerStoppedError):
            consumer.__aiter__()

    @run_until_complete
    async def test_poll_requires_handler(self):
        consumer = Kafka07Consumer(TP, broker_list="0:localhost:9092")
        async with consumer:
            with self.assertRaises(IllegalStateError):
                await consumer.poll()

    @run_until_complete
    async def test_poll_and_resume(self):
        broker = FakeKafka07Broker("0")
        await broker.start()
        kv_store = MemoryKeyValueStore()
        try:
            broker.append("topic", 0, b"one", b"two")
            handler = RecordingHandler(kv_store)
            consumer = Kafka07Consumer(
                TP, broker_directory=StaticBrokerDirectory([broker.broker]),
                handler=handler, enable_auto_commit=False)
            async with consumer:
                self.assertEqual(await consumer.poll(), 2)
                self.assertEqual(
                    [value for value, _ in handler.received], ["one", "two"])
                _, last = handler.received[-1]
                self.assertEqual(last.offsets, consumer.offsets(TP))
                # Nothing saved before commit
                self.assertEqual(len(kv_store), 0)
                await consumer.commit()
                self.assertEqual(
                    OffsetStore(kv_store).load(TP), consumer.offsets(TP))

                self.assertEqual(await consumer.poll(), 0)
                end = broker.append("topic", 0, b"three")

            # Stop saves the offsets once more
            self.assertEqual(OffsetStore(kv_store).load(TP), last.offsets)

            handler = RecordingHandler(kv_store)
            consumer = Kafka07Consumer(
                TP, broker_directory=StaticBrokerDirectory([broker.broker]),
                handler=handler)
            async with consumer:
                self.assertEqual(await consumer.poll(), 1)
                self.assertEqual(
                    [value for value, _ in handler.received], ["three"])
                self.assertEqual(consumer.offsets(TP), {"0": end})
            self.assertEqual(OffsetStore(kv_store).load(TP), {"0": end})
        finally:
            await broker.stop()

    @run_until_complete
    async def test_sync_handler(self):
        broker = FakeKafka07Broker("0")
        await broker.start()
        try:
            broker.append("topic", 0, b"one")
            handler = SyncHandler()
            consumer = Kafka07Consumer(
                TP, broker_directory=StaticBrokerDirectory([broker.broker]),
                handler=handler)
            async with consumer:
                self.assertEqual(await consumer.poll(), 1)
            self.assertEqual(handler.values, [b"one"])
        finally:
            await broker.stop()

    @run_until_complete
    async def test_default_offset(self):
        broker = FakeKafka07Broker("0")
        await broker.start()
        try:
            broker.append("topic", 0, b"old")

            consumer = Kafka07Consumer(
                TP, broker_directory=StaticBrokerDirectory([broker.broker]),
                auto_offset_reset="latest")
            async with consumer:
                self.assertEqual(await consumer.getmany(), {})

            handler = RecordingHandler(default_offset=LATEST_TIME)
            consumer = Kafka07Consumer(
                TP, broker_directory=StaticBrokerDirectory([broker.broker]),
                handler=handler)
            async with consumer:
                self.assertEqual(await consumer.poll(), 0)
                broker.append("topic", 0, b"new")
                self.assertEqual(await consumer.poll(), 1)
            self.assertEqual([value for value, _ in handler.received], ["new"])

            # Handler without an opinion falls back to auto_offset_reset
            handler = RecordingHandler()
            consumer = Kafka07Consumer(
                TP, broker_directory=StaticBrokerDirectory([broker.broker]),
                handler=handler)
            async with consumer:
                self.assertEqual(await consumer.poll(), 2)
        finally:
            await broker.stop()

    @run_until_complete
    async def test_getmany(self):
        broker = FakeKafka07Broker("0")
        await broker.start()
        try:
            other = TopicPartition("topic", 1)
            broker.append("topic", 0, b"p0")
            broker.append("topic", 1, b"p1-a", b"p1-b")
            consumer = Kafka07Consumer(
                TP, other, broker_directory=StaticBrokerDirectory([broker.broker]))
            async with consumer:
                data = await consumer.getmany(other)
                self.assertEqual(list(data), [other])
                self.assertEqual(
                    [m.payload for m in data[other]], [b"p1-a", b"p1-b"])

                data = await consumer.getmany()
                self.assertEqual(list(data), [TP])
                self.assertEqual(data[TP][0].payload, b"p0")
        finally:
            await broker.stop()

    @run_until_complete
    async def test_iterator(self):
        broker = FakeKafka07Broker("0")
        await broker.start()
        try:
            broker.append("topic", 0, b"one", b"two")
            consumer = Kafka07Consumer(
                TP, broker_directory=StaticBrokerDirectory([broker.broker]),
                consumer_timeout_ms=20)
            await consumer.start()
            received = []

            async def consume():
                async for message in consumer:
                    received.append(message.payload)
                    # Offsets only move past returned messages
                    self.assertEqual(consumer.offsets(TP), message.offsets)
                    if len(received) == 2:
                        broker.append("topic", 0, b"three")

            task = asyncio.ensure_future(consume())
            for _ in range(100):
                if len(received) == 3:
                    break
                await asyncio.sleep(0.02)
            self.assertEqual(received, [b"one", b"two", b"three"])

            await consumer.stop()
            await asyncio.wait_for(task, 1)
        finally:
            await broker.stop()

    @run_until_complete
    async def test_stop_during_cycle(self):
        directory = BlockingDirectory(["0:127.0.0.1:9092", "1:127.0.0.1:9093"])
        consumer = Kafka07Consumer(TP, broker_directory=directory)
        await consumer.start()
        received = []

        async def consume():
            async for message in consumer:
                received.append(message)

        task = asyncio.ensure_future(consume())
        await asyncio.wait_for(directory.entered.wait(), 1)
        stopping = asyncio.ensure_future(consumer.stop())
        await asyncio.sleep(0.01)
        self.assertFalse(stopping.done())

        directory.release.set()
        await asyncio.wait_for(stopping, 1)
        # Iteration ends quietly
        await asyncio.wait_for(task, 1)
        self.assertEqual(received, [])

    @run_until_complete
    async def test_resume_inside_compressed_message(self):
        broker = FakeKafka07Broker("0")
        await broker.start()
        kv_store = MemoryKeyValueStore()
        try:
            end = broker.append(
                "topic", 0, b"z1", b"z2", b"z3", compression_type=1)
            consumer = Kafka07Consumer(
                TP, broker_directory=StaticBrokerDirectory([broker.broker]),
                handler=RecordingHandler(kv_store), enable_auto_commit=False)
            await consumer.start()
            message = await consumer.__anext__()
            self.assertEqual(message.payload, b"z1")
            await consumer.stop()
            # Still at the start of the compressed message
            self.assertEqual(OffsetStore(kv_store).load(TP), {"0": 0})

            consumer = Kafka07Consumer(
                TP, broker_directory=StaticBrokerDirectory([broker.broker]),
                handler=RecordingHandler(kv_store))
            async with consumer:
                data = await consumer.getmany()
            self.assertEqual(
                [m.payload for m in data[TP]], [b"z1", b"z2", b"z3"])
            self.assertEqual(data[TP][-1].offsets, {"0": end})
            self.assertEqual(OffsetStore(kv_store).load(TP), {"0": end})
        finally:
            await broker.stop()

    @run_until_complete
    async def test_auto_commit(self):
        broker = FakeKafka07Broker("0")
        await broker.start()
        kv_store = MemoryKeyValueStore()
        try:
            broker.append("topic", 0, b"one")
            handler = RecordingHandler(kv_store)
            consumer = Kafka07Consumer(
                TP, broker_directory=StaticBrokerDirectory([broker.broker]),
                handler=handler, auto_commit_interval_ms=50)
            async with consumer:
                await consumer.poll()
                await asyncio.sleep(0.2)
                self.assertEqual(
                    OffsetStore(kv_store).load(TP), consumer.offsets(TP))
        finally:
            await broker.stop()

    @run_until_complete
    async def test_auto_commit_failure_is_logged(self):
        kv_store = mock.Mock()
        kv_store.scan.return_value = iter(())
        kv_store.write.side_effect = RuntimeError("store down")
        consumer = Kafka07Consumer(
            TP, broker_list="0:localhost:9092",
            handler=RecordingHandler(kv_store), auto_commit_interval_ms=20)
        await consumer.start()
        consumer._tracker.update(TP, "0", 10)
        with self.assertLogs("aiokafka07.consumer.consumer", "ERROR"):
            await asyncio.sleep(0.1)
        # Still committing
        self.assertFalse(consumer._commit_task.done())
        consumer._offset_store = OffsetStore(None)
        await consumer.stop()
