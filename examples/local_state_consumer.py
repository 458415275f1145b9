import asyncio
from aiokafka07 import (
    ConsumerHandler, KeyValueStore, Kafka07Consumer, TopicPartition)


import json
import pathlib
from collections import Counter

STATE_FILE = "/tmp/my-consumer-state.json"


class JsonFileStore(KeyValueStore):
    """Keeps read offsets in a JSON file, rewritten on every save."""

    def __init__(self, path):
        self._path = pathlib.Path(path)
        self._data = {}
        if self._path.exists():
            with self._path.open("r") as f:
                try:
                    self._data = {
                        key.encode(): bytes.fromhex(value)
                        for key, value in json.load(f).items()
                    }
                except json.JSONDecodeError:
                    pass

    def write(self, key, value):
        self._data[key] = value
        with self._path.open("w+") as f:
            json.dump({
                key.decode(): value.hex() for key, value in self._data.items()
            }, f)

    def scan(self, start, stop):
        for key in sorted(self._data):
            if start <= key < stop:
                yield key, self._data[key]


class CountingHandler(ConsumerHandler):

    def __init__(self, store):
        self.store = store
        self.counts = Counter()

    def decode_payload(self, payload):
        return payload.decode("utf-8")

    async def process_message(self, value, message):
        print("Process", message.topic_partition, value)
        self.counts[value] += 1

    def get_offset_store(self):
        return self.store


async def consume():
    handler = CountingHandler(JsonFileStore(STATE_FILE))
    consumer = Kafka07Consumer(
        TopicPartition("test", 0),
        TopicPartition("test", 1),
        broker_list="0:localhost:9092,1:localhost:9093",
        handler=handler,
        auto_commit_interval_ms=1000,  # Save offsets every second
    )

    try:
        await consumer.start()
        while True:
            if not await consumer.poll():
                await asyncio.sleep(1)
            print(handler.counts.most_common(5))
    finally:
        # Offsets are saved once more on stop
        await consumer.stop()


if __name__ == "__main__":
    asyncio.run(consume())
