from aiokafka07 import Kafka07Consumer, TopicPartition
import asyncio

async def consume():
    consumer = Kafka07Consumer(
        TopicPartition("my_topic", 0), zookeeper_connect='localhost:2181')
    # Connect to ZooKeeper to look up the brokers hosting the partition
    await consumer.start()
    try:
        async for msg in consumer:
            print(msg.payload, msg.offsets)
    finally:
        await consumer.stop()

asyncio.run(consume())
