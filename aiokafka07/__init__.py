__version__ = "0.1.0"

from .abc import ConsumerHandler, KeyValueStore
from .client import ConnectionCache
from .consumer import Kafka07Consumer
from .directory import (
    BrokerDirectory,
    StaticBrokerDirectory,
    ZooKeeperBrokerDirectory,
)
from .errors import ConsumerStoppedError
from .kvstore import MemoryKeyValueStore
from .structs import KafkaBroker, KafkaMessage, TopicPartition

__all__ = [
    # Clients API
    "Kafka07Consumer",
    "ConnectionCache",
    # Broker lookup
    "BrokerDirectory",
    "StaticBrokerDirectory",
    "ZooKeeperBrokerDirectory",
    # ABC's
    "ConsumerHandler",
    "KeyValueStore",
    "MemoryKeyValueStore",
    # Errors
    "ConsumerStoppedError",
    # Structs
    "KafkaBroker",
    "KafkaMessage",
    "TopicPartition",
]
