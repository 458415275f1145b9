from dataclasses import dataclass
from typing import NamedTuple, Optional

__all__ = [
    "TopicPartition",
    "KafkaBroker",
    "MessageAndOffset",
    "KafkaMessage",
]


class TopicPartition(NamedTuple):
    """A topic and partition tuple"""

    topic: str
    "A topic name"

    partition: int
    "A partition id"


class KafkaBroker(NamedTuple):
    """A Kafka 0.7 broker as registered in ZooKeeper or given statically"""

    broker_id: str
    "The broker id. Offsets are tracked per broker under this id"

    host: str
    "The Kafka broker hostname"

    port: int
    "The Kafka broker port"

    @classmethod
    def from_string(cls, value: str) -> "KafkaBroker":
        """Parse ``id:host:port``, the 0.7 ``broker.list`` entry format."""
        broker_id, host, port = value.strip().split(":")
        return cls(broker_id, host, int(port))

    def __str__(self) -> str:
        return f"{self.broker_id}@{self.host}:{self.port}"


class MessageAndOffset(NamedTuple):
    """A message payload as read from a 0.7 message set"""

    payload: bytes
    "The raw message payload"

    offset: int
    """Position right after this message in the broker's log, i.e. the offset
    the next fetch should start from.
    """


@dataclass
class KafkaMessage:
    topic_partition: TopicPartition
    "The topic partition this message is received from"

    offsets: dict[str, int]
    """Snapshot of the per broker read offsets of the partition after
    advancing past this message
    """

    key: Optional[bytes]
    "Always `None`, messages have no key in Kafka 0.7"

    payload: bytes
    "The raw message payload"

    @property
    def topic(self) -> str:
        return self.topic_partition.topic

    @property
    def partition(self) -> int:
        return self.topic_partition.partition
