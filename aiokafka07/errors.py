from typing import Type

from kafka.errors import CorruptRecordException  # 2
from kafka.errors import InvalidFetchRequestError  # 4
from kafka.errors import MessageSizeTooLargeError
from kafka.errors import NoError  # 0
from kafka.errors import OffsetOutOfRangeError  # 1
from kafka.errors import UnknownError  # -1
from kafka.errors import UnknownTopicOrPartitionError  # 3
from kafka.errors import (
    BrokerResponseError,
    IllegalStateError,
    KafkaConnectionError,
    KafkaError,
    KafkaProtocolError,
    KafkaTimeoutError,
    UnsupportedCodecError,
)


__all__ = [
    # aiokafka07 custom errors
    "ConsumerStoppedError",
    "InvalidMessageError",
    "WrongPartitionError",
    "InvalidFetchSizeError",
    # Kafka Python errors
    "KafkaError",
    "IllegalStateError",
    "KafkaProtocolError",
    "BrokerResponseError",
    "KafkaConnectionError",
    "KafkaTimeoutError",
    "UnsupportedCodecError",
    "MessageSizeTooLargeError",
    # Kafka 0.7 error codes
    "NoError",  # 0
    "UnknownError",  # -1
    "OffsetOutOfRangeError",  # 1
    "CorruptRecordException",  # 2
    "UnknownTopicOrPartitionError",  # 3
    "InvalidFetchRequestError",  # 4
    "for_code",
]


# Kafka 0.7 names for the codes shared with later protocol versions
InvalidMessageError = CorruptRecordException
WrongPartitionError = UnknownTopicOrPartitionError
InvalidFetchSizeError = InvalidFetchRequestError


class ConsumerStoppedError(Exception):
    """Raised on `get*` and `poll` methods of Consumer once it was stopped."""


# A 0.7 broker only ever answers with these codes. Higher numbers belong to
# later protocol generations and are reported as UnknownError.
_0_7_ERRORS: tuple[Type[BrokerResponseError], ...] = (
    UnknownError,
    NoError,
    OffsetOutOfRangeError,
    InvalidMessageError,
    WrongPartitionError,
    InvalidFetchSizeError,
)


kafka_errors = {x.errno: x for x in _0_7_ERRORS}


def for_code(error_code: int) -> Type[BrokerResponseError]:
    return kafka_errors.get(error_code, UnknownError)
