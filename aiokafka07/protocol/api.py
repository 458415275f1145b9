from __future__ import annotations

from typing import ClassVar

from .struct import Struct
from .types import Int16, Int32


class RequestType:
    """Request type ids of the Kafka 0.7 wire protocol."""

    PRODUCE = 0
    FETCH = 1
    MULTIFETCH = 2
    MULTIPRODUCE = 3
    OFFSETS = 4


class Response(Struct):
    """Base class for 0.7 responses.

    A response frame is ``Int32 size | Int16 error_code | payload``. There is
    no correlation id, so responses are matched to requests by order only.
    Every response schema must start with ``error_code``.
    """

    error_code: int


class Request(Struct):
    """Base class for 0.7 requests.

    A request frame is ``Int32 size | Int16 request_type | body`` where the body
    of every single-partition request starts with the topic and partition.
    """

    REQUEST_TYPE: ClassVar[int]
    RESPONSE_TYPE: ClassVar[type[Response]]

    topic: str
    partition: int

    def to_frame(self) -> bytes:
        message = Int16.encode(self.REQUEST_TYPE) + self.encode()
        return Int32.encode(len(message)) + message
