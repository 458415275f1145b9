from io import BytesIO
from typing import Union

from typing_extensions import Self

from .api import Request, RequestType, Response
from .types import Array, Int16, Int32, Int64, Schema, String

# Special values of the OffsetsRequest `time` field
LATEST_TIME = -1
EARLIEST_TIME = -2


class OffsetsResponse(Response):
    SCHEMA = Schema(
        ("error_code", Int16),
        ("offsets", Array(Int64)),
    )

    offsets: list[int]

    @classmethod
    def decode(cls, data: Union[BytesIO, bytes]) -> Self:
        if isinstance(data, bytes):
            data = BytesIO(data)
        error_code = Int16.decode(data)
        # Brokers may leave out the offsets array when answering with an error
        rest = data.read()
        if not rest:
            return cls(error_code, [])
        return cls(error_code, Array(Int64).decode(BytesIO(rest)))


class OffsetsRequest(Request):
    """Asks a broker for up to `max_offsets` log segment start offsets before
    `time` (in ms). `LATEST_TIME` and `EARLIEST_TIME` resolve to the log end
    and the first available offset.
    """

    REQUEST_TYPE = RequestType.OFFSETS
    RESPONSE_TYPE = OffsetsResponse
    SCHEMA = Schema(
        ("topic", String("utf-8")),
        ("partition", Int32),
        ("time", Int64),
        ("max_offsets", Int32),
    )

    time: int
    max_offsets: int
