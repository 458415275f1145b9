from .api import Request, RequestType, Response
from .types import Int16, Int32, Int64, RawBytes, Schema, String


class FetchResponse(Response):
    SCHEMA = Schema(
        ("error_code", Int16),
        ("message_set", RawBytes),
    )

    message_set: bytes


class FetchRequest(Request):
    REQUEST_TYPE = RequestType.FETCH
    RESPONSE_TYPE = FetchResponse
    SCHEMA = Schema(
        ("topic", String("utf-8")),
        ("partition", Int32),
        ("offset", Int64),
        ("max_size", Int32),
    )

    offset: int
    max_size: int
