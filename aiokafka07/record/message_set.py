"""Reading and writing of Kafka 0.7 message sets.

A message set is a plain concatenation of messages::

    MessageSet => [Size Message]
      Size => Int32
      Message => Magic [Attributes] CRC Payload
        Magic => Int8          0 or 1, Attributes only present if 1
        Attributes => Int8     low 2 bits hold the compression codec
        CRC => UInt32          crc32 of Payload
        Payload => Bytes       up to the end of Size

Offsets in 0.7 are byte positions in the broker's log. The offset reported
with each message is the position right after it, which is where the next
fetch has to start.
"""
from __future__ import annotations

import struct
from binascii import crc32
from collections.abc import Iterator
from typing import Union

from typing_extensions import Buffer

import aiokafka07.codec as codecs
from aiokafka07.errors import (
    InvalidMessageError,
    MessageSizeTooLargeError,
    UnsupportedCodecError,
)
from aiokafka07.structs import MessageAndOffset

SIZE_STRUCT = struct.Struct(">i")
CRC_STRUCT = struct.Struct(">I")

LOG_OVERHEAD = SIZE_STRUCT.size

MAGIC_V0 = 0
MAGIC_V1 = 1


class Message:
    __slots__ = ("magic", "attributes", "crc", "payload")

    def __init__(
        self, magic: int, attributes: int, crc: int, payload: Union[bytes, memoryview]
    ):
        self.magic = magic
        self.attributes = attributes
        self.crc = crc
        self.payload = payload

    @staticmethod
    def header_size(magic: int) -> int:
        # Magic, Attributes (v1 only) and CRC
        return 1 + (1 if magic == MAGIC_V1 else 0) + CRC_STRUCT.size

    @property
    def compression_codec(self) -> int:
        return self.attributes & codecs.CODEC_MASK

    def validate_crc(self) -> bool:
        return crc32(self.payload) & 0xFFFFFFFF == self.crc

    @classmethod
    def decode(cls, data: memoryview) -> Message:
        if len(data) < 1:
            raise InvalidMessageError("Empty message")
        magic = data[0]
        if magic not in (MAGIC_V0, MAGIC_V1):
            raise InvalidMessageError(f"Unknown message magic byte {magic}")
        header_size = cls.header_size(magic)
        if len(data) < header_size:
            raise InvalidMessageError(f"Message of {len(data)} bytes is too short")
        attributes = data[1] if magic == MAGIC_V1 else codecs.CODEC_NONE
        (crc,) = CRC_STRUCT.unpack_from(data, header_size - CRC_STRUCT.size)
        return cls(magic, attributes, crc, data[header_size:])

    @classmethod
    def build(
        cls, payload: bytes, *, magic: int = MAGIC_V1, attributes: int = 0
    ) -> bytes:
        """Encode a message, including its Size prefix."""
        if magic == MAGIC_V0:
            if attributes:
                raise ValueError("Attributes require message magic 1")
            header = struct.pack(">b", magic)
        else:
            header = struct.pack(">bb", magic, attributes)
        body = header + CRC_STRUCT.pack(crc32(payload) & 0xFFFFFFFF) + payload
        return SIZE_STRUCT.pack(len(body)) + body

    def __repr__(self) -> str:
        return (
            f"Message(magic={self.magic}, attributes={self.attributes},"
            f" crc={self.crc}, payload=<{len(self.payload)} bytes>)"
        )


def _decompress(codec: int, payload: Buffer) -> bytes:
    if codec == codecs.CODEC_GZIP:
        return codecs.gzip_decode(payload)
    if codec == codecs.CODEC_SNAPPY:
        if not codecs.has_snappy():
            raise UnsupportedCodecError(
                "Libraries for snappy compression codec not found"
            )
        return codecs.snappy_decode(payload)
    raise UnsupportedCodecError(f"Unknown compression codec {codec:#04x}")


class MessageSet:
    """Iterates over the messages of a fetched 0.7 message set.

    Compressed messages are unpacked. Only the wrapper has a position in the
    broker's log, so inner messages report the wrapper's own offset and just
    the last one reports the offset after the wrapper. A consumer stopped
    halfway through a wrapper reads it again from the start.

    A partial message at the end of the buffer is expected (the broker cuts
    the response at the requested fetch size) and is dropped. If the buffer
    does not hold a single complete message, the first message is bigger than
    the fetch size and `MessageSizeTooLargeError` is raised.
    """

    def __init__(
        self, buffer: Buffer, initial_offset: int = 0, *, check_crcs: bool = True
    ):
        self._buffer = memoryview(buffer)
        self._initial_offset = initial_offset
        self._check_crcs = check_crcs
        self._valid_bytes = 0

    @property
    def valid_bytes(self) -> int:
        """Number of bytes taken by complete messages read so far."""
        return self._valid_bytes

    def __iter__(self) -> Iterator[MessageAndOffset]:
        buffer = self._buffer
        pos = 0
        while True:
            if pos + LOG_OVERHEAD > len(buffer):
                break
            (size,) = SIZE_STRUCT.unpack_from(buffer, pos)
            if size < Message.header_size(MAGIC_V0):
                raise InvalidMessageError(
                    f"Message size {size} at offset {self._initial_offset + pos}"
                    " is invalid"
                )
            end = pos + LOG_OVERHEAD + size
            if end > len(buffer):
                break
            message_offset = self._initial_offset + pos
            message = Message.decode(buffer[pos + LOG_OVERHEAD : end])
            if self._check_crcs and not message.validate_crc():
                raise InvalidMessageError(
                    f"Invalid CRC for message at offset {message_offset}"
                )
            pos = end
            self._valid_bytes = pos
            next_offset = self._initial_offset + pos

            codec = message.compression_codec
            if codec == codecs.CODEC_NONE:
                yield MessageAndOffset(bytes(message.payload), next_offset)
                continue
            inner = list(
                MessageSet(
                    _decompress(codec, message.payload), check_crcs=self._check_crcs
                )
            )
            for inner_message in inner[:-1]:
                yield MessageAndOffset(inner_message.payload, message_offset)
            if inner:
                yield MessageAndOffset(inner[-1].payload, next_offset)

        if pos == 0 and len(buffer) > 0:
            raise MessageSizeTooLargeError(
                f"Found a message larger than the fetch size ({len(buffer)} bytes)"
                f" at offset {self._initial_offset}"
            )


class MessageSetBuilder:
    """Builds a 0.7 message set, optionally compressed into a single wrapper
    message, the way 0.7 producers send them.
    """

    def __init__(self, *, magic: int = MAGIC_V1, compression_type: int = 0):
        if compression_type and magic != MAGIC_V1:
            raise ValueError("Compression requires message magic 1")
        if compression_type not in (
            codecs.CODEC_NONE,
            codecs.CODEC_GZIP,
            codecs.CODEC_SNAPPY,
        ):
            raise UnsupportedCodecError(
                f"Unknown compression codec {compression_type:#04x}"
            )
        self._magic = magic
        self._compression_type = compression_type
        self._messages: list[bytes] = []

    def append(self, payload: bytes) -> None:
        self._messages.append(Message.build(payload, magic=self._magic))

    def __len__(self) -> int:
        return len(self._messages)

    def build(self) -> bytes:
        data = b"".join(self._messages)
        if self._compression_type == codecs.CODEC_NONE or not data:
            return data
        if self._compression_type == codecs.CODEC_GZIP:
            compressed = codecs.gzip_encode(data)
        else:
            compressed = codecs.snappy_encode(data)
        return Message.build(
            compressed, magic=MAGIC_V1, attributes=self._compression_type
        )
