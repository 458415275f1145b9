import abc
import struct
from collections.abc import Callable, Sequence
from io import BytesIO
from struct import error
from typing import Any, Generic, TypeAlias, TypeVar, Union

from typing_extensions import Buffer

T = TypeVar("T")


def _pack(f: Callable[[T], bytes], value: T) -> bytes:
    try:
        return f(value)
    except error as e:
        raise ValueError(
            "Error encountered when attempting to convert value: "
            f"{value!r} to struct format: '{f}', hit error: {e}"
        ) from e


def _unpack(f: Callable[[Buffer], tuple[T, ...]], data: Buffer) -> T:
    try:
        (value,) = f(data)
    except error as e:
        raise ValueError(
            "Error encountered when attempting to convert value: "
            f"{data!r} to struct format: '{f}', hit error: {e}"
        ) from e
    else:
        return value


class AbstractType(Generic[T], metaclass=abc.ABCMeta):
    @classmethod
    @abc.abstractmethod
    def encode(cls, value: T) -> bytes: ...

    @classmethod
    @abc.abstractmethod
    def decode(cls, data: BytesIO) -> T: ...

    @classmethod
    def repr(cls, value: T) -> str:
        return repr(value)


class Int16(AbstractType[int]):
    _pack = struct.Struct(">h").pack
    _unpack = struct.Struct(">h").unpack

    @classmethod
    def encode(cls, value: int) -> bytes:
        return _pack(cls._pack, value)

    @classmethod
    def decode(cls, data: BytesIO) -> int:
        return _unpack(cls._unpack, data.read(2))


class Int32(AbstractType[int]):
    _pack = struct.Struct(">i").pack
    _unpack = struct.Struct(">i").unpack

    @classmethod
    def encode(cls, value: int) -> bytes:
        return _pack(cls._pack, value)

    @classmethod
    def decode(cls, data: BytesIO) -> int:
        return _unpack(cls._unpack, data.read(4))


class Int64(AbstractType[int]):
    _pack = struct.Struct(">q").pack
    _unpack = struct.Struct(">q").unpack

    @classmethod
    def encode(cls, value: int) -> bytes:
        return _pack(cls._pack, value)

    @classmethod
    def decode(cls, data: BytesIO) -> int:
        return _unpack(cls._unpack, data.read(8))


class String:
    """A string prefixed by its Int16 length, as topics are on the 0.7 wire."""

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    def encode(self, value: str) -> bytes:
        encoded_value = str(value).encode(self.encoding)
        return Int16.encode(len(encoded_value)) + encoded_value

    def decode(self, data: BytesIO) -> str:
        length = Int16.decode(data)
        value = data.read(length)
        if len(value) != length:
            raise ValueError("Buffer underrun decoding string")
        return value.decode(self.encoding)

    @classmethod
    def repr(cls, value: str) -> str:
        return repr(value)


class RawBytes(AbstractType[bytes]):
    """The remainder of a frame, without any length prefix.

    Fetch responses carry the message set this way: its size is implied by
    the response frame size.
    """

    @classmethod
    def encode(cls, value: bytes) -> bytes:
        return bytes(value)

    @classmethod
    def decode(cls, data: BytesIO) -> bytes:
        return data.read()

    @classmethod
    def repr(cls, value: bytes) -> str:
        return f"<{len(value)} bytes>"


ValueT: TypeAlias = Union[type[AbstractType[Any]], String, "Array", "Schema"]


class Schema:
    names: tuple[str, ...]
    fields: tuple[ValueT, ...]

    def __init__(self, *fields: tuple[str, ValueT]):
        if fields:
            self.names, self.fields = zip(*fields)  # type: ignore[assignment]
        else:
            self.names, self.fields = (), ()

    def encode(self, item: Sequence[Any]) -> bytes:
        if len(item) != len(self.fields):
            raise ValueError("Item field count does not match Schema")
        return b"".join(field.encode(item[i]) for i, field in enumerate(self.fields))

    def decode(self, data: BytesIO) -> tuple[Any, ...]:
        return tuple(field.decode(data) for field in self.fields)

    def __len__(self) -> int:
        return len(self.fields)


class Array:
    def __init__(self, array_of: ValueT) -> None:
        self.array_of = array_of

    def encode(self, items: Sequence[Any]) -> bytes:
        return b"".join(
            (Int32.encode(len(items)), *(self.array_of.encode(item) for item in items))
        )

    def decode(self, data: BytesIO) -> list[Any]:
        length = Int32.decode(data)
        if length < 0:
            raise ValueError(f"Invalid array length {length}")
        return [self.array_of.decode(data) for _ in range(length)]

    def repr(self, list_of_items: Sequence[Any]) -> str:
        return "[" + ", ".join(self.array_of.repr(item) for item in list_of_items) + "]"
