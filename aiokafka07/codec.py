import gzip
import io
import struct
from typing import Optional

from typing_extensions import Buffer

_XERIAL_V1_HEADER = (-126, b"S", b"N", b"A", b"P", b"P", b"Y", 0, 1, 1)
_XERIAL_V1_FORMAT = "bccccccBii"

try:
    import cramjam
except ImportError:
    cramjam = None


# Compression codecs of the 0.7 message attributes byte
CODEC_NONE = 0x00
CODEC_GZIP = 0x01
CODEC_SNAPPY = 0x02
CODEC_MASK = 0x03


def has_snappy() -> bool:
    return cramjam is not None


def gzip_encode(payload: Buffer, compresslevel: Optional[int] = None) -> bytes:
    return gzip.compress(bytes(payload), compresslevel=compresslevel or 9)


def gzip_decode(payload: Buffer) -> bytes:
    # 0.7 brokers write concatenated gzip members for re-compressed sets,
    # GzipFile reads across member boundaries
    with gzip.GzipFile(fileobj=io.BytesIO(payload), mode="r") as gzipper:
        return gzipper.read()


def snappy_encode(
    payload: Buffer, xerial_compatible: bool = True, xerial_blocksize: int = 32 * 1024
) -> bytes:
    """Encodes the given data with snappy compression.

    Kafka 0.7.2 producers use the blocking stream of the xerial snappy
    library (``SnappyOutputStream``), so that is the default here:

        +-------------+------------+--------------+------------+--------------+
        |   Header    | Block1 len | Block1 data  | Blockn len | Blockn data  |
        +-------------+------------+--------------+------------+--------------+
        |  16 bytes   |  BE int32  | snappy bytes |  BE int32  | snappy bytes |
        +-------------+------------+--------------+------------+--------------+

    The block size is the amount of uncompressed data fed to snappy per
    block; the block length written in the stream is always <= block size.
    """
    if not has_snappy():
        raise NotImplementedError("Snappy codec is not available")

    if not xerial_compatible:
        return bytes(cramjam.snappy.compress_raw(payload))

    out = io.BytesIO()
    out.write(struct.pack("!" + _XERIAL_V1_FORMAT, *_XERIAL_V1_HEADER))

    payload = memoryview(payload)
    for i in range(0, len(payload), xerial_blocksize):
        block = cramjam.snappy.compress_raw(payload[i : i + xerial_blocksize])
        out.write(struct.pack("!i", len(block)))
        out.write(block)

    return out.getvalue()


def _detect_xerial_stream(payload: Buffer) -> bool:
    """Detects if the data given might have been encoded with the blocking mode
    of the xerial snappy library.

    This mode writes a magic header of the format:
        +--------+--------------+------------+---------+--------+
        | Marker | Magic String | Null / Pad | Version | Compat |
        +--------+--------------+------------+---------+--------+
        |  byte  |   c-string   |    byte    |  int32  | int32  |
        +--------+--------------+------------+---------+--------+
        |  -126  |   'SNAPPY'   |     \0     |         |        |
        +--------+--------------+------------+---------+--------+
    """
    payload = memoryview(payload)
    if len(payload) > 16:
        header = struct.unpack("!" + _XERIAL_V1_FORMAT, payload[:16])
        return header == _XERIAL_V1_HEADER
    return False


def snappy_decode(payload: Buffer) -> bytes:
    if not has_snappy():
        raise NotImplementedError("Snappy codec is not available")

    if not _detect_xerial_stream(payload):
        return bytes(cramjam.snappy.decompress_raw(payload))

    out = io.BytesIO()
    byt = memoryview(payload)[16:]
    cursor = 0
    while cursor < len(byt):
        (block_size,) = struct.unpack_from("!i", byt, cursor)
        cursor += 4
        end = cursor + block_size
        out.write(cramjam.snappy.decompress_raw(byt[cursor:end]))
        cursor = end
    return out.getvalue()
