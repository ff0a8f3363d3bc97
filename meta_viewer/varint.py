"""
Base-128 variable-length integers, as stored in the snapshot buckets.

Unsigned values are written as little-endian groups of 7 bits with the high
bit set on every byte but the last. Signed values go through the zig-zag
mapping first so small negative numbers stay short.

Decoding is lenient: empty, truncated or overflowing input decodes to 0.
"""

from __future__ import annotations

from typing import Union

MAX_VARINT_LEN64 = 10

UINT64_MAX = (1 << 64) - 1
INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1

BytesLike = Union[bytes, bytearray, memoryview]


def uvarint_bytes(value: int) -> bytes:
    if not 0 <= value <= UINT64_MAX:
        raise ValueError(f"uvarint out of range: {value}")
    out = bytearray()
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


def put_uvarint(buf: bytearray, value: int) -> int:
    """Encode value into the start of buf and return the number of bytes written.

    buf grows when it is shorter than the encoding.
    """
    data = uvarint_bytes(value)
    buf[0:len(data)] = data
    return len(data)


def uvarint(data: BytesLike) -> int:
    value = 0
    for i, b in enumerate(bytes(data[:MAX_VARINT_LEN64])):
        if b < 0x80:
            # the tenth byte may only carry the 64th bit
            if i == MAX_VARINT_LEN64 - 1 and b > 1:
                return 0
            return value | (b << (7 * i))
        value |= (b & 0x7F) << (7 * i)
    # truncated, or longer than ten bytes
    return 0


def zigzag(value: int) -> int:
    if not INT64_MIN <= value <= INT64_MAX:
        raise ValueError(f"varint out of range: {value}")
    ux = (value << 1) & UINT64_MAX
    if value < 0:
        ux ^= UINT64_MAX
    return ux


def unzigzag(ux: int) -> int:
    value = ux >> 1
    if ux & 1:
        value = ~value
    return value


def varint_bytes(value: int) -> bytes:
    return uvarint_bytes(zigzag(value))


def put_varint(buf: bytearray, value: int) -> int:
    return put_uvarint(buf, zigzag(value))


def varint(data: BytesLike) -> int:
    return unzigzag(uvarint(data))


# -----------------------------
# Field helpers
# -----------------------------

def read_id(data: BytesLike) -> int:
    return uvarint(data)


def read_size(data: BytesLike) -> int:
    return varint(data)


def read_inodes(data: BytesLike) -> int:
    return varint(data)


def encode_id(buf: bytearray, snapshot_id: int) -> int:
    return put_uvarint(buf, snapshot_id)


def encode_size(buf: bytearray, size: int) -> int:
    return put_varint(buf, size)
