"""
Timestamp and label fields shared by containerd metadata buckets.

Timestamps are stored under `createdat` / `updatedat` in Go's
time.Time binary form:

    v1 (15 bytes)  version=1, sec i64, nsec i32, offset_min i16
    v2 (16 bytes)  as v1, plus offset_sec u8

big-endian, with seconds counted from 0001-01-01 UTC and offset_min == -1
meaning UTC. Go writes offset_sec as a signed byte but reads it back
unsigned, and decode_time does the same, so zones west of UTC with a
seconds part do not round-trip (they do not in Go either). Labels live in a `labels` sub-bucket of plain string pairs.

Unlike scalar fields these decoders are strict: bytes that are present but
malformed raise FieldDecodeError.
"""

from __future__ import annotations

import struct
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Tuple

from meta_viewer.bolt import Bucket
from meta_viewer.errors import FieldDecodeError

KEY_CREATED_AT = b"createdat"
KEY_UPDATED_AT = b"updatedat"
KEY_LABELS = b"labels"

TIME_BINARY_V1 = 1
TIME_BINARY_V2 = 2

_TIME_HEAD = struct.Struct(">Bqih")

# 0001-01-01T00:00:00Z, the origin of the stored seconds
TIME_ORIGIN = datetime(1, 1, 1, tzinfo=timezone.utc)


def decode_time(data: bytes, *, field: str = "timestamp") -> datetime:
    if not data:
        raise FieldDecodeError(field, "Time.UnmarshalBinary: no data")
    version = data[0]
    if version == TIME_BINARY_V1:
        want = _TIME_HEAD.size
    elif version == TIME_BINARY_V2:
        want = _TIME_HEAD.size + 1
    else:
        raise FieldDecodeError(field, f"Time.UnmarshalBinary: unsupported version {version}")
    if len(data) != want:
        raise FieldDecodeError(field, f"Time.UnmarshalBinary: invalid length {len(data)}")

    _, sec, nsec, offset_min = _TIME_HEAD.unpack_from(data, 0)
    if not 0 <= nsec < 1_000_000_000:
        raise FieldDecodeError(field, f"Time.UnmarshalBinary: invalid nanoseconds {nsec}")
    offset = offset_min * 60
    if version == TIME_BINARY_V2:
        offset += data[_TIME_HEAD.size]

    try:
        value = TIME_ORIGIN + timedelta(seconds=sec, microseconds=nsec // 1000)
    except OverflowError as exc:
        raise FieldDecodeError(field, f"Time.UnmarshalBinary: {exc}") from exc
    if offset == -60:
        return value
    try:
        return value.astimezone(timezone(timedelta(seconds=offset)))
    except (OverflowError, ValueError):
        # local time falls outside years 1..9999; keep the instant in UTC
        return value


def encode_time(value: datetime) -> bytes:
    """Inverse of decode_time. Naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    delta = value - TIME_ORIGIN
    sec = delta.days * 86400 + delta.seconds
    nsec = delta.microseconds * 1000

    if value.tzinfo is timezone.utc:
        return _TIME_HEAD.pack(TIME_BINARY_V1, sec, nsec, -1)

    offset = int(value.utcoffset().total_seconds())
    # truncate toward zero so minutes and seconds share the sign
    offset_min = int(offset / 60)
    offset_sec = offset - offset_min * 60
    if offset_min == -1 or not -32768 <= offset_min <= 32767:
        raise ValueError(f"unexpected zone offset: {offset}")
    if offset_sec:
        return _TIME_HEAD.pack(TIME_BINARY_V2, sec, nsec, offset_min) + struct.pack(">b", offset_sec)
    return _TIME_HEAD.pack(TIME_BINARY_V1, sec, nsec, offset_min)


def read_timestamps(bkt: Bucket) -> Tuple[Optional[datetime], Optional[datetime]]:
    """(created, updated); either is None when its key is absent."""
    out = []
    for key in (KEY_CREATED_AT, KEY_UPDATED_AT):
        data = bkt.get(key)
        out.append(None if data is None else decode_time(data, field=key.decode()))
    return out[0], out[1]


def read_labels(bkt: Bucket) -> Dict[str, str]:
    lbkt = bkt.bucket(KEY_LABELS)
    if lbkt is None:
        return {}
    labels: Dict[str, str] = {}
    for key, value in lbkt.items():
        if value is None:
            raise FieldDecodeError("labels", f"label {key!r} is a bucket")
        try:
            labels[key.decode("utf-8")] = value.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise FieldDecodeError("labels", f"label {key!r}: {exc}") from exc
    return labels
