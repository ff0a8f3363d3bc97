import struct
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from boltbuilder import build_db
from meta_viewer import bolt, boltutil
from meta_viewer.errors import FieldDecodeError


def test_utc_time_round_trip():
    value = datetime(2024, 5, 1, 12, 30, 0, 123456, tzinfo=timezone.utc)
    data = boltutil.encode_time(value)
    assert len(data) == 15
    assert data[0] == boltutil.TIME_BINARY_V1
    assert boltutil.decode_time(data) == value


def test_go_encoding_of_unix_epoch():
    # time.Unix(0, 0).UTC().MarshalBinary()
    data = bytes([1]) + struct.pack(">qih", 62135596800, 0, -1)
    decoded = boltutil.decode_time(data)
    assert decoded == datetime(1970, 1, 1, tzinfo=timezone.utc)
    assert decoded.tzinfo is timezone.utc


def test_fixed_zone_round_trip():
    tz = timezone(timedelta(hours=5, minutes=30))
    value = datetime(2023, 1, 2, 3, 4, 5, tzinfo=tz)
    decoded = boltutil.decode_time(boltutil.encode_time(value))
    assert decoded == value
    assert decoded.utcoffset() == timedelta(hours=5, minutes=30)


def test_offset_with_seconds_uses_v2():
    tz = timezone(timedelta(hours=1, minutes=2, seconds=3))
    value = datetime(2023, 6, 1, tzinfo=tz)
    data = boltutil.encode_time(value)
    assert data[0] == boltutil.TIME_BINARY_V2
    assert len(data) == 16
    decoded = boltutil.decode_time(data)
    assert decoded == value
    assert decoded.utcoffset() == timedelta(hours=1, minutes=2, seconds=3)


def test_negative_offset_seconds_are_read_unsigned():
    # Go stores the seconds as int8 but adds them back as an unsigned byte
    tz = timezone(-timedelta(hours=1, minutes=2, seconds=3))
    value = datetime(2023, 6, 1, tzinfo=tz)
    data = boltutil.encode_time(value)
    assert data[-1] == 0xFD
    decoded = boltutil.decode_time(data)
    assert decoded == value
    assert decoded.utcoffset() == timedelta(minutes=-62, seconds=253)


def test_local_time_before_year_one_keeps_utc_instant():
    data = bytes([1]) + struct.pack(">qih", 0, 0, -300)
    decoded = boltutil.decode_time(data)
    assert decoded == datetime(1, 1, 1, tzinfo=timezone.utc)
    assert decoded.utcoffset() == timedelta(0)


def test_naive_time_is_taken_as_utc():
    value = datetime(2022, 2, 2, 2, 2, 2)
    assert boltutil.decode_time(boltutil.encode_time(value)) == value.replace(tzinfo=timezone.utc)


@pytest.mark.parametrize("data, reason", [
    (b"", "no data"),
    (b"\x07" + b"\0" * 14, "unsupported version"),
    (b"\x01" + b"\0" * 10, "invalid length"),
    (b"\x02" + b"\0" * 14, "invalid length"),
    (bytes([1]) + struct.pack(">qih", 62135596800, 2_000_000_000, -1), "invalid nanoseconds"),
    (bytes([1]) + struct.pack(">qih", 2**62, 0, -1), "UnmarshalBinary"),
])
def test_malformed_time_raises(data, reason):
    with pytest.raises(FieldDecodeError) as excinfo:
        boltutil.decode_time(data, field="createdat")
    assert excinfo.value.field == "createdat"
    assert reason in str(excinfo.value)


def _bucket(tmp_path: Path, tree):
    path = build_db(tmp_path / "fields.db", {"rec": tree})
    db = bolt.open_db(path)
    return db, db.view().bucket(b"rec")


def test_read_timestamps(tmp_path: Path):
    created = datetime(2024, 1, 1, tzinfo=timezone.utc)
    db, bkt = _bucket(tmp_path, {boltutil.KEY_CREATED_AT: boltutil.encode_time(created)})
    try:
        assert boltutil.read_timestamps(bkt) == (created, None)
    finally:
        db.close()


def test_read_timestamps_names_bad_field(tmp_path: Path):
    db, bkt = _bucket(tmp_path, {boltutil.KEY_UPDATED_AT: b"\x01garbage"})
    try:
        with pytest.raises(FieldDecodeError) as excinfo:
            boltutil.read_timestamps(bkt)
        assert excinfo.value.field == "updatedat"
    finally:
        db.close()


def test_read_labels(tmp_path: Path):
    db, bkt = _bucket(tmp_path, {"labels": {"a": "1", "b": "2"}})
    try:
        assert boltutil.read_labels(bkt) == {"a": "1", "b": "2"}
    finally:
        db.close()


def test_missing_labels_are_empty(tmp_path: Path):
    db, bkt = _bucket(tmp_path, {"id": b"\x01"})
    try:
        assert boltutil.read_labels(bkt) == {}
    finally:
        db.close()


@pytest.mark.parametrize("labels", [
    {"nested": {"x": "y"}},
    {"bad": b"\xff\xfe"},
])
def test_malformed_labels_raise(tmp_path: Path, labels):
    db, bkt = _bucket(tmp_path, {"labels": labels})
    try:
        with pytest.raises(FieldDecodeError) as excinfo:
            boltutil.read_labels(bkt)
        assert excinfo.value.field == "labels"
    finally:
        db.close()
