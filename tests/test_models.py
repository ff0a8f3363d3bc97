import pytest

from meta_viewer.models import Kind, SnapshotInfo, snapshot_kind_string


@pytest.mark.parametrize("kind, expected", [
    (Kind.ACTIVE, "active"),
    (Kind.VIEW, "view"),
    (Kind.COMMITTED, "committed"),
    (Kind.UNKNOWN, "unknown"),
])
def test_snapshot_kind_string(kind, expected):
    assert snapshot_kind_string(kind) == expected


def test_kind_from_unrecognized_byte_is_unknown():
    assert Kind.from_byte(2) is Kind.ACTIVE
    assert Kind.from_byte(99) is Kind.UNKNOWN
    assert Kind.from_byte(255) is Kind.UNKNOWN


def test_kind_str_is_capitalized_name():
    assert str(Kind.COMMITTED) == "Committed"


def test_snapshot_defaults():
    s = SnapshotInfo(key="k")
    assert s.kind is Kind.UNKNOWN
    assert s.created_at is None
    assert s.labels == {}
    # each record gets its own labels dict
    assert SnapshotInfo(key="other").labels is not s.labels
