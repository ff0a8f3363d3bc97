from datetime import datetime, timezone
from pathlib import Path

import pytest

from boltbuilder import build_db, devbox_bucket, snapshot_bucket
from meta_viewer.models import Kind

CREATED = datetime(2024, 5, 1, 12, 30, 0, tzinfo=timezone.utc)
UPDATED = datetime(2024, 5, 2, 8, 0, 15, 250000, tzinfo=timezone.utc)


def standard_tree():
    return {
        "v1": {
            "snapshots": {
                "snapshot-1": snapshot_bucket(
                    1, Kind.ACTIVE, "", "content-123", "/mount/path/1",
                    inodes=10, size=4096, created=CREATED, updated=UPDATED,
                    labels={"containerd.io/snapshot.ref": "sha256:abc", "devbox": "true"},
                ),
                "snapshot-2": snapshot_bucket(
                    2, Kind.COMMITTED, "snapshot-1", "content-456", "/mount/path/2",
                    inodes=-1, size=123456789, created=CREATED,
                ),
            },
            "parents": {},
            "devbox_storage_path": {
                "content-123": devbox_bucket("lv-volume-1", "/mount/path/1", "active", "snapshot-1"),
                "content-456": devbox_bucket("lv-volume-2", "/mount/path/2", "active"),
            },
        },
    }


@pytest.fixture
def test_db(tmp_path: Path) -> Path:
    return build_db(tmp_path / "test.db", standard_tree())


@pytest.fixture
def empty_db(tmp_path: Path) -> Path:
    return build_db(tmp_path / "empty.db", {})
