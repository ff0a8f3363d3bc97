"""Read-only inspector for the containerd devbox snapshotter metadata store."""

from meta_viewer.errors import (
    BucketNotFoundError,
    DevboxStorageNotFoundError,
    FieldDecodeError,
    MetaViewerError,
    NotFoundError,
    RecordDecodeError,
    SnapshotNotFoundError,
    StoreCloseError,
    StoreClosedError,
    StoreOpenError,
    StoreReadError,
)
from meta_viewer.models import BucketInfo, DevboxStorageInfo, Kind, SnapshotInfo, snapshot_kind_string
from meta_viewer.reader import MetaReader
from meta_viewer.store import StoreHandle, open_store

__version__ = "0.1.0"

__all__ = [
    "BucketInfo",
    "BucketNotFoundError",
    "DevboxStorageNotFoundError",
    "FieldDecodeError",
    "Kind",
    "MetaReader",
    "MetaViewerError",
    "NotFoundError",
    "RecordDecodeError",
    "SnapshotInfo",
    "SnapshotNotFoundError",
    "StoreCloseError",
    "StoreClosedError",
    "StoreHandle",
    "StoreOpenError",
    "StoreReadError",
    "DevboxStorageInfo",
    "open_store",
    "snapshot_kind_string",
]
