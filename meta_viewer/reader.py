"""
MetaReader: walks the devbox snapshotter metadata store and assembles records.

Every public method runs inside its own read view, so results always come
from one consistent state of the store and nothing is held between calls.
List operations either return every record or raise; a record that fails to
decode aborts the whole listing.
"""

from __future__ import annotations

import contextlib
import os
from typing import Callable, Iterator, List, Optional, Sequence, TypeVar, Union

from meta_viewer import boltutil, schema
from meta_viewer.bolt import BoltError, Bucket, Tx
from meta_viewer.config import DEFAULT_OPEN_TIMEOUT
from meta_viewer.errors import (
    BucketNotFoundError,
    DevboxStorageNotFoundError,
    FieldDecodeError,
    RecordDecodeError,
    SnapshotNotFoundError,
    StoreReadError,
)
from meta_viewer.models import BucketInfo, DevboxStorageInfo, SnapshotInfo
from meta_viewer.store import StoreHandle, open_store

T = TypeVar("T")


# -----------------------------
# Record assembly
# -----------------------------

# Record keys are arbitrary bytes. Non UTF-8 bytes are carried as lone
# surrogates so a listed name can be passed back to get_*.
def decode_key(key: bytes) -> str:
    return key.decode("utf-8", errors="surrogateescape")


def encode_key(key: str) -> bytes:
    return key.encode("utf-8", errors="surrogateescape")


def _read_fields(record, bkt: Bucket, fields: Sequence[schema.Field]) -> None:
    for f in fields:
        data = bkt.get(f.key)
        if data is not None:
            setattr(record, f.attr, f.decode(data))


def read_snapshot_info(key: str, bkt: Bucket) -> SnapshotInfo:
    """Build a SnapshotInfo from a snapshot bucket.

    Missing scalar keys keep their defaults. Malformed timestamps or labels
    raise FieldDecodeError.
    """
    info = SnapshotInfo(key=key)
    _read_fields(info, bkt, schema.SNAPSHOT_FIELDS)
    info.created_at, info.updated_at = boltutil.read_timestamps(bkt)
    info.labels = boltutil.read_labels(bkt)
    return info


def read_devbox_storage_info(content_id: str, bkt: Bucket) -> DevboxStorageInfo:
    info = DevboxStorageInfo(content_id=content_id)
    _read_fields(info, bkt, schema.DEVBOX_STORAGE_FIELDS)
    return info


# -----------------------------
# Schema navigation
# -----------------------------

def resolve_bucket(tx: Tx, path: schema.BucketPath, *, required: bool) -> Optional[Bucket]:
    """Follow path from the root. Intermediate buckets are always required;
    a missing final bucket returns None unless required."""
    bkt: Optional[Bucket] = None
    for depth, name in enumerate(path.keys):
        bkt = tx.bucket(name) if depth == 0 else bkt.bucket(name)
        if bkt is None:
            if required or depth < len(path.keys) - 1:
                raise BucketNotFoundError(name.decode())
            return None
    return bkt


def _collect(bkt: Bucket, kind: str, assemble: Callable[[str, Bucket], T]) -> List[T]:
    out: List[T] = []
    for key, value in bkt.items():
        if value is not None:
            # plain values at this level are not records
            continue
        name = decode_key(key)
        child = bkt.bucket(key)
        try:
            out.append(assemble(name, child))
        except FieldDecodeError as exc:
            raise RecordDecodeError(kind, name, exc) from exc
    return out


def _fetch(bkt: Bucket, key: str, kind: str, assemble: Callable[[str, Bucket], T], not_found) -> T:
    try:
        raw = encode_key(key)
    except UnicodeEncodeError:
        raise not_found(key) from None
    child = bkt.bucket(raw)
    if child is None:
        raise not_found(key)
    try:
        return assemble(key, child)
    except FieldDecodeError as exc:
        raise RecordDecodeError(kind, key, exc) from exc


# -----------------------------
# Reader
# -----------------------------

class MetaReader:
    """Reads snapshot and devbox storage metadata from a store handle.

    Use MetaReader.open(path) to open the store (falling back to a private
    copy when a writer holds it locked), and close the reader when done, or
    use it as a context manager.
    """

    def __init__(self, store: StoreHandle):
        self.store = store

    @classmethod
    def open(cls, db_path: Union[str, os.PathLike], *, timeout: float = DEFAULT_OPEN_TIMEOUT) -> "MetaReader":
        return cls(open_store(db_path, timeout=timeout))

    @property
    def temp_path(self) -> Optional[str]:
        return self.store.temp_path

    def close(self) -> None:
        self.store.close()

    @contextlib.contextmanager
    def _read(self, operation: str) -> Iterator[Tx]:
        try:
            with self.store.view() as tx:
                yield tx
        except BoltError as exc:
            raise StoreReadError(operation, exc) from exc

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.store.__exit__(exc_type, exc, tb)

    def list_buckets(self) -> List[BucketInfo]:
        """All top-level buckets, in key order, with their direct key counts."""
        with self._read("list buckets") as tx:
            return [
                BucketInfo(name=decode_key(name), key_count=bkt.key_count())
                for name, bkt in tx.buckets()
            ]

    def list_snapshots(self) -> List[SnapshotInfo]:
        with self._read("list snapshots") as tx:
            bkt = resolve_bucket(tx, schema.SNAPSHOTS, required=schema.SNAPSHOTS.required_for_list)
            return _collect(bkt, "snapshot", read_snapshot_info)

    def get_snapshot(self, key: str) -> SnapshotInfo:
        with self._read(f"get snapshot {key}") as tx:
            bkt = resolve_bucket(tx, schema.SNAPSHOTS, required=schema.SNAPSHOTS.required_for_get)
            return _fetch(bkt, key, "snapshot", read_snapshot_info, SnapshotNotFoundError)

    def list_devbox_storage(self) -> List[DevboxStorageInfo]:
        """Devbox storage entries; an empty list when the store has no devbox bucket."""
        with self._read("list devbox storage") as tx:
            bkt = resolve_bucket(tx, schema.DEVBOX_STORAGE, required=schema.DEVBOX_STORAGE.required_for_list)
            if bkt is None:
                return []
            return _collect(bkt, "devbox storage", read_devbox_storage_info)

    def get_devbox_storage(self, content_id: str) -> DevboxStorageInfo:
        with self._read(f"get devbox storage {content_id}") as tx:
            bkt = resolve_bucket(tx, schema.DEVBOX_STORAGE, required=schema.DEVBOX_STORAGE.required_for_get)
            return _fetch(bkt, content_id, "devbox storage", read_devbox_storage_info, DevboxStorageNotFoundError)

    def search_snapshots(self, content_id: str = "", path: str = "") -> List[SnapshotInfo]:
        """Snapshots matching every non-empty criterion.

        This is a linear scan over list_snapshots(), O(n) per call.
        """
        return [
            s for s in self.list_snapshots()
            if (not content_id or s.content_id == content_id) and (not path or s.path == path)
        ]
