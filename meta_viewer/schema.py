"""
Layout of the devbox snapshotter metadata store.

    v1/
      snapshots/<key>/             id, kind, parent, inodes, size,
                                   content_id, path, createdat, updatedat,
                                   labels/
      devbox_storage_path/<cid>/   lv_name, path, status, snapshot_key
      parents/                     reserved, never read

Which buckets must exist for which operation, and how every scalar field is
decoded, is declared here and nowhere else.
"""

from __future__ import annotations

from typing import Any, Callable, NamedTuple, Tuple

from meta_viewer import varint
from meta_viewer.models import Kind


class BucketPath(NamedTuple):
    keys: Tuple[bytes, ...]
    # absent bucket is an error for list operations; otherwise list is empty
    required_for_list: bool
    # absent bucket is an error for get operations
    required_for_get: bool


class Field(NamedTuple):
    key: bytes
    attr: str
    decode: Callable[[bytes], Any]


def decode_string(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def decode_kind(data: bytes) -> Kind:
    # only a single byte is a kind; any other length stays unknown
    if len(data) != 1:
        return Kind.UNKNOWN
    return Kind.from_byte(data[0])


SNAPSHOTS = BucketPath((b"v1", b"snapshots"), True, True)
DEVBOX_STORAGE = BucketPath((b"v1", b"devbox_storage_path"), False, True)
PARENTS = BucketPath((b"v1", b"parents"), False, False)

SNAPSHOT_FIELDS = (
    Field(b"id", "id", varint.read_id),
    Field(b"kind", "kind", decode_kind),
    Field(b"parent", "parent", decode_string),
    Field(b"inodes", "inodes", varint.read_inodes),
    Field(b"size", "size", varint.read_size),
    Field(b"content_id", "content_id", decode_string),
    Field(b"path", "path", decode_string),
)

DEVBOX_STORAGE_FIELDS = (
    Field(b"lv_name", "lv_name", decode_string),
    Field(b"path", "path", decode_string),
    Field(b"status", "status", decode_string),
    Field(b"snapshot_key", "snapshot_key", decode_string),
)
