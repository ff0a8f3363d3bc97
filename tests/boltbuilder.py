"""
Writes small bbolt database files for tests.

    build_db(path, {"v1": {"snapshots": {"snap-1": {"id": b"\\x01"}}}})

Dict values become buckets, bytes/str values become keys. Buckets are written
as leaf pages (with overflow when they do not fit one page), optionally split
under branch pages (max_leaf_elements) or stored inline in their parent
(inline=True, for small buckets without sub-buckets, as bbolt does).
"""

from __future__ import annotations

import fcntl
import struct
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from meta_viewer import boltutil, varint
from meta_viewer.bolt import (
    BRANCH_ELEMENT,
    BRANCH_PAGE_FLAG,
    BUCKET_HEADER,
    BUCKET_LEAF_FLAG,
    FREELIST_PAGE_FLAG,
    LEAF_ELEMENT,
    LEAF_PAGE_FLAG,
    MAGIC,
    META,
    META_PAGE_FLAG,
    PAGE_HEADER,
    VERSION,
    fnv64a,
)
from meta_viewer.models import Kind

Element = Tuple[int, bytes, bytes]


def _b(x: Any) -> bytes:
    return x.encode("utf-8") if isinstance(x, str) else bytes(x)


def _page(pgid: int, flags: int, count: int, body: bytes, page_size: Optional[int]) -> bytes:
    size = PAGE_HEADER.size + len(body)
    npages = 1 if page_size is None else max(1, -(-size // page_size))
    header = PAGE_HEADER.pack(pgid, flags, count, npages - 1)
    data = header + body
    if page_size is not None:
        data = data.ljust(npages * page_size, b"\0")
    return data


def leaf_body(elems: List[Element]) -> bytes:
    headers = bytearray()
    data = bytearray()
    base = len(elems) * LEAF_ELEMENT.size
    for i, (flags, key, value) in enumerate(elems):
        pos = base + len(data) - i * LEAF_ELEMENT.size
        headers += LEAF_ELEMENT.pack(flags, pos, len(key), len(value))
        data += key + value
    return bytes(headers + data)


def branch_body(children: List[Tuple[bytes, int]]) -> bytes:
    headers = bytearray()
    data = bytearray()
    base = len(children) * BRANCH_ELEMENT.size
    for i, (key, pgid) in enumerate(children):
        pos = base + len(data) - i * BRANCH_ELEMENT.size
        headers += BRANCH_ELEMENT.pack(pos, len(key), pgid)
        data += key
    return bytes(headers + data)


class Builder:
    def __init__(self, page_size: int = 4096, *, inline: bool = False, max_leaf_elements: Optional[int] = None):
        self.page_size = page_size
        self.inline = inline
        self.max_leaf_elements = max_leaf_elements
        self.pages: Dict[int, bytes] = {}
        self.next_pgid = 3

    def _alloc(self, flags: int, count: int, body: bytes) -> int:
        pgid = self.next_pgid
        data = _page(pgid, flags, count, body, self.page_size)
        self.pages[pgid] = data
        self.next_pgid += len(data) // self.page_size
        return pgid

    def _write_nodes(self, elems: List[Element]) -> int:
        step = self.max_leaf_elements
        if not step or len(elems) <= step:
            return self._alloc(LEAF_PAGE_FLAG, len(elems), leaf_body(elems))
        level = [
            (elems[i][1], self._alloc(LEAF_PAGE_FLAG, len(elems[i:i + step]), leaf_body(elems[i:i + step])))
            for i in range(0, len(elems), step)
        ]
        while len(level) > 1:
            level = [
                (level[i][0], self._alloc(BRANCH_PAGE_FLAG, len(level[i:i + step]), branch_body(level[i:i + step])))
                for i in range(0, len(level), step)
            ]
        return level[0][1]

    def elements(self, tree: Dict[Any, Any]) -> List[Element]:
        elems = []
        for key in sorted(tree, key=_b):
            value = tree[key]
            if isinstance(value, dict):
                elems.append((BUCKET_LEAF_FLAG, _b(key), self.bucket_value(value)))
            else:
                elems.append((0, _b(key), _b(value)))
        return elems

    def bucket_value(self, tree: Dict[Any, Any]) -> bytes:
        elems = self.elements(tree)
        nested = any(flags & BUCKET_LEAF_FLAG for flags, _, _ in elems)
        body = leaf_body(elems)
        if self.inline and not nested and PAGE_HEADER.size + len(body) <= self.page_size // 4:
            return BUCKET_HEADER.pack(0, 0) + _page(0, LEAF_PAGE_FLAG, len(elems), body, None)
        return BUCKET_HEADER.pack(self._write_nodes(elems), 0)

    def meta_page(self, pgid: int, root: int, txid: int) -> bytes:
        fields = [MAGIC, VERSION, self.page_size, 0, root, 0, 2, self.next_pgid, txid]
        raw = struct.pack("<IIIIQQQQQ", *fields)
        meta = META.pack(*fields, fnv64a(raw))
        return _page(pgid, META_PAGE_FLAG, 0, meta, self.page_size)

    def build(self, tree: Dict[Any, Any], txid: int = 1) -> bytes:
        root = self._write_nodes(self.elements(tree))
        out = bytearray()
        out += self.meta_page(0, root, txid)
        out += self.meta_page(1, root, txid + 1)
        out += _page(2, FREELIST_PAGE_FLAG, 0, b"", self.page_size)
        for pgid in sorted(self.pages):
            out += self.pages[pgid]
        return bytes(out)


def build_db(path, tree: Dict[Any, Any], **kwargs) -> Path:
    path = Path(path)
    path.write_bytes(Builder(**kwargs).build(tree))
    return path


# -----------------------------
# Record helpers
# -----------------------------

def snapshot_bucket(
    snapshot_id: int,
    kind: Kind,
    parent: str = "",
    content_id: str = "",
    path: str = "",
    *,
    inodes: int = 0,
    size: int = 0,
    created: Optional[datetime] = None,
    updated: Optional[datetime] = None,
    labels: Optional[Dict[str, str]] = None,
) -> Dict[bytes, Any]:
    bkt: Dict[bytes, Any] = {
        b"id": varint.uvarint_bytes(snapshot_id),
        b"kind": bytes([int(kind)]),
        b"inodes": varint.varint_bytes(inodes),
        b"size": varint.varint_bytes(size),
    }
    if parent:
        bkt[b"parent"] = parent
    if content_id:
        bkt[b"content_id"] = content_id
    if path:
        bkt[b"path"] = path
    if created is not None:
        bkt[boltutil.KEY_CREATED_AT] = boltutil.encode_time(created)
    if updated is not None:
        bkt[boltutil.KEY_UPDATED_AT] = boltutil.encode_time(updated)
    if labels:
        bkt[boltutil.KEY_LABELS] = dict(labels)
    return bkt


def devbox_bucket(lv_name: str, path: str, status: str = "", snapshot_key: str = "") -> Dict[bytes, Any]:
    bkt: Dict[bytes, Any] = {b"lv_name": lv_name, b"path": path}
    if status:
        bkt[b"status"] = status
    if snapshot_key:
        bkt[b"snapshot_key"] = snapshot_key
    return bkt


def hold_writer_lock(path):
    """Open path and take the exclusive flock a bbolt writer holds. Close the result to release."""
    f = open(path, "rb+")
    fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    return f
