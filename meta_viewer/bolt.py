"""
Read-only access to bbolt database files.

Only the subset needed to inspect a store is implemented: meta page
selection, branch and leaf pages (with overflow), nested and inline buckets,
ordered iteration and point lookups. Nothing here writes to the file.

On-disk layout (all integers little-endian):

    page header     id u64, flags u16, count u16, overflow u32
    meta            magic u32, version u32, page_size u32, flags u32,
                    root {pgid u64, sequence u64}, freelist u64, pgid u64,
                    txid u64, checksum u64
    branch element  pos u32, ksize u32, pgid u64
    leaf element    flags u32, pos u32, ksize u32, vsize u32
    bucket value    root u64, sequence u64 [+ inline page when root == 0]

Element `pos` is relative to the element's own header. Pages 0 and 1 hold the
two meta copies; the valid one with the highest txid is current.
"""

from __future__ import annotations

import bisect
import fcntl
import logging
import mmap
import os
import struct
import time
from typing import Iterator, List, NamedTuple, Optional, Tuple, Union

logger = logging.getLogger(__name__)

MAGIC = 0xED0CDAED
VERSION = 2

BRANCH_PAGE_FLAG = 0x01
LEAF_PAGE_FLAG = 0x02
META_PAGE_FLAG = 0x04
FREELIST_PAGE_FLAG = 0x10

BUCKET_LEAF_FLAG = 0x01

PAGE_HEADER = struct.Struct("<QHHI")
META = struct.Struct("<IIIIQQQQQQ")
BRANCH_ELEMENT = struct.Struct("<IIQ")
LEAF_ELEMENT = struct.Struct("<IIII")
BUCKET_HEADER = struct.Struct("<QQ")

# page sizes probed for the second meta page when the first is unreadable
PAGE_SIZE_CANDIDATES = (4096, 8192, 16384, 32768, 65536)

MAX_DEPTH = 64
LOCK_POLL_INTERVAL = 0.05

FNV64_OFFSET = 0xCBF29CE484222325
FNV64_PRIME = 0x100000001B3


class BoltError(Exception):
    pass


class InvalidDatabaseError(BoltError):
    pass


class VersionMismatchError(InvalidDatabaseError):
    pass


class ChecksumError(InvalidDatabaseError):
    pass


class LockTimeoutError(BoltError):
    """Another process holds the writer lock and the shared lock was not granted in time."""


class DatabaseNotOpenError(BoltError):
    pass


def fnv64a(data: bytes) -> int:
    h = FNV64_OFFSET
    for b in data:
        h ^= b
        h = (h * FNV64_PRIME) & 0xFFFFFFFFFFFFFFFF
    return h


Buffer = Union[bytes, mmap.mmap]


class Meta(NamedTuple):
    page_size: int
    flags: int
    root: int
    sequence: int
    freelist: int
    pgid: int
    txid: int

    @classmethod
    def unpack(cls, buf: Buffer, offset: int) -> "Meta":
        at = offset + PAGE_HEADER.size
        if at + META.size > len(buf):
            raise InvalidDatabaseError("file size too small")
        (magic, version, page_size, flags, root, sequence,
         freelist, pgid, txid, checksum) = META.unpack_from(buf, at)
        if magic != MAGIC:
            raise InvalidDatabaseError("invalid database")
        if version != VERSION:
            raise VersionMismatchError(f"version mismatch: {version}")
        if checksum != fnv64a(bytes(buf[at:at + META.size - 8])):
            raise ChecksumError("checksum error")
        if page_size < 512 or page_size & (page_size - 1):
            raise InvalidDatabaseError(f"invalid page size: {page_size}")
        return cls(page_size, flags, root, sequence, freelist, pgid, txid)


class LeafElement(NamedTuple):
    flags: int
    key: bytes
    value: bytes

    @property
    def is_bucket(self) -> bool:
        return bool(self.flags & BUCKET_LEAF_FLAG)


class Page:
    """A page header plus its elements, read from buf at offset."""

    __slots__ = ("buf", "offset", "id", "flags", "count", "overflow")

    def __init__(self, buf: Buffer, offset: int):
        if offset < 0 or offset + PAGE_HEADER.size > len(buf):
            raise InvalidDatabaseError(f"page at offset {offset} is outside the file")
        self.buf = buf
        self.offset = offset
        self.id, self.flags, self.count, self.overflow = PAGE_HEADER.unpack_from(buf, offset)

    @property
    def is_leaf(self) -> bool:
        return bool(self.flags & LEAF_PAGE_FLAG)

    @property
    def is_branch(self) -> bool:
        return bool(self.flags & BRANCH_PAGE_FLAG)

    def _element(self, i: int, layout: struct.Struct) -> Tuple[int, tuple]:
        at = self.offset + PAGE_HEADER.size + i * layout.size
        if at + layout.size > len(self.buf):
            raise InvalidDatabaseError(f"page {self.id}: element {i} is truncated")
        return at, layout.unpack_from(self.buf, at)

    def _slice(self, start: int, size: int) -> bytes:
        end = start + size
        if end > len(self.buf):
            raise InvalidDatabaseError(f"page {self.id}: element data runs past the end of the file")
        return bytes(self.buf[start:end])

    def leaf_elements(self) -> List[LeafElement]:
        out = []
        for i in range(self.count):
            at, (flags, pos, ksize, vsize) = self._element(i, LEAF_ELEMENT)
            data = self._slice(at + pos, ksize + vsize)
            out.append(LeafElement(flags, data[:ksize], data[ksize:]))
        return out

    def branch_elements(self) -> List[Tuple[bytes, int]]:
        out = []
        for i in range(self.count):
            at, (pos, ksize, pgid) = self._element(i, BRANCH_ELEMENT)
            out.append((self._slice(at + pos, ksize), pgid))
        return out


# -----------------------------
# Locking
# -----------------------------

def flock_shared(f, timeout: float) -> None:
    """Take a shared lock on f, polling until timeout seconds (0 waits forever)."""
    started = time.monotonic()
    while True:
        try:
            fcntl.flock(f.fileno(), fcntl.LOCK_SH | fcntl.LOCK_NB)
            return
        except BlockingIOError:
            if timeout > 0 and time.monotonic() - started >= timeout:
                raise LockTimeoutError("timeout") from None
        time.sleep(LOCK_POLL_INTERVAL)


# -----------------------------
# DB / Tx / Bucket
# -----------------------------

class DB:
    """An open, read-only, memory-mapped database file."""

    def __init__(self, path: str, f, buf: mmap.mmap):
        self.path = path
        self._file = f
        self._mmap: Optional[mmap.mmap] = buf
        self.page_size = self.meta().page_size

    @property
    def closed(self) -> bool:
        return self._mmap is None

    def _buffer(self) -> mmap.mmap:
        if self._mmap is None:
            raise DatabaseNotOpenError("database not open")
        return self._mmap

    def meta(self) -> Meta:
        buf = self._buffer()
        try:
            meta0: Optional[Meta] = Meta.unpack(buf, 0)
            first_err: Optional[BoltError] = None
        except BoltError as exc:
            meta0, first_err = None, exc

        sizes = (meta0.page_size,) if meta0 is not None else PAGE_SIZE_CANDIDATES
        meta1 = None
        for size in sizes:
            try:
                meta1 = Meta.unpack(buf, size)
            except BoltError:
                continue
            if meta1.page_size == size:
                break
            meta1 = None

        if meta0 is None and meta1 is None:
            raise first_err
        if meta0 is None or (meta1 is not None and meta1.txid > meta0.txid):
            return meta1
        return meta0

    def view(self) -> "Tx":
        """Start a read transaction pinned to the current meta page."""
        return Tx(self, self.meta())

    def close(self) -> None:
        if self._mmap is None:
            return
        buf, self._mmap = self._mmap, None
        try:
            buf.close()
        finally:
            # closing the descriptor releases the flock
            self._file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def open_db(path: Union[str, os.PathLike], *, timeout: float = 0.0, lock: bool = True) -> DB:
    """Open path read-only.

    With lock set, a shared flock is taken first; a writer holding the
    exclusive lock for longer than timeout raises LockTimeoutError.
    OSError from opening the file propagates unchanged.
    """
    path = os.fspath(path)
    f = open(path, "rb")
    try:
        if lock:
            flock_shared(f, timeout)
        size = os.fstat(f.fileno()).st_size
        if size < PAGE_HEADER.size + META.size:
            raise InvalidDatabaseError("file size too small")
        buf = mmap.mmap(f.fileno(), 0, access=mmap.ACCESS_READ)
        try:
            db = DB(path, f, buf)
        except BaseException:
            buf.close()
            raise
    except BaseException:
        f.close()
        raise
    logger.debug(f"opened {path} read-only (page_size={db.page_size})")
    return db


class Tx:
    """A read view over one meta page; every lookup resolves pages from it."""

    def __init__(self, db: DB, meta: Meta):
        self.db: Optional[DB] = db
        self.meta = meta
        self.root = Bucket(self, meta.root)

    def page(self, pgid: int) -> Page:
        if self.db is None:
            raise DatabaseNotOpenError("tx closed")
        if pgid < 2 or pgid >= self.meta.pgid:
            raise InvalidDatabaseError(f"page {pgid}: out of range (high water mark {self.meta.pgid})")
        p = Page(self.db._buffer(), pgid * self.meta.page_size)
        if p.id != pgid:
            raise InvalidDatabaseError(f"page {pgid}: header claims id {p.id}")
        return p

    def bucket(self, name: bytes) -> Optional["Bucket"]:
        return self.root.bucket(name)

    def buckets(self) -> Iterator[Tuple[bytes, "Bucket"]]:
        """Top-level buckets in key order."""
        for elem in self.root.elements():
            if elem.is_bucket:
                yield elem.key, self.root.open_bucket(elem.value)

    def close(self) -> None:
        self.db = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class Bucket:
    def __init__(self, tx: Tx, root: int, inline: Optional[Page] = None):
        self.tx = tx
        self.root = root
        self.inline = inline

    def _root_page(self) -> Page:
        if self.inline is not None:
            return self.inline
        return self.tx.page(self.root)

    def _walk(self, page: Page, depth: int = 0) -> Iterator[LeafElement]:
        if depth > MAX_DEPTH:
            raise InvalidDatabaseError(f"page {page.id}: tree deeper than {MAX_DEPTH}")
        if page.is_leaf:
            yield from page.leaf_elements()
        elif page.is_branch:
            for _, pgid in page.branch_elements():
                yield from self._walk(self.tx.page(pgid), depth + 1)
        else:
            raise InvalidDatabaseError(f"page {page.id}: invalid page type: {page.flags:#x}")

    def elements(self) -> Iterator[LeafElement]:
        return self._walk(self._root_page())

    def _seek(self, key: bytes) -> Optional[LeafElement]:
        page = self._root_page()
        for _ in range(MAX_DEPTH):
            if page.is_branch:
                elems = page.branch_elements()
                if not elems:
                    return None
                i = bisect.bisect_right([k for k, _ in elems], key) - 1
                page = self.tx.page(elems[max(i, 0)][1])
                continue
            if not page.is_leaf:
                raise InvalidDatabaseError(f"page {page.id}: invalid page type: {page.flags:#x}")
            elems = page.leaf_elements()
            i = bisect.bisect_left([e.key for e in elems], key)
            if i < len(elems) and elems[i].key == key:
                return elems[i]
            return None
        raise InvalidDatabaseError(f"page {page.id}: tree deeper than {MAX_DEPTH}")

    def open_bucket(self, value: bytes) -> "Bucket":
        if len(value) < BUCKET_HEADER.size:
            raise InvalidDatabaseError("bucket header is truncated")
        root, _ = BUCKET_HEADER.unpack_from(value, 0)
        if root == 0:
            return Bucket(self.tx, 0, Page(value, BUCKET_HEADER.size))
        return Bucket(self.tx, root)

    def get(self, key: bytes) -> Optional[bytes]:
        """Value stored under key; None when absent or when key names a sub-bucket."""
        elem = self._seek(key)
        if elem is None or elem.is_bucket:
            return None
        return elem.value

    def bucket(self, name: bytes) -> Optional["Bucket"]:
        elem = self._seek(name)
        if elem is None or not elem.is_bucket:
            return None
        return self.open_bucket(elem.value)

    def items(self) -> Iterator[Tuple[bytes, Optional[bytes]]]:
        """(key, value) in key order; value is None for sub-buckets."""
        for elem in self.elements():
            yield elem.key, (None if elem.is_bucket else elem.value)

    def key_count(self) -> int:
        """Number of direct entries, sub-buckets included."""
        return sum(1 for _ in self.elements())
