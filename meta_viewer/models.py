"""Typed records produced by the reader."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional


class Kind(enum.IntEnum):
    """Snapshot kind, stored as a single byte."""

    UNKNOWN = 0
    VIEW = 1
    ACTIVE = 2
    COMMITTED = 3

    @classmethod
    def from_byte(cls, value: int) -> "Kind":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN

    def __str__(self) -> str:
        return self.name.capitalize()


def snapshot_kind_string(kind: Kind) -> str:
    """Human readable kind; anything unrecognized is "unknown"."""
    if kind in (Kind.ACTIVE, Kind.VIEW, Kind.COMMITTED):
        return kind.name.lower()
    return "unknown"


@dataclass
class BucketInfo:
    name: str
    key_count: int = 0


@dataclass
class SnapshotInfo:
    key: str
    id: int = 0
    kind: Kind = Kind.UNKNOWN
    parent: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    labels: Dict[str, str] = field(default_factory=dict)

    # usage
    inodes: int = 0
    size: int = 0

    # devbox fields
    content_id: str = ""
    path: str = ""


@dataclass
class DevboxStorageInfo:
    content_id: str
    lv_name: str = ""
    path: str = ""
    status: str = ""
    snapshot_key: str = ""
