"""
Table and JSON renderings of reader records.

Both formatters write to a stream (stdout by default) and share method names
so the command line can pick one by output format.
"""

from __future__ import annotations

import enum
import json
import sys
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, TextIO

from meta_viewer.config import OUTPUT_JSON
from meta_viewer.models import BucketInfo, DevboxStorageInfo, SnapshotInfo, snapshot_kind_string

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"
COLUMN_PADDING = 2


def printable(s: str) -> str:
    """Render surrogate-escaped key bytes as \\xNN so output stays valid UTF-8."""
    if not any("\udc80" <= c <= "\udcff" for c in s):
        return s
    return s.encode("utf-8", errors="surrogateescape").decode("utf-8", errors="backslashreplace")


def iso_time(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat().replace("+00:00", "Z")


def jsonable(x: Any) -> Any:
    """Convert records (dataclasses, enums, datetimes) into JSON-serializable form."""
    if isinstance(x, enum.Enum):
        return str(x)
    if isinstance(x, str):
        return printable(x)
    if x is None or isinstance(x, (int, float, bool)):
        return x
    if isinstance(x, datetime):
        return iso_time(x)
    if isinstance(x, (list, tuple)):
        return [jsonable(v) for v in x]
    if isinstance(x, dict):
        return {str(k): jsonable(v) for k, v in x.items()}
    if is_dataclass(x):
        return jsonable(asdict(x))
    return str(x)


def snapshot_to_dict(snapshot: SnapshotInfo) -> Dict[str, Any]:
    out = jsonable(snapshot)
    # optional fields are left out when empty
    for key in ("labels", "content_id", "path"):
        if not out.get(key):
            out.pop(key, None)
    return out


def lvm_map(storage: Sequence[DevboxStorageInfo]) -> Dict[str, str]:
    """lv_name -> path for entries that carry both."""
    return {item.lv_name: item.path for item in storage if item.lv_name and item.path}


def truncate_string(s: str, max_len: int) -> str:
    if max_len <= 0:
        return ""
    if len(s) <= max_len:
        return s
    if max_len <= 3:
        if max_len <= 1:
            return s[:1]
        return s[:max_len - 1] + "."
    return s[:max_len - 3] + "..."


def _dash(s: str) -> str:
    return s if s else "-"


def _format_time(value: Optional[datetime]) -> str:
    return value.strftime(TIME_FORMAT) if value is not None else "-"


class TableFormatter:
    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream if stream is not None else sys.stdout

    def _write_table(self, header: Sequence[str], rows: List[Sequence[Any]]) -> None:
        cells = [[str(c) for c in header]] + [[printable(str(c)) for c in row] for row in rows]
        widths = [max(len(r[i]) for r in cells) for i in range(len(header))]
        for r in cells:
            line = "".join(c.ljust(w + COLUMN_PADDING) for c, w in zip(r[:-1], widths))
            self.stream.write(line + r[-1] + "\n")
        self.stream.flush()

    def _write_lines(self, lines: List[str]) -> None:
        self.stream.write("\n".join(printable(line) for line in lines) + "\n")
        self.stream.flush()

    def format_buckets(self, buckets: Sequence[BucketInfo]) -> None:
        self._write_table(["NAME", "KEYS"], [(b.name, b.key_count) for b in buckets])

    def format_snapshots(self, snapshots: Sequence[SnapshotInfo]) -> None:
        self._write_table(
            ["ID", "KEY", "KIND", "PARENT", "CONTENT_ID", "PATH", "INODES", "SIZE", "CREATED"],
            [
                (
                    s.id,
                    truncate_string(s.key, 12),
                    snapshot_kind_string(s.kind),
                    _dash(s.parent),
                    truncate_string(_dash(s.content_id), 12),
                    truncate_string(_dash(s.path), 20),
                    s.inodes,
                    s.size,
                    _format_time(s.created_at),
                )
                for s in snapshots
            ],
        )

    def format_snapshot(self, s: SnapshotInfo) -> None:
        lines = [
            "Snapshot Information:",
            "====================",
            f"ID:       {s.id}",
            f"Key:      {s.key}",
            f"Kind:     {snapshot_kind_string(s.kind)}",
            f"Parent:   {s.parent}",
            f"Created:  {_format_time(s.created_at)}",
            f"Updated:  {_format_time(s.updated_at)}",
            f"Inodes:   {s.inodes}",
            f"Size:     {s.size} bytes",
        ]
        if s.content_id:
            lines.append(f"ContentID: {s.content_id}")
        if s.path:
            lines.append(f"Path:      {s.path}")
        if s.labels:
            lines += ["", "Labels:"]
            lines += [f"  {k}: {v}" for k, v in sorted(s.labels.items())]
        self._write_lines(lines)

    def format_devbox_storage(self, storage: Sequence[DevboxStorageInfo]) -> None:
        self._write_table(
            ["CONTENT_ID", "LV_NAME", "PATH", "STATUS", "SNAPSHOT_KEY"],
            [
                (
                    truncate_string(item.content_id, 12),
                    _dash(item.lv_name),
                    truncate_string(_dash(item.path), 30),
                    item.status or "unknown",
                    truncate_string(_dash(item.snapshot_key), 40),
                )
                for item in storage
            ],
        )

    def format_devbox_storage_item(self, item: DevboxStorageInfo) -> None:
        lines = [
            "Devbox Storage Information:",
            "==========================",
            f"ContentID:   {item.content_id}",
            f"LV Name:     {item.lv_name}",
            f"Path:        {item.path}",
            f"Status:      {item.status}",
        ]
        if item.snapshot_key:
            lines.append(f"Snapshot Key: {item.snapshot_key}")
        self._write_lines(lines)

    def format_lvm_map(self, storage: Sequence[DevboxStorageInfo]) -> None:
        self._write_table(
            ["LV_NAME", "PATH"],
            [(lv, truncate_string(path, 50)) for lv, path in lvm_map(storage).items()],
        )


class JSONFormatter:
    def __init__(self, pretty: bool = False, stream: Optional[TextIO] = None):
        self.pretty = pretty
        self.stream = stream if stream is not None else sys.stdout

    def to_json(self, data: Any) -> str:
        if self.pretty:
            return json.dumps(data, ensure_ascii=False, indent=2)
        return json.dumps(data, ensure_ascii=False, separators=(",", ":"))

    def _emit(self, data: Any) -> None:
        self.stream.write(self.to_json(data) + "\n")
        self.stream.flush()

    def format_buckets(self, buckets: Sequence[BucketInfo]) -> None:
        self._emit(jsonable(list(buckets)))

    def format_snapshots(self, snapshots: Sequence[SnapshotInfo]) -> None:
        self._emit([snapshot_to_dict(s) for s in snapshots])

    def format_snapshot(self, snapshot: SnapshotInfo) -> None:
        self._emit(snapshot_to_dict(snapshot))

    def format_devbox_storage(self, storage: Sequence[DevboxStorageInfo]) -> None:
        self._emit(jsonable(list(storage)))

    def format_devbox_storage_item(self, item: DevboxStorageInfo) -> None:
        self._emit(jsonable(item))

    def format_lvm_map(self, storage: Sequence[DevboxStorageInfo]) -> None:
        self._emit(lvm_map(storage))


def new_formatter(output: str, *, pretty: bool = False, stream: Optional[TextIO] = None):
    if output == OUTPUT_JSON:
        return JSONFormatter(pretty=pretty, stream=stream)
    return TableFormatter(stream=stream)
