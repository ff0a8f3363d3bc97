"""Defaults shared by the reader and the command line."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_DB_PATH = "/var/lib/containerd/io.containerd.snapshotter.v1.devbox/metadata.db"

# seconds to wait for the shared lock before falling back to a private copy
DEFAULT_OPEN_TIMEOUT = 1.0

TEMP_PREFIX = "containerd-meta-viewer-"
TEMP_SUFFIX = ".db"

OUTPUT_TABLE = "table"
OUTPUT_JSON = "json"
OUTPUT_FORMATS = (OUTPUT_TABLE, OUTPUT_JSON)


@dataclass
class Settings:
    db_path: str = DEFAULT_DB_PATH
    output: str = OUTPUT_TABLE
    verbose: bool = False
    timeout: float = DEFAULT_OPEN_TIMEOUT

    def validate(self) -> None:
        if self.output not in OUTPUT_FORMATS:
            raise ValueError(f"invalid output format '{self.output}'. Use 'table' or 'json'")
        if self.timeout < 0:
            raise ValueError(f"invalid timeout {self.timeout}: must not be negative")
