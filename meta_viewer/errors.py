"""
Exceptions raised by the metadata reader.

Every failure the reader surfaces derives from MetaViewerError so callers can
catch one type, print the message, and exit non-zero. Messages carry the path,
bucket, key or field involved so a failed run can be diagnosed from the
message alone.
"""

from __future__ import annotations

from typing import Optional


class MetaViewerError(Exception):
    """Base class for reader failures."""


class StoreOpenError(MetaViewerError):
    """The store could not be opened (missing, unreadable, corrupt, or copy fallback failed)."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"{message}: {path}")


class StoreClosedError(MetaViewerError):
    def __init__(self, path: Optional[str] = None):
        self.path = path
        super().__init__("store handle is closed" + (f": {path}" if path else ""))


class StoreCloseError(MetaViewerError):
    """Closing the database or removing its temporary copy failed."""

    def __init__(self, path: str, message: str, cause: BaseException):
        self.path = path
        self.cause = cause
        super().__init__(f"{message} ({cause}): {path}")


class BucketNotFoundError(MetaViewerError):
    """A bucket the schema requires is absent."""

    def __init__(self, bucket: str):
        self.bucket = bucket
        super().__init__(f"{bucket} bucket not found")


class NotFoundError(MetaViewerError):
    """A named record is absent from an existing bucket."""

    kind = "record"

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"{self.kind} {key} not found")


class SnapshotNotFoundError(NotFoundError):
    kind = "snapshot"


class DevboxStorageNotFoundError(NotFoundError):
    kind = "devbox storage"


class FieldDecodeError(MetaViewerError):
    """Stored bytes of a strictly decoded field (timestamps, labels) are malformed."""

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"failed to read {field}: {reason}")


class RecordDecodeError(MetaViewerError):
    """A record could not be assembled; wraps the FieldDecodeError that caused it."""

    def __init__(self, kind: str, key: str, cause: BaseException):
        self.kind = kind
        self.key = key
        self.cause = cause
        super().__init__(f"failed to read {kind} {key}: {cause}")


class StoreReadError(MetaViewerError):
    """The store's pages could not be read while walking it (corrupt or truncated file)."""

    def __init__(self, operation: str, cause: BaseException):
        self.operation = operation
        self.cause = cause
        super().__init__(f"failed to {operation}: {cause}")
