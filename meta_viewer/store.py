"""
Opening a store that another process may hold open for writing.

A bbolt writer keeps an exclusive flock on the file for as long as it runs.
Readers ask for a shared lock with a short timeout; when the timeout expires
the file is copied to a private temp file and the copy is opened instead.
The copy is removed again when the handle is closed.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from typing import Optional, Union

from meta_viewer import bolt
from meta_viewer.config import DEFAULT_OPEN_TIMEOUT, TEMP_PREFIX, TEMP_SUFFIX
from meta_viewer.errors import StoreCloseError, StoreClosedError, StoreOpenError

logger = logging.getLogger(__name__)

COPY_CHUNK_SIZE = 1024 * 1024


class StoreHandle:
    """One read-only database, plus the temp copy it was opened from, if any."""

    def __init__(self, db: bolt.DB, path: str, temp_path: Optional[str] = None):
        self._db: Optional[bolt.DB] = db
        self.path = path
        self.temp_path = temp_path

    @property
    def closed(self) -> bool:
        return self._db is None

    @property
    def copied(self) -> bool:
        return self.temp_path is not None

    def view(self) -> bolt.Tx:
        if self._db is None:
            raise StoreClosedError(self.path)
        return self._db.view()

    def close(self) -> None:
        """Close the database and delete the temp copy.

        The delete is attempted even when closing fails; the close error is
        the one raised when both fail. Failures raise StoreCloseError.
        """
        db, self._db = self._db, None
        temp_path, self.temp_path = self.temp_path, None
        err: Optional[StoreCloseError] = None
        if db is not None:
            try:
                db.close()
            except (bolt.BoltError, OSError) as exc:
                err = StoreCloseError(self.path, "failed to close database", exc)
                err.__cause__ = exc
        if temp_path is not None:
            try:
                os.remove(temp_path)
                logger.debug(f"removed temporary copy {temp_path}")
            except OSError as exc:
                if err is None:
                    raise StoreCloseError(self.path, f"failed to remove temporary copy {temp_path}", exc) from exc
                logger.debug(f"failed to remove temporary copy {temp_path}: {exc}")
        if err is not None:
            raise err

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        try:
            self.close()
        except StoreCloseError as close_exc:
            if exc_type is None:
                raise
            # keep the error already propagating
            logger.debug(f"{close_exc} (while handling {exc_type.__name__})")


def copy_file(src: str, dst: str) -> None:
    """Copy src to dst and fsync dst before returning."""
    with open(src, "rb") as fsrc, open(dst, "wb") as fdst:
        shutil.copyfileobj(fsrc, fdst, COPY_CHUNK_SIZE)
        fdst.flush()
        os.fsync(fdst.fileno())


def _open_copy(path: str) -> StoreHandle:
    fd, temp_path = tempfile.mkstemp(prefix=TEMP_PREFIX, suffix=TEMP_SUFFIX)
    os.close(fd)
    try:
        try:
            copy_file(path, temp_path)
        except OSError as exc:
            raise StoreOpenError(path, f"failed to copy database file for reading ({exc})") from exc
        try:
            # nobody else knows about the copy, so there is no lock to take
            db = bolt.open_db(temp_path, lock=False)
        except (bolt.BoltError, OSError) as exc:
            raise StoreOpenError(path, f"failed to open copied database ({exc})") from exc
    except BaseException:
        try:
            os.remove(temp_path)
        except OSError as exc:
            logger.debug(f"failed to remove temporary copy {temp_path}: {exc}")
        raise
    logger.debug(f"database {path} is locked by a writer, reading copy {temp_path}")
    return StoreHandle(db, path, temp_path)


def open_store(path: Union[str, os.PathLike], *, timeout: float = DEFAULT_OPEN_TIMEOUT) -> StoreHandle:
    """Open the store at path read-only.

    Only a lock timeout switches to the copy strategy; a missing file,
    permission error or corrupt header is raised as StoreOpenError directly.
    """
    path = os.fspath(path)
    try:
        db = bolt.open_db(path, timeout=timeout)
    except bolt.LockTimeoutError:
        return _open_copy(path)
    except (bolt.BoltError, OSError) as exc:
        raise StoreOpenError(path, f"failed to open bolt database ({exc})") from exc
    return StoreHandle(db, path)
