"""
Enrollment Store: durable persistence of the enrollment record.

The record lives under a single fixed key. Every handler reloads it, since
the process hosting the agent may be killed between events.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import tempfile
from contextlib import contextmanager, nullcontext
from pathlib import Path
from typing import ContextManager, Iterator, Optional, Protocol

from pydantic import ValidationError

from .errors import StoreError
from .models import STORE_NAMESPACE, EnrollmentRecord

logger = logging.getLogger("store")


class PersistencePort(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def put(self, key: str, value: str) -> None: ...


# ── Persistence backends ───────────────────────────────────────────────

class InMemoryPersistence:
    """Dict-backed persistence for tests and hosts without a filesystem."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def put(self, key: str, value: str) -> None:
        self.data[key] = value


class FilePersistence:
    """
    Key-value persistence in one JSON document on disk.

    `put` replaces the document atomically and fsyncs before returning, so a
    write survives the process being killed right after the handler ends.
    """

    _LOCK_SUFFIX = ".lock"

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def get(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def put(self, key: str, value: str) -> None:
        doc = self._read()
        doc[key] = value
        self._atomic_write(json.dumps(doc, sort_keys=True))

    @contextmanager
    def lock(self) -> Iterator[None]:
        """Exclusive lock on a sidecar file for the duration of the context."""
        lock_path = self.path.with_suffix(self.path.suffix + self._LOCK_SUFFIX)
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        with lock_path.open("a+", encoding="utf-8") as handle:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

    def _read(self) -> dict[str, str]:
        if not self.path.is_file():
            return {}
        text = self.path.read_text(encoding="utf-8")
        if not text.strip():
            return {}
        doc = json.loads(text)
        if not isinstance(doc, dict):
            raise ValueError(f"{self.path} does not hold a JSON object")
        return doc

    def _atomic_write(self, content: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self.path.parent),
            prefix=f".{self.path.name}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmp_handle:
                tmp_handle.write(content)
                tmp_handle.flush()
                os.fsync(tmp_handle.fileno())
            os.replace(tmp_path, str(self.path))
            self._fsync_dir()
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def _fsync_dir(self) -> None:
        """Flush the directory entry so the rename itself survives power loss."""
        dir_fd = os.open(str(self.path.parent), os.O_RDONLY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)


# ── Enrollment store ───────────────────────────────────────────────────

class EnrollmentStore:
    def __init__(self, persistence: PersistencePort, key: str = STORE_NAMESPACE):
        self.persistence = persistence
        self.key = key

    def load(self) -> EnrollmentRecord:
        """Return the stored record, or the default unprovisioned one."""
        try:
            raw = self.persistence.get(self.key)
        except (OSError, ValueError) as exc:
            logger.error(f"STORE | LOAD_FAILED key={self.key} error={exc}")
            raise StoreError(f"Enrollment store unavailable: {exc}") from exc

        if raw is None:
            return EnrollmentRecord()
        try:
            return EnrollmentRecord.model_validate_json(raw)
        except ValidationError as exc:
            logger.error(f"STORE | CORRUPT key={self.key}")
            raise StoreError(f"Enrollment record is corrupt: {exc}") from exc

    def save(self, record: EnrollmentRecord) -> None:
        """
        Durably write `record`. Refuses to move the lifecycle state backward;
        unenrollment is not handled by this store.
        """
        current = self.load()
        if record.state.rank < current.state.rank:
            logger.warning(
                f"STORE | REJECTED backward write {current.state.value} -> {record.state.value}"
            )
            raise StoreError(
                f"Refusing backward transition: {current.state.value} -> {record.state.value}"
            )

        payload = record.model_dump_json(by_alias=True)
        try:
            self.persistence.put(self.key, payload)
        except (OSError, ValueError) as exc:
            logger.error(f"STORE | SAVE_FAILED key={self.key} error={exc}")
            raise StoreError(f"Enrollment store unavailable: {exc}") from exc

        logger.info(
            f"STORE | saved state={record.state.value} enrolled_id={record.enrolled_id} "
            f"policy_applied={record.policy_applied}"
        )

    def transaction(self) -> ContextManager[None]:
        """Exclusive section around one event, when the backend can lock."""
        lock = getattr(self.persistence, "lock", None)
        return lock() if lock is not None else nullcontext()
