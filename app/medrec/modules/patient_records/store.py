"""
Record aggregate store.

The only writer of patient records. Each apply() loads the aggregate, runs one
engine operation against the in-memory copy and commits row + grant rows +
new provenance rows in a single transaction.

Two layers keep writers from interleaving:
- an in-process lock per record id (threads of one worker queue up);
- the `version` column (other workers/processes): a stale UPDATE raises
  StaleDataError and the whole operation is re-run on freshly loaded state,
  up to `max_attempts`, then Conflict.
"""

from __future__ import annotations

import functools
import logging
import threading
import weakref
from collections.abc import Callable, Sequence
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from . import engine
from .aggregate import NewFile, Record
from .errors import Conflict, NotFound
from .grants import GrantTable
from .models import PatientRecord, RecordEvent, RecordGrant
from .provenance import ProvenanceLog, utcnow

logger = logging.getLogger(__name__)

Operation = Callable[[Record], Any]


def _op_name(operation: Operation) -> str:
    if isinstance(operation, functools.partial):
        return _op_name(operation.func)
    return getattr(operation, "__name__", type(operation).__name__)


def _fingerprint(record: Record) -> tuple:
    return (
        record.owner_id,
        tuple(f.to_dict().items() for f in record.content),
        tuple(record.access_requests),
        tuple((p, tuple(ids)) for p, ids in record.grants.to_dict().items()),
    )


class RecordStore:
    def __init__(self, sm: sessionmaker, *, max_attempts: int = 5) -> None:
        self._sm = sm
        self.max_attempts = max(1, max_attempts)
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _lock_for(self, record_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(record_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[record_id] = lock
            return lock

    def get(self, record_id: str) -> Record:
        s: Session = self._sm()
        try:
            row = s.get(PatientRecord, (record_id or "").strip())
            if row is None:
                raise NotFound("Patient not found")
            return row.to_aggregate()
        finally:
            s.close()

    def create(self, record_id: str, owner_id: str | None, initial_content: Sequence[NewFile] = ()) -> Record:
        record = engine.create_record(record_id, owner_id, initial_content)
        with self._lock_for(record.record_id):
            s: Session = self._sm()
            try:
                if s.get(PatientRecord, record.record_id) is not None:
                    raise Conflict("Patient with id already exists")
                now = utcnow()
                row = PatientRecord(
                    record_id=record.record_id,
                    owner_id=record.owner_id,
                    content=[f.to_dict() for f in record.content],
                    access_requests=[],
                    created_at=now,
                    updated_at=now,
                )
                s.add(row)
                s.flush()
                self._append_events(s, row, record, start=0)
                s.commit()
            except IntegrityError as e:
                s.rollback()
                raise Conflict("Patient with id already exists") from e
            except Exception:
                s.rollback()
                raise
            finally:
                s.close()

        logger.info("record.create committed record_id=%s owner_id=%s files=%s", record.record_id, record.owner_id, len(record.content))
        return self._snapshot(record, row)

    def apply(self, record_id: str, operation: Operation) -> Record:
        """
        Run `operation(record)` atomically against the current state of
        `record_id` and return the committed snapshot. RecordErrors raised by
        the operation propagate untouched and nothing is written.
        """
        record_id = (record_id or "").strip()
        name = _op_name(operation)
        lock = self._lock_for(record_id)
        last_err: Exception | None = None

        for attempt in range(1, self.max_attempts + 1):
            with lock:
                s: Session = self._sm()
                try:
                    row = s.get(PatientRecord, record_id)
                    if row is None:
                        raise NotFound("Patient not found")
                    record = row.to_aggregate()
                    before = _fingerprint(record)

                    operation(record)

                    pending = record.history.pending()
                    if not pending and _fingerprint(record) == before:
                        logger.debug("record.%s no-op record_id=%s", name, record_id)
                        return self._snapshot(record, row)

                    last_seq = row.last_seq()
                    self._write_state(row, record)
                    self._append_events(s, row, record, start=last_seq)
                    s.commit()
                except (StaleDataError, IntegrityError) as e:
                    s.rollback()
                    last_err = e
                    logger.warning(
                        "record.%s lost a concurrent write race record_id=%s attempt=%s/%s",
                        name,
                        record_id,
                        attempt,
                        self.max_attempts,
                    )
                    continue
                except Exception:
                    s.rollback()
                    raise
                finally:
                    s.close()

            logger.info(
                "record.%s committed record_id=%s version=%s events=%s attempt=%s",
                name,
                record_id,
                row.version,
                [e.kind.value for e in pending],
                attempt,
            )
            return self._snapshot(record, row)

        raise Conflict(f"Concurrent updates to patient {record_id}; retry the request") from last_err

    def _write_state(self, row: PatientRecord, record: Record) -> None:
        row.owner_id = record.owner_id
        row.content = [f.to_dict() for f in record.content]
        row.access_requests = list(record.access_requests)
        # Always touch the row so the versioned UPDATE runs even when only
        # grant rows or events changed.
        row.updated_at = utcnow()
        self._sync_grants(row, record.grants)

    @staticmethod
    def _sync_grants(row: PatientRecord, grants: GrantTable) -> None:
        wanted = grants.to_dict()
        existing = {g.principal_id: g for g in row.grant_rows}
        for principal, g in existing.items():
            if principal not in wanted:
                row.grant_rows.remove(g)
        for principal, file_ids in wanted.items():
            g = existing.get(principal)
            if g is None:
                row.grant_rows.append(RecordGrant(principal_id=principal, file_ids=file_ids))
            elif sorted(g.file_ids or []) != file_ids:
                g.file_ids = file_ids

    @staticmethod
    def _append_events(s: Session, row: PatientRecord, record: Record, *, start: int) -> None:
        seq = start
        for event in record.history.pending():
            seq += 1
            s.add(RecordEvent.from_event(row.record_id, seq, event))

    @staticmethod
    def _snapshot(record: Record, row: PatientRecord) -> Record:
        record.version = row.version
        record.created_at = row.created_at
        record.updated_at = row.updated_at
        record.history = ProvenanceLog(record.history.entries())
        return record


def store_from_app(app) -> RecordStore:
    store = app.extensions.get("record_store")
    if store is None:
        store = RecordStore(
            app.extensions["sqlalchemy_sessionmaker"],
            max_attempts=int(app.config.get("RECORD_COMMIT_ATTEMPTS") or 5),
        )
        app.extensions["record_store"] = store
    return store
