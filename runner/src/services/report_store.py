"""
Keyed report storage with monotonically increasing revisions.
"""

import logging
import threading
from contextlib import contextmanager, nullcontext
from typing import Dict, List, Optional

from sqlalchemy import select, text, update
from sqlalchemy.exc import IntegrityError

from runner.src.models.db import ReportRecord
from runner.src.models.step import Report

logger = logging.getLogger(__name__)

class ReportStoreConflict(Exception):
    """Raised when a report write lost a race against another writer."""

    def __init__(self, change_id: str, expected_revision: int):
        super().__init__(
            f"Report for {change_id} is no longer at revision {expected_revision}"
        )
        self.change_id = change_id
        self.expected_revision = expected_revision

class KeyedLocks:
    """Process-local lock per key, dropped once nobody holds or waits on it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, List] = {}

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self):
        with self._guard:
            return len(self._locks)

class ReportStore:
    """
    Base report store.

    `save` is a compare-and-set: it only succeeds when the stored revision
    still equals `expected_revision` (0 means "no report yet").
    """

    def lock(self, change_id: str):
        return nullcontext()

    def get(self, change_id: str) -> Optional[Report]:
        raise NotImplementedError

    def save(self, report: Report, expected_revision: int) -> Report:
        raise NotImplementedError

    def get_comment_id(self, change_id: str) -> Optional[str]:
        raise NotImplementedError

    def set_comment_id(self, change_id: str, comment_id: str):
        raise NotImplementedError

class InMemoryReportStore(ReportStore):
    """Process-local store with one lock per change id."""

    def __init__(self):
        self._guard = threading.Lock()
        self.key_locks = KeyedLocks()
        self._reports: Dict[str, Report] = {}
        self._comment_ids: Dict[str, str] = {}

    def lock(self, change_id: str):
        return self.key_locks.hold(change_id)

    def get(self, change_id: str) -> Optional[Report]:
        with self._guard:
            return self._reports.get(change_id)

    def save(self, report: Report, expected_revision: int) -> Report:
        with self._guard:
            current = self._reports.get(report.change_id)
            current_revision = current.revision if current else 0
            if current_revision != expected_revision:
                raise ReportStoreConflict(report.change_id, expected_revision)
            self._reports[report.change_id] = report
            return report

    def get_comment_id(self, change_id: str) -> Optional[str]:
        with self._guard:
            return self._comment_ids.get(change_id)

    def set_comment_id(self, change_id: str, comment_id: str):
        with self._guard:
            self._comment_ids[change_id] = comment_id

    def __len__(self):
        with self._guard:
            return len(self._reports)

class SqlReportStore(ReportStore):
    """
    Reports table backed store.

    `lock` serializes writers of one change id: across threads with a
    process-local lock, and across workers with a Postgres advisory lock.
    The revision check in the UPDATE's WHERE clause (or the primary key on
    first insert) still rejects any write that skipped the lock.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self.key_locks = KeyedLocks()

    @contextmanager
    def lock(self, change_id: str):
        with self.key_locks.hold(change_id), self.session_factory() as session:
            if session.get_bind().dialect.name == "postgresql":
                # Released when the session's transaction ends
                session.execute(
                    text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
                    {"key": f"plangate:report:{change_id}"},
                )
            yield

    def get(self, change_id: str) -> Optional[Report]:
        with self.session_factory() as session:
            record = session.get(ReportRecord, change_id)
            if record is None:
                return None
            return Report(
                change_id=record.change_id,
                body=record.body,
                revision=record.revision,
            )

    def save(self, report: Report, expected_revision: int) -> Report:
        with self.session_factory() as session:
            if expected_revision == 0:
                session.add(ReportRecord(
                    change_id=report.change_id,
                    body=report.body,
                    revision=report.revision,
                ))
                try:
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    raise ReportStoreConflict(report.change_id, expected_revision)
                return report

            result = session.execute(
                update(ReportRecord)
                .where(ReportRecord.change_id == report.change_id)
                .where(ReportRecord.revision == expected_revision)
                .values(body=report.body, revision=report.revision)
            )
            session.commit()

            if result.rowcount == 0:
                raise ReportStoreConflict(report.change_id, expected_revision)
            return report

    def get_comment_id(self, change_id: str) -> Optional[str]:
        with self.session_factory() as session:
            return session.execute(
                select(ReportRecord.comment_id)
                .where(ReportRecord.change_id == change_id)
            ).scalar_one_or_none()

    def set_comment_id(self, change_id: str, comment_id: str):
        with self.session_factory() as session:
            session.execute(
                update(ReportRecord)
                .where(ReportRecord.change_id == change_id)
                .values(comment_id=comment_id)
            )
            session.commit()
