from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any, TypeVar

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from material_pipeline.core.clock import Clock, SystemClock
from material_pipeline.core.config import Settings, settings as default_settings
from material_pipeline.db.session import SessionLocal
from material_pipeline.models.job import Job

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransactionConflict(Exception):
    pass


class JobStore:
    """
    Transactional access to the shared job table.

    Every status/lock mutation goes through run_transaction(): the callback re-reads the rows
    it touches, validates the expected prior state, then writes. Rows carry a row_version, so a
    concurrent writer makes the commit raise StaleDataError and the callback is re-run against
    fresh data.
    """

    def __init__(
        self,
        session_factory: sessionmaker | Callable[[], Session] | None = None,
        *,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.session_factory = session_factory or SessionLocal
        self.clock = clock or SystemClock()
        self.settings = settings or default_settings

    def now(self) -> datetime:
        return self.clock.now()

    def run_transaction(self, fn: Callable[[Session], T], *, attempts: int | None = None) -> T:
        attempts = max(1, attempts or self.settings.transaction_attempts)
        last_err: Exception | None = None

        for attempt in range(1, attempts + 1):
            db = self.session_factory()
            try:
                result = fn(db)
                db.commit()
                return result
            except (StaleDataError, IntegrityError) as e:
                db.rollback()
                last_err = e
                logger.info("transaction conflict (attempt %s/%s): %s", attempt, attempts, e.__class__.__name__)
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

        raise TransactionConflict(f"transaction still conflicting after {attempts} attempts") from last_err

    # ----------------------------
    # Job helpers
    # ----------------------------

    def get(self, job_id: str) -> Job | None:
        db = self.session_factory()
        try:
            return db.get(Job, job_id)
        finally:
            db.close()

    def create(self, job: Job) -> bool:
        """Insert the job unless a row with the same id exists. Returns True when inserted."""

        def _create(db: Session) -> bool:
            if db.get(Job, job.id) is not None:
                return False
            db.add(job)
            return True

        try:
            return self.run_transaction(_create, attempts=1)
        except TransactionConflict:
            # lost the insert race to another writer
            return False

    def update(
        self,
        job_id: str,
        changes: dict[str, Any],
        *,
        expected_status: str | None = None,
    ) -> Job | None:
        """Conditional partial write. Returns the updated job, or None if it is gone or in another status."""

        def _update(db: Session) -> Job | None:
            job = db.get(Job, job_id)
            if job is None:
                return None
            if expected_status is not None and job.status != expected_status:
                return None
            for k, v in changes.items():
                setattr(job, k, v)
            job.updated_at = self.now()
            return job

        return self.run_transaction(_update)

    def query(
        self,
        *,
        status: str | None = None,
        due_before: datetime | None = None,
        locked_before: datetime | None = None,
        limit: int | None = None,
    ) -> list[Job]:
        """
        Snapshot read, oldest-due first.
        locked_before matches rows whose lock is missing or taken at/before that instant.
        """
        stmt = select(Job)
        if status is not None:
            stmt = stmt.where(Job.status == status)
        if due_before is not None:
            stmt = stmt.where(Job.next_run_at <= due_before)
        if locked_before is not None:
            stmt = stmt.where(or_(Job.locked_at.is_(None), Job.locked_at <= locked_before))
        stmt = stmt.order_by(Job.next_run_at.asc(), Job.created_at.asc(), Job.id.asc())
        if limit is not None:
            stmt = stmt.limit(limit)

        db = self.session_factory()
        try:
            return list(db.scalars(stmt).all())
        finally:
            db.close()
