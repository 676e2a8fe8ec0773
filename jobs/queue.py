# jobs/queue.py
from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from core.config import Settings
from jobs.errors import is_retryable
from models import job as job_status
from models.job import MAX_ATTEMPTS, Job

logger = logging.getLogger(__name__)

ERROR_TEXT_LIMIT = 4000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RetryDecision(str, enum.Enum):
    REQUEUE = "requeue"
    TERMINATE = "terminate"
    # lock lost to the stale sweep or another worker; nothing recorded
    SUPERSEDED = "superseded"


@dataclass(frozen=True)
class RetryPolicy:
    base_seconds: float = 30.0
    cap_seconds: float = 3600.0

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            base_seconds=settings.job_backoff_base_seconds,
            cap_seconds=settings.job_backoff_cap_seconds,
        )


DEFAULT_POLICY = RetryPolicy()


def compute_backoff(previous_attempts: int, policy: RetryPolicy = DEFAULT_POLICY) -> float:
    """Delay before the next try: base * 2^previous_attempts, capped."""
    exponent = max(previous_attempts, 0)
    # avoid float overflow on absurd attempt counts
    if exponent > 62:
        return policy.cap_seconds
    return min(policy.cap_seconds, policy.base_seconds * (2 ** exponent))


async def enqueue(
    db: AsyncSession,
    job_type: str,
    payload: dict | None = None,
    *,
    subject_id: uuid.UUID | None = None,
    photoshoot_id: uuid.UUID | None = None,
    max_attempts: int = MAX_ATTEMPTS,
) -> Job:
    job = Job(
        job_type=job_type,
        payload=payload or {},
        subject_id=subject_id,
        photoshoot_id=photoshoot_id,
        status=job_status.QUEUED,
        attempts=0,
        max_attempts=max_attempts,
    )
    db.add(job)
    await db.flush()
    logger.info("Enqueued job %s [%s] for %s", job.id, job.job_type, job.owner_ref)
    return job


async def claim_next(
    db: AsyncSession,
    worker_id: str,
    now: datetime | None = None,
) -> Job | None:
    """
    Atomically claims the oldest eligible queued job.

    A single UPDATE ... WHERE id = (SELECT ... FOR UPDATE SKIP LOCKED)
    RETURNING statement, so concurrent workers scanning the same rows
    skip each other's candidates instead of blocking or double-claiming.
    The caller must commit promptly to release the row lock.
    """

    now = now or utcnow()
    candidate = aliased(Job, name="candidate")

    next_id = (
        select(candidate.id)
        .where(
            candidate.status == job_status.QUEUED,
            or_(
                candidate.available_at.is_(None),
                candidate.available_at <= now,
            ),
        )
        .order_by(candidate.created_at.asc())
        .limit(1)
        .with_for_update(skip_locked=True)
        .scalar_subquery()
    )

    stmt = (
        update(Job)
        .where(
            and_(
                Job.id == next_id,
                Job.status == job_status.QUEUED,
            )
        )
        .values(
            status=job_status.RUNNING,
            locked_by=worker_id,
            locked_at=now,
            started_at=now,
            updated_at=now,
        )
        .returning(Job)
        .execution_options(synchronize_session="fetch")
    )

    result = await db.execute(stmt)
    job = result.scalars().first()

    if job is None:
        return None

    logger.info(
        "Worker %s claimed job %s [%s] attempt=%d trace=%s",
        worker_id,
        job.id,
        job.job_type,
        job.attempts + 1,
        job.trace_id,
    )

    return job


async def complete_job(
    db: AsyncSession,
    job_id: uuid.UUID,
    worker_id: str,
    result: dict | None = None,
) -> bool:
    """
    Marks a running job done. Only the worker holding the lock can
    complete it; returns False and changes nothing otherwise.
    """
    now = utcnow()
    stmt = (
        update(Job)
        .where(
            Job.id == job_id,
            Job.status == job_status.RUNNING,
            Job.locked_by == worker_id,
        )
        .values(
            status=job_status.DONE,
            result=result or {},
            error=None,
            locked_by=None,
            locked_at=None,
            finished_at=now,
            updated_at=now,
        )
        .returning(Job.id)
        .execution_options(synchronize_session="fetch")
    )
    completed = (await db.execute(stmt)).scalar_one_or_none()

    if completed is None:
        logger.warning("Job %s is no longer locked by %s, not completing", job_id, worker_id)
        return False

    logger.info("Job %s completed", job_id)
    return True


async def touch_job_lock(
    db: AsyncSession,
    job_id: uuid.UUID,
    worker_id: str,
    now: datetime | None = None,
) -> bool:
    """Renews `locked_at` while the holder is still working on the job."""
    now = now or utcnow()
    stmt = (
        update(Job)
        .where(
            Job.id == job_id,
            Job.status == job_status.RUNNING,
            Job.locked_by == worker_id,
        )
        .values(locked_at=now)
        .returning(Job.id)
        .execution_options(synchronize_session=False)
    )
    return (await db.execute(stmt)).scalar_one_or_none() is not None


async def fail_job(
    db: AsyncSession,
    job: Job,
    error: BaseException | str,
    policy: RetryPolicy | None = None,
    now: datetime | None = None,
    worker_id: str | None = None,
) -> RetryDecision:
    """
    Schedules retry with backoff or marks permanently failed.
    No sleeping here.

    With `worker_id`, only the current lock holder may record the
    failure; anyone else gets SUPERSEDED and the row is left alone.
    """

    # the caller's copy may be expired or stale
    await db.refresh(job, with_for_update=True)

    if worker_id is not None and (
        job.status != job_status.RUNNING or job.locked_by != worker_id
    ):
        logger.warning(
            "Job %s is %s and locked by %s, ignoring failure reported by %s",
            job.id,
            job.status,
            job.locked_by,
            worker_id,
        )
        return RetryDecision.SUPERSEDED

    if job.status == job_status.FAILED:
        logger.info("Job %s already failed, ignoring further failure", job.id)
        return RetryDecision.TERMINATE

    if job.status != job_status.RUNNING:
        logger.warning("Job %s is %s, ignoring failure", job.id, job.status)
        return RetryDecision.SUPERSEDED

    policy = policy or DEFAULT_POLICY
    now = now or utcnow()
    message = str(error) or error.__class__.__name__
    retryable = not isinstance(error, BaseException) or is_retryable(error)

    previous_attempts = job.attempts
    job.attempts = previous_attempts + 1
    job.error = message[:ERROR_TEXT_LIMIT]
    job.locked_by = None
    job.locked_at = None
    job.updated_at = now

    if retryable and job.attempts < job.max_attempts:
        delay = compute_backoff(previous_attempts, policy)
        job.status = job_status.QUEUED
        job.available_at = now + timedelta(seconds=delay)

        logger.warning(
            "Job %s retry %d/%d in %ds trace=%s: %s",
            job.id,
            job.attempts,
            job.max_attempts,
            delay,
            job.trace_id,
            message,
        )
        decision = RetryDecision.REQUEUE
    else:
        job.status = job_status.FAILED
        job.finished_at = now

        logger.error(
            "Job %s permanently failed after %d attempts (retryable=%s) trace=%s: %s",
            job.id,
            job.attempts,
            retryable,
            job.trace_id,
            message,
        )
        decision = RetryDecision.TERMINATE

    await db.flush()
    return decision


async def find_stale_jobs(
    db: AsyncSession,
    lock_timeout_seconds: int,
    now: datetime | None = None,
) -> list[Job]:
    """Running jobs whose lock outlived the timeout (worker died mid-job)."""
    now = now or utcnow()
    stale_cutoff = now - timedelta(seconds=lock_timeout_seconds)

    stmt = (
        select(Job)
        .where(
            Job.status == job_status.RUNNING,
            Job.locked_at <= stale_cutoff,
        )
        .order_by(Job.locked_at.asc())
        .with_for_update(skip_locked=True)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def requeue_stale_jobs(
    db: AsyncSession,
    lock_timeout_seconds: int,
    policy: RetryPolicy | None = None,
    now: datetime | None = None,
) -> list[tuple[Job, RetryDecision]]:
    """
    Routes expired locks through the retry controller so a crashed
    worker costs the job one attempt instead of stalling it forever.
    """
    outcomes: list[tuple[Job, RetryDecision]] = []
    for job in await find_stale_jobs(db, lock_timeout_seconds, now=now):
        error = f"Lock held by {job.locked_by} expired after {lock_timeout_seconds}s"
        decision = await fail_job(db, job, error, policy=policy, now=now)
        outcomes.append((job, decision))
    return outcomes
