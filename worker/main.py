# worker/main.py
"""
Background worker: polls the job queue and dispatches to handlers.

One job per iteration. The claim is committed on its own so the row
lock is released before any provider call; the handler then commits
its own checkpoints and this loop records the final outcome.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import platform
import signal
import uuid
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import Settings, get_settings
from db.engine import dispose_engine
from db.session import get_session_factory
from jobs.errors import UnknownJobType
from jobs.handlers import HANDLERS, HandlerContext, mark_owner_failed
from jobs.queue import (
    RetryDecision,
    RetryPolicy,
    claim_next,
    complete_job,
    fail_job,
    requeue_stale_jobs,
    touch_job_lock,
)
from services.asset_writer import AssetWriter
from services.http_fetch import HttpFetcher
from services.image_provider import ReplicateProvider
from services.observability import log_event
from services.storage import SupabaseStorage

logger = logging.getLogger("worker")


WORKER_ID = f"worker-{platform.node()}-{uuid.uuid4().hex[:8]}"


def build_context(settings: Settings) -> HandlerContext:
    storage = SupabaseStorage.from_settings(settings)
    fetcher = HttpFetcher.create(
        timeout=settings.http_timeout_seconds,
        attempts=settings.network_retry_attempts,
    )
    return HandlerContext(
        settings=settings,
        storage=storage,
        provider=ReplicateProvider.from_settings(settings),
        fetcher=fetcher,
        assets=AssetWriter(
            storage,
            fetcher,
            bucket=settings.generated_bucket,
            signed_url_ttl=settings.signed_url_ttl_seconds,
        ),
    )


async def _renew_lock(
    session_factory: async_sessionmaker[AsyncSession],
    job_id: uuid.UUID,
    worker_id: str,
    interval: float,
) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            async with session_factory() as db:
                held = await touch_job_lock(db, job_id, worker_id)
                await db.commit()
        except Exception as exc:
            logger.warning("Heartbeat for job %s failed: %s", job_id, exc)
            continue
        if not held:
            logger.warning("Worker %s lost the lock on job %s", worker_id, job_id)
            return


@contextlib.asynccontextmanager
async def hold_job_lock(
    session_factory: async_sessionmaker[AsyncSession],
    job_id: uuid.UUID,
    worker_id: str,
    interval: float,
):
    """Keep `locked_at` fresh while a handler runs so the stale sweep leaves it alone."""
    heartbeat = asyncio.create_task(_renew_lock(session_factory, job_id, worker_id, interval))
    try:
        yield
    finally:
        heartbeat.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await heartbeat


async def run_once(
    session_factory: async_sessionmaker[AsyncSession],
    ctx: HandlerContext,
    worker_id: str = WORKER_ID,
    now: datetime | None = None,
) -> bool:
    """
    Claim and process at most one job.
    Returns False when nothing was eligible.
    """
    async with session_factory() as db:
        job = await claim_next(db, worker_id, now=now)
        await db.commit()

        if job is None:
            return False

        # handler rollbacks expire the instance; keep plain copies
        job_id = job.id
        job_type = job.job_type
        handler = HANDLERS.get(job_type)

        if handler is None:
            unknown = UnknownJobType(job_type)
            logger.warning("Skipping job %s: %s", job_id, unknown)
            await complete_job(db, job_id, worker_id, {"skipped": True, "reason": str(unknown)})
            await log_event(
                db,
                "unknown_job_type",
                "warning",
                source="worker",
                job_id=job_id,
                message=str(unknown),
                metadata={"job_type": job_type},
            )
            await db.commit()
            return True

        try:
            async with hold_job_lock(
                session_factory, job_id, worker_id, ctx.settings.job_heartbeat_interval
            ):
                result = await handler(db, job, ctx)

            await complete_job(db, job_id, worker_id, result)

            await db.commit()

        except Exception as exc:
            logger.exception("Job %s [%s] raised", job_id, job_type)

            # drop whatever the handler left pending; checkpoints stay
            await db.rollback()

            decision = await fail_job(
                db,
                job,
                exc,
                policy=RetryPolicy.from_settings(ctx.settings),
                now=now,
                worker_id=worker_id,
            )
            if decision is RetryDecision.TERMINATE:
                await mark_owner_failed(db, job, job.error or type(exc).__name__)

            await log_event(
                db,
                "job_failed",
                "error",
                source="worker",
                job_id=job_id,
                message=str(exc) if decision is RetryDecision.SUPERSEDED else job.error,
                metadata={
                    "job_type": job.job_type,
                    "error_type": type(exc).__name__,
                    "attempts": job.attempts,
                    "decision": decision.value,
                },
            )

            await db.commit()

        return True


async def sweep_stale(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    now: datetime | None = None,
) -> int:
    """Requeue or fail jobs whose worker disappeared mid-run."""
    async with session_factory() as db:
        outcomes = await requeue_stale_jobs(
            db,
            settings.job_lock_timeout_seconds,
            policy=RetryPolicy.from_settings(settings),
            now=now,
        )
        for job, decision in outcomes:
            if decision is RetryDecision.TERMINATE:
                await mark_owner_failed(db, job, job.error or "lock expired")
            await log_event(
                db,
                "job_lock_expired",
                "warning",
                source="worker",
                job_id=job.id,
                message=job.error,
                metadata={"job_type": job.job_type, "decision": decision.value},
            )
        await db.commit()

    if outcomes:
        logger.warning("Recovered %d stale job(s)", len(outcomes))
    return len(outcomes)


async def run_loop(stop: asyncio.Event | None = None) -> None:
    settings = get_settings()
    stop = stop or asyncio.Event()
    session_factory = get_session_factory()
    ctx = build_context(settings)
    loop = asyncio.get_running_loop()

    logger.info(
        "Worker %s starting (poll=%.1fs, model=%s)",
        WORKER_ID,
        settings.worker_poll_interval,
        settings.replicate_model_name,
    )

    last_sweep: float | None = None
    try:
        while not stop.is_set():
            worked = False
            try:
                if last_sweep is None or loop.time() - last_sweep >= settings.stale_sweep_interval:
                    await sweep_stale(session_factory, settings)
                    last_sweep = loop.time()

                worked = await run_once(session_factory, ctx, WORKER_ID)

            except Exception as exc:
                logger.exception("Worker loop error: %s", exc)

            if not worked:
                # idle: wait for the next poll, waking early on shutdown
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(stop.wait(), timeout=settings.worker_poll_interval)
    finally:
        await ctx.fetcher.aclose()
        await dispose_engine()
        logger.info("Worker %s stopped", WORKER_ID)


async def serve() -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)
    await run_loop(stop)


def main() -> None:
    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    asyncio.run(serve())


if __name__ == "__main__":
    main()
