# scripts/enqueue_job.py
"""
Enqueue a generation job by hand.
Run: python scripts/enqueue_job.py generate-face --subject <uuid> --payload '{"prompt": "..."}'
"""
from __future__ import annotations

import argparse
import asyncio
import json
import uuid

from core.config import get_settings
from db.engine import dispose_engine
from db.session import get_db
from jobs.handlers import HANDLERS
from jobs.queue import enqueue


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Enqueue a generation job")
    parser.add_argument("job_type", choices=sorted(HANDLERS))
    owner = parser.add_mutually_exclusive_group(required=True)
    owner.add_argument("--subject", type=uuid.UUID, help="owning subject id")
    owner.add_argument("--photoshoot", type=uuid.UUID, help="owning photoshoot id")
    parser.add_argument("--payload", type=json.loads, default={}, help="JSON payload")
    parser.add_argument("--max-attempts", type=int, default=None)
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> uuid.UUID:
    try:
        async for db in get_db():
            job = await enqueue(
                db,
                args.job_type,
                args.payload,
                subject_id=args.subject,
                photoshoot_id=args.photoshoot,
                max_attempts=args.max_attempts or get_settings().job_max_attempts,
            )
            job_id = job.id
    finally:
        await dispose_engine()
    return job_id


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    job_id = asyncio.run(run(args))
    print(f"Enqueued {args.job_type} job {job_id}")


if __name__ == "__main__":
    main()
