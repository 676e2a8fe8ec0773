# models/job.py
from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, JSONType, TimestampMixin, UTCDateTime, UUIDPrimaryKey

# job.status
QUEUED = "queued"
RUNNING = "running"
DONE = "done"
FAILED = "failed"

# job.job_type
PREPROCESS = "preprocess"
GENERATE_FACE = "generate-face"
GENERATE_MODEL_SHEET = "generate-model-sheet"
GENERATE_VIEWS = "generate-views"
PHOTOSHOOT_BATCH = "photoshoot-batch"

MAX_ATTEMPTS = 5


class Job(Base, UUIDPrimaryKey, TimestampMixin):
    __tablename__ = "jobs"

    job_type: Mapped[str] = mapped_column(String(64), nullable=False)

    # owning entity: exactly one of these is set by the enqueuer
    subject_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    photoshoot_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)

    # queued | running | done | failed
    status: Mapped[str] = mapped_column(String(32), default=QUEUED, nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, default=dict)
    result: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=MAX_ATTEMPTS, nullable=False)
    available_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    locked_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    trace_id: Mapped[uuid.UUID] = mapped_column(Uuid, default=uuid.uuid4, nullable=False)

    @property
    def owner_ref(self) -> str:
        if self.photoshoot_id is not None:
            return f"photoshoot:{self.photoshoot_id}"
        return f"subject:{self.subject_id}"
