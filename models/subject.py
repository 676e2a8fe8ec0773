# models/subject.py
from __future__ import annotations

import uuid

from sqlalchemy import String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, JSONType, TimestampMixin, UUIDPrimaryKey

# subject.status vocabulary; the UI maps anything else to "no change"
DRAFT = "draft"
QUEUED = "queued"
PREPROCESSING = "preprocessing"
AWAITING_APPROVAL = "awaiting-approval"
GENERATING = "generating"
SHEET_GENERATED = "sheet_generated"
GENERATED = "generated"
FAILED = "failed"

SUBJECT_STATUSES = frozenset({
    DRAFT,
    QUEUED,
    PREPROCESSING,
    AWAITING_APPROVAL,
    GENERATING,
    SHEET_GENERATED,
    GENERATED,
    FAILED,
})


class Subject(Base, UUIDPrimaryKey, TimestampMixin):
    __tablename__ = "subjects"

    owner_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    base_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(32), default=DRAFT, nullable=False)

    # reference locators: [{"url": ..., "filename": ..., "owner": ...}]
    face_refs: Mapped[list] = mapped_column(JSONType, default=list)
    body_refs: Mapped[list] = mapped_column(JSONType, default=list)

    # ordered asset references, newest last
    assets: Mapped[list] = mapped_column(JSONType, default=list)
    warnings: Mapped[list] = mapped_column(JSONType, default=list)
