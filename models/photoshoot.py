# models/photoshoot.py
from __future__ import annotations

import uuid

from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, JSONType, TimestampMixin, UUIDPrimaryKey

# photoshoot.status vocabulary
QUEUED = "queued"
GENERATING = "generating"
COMPLETED = "completed"
FAILED = "failed"

PHOTOSHOOT_STATUSES = frozenset({QUEUED, GENERATING, COMPLETED, FAILED})


class Photoshoot(Base, UUIDPrimaryKey, TimestampMixin):
    __tablename__ = "photoshoots"

    owner_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    subject_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("subjects.id"), nullable=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    prompt: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(32), default=QUEUED, nullable=False)
    base_asset_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    warnings: Mapped[list] = mapped_column(JSONType, default=list)


class PhotoshootAsset(Base, UUIDPrimaryKey, TimestampMixin):
    __tablename__ = "photoshoot_assets"
    __table_args__ = (UniqueConstraint("photoshoot_id", "asset_id"),)

    photoshoot_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("photoshoots.id"), nullable=False)
    asset_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("assets.id"), nullable=False)
    role: Mapped[str] = mapped_column(String(32), default="result")
    position: Mapped[int] = mapped_column(Integer, default=0)
