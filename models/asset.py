# models/asset.py
from __future__ import annotations

import uuid

from sqlalchemy import Boolean, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, JSONType, TimestampMixin, UUIDPrimaryKey

# asset.type
THUMB_FACE = "thumb_face"
THUMB_BODY = "thumb_body"
GENERATED_FACE = "generated_face"
SHEET_FACE = "sheet_face"
SHEET_BODY = "sheet_body"
PREVIEW = "preview"
PHOTO = "photo"


class Asset(Base, UUIDPrimaryKey, TimestampMixin):
    __tablename__ = "assets"
    __table_args__ = (UniqueConstraint("bucket", "object_path"),)

    owner_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    subject_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("subjects.id"), nullable=True, index=True)
    photoshoot_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("photoshoots.id"), nullable=True, index=True)

    type: Mapped[str] = mapped_column(String(32), nullable=False)
    bucket: Mapped[str] = mapped_column(String(128), nullable=False)
    object_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    filename: Mapped[str | None] = mapped_column(String(512), nullable=True)
    url: Mapped[str | None] = mapped_column(String(2048), nullable=True)

    # provenance: model, prompt, source, angle/view
    meta: Mapped[dict] = mapped_column(JSONType, default=dict)
    active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def as_ref(self) -> dict:
        """Compact reference stored on the owning entity."""
        ref = {
            "id": str(self.id),
            "type": self.type,
            "bucket": self.bucket,
            "objectPath": self.object_path,
            "url": self.url,
        }
        for key in ("angle", "view", "origin"):
            if self.meta and self.meta.get(key):
                ref[key] = self.meta[key]
        return ref
