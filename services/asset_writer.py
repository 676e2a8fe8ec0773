# services/asset_writer.py
"""
Persists generated images: bytes to object storage first, then the
asset row. A failed row write removes the uploaded object again so
storage never accumulates unreferenced blobs.
"""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from jobs.errors import DbError, HandlerError, InvalidOutput
from models.asset import Asset
from models.photoshoot import PhotoshootAsset
from services.http_fetch import HttpFetcher
from services.output_normalizer import NormalizedItem, OutputKind, decode_inline
from services.storage import SupabaseStorage

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
    "image/svg+xml": "svg",
}


def sniff_content_type(data: bytes, declared: str | None = None) -> str:
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    if declared and declared.startswith("image/"):
        return declared
    return "image/png"


@dataclass(frozen=True)
class AssetOwner:
    """Where an asset belongs; the path prefix is the owning entity id."""

    subject_id: uuid.UUID | None = None
    photoshoot_id: uuid.UUID | None = None
    owner_id: uuid.UUID | None = None

    @property
    def key(self) -> str:
        return str(self.photoshoot_id or self.subject_id or "unowned")


@dataclass
class AssetLink:
    """Join row to create alongside the asset (photoshoot results)."""

    role: str = "result"
    position: int = 0


@dataclass
class AssetWriter:
    storage: SupabaseStorage
    fetcher: HttpFetcher
    bucket: str = "generated"
    signed_url_ttl: int = 3600
    _last_ms: int = field(default=0, init=False, repr=False)

    def object_path(self, owner: AssetOwner, asset_type: str, index: int, ext: str) -> str:
        # strictly increasing per writer, so two saves in one millisecond still differ
        now_ms = max(int(time.time() * 1000), self._last_ms + 1)
        self._last_ms = now_ms
        return f"{owner.key}/{asset_type}-{now_ms}-{index}.{ext}"

    async def resolve(self, item: NormalizedItem) -> tuple[bytes, str]:
        """Materialize a normalized output as (bytes, content type)."""
        if item.kind is OutputKind.URL:
            data, declared = await self.fetcher.fetch(item.value)
        else:
            try:
                data, declared = decode_inline(item)
            except ValueError as exc:
                raise InvalidOutput(str(exc)) from exc

        if not data:
            raise InvalidOutput(f"Empty {item.kind.value} output")
        return data, sniff_content_type(data, declared)

    async def persist(
        self,
        db: AsyncSession,
        item: NormalizedItem,
        owner: AssetOwner,
        index: int,
        *,
        asset_type: str,
        meta: dict | None = None,
        bucket: str | None = None,
        link: AssetLink | None = None,
    ) -> Asset:
        data, content_type = await self.resolve(item)
        meta = dict(meta or {})
        if item.kind is OutputKind.URL:
            meta.setdefault("output_url", item.value)
        return await self.persist_bytes(
            db,
            data,
            owner,
            index,
            asset_type=asset_type,
            content_type=content_type,
            meta=meta,
            bucket=bucket,
            link=link,
        )

    async def persist_bytes(
        self,
        db: AsyncSession,
        data: bytes,
        owner: AssetOwner,
        index: int,
        *,
        asset_type: str,
        content_type: str | None = None,
        meta: dict | None = None,
        bucket: str | None = None,
        link: AssetLink | None = None,
    ) -> Asset:
        bucket = bucket or self.bucket
        content_type = sniff_content_type(data, content_type)
        ext = _EXTENSIONS.get(content_type, "bin")
        path = self.object_path(owner, asset_type, index, ext)

        # fails fast on an existing object; nothing to clean up yet
        await self.storage.upload(bucket, path, data, content_type)

        url = await self._signed_url(bucket, path)

        asset = Asset(
            id=uuid.uuid4(),
            owner_id=owner.owner_id,
            subject_id=owner.subject_id,
            photoshoot_id=owner.photoshoot_id,
            type=asset_type,
            bucket=bucket,
            object_path=path,
            filename=path.rsplit("/", 1)[-1],
            url=url,
            meta={**(meta or {}), "content_type": content_type},
            active=False,
        )
        db.add(asset)
        if link is not None and owner.photoshoot_id is not None:
            db.add(
                PhotoshootAsset(
                    photoshoot_id=owner.photoshoot_id,
                    asset_id=asset.id,
                    role=link.role,
                    position=link.position,
                )
            )

        try:
            await db.flush()
        except SQLAlchemyError as exc:
            await db.rollback()
            await self._discard(bucket, path)
            raise DbError(f"Failed to record asset {bucket}/{path}: {exc}") from exc

        logger.info("Saved %s asset %s at %s/%s", asset_type, asset.id, bucket, path)
        return asset

    async def _signed_url(self, bucket: str, path: str) -> str | None:
        try:
            return await self.storage.create_signed_url(bucket, path, self.signed_url_ttl)
        except HandlerError as exc:
            logger.warning("Signed URL for %s/%s unavailable: %s", bucket, path, exc)
            return None

    async def _discard(self, bucket: str, path: str) -> None:
        try:
            await self.storage.delete(bucket, path)
        except Exception as exc:
            logger.error("Orphaned object %s/%s left in storage: %s", bucket, path, exc)
