# jobs/handlers.py
"""
Job handlers for each job type.

Every handler:
- loads the owning subject / photoshoot
- builds the provider request from the payload and entity defaults
- normalizes whatever the provider returns
- persists outputs through the asset writer, committing per asset
- refreshes the entity, appends asset refs and advances its status

Handlers classify failures (see jobs.errors) but never decide retry
policy; the worker routes every exception to the retry controller.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from PIL import Image
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ai.prompt_builder import (
    body_view_prompt,
    build_provider_input,
    face_angle_prompt,
    photoshoot_shot_prompt,
    pick_prompt,
    view_prompt,
)
from ai.prompts.sheet import (
    BODY_ANGLES,
    DEFAULT_FACE_PROMPT,
    DEFAULT_PHOTOSHOOT_PROMPT,
    DEFAULT_VIEWS,
    FACE_ANGLES,
)
from core.config import Settings
from jobs.errors import EntityNotFound, HandlerError, MissingReference, NoOutputs
from models import asset as asset_types
from models import job as job_types
from models import photoshoot as photoshoot_status
from models import subject as subject_status
from models.asset import Asset
from models.job import Job
from models.photoshoot import Photoshoot, PhotoshootAsset
from models.subject import Subject
from services.asset_writer import AssetLink, AssetOwner, AssetWriter
from services.http_fetch import HttpFetcher
from services.image_provider import ReplicateProvider
from services.output_normalizer import NormalizedItem, normalize_output
from services.storage import SupabaseStorage
from services.thumbnails import THUMBNAIL_CONTENT_TYPE, make_thumbnail

logger = logging.getLogger(__name__)

MAX_SHOTS = 12
WARNING_TEXT_LIMIT = 500


@dataclass
class HandlerContext:
    """Collaborators handed to every handler; built once per worker."""

    settings: Settings
    storage: SupabaseStorage
    provider: ReplicateProvider
    fetcher: HttpFetcher
    assets: AssetWriter

    @property
    def model_name(self) -> str:
        return self.settings.replicate_model_name


@dataclass
class _Batch:
    refs: list[dict] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    last_error: HandlerError | None = None
    position_offset: int = 0

    def warn(self, message: str, error: HandlerError | None = None) -> None:
        logger.warning(message)
        self.warnings.append(message[:WARNING_TEXT_LIMIT])
        if error is not None:
            self.last_error = error


# ─────────────────────────────────────────────
# helpers
# ─────────────────────────────────────────────

async def checkpoint(db: AsyncSession) -> None:
    """
    Commit small state updates so no DB transaction is held open
    during provider and storage calls.
    """
    await db.flush()
    await db.commit()


def _flag(payload: dict, *keys: str, default: bool) -> bool:
    for key in keys:
        if payload.get(key) is not None:
            return bool(payload[key])
    return default


def _string_list(value: Any) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        return []
    return [v for v in value if isinstance(v, str) and v.strip()]


def _settings_dict(payload: dict) -> dict:
    settings = payload.get("settings")
    if not isinstance(settings, dict):
        return {}
    return {k: v for k, v in settings.items() if not isinstance(v, dict)}


def _refs(value: Any) -> list[dict]:
    refs: list[dict] = []
    for ref in value or []:
        if isinstance(ref, str):
            refs.append({"url": ref})
        elif isinstance(ref, dict):
            refs.append(ref)
    return refs


def _is_http(value: Any) -> bool:
    return isinstance(value, str) and value.lower().startswith(("http://", "https://"))


def _ref_label(ref: dict) -> str:
    return ref.get("url") or ref.get("filename") or ref.get("objectPath") or "<unknown>"


def _ref_object_path(ref: dict) -> str | None:
    """Object path in the uploads bucket; bare filenames live under the owner."""
    filename = ref.get("objectPath") or ref.get("object_path") or ref.get("filename")
    if not isinstance(filename, str) or not filename.strip():
        return None
    filename = filename.strip().lstrip("/")
    if "/" in filename:
        return filename
    return f"{ref.get('owner') or 'anon'}/{filename}"


def _add_warnings(entity: Subject | Photoshoot, warnings: list[str]) -> None:
    if warnings:
        entity.warnings = [*(entity.warnings or []), *warnings]


def _set_status(entity: Subject | Photoshoot, status: str) -> None:
    allowed = (
        photoshoot_status.PHOTOSHOOT_STATUSES
        if isinstance(entity, Photoshoot)
        else subject_status.SUBJECT_STATUSES
    )
    if status not in allowed:
        raise ValueError(f"{status!r} is not a valid {type(entity).__name__} status")
    entity.status = status


async def _load_subject(db: AsyncSession, job: Job) -> Subject:
    if job.subject_id is None:
        raise EntityNotFound(f"Job {job.id} has no subject")
    subject = await db.get(Subject, job.subject_id)
    if subject is None:
        raise EntityNotFound(f"Subject not found: {job.subject_id}")
    return subject


async def _load_photoshoot(db: AsyncSession, job: Job) -> Photoshoot:
    if job.photoshoot_id is None:
        raise EntityNotFound(f"Job {job.id} has no photoshoot")
    photoshoot = await db.get(Photoshoot, job.photoshoot_id)
    if photoshoot is None:
        raise EntityNotFound(f"Photoshoot not found: {job.photoshoot_id}")
    return photoshoot


async def _reference_bytes(ctx: HandlerContext, ref: dict) -> bytes | None:
    url = ref.get("url")
    if _is_http(url):
        data, _ = await ctx.fetcher.fetch(url)
        return data
    path = _ref_object_path(ref)
    if path:
        return await ctx.storage.download(ctx.settings.upload_bucket, path)
    return None


async def _reference_locator(ctx: HandlerContext, ref: dict) -> str | None:
    """A URL the provider can fetch the reference image from."""
    url = ref.get("url")
    if _is_http(url):
        return url
    path = _ref_object_path(ref)
    if path:
        return await ctx.storage.create_signed_url(
            ctx.settings.upload_bucket, path, ctx.settings.signed_url_ttl_seconds
        )
    return None


async def _locate(ctx: HandlerContext, ref: dict | None, kind: str, batch: _Batch) -> str | None:
    if ref is None:
        return None
    try:
        locator = await _reference_locator(ctx, ref)
    except HandlerError as exc:
        batch.warn(f"Unable to sign {kind} reference {_ref_label(ref)}: {exc}")
        return None
    if not locator:
        batch.warn(f"No usable {kind} reference URL")
    return locator


async def _fail_missing_reference(db: AsyncSession, entity: Subject, batch: _Batch, message: str) -> None:
    batch.warn(message)
    _add_warnings(entity, batch.warnings)
    await checkpoint(db)
    raise MissingReference(message)


async def _run_provider(
    ctx: HandlerContext,
    prompt: str,
    image_input: list[str] | None,
    settings: dict | None,
) -> list[NormalizedItem]:
    request = build_provider_input(prompt, image_input, settings)
    raw = await ctx.provider.run(ctx.model_name, request)
    return normalize_output(raw)


async def _save_items(
    db: AsyncSession,
    ctx: HandlerContext,
    batch: _Batch,
    items: list[NormalizedItem],
    owner: AssetOwner,
    *,
    label: str,
    asset_type: str,
    meta: dict,
    bucket: str | None = None,
    link: bool = False,
) -> None:
    """Persist each item; a failed save is a warning, not a handler failure."""
    for index, item in enumerate(items):
        asset_link = AssetLink(position=batch.position_offset + len(batch.refs)) if link else None
        try:
            asset = await ctx.assets.persist(
                db,
                item,
                owner,
                index,
                asset_type=asset_type,
                meta=meta,
                bucket=bucket,
                link=asset_link,
            )
        except HandlerError as exc:
            batch.warn(f"Failed to save {label} output {index}: {exc}", exc)
            continue
        await checkpoint(db)
        batch.refs.append(asset.as_ref())


async def _fan_out(
    db: AsyncSession,
    ctx: HandlerContext,
    batch: _Batch,
    owner: AssetOwner,
    *,
    label: str,
    prompt: str,
    image_input: list[str],
    settings: dict,
    asset_type: str,
    meta: dict,
    bucket: str | None = None,
    link: bool = False,
) -> None:
    """One generation within a multi-image job; failures become warnings."""
    try:
        items = await _run_provider(ctx, prompt, image_input, settings)
    except HandlerError as exc:
        batch.warn(f"Generation failed for {label}: {exc}", exc)
        return

    if not items:
        batch.warn(f"No outputs for {label}", NoOutputs(f"No outputs for {label}"))
        return

    await _save_items(
        db,
        ctx,
        batch,
        items,
        owner,
        label=label,
        asset_type=asset_type,
        meta={**meta, "prompt": prompt},
        bucket=bucket,
        link=link,
    )


def _require_outputs(batch: _Batch, what: str) -> None:
    if batch.refs:
        return
    if batch.last_error is not None:
        raise batch.last_error
    raise NoOutputs(f"No {what} images were saved")


async def _finish_subject(db: AsyncSession, subject: Subject, batch: _Batch, status: str) -> dict:
    # reload: other writers may have touched the row while we were generating
    await db.refresh(subject)
    subject.assets = [*(subject.assets or []), *batch.refs]
    _add_warnings(subject, batch.warnings)
    _set_status(subject, status)
    await checkpoint(db)

    logger.info(
        "Subject %s -> %s (%d new assets, %d warnings)",
        subject.id,
        status,
        len(batch.refs),
        len(batch.warnings),
    )
    return {
        "assets": [ref["id"] for ref in batch.refs],
        "status": status,
        "warnings": batch.warnings,
    }


# ─────────────────────────────────────────────
# handlers
# ─────────────────────────────────────────────

async def handle_preprocess(db: AsyncSession, job: Job, ctx: HandlerContext) -> dict:
    subject = await _load_subject(db, job)
    settings = ctx.settings
    job_id = str(job.id)
    owner = AssetOwner(subject_id=subject.id, owner_id=subject.owner_id)
    batch = _Batch()

    logger.info("trace=%s preprocess subject=%s", job.trace_id, subject.id)

    for kind, refs, asset_type in (
        ("face", subject.face_refs, asset_types.THUMB_FACE),
        ("body", subject.body_refs, asset_types.THUMB_BODY),
    ):
        for index, ref in enumerate(_refs(refs)[: settings.max_reference_images]):
            label = _ref_label(ref)
            try:
                data = await _reference_bytes(ctx, ref)
                if data is None:
                    batch.warn(f"Unable to locate {kind} reference {label} for thumbnail")
                    continue
                thumb = await asyncio.to_thread(make_thumbnail, data, settings.thumbnail_size)
                asset = await ctx.assets.persist_bytes(
                    db,
                    thumb,
                    owner,
                    index,
                    asset_type=asset_type,
                    content_type=THUMBNAIL_CONTENT_TYPE,
                    meta={"origin": label, "size": settings.thumbnail_size, "job_id": job_id},
                )
            # PIL raises OSError subclasses for undecodable images
            except (HandlerError, OSError, ValueError, Image.DecompressionBombError) as exc:
                batch.warn(f"{kind.capitalize()} thumbnail failed for {label}: {exc}")
                continue
            await checkpoint(db)
            batch.refs.append(asset.as_ref())

    return await _finish_subject(db, subject, batch, subject_status.AWAITING_APPROVAL)


async def handle_generate_face(db: AsyncSession, job: Job, ctx: HandlerContext) -> dict:
    subject = await _load_subject(db, job)
    payload = job.payload or {}

    prompt = pick_prompt(
        payload.get("prompt"),
        subject.base_prompt,
        subject.description,
        default=DEFAULT_FACE_PROMPT,
    )
    image_input = _string_list(payload.get("image_input"))
    preview_only = _flag(payload, "previewOnly", "preview_only", default=True)
    parent_asset_id = payload.get("parentAssetId") or payload.get("parent_asset_id")

    logger.info("trace=%s generate-face subject=%s preview=%s", job.trace_id, subject.id, preview_only)

    items = await _run_provider(ctx, prompt, image_input, _settings_dict(payload))
    if not items:
        raise NoOutputs(f"No outputs from {ctx.model_name} for subject {subject.id}")

    batch = _Batch()
    await _save_items(
        db,
        ctx,
        batch,
        items,
        AssetOwner(subject_id=subject.id, owner_id=subject.owner_id),
        label="face",
        asset_type=asset_types.GENERATED_FACE,
        meta={
            "model": ctx.model_name,
            "prompt": prompt,
            "source": image_input[0] if image_input else None,
            "parent_id": parent_asset_id,
            "job_id": str(job.id),
        },
    )
    _require_outputs(batch, "face")

    status = subject_status.AWAITING_APPROVAL if preview_only else subject_status.GENERATED
    return await _finish_subject(db, subject, batch, status)


async def handle_generate_model_sheet(db: AsyncSession, job: Job, ctx: HandlerContext) -> dict:
    subject = await _load_subject(db, job)
    payload = job.payload or {}

    base = pick_prompt(payload.get("prompt"), subject.base_prompt, subject.description)
    face_angles = _string_list(payload.get("faceAngles")) or FACE_ANGLES
    body_angles = _string_list(payload.get("bodyAngles")) or BODY_ANGLES
    preview_only = _flag(payload, "previewOnly", "preview_only", default=False)
    settings = _settings_dict(payload)

    face_ref = next(iter(_refs(subject.face_refs)), None)
    body_ref = next(iter(_refs(subject.body_refs)), None)

    batch = _Batch()
    face_url = await _locate(ctx, face_ref, "face", batch)
    body_url = await _locate(ctx, body_ref, "body", batch)
    if not face_url and not body_url:
        await _fail_missing_reference(db, subject, batch, "No face or body reference for model sheet generation")

    logger.info(
        "trace=%s model-sheet subject=%s faces=%d bodies=%d",
        job.trace_id,
        subject.id,
        len(face_angles) if face_url else 0,
        len(body_angles) if body_url else 0,
    )

    owner = AssetOwner(subject_id=subject.id, owner_id=subject.owner_id)
    common = {"model": ctx.model_name, "job_id": str(job.id)}

    if body_url:
        body_inputs = [body_url] + ([face_url] if face_url else [])
        for view in body_angles:
            await _fan_out(
                db,
                ctx,
                batch,
                owner,
                label=f"body view {view}",
                prompt=body_view_prompt(base, view),
                image_input=body_inputs,
                settings=settings,
                asset_type=asset_types.SHEET_BODY,
                meta={**common, "view": view, "source": _ref_label(body_ref)},
            )

    if face_url:
        for angle in face_angles:
            await _fan_out(
                db,
                ctx,
                batch,
                owner,
                label=f"face angle {angle}",
                prompt=face_angle_prompt(base, angle),
                image_input=[face_url],
                settings=settings,
                asset_type=asset_types.SHEET_FACE,
                meta={**common, "angle": angle, "source": _ref_label(face_ref)},
            )

    _require_outputs(batch, "model sheet")

    status = subject_status.AWAITING_APPROVAL if preview_only else subject_status.SHEET_GENERATED
    return await _finish_subject(db, subject, batch, status)


async def handle_generate_views(db: AsyncSession, job: Job, ctx: HandlerContext) -> dict:
    subject = await _load_subject(db, job)
    payload = job.payload or {}

    base = pick_prompt(payload.get("prompt"), subject.base_prompt, subject.description)
    views = _string_list(payload.get("views")) or DEFAULT_VIEWS
    preview_only = _flag(payload, "previewOnly", "preview_only", default=False)

    job_id = str(job.id)
    source_ref = next(iter(_refs(subject.body_refs) or _refs(subject.face_refs)), None)

    batch = _Batch()
    source_url = await _locate(ctx, source_ref, "source", batch)
    if not source_url:
        await _fail_missing_reference(db, subject, batch, "No reference image to generate views from")

    owner = AssetOwner(subject_id=subject.id, owner_id=subject.owner_id)
    for view in views:
        await _fan_out(
            db,
            ctx,
            batch,
            owner,
            label=f"view {view}",
            prompt=view_prompt(base, view),
            image_input=[source_url],
            settings=_settings_dict(payload),
            asset_type=asset_types.PREVIEW,
            meta={"model": ctx.model_name, "view": view, "source": _ref_label(source_ref), "job_id": job_id},
        )

    _require_outputs(batch, "view")

    status = subject_status.AWAITING_APPROVAL if preview_only else subject_status.GENERATED
    return await _finish_subject(db, subject, batch, status)


def _shot_count(value: Any, default: int) -> int:
    try:
        shots = int(value) if value is not None else default
    except (TypeError, ValueError):
        shots = default
    return max(1, min(shots, MAX_SHOTS))


async def _photoshoot_references(
    db: AsyncSession,
    ctx: HandlerContext,
    photoshoot: Photoshoot,
    subject: Subject | None,
    batch: _Batch,
) -> list[str]:
    """Base image of the shoot if one exists, else the subject's first face ref."""
    if photoshoot.base_asset_id is not None:
        base_asset = await db.get(Asset, photoshoot.base_asset_id)
        if base_asset is not None:
            try:
                url = await ctx.storage.create_signed_url(
                    base_asset.bucket, base_asset.object_path, ctx.settings.signed_url_ttl_seconds
                )
            except HandlerError as exc:
                batch.warn(f"Unable to sign base asset {base_asset.id}: {exc}")
                url = None
            if url:
                return [url]

    if subject is not None:
        face_url = await _locate(ctx, next(iter(_refs(subject.face_refs)), None), "face", batch)
        if face_url:
            return [face_url]
    return []


async def handle_photoshoot_batch(db: AsyncSession, job: Job, ctx: HandlerContext) -> dict:
    photoshoot = await _load_photoshoot(db, job)
    payload = job.payload or {}

    subject = None
    if photoshoot.subject_id is not None:
        subject = await db.get(Subject, photoshoot.subject_id)

    job_id = str(job.id)
    shots = _shot_count(payload.get("shots"), ctx.settings.default_photoshoot_shots)
    base = pick_prompt(
        payload.get("prompt"),
        photoshoot.prompt,
        subject.base_prompt if subject is not None else None,
        default=DEFAULT_PHOTOSHOOT_PROMPT,
    )

    batch = _Batch()
    image_input = _string_list(payload.get("image_input")) or await _photoshoot_references(
        db, ctx, photoshoot, subject, batch
    )

    existing = await db.execute(
        select(func.count()).select_from(PhotoshootAsset).where(PhotoshootAsset.photoshoot_id == photoshoot.id)
    )
    batch.position_offset = existing.scalar_one()

    logger.info("trace=%s photoshoot=%s shots=%d", job.trace_id, photoshoot.id, shots)

    owner = AssetOwner(photoshoot_id=photoshoot.id, owner_id=photoshoot.owner_id)
    for number in range(1, shots + 1):
        await _fan_out(
            db,
            ctx,
            batch,
            owner,
            label=f"shot {number}",
            prompt=photoshoot_shot_prompt(base, number, shots),
            image_input=image_input,
            settings=_settings_dict(payload),
            asset_type=asset_types.PHOTO,
            meta={"model": ctx.model_name, "shot": number, "job_id": job_id, "generated_by": "photoshoot-worker"},
            bucket=ctx.settings.photoshoot_bucket,
            link=True,
        )

    _require_outputs(batch, "photoshoot")

    await db.refresh(photoshoot)
    if photoshoot.base_asset_id is None:
        photoshoot.base_asset_id = uuid.UUID(batch.refs[0]["id"])
    _add_warnings(photoshoot, batch.warnings)
    _set_status(photoshoot, photoshoot_status.COMPLETED)
    await checkpoint(db)

    logger.info("Photoshoot %s completed with %d images", photoshoot.id, len(batch.refs))
    return {
        "assets": [ref["id"] for ref in batch.refs],
        "status": photoshoot_status.COMPLETED,
        "warnings": batch.warnings,
    }


async def mark_owner_failed(db: AsyncSession, job: Job, error: str) -> None:
    """Surface a terminally failed job on its subject / photoshoot."""
    entity: Subject | Photoshoot | None = None
    if job.photoshoot_id is not None:
        entity = await db.get(Photoshoot, job.photoshoot_id, populate_existing=True)
        status = photoshoot_status.FAILED
    elif job.subject_id is not None:
        entity = await db.get(Subject, job.subject_id, populate_existing=True)
        status = subject_status.FAILED

    if entity is None:
        logger.warning("Job %s failed but its owner %s no longer exists", job.id, job.owner_ref)
        return

    _add_warnings(entity, [f"{job.job_type} failed: {error}"[:WARNING_TEXT_LIMIT]])
    _set_status(entity, status)
    await db.flush()


Handler = Callable[[AsyncSession, Job, HandlerContext], Awaitable[dict]]

HANDLERS: dict[str, Handler] = {
    job_types.PREPROCESS: handle_preprocess,
    job_types.GENERATE_FACE: handle_generate_face,
    job_types.GENERATE_MODEL_SHEET: handle_generate_model_sheet,
    job_types.GENERATE_VIEWS: handle_generate_views,
    job_types.PHOTOSHOOT_BATCH: handle_photoshoot_batch,
}
