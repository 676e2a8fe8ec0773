# tests/test_asset_writer.py
from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from jobs.errors import DbError, DownloadError, InvalidOutput
from models.asset import Asset
from models.photoshoot import Photoshoot, PhotoshootAsset
from models.subject import Subject
from services.asset_writer import AssetLink, AssetOwner, AssetWriter, sniff_content_type
from services.output_normalizer import NormalizedItem, OutputKind
from fakes import data_uri


def test_sniff_prefers_magic_bytes_over_declared_type(png_bytes):
    assert sniff_content_type(png_bytes, "image/jpeg") == "image/png"
    assert sniff_content_type(b"\xff\xd8\xff\xe0rest") == "image/jpeg"
    assert sniff_content_type(b"unknown", "image/webp") == "image/webp"
    assert sniff_content_type(b"unknown", "text/html") == "image/png"


def test_object_paths_are_unique_within_a_millisecond(storage, fetcher):
    writer = AssetWriter(storage, fetcher)
    owner = AssetOwner(subject_id=uuid.uuid4())

    first = writer.object_path(owner, "sheet_face", 0, "png")
    second = writer.object_path(owner, "sheet_face", 0, "png")

    assert first != second
    assert first.startswith(f"{owner.key}/sheet_face-")
    assert first.endswith("-0.png")


def test_owner_key_prefers_photoshoot():
    subject_id, photoshoot_id = uuid.uuid4(), uuid.uuid4()
    assert AssetOwner(subject_id=subject_id).key == str(subject_id)
    assert AssetOwner(subject_id=subject_id, photoshoot_id=photoshoot_id).key == str(photoshoot_id)


@pytest.mark.asyncio
async def test_persist_inline_output(session_factory, storage, fetcher, png_bytes, owner_id):
    writer = AssetWriter(storage, fetcher, bucket="generated")

    async with session_factory() as db:
        subject = Subject(owner_id=owner_id, name="Ava")
        db.add(subject)
        await db.flush()

        owner = AssetOwner(subject_id=subject.id, owner_id=owner_id)
        asset = await writer.persist(
            db,
            NormalizedItem(OutputKind.DATA_URI, data_uri(png_bytes)),
            owner,
            0,
            asset_type="generated_face",
            meta={"model": "google/nano-banana", "prompt": "portrait"},
        )
        await db.commit()

    assert asset.object_path.startswith(f"{subject.id}/generated_face-")
    assert asset.object_path.endswith(".png")
    assert asset.active is False
    assert asset.url.startswith("https://storage.test/generated/")
    assert asset.meta["model"] == "google/nano-banana"
    assert asset.meta["content_type"] == "image/png"
    assert storage.objects[("generated", asset.object_path)] == (png_bytes, "image/png")

    async with session_factory() as db:
        stored = (await db.execute(select(Asset))).scalars().all()
    assert [a.id for a in stored] == [asset.id]


@pytest.mark.asyncio
async def test_persist_url_output_records_source_url(session_factory, storage, fetcher, png_bytes):
    writer = AssetWriter(storage, fetcher)

    async with session_factory() as db:
        asset = await writer.persist(
            db,
            NormalizedItem(OutputKind.URL, "https://cdn.test/out.png"),
            AssetOwner(subject_id=uuid.uuid4()),
            2,
            asset_type="sheet_body",
            meta={"view": "front"},
        )
        await db.commit()

    assert asset.meta["output_url"] == "https://cdn.test/out.png"
    assert asset.as_ref()["view"] == "front"
    assert asset.object_path.endswith("-2.png")
    assert storage.objects[("generated", asset.object_path)][0] == png_bytes


@pytest.mark.asyncio
async def test_persist_links_photoshoot_results(session_factory, storage, fetcher, png_bytes):
    writer = AssetWriter(storage, fetcher)

    async with session_factory() as db:
        shoot = Photoshoot(name="Beach")
        db.add(shoot)
        await db.flush()

        asset = await writer.persist_bytes(
            db,
            png_bytes,
            AssetOwner(photoshoot_id=shoot.id),
            0,
            asset_type="photo",
            link=AssetLink(position=3),
        )
        await db.commit()

    async with session_factory() as db:
        link = (await db.execute(select(PhotoshootAsset))).scalar_one()

    assert link.photoshoot_id == shoot.id
    assert link.asset_id == asset.id
    assert link.role == "result"
    assert link.position == 3


@pytest.mark.asyncio
async def test_db_failure_removes_uploaded_object(storage, fetcher, png_bytes):
    db = MagicMock()
    db.flush = AsyncMock(side_effect=SQLAlchemyError("connection reset"))
    db.rollback = AsyncMock()
    writer = AssetWriter(storage, fetcher)

    with pytest.raises(DbError) as exc_info:
        await writer.persist_bytes(
            db,
            png_bytes,
            AssetOwner(subject_id=uuid.uuid4()),
            0,
            asset_type="thumb_face",
        )

    assert isinstance(exc_info.value.__cause__, SQLAlchemyError)
    db.rollback.assert_awaited_once()
    assert storage.objects == {}
    assert len(storage.deleted) == 1


@pytest.mark.asyncio
async def test_db_failure_with_failing_cleanup_still_raises_db_error(storage, fetcher, png_bytes, caplog):
    db = MagicMock()
    db.flush = AsyncMock(side_effect=SQLAlchemyError("boom"))
    db.rollback = AsyncMock()
    storage.delete = AsyncMock(side_effect=RuntimeError("storage down"))
    writer = AssetWriter(storage, fetcher)

    with pytest.raises(DbError):
        await writer.persist_bytes(db, png_bytes, AssetOwner(subject_id=uuid.uuid4()), 0, asset_type="photo")

    assert "Orphaned object" in caplog.text


@pytest.mark.asyncio
async def test_invalid_inline_output(storage, fetcher):
    writer = AssetWriter(storage, fetcher)
    with pytest.raises(InvalidOutput):
        await writer.resolve(NormalizedItem(OutputKind.DATA_URI, "data:image/png;base64"))


@pytest.mark.asyncio
async def test_missing_remote_output_is_a_download_error(storage, fetcher):
    writer = AssetWriter(storage, fetcher)
    with pytest.raises(DownloadError):
        await writer.resolve(NormalizedItem(OutputKind.URL, "https://cdn.test/missing.png"))
