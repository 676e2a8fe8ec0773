# tests/test_thumbnails.py
from __future__ import annotations

import io

import pytest
from PIL import Image

from fakes import make_png
from services.thumbnails import make_thumbnail


def _open(data: bytes) -> Image.Image:
    return Image.open(io.BytesIO(data))


def test_thumbnail_is_square_png():
    thumb = _open(make_thumbnail(make_png(300, 120)))
    assert thumb.format == "PNG"
    assert thumb.size == (512, 512)


def test_thumbnail_custom_size():
    assert _open(make_thumbnail(make_png(64, 64), size=128)).size == (128, 128)


def test_thumbnail_converts_palette_images():
    out = io.BytesIO()
    Image.new("P", (40, 40)).save(out, format="GIF")
    assert _open(make_thumbnail(out.getvalue(), size=32)).mode == "RGB"


def test_thumbnail_is_deterministic():
    data = make_png(200, 100)
    assert make_thumbnail(data) == make_thumbnail(data)


def test_thumbnail_rejects_non_images():
    with pytest.raises(OSError):
        make_thumbnail(b"definitely not an image")
