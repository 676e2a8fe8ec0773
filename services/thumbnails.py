# services/thumbnails.py
from __future__ import annotations

import io

from PIL import Image, ImageOps

THUMBNAIL_CONTENT_TYPE = "image/png"


def make_thumbnail(data: bytes, size: int = 512) -> bytes:
    """Square cover-fit PNG thumbnail; the only image transform the pipeline does."""
    with Image.open(io.BytesIO(data)) as img:
        img = ImageOps.exif_transpose(img)
        if img.mode not in ("RGB", "RGBA"):
            img = img.convert("RGBA" if "A" in img.getbands() else "RGB")
        thumb = ImageOps.fit(img, (size, size), method=Image.Resampling.LANCZOS)

        out = io.BytesIO()
        thumb.save(out, format="PNG")
        return out.getvalue()
