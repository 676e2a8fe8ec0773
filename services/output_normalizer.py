# services/output_normalizer.py
"""
Flattens an image provider response into typed image payloads.

The provider's response shape is not stable across models and client
versions. Recognized shapes, checked in this order:

- ``str``: an http(s) URL, or a ``data:`` URI
- ``list`` / ``tuple`` / iterator: each element, recursively
- mapping: the ``url``, ``image``, ``output``, ``result`` and ``data``
  fields recursively, plus ``base64`` / ``b64`` / ``b64_json`` as raw
  base64 strings
- any other object, through the same fields as attributes; ``url`` may
  also be a zero-argument accessor (Replicate ``FileOutput``), called once

Only when none of those yield anything is the JSON serialization of a
mapping or object scanned for embedded URLs, with a warning.
"""
from __future__ import annotations

import base64
import binascii
import enum
import json
import logging
import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import unquote_to_bytes

logger = logging.getLogger(__name__)

MAX_DEPTH = 8

URL_FIELDS = ("url", "image", "output", "result", "data")
BASE64_FIELDS = ("base64", "b64", "b64_json")

_URL_RE = re.compile(r"https?://[^\s\"'\\]+")


class OutputKind(str, enum.Enum):
    URL = "url"
    DATA_URI = "data_uri"
    BASE64 = "base64"


@dataclass(frozen=True)
class NormalizedItem:
    kind: OutputKind
    value: str


def _is_url(value: str) -> bool:
    lowered = value[:8].lower()
    return lowered.startswith("http://") or lowered.startswith("https://")


def _from_string(value: str) -> list[NormalizedItem]:
    value = value.strip()
    if value.startswith("data:"):
        return [NormalizedItem(OutputKind.DATA_URI, value)]
    if _is_url(value):
        return [NormalizedItem(OutputKind.URL, value)]
    return []


def _from_mapping(raw: Mapping, depth: int) -> list[NormalizedItem]:
    items: list[NormalizedItem] = []
    for key in URL_FIELDS:
        if key in raw and raw[key] is not None:
            items.extend(_walk(raw[key], depth + 1))
    for key in BASE64_FIELDS:
        value = raw.get(key)
        if isinstance(value, str) and value.strip():
            items.append(NormalizedItem(OutputKind.BASE64, value.strip()))
    return items


def _from_object(raw: Any, depth: int) -> list[NormalizedItem]:
    items: list[NormalizedItem] = []
    for key in URL_FIELDS:
        value = getattr(raw, key, None)
        if value is None:
            continue
        if callable(value):
            # only `url` is a known accessor (FileOutput.url())
            if key != "url":
                continue
            try:
                value = value()
            except Exception as exc:
                logger.warning("url accessor on %s failed: %s", type(raw).__name__, exc)
                continue
        items.extend(_walk(value, depth + 1))
    for key in BASE64_FIELDS:
        value = getattr(raw, key, None)
        if isinstance(value, str) and value.strip():
            items.append(NormalizedItem(OutputKind.BASE64, value.strip()))
    return items


def _walk(raw: Any, depth: int) -> list[NormalizedItem]:
    if raw is None or depth > MAX_DEPTH:
        return []

    if isinstance(raw, str):
        return _from_string(raw)

    if isinstance(raw, (bytes, bytearray, bool, int, float)):
        return []

    if isinstance(raw, (list, tuple)):
        items: list[NormalizedItem] = []
        for element in raw:
            items.extend(_walk(element, depth + 1))
        return items

    if isinstance(raw, Mapping):
        return _from_mapping(raw, depth)

    items = _from_object(raw, depth)
    if items:
        return items

    # generators of outputs (streaming predictions); FileOutput is
    # iterable too but was handled above through its url
    if isinstance(raw, Iterator):
        return _walk(list(raw), depth)

    return []


def _scan_serialized(raw: Any) -> list[NormalizedItem]:
    try:
        text = json.dumps(raw, default=str)
    except (TypeError, ValueError):
        text = str(raw)

    seen: dict[str, None] = {}
    for match in _URL_RE.findall(text):
        seen.setdefault(match, None)

    if seen:
        logger.warning(
            "Recovered %d URL(s) by scanning an unrecognized %s output",
            len(seen),
            type(raw).__name__,
        )
    return [NormalizedItem(OutputKind.URL, url) for url in seen]


def normalize_output(raw: Any) -> list[NormalizedItem]:
    """Return every image payload found in `raw`; never raises."""
    try:
        items = _walk(raw, 0)
    except Exception as exc:
        logger.warning("Output normalization aborted on %s: %s", type(raw).__name__, exc)
        items = []

    if items:
        return items

    if raw is None or isinstance(raw, (str, bytes, bytearray, bool, int, float)):
        return []

    return _scan_serialized(raw)


def decode_inline(item: NormalizedItem) -> tuple[bytes, str | None]:
    """
    Decode a data URI or raw base64 item to bytes.

    Returns the declared content type for data URIs. Raises ValueError
    for malformed payloads and for URL items, which need a download.
    """
    if item.kind is OutputKind.BASE64:
        payload = item.value
        if payload.startswith("data:"):
            return decode_inline(NormalizedItem(OutputKind.DATA_URI, payload))
        try:
            return base64.b64decode(payload, validate=False), None
        except (binascii.Error, ValueError) as exc:
            raise ValueError(f"Invalid base64 payload: {exc}") from exc

    if item.kind is OutputKind.DATA_URI:
        header, sep, payload = item.value.partition(",")
        if not sep:
            raise ValueError("Invalid data URI")
        meta = header[len("data:"):]
        content_type = meta.split(";", 1)[0] or None
        if ";base64" in meta:
            try:
                return base64.b64decode(payload, validate=False), content_type
            except (binascii.Error, ValueError) as exc:
                raise ValueError(f"Invalid base64 in data URI: {exc}") from exc
        return unquote_to_bytes(payload), content_type

    raise ValueError(f"{item.kind.value} items must be downloaded, not decoded")
