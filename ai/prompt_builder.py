# ai/prompt_builder.py
"""
Builds provider prompts and request inputs from job payloads and
the owning entity, filling defaults where the payload is silent.
"""
from __future__ import annotations

from typing import Any

from ai.prompts.sheet import (
    BODY_SHEET,
    DEFAULT_BASE_PROMPT,
    FACE_ANGLE_TEXT,
    FACE_SHEET,
    PHOTOSHOOT_SHOT,
    VIEW,
)

MAX_IMAGE_INPUTS = 8
MAX_PROMPT_CHARS = 8000


def pick_prompt(*candidates: Any, default: str = DEFAULT_BASE_PROMPT) -> str:
    """First non-blank string among candidates, else `default`."""
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()[:MAX_PROMPT_CHARS]
    return default


def face_angle_prompt(base: str, angle: str) -> str:
    angle_text = FACE_ANGLE_TEXT.get(angle, f"head pose: {angle}")
    return FACE_SHEET.format(base=base, angle=angle_text)


def body_view_prompt(base: str, view: str) -> str:
    return BODY_SHEET.format(base=base, view=view)


def view_prompt(base: str, view: str) -> str:
    return VIEW.format(base=base, view=view)


def photoshoot_shot_prompt(base: str, number: int, total: int) -> str:
    if total <= 1:
        return base
    return PHOTOSHOOT_SHOT.format(base=base, number=number, total=total)


def build_provider_input(
    prompt: str,
    image_input: list[str] | None = None,
    settings: dict | None = None,
) -> dict:
    """
    Provider request body. Payload settings are passed through, but
    never override the prompt or reference images chosen here; None
    values are dropped since the provider rejects nulls.
    """
    body: dict[str, Any] = {}
    if isinstance(settings, dict):
        body.update({k: v for k, v in settings.items() if v is not None})

    body["prompt"] = prompt
    images = [img for img in (image_input or []) if isinstance(img, str) and img]
    if images:
        body["image_input"] = images[:MAX_IMAGE_INPUTS]
    else:
        body.pop("image_input", None)
    return body
