# ai/prompts/__init__.py
from ai.prompts.sheet import (
    BODY_ANGLES,
    DEFAULT_BASE_PROMPT,
    DEFAULT_FACE_PROMPT,
    DEFAULT_PHOTOSHOOT_PROMPT,
    DEFAULT_VIEWS,
    FACE_ANGLES,
)

__all__ = [
    "BODY_ANGLES",
    "DEFAULT_BASE_PROMPT",
    "DEFAULT_FACE_PROMPT",
    "DEFAULT_PHOTOSHOOT_PROMPT",
    "DEFAULT_VIEWS",
    "FACE_ANGLES",
]
