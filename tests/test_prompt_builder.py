# tests/test_prompt_builder.py
"""Tests for the prompt builder: defaults, per-angle prompts and request bodies."""
from __future__ import annotations

from ai.prompt_builder import (
    MAX_IMAGE_INPUTS,
    body_view_prompt,
    build_provider_input,
    face_angle_prompt,
    photoshoot_shot_prompt,
    pick_prompt,
    view_prompt,
)
from ai.prompts.sheet import DEFAULT_BASE_PROMPT, FACE_ANGLE_TEXT


def test_pick_prompt_takes_first_non_blank():
    assert pick_prompt(None, "  ", " a woman ", "ignored") == "a woman"


def test_pick_prompt_falls_back_to_default():
    assert pick_prompt(None, "", 42) == DEFAULT_BASE_PROMPT
    assert pick_prompt(default="fallback") == "fallback"


def test_face_angle_prompt_describes_known_angles():
    prompt = face_angle_prompt("a man", "3q-left")
    assert prompt.startswith("a man")
    assert FACE_ANGLE_TEXT["3q-left"] in prompt


def test_face_angle_prompt_accepts_unknown_angles():
    assert "head pose: tilted-back" in face_angle_prompt("a man", "tilted-back")


def test_body_and_view_prompts_name_the_view():
    assert "Full body view: back" in body_view_prompt("a man", "back")
    assert "View: left" in view_prompt("a man", "left")


def test_single_shot_uses_base_prompt():
    assert photoshoot_shot_prompt("beach", 1, 1) == "beach"
    assert "Shot 2 of 3" in photoshoot_shot_prompt("beach", 2, 3)


def test_provider_input_passes_settings_through():
    body = build_provider_input("portrait", ["https://cdn.test/a.png"], {"aspect_ratio": "1:1", "seed": None})
    assert body == {
        "aspect_ratio": "1:1",
        "prompt": "portrait",
        "image_input": ["https://cdn.test/a.png"],
    }


def test_provider_input_settings_cannot_override_prompt_or_images():
    body = build_provider_input("portrait", None, {"prompt": "other", "image_input": ["https://x.test/b.png"]})
    assert body == {"prompt": "portrait"}


def test_provider_input_caps_reference_images():
    images = [f"https://cdn.test/{n}.png" for n in range(20)]
    body = build_provider_input("portrait", images + ["", None])
    assert body["image_input"] == images[:MAX_IMAGE_INPUTS]
