# ai/prompts/sheet.py
DEFAULT_BASE_PROMPT = (
    "Photorealistic photograph of the same person, keep identity consistent."
)
DEFAULT_FACE_PROMPT = (
    "Photorealistic close-up portrait, neutral expression, studio lighting."
)
DEFAULT_PHOTOSHOOT_PROMPT = (
    "Professional editorial photoshoot of the same person, natural light, high detail."
)

FACE_ANGLES = [
    "center",
    "up-left",
    "up",
    "up-right",
    "left",
    "3q-left",
    "3q-right",
    "right",
    "down",
]

BODY_ANGLES = ["front", "3q-left", "3q-right", "back"]

DEFAULT_VIEWS = ["front", "left", "right"]

FACE_ANGLE_TEXT = {
    "center": "head facing the camera directly (0°)",
    "up-left": "head tilted up and left (15° up, 20° left)",
    "up": "head tilted up slightly (15° up)",
    "up-right": "head tilted up and right (15° up, 20° right)",
    "left": "head turned left (45°)",
    "3q-left": "3/4 left portrait (30° left)",
    "3q-right": "3/4 right portrait (30° right)",
    "right": "head turned right (45°)",
    "down": "head tilted down slightly (15° down)",
}

FACE_SHEET = (
    "{base} Close-up portrait, {angle}. Photorealistic, high detail, "
    "preserve identity and facial features. Neutral expression."
)
BODY_SHEET = (
    "{base} Full body view: {view}. Photorealistic, consistent identity, "
    "neutral studio lighting. Camera framing: full body."
)
VIEW = (
    "{base} View: {view}. Photorealistic, studio lighting, high detail. "
    "Keep facial identity and clothing details consistent with the reference."
)
PHOTOSHOOT_SHOT = "{base} Shot {number} of {total}, varied pose and framing."
