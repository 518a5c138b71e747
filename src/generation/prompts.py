"""Prompt building and fixed sampling defaults for image generation."""

import logging
from dataclasses import dataclass
from enum import Enum

from ..engine.errors import ClientInputError

logger = logging.getLogger(__name__)

MAX_PROMPT_LENGTH = 500


class ImageStyle(str, Enum):
    """Art style variants for image generation."""

    CLASSIC = "CLASSIC"
    HAPPY = "HAPPY"
    CONFUSED = "CONFUSED"
    EXCITED = "EXCITED"

    @classmethod
    def parse(cls, value: str) -> "ImageStyle":
        """Parse a style tag case-insensitively.

        Raises:
            ClientInputError: for anything outside the closed set
        """
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            allowed = ", ".join(s.value for s in cls)
            raise ClientInputError(f"Invalid image style {value!r}; expected one of: {allowed}")


STYLE_PREFIXES = {
    ImageStyle.CLASSIC: "professional, classic cartoon style, ",
    ImageStyle.HAPPY: "cheerful, smiling, joyful character, ",
    ImageStyle.CONFUSED: "puzzled, questioning, confused character, ",
    ImageStyle.EXCITED: "enthusiastic, energetic, excited character, ",
}

QUALITY_SUFFIX = ", cartoon style illustration, digital art, clean background, high quality, detailed, friendly"

NEGATIVE_PROMPT = "blurry, low quality, distorted, ugly, bad anatomy, low resolution"


@dataclass(frozen=True)
class GenerationParameters:
    """Sampling settings. Not user-supplied; the fixed seed keeps output deterministic."""

    num_inference_steps: int = 40
    guidance_scale: float = 7.5
    seed: int = 42
    width: int = 512
    height: int = 512


@dataclass(frozen=True)
class GenerationPlan:
    """Everything the engine needs for one generation call."""

    prompt: str
    style: ImageStyle
    enhanced_prompt: str
    negative_prompt: str
    parameters: GenerationParameters


def validate_prompt(prompt: str) -> str:
    if prompt is None or not str(prompt).strip():
        raise ClientInputError("Prompt must not be empty")
    prompt = str(prompt).strip()
    if len(prompt) > MAX_PROMPT_LENGTH:
        raise ClientInputError(f"Prompt must be at most {MAX_PROMPT_LENGTH} characters")
    return prompt


def build_image_prompt(user_prompt: str, style: ImageStyle) -> str:
    """
    Build an enhanced prompt for image generation.

    Adds the style-specific prefix and the quality suffix around the user's
    description.
    """
    enhanced = f"{STYLE_PREFIXES[style]}{user_prompt}{QUALITY_SUFFIX}"
    logger.info(f"Enhanced prompt: {enhanced}")
    return enhanced


def plan_generation(prompt: str, style: str, resolution: int = 512) -> GenerationPlan:
    """
    Validate a request and derive the full generation plan.

    Args:
        prompt: User description of the image
        style: Style tag, one of ImageStyle (case-insensitive)
        resolution: Native resolution of the loaded model variant

    Returns:
        GenerationPlan ready to hand to the engine

    Raises:
        ClientInputError: on an empty/oversized prompt or unknown style
    """
    parsed_style = ImageStyle.parse(style)
    prompt = validate_prompt(prompt)
    return GenerationPlan(
        prompt=prompt,
        style=parsed_style,
        enhanced_prompt=build_image_prompt(prompt, parsed_style),
        negative_prompt=NEGATIVE_PROMPT,
        parameters=GenerationParameters(width=resolution, height=resolution),
    )
