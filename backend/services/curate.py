"""
Outfit curation flow.

Takes wardrobe images (data URIs), an occasion and an optional person image,
asks Gemini for a textual outfit suggestion, then asks the image model to
render that outfit on a mannequin.
"""

import os
import re
import json
import logging
from typing import Optional

import httpx

from . import gemini
from .prompts import build_outfit_image_prompt, build_outfit_suggestion_parts
from .schemas import CurationRequest, CurationResult

logger = logging.getLogger(__name__)

SUGGESTION_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "outfitSuggestion": {"type": "STRING", "description": "A description of the suggested outfit."},
    },
    "required": ["outfitSuggestion"],
}


IMAGE_STEP_OFF_VALUES = {"0", "false", "no", "off"}


def image_generation_enabled() -> bool:
    """CURATE_GENERATE_IMAGE turns the mannequin image step off only when set to a false-ish value."""
    return os.getenv("CURATE_GENERATE_IMAGE", "1").strip().lower() not in IMAGE_STEP_OFF_VALUES


def parse_outfit_suggestion(text: str) -> str:
    """
    Pulls outfitSuggestion out of the model's JSON answer. Models sometimes
    wrap the JSON in code fences or ignore the schema; plain text is then
    used as the suggestion itself.
    """
    cleaned = re.sub(r"```(?:json)?\s*|\s*```", "", text or "").strip()
    match = re.search(r"\{.*\}", cleaned, re.DOTALL)
    if match:
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError:
            logger.warning(f"Could not parse outfit suggestion as JSON. Raw: {cleaned[:200]}")
        else:
            if isinstance(parsed, dict):
                return str(parsed.get("outfitSuggestion") or "").strip()
    return cleaned


async def suggest_outfit(client: httpx.AsyncClient, request: CurationRequest, *, api_key: Optional[str] = None) -> str:
    parts = build_outfit_suggestion_parts(
        request.occasion,
        request.clothing_items,
        request.person_image_data_uri,
    )
    data = await gemini.generate_content(
        [{"role": "user", "parts": parts}],
        model=os.getenv("GEMINI_SUGGESTION_MODEL", "gemini-2.0-flash"),
        generation_config={
            "responseMimeType": "application/json",
            "responseSchema": SUGGESTION_SCHEMA,
        },
        api_key=api_key,
        client=client,
    )
    suggestion = parse_outfit_suggestion(gemini.extract_text(data))
    if not suggestion:
        raise gemini.EmptyResponseError("Failed to generate outfit suggestion text.")
    return suggestion


async def render_outfit(client: httpx.AsyncClient, suggestion: str, *, api_key: Optional[str] = None) -> str:
    model = os.getenv("GEMINI_IMAGE_MODEL", "gemini-2.0-flash-exp")
    data = await gemini.generate_content(
        [{"role": "user", "parts": build_outfit_image_prompt(suggestion)}],
        model=model,
        generation_config={"responseModalities": ["TEXT", "IMAGE"]},
        api_key=api_key,
        client=client,
    )
    return gemini.extract_image(data)


async def curate_outfit(request: CurationRequest, *, api_key: Optional[str] = None) -> CurationResult:
    """
    Runs the two-step curation: suggestion text, then the outfit image.

    Returns:
        CurationResult; generated_outfit_image_uri is None when CURATE_GENERATE_IMAGE=0.

    Raises:
        ValueError: no API key configured or a malformed image data URI.
        gemini.ContentBlockedError / gemini.EmptyResponseError: either step was declined or empty.
    """
    api_key = api_key or gemini.get_api_key()
    if not api_key:
        raise ValueError("GEMINI_API_KEY or GOOGLE_API_KEY environment variable is required")

    logger.info(
        f"Curating outfit for occasion '{request.occasion}' from {len(request.clothing_items)} item(s)"
        f"{' with person image' if request.person_image_data_uri else ''}"
    )

    timeout = float(os.getenv("GEMINI_IMAGE_TIMEOUT_S", "300"))
    async with httpx.AsyncClient(timeout=timeout) as client:
        suggestion = await suggest_outfit(client, request, api_key=api_key)
        logger.info(f"Outfit suggestion received ({len(suggestion)} chars)")

        if not image_generation_enabled():
            return CurationResult(outfit_suggestion=suggestion)

        image_uri = await render_outfit(client, suggestion, api_key=api_key)
        logger.info("Outfit image generated")

    return CurationResult(outfit_suggestion=suggestion, generated_outfit_image_uri=image_uri)
