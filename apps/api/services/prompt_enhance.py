"""Prompt enhancement through the automation workflow."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from config import settings

logger = logging.getLogger(__name__)

_PROMPT_KEYS = ("enhanced_prompt", "enhancedPrompt", "result", "prompt")


class PromptEnhanceError(Exception):
    pass


def _http_client(timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout)


def _first_prompt(item: Any) -> Optional[str]:
    if isinstance(item, str):
        return item
    if not isinstance(item, dict):
        return None
    for key in _PROMPT_KEYS:
        value = item.get(key)
        if isinstance(value, (str, int, float)) and str(value).strip():
            return str(value)
    return None


def extract_enhanced_prompt(body: Any) -> Optional[str]:
    """Workflows answer as ``{...}``, ``[{"json": {...}}]`` or ``{"data": {...}}``."""
    if isinstance(body, list):
        if not body:
            return None
        first = body[0]
        if isinstance(first, dict) and isinstance(first.get("json"), dict):
            return _first_prompt(first["json"]) or _first_prompt(first)
        return _first_prompt(first)
    if isinstance(body, dict):
        return _first_prompt(body) or _first_prompt(body.get("data"))
    return _first_prompt(body)


async def enhance_prompt(prompt: str, video_type: str = "text-to-video") -> str:
    endpoint = settings.PROMPT_ENHANCE_WEBHOOK_URL.strip()
    if not endpoint:
        raise PromptEnhanceError("Prompt enhancement is not configured.")

    try:
        async with _http_client(settings.DISPATCH_TIMEOUT_SECONDS) as client:
            response = await client.post(endpoint, json={"prompt": prompt, "video_type": video_type})
            response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning("Prompt enhancement request failed: %s", exc)
        raise PromptEnhanceError("Failed to enhance prompt. Please try again.") from exc

    try:
        body: Any = response.json()
    except ValueError:
        body = response.text
    enhanced = extract_enhanced_prompt(body)
    if not enhanced or not enhanced.strip():
        logger.warning("Prompt enhancement returned an unrecognised body: %.200s", response.text)
        raise PromptEnhanceError("Failed to get an enhanced prompt from the workflow.")
    return enhanced.strip()
