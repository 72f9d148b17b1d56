"""
image_generation.py — Gemini image generation client.

One call to the ``generateContent`` endpoint, with an optional source
image and brand image sent inline as base64. Rate limiting (429) and
server errors (5xx) are retried up to ``max_attempts`` times, sleeping for
the ``Retry-After`` header when present, else exponential backoff with a
little jitter capped at 60 s. Any other failure raises immediately.
"""

import base64
import logging
import os
import random
import time
from email.utils import parsedate_to_datetime
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import requests

logger = logging.getLogger(__name__)

API_ROOT = "https://generativelanguage.googleapis.com/v1beta/models"
DEFAULT_MODEL = "gemini-2.5-flash-image"
MAX_BACKOFF_SECONDS = 60.0


class ImageGenerationError(RuntimeError):
    """The API answered but returned no usable image."""


def inline_image(path: Optional[str | Path]) -> Optional[dict]:
    """``{"mimeType", "data"}`` for an image file, or None if it does not exist.

    MIME type is image/png for .png files and image/jpeg otherwise.
    """
    if not path:
        return None
    p = Path(path).resolve()
    if not p.exists():
        logger.warning("Image %s not found, sending prompt without it", p)
        return None
    mime = "image/png" if p.suffix.lower() == ".png" else "image/jpeg"
    return {"mimeType": mime, "data": base64.b64encode(p.read_bytes()).decode("ascii")}


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """Seconds to wait from a Retry-After header (delta-seconds or HTTP date)."""
    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(value)
        if seconds >= 0:
            return seconds
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (when - now).total_seconds())


def backoff_seconds(attempt: int) -> float:
    return min(MAX_BACKOFF_SECONDS, 2 ** attempt + random.uniform(0, 0.5))


def build_request_body(
    prompt: str,
    source_image: Optional[str | Path] = None,
    brand_image: Optional[str | Path] = None,
    aspect_ratio: Optional[str] = None,
) -> dict:
    parts: list[dict] = [{"text": prompt}]
    for image in (source_image, brand_image):
        data = inline_image(image)
        if data:
            parts.append({"inlineData": data})
    body: dict = {"contents": [{"parts": parts}]}
    if aspect_ratio:
        body["generationConfig"] = {"imageConfig": {"aspectRatio": aspect_ratio}}
    return body


def extract_image(payload: dict) -> bytes:
    """First inline image in the response candidates, decoded."""
    for candidate in payload.get("candidates") or []:
        for part in ((candidate or {}).get("content") or {}).get("parts") or []:
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and inline.get("data"):
                return base64.b64decode(inline["data"])
    raise ImageGenerationError("No image data returned from Gemini")


def _is_retryable(status: int) -> bool:
    return status == 429 or 500 <= status <= 599


def generate_image(
    prompt: str,
    source_image: Optional[str | Path] = None,
    brand_image: Optional[str | Path] = None,
    aspect_ratio: Optional[str] = None,
    api_key: Optional[str] = None,
    model: str = DEFAULT_MODEL,
    max_attempts: int = 5,
    timeout: float = 120,
) -> bytes:
    """Generate one image and return its raw bytes.

    Args:
        prompt: Text prompt.
        source_image: Optional image to edit or reference.
        brand_image: Optional brand asset (logo, palette) to include.
        aspect_ratio: e.g. "1:1" or "16:9".
        api_key: Defaults to $GEMINI_API_KEY.

    Raises:
        RuntimeError: If no API key is available or every attempt was
            rate limited or failed server-side.
        requests.HTTPError: For non-retryable HTTP errors.
        ImageGenerationError: If the response holds no image.
    """
    key = api_key or os.environ.get("GEMINI_API_KEY")
    if not key:
        raise RuntimeError("Missing GEMINI_API_KEY")

    url = f"{API_ROOT}/{model}:generateContent"
    body = build_request_body(prompt, source_image, brand_image, aspect_ratio)
    headers = {"x-goog-api-key": key, "Content-Type": "application/json"}

    for attempt in range(max_attempts):
        resp = requests.post(url, json=body, headers=headers, timeout=timeout)
        if _is_retryable(resp.status_code):
            wait = parse_retry_after(resp.headers.get("Retry-After"))
            if wait is None:
                wait = backoff_seconds(attempt)
            logger.warning("Gemini returned %d (attempt %d/%d), retrying in %.1fs",
                           resp.status_code, attempt + 1, max_attempts, wait)
            time.sleep(wait)
            continue
        resp.raise_for_status()
        image = extract_image(resp.json())
        logger.info("Gemini image generated (%d bytes)", len(image))
        return image

    raise RuntimeError(f"Gemini generation failed after {max_attempts} attempts")
