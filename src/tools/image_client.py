"""
Cover image generation client.

Calls an OpenAI-compatible ``/images/generations`` endpoint to produce a
cover for a draft.  Transient HTTP errors are retried with exponential
backoff; a non-200 answer raises ``ImageGenerationError``.
"""

import base64
import logging
import os
import re
import uuid
from pathlib import Path
from typing import Any, Dict, Optional

import httpx

from src.exceptions import ImageGenerationError
from src.utils import with_retry

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "dall-e-3"
DEFAULT_STYLE = "news_photojournalism"
NEGATIVE_PROMPT = "no text, no logos, no watermarks"

_TAG_RE = re.compile(r"<[^>]+>")


def build_cover_prompt(title: str, content: str, style: str = DEFAULT_STYLE) -> str:
    """Compose an image prompt from the headline and the start of the body."""
    excerpt = " ".join(_TAG_RE.sub(" ", content).split())[:400]
    parts = [f"Editorial cover photo for the news story: {title.strip()}"]
    if excerpt:
        parts.append(f"Context: {excerpt}")
    parts.append(f"Style: {style.replace('_', ' ')}")
    parts.append(NEGATIVE_PROMPT)
    return ". ".join(parts)


class CoverImageClient:
    """Generates draft cover images.

    Args:
        api_key: API key.  Falls back to ``COVER_IMAGE_API_KEY``.
        base_url: API base URL.  Falls back to ``COVER_IMAGE_API_URL``.
        model: Image model.  Falls back to ``COVER_IMAGE_MODEL``.
        images_dir: Where base64 answers are written.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        images_dir: str = "data/images",
    ) -> None:
        self.api_key: str = api_key or os.environ.get("COVER_IMAGE_API_KEY", "")
        self.base_url = (
            base_url or os.environ.get("COVER_IMAGE_API_URL") or DEFAULT_API_URL
        ).rstrip("/")
        self.model = model or os.environ.get("COVER_IMAGE_MODEL") or DEFAULT_MODEL
        self.images_dir = Path(images_dir)

    @with_retry(
        max_attempts=3,
        retryable_exceptions=(httpx.TransportError,),
        operation_name="cover_image",
    )
    async def generate_cover(
        self,
        title: str,
        content: str = "",
        style: str = DEFAULT_STYLE,
        size: str = "1024x1024",
    ) -> Dict[str, Any]:
        """Generate a cover image for a draft.

        Returns:
            Dict with ``url`` (remote URL or local path), ``prompt_used``,
            ``model`` and ``size``.

        Raises:
            ImageGenerationError: On a non-200 answer or an unknown format.
        """
        prompt = build_cover_prompt(title, content, style)

        async with httpx.AsyncClient(timeout=60.0) as client:
            response = await client.post(
                f"{self.base_url}/images/generations",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json={"model": self.model, "prompt": prompt, "size": size, "n": 1},
            )

        if response.status_code != 200:
            raise ImageGenerationError(
                f"Image API error {response.status_code}: {response.text[:300]}"
            )

        item = response.json()["data"][0]
        if "url" in item:
            image_url = item["url"]
        elif "b64_json" in item:
            self.images_dir.mkdir(parents=True, exist_ok=True)
            image_path = self.images_dir / f"{uuid.uuid4().hex}.png"
            image_path.write_bytes(base64.b64decode(item["b64_json"]))
            image_url = str(image_path)
        else:
            raise ImageGenerationError(
                f"Unexpected API response format: {list(item.keys())}"
            )

        logger.info("Cover image generated: model=%s size=%s", self.model, size)
        return {"url": image_url, "prompt_used": prompt, "model": self.model, "size": size}


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "CoverImageClient",
    "build_cover_prompt",
]
