"""
Async Claude API client and the editorial writer/reviser built on it.

Uses the ``anthropic`` Python SDK (``AsyncAnthropic``) to call the
Messages API.

Key features:
    - Automatic retry with exponential backoff via ``@with_retry``
    - Token usage tracking (input + output)
    - Structured JSON generation with markdown-fence stripping

``ClaudeEditor`` implements the two AI collaborators the pipeline needs:
``generate_draft(topic, mode)`` for intake and
``revise_draft(content, notes)`` for revision jobs.
"""

import json
import logging
import os
from typing import Any, Dict, List, Optional, Tuple

from anthropic import AsyncAnthropic

from src.exceptions import RevisionGenerationError
from src.models import ContentSnapshot, Mode, Topic
from src.utils import with_retry

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-5"


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence (```json ... ```)."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        first_newline = cleaned.find("\n")
        if first_newline != -1:
            cleaned = cleaned[first_newline + 1 :]
        else:
            cleaned = cleaned[3:]
        if cleaned.rstrip().endswith("```"):
            cleaned = cleaned.rstrip()[:-3]
    return cleaned.strip()


class ClaudeClient:
    """Async Claude API client.

    Args:
        api_key: Anthropic API key.  Falls back to the
            ``ANTHROPIC_API_KEY`` environment variable.
        model: Model identifier.

    Raises:
        KeyError: If no API key is provided and the environment variable
            is missing.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
    ) -> None:
        self.client = AsyncAnthropic(
            api_key=api_key or os.environ["ANTHROPIC_API_KEY"],
        )
        self.model = model
        self._total_input_tokens: int = 0
        self._total_output_tokens: int = 0

    async def _create(self, **kwargs: Any) -> str:
        response = await self.client.messages.create(model=self.model, **kwargs)

        self._total_input_tokens += response.usage.input_tokens
        self._total_output_tokens += response.usage.output_tokens
        logger.debug(
            "Claude call: in=%d out=%d tokens",
            response.usage.input_tokens,
            response.usage.output_tokens,
        )
        return response.content[0].text

    @with_retry(max_attempts=3, retryable_exceptions=(Exception,))
    async def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> str:
        """Generate a plain-text response from the model."""
        messages: List[Dict[str, str]] = [{"role": "user", "content": prompt}]
        kwargs: Dict[str, Any] = {
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if system:
            kwargs["system"] = system
        return await self._create(**kwargs)

    @with_retry(max_attempts=3, retryable_exceptions=(Exception,))
    async def generate_structured(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 4096,
        temperature: float = 0.3,
    ) -> Dict[str, Any]:
        """Generate a JSON object response.

        Markdown code fences are stripped before parsing.

        Raises:
            json.JSONDecodeError: If the model returns invalid JSON.
        """
        json_prompt = (
            f"{prompt}\n\n"
            "IMPORTANT: Return ONLY valid JSON, no markdown, no explanation."
        )
        kwargs: Dict[str, Any] = {
            "messages": [{"role": "user", "content": json_prompt}],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if system:
            kwargs["system"] = system
        text = await self._create(**kwargs)
        return json.loads(strip_code_fences(text))

    @property
    def usage_stats(self) -> Dict[str, int]:
        """Cumulative token usage since this client was instantiated."""
        return {
            "input_tokens": self._total_input_tokens,
            "output_tokens": self._total_output_tokens,
        }


# =============================================================================
# EDITORIAL WRITER / REVISER
# =============================================================================

WRITER_SYSTEM = (
    "You are a newsroom writer. Write a complete article in HTML paragraphs "
    "(<p>, <h2>, <ul>) from the topic you are given. Never invent quotes or "
    "figures that are not in the sources."
)

MODE_GUIDANCE = {
    Mode.FACTUAL: "Register: factual news report, neutral tone, attribute every claim.",
    Mode.OPINION: "Register: signed opinion column, clear thesis, argued point of view.",
}

REVISER_SYSTEM = (
    "You are the chief editor. Apply the editor's instructions to the draft and "
    "also fix spelling, grammar and style. Keep the HTML structure. Return the "
    "whole revised article as JSON with the keys title, summary and body_html."
)


class ClaudeEditor:
    """Draft writer and reviser backed by :class:`ClaudeClient`.

    Args:
        client: Claude client.  Created from the environment when omitted.
        temperature: Sampling temperature for revisions.
    """

    def __init__(
        self, client: Optional[ClaudeClient] = None, temperature: float = 0.3
    ) -> None:
        self.client = client or ClaudeClient()
        self.temperature = temperature

    @property
    def model(self) -> str:
        return self.client.model

    async def generate_draft(self, topic: Topic, mode: Mode) -> Dict[str, Any]:
        """Write a first draft for *topic*.

        Returns:
            Dict with ``title``, ``summary``, ``body_html``, ``category`` and
            ``tags``.
        """
        sources = "\n".join(f"- {s}" for s in topic.sources) or "- (none)"
        prompt = (
            f"{MODE_GUIDANCE[mode]}\n\n"
            f"TOPIC: {topic.title}\n"
            f"CATEGORY: {topic.category}\n"
            f"CONTEXT: {topic.summary}\n"
            f"SOURCES:\n{sources}\n\n"
            "Return JSON with keys: title, summary, body_html, tags (list of strings)."
        )
        data = await self.client.generate_structured(
            prompt, system=WRITER_SYSTEM, max_tokens=6000, temperature=0.7
        )
        if not data.get("title") or not data.get("body_html"):
            raise RevisionGenerationError("writer returned no title or body")
        return {
            "title": str(data["title"]).strip(),
            "summary": str(data.get("summary") or "").strip(),
            "body_html": str(data["body_html"]),
            "category": topic.category,
            "tags": [str(t) for t in data.get("tags") or []],
        }

    async def revise_draft(
        self, content: ContentSnapshot, notes: str
    ) -> Tuple[ContentSnapshot, str]:
        """Revise *content* following the editor's *notes*.

        Missing title or summary in the answer keep the current values.

        Returns:
            ``(proposed_content, model)``.

        Raises:
            RevisionGenerationError: If the answer has no body.
        """
        prompt = (
            f"EDITOR INSTRUCTIONS:\n{notes}\n\n"
            f"TITLE:\n{content.title}\n\n"
            f"SUMMARY:\n{content.summary}\n\n"
            f"BODY (HTML):\n{content.body_html}"
        )
        data = await self.client.generate_structured(
            prompt, system=REVISER_SYSTEM, max_tokens=8000, temperature=self.temperature
        )
        body = data.get("body_html")
        if not body:
            raise RevisionGenerationError("reviser returned no body_html")
        proposed = ContentSnapshot(
            title=str(data.get("title") or content.title).strip(),
            summary=str(data.get("summary") or content.summary).strip(),
            body_html=str(body),
        )
        return proposed, self.model


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "ClaudeClient",
    "ClaudeEditor",
    "strip_code_fences",
]
