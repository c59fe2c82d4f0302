"""
Facebook Page publisher via the Graph API.

Posts a link with a message to the page feed and resolves the post's
permalink.  Graph API error codes are mapped to ``SocialPublishError``
kinds so the social scheduler can tell a duplicate post (already on the
channel) apart from a failure worth retrying.

Transport errors are retried with exponential backoff; an error answer
from the API is not retried.
"""

import logging
import os
from typing import Any, Dict, Optional

import httpx

from src.exceptions import ConfigurationError, SocialPublishError
from src.utils import with_retry

logger = logging.getLogger(__name__)

GRAPH_URL = "https://graph.facebook.com"
DEFAULT_GRAPH_VERSION = "v23.0"

# Graph API error code -> SocialPublishError kind
ERROR_KINDS: Dict[int, str] = {
    506: SocialPublishError.ALREADY_PUBLISHED,
    4: SocialPublishError.RATE_LIMITED,
    17: SocialPublishError.RATE_LIMITED,
    32: SocialPublishError.RATE_LIMITED,
    613: SocialPublishError.RATE_LIMITED,
    190: SocialPublishError.INVALID_TOKEN,
    200: SocialPublishError.PERMISSIONS_ERROR,
    10: SocialPublishError.PERMISSIONS_ERROR,
    100: SocialPublishError.INVALID_PARAMS,
}


def classify_error(payload: Dict[str, Any]) -> SocialPublishError:
    """Build a ``SocialPublishError`` from a Graph API error body."""
    error = payload.get("error") or {}
    code = error.get("code")
    message = error.get("message") or "Unknown Graph API error"
    kind = ERROR_KINDS.get(code, SocialPublishError.UPSTREAM_ERROR)
    if "duplicate" in message.lower():
        kind = SocialPublishError.ALREADY_PUBLISHED
    return SocialPublishError(f"Graph API error {code}: {message}", kind=kind)


class FacebookPublisher:
    """Publishes article links to a Facebook Page.

    Args:
        page_id: Page id (``FACEBOOK_PAGE_ID``).
        page_token: Page access token (``FACEBOOK_PAGE_TOKEN``).
        graph_version: Graph API version (``FACEBOOK_GRAPH_VERSION``).
        timeout: HTTP timeout in seconds.

    Raises:
        ConfigurationError: If the page id or token is missing.
    """

    def __init__(
        self,
        page_id: Optional[str] = None,
        page_token: Optional[str] = None,
        graph_version: Optional[str] = None,
        timeout: float = 30.0,
    ) -> None:
        self.page_id = page_id or os.environ.get("FACEBOOK_PAGE_ID", "")
        self.page_token = page_token or os.environ.get("FACEBOOK_PAGE_TOKEN", "")
        self.graph_version = (
            graph_version
            or os.environ.get("FACEBOOK_GRAPH_VERSION")
            or DEFAULT_GRAPH_VERSION
        ).strip()
        self.timeout = timeout
        if not self.page_id or not self.page_token:
            raise ConfigurationError(
                "FACEBOOK_PAGE_ID and FACEBOOK_PAGE_TOKEN must be set"
            )

    @property
    def base_url(self) -> str:
        return f"{GRAPH_URL}/{self.graph_version}"

    @with_retry(
        max_attempts=3,
        retryable_exceptions=(httpx.ConnectError, httpx.ConnectTimeout),
        operation_name="facebook_post",
    )
    async def post(self, message: str, link: str) -> Dict[str, Any]:
        """Post *message* with *link* to the page feed.

        Returns:
            Dict with ``post_id`` and ``permalink``.

        Raises:
            SocialPublishError: When the Graph API rejects the post.
        """
        if not message.strip():
            raise SocialPublishError(
                "message must not be empty", kind=SocialPublishError.INVALID_PARAMS
            )

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                f"{self.base_url}/{self.page_id}/feed",
                data={
                    "message": message,
                    "link": link,
                    "access_token": self.page_token,
                },
            )
            payload = response.json()
            if response.status_code != 200 or "error" in payload:
                raise classify_error(payload)

            post_id = payload.get("id")
            if not post_id:
                raise SocialPublishError("Graph API returned no post id")

            permalink = await self._get_permalink(client, post_id)

        logger.info("[SOCIAL] Facebook post created: %s", post_id)
        return {"post_id": post_id, "permalink": permalink}

    async def _get_permalink(self, client: httpx.AsyncClient, post_id: str) -> str:
        fallback = f"https://www.facebook.com/{post_id}"
        try:
            response = await client.get(
                f"{self.base_url}/{post_id}",
                params={"fields": "permalink_url", "access_token": self.page_token},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("[SOCIAL] Could not fetch permalink for %s: %s", post_id, e)
            return fallback
        return response.json().get("permalink_url") or fallback


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "ERROR_KINDS",
    "FacebookPublisher",
    "classify_error",
]
