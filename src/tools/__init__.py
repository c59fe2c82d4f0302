"""
External service clients for the editorial pipeline.

- ClaudeClient / ClaudeEditor: Anthropic Claude API for draft writing and revision
- FacebookPublisher: Facebook Graph API page publisher
- CoverImageClient: cover image generation
"""

from src.tools.claude_client import ClaudeClient, ClaudeEditor
from src.tools.facebook_client import FacebookPublisher
from src.tools.image_client import CoverImageClient

__all__ = [
    "ClaudeClient",
    "ClaudeEditor",
    "FacebookPublisher",
    "CoverImageClient",
]
