"""Custom exception hierarchy for patchloop.

All exceptions inherit from PatchLoopError so callers can catch broadly
or narrowly as needed.
"""

from __future__ import annotations

from typing import Any, Optional


class PatchLoopError(Exception):
    """Base exception for all patchloop errors."""


# ---------------------------------------------------------------------------
# LLM
# ---------------------------------------------------------------------------

class LLMError(PatchLoopError):
    """Failed LLM operation.

    ``rotation_state`` carries the provider rotation state as it stood when
    the call gave up, so callers can keep the rate-limit and failure records.
    """

    rotation_state: Optional[Any] = None


class HttpError(LLMError):
    """Provider answered with a non-2xx status."""

    BODY_LIMIT = 500

    def __init__(self, status_code: int, body: str = "", provider: Optional[str] = None):
        self.status_code = status_code
        self.body = (body or "")[: self.BODY_LIMIT]
        self.provider = provider
        prefix = f"[{provider}] " if provider else ""
        super().__init__(f"{prefix}HTTP {status_code}: {self.body}")


class RateLimitError(HttpError):
    """Hit API rate limit (429 or a quota message in the error body)."""


class RequestTimeoutError(LLMError):
    """Request was cancelled after exceeding its timeout."""


class ProviderConnectionError(LLMError):
    """Transport-level failure talking to a provider."""


class DecodeError(LLMError):
    """Model output could not be decoded into the required structure."""

    PREVIEW_LIMIT = 200

    def __init__(self, message: str, text: str = ""):
        self.preview = (text or "")[: self.PREVIEW_LIMIT]
        super().__init__(f"{message}\nPreview: {self.preview}" if text else message)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

class ToolError(PatchLoopError):
    """Tool execution failure."""


class ShellTimeoutError(ToolError):
    """Shell command exceeded timeout."""


class GitOperationError(ToolError):
    """Git operation failed."""


class PatchApplyError(ToolError):
    """A diff could not be turned into a file change."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class ConfigError(PatchLoopError):
    """Invalid or missing configuration."""
