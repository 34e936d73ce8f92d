"""
SongCard - Error taxonomy

Every failure the service reports to a caller is a :class:`CardError`.
Each subclass carries the HTTP status the API answers with, so the
FastAPI exception handler in :mod:`songcard.main` stays a one-liner.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class CardError(Exception):
    """Base class for all service errors."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code}


class MissingParameter(CardError):
    status_code = 400
    code = "missing_parameter"


class InvalidRequest(CardError):
    """A parameter was present but out of range or malformed."""

    status_code = 400
    code = "invalid_request"


class UnsupportedPlatform(CardError):
    status_code = 400
    code = "unsupported_platform"

    def __init__(self, platform: str) -> None:
        super().__init__(f"Unsupported music platform: {platform}")
        self.platform = platform


class UnsupportedVariant(CardError):
    status_code = 400
    code = "unsupported_variant"

    def __init__(self, variant: str) -> None:
        super().__init__(f"Unknown card variant: {variant}")
        self.variant = variant


class UpstreamTimeout(CardError):
    status_code = 504
    code = "upstream_timeout"


class UpstreamError(CardError):
    """Upstream answered with a non-2xx status or a malformed body."""

    status_code = 502
    code = "upstream_error"

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class RetryExhausted(CardError):
    """All retry attempts failed; wraps the last underlying error."""

    status_code = 502
    code = "retry_exhausted"

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"Failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error
        # A run of timeouts is still a timeout to the caller
        if isinstance(last_error, UpstreamTimeout):
            self.status_code = UpstreamTimeout.status_code

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["attempts"] = self.attempts
        return data


class ImageLoadError(CardError):
    """An image could not be fetched or decoded."""

    status_code = 502
    code = "image_load_error"

    TIMEOUT = "timeout"
    NETWORK = "network"
    DECODE = "decode"

    def __init__(self, url: str, kind: str, detail: str = "") -> None:
        message = f"Failed to load image ({kind}): {_short(url)}"
        if detail:
            message += f": {detail}"
        super().__init__(message)
        self.url = url
        self.kind = kind


class RenderError(CardError):
    """A compositing stage failed; the partially drawn canvas is invalid."""

    status_code = 500
    code = "render_error"

    def __init__(self, stage: str, cause: BaseException) -> None:
        super().__init__(f"Rendering failed during {stage}: {cause}")
        self.stage = stage
        self.cause = cause


def _short(url: str, limit: int = 120) -> str:
    """Keep data URIs and long query strings out of log lines."""
    if url.startswith("data:"):
        return url[: url.find(",") + 1] + "…" if "," in url else "data:…"
    return url if len(url) <= limit else url[:limit] + "…"
