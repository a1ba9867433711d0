"""Error taxonomy shared by every tool, plus the transient-error classifier."""

from __future__ import annotations

import re

import anthropic
import openai
import requests

TRANSIENT_HTTP_STATUSES: frozenset[int] = frozenset({429, 502, 503, 504})
# 529 is Anthropic's "overloaded" status.
TRANSIENT_SDK_STATUSES: frozenset[int] = frozenset({429, 503, 529})

_RATE_LIMIT_PATTERN = re.compile(
    r"rate_limit_error|rate[ -]?limit|ratelimited|too many requests",
    re.IGNORECASE,
)


# Failures raised by the HTTP and LLM client libraries themselves.
REMOTE_FAILURES: tuple[type[Exception], ...] = (
    requests.RequestException,
    anthropic.APIError,
    openai.APIError,
)


class ToolError(RuntimeError):
    """Base class for errors reported to the user with a short message."""


class ConfigError(ToolError):
    """Missing credential, bad argument or invalid date range."""


class RemoteError(ToolError):
    """A remote API failed permanently or returned an unexpected payload."""


class GraphQLError(RemoteError):
    """A GraphQL response carried an ``errors`` array."""

    def __init__(self, messages: list[str]) -> None:
        self.messages = messages
        super().__init__("GraphQL errors: " + "; ".join(messages))


class PaginationError(RemoteError):
    """A paginated API returned a cursor that does not advance."""


class TransformError(ToolError):
    """One item could not be converted; isolated to that item."""


def is_transient_error(exc: BaseException) -> bool:
    """Return True if retrying ``exc`` after a delay is expected to succeed."""
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        if exc.response.status_code in TRANSIENT_HTTP_STATUSES:
            return True

    if isinstance(exc, (anthropic.RateLimitError, openai.RateLimitError)):
        return True

    status = _sdk_status(exc)
    if status is not None and status in TRANSIENT_SDK_STATUSES:
        return True

    return bool(_RATE_LIMIT_PATTERN.search(str(exc)))


def _sdk_status(exc: BaseException) -> int | None:
    if isinstance(exc, (anthropic.APIStatusError, openai.APIStatusError)):
        return exc.status_code
    return None
