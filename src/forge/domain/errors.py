from __future__ import annotations

"""Failure taxonomy for the generation gateway.

Every non-success path is reported as exactly one of the public error codes
below. Upstream failures are first reduced to an :class:`UpstreamErrorKind`
by :func:`classify_failure`, which only looks at a status code and a message
so it stays independent of any provider SDK's exception shape.
"""

import enum
import re
import secrets
import string
import time
from typing import Dict, Optional

from .models import ErrorBody, RateLimitDecision

_RATE_LIMIT_TOKENS = re.compile(r"limit|too many requests", re.IGNORECASE)
_BASE36 = string.digits + string.ascii_lowercase


class UpstreamErrorKind(enum.Enum):
    RATE_LIMITED = "provider_rate_limited"
    OVERLOADED = "provider_overloaded"
    ACCESS_DENIED = "access_denied"
    UNEXPECTED = "unexpected_error"


_KIND_STATUS: Dict[UpstreamErrorKind, int] = {
    UpstreamErrorKind.RATE_LIMITED: 429,
    UpstreamErrorKind.OVERLOADED: 529,
    UpstreamErrorKind.ACCESS_DENIED: 403,
    UpstreamErrorKind.UNEXPECTED: 500,
}

_KIND_MESSAGE: Dict[UpstreamErrorKind, str] = {
    UpstreamErrorKind.RATE_LIMITED: "The provider is currently unavailable due to request limit. Try using your own API key.",
    UpstreamErrorKind.OVERLOADED: "The provider is currently unavailable. Please try again later.",
    UpstreamErrorKind.ACCESS_DENIED: "Access denied. Please make sure your API key is valid.",
    UpstreamErrorKind.UNEXPECTED: "An unexpected error has occurred. Please try again later.",
}


class UpstreamError(Exception):
    """Raised by provider clients for any failed call or broken stream."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, provider: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.provider = provider


def classify_failure(status_code: Optional[int], message: str = "") -> UpstreamErrorKind:
    if status_code == 429 or _RATE_LIMIT_TOKENS.search(message or ""):
        return UpstreamErrorKind.RATE_LIMITED
    if status_code in (503, 529):
        return UpstreamErrorKind.OVERLOADED
    if status_code in (401, 403):
        return UpstreamErrorKind.ACCESS_DENIED
    return UpstreamErrorKind.UNEXPECTED


def classify_exception(exc: BaseException) -> UpstreamErrorKind:
    if isinstance(exc, UpstreamError):
        return classify_failure(exc.status_code, exc.message)
    return classify_failure(None, str(exc))


def new_incident_id() -> str:
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"inc_{int(time.time() * 1000)}_{suffix}"


class GatewayError(Exception):
    code = "unexpected_error"
    status_code = 500

    def __init__(self, message: str, *, incident_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.incident_id = incident_id

    @property
    def headers(self) -> Dict[str, str]:
        return {}

    def to_body(self) -> ErrorBody:
        return ErrorBody(error=self.code, message=self.message, incident_id=self.incident_id)


class RateLimitedError(GatewayError):
    code = "rate_limited"
    status_code = 429

    def __init__(self, decision: RateLimitDecision) -> None:
        super().__init__("You have reached your request limit.")
        self.decision = decision

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.decision.limit),
            "X-RateLimit-Remaining": str(self.decision.remaining),
            "X-RateLimit-Reset": str(self.decision.reset),
        }


class ApiKeyMissing(GatewayError):
    code = "api_key_missing"
    status_code = 400

    def __init__(self, provider_name: str, env_name: str) -> None:
        super().__init__(
            f"Missing API key for {provider_name}. Enter an API key in LLM settings or set {env_name} on the server."
        )
        self.provider_name = provider_name
        self.env_name = env_name


class UpstreamFailure(GatewayError):
    def __init__(self, kind: UpstreamErrorKind, incident_id: Optional[str] = None) -> None:
        super().__init__(_KIND_MESSAGE[kind], incident_id=incident_id or new_incident_id())
        self.kind = kind
        self.code = kind.value
        self.status_code = _KIND_STATUS[kind]
