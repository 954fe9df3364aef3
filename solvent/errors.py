"""Failure taxonomy shared by adapters, the failover router and the waterfall.

Adapters translate whatever their SDK or transport raises into one of the
``ProviderError`` subclasses below, so the router only ever reasons about a
``FailureClassification``. ``classify_exception`` is the single place that does
the translation. It looks at HTTP status codes first; when no status is
available it falls back to sniffing the exception type and message. Message
sniffing is a best-effort heuristic: vendors are free to reword their errors.
"""

import asyncio
import re
from enum import Enum


class FailureClassification(str, Enum):
    RETRYABLE = "retryable"
    FATAL = "fatal"


class ProviderError(Exception):
    """Raised when a provider call fails."""

    code = "PROVIDER_FAILURE"
    classification = FailureClassification.FATAL
    user_message = "The AI provider could not complete the request."

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        self.detail = message
        super().__init__(f"[{provider_name}] {message}")

    @property
    def retryable(self) -> bool:
        return self.classification is FailureClassification.RETRYABLE


class NetworkError(ProviderError):
    code = "NETWORK_ERROR"
    classification = FailureClassification.RETRYABLE
    user_message = "The AI provider could not be reached."


class AuthenticationError(ProviderError):
    code = "AUTH_ERROR"
    user_message = "The AI provider rejected the configured credentials."


class QuotaExceeded(ProviderError):
    code = "QUOTA_EXCEEDED"
    classification = FailureClassification.RETRYABLE
    user_message = "The AI provider's quota or rate limit was reached."


class ServiceOverloaded(ProviderError):
    code = "SERVICE_OVERLOADED"
    classification = FailureClassification.RETRYABLE
    user_message = "The AI provider is temporarily overloaded."


class ValidationError(ProviderError):
    code = "VALIDATION_ERROR"
    user_message = "The request was malformed."

    def __init__(self, message: str, provider_name: str = "request") -> None:
        super().__init__(provider_name, message)


class UnsupportedCapability(ValidationError):
    code = "UNSUPPORTED_CAPABILITY"
    user_message = "The selected provider does not support this operation."

    def __init__(self, provider_name: str, capability: str) -> None:
        self.capability = capability
        super().__init__(f"Capability not supported: {capability}", provider_name=provider_name)


class NoImageProduced(ProviderError):
    code = "NO_IMAGE_PRODUCED"
    user_message = "The image backend did not return an image."


class OperationCancelled(ProviderError):
    code = "OPERATION_CANCELLED"
    user_message = "The operation was cancelled."

    def __init__(self, message: str = "Operation cancelled by user", provider_name: str = "user") -> None:
        super().__init__(provider_name, message)


class InternalError(ProviderError):
    code = "INTERNAL_ERROR"
    user_message = "An internal error occurred."


class FailoverExhausted(ProviderError):
    """Both the primary and the fallback attempt failed."""

    code = "PROVIDER_FAILURE"
    user_message = "All configured providers failed to answer."

    def __init__(self, attempts: list[tuple[str, ProviderError]]) -> None:
        self.attempts = attempts
        summary = "; ".join(f"{ref}: {err.code}" for ref, err in attempts)
        super().__init__("router", f"All candidates failed ({summary})")


_STATUS_MAP: dict[int, type[ProviderError]] = {
    400: ValidationError,
    401: AuthenticationError,
    403: AuthenticationError,
    404: ValidationError,
    408: NetworkError,
    422: ValidationError,
    429: QuotaExceeded,
    503: ServiceOverloaded,
    504: ServiceOverloaded,
}

_QUOTA_MARKERS = ("quota", "resource_exhausted", "rate limit", "too many requests")
_OVERLOAD_MARKERS = ("service_overload", "overloaded", "service unavailable")
_AUTH_MARKERS = ("api key", "api_key", "unauthorized", "permission denied")
# Status codes quoted in a message, e.g. "HTTP 429" or "status: 503"; bare digits are ignored
_MESSAGE_STATUS = re.compile(r"\b(?:http|status|error|code)[\s:=]*([1-5]\d\d)\b", re.IGNORECASE)
_NETWORK_TYPE_MARKERS = ("connect", "timeout", "network", "remoteprotocol", "readerror")


def _status_code(exc: BaseException) -> int | None:
    for attr in ("status_code", "code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int):
        return value
    return None


def _build(cls: type[ProviderError], provider: str, message: str) -> ProviderError:
    if issubclass(cls, ValidationError):
        return cls(message, provider_name=provider)
    return cls(provider, message)


def classify_exception(exc: BaseException, provider: str) -> ProviderError:
    """Map any exception raised by a backend call onto the shared taxonomy."""
    if isinstance(exc, ProviderError):
        return exc
    if isinstance(exc, asyncio.CancelledError):
        return OperationCancelled(provider_name=provider)
    if isinstance(exc, TimeoutError):
        return NetworkError(provider, "Request timed out")

    message = str(exc) or type(exc).__name__
    status = _status_code(exc)
    if status is not None:
        cls = _STATUS_MAP.get(status)
        if cls is None and status >= 500:
            cls = NetworkError
        if cls is not None:
            return _build(cls, provider, f"HTTP {status}: {message}")

    if isinstance(exc, ConnectionError) or any(
        marker in type(exc).__name__.lower() for marker in _NETWORK_TYPE_MARKERS
    ):
        return NetworkError(provider, message)

    quoted = _MESSAGE_STATUS.search(message)
    if quoted is not None and int(quoted.group(1)) in _STATUS_MAP:
        return _build(_STATUS_MAP[int(quoted.group(1))], provider, message)

    lowered = message.lower()
    if any(marker in lowered for marker in _QUOTA_MARKERS):
        return QuotaExceeded(provider, message)
    if any(marker in lowered for marker in _OVERLOAD_MARKERS):
        return ServiceOverloaded(provider, message)
    if any(marker in lowered for marker in _AUTH_MARKERS):
        return AuthenticationError(provider, message)
    return InternalError(provider, message)
