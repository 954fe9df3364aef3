"""Tests for solvent/errors.py classification."""

import asyncio

import httpx
import pytest

from solvent.errors import (
    AuthenticationError,
    FailoverExhausted,
    FailureClassification,
    InternalError,
    NetworkError,
    OperationCancelled,
    QuotaExceeded,
    ServiceOverloaded,
    UnsupportedCapability,
    ValidationError,
    classify_exception,
)


class _StatusError(Exception):
    def __init__(self, status_code: int, message: str = "boom") -> None:
        super().__init__(message)
        self.status_code = status_code


def _http_status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "http://backend.test/api/chat")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        (401, AuthenticationError),
        (403, AuthenticationError),
        (429, QuotaExceeded),
        (503, ServiceOverloaded),
        (504, ServiceOverloaded),
        (400, ValidationError),
        (404, ValidationError),
        (500, NetworkError),
        (502, NetworkError),
    ],
)
def test_status_codes(status, expected):
    assert isinstance(classify_exception(_StatusError(status), "groq"), expected)


def test_httpx_status_error_uses_response_code():
    assert isinstance(classify_exception(_http_status_error(429), "ollama"), QuotaExceeded)


def test_httpx_connect_error_is_network():
    exc = httpx.ConnectError("connection refused")
    assert isinstance(classify_exception(exc, "ollama"), NetworkError)


def test_timeout_is_network():
    assert isinstance(classify_exception(TimeoutError(), "gemini"), NetworkError)


def test_connection_error_is_network():
    assert isinstance(classify_exception(ConnectionRefusedError("ECONNREFUSED"), "ollama"), NetworkError)


def test_cancelled_error_is_operation_cancelled():
    assert isinstance(classify_exception(asyncio.CancelledError(), "gemini"), OperationCancelled)


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ("RESOURCE_EXHAUSTED: Quota exceeded for model", QuotaExceeded),
        ("Rate limit reached, slow down", QuotaExceeded),
        ("SERVICE_OVERLOAD please retry", ServiceOverloaded),
        ("API key not valid. Please pass a valid API key.", AuthenticationError),
        ("something odd happened", InternalError),
        ("Error code: 429 - slow down", QuotaExceeded),
        ("upstream returned HTTP 503", ServiceOverloaded),
        ("model llama-429b not loaded", InternalError),
        ("wrote 4013 bytes then 401 lines", InternalError),
    ],
)
def test_message_sniffing(message, expected):
    assert isinstance(classify_exception(RuntimeError(message), "gemini"), expected)


def test_provider_error_passes_through():
    original = QuotaExceeded("groq", "429")
    assert classify_exception(original, "other") is original


def test_classifications():
    assert classify_exception(_StatusError(429), "groq").classification is FailureClassification.RETRYABLE
    assert classify_exception(_StatusError(401), "groq").classification is FailureClassification.FATAL
    assert NetworkError("x", "y").retryable
    assert not AuthenticationError("x", "y").retryable
    assert not UnsupportedCapability("x", "vision_completion").retryable
    assert not OperationCancelled().retryable


def test_error_message_includes_provider():
    exc = QuotaExceeded("gemini", "HTTP 429")
    assert str(exc) == "[gemini] HTTP 429"
    assert exc.detail == "HTTP 429"
    assert exc.code == "QUOTA_EXCEEDED"


def test_unsupported_capability_is_validation_error():
    exc = UnsupportedCapability("pollinations", "chat_completion")
    assert isinstance(exc, ValidationError)
    assert exc.provider_name == "pollinations"
    assert exc.capability == "chat_completion"


def test_failover_exhausted_names_both_attempts():
    exc = FailoverExhausted(
        [("gemini/gemini-2.0-flash", QuotaExceeded("gemini", "429")), ("ollama/llama3", NetworkError("ollama", "down"))]
    )
    assert "gemini/gemini-2.0-flash: QUOTA_EXCEEDED" in str(exc)
    assert "ollama/llama3: NETWORK_ERROR" in str(exc)
    assert exc.classification is FailureClassification.FATAL
