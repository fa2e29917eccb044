"""Tests for failure classification of generation attempts."""

import httpx
import pytest

from vibeflow.ai.classify import classify
from vibeflow.ai.errors import EmptyResultError, FailureClassification, UpstreamError


@pytest.mark.parametrize(
    "error, expected",
    [
        (UpstreamError("Request had invalid authentication credentials.", 401, "UNAUTHENTICATED"), FailureClassification.INVALID_CREDENTIAL),
        (UpstreamError("API key not valid. Please pass a valid API key.", 400, "INVALID_ARGUMENT"), FailureClassification.INVALID_CREDENTIAL),
        (UpstreamError("The model is overloaded.", 503, "UNAVAILABLE"), FailureClassification.SERVICE_UNAVAILABLE),
        (UpstreamError("boom", 500, None), FailureClassification.SERVICE_UNAVAILABLE),
        (UpstreamError("Internal error encountered.", None, None), FailureClassification.SERVICE_UNAVAILABLE),
        (UpstreamError("Resource has been exhausted", 429, "RESOURCE_EXHAUSTED"), FailureClassification.RATE_LIMITED),
        (UpstreamError("Quota exceeded for metric", None, None), FailureClassification.RATE_LIMITED),
        (UpstreamError("Invalid JSON payload received.", 400, "INVALID_ARGUMENT"), FailureClassification.INVALID_INPUT),
        (EmptyResultError("summarize"), FailureClassification.EMPTY_RESULT),
        (httpx.ConnectError("connection refused"), FailureClassification.UNKNOWN),
        (ValueError("something odd"), FailureClassification.UNKNOWN),
    ],
)
def test_classify_table(error, expected):
    assert classify(error) is expected


def test_credential_wins_over_retriable_text():
    err = UpstreamError("API key not valid (service unavailable)", 503, "UNAVAILABLE")
    assert classify(err) is FailureClassification.INVALID_CREDENTIAL


def test_unavailable_checked_before_rate_limit():
    err = UpstreamError("503 rate limit exceeded", None, None)
    assert classify(err) is FailureClassification.SERVICE_UNAVAILABLE


def test_http_status_error_uses_response_code():
    request = httpx.Request("POST", "https://example.com")
    response = httpx.Response(429, request=request)
    err = httpx.HTTPStatusError("too many", request=request, response=response)
    assert classify(err) is FailureClassification.RATE_LIMITED


def test_terminal_classes():
    assert FailureClassification.INVALID_CREDENTIAL.terminal
    assert FailureClassification.INVALID_INPUT.terminal
    assert not FailureClassification.RATE_LIMITED.terminal
    assert not FailureClassification.SERVICE_UNAVAILABLE.terminal
    assert not FailureClassification.EMPTY_RESULT.terminal
    assert not FailureClassification.UNKNOWN.terminal


def test_503_must_stand_alone_in_message():
    err = UpstreamError("Input of 15030 tokens exceeds the limit.", 400, "INVALID_ARGUMENT")
    assert classify(err) is FailureClassification.INVALID_INPUT
    assert classify(UpstreamError("upstream said 503", None, None)) is FailureClassification.SERVICE_UNAVAILABLE


def test_classification_is_stable_across_calls():
    upstream = UpstreamError("The model is overloaded.", 503, "UNAVAILABLE")
    assert classify(upstream) is classify(upstream)

    request = httpx.Request("POST", "https://example.com")
    response = httpx.Response(400, request=request)
    status_err = httpx.HTTPStatusError("bad request", request=request, response=response)
    first = classify(status_err)
    assert classify(status_err) is first
    assert first is FailureClassification.INVALID_INPUT
