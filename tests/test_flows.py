"""Tests for the summarize / generate / tune / analyze flows against a mocked Gemini endpoint."""

import json

import httpx
import pytest
import respx

from vibeflow.ai.errors import FailureClassification, TerminalError
from vibeflow.ai.flows import GenerationService
from vibeflow.ai.types import Platform


GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.0-flash:generateContent"
API_KEY = "test-key-123"


def gemini_reply(payload) -> httpx.Response:
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})


def gemini_error(code: int, status: str, message: str) -> httpx.Response:
    return httpx.Response(code, json={"error": {"code": code, "status": status, "message": message}})


def sent_prompt(route) -> str:
    body = json.loads(route.calls.last.request.content)
    return body["contents"][0]["parts"][0]["text"]


@pytest.fixture
def service(ai_config, recording_sleep):
    return GenerationService(ai_config, sleep=recording_sleep)


@pytest.mark.asyncio
@respx.mock
async def test_summarize_text_success(service, recording_sleep):
    route = respx.post(GEMINI_URL).mock(return_value=gemini_reply({"summary": "A short summary."}))

    result = await service.summarize("Some long article text about testing.", api_key=API_KEY)

    assert result.summary == "A short summary."
    assert result.source == "TEXT"
    assert route.call_count == 1
    assert route.calls.last.request.headers["x-goog-api-key"] == API_KEY
    assert "Some long article text about testing." in sent_prompt(route)
    assert recording_sleep.calls == []


@pytest.mark.asyncio
@respx.mock
async def test_unavailable_twice_then_success(service, recording_sleep):
    route = respx.post(GEMINI_URL).mock(
        side_effect=[
            gemini_error(503, "UNAVAILABLE", "The model is overloaded."),
            gemini_error(503, "UNAVAILABLE", "The model is overloaded."),
            gemini_reply({"post": "Hello LinkedIn"}),
        ]
    )

    result = await service.generate_post("summary text", Platform.LINKEDIN, api_key=API_KEY)

    assert result.post == "Hello LinkedIn"
    assert route.call_count == 3
    assert recording_sleep.calls == [1.0, 2.0]


@pytest.mark.asyncio
@respx.mock
async def test_invalid_key_is_not_retried(service, recording_sleep):
    route = respx.post(GEMINI_URL).mock(
        return_value=gemini_error(400, "INVALID_ARGUMENT", "API key not valid. Please pass a valid API key.")
    )

    with pytest.raises(TerminalError) as exc_info:
        await service.summarize("text", api_key=API_KEY)

    err = exc_info.value
    assert err.classification is FailureClassification.INVALID_CREDENTIAL
    assert err.status == "UNAUTHENTICATED"
    assert err.guidance == "check_config"
    assert err.attempts == 1
    assert "check the Gemini API key" in err.message
    assert route.call_count == 1
    assert recording_sleep.calls == []


@pytest.mark.asyncio
@respx.mock(assert_all_called=False)
async def test_missing_key_makes_no_call(service):
    route = respx.post(GEMINI_URL).mock(return_value=gemini_reply({"summary": "x"}))

    with pytest.raises(TerminalError) as exc_info:
        await service.summarize("text", api_key="  ")

    assert exc_info.value.classification is FailureClassification.INVALID_INPUT
    assert "API key is required for summarization" in exc_info.value.message
    assert route.call_count == 0


@pytest.mark.asyncio
@respx.mock
async def test_rate_limit_exhausts_budget(service, recording_sleep):
    route = respx.post(GEMINI_URL).mock(
        return_value=gemini_error(429, "RESOURCE_EXHAUSTED", "Resource has been exhausted (e.g. check quota).")
    )

    with pytest.raises(TerminalError) as exc_info:
        await service.generate_post("summary", "twitter", api_key=API_KEY)

    err = exc_info.value
    assert err.classification is FailureClassification.RATE_LIMITED
    assert err.status == "RESOURCE_EXHAUSTED"
    assert err.guidance == "try_later"
    assert err.platform == "twitter"
    assert "after 3 attempts" in err.message
    assert "twitter" in err.message
    assert route.call_count == 3
    assert recording_sleep.calls == [1.0, 2.0]


@pytest.mark.asyncio
@respx.mock
async def test_empty_result_is_retried_then_reported(service):
    route = respx.post(GEMINI_URL).mock(return_value=gemini_reply({"post": "   "}))

    with pytest.raises(TerminalError) as exc_info:
        await service.generate_post("summary", Platform.YOUTUBE, api_key=API_KEY)

    assert exc_info.value.classification is FailureClassification.EMPTY_RESULT
    assert exc_info.value.status == "INTERNAL"
    assert "empty result after 3 attempts" in exc_info.value.message
    assert route.call_count == 3


@pytest.mark.asyncio
@respx.mock
async def test_transport_error_reports_original_error(service):
    route = respx.post(GEMINI_URL).mock(side_effect=httpx.ConnectError("connection refused"))

    with pytest.raises(TerminalError) as exc_info:
        await service.summarize("text", api_key=API_KEY)

    assert exc_info.value.classification is FailureClassification.UNKNOWN
    assert "Original error: connection refused" in exc_info.value.message
    assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
    assert route.call_count == 3


@pytest.mark.asyncio
@respx.mock(assert_all_called=False)
async def test_unknown_platform_is_invalid_input(service):
    route = respx.post(GEMINI_URL).mock(return_value=gemini_reply({"post": "x"}))

    with pytest.raises(TerminalError) as exc_info:
        await service.generate_post("summary", "myspace", api_key=API_KEY)

    assert exc_info.value.classification is FailureClassification.INVALID_INPUT
    assert route.call_count == 0


@pytest.mark.asyncio
@respx.mock
async def test_tune_prompt_carries_instruction_and_persona(service):
    route = respx.post(GEMINI_URL).mock(return_value=gemini_reply({"tunedPost": "Shorter post"}))

    result = await service.tune_post(
        "A rather long original post.",
        "x",
        "More concise",
        "a formal professional",
        api_key=API_KEY,
    )

    assert result.tuned_post == "Shorter post"
    prompt = sent_prompt(route)
    assert "Feedback: More concise" in prompt
    assert "Original Post: A rather long original post." in prompt
    assert "twitter" in prompt
    assert "a formal professional" in prompt


@pytest.mark.asyncio
@respx.mock(assert_all_called=False)
async def test_tune_requires_instruction(service):
    route = respx.post(GEMINI_URL).mock(return_value=gemini_reply({"tunedPost": "x"}))

    with pytest.raises(TerminalError) as exc_info:
        await service.tune_post("post", Platform.LINKEDIN, "  ", api_key=API_KEY)

    assert exc_info.value.classification is FailureClassification.INVALID_INPUT
    assert route.call_count == 0


@pytest.mark.asyncio
@respx.mock
async def test_plain_text_reply_is_used_as_result(service):
    respx.post(GEMINI_URL).mock(return_value=gemini_reply("Just a plain summary"))

    result = await service.summarize("text", api_key=API_KEY)

    assert result.summary == "Just a plain summary"


@pytest.mark.asyncio
@respx.mock
async def test_analyze_relocates_flags_by_quoted_text(service):
    post = "Hello world, this is great."
    respx.post(GEMINI_URL).mock(
        return_value=gemini_reply(
            {
                "analysis": "Friendly but vague.",
                "flags": [
                    {"start": 0, "end": 3, "originalText": "great", "issue": "vague", "suggestion": "be specific"},
                    {"start": 500, "end": 900, "originalText": "missing", "issue": "x", "suggestion": ""},
                ],
            }
        )
    )

    result = await service.analyze_post(post, Platform.LINKEDIN, api_key=API_KEY)

    assert result.analysis == "Friendly but vague."
    first, second = result.flags
    assert (first.start, first.end) == (21, 26)
    assert post[first.start:first.end] == "great"
    assert first.suggestion == "be specific"
    assert second.start == second.end == len(post)


@pytest.mark.asyncio
@respx.mock
async def test_analyze_without_flags_array_is_empty_result(service):
    route = respx.post(GEMINI_URL).mock(return_value=gemini_reply({"analysis": "ok"}))

    with pytest.raises(TerminalError) as exc_info:
        await service.analyze_post("post", Platform.TWITTER, api_key=API_KEY)

    assert exc_info.value.classification is FailureClassification.EMPTY_RESULT
    assert route.call_count == 3


@pytest.mark.asyncio
@respx.mock
async def test_empty_json_object_is_empty_result(service, recording_sleep):
    route = respx.post(GEMINI_URL).mock(return_value=gemini_reply("{}"))

    with pytest.raises(TerminalError) as exc_info:
        await service.summarize("text", api_key=API_KEY)

    assert exc_info.value.classification is FailureClassification.EMPTY_RESULT
    assert route.call_count == 3
    assert recording_sleep.calls == [1.0, 2.0]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body, expected",
    [
        (b"[]", FailureClassification.UNKNOWN),
        (b"null", FailureClassification.UNKNOWN),
        (b'{"candidates": ["oops"]}', FailureClassification.EMPTY_RESULT),
        (b'{"candidates": [{"content": "plain string"}]}', FailureClassification.EMPTY_RESULT),
        (b'{"candidates": [{"content": {"parts": "nope"}}]}', FailureClassification.EMPTY_RESULT),
    ],
)
async def test_malformed_reply_body_becomes_terminal_error(service, body, expected):
    with respx.mock:
        route = respx.post(GEMINI_URL).mock(return_value=httpx.Response(200, content=body))

        with pytest.raises(TerminalError) as exc_info:
            await service.summarize("text", api_key=API_KEY)

    assert exc_info.value.classification is expected
    assert route.call_count == 3
