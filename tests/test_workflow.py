"""Tests for the per-user bot actions: quota consume/refund, metrics and alerts."""

import dataclasses
import json
import re
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio
import respx
from prometheus_client import CollectorRegistry

from vibeflow.ai.errors import FailureClassification, TerminalError
from vibeflow.ai.flows import GenerationService
from vibeflow.ai.types import Platform
from vibeflow.config import load_config
from vibeflow.content.http_fetcher import HttpContentFetcher
from vibeflow.content.service import ContentService
from vibeflow.metrics.metrics import Metrics, RuntimeStats
from vibeflow.personas.loader import load_personas
from vibeflow.ratelimit import HostRateLimiter
from vibeflow.storage.db import QuotaExceededError, Storage
from vibeflow.workflow import AppContext, DraftMissingError, run_analyze, run_generate, run_tune, write_status


GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.0-flash:generateContent"
USER = 1001
_PLATFORM_RE = re.compile(r"following platform: (\w+)")


def gemini_reply(payload: dict) -> httpx.Response:
    return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": json.dumps(payload)}]}}]})


def gemini_error(code: int, status: str, message: str) -> httpx.Response:
    return httpx.Response(code, json={"error": {"code": code, "status": status, "message": message}})


def prompt_of(request: httpx.Request) -> str:
    return json.loads(request.content)["contents"][0]["parts"][0]["text"]


def fake_gemini(fail_platform: str | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        prompt = prompt_of(request)
        if prompt.startswith("Summarize"):
            return gemini_reply({"summary": "the summary"})
        platform = _PLATFORM_RE.search(prompt).group(1)
        if platform == fail_platform:
            return gemini_error(400, "INVALID_ARGUMENT", "Invalid JSON payload received.")
        return gemini_reply({"post": f"post for {platform}"})

    return handler


@pytest.fixture
def registry():
    return CollectorRegistry()


@pytest.fixture
def application():
    return SimpleNamespace(bot=SimpleNamespace(send_message=AsyncMock()))


@pytest_asyncio.fixture
async def ctx(tmp_path, monkeypatch, registry, ai_config, recording_sleep):
    monkeypatch.setenv("BOT_TOKEN", "123:test")
    config = dataclasses.replace(
        load_config(),
        sqlite_path=tmp_path / "vibeflow.db",
        status_json_path=tmp_path / "status.json",
        personas_path=tmp_path / "personas.yaml",
        quota_limit=10,
        alert_chat_id=99,
        alert_n_ai=1,
    )
    storage = Storage(config.sqlite_path, default_quota_limit=config.quota_limit)
    await storage.connect()

    metrics = Metrics(registry=registry)
    limiter = HostRateLimiter(0, 0)
    content = ContentService(HttpContentFetcher(limiter, 5, "test-agent"), max_chars=60000)

    def on_retry(operation, failure, attempts, backoff_ms):
        metrics.ai_retries_total.labels(operation=operation.value).inc()

    app_ctx = AppContext(
        config=config,
        storage=storage,
        content=content,
        ai=GenerationService(ai_config, content, sleep=recording_sleep, on_retry=on_retry),
        personas=load_personas(config.personas_path),
        metrics=metrics,
        runtime_stats=RuntimeStats(started_ts=0.0),
        fetch_limiter=limiter,
    )
    yield app_ctx
    await content.aclose()
    await storage.close()


async def _used(ctx) -> int:
    return (await ctx.storage.get_quota(USER)).request_count


@pytest.mark.asyncio
@respx.mock
async def test_generate_without_key_consumes_nothing(application, ctx):
    with pytest.raises(TerminalError) as exc_info:
        await run_generate(application, ctx, USER, "some text")

    assert exc_info.value.classification is FailureClassification.INVALID_INPUT
    assert await _used(ctx) == 0
    assert not respx.calls


@pytest.mark.asyncio
@respx.mock
async def test_generate_drafts_every_platform(application, ctx, registry):
    await ctx.storage.set_api_key(USER, "user-key")
    respx.post(GEMINI_URL).mock(side_effect=fake_gemini())

    outcome = await run_generate(application, ctx, USER, "An article about retries.")

    assert outcome.summary == "the summary"
    assert outcome.failures == {}
    assert outcome.posts == {
        Platform.LINKEDIN: "post for linkedin",
        Platform.TWITTER: "post for twitter",
        Platform.YOUTUBE: "post for youtube",
    }
    assert await _used(ctx) == 4
    assert (await ctx.storage.get_or_create_profile(USER)).xp == 40
    assert (await ctx.storage.load_draft(USER, "twitter")).content == "post for twitter"
    assert await ctx.storage.load_summary(USER) == "the summary"
    assert registry.get_sample_value("ai_calls_total", {"operation": "generate"}) == 3
    assert registry.get_sample_value("content_fetch_total", {"source": "TEXT"}) == 1
    assert respx.calls.last.request.headers["x-goog-api-key"] == "user-key"


@pytest.mark.asyncio
@respx.mock
async def test_failed_platform_is_refunded(application, ctx, registry):
    await ctx.storage.set_api_key(USER, "user-key")
    respx.post(GEMINI_URL).mock(side_effect=fake_gemini(fail_platform="twitter"))

    outcome = await run_generate(application, ctx, USER, "An article about retries.")

    assert set(outcome.posts) == {Platform.LINKEDIN, Platform.YOUTUBE}
    err = outcome.failures[Platform.TWITTER]
    assert isinstance(err, TerminalError)
    assert err.classification is FailureClassification.INVALID_INPUT
    assert await _used(ctx) == 3
    assert await ctx.storage.load_draft(USER, "twitter") is None
    assert registry.get_sample_value(
        "ai_failures_total", {"operation": "generate", "classification": "INVALID_INPUT"}
    ) == 1
    # a bad request is the caller's problem, not an outage
    assert ctx.runtime_stats.consecutive_ai_failures == 0
    application.bot.send_message.assert_not_awaited()


@pytest.mark.asyncio
@respx.mock
async def test_summary_outage_refunds_and_alerts(application, ctx, registry, recording_sleep):
    await ctx.storage.set_api_key(USER, "user-key")
    route = respx.post(GEMINI_URL).mock(return_value=gemini_error(503, "UNAVAILABLE", "The model is overloaded."))

    with pytest.raises(TerminalError) as exc_info:
        await run_generate(application, ctx, USER, "An article about retries.")

    assert exc_info.value.classification is FailureClassification.SERVICE_UNAVAILABLE
    assert route.call_count == 3
    assert recording_sleep.calls == [1.0, 2.0]
    assert await _used(ctx) == 0
    assert registry.get_sample_value("ai_retries_total", {"operation": "summarize"}) == 2
    assert ctx.runtime_stats.consecutive_ai_failures == 1
    assert ctx.runtime_stats.last_failure_classification == "SERVICE_UNAVAILABLE"
    application.bot.send_message.assert_awaited_once()
    assert application.bot.send_message.await_args.kwargs["chat_id"] == 99


@pytest.mark.asyncio
@respx.mock
async def test_quota_exhausted_blocks_before_any_call(application, ctx, registry):
    await ctx.storage.set_api_key(USER, "user-key")
    await ctx.storage.increment_quota(USER, 10)

    with pytest.raises(QuotaExceededError):
        await run_generate(application, ctx, USER, "An article about retries.")

    assert registry.get_sample_value("quota_rejections_total") == 1
    assert not respx.calls


@pytest.mark.asyncio
@respx.mock
async def test_tune_needs_a_draft(application, ctx):
    await ctx.storage.set_api_key(USER, "user-key")

    with pytest.raises(DraftMissingError):
        await run_tune(application, ctx, USER, Platform.LINKEDIN, "More concise")

    assert await _used(ctx) == 0
    assert not respx.calls


@pytest.mark.asyncio
@respx.mock
async def test_tune_uses_persona_and_replaces_draft(application, ctx):
    await ctx.storage.set_api_key(USER, "user-key")
    await ctx.storage.set_persona(USER, "formal_pro")
    await ctx.storage.save_draft(USER, "linkedin", "hey folks, big news!!!")
    route = respx.post(GEMINI_URL).mock(return_value=gemini_reply({"tunedPost": "We are pleased to announce."}))

    tuned = await run_tune(application, ctx, USER, Platform.LINKEDIN, "More professional")

    assert tuned == "We are pleased to announce."
    prompt = prompt_of(route.calls.last.request)
    assert ctx.personas["formal_pro"].prompt in prompt
    assert "Feedback: More professional" in prompt
    assert (await ctx.storage.load_draft(USER, "linkedin")).content == tuned
    assert await _used(ctx) == 1


@pytest.mark.asyncio
@respx.mock
async def test_analyze_draft(application, ctx):
    await ctx.storage.set_api_key(USER, "user-key")
    await ctx.storage.save_draft(USER, "twitter", "Big news today.")
    respx.post(GEMINI_URL).mock(
        return_value=gemini_reply(
            {
                "analysis": "Too vague.",
                "flags": [{"start": 0, "end": 8, "originalText": "Big news", "issue": "vague", "suggestion": "say what"}],
            }
        )
    )

    result = await run_analyze(application, ctx, USER, Platform.TWITTER)

    assert result.analysis == "Too vague."
    assert result.flags[0].original_text == "Big news"
    assert await _used(ctx) == 1


@pytest.mark.asyncio
async def test_write_status(ctx):
    ctx.runtime_stats.requests_total = 5
    write_status(ctx)

    data = json.loads(ctx.config.status_json_path.read_text(encoding="utf-8"))
    assert data["requests_total"] == 5
    assert data["consecutive_failures"] == {"ai": 0}
