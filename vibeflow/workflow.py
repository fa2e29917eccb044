from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from telegram.ext import Application

from vibeflow.ai.client import AIConfig
from vibeflow.ai.errors import TerminalError
from vibeflow.ai.flows import GenerationService, require_credential
from vibeflow.ai.retry import Failure, RetryPolicy
from vibeflow.ai.types import ALL_PLATFORMS, AnalysisResult, GenerationRequest, Operation, Platform
from vibeflow.config import Config
from vibeflow.content.http_fetcher import HttpContentFetcher
from vibeflow.content.service import ContentService
from vibeflow.metrics.metrics import Metrics, RuntimeStats, write_status_json
from vibeflow.personas.loader import Persona, load_personas, resolve_persona_prompt
from vibeflow.ratelimit import HostRateLimiter
from vibeflow.storage.db import QuotaExceededError, Storage
from vibeflow.storage.types import Profile
from vibeflow.telegram.alerts import maybe_send_ai_failure_alert


logger = logging.getLogger(__name__)

T = TypeVar("T")


class DraftMissingError(Exception):
    def __init__(self, platform: Platform):
        super().__init__(f"no {platform.value} draft yet")
        self.platform = platform


@dataclass
class AppContext:
    config: Config
    storage: Storage
    content: ContentService
    ai: GenerationService
    personas: dict[str, Persona]
    metrics: Metrics
    runtime_stats: RuntimeStats
    fetch_limiter: HostRateLimiter
    tasks: list[asyncio.Task] = field(default_factory=list)

    def reload_personas(self) -> None:
        self.personas = load_personas(self.config.personas_path)


@dataclass
class GenerateOutcome:
    summary: str
    title: str | None
    posts: dict[Platform, str]
    failures: dict[Platform, Exception]


def ai_config_from(config: Config) -> AIConfig:
    return AIConfig(
        base_url=config.gemini_base_url,
        model=config.gemini_model,
        timeout_seconds=config.ai_timeout_seconds,
        temperature=config.ai_temperature,
        retry=RetryPolicy(
            max_retries=config.ai_max_retries,
            initial_backoff_ms=config.ai_initial_backoff_ms,
            max_backoff_ms=config.ai_max_backoff_ms,
        ),
    )


async def build_app_context(config: Config, application: Application) -> AppContext:
    storage = Storage(config.sqlite_path, default_quota_limit=config.quota_limit)
    await storage.connect()

    metrics = Metrics()
    if config.metrics_enabled:
        metrics.start_server(config.metrics_bind, config.metrics_port)

    fetch_limiter = HostRateLimiter(
        min_interval_seconds=config.fetch_min_interval_seconds,
        jitter_seconds=config.fetch_jitter_seconds,
    )
    content = ContentService(
        HttpContentFetcher(
            limiter=fetch_limiter,
            timeout_seconds=config.fetch_timeout_seconds,
            user_agent=config.user_agent,
        ),
        max_chars=config.max_content_chars,
    )

    def on_retry(operation: Operation, failure: Failure, attempts: int, backoff_ms: float) -> None:
        metrics.ai_retries_total.labels(operation=operation.value).inc()

    ai = GenerationService(ai_config_from(config), content, on_retry=on_retry)

    return AppContext(
        config=config,
        storage=storage,
        content=content,
        ai=ai,
        personas=load_personas(config.personas_path),
        metrics=metrics,
        runtime_stats=RuntimeStats(started_ts=time.time()),
        fetch_limiter=fetch_limiter,
    )


async def start_background_jobs(application: Application, ctx: AppContext) -> None:
    async def status_job() -> None:
        while True:
            try:
                write_status(ctx)
            except Exception:
                logger.exception("status job failed")
            await asyncio.sleep(30)

    ctx.tasks = [asyncio.create_task(status_job(), name="status_job")]


async def stop_background_jobs(application: Application, ctx: AppContext) -> None:
    for t in ctx.tasks:
        t.cancel()
    await asyncio.gather(*ctx.tasks, return_exceptions=True)

    await ctx.content.aclose()
    await ctx.storage.close()


def write_status(ctx: AppContext) -> None:
    stats = ctx.runtime_stats
    ctx.metrics.set_consecutive("ai", stats.consecutive_ai_failures)
    data = {
        "started_ts": stats.started_ts,
        "last_request_ts": stats.last_request_ts,
        "requests_total": stats.requests_total,
        "fetch_next_allowed_in_seconds": ctx.fetch_limiter.next_allowed_in_seconds(),
        "consecutive_failures": {"ai": stats.consecutive_ai_failures},
        "last_failure_classification": stats.last_failure_classification,
    }
    write_status_json(ctx.config.status_json_path, data)


def _require_api_key(profile: Profile, operation: Operation) -> str:
    key = profile.gemini_api_key or ""
    require_credential(GenerationRequest(operation, key, {}))
    return key


async def _consume_quota(ctx: AppContext, user_id: int, amount: int = 1) -> int:
    try:
        return await ctx.storage.increment_quota(user_id, amount)
    except QuotaExceededError:
        ctx.metrics.quota_rejections_total.inc()
        raise


async def _refund_quota(ctx: AppContext, user_id: int, amount: int = 1) -> None:
    try:
        await ctx.storage.increment_quota(user_id, -amount)
    except Exception:
        logger.exception("quota refund failed user_id=%s", user_id)


async def _ai_call(
    application: Application,
    ctx: AppContext,
    operation: Operation,
    call: Callable[[], Awaitable[T]],
) -> T:
    stats = ctx.runtime_stats
    stats.requests_total += 1
    stats.last_request_ts = time.time()
    ctx.metrics.ai_calls_total.labels(operation=operation.value).inc()

    try:
        with ctx.metrics.ai_latency_seconds.labels(operation=operation.value).time():
            result = await call()
    except TerminalError as e:
        ctx.metrics.ai_failures_total.labels(operation=operation.value, classification=e.classification.value).inc()
        stats.last_failure_classification = e.classification.value
        # credential/input problems are the user's, not the service's
        if not e.classification.terminal:
            stats.consecutive_ai_failures += 1
            ctx.metrics.set_consecutive("ai", stats.consecutive_ai_failures)
            await maybe_send_ai_failure_alert(
                application,
                ctx.config.alert_chat_id,
                operation.value,
                e.classification,
                stats.consecutive_ai_failures,
                ctx.config.alert_n_ai,
            )
        raise

    stats.consecutive_ai_failures = 0
    ctx.metrics.set_consecutive("ai", 0)
    return result


async def run_generate(application: Application, ctx: AppContext, user_id: int, content: str) -> GenerateOutcome:
    """Summarize the input and draft a post for every platform.

    One quota unit for the summary plus one per platform; units of failed
    calls are refunded.
    """
    profile = await ctx.storage.get_or_create_profile(user_id)
    api_key = _require_api_key(profile, Operation.SUMMARIZE)

    await _consume_quota(ctx, user_id, 1)
    try:
        summary = await _ai_call(application, ctx, Operation.SUMMARIZE, lambda: ctx.ai.summarize(content, api_key=api_key))
    except TerminalError:
        await _refund_quota(ctx, user_id, 1)
        raise
    ctx.metrics.content_fetch_total.labels(source=summary.source).inc()
    await ctx.storage.save_summary(user_id, content.strip()[:2000], summary.summary)

    async def one(platform: Platform) -> str:
        await _consume_quota(ctx, user_id, 1)
        try:
            result = await _ai_call(
                application,
                ctx,
                Operation.GENERATE,
                lambda: ctx.ai.generate_post(summary.summary, platform, api_key=api_key),
            )
        except TerminalError:
            await _refund_quota(ctx, user_id, 1)
            raise
        await ctx.storage.save_draft(user_id, platform.value, result.post)
        return result.post

    results = await asyncio.gather(*(one(p) for p in ALL_PLATFORMS), return_exceptions=True)

    posts: dict[Platform, str] = {}
    failures: dict[Platform, Exception] = {}
    for platform, res in zip(ALL_PLATFORMS, results):
        if isinstance(res, (TerminalError, QuotaExceededError)):
            logger.warning("generate failed user_id=%s platform=%s err=%s", user_id, platform.value, res)
            failures[platform] = res
        elif isinstance(res, BaseException):
            raise res
        else:
            posts[platform] = res

    return GenerateOutcome(summary=summary.summary, title=summary.title, posts=posts, failures=failures)


async def run_tune(
    application: Application,
    ctx: AppContext,
    user_id: int,
    platform: Platform,
    instruction: str,
) -> str:
    profile = await ctx.storage.get_or_create_profile(user_id)
    api_key = _require_api_key(profile, Operation.TUNE)

    draft = await ctx.storage.load_draft(user_id, platform.value)
    if draft is None:
        raise DraftMissingError(platform)

    persona_prompt = resolve_persona_prompt(ctx.personas, profile.persona)

    await _consume_quota(ctx, user_id, 1)
    try:
        result = await _ai_call(
            application,
            ctx,
            Operation.TUNE,
            lambda: ctx.ai.tune_post(draft.content, platform, instruction, persona_prompt, api_key=api_key),
        )
    except TerminalError:
        await _refund_quota(ctx, user_id, 1)
        raise

    await ctx.storage.save_draft(user_id, platform.value, result.tuned_post)
    return result.tuned_post


async def run_analyze(application: Application, ctx: AppContext, user_id: int, platform: Platform) -> AnalysisResult:
    profile = await ctx.storage.get_or_create_profile(user_id)
    api_key = _require_api_key(profile, Operation.ANALYZE)

    draft = await ctx.storage.load_draft(user_id, platform.value)
    if draft is None:
        raise DraftMissingError(platform)

    await _consume_quota(ctx, user_id, 1)
    try:
        return await _ai_call(
            application,
            ctx,
            Operation.ANALYZE,
            lambda: ctx.ai.analyze_post(draft.content, platform, api_key=api_key),
        )
    except TerminalError:
        await _refund_quota(ctx, user_id, 1)
        raise
