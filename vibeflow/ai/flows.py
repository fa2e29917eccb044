from __future__ import annotations

import asyncio
import json
import logging
from typing import Awaitable, Callable

import httpx

from vibeflow.ai.client import AIConfig, GeminiClient
from vibeflow.ai.errors import FailureClassification, TerminalError
from vibeflow.ai.prompts import (
    ANALYSIS_SCHEMA,
    POST_SCHEMA,
    SUMMARY_SCHEMA,
    TUNED_POST_SCHEMA,
    analyze_prompt,
    generate_prompt,
    summarize_prompt,
    tune_prompt,
)
from vibeflow.ai.retry import Failure, with_retry
from vibeflow.ai.types import (
    AnalysisResult,
    GenerationRequest,
    Operation,
    Platform,
    PostFlag,
    PostResult,
    SummaryResult,
    TunedPostResult,
)
from vibeflow.content.parser import SOURCE_TEXT, ParsedContent
from vibeflow.utils import truncate


logger = logging.getLogger(__name__)


RetryHook = Callable[[Operation, Failure, int, float], None]


_LABELS = {
    Operation.SUMMARIZE: "Summarization",
    Operation.GENERATE: "Post generation",
    Operation.TUNE: "Post tuning",
    Operation.ANALYZE: "Post analysis",
}

_ACTIONS = {
    Operation.SUMMARIZE: "summarization",
    Operation.GENERATE: "generating posts",
    Operation.TUNE: "tuning posts",
    Operation.ANALYZE: "analyzing posts",
}


def _label(request: GenerationRequest) -> str:
    label = _LABELS[request.operation]
    if request.platform is not None:
        label = f"{label} for {request.platform.value}"
    return label


def _context(request: GenerationRequest) -> str:
    op = request.operation
    if op is Operation.SUMMARIZE:
        return "summarization"
    platform = request.platform.value if request.platform is not None else "the post"
    if op is Operation.GENERATE:
        return f"post generation for {platform}"
    if op is Operation.TUNE:
        return f'tuning the {platform} post (instruction: "{truncate(request.instruction or "", 80)}")'
    return f"analysis ({platform})"


def _parse_platform(operation: Operation, value: Platform | str) -> Platform:
    try:
        return Platform.parse(value)
    except ValueError as e:
        raise TerminalError(
            FailureClassification.INVALID_INPUT,
            f"{_LABELS[operation]} failed due to invalid input: {e}. Supported platforms: linkedin, twitter, youtube.",
            operation=operation.value,
        ) from e


def require_credential(request: GenerationRequest) -> None:
    if not (request.api_key or "").strip():
        raise TerminalError(
            FailureClassification.INVALID_INPUT,
            f"API key is required for {_ACTIONS[request.operation]}. Please add your Gemini API key to your profile.",
            operation=request.operation.value,
            platform=request.platform.value if request.platform else None,
        )


def _require_text(request: GenerationRequest, name: str) -> None:
    value = request.fields.get(name)
    if not isinstance(value, str) or not value.strip():
        raise TerminalError(
            FailureClassification.INVALID_INPUT,
            f"{_label(request)} failed due to invalid input: {name} must not be empty.",
            operation=request.operation.value,
            platform=request.platform.value if request.platform else None,
        )


def terminal_error(request: GenerationRequest, failure: Failure, attempts: int) -> TerminalError:
    label = _label(request)
    context = _context(request)
    c = failure.classification

    if c is FailureClassification.INVALID_CREDENTIAL:
        message = f"{label} failed: invalid API key provided. Please check the Gemini API key in your profile."
    elif c is FailureClassification.INVALID_INPUT:
        message = (
            f"{label} failed due to invalid input or configuration: {failure.raw_message or 'Bad request'}. "
            "Please check your request and settings."
        )
    elif c is FailureClassification.RATE_LIMITED:
        message = (
            f"AI service rate limit/quota issues persisted during {context} after {attempts} attempts. "
            "Please check your Google API quota or wait before trying again."
        )
    elif c is FailureClassification.SERVICE_UNAVAILABLE:
        message = f"AI service was unavailable for {context} after {attempts} attempts. Please try again later."
    elif c is FailureClassification.EMPTY_RESULT:
        message = (
            f"{label} failed because the AI returned an empty result after {attempts} attempts. "
            "Please try again later."
        )
    else:
        message = (
            f"{label} failed due to an internal AI service error after {attempts} attempts. "
            f"Please try again later. Original error: {failure.raw_message}"
        )

    return TerminalError(
        c,
        message,
        operation=request.operation.value,
        platform=request.platform.value if request.platform else None,
        attempts=attempts,
        cause=failure.cause,
    )


def _validate_analysis(payload: dict) -> str | None:
    analysis = payload.get("analysis")
    flags = payload.get("flags")
    if not isinstance(analysis, str) or not analysis.strip() or not isinstance(flags, list):
        return None
    return json.dumps({"analysis": analysis, "flags": flags}, ensure_ascii=False)


def _parse_flags(post_content: str, raw_flags: list) -> list[PostFlag]:
    flags: list[PostFlag] = []
    n = len(post_content)
    for item in raw_flags:
        if not isinstance(item, dict):
            continue
        original = str(item.get("originalText") or item.get("original_text") or "")
        try:
            start = int(item.get("start", -1))
            end = int(item.get("end", -1))
        except (TypeError, ValueError):
            start, end = -1, -1

        # model offsets are often off by a few chars; trust the quoted text
        if original and post_content[max(0, start):max(0, end)] != original:
            found = post_content.find(original)
            if found >= 0:
                start, end = found, found + len(original)

        start = max(0, min(start, n))
        end = max(start, min(end, n))
        flags.append(
            PostFlag(
                start=start,
                end=end,
                original_text=original or post_content[start:end],
                issue=str(item.get("issue") or "").strip(),
                suggestion=str(item.get("suggestion") or "").strip(),
            )
        )
    return flags


class GenerationService:
    """Summarize / generate / tune / analyze on top of one retrying call path.

    Every public method validates the credential first, then builds a
    ``GeminiClient`` for that credential only and closes it when the call ends.
    """

    def __init__(
        self,
        cfg: AIConfig,
        content=None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        transport: httpx.AsyncBaseTransport | None = None,
        on_retry: RetryHook | None = None,
    ) -> None:
        self._cfg = cfg
        self._content = content
        self._sleep = sleep
        self._transport = transport
        self._on_retry = on_retry

    def _client(self, api_key: str) -> GeminiClient:
        return GeminiClient(self._cfg, api_key.strip(), transport=self._transport)

    async def _run(
        self,
        request: GenerationRequest,
        prompt: str,
        schema: dict,
        result_field: str,
        validate: Callable[[dict], str | None] | None = None,
    ) -> str:
        operation = request.operation.value

        def on_retry(failure: Failure, attempts: int, backoff_ms: float) -> None:
            if self._on_retry is not None:
                self._on_retry(request.operation, failure, attempts, backoff_ms)

        async with self._client(request.api_key) as client:

            async def attempt():
                return await client.invoke(operation, prompt, schema, result_field, validate)

            return await with_retry(
                f"{operation}({request.platform.value})" if request.platform else operation,
                attempt,
                self._cfg.retry,
                lambda failure, attempts: terminal_error(request, failure, attempts),
                sleep=self._sleep,
                on_retry=on_retry,
            )

    async def acquire_content(self, content: str) -> ParsedContent:
        if self._content is None:
            return ParsedContent(title=None, body=content, is_placeholder=False, source=SOURCE_TEXT)
        return await self._content.acquire(content)

    async def summarize(self, content: str, *, api_key: str) -> SummaryResult:
        request = GenerationRequest(Operation.SUMMARIZE, api_key, {"content": content})
        require_credential(request)
        _require_text(request, "content")

        parsed = await self.acquire_content(content)
        prompt = summarize_prompt(parsed.body, content.strip(), parsed.is_placeholder)
        summary = await self._run(request, prompt, SUMMARY_SCHEMA, "summary")
        return SummaryResult(summary=summary, title=parsed.title, source=parsed.source)

    async def generate_post(self, summary: str, platform: Platform | str, *, api_key: str) -> PostResult:
        platform = _parse_platform(Operation.GENERATE, platform)
        request = GenerationRequest(Operation.GENERATE, api_key, {"summary": summary}, platform=platform)
        require_credential(request)
        _require_text(request, "summary")

        post = await self._run(request, generate_prompt(summary, platform), POST_SCHEMA, "post")
        return PostResult(post=post)

    async def tune_post(
        self,
        post_content: str,
        platform: Platform | str,
        instruction: str,
        persona_prompt: str | None = None,
        *,
        api_key: str,
    ) -> TunedPostResult:
        platform = _parse_platform(Operation.TUNE, platform)
        request = GenerationRequest(
            Operation.TUNE,
            api_key,
            {"post_content": post_content, "instruction": instruction},
            platform=platform,
            instruction=instruction,
        )
        require_credential(request)
        _require_text(request, "post_content")
        _require_text(request, "instruction")

        prompt = tune_prompt(post_content, platform, instruction, persona_prompt)
        tuned = await self._run(request, prompt, TUNED_POST_SCHEMA, "tunedPost")
        return TunedPostResult(tuned_post=tuned)

    async def analyze_post(self, post_content: str, platform: Platform | str, *, api_key: str) -> AnalysisResult:
        platform = _parse_platform(Operation.ANALYZE, platform)
        request = GenerationRequest(Operation.ANALYZE, api_key, {"post_content": post_content}, platform=platform)
        require_credential(request)
        _require_text(request, "post_content")

        raw = await self._run(
            request,
            analyze_prompt(post_content, platform),
            ANALYSIS_SCHEMA,
            "analysis",
            validate=_validate_analysis,
        )
        data = json.loads(raw)
        return AnalysisResult(analysis=data["analysis"].strip(), flags=_parse_flags(post_content, data["flags"]))
