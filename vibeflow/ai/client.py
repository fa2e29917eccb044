from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx

from vibeflow.ai.classify import classify
from vibeflow.ai.errors import EmptyResultError, UpstreamError
from vibeflow.ai.retry import AttemptOutcome, Failure, RetryPolicy, Success
from vibeflow.utils import redact, truncate


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AIConfig:
    base_url: str
    model: str
    timeout_seconds: int
    temperature: float
    retry: RetryPolicy = field(default_factory=RetryPolicy)


def _extract_json(text: str) -> dict | None:
    text = (text or "").strip()
    if not text:
        return None
    try:
        data = json.loads(text)
        if isinstance(data, dict):
            return data
    except ValueError:
        pass

    # best-effort: models sometimes wrap the object in prose or a code fence
    m = re.search(r"\{[\s\S]*\}", text)
    if not m:
        return None
    try:
        data = json.loads(m.group(0))
        if isinstance(data, dict):
            return data
    except ValueError:
        return None
    return None


def _candidate_text(data: Any) -> str:
    if not isinstance(data, dict):
        raise ValueError(f"unexpected response body: {type(data).__name__}")
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
        return ""
    content = candidates[0].get("content")
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return ""
    return "".join(str(p.get("text") or "") for p in parts if isinstance(p, dict))


def _upstream_error(resp: httpx.Response) -> UpstreamError:
    message = f"HTTP {resp.status_code}"
    status = None
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        err = body["error"]
        message = str(err.get("message") or message)
        status = err.get("status")
    elif resp.text:
        message = f"{message}: {truncate(resp.text.strip(), 240)}"
    return UpstreamError(message, status_code=resp.status_code, status=status)


class GeminiClient:
    """Gemini ``generateContent`` client bound to a single credential.

    Built per request from the caller's key and closed when the request ends,
    so no client state is shared between users.
    """

    def __init__(self, cfg: AIConfig, api_key: str, transport: httpx.AsyncBaseTransport | None = None):
        self._cfg = cfg
        self._api_key = api_key
        self._client = httpx.AsyncClient(
            base_url=cfg.base_url.rstrip("/"),
            timeout=httpx.Timeout(cfg.timeout_seconds),
            headers={
                "x-goog-api-key": api_key,
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    async def __aenter__(self) -> GeminiClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def generate(self, prompt: str, schema: dict | None = None) -> str:
        payload: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": self._cfg.temperature},
        }
        if schema is not None:
            payload["generationConfig"]["responseMimeType"] = "application/json"
            payload["generationConfig"]["responseSchema"] = schema

        resp = await self._client.post(f"/v1beta/models/{self._cfg.model}:generateContent", json=payload)
        if resp.status_code >= 400:
            raise _upstream_error(resp)
        return _candidate_text(resp.json())

    async def invoke(
        self,
        operation: str,
        prompt: str,
        schema: dict,
        result_field: str,
        validate: Callable[[dict], str | None] | None = None,
    ) -> AttemptOutcome:
        """Exactly one call. Never retries, never sleeps."""
        try:
            text = await self.generate(prompt, schema)
            payload = _extract_json(text)
            if payload is None:
                payload = {result_field: text}
            if validate is not None:
                result = validate(payload)
            else:
                result = str(payload.get(result_field) or "")
            if not result or not result.strip():
                raise EmptyResultError(operation)
            return Success(result)
        except (UpstreamError, EmptyResultError, httpx.HTTPError, ValueError) as e:
            classification = classify(e)
            raw_status = getattr(e, "status", None) or getattr(e, "status_code", None)
            logger.debug("%s attempt failed: %s", operation, classification.value)
            return Failure(
                classification=classification,
                raw_message=redact(str(e), self._api_key) or type(e).__name__,
                raw_status=raw_status,
                cause=e,
            )
