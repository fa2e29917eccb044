from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, REGISTRY, start_http_server


logger = logging.getLogger(__name__)


@dataclass
class RuntimeStats:
    started_ts: float | None = None
    last_request_ts: float | None = None
    requests_total: int = 0
    consecutive_ai_failures: int = 0
    last_failure_classification: str | None = None


class Metrics:
    def __init__(self, registry: CollectorRegistry = REGISTRY) -> None:
        self.ai_calls_total = Counter("ai_calls_total", "AI calls", ["operation"], registry=registry)
        self.ai_failures_total = Counter(
            "ai_failures_total", "AI calls that ended in a terminal error", ["operation", "classification"], registry=registry
        )
        self.ai_retries_total = Counter("ai_retries_total", "AI call retries", ["operation"], registry=registry)
        self.ai_latency_seconds = Histogram(
            "ai_latency_seconds",
            "AI call latency including retries",
            ["operation"],
            buckets=(0.5, 1, 2, 5, 10, 20, 60, 120),
            registry=registry,
        )

        self.content_fetch_total = Counter("content_fetch_total", "Content acquisitions", ["source"], registry=registry)
        self.quota_rejections_total = Counter("quota_rejections_total", "Requests rejected by quota", registry=registry)

        self.consecutive_failures = Gauge("consecutive_failures", "Consecutive failures", ["type"], registry=registry)

    def start_server(self, bind: str, port: int) -> None:
        start_http_server(port, addr=bind)
        logger.info("metrics server started at %s:%s", bind, port)

    def set_consecutive(self, typ: str, value: int) -> None:
        self.consecutive_failures.labels(type=typ).set(value)


def write_status_json(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)
    tmp.replace(path)
