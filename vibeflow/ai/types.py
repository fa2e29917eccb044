from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping


class Operation(str, Enum):
    SUMMARIZE = "summarize"
    GENERATE = "generate"
    TUNE = "tune"
    ANALYZE = "analyze"


class Platform(str, Enum):
    LINKEDIN = "linkedin"
    TWITTER = "twitter"
    YOUTUBE = "youtube"

    @classmethod
    def parse(cls, value: str | Platform) -> Platform:
        if isinstance(value, Platform):
            return value
        key = (value or "").strip().lower()
        if key == "x":
            key = "twitter"
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"unknown platform: {value!r}") from None


ALL_PLATFORMS: tuple[Platform, ...] = (Platform.LINKEDIN, Platform.TWITTER, Platform.YOUTUBE)


@dataclass(frozen=True)
class GenerationRequest:
    operation: Operation
    api_key: str = field(repr=False)
    fields: Mapping[str, str | bool]
    platform: Platform | None = None
    instruction: str | None = None


@dataclass(frozen=True)
class SummaryResult:
    summary: str
    title: str | None = None
    source: str = "TEXT"


@dataclass(frozen=True)
class PostResult:
    post: str


@dataclass(frozen=True)
class TunedPostResult:
    tuned_post: str


@dataclass(frozen=True)
class PostFlag:
    start: int
    end: int
    original_text: str
    issue: str
    suggestion: str


@dataclass(frozen=True)
class AnalysisResult:
    analysis: str
    flags: list[PostFlag]
