from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Profile:
    user_id: int
    username: str | None
    gemini_api_key: str | None = field(repr=False)
    persona: str | None
    xp: int
    created_at: str
    updated_at: str

    @property
    def has_api_key(self) -> bool:
        return bool((self.gemini_api_key or "").strip())


@dataclass(frozen=True)
class Quota:
    user_id: int
    request_count: int
    quota_limit: int
    last_reset_at: str
    created_at: str

    @property
    def remaining(self) -> int:
        return max(0, self.quota_limit - self.request_count)


@dataclass(frozen=True)
class Draft:
    user_id: int
    platform: str
    content: str
    updated_at: str
