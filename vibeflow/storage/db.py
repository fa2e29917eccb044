from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path

import aiosqlite

from vibeflow.storage.schema import SCHEMA_SQL
from vibeflow.storage.types import Draft, Profile, Quota
from vibeflow.utils import now_utc, one_month_before


logger = logging.getLogger(__name__)


XP_PER_REQUEST = 10


class QuotaExceededError(Exception):
    def __init__(self, user_id: int, limit: int):
        super().__init__(f"quota_exceeded: monthly limit of {limit} requests reached")
        self.user_id = user_id
        self.limit = limit


class Storage:
    def __init__(self, sqlite_path: Path, default_quota_limit: int = 100):
        self._path = sqlite_path
        self._default_quota_limit = default_quota_limit
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self._path.as_posix())
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA_SQL)
        await self._db.commit()

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("storage not connected")
        return self._db

    async def _ensure_profile_locked(self, user_id: int, username: str | None = None) -> None:
        now = now_utc().isoformat()
        conn = self._conn()
        await conn.execute(
            "INSERT INTO profiles(user_id, username, xp, created_at, updated_at) VALUES(?, ?, 0, ?, ?) "
            "ON CONFLICT(user_id) DO NOTHING",
            (user_id, username, now, now),
        )
        if username:
            await conn.execute(
                "UPDATE profiles SET username=? WHERE user_id=? AND (username IS NULL OR username != ?)",
                (username, user_id, username),
            )

    async def get_or_create_profile(self, user_id: int, username: str | None = None) -> Profile:
        async with self._lock:
            await self._ensure_profile_locked(user_id, username)
            await self._conn().commit()
            return await self._load_profile_locked(user_id)

    async def _load_profile_locked(self, user_id: int) -> Profile:
        cursor = await self._conn().execute("SELECT * FROM profiles WHERE user_id=?", (user_id,))
        row = await cursor.fetchone()
        if row is None:
            raise RuntimeError(f"profile not found: {user_id}")
        return Profile(**dict(row))

    async def set_api_key(self, user_id: int, api_key: str | None) -> None:
        key = (api_key or "").strip() or None
        if key is not None and len(key) > 255:
            raise ValueError("api key too long")
        async with self._lock:
            await self._ensure_profile_locked(user_id)
            await self._conn().execute(
                "UPDATE profiles SET gemini_api_key=?, updated_at=? WHERE user_id=?",
                (key, now_utc().isoformat(), user_id),
            )
            await self._conn().commit()

    async def set_persona(self, user_id: int, persona: str | None) -> None:
        async with self._lock:
            await self._ensure_profile_locked(user_id)
            await self._conn().execute(
                "UPDATE profiles SET persona=?, updated_at=? WHERE user_id=?",
                (persona or None, now_utc().isoformat(), user_id),
            )
            await self._conn().commit()

    async def _ensure_quota_locked(self, user_id: int, now: datetime) -> Quota:
        conn = self._conn()
        await self._ensure_profile_locked(user_id)
        await conn.execute(
            "INSERT INTO quotas(user_id, request_count, quota_limit, last_reset_at, created_at) "
            "VALUES(?, 0, ?, ?, ?) ON CONFLICT(user_id) DO NOTHING",
            (user_id, self._default_quota_limit, now.isoformat(), now.isoformat()),
        )
        cursor = await conn.execute("SELECT * FROM quotas WHERE user_id=?", (user_id,))
        row = await cursor.fetchone()
        return Quota(**dict(row))

    async def get_quota(self, user_id: int, now: datetime | None = None) -> Quota:
        """Current quota, with the monthly reset applied if it is due."""
        now = now or now_utc()
        async with self._lock:
            quota = await self._ensure_quota_locked(user_id, now)
            if datetime.fromisoformat(quota.last_reset_at) < one_month_before(now):
                await self._conn().execute(
                    "UPDATE quotas SET request_count=0, last_reset_at=? WHERE user_id=?",
                    (now.isoformat(), user_id),
                )
                quota = Quota(
                    user_id=quota.user_id,
                    request_count=0,
                    quota_limit=quota.quota_limit,
                    last_reset_at=now.isoformat(),
                    created_at=quota.created_at,
                )
            await self._conn().commit()
            return quota

    async def increment_quota(self, user_id: int, amount: int = 1, now: datetime | None = None) -> int:
        """Consume (or refund, with a negative amount) requests; returns the remaining quota.

        The counter restarts when the last reset is more than a calendar month
        old. Positive increments past the limit raise ``QuotaExceededError``;
        refunds never take the counter below zero.
        """
        now = now or now_utc()
        async with self._lock:
            conn = self._conn()
            quota = await self._ensure_quota_locked(user_id, now)

            count = quota.request_count
            last_reset = quota.last_reset_at
            if datetime.fromisoformat(last_reset) < one_month_before(now):
                logger.info("quota reset user_id=%s", user_id)
                count = 0
                last_reset = now.isoformat()

            new_count = count + amount
            if amount > 0 and new_count > quota.quota_limit:
                await conn.rollback()
                raise QuotaExceededError(user_id, quota.quota_limit)

            xp_gain = 0
            if new_count < 0:
                new_count = 0
            elif amount > 0:
                xp_gain = amount * XP_PER_REQUEST

            await conn.execute(
                "UPDATE quotas SET request_count=?, last_reset_at=? WHERE user_id=?",
                (new_count, last_reset, user_id),
            )
            if xp_gain:
                await conn.execute(
                    "UPDATE profiles SET xp = xp + ?, updated_at=? WHERE user_id=?",
                    (xp_gain, now.isoformat(), user_id),
                )
            await conn.commit()
            return quota.quota_limit - new_count

    async def save_summary(self, user_id: int, source: str, summary: str) -> None:
        async with self._lock:
            await self._ensure_profile_locked(user_id)
            await self._conn().execute(
                "INSERT INTO summaries(user_id, source, summary, created_at) VALUES(?, ?, ?, ?) "
                "ON CONFLICT(user_id) DO UPDATE SET source=excluded.source, summary=excluded.summary, "
                "created_at=excluded.created_at",
                (user_id, source, summary, now_utc().isoformat()),
            )
            await self._conn().commit()

    async def load_summary(self, user_id: int) -> str | None:
        async with self._lock:
            cursor = await self._conn().execute("SELECT summary FROM summaries WHERE user_id=?", (user_id,))
            row = await cursor.fetchone()
            return None if row is None else str(row["summary"])

    async def save_draft(self, user_id: int, platform: str, content: str) -> None:
        async with self._lock:
            await self._ensure_profile_locked(user_id)
            await self._conn().execute(
                "INSERT INTO drafts(user_id, platform, content, updated_at) VALUES(?, ?, ?, ?) "
                "ON CONFLICT(user_id, platform) DO UPDATE SET content=excluded.content, updated_at=excluded.updated_at",
                (user_id, platform, content, now_utc().isoformat()),
            )
            await self._conn().commit()

    async def load_draft(self, user_id: int, platform: str) -> Draft | None:
        async with self._lock:
            cursor = await self._conn().execute(
                "SELECT * FROM drafts WHERE user_id=? AND platform=?",
                (user_id, platform),
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            return Draft(**dict(row))

    async def list_drafts(self, user_id: int) -> list[Draft]:
        async with self._lock:
            cursor = await self._conn().execute(
                "SELECT * FROM drafts WHERE user_id=? ORDER BY platform ASC",
                (user_id,),
            )
            rows = await cursor.fetchall()
            return [Draft(**dict(r)) for r in rows]
