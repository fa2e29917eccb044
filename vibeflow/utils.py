from __future__ import annotations

import calendar
import re
from datetime import datetime, timezone
from urllib.parse import urlparse


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def one_month_before(dt: datetime) -> datetime:
    # calendar month; clamp the day (Mar 31 -> Feb 28/29)
    year, month = dt.year, dt.month - 1
    if month == 0:
        year, month = year - 1, 12
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def is_url(text: str) -> bool:
    text = (text or "").strip()
    if not text or any(c.isspace() for c in text):
        return False
    parsed = urlparse(text)
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def collapse_ws(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[ \t\f\v]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[: max_chars - 1] + "…"


def redact(text: str, secret: str | None) -> str:
    if not text or not secret:
        return text
    return text.replace(secret, "***")
