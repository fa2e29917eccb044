from __future__ import annotations

import html

from vibeflow.ai.errors import GUIDANCE_CHECK_CONFIG, TerminalError
from vibeflow.ai.types import AnalysisResult, Platform
from vibeflow.storage.types import Quota
from vibeflow.utils import truncate


_PLATFORM_NAMES = {
    Platform.LINKEDIN: "LinkedIn",
    Platform.TWITTER: "X (Twitter)",
    Platform.YOUTUBE: "YouTube",
}


def _escape_text(s: str) -> str:
    return html.escape(s or "")


def platform_name(platform: Platform) -> str:
    return _PLATFORM_NAMES[platform]


def render_summary(summary: str, title: str | None = None, max_chars: int = 3800) -> str:
    lines: list[str] = []
    if title:
        lines.append(f"<b>{_escape_text(title)}</b>")
    lines.append("<b>Summary</b>")
    lines.append(_escape_text(summary))
    return truncate("\n".join(lines), max_chars)


def render_draft(platform: Platform, content: str, max_chars: int = 3800) -> str:
    text = f"<b>{platform_name(platform)}</b>\n{_escape_text(content)}"
    return truncate(text, max_chars)


def render_analysis(platform: Platform, result: AnalysisResult, max_chars: int = 3800) -> str:
    lines: list[str] = [f"<b>Analysis: {platform_name(platform)}</b>", _escape_text(result.analysis)]
    if result.flags:
        lines.append("<b>Flagged</b>")
        for f in result.flags[:10]:
            lines.append(f"- <i>{_escape_text(f.original_text)}</i>: {_escape_text(f.issue)}")
            if f.suggestion:
                lines.append(f"  try: {_escape_text(f.suggestion)}")
    return truncate("\n".join(lines), max_chars)


def render_quota(quota: Quota, xp: int) -> str:
    return (
        f"Requests used: {quota.request_count}/{quota.quota_limit}\n"
        f"Remaining: {quota.remaining}\n"
        f"XP: {xp}"
    )


def render_error(err: TerminalError) -> str:
    hint = "Check your settings (/setkey) and try again." if err.guidance == GUIDANCE_CHECK_CONFIG else "Please try again later."
    return f"<b>{_escape_text(err.status)}</b>\n{_escape_text(err.message)}\n<i>{hint}</i>"
