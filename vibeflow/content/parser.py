from __future__ import annotations

import re
from dataclasses import dataclass

from selectolax.parser import HTMLParser

from vibeflow.utils import collapse_ws


SOURCE_TEXT = "TEXT"
SOURCE_HTTP = "HTTP"
SOURCE_YOUTUBE = "YOUTUBE"
SOURCE_ERROR = "ERROR"

MIN_BODY_CHARS = 100
MIN_NON_HTML_CHARS = 50


@dataclass(frozen=True)
class ParsedContent:
    title: str | None
    body: str
    is_placeholder: bool
    source: str


_YOUTUBE_RE = re.compile(
    r"^(?:https?://)?(?:www\.|m\.)?(?:youtube\.com/(?:watch\?v=|embed/|v/|shorts/)|youtu\.be/)(?P<id>[A-Za-z0-9_-]{11})"
)


def youtube_video_id(url: str) -> str | None:
    m = _YOUTUBE_RE.match((url or "").strip())
    if not m:
        return None
    return m.group("id")


def youtube_placeholder(video_id: str) -> ParsedContent:
    body = (
        f"Fetching transcripts for YouTube videos (ID: {video_id}) is not supported.\n\n"
        "Generate posts based on the video's URL and any context available."
    )
    return ParsedContent(title="YouTube Video", body=body, is_placeholder=True, source=SOURCE_YOUTUBE)


def clean_title(title: str) -> str:
    title = re.sub(r"&[^;\s]+;", "", title)
    title = re.sub(r"\s+", " ", title)
    # drop the " | Site Name" suffix
    title = re.sub(r"\|.*$", "", title)
    return title.strip()


def extract_title(tree: HTMLParser) -> str:
    node = tree.css_first("title")
    if node is None:
        return "Untitled Webpage"
    return clean_title(node.text()) or "Untitled Webpage"


def extract_main_text(html: str) -> tuple[str, str]:
    """Return ``(title, body)`` of a page.

    Tries ``<main>``, then ``<article>``, then falls back to the page's ``<p>``
    elements joined by blank lines.
    """
    tree = HTMLParser(html)
    title = extract_title(tree)

    for node in tree.css("script, style, noscript"):
        node.decompose()

    for selector in ("main", "article"):
        node = tree.css_first(selector)
        if node is None:
            continue
        text = collapse_ws(node.text(separator=" "))
        if text:
            return title, re.sub(r"\s+", " ", text)

    paragraphs = [collapse_ws(p.text(separator=" ")) for p in tree.css("p")]
    body = "\n\n".join(p for p in paragraphs if p)
    return title, body
