from __future__ import annotations

import logging

from vibeflow.content.errors import FetchError
from vibeflow.content.parser import (
    SOURCE_ERROR,
    SOURCE_TEXT,
    ParsedContent,
    youtube_placeholder,
    youtube_video_id,
)
from vibeflow.utils import is_url, truncate


logger = logging.getLogger(__name__)


class ContentService:
    def __init__(self, http_fetcher, max_chars: int) -> None:
        self._http = http_fetcher
        self._max_chars = max(1000, int(max_chars))

    async def acquire(self, content: str) -> ParsedContent:
        """Turn user input into text to summarize.

        Never raises for fetch failures: the failure is described in a
        placeholder body so summarization can still work from the URL.
        """
        content = (content or "").strip()
        if not is_url(content):
            return ParsedContent(title=None, body=truncate(content, self._max_chars), is_placeholder=False, source=SOURCE_TEXT)

        video_id = youtube_video_id(content)
        if video_id is not None:
            logger.info("youtube url detected video_id=%s", video_id)
            return youtube_placeholder(video_id)

        try:
            parsed = await self._http.fetch(content)
        except FetchError as e:
            logger.warning("content fetch failed url=%s err=%s", content, e)
            body = (
                f"Failed to fetch or parse content from the URL: {content}. Error: {e.reason}. "
                "Please try summarizing based on the URL itself or paste the text directly."
            )
            return ParsedContent(title=None, body=body, is_placeholder=True, source=SOURCE_ERROR)

        if len(parsed.body) > self._max_chars:
            return ParsedContent(
                title=parsed.title,
                body=truncate(parsed.body, self._max_chars),
                is_placeholder=parsed.is_placeholder,
                source=parsed.source,
            )
        return parsed

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
