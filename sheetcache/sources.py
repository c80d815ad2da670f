"""
Feed Sources

Abstract source interface and the HTTP implementation that downloads CSV
exports from the remote spreadsheet service.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests

from .errors import FetchError
from .logging import Timer, get_logger

logger = get_logger(__name__)


class FeedSource(ABC):
    """
    Abstract base class for remote feed sources.

    Implementations return the raw payload text and raise FetchError for
    network failures and non-2xx responses. No retries at this layer.
    """

    @abstractmethod
    async def fetch_text(self, feed_key: str, url: str) -> str:
        """
        Download the payload of a feed.

        Args:
            feed_key: Feed being fetched, for error context
            url: Export URL of the feed

        Returns:
            Payload text

        Raises:
            FetchError: If the download fails
        """

    def get_source_info(self) -> Dict[str, Any]:
        return {"source": type(self).__name__}


class HttpFeedSource(FeedSource):
    """
    Downloads feeds with ``requests``, off the event loop.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None
    ):
        """
        Initialize the HTTP source.

        Args:
            session: Shared session (a new one if None)
            timeout: Request timeout in seconds; None waits indefinitely
        """
        self.session = session or requests.Session()
        self.timeout = timeout

    def _get(self, feed_key: str, url: str) -> str:
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise FetchError(f"Failed to fetch feed: {e}", feed_key) from e

        if not response.ok:
            raise FetchError(
                f"Failed to fetch feed: HTTP {response.status_code} {response.reason}",
                feed_key,
                status_code=response.status_code,
            )

        # requests assumes ISO-8859-1 for text/* without a charset; exports are UTF-8
        content_type = response.headers.get("Content-Type", "").lower()
        encoding = response.encoding if "charset=" in content_type and response.encoding else "utf-8"
        return response.content.decode(encoding, errors="replace")

    async def fetch_text(self, feed_key: str, url: str) -> str:
        with Timer(logger, "http_fetch", feed_key=feed_key):
            text = await asyncio.to_thread(self._get, feed_key, url)
        logger.debug("Downloaded feed", feed_key=feed_key, chars=len(text))
        return text

    def get_source_info(self) -> Dict[str, Any]:
        return {"source": "http", "timeout": self.timeout}
