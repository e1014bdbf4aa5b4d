import http.client
import socket
import urllib.error
import urllib.request
from typing import List, Optional

import feedparser

from ..errors import TransientFetchError
from ..models import FeedItem
from .base import BaseSource


class RSSSource(BaseSource):
    """Public subreddit RSS feed source, no credentials needed"""

    def __init__(self, subreddit: str, timeout: float = 30, user_agent: Optional[str] = None):
        self.subreddit = subreddit
        self.url = f"https://www.reddit.com/r/{subreddit}/new/.rss"
        self.timeout = timeout
        self.user_agent = user_agent or "python:subreddit-monitor:0.1.0"

    def get_source_name(self) -> str:
        return "RSS"

    def fetch_latest(self, limit: int) -> List[FeedItem]:
        """Fetch and parse the RSS feed"""
        content = self._fetch_content(limit)
        return self._parse_content(content)[:limit]

    def _fetch_content(self, limit: int) -> str:
        """Fetch RSS content via HTTP"""
        req = urllib.request.Request(
            f"{self.url}?limit={limit}",
            headers={"User-Agent": self.user_agent}
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                return response.read().decode("utf-8")
        except (urllib.error.URLError, http.client.HTTPException, socket.timeout, ConnectionError) as e:
            raise TransientFetchError(f"RSS request failed: {e}") from e
        except UnicodeDecodeError as e:
            raise TransientFetchError(f"RSS response is not valid UTF-8: {e}") from e

    def _parse_content(self, content: str) -> List[FeedItem]:
        """Parse RSS content and return list of items"""
        feed = feedparser.parse(content)
        if feed.bozo and not feed.entries:
            raise TransientFetchError(f"RSS parse failed: {feed.get('bozo_exception')}")

        items = []
        for entry in feed.entries:
            # Reddit entry ids are fullnames like "t3_1abcde"
            item_id = entry.get("id") or ""
            if not item_id:
                continue
            body = entry.get("summary", "")
            if not body and entry.get("content"):
                body = entry.content[0].get("value", "")
            items.append(FeedItem(
                id=item_id,
                title=entry.get("title", ""),
                body=body,
                url=entry.get("link") or None
            ))
        return items
