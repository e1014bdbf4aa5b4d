import logging
import time
from typing import List, Optional

import requests

from ..errors import TransientFetchError
from ..models import FeedItem
from .base import BaseSource

logger = logging.getLogger(__name__)


class RedditSource(BaseSource):
    """Reddit OAuth JSON API source (script app, password grant)"""

    TOKEN_URL = "https://www.reddit.com/api/v1/access_token"
    API_URL = "https://oauth.reddit.com"
    DEFAULT_USER_AGENT = "python:subreddit-monitor:0.1.0"

    _token_refresh_margin: int = 60  # 提前 60 秒刷新 token

    def __init__(
        self,
        subreddit: str,
        client_id: str,
        client_secret: str,
        username: str,
        password: str,
        timeout: float = 30,
        user_agent: Optional[str] = None,
        session: Optional[requests.Session] = None
    ):
        self.subreddit = subreddit
        self.client_id = client_id
        self.client_secret = client_secret
        self.username = username
        self.password = password
        self.timeout = timeout
        self.user_agent = user_agent or self.DEFAULT_USER_AGENT
        self.session = session or requests.Session()
        self._token: Optional[str] = None
        self._token_expires_at: float = 0

    def get_source_name(self) -> str:
        return "Reddit API"

    def fetch_latest(self, limit: int) -> List[FeedItem]:
        """Fetch the newest submissions of the subreddit"""
        token = self._get_token()
        try:
            response = self.session.get(
                f"{self.API_URL}/r/{self.subreddit}/new",
                params={"limit": limit, "raw_json": 1},
                headers={
                    "Authorization": f"bearer {token}",
                    "User-Agent": self.user_agent,
                },
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise TransientFetchError(f"Reddit request failed: {e}") from e

        if response.status_code == 401:
            # token 失效，下次重新获取
            self._token = None
            raise TransientFetchError("Reddit rejected the access token (401)")
        if response.status_code == 429:
            raise TransientFetchError("Reddit rate limit exceeded (429)")
        try:
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise TransientFetchError(f"Reddit listing failed: {e}") from e

        return self._parse_listing(data)

    def _get_token(self) -> str:
        """Return a cached bearer token, requesting a new one when close to expiry"""
        now = time.time()
        if self._token and now < self._token_expires_at - self._token_refresh_margin:
            return self._token

        try:
            response = self.session.post(
                self.TOKEN_URL,
                auth=(self.client_id, self.client_secret),
                data={
                    "grant_type": "password",
                    "username": self.username,
                    "password": self.password,
                },
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout
            )
            response.raise_for_status()
            result = response.json()
        except (requests.RequestException, ValueError) as e:
            raise TransientFetchError(f"Reddit authentication failed: {e}") from e

        token = result.get("access_token") if isinstance(result, dict) else None
        if not token:
            error = result.get("error") if isinstance(result, dict) else None
            raise TransientFetchError(f"Reddit authentication failed: {error or 'no access_token'}")

        self._token = token
        self._token_expires_at = now + float(result.get("expires_in", 3600))
        logger.info(f"Reddit access token refreshed for u/{self.username}")
        return token

    def _parse_listing(self, data) -> List[FeedItem]:
        """Parse a Reddit listing response"""
        listing = data.get("data") if isinstance(data, dict) else None
        children = listing.get("children") if isinstance(listing, dict) else None
        if not isinstance(children, list):
            raise TransientFetchError("Unexpected Reddit listing payload")

        items = []
        for child in children:
            post = child.get("data") if isinstance(child, dict) else None
            if not isinstance(post, dict):
                logger.warning(f"跳过无法解析的 listing 条目: {child!r:.80}")
                continue
            post_id = post.get("id")
            if not post_id:
                continue
            items.append(FeedItem(
                id=str(post_id),
                title=post.get("title") or "",
                body=post.get("selftext") or "",
                url=post.get("url") or None
            ))
        return items
