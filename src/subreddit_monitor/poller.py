"""Feed polling: dedup against the last seen marker, keyword filtering, backoff.

Two entry points share the same cycle semantics:

- ``FeedPoller.poll`` runs a single fetch and gives up on failure; the caller
  retries on its next tick.
- ``FeedPoller.stream`` is an endless async generator that fetches every
  ``poll_interval`` seconds with per-attempt timeout and bounded exponential
  backoff.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Iterable, Iterator, List, Optional, Tuple

from .errors import TransientFetchError
from .matcher.keyword import BaseMatcher
from .models import FeedItem, feed_sort_key
from .retry import RetryPolicy
from .source.base import BaseSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PollResult:
    """Outcome of one poll cycle"""
    items: Tuple[FeedItem, ...]
    marker: Optional[str]
    fetched: int = 0
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def select_new(
    batch: Iterable[FeedItem], marker: Optional[str], matcher: BaseMatcher
) -> Iterator[FeedItem]:
    """Lazily yield items newer than marker that pass the matcher, in arrival order"""
    floor = feed_sort_key(marker) if marker is not None else None
    for item in batch:
        if floor is not None and item.sort_key <= floor:
            continue
        if matcher.match(item):
            yield item


def next_marker(batch: Iterable[FeedItem], marker: Optional[str]) -> Optional[str]:
    """Highest id over the whole batch; never moves backwards"""
    best = marker
    best_key = feed_sort_key(marker) if marker is not None else -1
    for item in batch:
        key = item.sort_key
        if key > best_key:
            best, best_key = item.id, key
    return best


class FeedPoller:
    """Fetches new feed items since the dedup marker and filters them"""

    def __init__(
        self,
        source: BaseSource,
        matcher: BaseMatcher,
        limit: int = 20,
        poll_interval: float = 30,
        fetch_timeout: float = 30,
        retry_policy: Optional[RetryPolicy] = None
    ):
        self.source = source
        self.matcher = matcher
        self.limit = limit
        self.poll_interval = poll_interval
        self.fetch_timeout = fetch_timeout
        self.retry_policy = retry_policy or RetryPolicy()

    def build_result(self, batch: List[FeedItem], marker: Optional[str]) -> PollResult:
        return PollResult(
            items=tuple(select_new(batch, marker, self.matcher)),
            marker=next_marker(batch, marker),
            fetched=len(batch)
        )

    def poll(self, marker: Optional[str]) -> PollResult:
        """Run one blocking cycle. A failed fetch leaves the marker untouched."""
        try:
            batch = self.source.fetch_latest(self.limit)
        except TransientFetchError as e:
            logger.error(f"❌ 拉取失败 ({self.source.get_source_name()}): {e}")
            return PollResult(items=(), marker=marker, error=e)
        except Exception as e:
            logger.exception(f"❌ 拉取出错 ({self.source.get_source_name()})")
            return PollResult(items=(), marker=marker, error=e)
        return self.build_result(batch, marker)

    async def poll_async(self, marker: Optional[str]) -> PollResult:
        """``poll`` in the default executor so the event loop keeps running"""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.poll, marker)

    async def _fetch_once(self) -> List[FeedItem]:
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, self.source.fetch_latest, self.limit),
                timeout=self.fetch_timeout
            )
        except asyncio.TimeoutError as e:
            raise TransientFetchError(f"fetch timed out after {self.fetch_timeout}s") from e

    async def fetch_with_retry(self) -> List[FeedItem]:
        """Fetch with backoff. Raises TransientFetchError once attempts are exhausted."""
        delays = self.retry_policy.delays()
        attempts = self.retry_policy.max_attempts
        last_error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            try:
                return await self._fetch_once()
            except TransientFetchError as e:
                last_error = e
                if attempt < attempts:
                    delay = next(delays)
                    logger.warning(f"拉取失败 (尝试 {attempt}/{attempts})，{delay:.1f} 秒后重试: {e}")
                    await asyncio.sleep(delay)
        raise TransientFetchError(f"gave up after {attempts} attempts: {last_error}") from last_error

    async def stream(self, marker: Optional[str]) -> AsyncIterator[PollResult]:
        """Yield one PollResult per tick, forever. Close with ``aclose()``."""
        first = True
        while True:
            if not first:
                await asyncio.sleep(self.poll_interval)
            first = False

            try:
                batch = await self.fetch_with_retry()
                result = self.build_result(batch, marker)
            except TransientFetchError as e:
                logger.error(f"❌ 本轮拉取放弃 ({self.source.get_source_name()}): {e}")
                yield PollResult(items=(), marker=marker, error=e)
                continue
            except Exception as e:
                # 非预期错误只放弃本轮，stream 继续
                logger.exception(f"❌ 本轮拉取出错 ({self.source.get_source_name()})")
                yield PollResult(items=(), marker=marker, error=e)
                continue

            marker = result.marker
            yield result
