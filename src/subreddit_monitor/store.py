"""Typed cursor persistence on top of the settings table.

Writes are retried with a short backoff and logged on failure instead of
raising, so a transient storage error never takes the loop down.
"""
import asyncio
import logging
import sqlite3
from typing import Callable, Optional

from .database import Database
from .retry import WRITE_RETRY, RetryPolicy

logger = logging.getLogger(__name__)

OFFSET_KEY = "offset"
MARKER_KEY = "last_feed_id"


class CursorStore:
    """Durable chat offset and feed dedup marker"""

    def __init__(self, db: Database, write_policy: RetryPolicy = WRITE_RETRY):
        self.db = db
        self.write_policy = write_policy

    def load_offset(self) -> int:
        value = self.db.get_setting(OFFSET_KEY)
        if value is None:
            return 0
        try:
            return int(value)
        except ValueError:
            logger.warning(f"Stored offset {value!r} is not an integer, starting from 0")
            return 0

    def load_marker(self) -> Optional[str]:
        return self.db.get_setting(MARKER_KEY) or None

    async def save_offset(self, offset: int) -> bool:
        return await self.write(f"offset={offset}", self.db.set_setting, OFFSET_KEY, str(offset))

    async def save_marker(self, marker: Optional[str]) -> bool:
        if marker is None:
            return await self.write("marker=None", self.db.delete_setting, MARKER_KEY)
        return await self.write(f"marker={marker}", self.db.set_setting, MARKER_KEY, marker)

    async def write(self, description: str, func: Callable, *args) -> bool:
        """Run a database write, retrying on sqlite errors. Returns False if every attempt failed."""
        delays = self.write_policy.delays()
        for attempt in range(1, self.write_policy.max_attempts + 1):
            try:
                func(*args)
                return True
            except sqlite3.Error as e:
                if attempt == self.write_policy.max_attempts:
                    logger.error(f"❌ 写入失败 ({description})，已重试 {attempt} 次: {e}")
                    return False
                logger.warning(f"写入失败 ({description})，第 {attempt} 次重试: {e}")
                await asyncio.sleep(next(delays))
        return False
