import logging
from typing import List

from .database import Database
from .store import CursorStore

logger = logging.getLogger(__name__)


class SubscriberRegistry:
    """In-memory set of subscribed chat ids, mirrored to the subscribers table"""

    def __init__(self, db: Database, store: CursorStore):
        self.db = db
        self.store = store
        self._members = set(db.get_subscribers())

    def __contains__(self, chat_id: int) -> bool:
        return chat_id in self._members

    def __len__(self) -> int:
        return len(self._members)

    def snapshot(self) -> List[int]:
        """Copy of the current members, safe to iterate while the registry changes"""
        return sorted(self._members)

    async def subscribe(self, chat_id: int) -> bool:
        """Add chat_id. Returns True if it was not subscribed yet."""
        if chat_id in self._members:
            return False
        self._members.add(chat_id)
        if not await self.store.write(f"subscribe {chat_id}", self.db.add_subscriber, chat_id):
            logger.error(f"订阅 {chat_id} 未能持久化，仅保留在内存中")
        return True

    async def unsubscribe(self, chat_id: int) -> bool:
        """Remove chat_id. Unknown ids are a no-op returning False."""
        if chat_id not in self._members:
            return False
        self._members.discard(chat_id)
        if not await self.store.write(f"unsubscribe {chat_id}", self.db.remove_subscriber, chat_id):
            logger.error(f"取消订阅 {chat_id} 未能持久化，仅在内存中生效")
        return True
