import logging
from typing import List, Sequence

from ..errors import TransientFetchError
from ..models import ChatUpdate, OtherUpdate, TextMessage
from ..registry import SubscriberRegistry
from .bot import TelegramBot

logger = logging.getLogger(__name__)

SUBSCRIBE_COMMAND = "/subscribe"
UNSUBSCRIBE_COMMAND = "/unsubscribe"

# getUpdates long-poll 等待时间（秒）
DEFAULT_WAIT_TIMEOUT = 10


class CommandHandler:
    """Reads inbound chat updates and applies /subscribe and /unsubscribe"""

    def __init__(
        self,
        bot: TelegramBot,
        registry: SubscriberRegistry,
        subreddit: str,
        wait_timeout: int = DEFAULT_WAIT_TIMEOUT
    ):
        self.bot = bot
        self.registry = registry
        self.subreddit = subreddit
        self.wait_timeout = wait_timeout

    @property
    def subscribe_reply(self) -> str:
        return f"Subscribed to r/{self.subreddit}"

    @property
    def unsubscribe_reply(self) -> str:
        return f"Unsubscribed from r/{self.subreddit}"

    async def fetch(self, offset: int) -> List[ChatUpdate]:
        """Long-poll for updates. A failed fetch is logged and reads as an empty batch."""
        try:
            return await self.bot.get_updates(offset, self.wait_timeout)
        except TransientFetchError as e:
            logger.error(f"❌ 获取 Telegram 消息失败 (offset={offset}): {e}")
            return []

    async def process(self, updates: Sequence[ChatUpdate], offset: int) -> int:
        """Apply commands in update_id order and return the next offset"""
        new_offset = offset
        for update in sorted(updates, key=lambda u: u.update_id):
            if update.update_id < offset:
                # 已处理过的旧消息
                continue
            if isinstance(update, TextMessage):
                await self._handle_text(update)
            elif isinstance(update, OtherUpdate):
                pass
            else:
                raise TypeError(f"Unknown chat update type: {type(update).__name__}")
            new_offset = update.update_id + 1
        return new_offset

    async def handle(self, offset: int) -> int:
        """One full chat cycle: fetch, apply, return the new offset"""
        updates = await self.fetch(offset)
        return await self.process(updates, offset)

    async def _handle_text(self, message: TextMessage) -> None:
        text = message.text
        if text == SUBSCRIBE_COMMAND:
            added = await self.registry.subscribe(message.chat_id)
            logger.info(f"➕ {message.chat_id} 订阅 ({'新增' if added else '已存在'})，当前 {len(self.registry)} 人")
            await self.bot.send_message(message.chat_id, self.subscribe_reply)
        elif text == UNSUBSCRIBE_COMMAND:
            removed = await self.registry.unsubscribe(message.chat_id)
            logger.info(f"➖ {message.chat_id} 取消订阅 ({'已移除' if removed else '未订阅'})，当前 {len(self.registry)} 人")
            await self.bot.send_message(message.chat_id, self.unsubscribe_reply)
        else:
            logger.debug(f"忽略消息 {message.update_id} from {message.chat_id}")
