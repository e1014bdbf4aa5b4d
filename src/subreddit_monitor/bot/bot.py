import asyncio
import logging
from typing import List, Optional

from telegram import Bot, Update
from telegram.error import Forbidden, NetworkError, RetryAfter, TelegramError, TimedOut
from telegram.request import HTTPXRequest

from ..errors import TransientFetchError
from ..models import ChatUpdate, FeedItem, OtherUpdate, TextMessage

logger = logging.getLogger(__name__)

# Telegram API 超时配置
CONNECT_TIMEOUT = 30.0  # 连接超时（秒）
READ_TIMEOUT = 30.0     # 读取超时（秒），long-poll 的 timeout 会额外叠加
WRITE_TIMEOUT = 30.0    # 写入超时（秒）
POOL_TIMEOUT = 10.0     # 连接池超时（秒）

# 重试配置
MAX_RETRIES = 3         # 最大重试次数
RETRY_DELAY = 2.0       # 重试间隔（秒）


def compose_message(item: FeedItem) -> str:
    """Title, then the link on its own line when there is one"""
    if item.url:
        return f"{item.title}\n{item.url}"
    return item.title


def to_chat_update(update: Update) -> ChatUpdate:
    """Map a telegram Update onto TextMessage / OtherUpdate"""
    message = update.message
    if message is not None and message.text is not None:
        return TextMessage(update_id=update.update_id, chat_id=message.chat.id, text=message.text)
    return OtherUpdate(update_id=update.update_id)


def _retry_after_seconds(error: RetryAfter) -> float:
    delay = error.retry_after
    if hasattr(delay, "total_seconds"):
        return delay.total_seconds()
    return float(delay)


class TelegramBot:
    """Telegram bot wrapper: long-poll for updates, send with retry"""

    def __init__(self, token: str, bot: Optional[Bot] = None):
        self.token = token
        self.bot = bot or Bot(
            token=token,
            request=self._build_request(),
            get_updates_request=self._build_request()
        )

    @staticmethod
    def _build_request() -> HTTPXRequest:
        # 配置自定义超时的 HTTP 请求
        return HTTPXRequest(
            connect_timeout=CONNECT_TIMEOUT,
            read_timeout=READ_TIMEOUT,
            write_timeout=WRITE_TIMEOUT,
            pool_timeout=POOL_TIMEOUT,
        )

    async def start(self) -> None:
        await self.bot.initialize()
        me = self.bot.bot
        logger.info(f"🤖 Telegram Bot 已连接: @{me.username}")

    async def stop(self) -> None:
        try:
            await self.bot.shutdown()
        except TelegramError as e:
            logger.error(f"停止 Bot 时出错: {e}")

    async def get_updates(self, offset: int, timeout: int) -> List[ChatUpdate]:
        """Long-poll for updates with update_id >= offset.

        Raises TransientFetchError on any Telegram failure.
        """
        try:
            updates = await self.bot.get_updates(
                offset=offset,
                timeout=timeout,
                allowed_updates=[Update.MESSAGE]
            )
        except TelegramError as e:
            raise TransientFetchError(f"getUpdates failed: {e}") from e
        return [to_chat_update(update) for update in updates]

    async def send_message(self, chat_id: int, text: str) -> bool:
        """带重试机制的消息发送

        Returns:
            True: 发送成功
            False: 发送失败（用户封禁或其他错误）
        """
        last_error = None

        for attempt in range(MAX_RETRIES):
            try:
                await self.bot.send_message(chat_id=chat_id, text=text)
                return True
            except Forbidden:
                # 用户封禁了 Bot，不需要重试
                logger.warning(f"用户 {chat_id} 已封禁 Bot")
                return False
            except RetryAfter as e:
                # 触发限流，按服务端要求等待
                last_error = e
                if attempt < MAX_RETRIES - 1:
                    await asyncio.sleep(_retry_after_seconds(e))
            except (TimedOut, NetworkError) as e:
                # 网络问题，重试
                last_error = e
                if attempt < MAX_RETRIES - 1:
                    logger.warning(f"发送超时 {chat_id}，第 {attempt + 1} 次重试...")
                    await asyncio.sleep(RETRY_DELAY)
            except TelegramError as e:
                # 其他 Telegram 错误，不重试
                logger.error(f"发送失败 {chat_id}: {e}")
                return False

        # 所有重试都失败
        logger.error(f"发送失败 {chat_id}，已重试 {MAX_RETRIES} 次: {last_error}")
        return False

    async def send_item(self, chat_id: int, item: FeedItem) -> bool:
        """Send a feed item notification"""
        return await self.send_message(chat_id, compose_message(item))

    async def send_admin_alert(self, chat_id: int, message: str) -> bool:
        """Send admin alert message"""
        return await self.send_message(chat_id, f"🚨 系统告警\n\n{message}")
