import asyncio
import logging
import logging.handlers
from datetime import datetime
from pathlib import Path
from typing import AsyncIterator, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .bot.bot import TelegramBot
from .bot.handlers import CommandHandler
from .config import AppConfig, LoopMode, SourceType
from .database import Database
from .matcher.keyword import KeywordMatcher
from .models import FeedItem
from .poller import FeedPoller, PollResult
from .registry import SubscriberRegistry
from .source import BaseSource, RedditSource, RSSSource
from .store import CursorStore


def setup_logging(log_dir: Optional[Path] = None) -> None:
    """配置日志系统

    - 输出到 stdout（供 journald 收集）
    - 输出到文件（按天轮转，保留30天）
    """
    log_format = "%(asctime)s - %(levelname)s - %(message)s"
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)

    # 清除已有的 handlers（避免重复添加）
    root_logger.handlers.clear()

    # Handler 1: stdout（供 systemd/journald）
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(log_format))
    root_logger.addHandler(stream_handler)

    # Handler 2: 文件（按天轮转）
    if log_dir:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / "app.log"
        file_handler = logging.handlers.TimedRotatingFileHandler(
            filename=log_file,
            when="midnight",      # 每天午夜轮转
            interval=1,
            backupCount=30,       # 保留30天
            encoding="utf-8"
        )
        file_handler.setFormatter(logging.Formatter(log_format))
        file_handler.suffix = "%Y-%m-%d"  # 备份文件后缀格式
        root_logger.addHandler(file_handler)

    # Suppress noisy library logs
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("telegram").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)

# Batch sending configuration
BATCH_SIZE = 25  # Number of messages to send concurrently
BATCH_INTERVAL = 1.0  # Seconds between batches (Telegram rate limit ~30/sec)


def create_source(config: AppConfig) -> BaseSource:
    """Factory function to create the feed source based on config"""
    if config.source_type == SourceType.RSS:
        return RSSSource(
            subreddit=config.subreddit,
            timeout=config.fetch_timeout,
            user_agent=config.user_agent
        )
    return RedditSource(
        subreddit=config.subreddit,
        client_id=config.reddit_client_id,
        client_secret=config.reddit_client_secret,
        username=config.reddit_username,
        password=config.reddit_password,
        timeout=config.fetch_timeout,
        user_agent=config.user_agent
    )


async def _next_result(stream: AsyncIterator[PollResult]) -> PollResult:
    return await stream.__anext__()


class Application:
    """Drives the chat and feed producers and fans matched items out to subscribers"""

    def __init__(
        self,
        config: AppConfig,
        db: Database,
        bot: Optional[TelegramBot] = None,
        source: Optional[BaseSource] = None
    ):
        self.config = config
        self.tag = f"r/{config.subreddit}"
        self.db = db
        self.store = CursorStore(db)
        self.registry = SubscriberRegistry(db, self.store)
        self.bot = bot or TelegramBot(config.telegram_token)
        self.source = source or create_source(config)
        self.matcher = KeywordMatcher(config.keywords)
        self.poller = FeedPoller(
            source=self.source,
            matcher=self.matcher,
            limit=config.fetch_limit,
            poll_interval=config.poll_interval,
            fetch_timeout=config.fetch_timeout,
            retry_policy=config.retry_policy
        )
        self.command_handler = CommandHandler(
            bot=self.bot,
            registry=self.registry,
            subreddit=config.subreddit,
            wait_timeout=config.long_poll_timeout
        )
        self.scheduler: Optional[AsyncIOScheduler] = None

        # 启动时读取持久化的游标
        self.offset = self.store.load_offset()
        self.marker = self.store.load_marker()

        self._fetch_fail_count = 0  # 拉取失败计数器
        self._fetch_fail_notified = False  # 是否已发送拉取失败告警

    async def _notify_admin(self, message: str) -> None:
        """Send notification to admin"""
        if not self.config.admin_chat_id:
            logger.warning(f"[{self.tag}] 管理员 chat_id 未配置，无法发送告警")
            return

        if await self.bot.send_admin_alert(self.config.admin_chat_id, message):
            logger.info(f"[{self.tag}] 📢 已发送管理员告警")
        else:
            logger.error(f"[{self.tag}] 发送管理员告警失败")

    async def _send_batch(self, chat_ids: List[int], item: FeedItem) -> int:
        """Send one item to a batch of chats concurrently.

        Returns:
            Number of successfully sent notifications
        """
        async def send_one(chat_id: int) -> bool:
            try:
                return await self.bot.send_item(chat_id, item)
            except Exception as e:
                logger.error(f"[{self.tag}] 发送失败 {chat_id}: {e}")
                return False

        results = await asyncio.gather(
            *[send_one(chat_id) for chat_id in chat_ids],
            return_exceptions=True
        )
        return sum(1 for r in results if r is True)

    async def broadcast(self, item: FeedItem) -> int:
        """Fan an item out to every current subscriber; returns the number delivered"""
        subscribers = self.registry.snapshot()
        keywords = self.matcher.find_matching_keywords(item)
        logger.info(
            f"[{self.tag}] 📝 {item.title} (关键词: {', '.join(keywords)}) → {len(subscribers)} 位订阅者"
        )

        total_sent = 0
        for i in range(0, len(subscribers), BATCH_SIZE):
            batch = subscribers[i:i + BATCH_SIZE]
            total_sent += await self._send_batch(batch, item)

            # Rate limit between batches
            if i + BATCH_SIZE < len(subscribers):
                await asyncio.sleep(BATCH_INTERVAL)
        return total_sent

    async def handle_poll_result(self, result: PollResult) -> None:
        """Dispatch matched items, then persist the marker"""
        if not result.ok:
            await self._record_fetch_failure(result.error)
            return

        total_sent = 0
        for item in result.items:
            total_sent += await self.broadcast(item)

        if result.marker != self.marker:
            self.marker = result.marker
            await self.store.save_marker(self.marker)

        logger.info(
            f"[{self.tag}] ✅ 拉取完成: 共 {result.fetched} 条, 匹配 {len(result.items)} 条, "
            f"推送 {total_sent} 条通知, marker={self.marker}"
        )
        await self._record_fetch_success()

    async def _record_fetch_failure(self, error: Optional[Exception]) -> None:
        self._fetch_fail_count += 1
        logger.error(f"[{self.tag}] ❌ 数据拉取失败 (第 {self._fetch_fail_count} 次): {error}")

        # 连续失败达到阈值时发送告警
        if self._fetch_fail_count >= self.config.fetch_fail_threshold and not self._fetch_fail_notified:
            self._fetch_fail_notified = True
            await self._notify_admin(
                f"⚠️ [{self.tag}] 数据拉取连续失败 {self._fetch_fail_count} 次\n\n"
                f"错误信息: {error}"
            )

    async def _record_fetch_success(self) -> None:
        # 拉取成功，重置失败计数
        if self._fetch_fail_count > 0:
            logger.info(f"[{self.tag}] ✅ 数据拉取恢复正常（之前连续失败 {self._fetch_fail_count} 次）")
            if self._fetch_fail_notified:
                await self._notify_admin(f"✅ [{self.tag}] 数据拉取已恢复正常，之前的告警可以忽略了")
            self._fetch_fail_count = 0
            self._fetch_fail_notified = False

    async def apply_updates(self, new_offset: int) -> None:
        """Persist the chat offset if it moved forward"""
        if new_offset > self.offset:
            self.offset = new_offset
            logger.info(f"[{self.tag}] Setting new offset to {self.offset}")
            await self.store.save_offset(self.offset)

    async def handle_commands(self) -> None:
        """Chat half of a sequential cycle"""
        new_offset = await self.command_handler.handle(self.offset)
        await self.apply_updates(new_offset)

    async def fetch_and_notify(self) -> None:
        """Feed half of a sequential cycle"""
        logger.info(f"[{self.tag}] 📡 开始拉取数据 ({self.source.get_source_name()})...")
        result = await self.poller.poll_async(self.marker)
        await self.handle_poll_result(result)

    async def run_cycle(self) -> None:
        """One sequential cycle: chat commands first, then the feed"""
        try:
            await self.handle_commands()
        except Exception:
            logger.exception(f"[{self.tag}] 处理 Telegram 消息出错")
        try:
            await self.fetch_and_notify()
        except Exception:
            logger.exception(f"[{self.tag}] 拉取/推送出错")

    async def run_sequential(self) -> None:
        """Sequential polling: one cycle every poll_interval seconds, never overlapping"""
        self.scheduler = AsyncIOScheduler()
        # misfire_grace_time: None 表示无限；coalesce: 如果错过多次，只执行一次
        self.scheduler.add_job(
            self.run_cycle,
            "interval",
            seconds=self.config.poll_interval,
            id=f"poll_cycle_{self.config.subreddit}",
            next_run_time=datetime.now(),
            max_instances=1,
            misfire_grace_time=None,
            coalesce=True
        )
        self.scheduler.start()
        logger.info(f"[{self.tag}] ⏰ 定时任务已启动, 每 {self.config.poll_interval} 秒一轮")
        try:
            # 没有内部退出条件，直到进程被外部停止
            await asyncio.Event().wait()
        finally:
            self.scheduler.shutdown(wait=False)

    async def run_race(self) -> None:
        """Race the chat long-poll against the feed stream; handle whichever finishes first"""
        stream = self.poller.stream(self.marker)
        chat_task: Optional[asyncio.Task] = None
        feed_task: Optional[asyncio.Task] = None
        logger.info(f"[{self.tag}] 🏁 并发模式启动, 拉取间隔 {self.config.poll_interval} 秒")

        try:
            while True:
                # 只重新装填已经完成的那一路
                if chat_task is None:
                    chat_task = asyncio.create_task(
                        self.command_handler.fetch(self.offset), name="chat_updates"
                    )
                if feed_task is None:
                    feed_task = asyncio.create_task(_next_result(stream), name="feed_stream")

                done, _ = await asyncio.wait(
                    {chat_task, feed_task}, return_when=asyncio.FIRST_COMPLETED
                )

                if chat_task in done:
                    task, chat_task = chat_task, None
                    try:
                        new_offset = await self.command_handler.process(task.result(), self.offset)
                        await self.apply_updates(new_offset)
                    except Exception:
                        logger.exception(f"[{self.tag}] 处理 Telegram 消息出错")

                if feed_task in done:
                    task, feed_task = feed_task, None
                    try:
                        await self.handle_poll_result(task.result())
                    except StopAsyncIteration:
                        # stream 意外结束：从当前 marker 重新建立
                        logger.error(f"[{self.tag}] 拉取 stream 已结束，重新建立")
                        await stream.aclose()
                        stream = self.poller.stream(self.marker)
                    except Exception:
                        logger.exception(f"[{self.tag}] 拉取/推送出错")
        finally:
            for task in (chat_task, feed_task):
                if task is not None and not task.done():
                    task.cancel()
            pending = [t for t in (chat_task, feed_task) if t is not None]
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            await stream.aclose()

    async def start_async(self) -> None:
        """Connect the bot and run the configured loop until cancelled"""
        logger.info(f"[{self.tag}] Monitoring for keywords: {', '.join(self.matcher.keywords)}")
        logger.info(
            f"[{self.tag}] offset={self.offset}, marker={self.marker}, 订阅者 {len(self.registry)} 人"
        )
        await self.bot.start()
        try:
            if self.config.loop_mode == LoopMode.RACE:
                await self.run_race()
            else:
                await self.run_sequential()
        finally:
            await self.bot.stop()
            logger.info(f"[{self.tag}] 🛑 已停止")

    def run(self) -> None:
        """Start the application (blocking)"""
        try:
            asyncio.run(self.start_async())
        except KeyboardInterrupt:
            logger.info(f"[{self.tag}] 收到中断信号")
