import sys

import click

from . import __version__
from .config import ConfigManager, SourceType
from .errors import ConfigError

ENV_FILE_OPTION = click.option(
    "--env-file",
    type=click.Path(dir_okay=False),
    default=None,
    help="Env file with configuration (default: ./.env); real environment variables win"
)


def _mask(secret: str) -> str:
    if len(secret) <= 8:
        return "*" * len(secret)
    return f"{secret[:4]}...{secret[-3:]}"


def _load_config(env_file):
    try:
        return ConfigManager(env_file).load()
    except ConfigError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)


@click.group(name="subreddit-monitor", help="Subreddit keyword monitor for Telegram")
def cli():
    pass


@cli.command(help="Show version")
def version():
    click.echo(f"subreddit-monitor {__version__}")


@cli.command(help="Show effective configuration")
@ENV_FILE_OPTION
def config(env_file):
    cfg = _load_config(env_file)
    click.echo("📋 Current configuration:\n")
    click.echo(f"  Subreddit: r/{cfg.subreddit}")
    click.echo(f"  Keywords: {', '.join(cfg.keywords)}")
    click.echo(f"  Source: {cfg.source_type.value}")
    if cfg.source_type == SourceType.REDDIT:
        click.echo(f"  Reddit client id: {_mask(cfg.reddit_client_id)}")
        click.echo(f"  Reddit user: u/{cfg.reddit_username}")
    click.echo(f"  Bot Token: {_mask(cfg.telegram_token)}")
    click.echo(f"  Loop mode: {cfg.loop_mode.value}")
    click.echo(f"  Poll interval: {cfg.poll_interval}s, fetch limit: {cfg.fetch_limit}")
    click.echo(f"  Long-poll timeout: {cfg.long_poll_timeout}s")
    click.echo(
        f"  Retry: {cfg.retry_max_attempts} attempts, "
        f"{cfg.retry_initial_delay}s x{cfg.retry_multiplier}, per-attempt timeout {cfg.fetch_timeout}s"
    )
    if cfg.admin_chat_id:
        click.echo(f"  Admin Chat ID: {cfg.admin_chat_id}")
    click.echo(f"  Database: {cfg.db_path}")


@cli.command(help="Start the monitor")
@ENV_FILE_OPTION
@click.option(
    "--log-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Directory for rotating log files (stdout only when omitted)"
)
def run(env_file, log_dir):
    from pathlib import Path

    cfg = _load_config(env_file)

    # 配置日志（输出到 stdout + 文件）
    from .app import setup_logging
    setup_logging(Path(log_dir) if log_dir else None)

    click.echo("🚀 Starting subreddit monitor...")
    click.echo(f"   r/{cfg.subreddit} via {cfg.source_type.value}, {cfg.loop_mode.value} loop")
    click.echo(f"   Keywords: {', '.join(cfg.keywords)}\n")

    from .app import Application
    from .database import Database

    db = Database(cfg.db_path)
    app = Application(config=cfg, db=db)
    app.run()


if __name__ == "__main__":
    cli()
