import os
from enum import Enum
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from dotenv import dotenv_values
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigError
from .retry import RetryPolicy


class SourceType(str, Enum):
    """Feed source type"""
    REDDIT = "reddit"
    RSS = "rss"


class LoopMode(str, Enum):
    """Event loop scheduling shape"""
    SEQUENTIAL = "sequential"
    RACE = "race"


# Environment variable -> AppConfig field
REQUIRED_ENV = {
    "REDDIT_CLIENT_ID": "reddit_client_id",
    "REDDIT_CLIENT_SECRET": "reddit_client_secret",
    "REDDIT_USERNAME": "reddit_username",
    "REDDIT_PASSWORD": "reddit_password",
    "TELEGRAM_TOKEN": "telegram_token",
    "KEYWORDS": "keywords",
    "SUBREDDIT": "subreddit",
    "DATABASE_URL": "database_url",
}

OPTIONAL_ENV = {
    "SOURCE_TYPE": "source_type",
    "LOOP_MODE": "loop_mode",
    "FETCH_LIMIT": "fetch_limit",
    "POLL_INTERVAL": "poll_interval",
    "LONG_POLL_TIMEOUT": "long_poll_timeout",
    "FETCH_TIMEOUT": "fetch_timeout",
    "RETRY_INITIAL_DELAY": "retry_initial_delay",
    "RETRY_MULTIPLIER": "retry_multiplier",
    "RETRY_MAX_ATTEMPTS": "retry_max_attempts",
    "USER_AGENT": "user_agent",
    "ADMIN_CHAT_ID": "admin_chat_id",
    "FETCH_FAIL_THRESHOLD": "fetch_fail_threshold",
}

SQLITE_PREFIX = "sqlite:///"


class AppConfig(BaseModel):
    """Application configuration"""

    # Credentials
    reddit_client_id: str = Field(description="Reddit script app client id")
    reddit_client_secret: str = Field(description="Reddit script app secret")
    reddit_username: str = Field(description="Reddit account username")
    reddit_password: str = Field(description="Reddit account password")
    telegram_token: str = Field(description="Telegram Bot Token")

    # What to watch
    keywords: List[str] = Field(description="Keywords, comma separated in the environment")
    subreddit: str = Field(description="Subreddit name without the r/ prefix")

    database_url: str = Field(description="sqlite:///path/to/file.db or a plain file path")

    source_type: SourceType = Field(default=SourceType.REDDIT, description="Feed source: reddit or rss")
    loop_mode: LoopMode = Field(default=LoopMode.SEQUENTIAL, description="sequential or race")

    fetch_limit: int = Field(default=20, ge=1, le=100, description="Items fetched per poll")
    poll_interval: float = Field(default=30, gt=0, description="Seconds between feed polls")
    long_poll_timeout: int = Field(default=10, ge=0, description="Telegram getUpdates wait in seconds")
    fetch_timeout: float = Field(default=30, gt=0, description="Per-attempt feed fetch timeout in seconds")

    retry_initial_delay: float = Field(default=1.0, ge=0, description="First backoff delay in seconds")
    retry_multiplier: float = Field(default=2.0, ge=1, description="Backoff multiplier")
    retry_max_attempts: int = Field(default=5, ge=1, description="Fetch attempts per tick in race mode")

    user_agent: Optional[str] = Field(default=None, description="User-Agent sent to Reddit")

    admin_chat_id: Optional[int] = Field(default=None, description="Admin chat ID for receiving alerts")
    fetch_fail_threshold: int = Field(default=5, ge=1, description="Consecutive feed failures before alerting")

    @field_validator("keywords", mode="before")
    @classmethod
    def split_keywords(cls, value):
        if isinstance(value, str):
            value = value.split(",")
        keywords = [kw.strip() for kw in value if kw and kw.strip()]
        if not keywords:
            raise ValueError("at least one keyword is required")
        return keywords

    @field_validator("subreddit")
    @classmethod
    def strip_subreddit_prefix(cls, value: str) -> str:
        value = value.strip()
        if value.lower().startswith("r/"):
            value = value[2:]
        if not value:
            raise ValueError("subreddit must not be empty")
        return value

    @field_validator("database_url")
    @classmethod
    def check_database_url(cls, value: str) -> str:
        if "://" in value and not value.startswith(SQLITE_PREFIX):
            raise ValueError(f"only {SQLITE_PREFIX} URLs are supported")
        return value

    @property
    def db_path(self) -> Path:
        if self.database_url.startswith(SQLITE_PREFIX):
            return Path(self.database_url[len(SQLITE_PREFIX):])
        return Path(self.database_url)

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            initial_delay=self.retry_initial_delay,
            multiplier=self.retry_multiplier,
            max_attempts=self.retry_max_attempts
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> "AppConfig":
        """Build the config from environment-style variables.

        Raises ConfigError naming every missing or invalid variable.
        """
        missing = [name for name in REQUIRED_ENV if not (environ.get(name) or "").strip()]
        if missing:
            raise ConfigError(f"Missing required configuration: {', '.join(missing)}")

        data: Dict[str, str] = {}
        for env_name, field in {**REQUIRED_ENV, **OPTIONAL_ENV}.items():
            value = environ.get(env_name)
            if value is not None and value.strip() != "":
                data[field] = value.strip()

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            field_to_env = {field: env for env, field in {**REQUIRED_ENV, **OPTIONAL_ENV}.items()}
            problems = []
            for error in e.errors():
                field = error["loc"][0] if error["loc"] else ""
                problems.append(f"{field_to_env.get(field, field)}: {error['msg']}")
            raise ConfigError(f"Invalid configuration: {'; '.join(problems)}") from e


class ConfigManager:
    """Loads configuration from the process environment and an optional env file"""

    ENV_FILE = ".env"

    def __init__(self, env_file: Optional[Path] = None):
        self.env_file = Path(env_file) if env_file else Path.cwd() / self.ENV_FILE

    def exists(self) -> bool:
        """Check if the env file exists"""
        return self.env_file.exists()

    def load_raw(self) -> Dict[str, str]:
        """Env file values overlaid by the real environment"""
        values: Dict[str, str] = {}
        if self.exists():
            values.update({k: v for k, v in dotenv_values(self.env_file).items() if v is not None})
        values.update(os.environ)
        return values

    def load(self) -> AppConfig:
        """Load and validate configuration, raising ConfigError on problems"""
        return AppConfig.from_env(self.load_raw())
