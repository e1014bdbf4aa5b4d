"""Subreddit keyword monitor that forwards new posts to Telegram subscribers."""

__version__ = "0.1.0"
