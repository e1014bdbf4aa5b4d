from .base import BaseSource
from .reddit import RedditSource
from .rss import RSSSource

__all__ = ["BaseSource", "RedditSource", "RSSSource"]
