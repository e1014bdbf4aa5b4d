from abc import ABC, abstractmethod
from typing import List

from ..models import FeedItem


class BaseSource(ABC):
    """Abstract base class for feed sources"""

    @abstractmethod
    def fetch_latest(self, limit: int) -> List[FeedItem]:
        """Fetch up to ``limit`` of the newest items, newest first.

        Raises TransientFetchError on network, auth or rate-limit failures.
        """
        pass

    @abstractmethod
    def get_source_name(self) -> str:
        """Return the name of this source for logging"""
        pass
