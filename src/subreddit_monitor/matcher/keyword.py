from abc import ABC, abstractmethod
from typing import Iterable, List

from ..models import FeedItem


def normalize_keywords(keywords: Iterable[str]) -> List[str]:
    """Case-fold keywords and drop empty entries, keeping first-seen order"""
    seen = []
    for keyword in keywords:
        folded = keyword.strip().casefold()
        if folded and folded not in seen:
            seen.append(folded)
    return seen


def matches(text: str, keywords: Iterable[str]) -> bool:
    """Return True if any keyword is a substring of text, ignoring case"""
    if not text:
        return False
    folded = text.casefold()
    return any(keyword.casefold() in folded for keyword in keywords)


class BaseMatcher(ABC):
    """Abstract base class for matchers"""

    @abstractmethod
    def match(self, item: FeedItem) -> bool:
        """Check if the item should be forwarded"""
        pass


class KeywordMatcher(BaseMatcher):
    """Plain substring matcher over title and body (case-insensitive)"""

    def __init__(self, keywords: Iterable[str]):
        self.keywords = normalize_keywords(keywords)

    def match(self, item: FeedItem) -> bool:
        return matches(item.title, self.keywords) or matches(item.body, self.keywords)

    def find_matching_keywords(self, item: FeedItem) -> List[str]:
        """Find all keywords that match the item"""
        return [
            kw for kw in self.keywords
            if matches(item.title, [kw]) or matches(item.body, [kw])
        ]
