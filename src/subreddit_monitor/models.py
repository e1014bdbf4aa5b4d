import re
from dataclasses import dataclass
from typing import Optional, Union

# Reddit fullname prefix, e.g. "t3_" for submissions
FULLNAME_PREFIX = re.compile(r"^t\d+_")


def feed_sort_key(item_id: str) -> int:
    """Decode a base-36 feed id into its integer sort key.

    Returns -1 for ids that cannot be decoded so they never beat a valid id.
    """
    raw = FULLNAME_PREFIX.sub("", item_id or "")
    try:
        return int(raw, 36)
    except ValueError:
        return -1


@dataclass(frozen=True)
class FeedItem:
    """A post fetched from the feed source"""
    id: str
    title: str
    body: str = ""
    url: Optional[str] = None

    @property
    def sort_key(self) -> int:
        return feed_sort_key(self.id)


@dataclass(frozen=True)
class TextMessage:
    """Inbound chat update carrying a text message"""
    update_id: int
    chat_id: int
    text: str


@dataclass(frozen=True)
class OtherUpdate:
    """Any inbound chat update that is not a text message"""
    update_id: int


ChatUpdate = Union[TextMessage, OtherUpdate]
