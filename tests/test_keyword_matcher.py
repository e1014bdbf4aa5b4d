from subreddit_monitor.matcher.keyword import KeywordMatcher, matches, normalize_keywords
from subreddit_monitor.models import FeedItem


def test_match_is_case_insensitive() -> None:
    assert matches("Selling KEYCAPS", {"keycap"})
    assert matches("selling keycaps", {"KEYCAP"})


def test_plain_substring_no_regex() -> None:
    assert not matches("WTS keyboard", {"w.s"})
    assert matches("price: $50 (shipped)", {"(shipped)"})


def test_empty_text_or_keywords() -> None:
    assert not matches("", {"wts"})
    assert not matches("WTS keyboard", set())


def test_item_matches_on_title_or_body() -> None:
    matcher = KeywordMatcher(["gmk"])
    assert matcher.match(FeedItem(id="1", title="GMK Olivia", body=""))
    assert matcher.match(FeedItem(id="2", title="[US-CA] keyboard", body="includes gmk set"))
    assert not matcher.match(FeedItem(id="3", title="[US-CA] keyboard", body="nothing"))


def test_normalize_drops_blank_and_duplicates() -> None:
    assert normalize_keywords([" WTS", "", "wts", "  ", "Keycap "]) == ["wts", "keycap"]


def test_find_matching_keywords() -> None:
    matcher = KeywordMatcher(["wts", "keycap", "switch"])
    item = FeedItem(id="1", title="WTS keycaps", body="")
    assert matcher.find_matching_keywords(item) == ["wts", "keycap"]
