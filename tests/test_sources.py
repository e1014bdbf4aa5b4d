from __future__ import annotations

import http.client
import socket
import urllib.error
import urllib.request

import pytest
import requests

from subreddit_monitor.errors import TransientFetchError
from subreddit_monitor.source.reddit import RedditSource
from subreddit_monitor.source.rss import RSSSource


class FakeResponse:
    def __init__(self, status_code: int = 200, payload=None) -> None:
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeSession:
    def __init__(self, token_responses, listing_responses) -> None:
        self.token_responses = list(token_responses)
        self.listing_responses = list(listing_responses)
        self.token_calls = 0
        self.listing_calls = []

    def post(self, url, **kwargs):
        self.token_calls += 1
        return self.token_responses.pop(0)

    def get(self, url, **kwargs):
        self.listing_calls.append((url, kwargs))
        response = self.listing_responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


LISTING = {
    "kind": "Listing",
    "data": {
        "children": [
            {"kind": "t3", "data": {"id": "1abcd", "title": "[US-CA][H] GMK [W] PayPal",
                                    "selftext": "timestamps", "url": "https://redd.it/1abcd"}},
            {"kind": "t3", "data": {"id": "1abcc", "title": "No body", "selftext": "", "url": ""}},
        ]
    },
}


def _source(session: FakeSession) -> RedditSource:
    return RedditSource(
        subreddit="mechmarket", client_id="id", client_secret="secret",
        username="user", password="pass", session=session,
    )


def test_reddit_fetch_parses_listing() -> None:
    session = FakeSession(
        [FakeResponse(payload={"access_token": "tok", "expires_in": 3600})],
        [FakeResponse(payload=LISTING)],
    )
    items = _source(session).fetch_latest(20)

    assert [item.id for item in items] == ["1abcd", "1abcc"]
    assert items[0].body == "timestamps"
    assert items[0].url == "https://redd.it/1abcd"
    assert items[1].url is None
    url, kwargs = session.listing_calls[0]
    assert url.endswith("/r/mechmarket/new")
    assert kwargs["params"]["limit"] == 20
    assert kwargs["headers"]["Authorization"] == "bearer tok"


def test_reddit_token_is_cached() -> None:
    session = FakeSession(
        [FakeResponse(payload={"access_token": "tok", "expires_in": 3600})],
        [FakeResponse(payload=LISTING), FakeResponse(payload=LISTING)],
    )
    source = _source(session)
    source.fetch_latest(5)
    source.fetch_latest(5)
    assert session.token_calls == 1


def test_reddit_401_drops_token() -> None:
    session = FakeSession(
        [
            FakeResponse(payload={"access_token": "old", "expires_in": 3600}),
            FakeResponse(payload={"access_token": "new", "expires_in": 3600}),
        ],
        [FakeResponse(status_code=401), FakeResponse(payload=LISTING)],
    )
    source = _source(session)
    with pytest.raises(TransientFetchError):
        source.fetch_latest(5)
    source.fetch_latest(5)
    assert session.token_calls == 2
    assert session.listing_calls[-1][1]["headers"]["Authorization"] == "bearer new"


@pytest.mark.parametrize("failure", [
    FakeResponse(status_code=429),
    FakeResponse(status_code=503),
    FakeResponse(status_code=200, payload=None),
    FakeResponse(payload={"data": "not a listing"}),
    FakeResponse(payload=["not", "a", "listing"]),
    FakeResponse(payload={"data": {"children": None}}),
    requests.ConnectionError("unreachable"),
])
def test_reddit_failures_are_transient(failure) -> None:
    session = FakeSession(
        [FakeResponse(payload={"access_token": "tok", "expires_in": 3600})],
        [failure],
    )
    with pytest.raises(TransientFetchError):
        _source(session).fetch_latest(5)


def test_reddit_bad_credentials_are_transient() -> None:
    session = FakeSession([FakeResponse(payload={"error": "invalid_grant"})], [])
    with pytest.raises(TransientFetchError):
        _source(session).fetch_latest(5)


def test_reddit_skips_malformed_children() -> None:
    listing = {"data": {"children": [
        "garbage",
        {"kind": "t3", "data": None},
        {"kind": "t3", "data": {"id": "1abce", "title": None, "selftext": None}},
    ]}}
    session = FakeSession(
        [FakeResponse(payload={"access_token": "tok", "expires_in": 3600})],
        [FakeResponse(payload=listing)],
    )
    items = _source(session).fetch_latest(5)

    assert [item.id for item in items] == ["1abce"]
    assert items[0].title == "" and items[0].body == ""


ATOM = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>newest submissions : mechmarket</title>
  <entry>
    <id>t3_1abcd</id>
    <title>[US-CA][H] GMK Olivia [W] PayPal</title>
    <link href="https://www.reddit.com/r/mechmarket/comments/1abcd/gmk/" />
    <content type="html">&lt;p&gt;timestamps&lt;/p&gt;</content>
  </entry>
  <entry>
    <id>t3_1abcc</id>
    <title>Second</title>
    <link href="https://www.reddit.com/r/mechmarket/comments/1abcc/second/" />
  </entry>
</feed>
"""


def test_rss_parses_reddit_atom() -> None:
    items = RSSSource("mechmarket")._parse_content(ATOM)

    assert [item.id for item in items] == ["t3_1abcd", "t3_1abcc"]
    assert items[0].title.startswith("[US-CA]")
    assert "timestamps" in items[0].body
    assert items[0].url == "https://www.reddit.com/r/mechmarket/comments/1abcd/gmk/"
    assert items[0].sort_key > items[1].sort_key


def test_rss_fetch_respects_limit(monkeypatch) -> None:
    source = RSSSource("mechmarket")
    monkeypatch.setattr(source, "_fetch_content", lambda limit: ATOM)
    assert len(source.fetch_latest(1)) == 1


class FakeHTTPResponse:
    def __init__(self, body: bytes) -> None:
        self.body = body

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        pass

    def read(self) -> bytes:
        return self.body


@pytest.mark.parametrize("outcome", [
    http.client.IncompleteRead(b"<feed"),
    urllib.error.URLError("unreachable"),
    socket.timeout("timed out"),
    FakeHTTPResponse(b"\xff\xfe<feed>"),
])
def test_rss_failures_are_transient(monkeypatch, outcome) -> None:
    def fake_urlopen(request, timeout):
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(urllib.request, "urlopen", fake_urlopen)
    with pytest.raises(TransientFetchError):
        RSSSource("mechmarket", timeout=0.5).fetch_latest(5)
