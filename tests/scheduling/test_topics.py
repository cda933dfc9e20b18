"""Tests for topic resolution strategies."""

from __future__ import annotations

import random
from types import SimpleNamespace
from unittest.mock import patch

from autowriter.scheduling.models import TopicSource, TopicSourceKind
from autowriter.scheduling.topics import FeedEntry, FeedparserReader, TopicResolver


class FakeReader:
    def __init__(self, feeds: dict[str, list[str] | Exception]) -> None:
        self.feeds = feeds
        self.fetched: list[str] = []

    def fetch(self, url: str, limit: int = 5) -> list[FeedEntry]:
        self.fetched.append(url)
        result = self.feeds.get(url, [])
        if isinstance(result, Exception):
            raise result
        return [FeedEntry(title=t) for t in result[:limit]]


def _resolver(reader: FakeReader | None = None) -> TopicResolver:
    return TopicResolver(reader or FakeReader({}), rng=random.Random(7))


class TestTopicResolver:
    def test_manual_picks_a_listed_topic(self):
        source = TopicSource(topics=["Tea", "  ", "Coffee"])
        assert _resolver().resolve(source) in {"Tea", "Coffee"}

    def test_manual_empty(self):
        assert _resolver().resolve(TopicSource(topics=["  "])) is None

    def test_keywords(self):
        source = TopicSource(kind=TopicSourceKind.KEYWORDS, keywords=["brew tea"])
        assert _resolver().resolve(source) == "How to brew tea"

    def test_trending_splits_commas(self):
        source = TopicSource(kind=TopicSourceKind.TRENDING, keywords=["ai, "])
        assert _resolver().resolve(source) == "Latest trends in ai"

    def test_trending_without_keywords(self):
        assert _resolver().resolve(TopicSource(kind=TopicSourceKind.TRENDING)) is None

    def test_rss_uses_first_feed_with_entries(self):
        reader = FakeReader(
            {
                "http://broken": RuntimeError("timeout"),
                "http://empty": [],
                "http://news": ["Headline"],
            }
        )
        source = TopicSource(
            kind=TopicSourceKind.RSS, feeds=["http://broken", "http://empty", "http://news"]
        )
        assert _resolver(reader).resolve(source) == "Headline"
        assert reader.fetched == ["http://broken", "http://empty", "http://news"]

    def test_rss_all_empty(self):
        source = TopicSource(kind=TopicSourceKind.RSS, feeds=["http://empty"])
        assert _resolver().resolve(source) is None

    def test_rss_only_recent_entries(self):
        reader = FakeReader({"http://news": [f"Story {n}" for n in range(10)]})
        resolver = TopicResolver(reader, rng=random.Random(1), recent_entries=2)
        source = TopicSource(kind=TopicSourceKind.RSS, feeds=["http://news"])
        for _ in range(10):
            assert resolver.resolve(source) in {"Story 0", "Story 1"}


class TestFeedparserReader:
    def test_reads_titles(self):
        parsed = SimpleNamespace(
            bozo=False,
            entries=[
                {"title": " First ", "link": "http://a", "published": "Mon"},
                {"title": ""},
                {"title": "Second"},
            ],
        )
        with patch("autowriter.scheduling.topics.feedparser.parse", return_value=parsed) as parse:
            entries = FeedparserReader().fetch("http://feed", limit=3)
        parse.assert_called_once_with("http://feed")
        assert [e.title for e in entries] == ["First", "Second"]
        assert entries[0].link == "http://a"

    def test_broken_feed(self):
        parsed = SimpleNamespace(bozo=True, bozo_exception=ValueError("bad xml"), entries=[])
        with patch("autowriter.scheduling.topics.feedparser.parse", return_value=parsed):
            assert FeedparserReader().fetch("http://feed") == []
