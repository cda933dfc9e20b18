"""Topic strategies used when a schedule fires."""

from __future__ import annotations

import logging
import random
from typing import Protocol

import feedparser
from pydantic import BaseModel

from autowriter.scheduling.models import TopicSource, TopicSourceKind

logger = logging.getLogger(__name__)

DEFAULT_RECENT_ENTRIES = 5


class FeedEntry(BaseModel):
    title: str
    link: str = ""
    published: str = ""


class FeedReader(Protocol):
    def fetch(self, url: str, limit: int = DEFAULT_RECENT_ENTRIES) -> list[FeedEntry]: ...


class FeedparserReader:
    """Reads RSS/Atom feeds with feedparser."""

    def fetch(self, url: str, limit: int = DEFAULT_RECENT_ENTRIES) -> list[FeedEntry]:
        feed = feedparser.parse(url)
        if feed.bozo and not feed.entries:
            logger.warning("Feed error for %s: %s", url, feed.bozo_exception)
            return []

        entries: list[FeedEntry] = []
        for entry in feed.entries[:limit]:
            title = (entry.get("title") or "").strip()
            if title:
                entries.append(
                    FeedEntry(
                        title=title,
                        link=entry.get("link", ""),
                        published=entry.get("published", ""),
                    )
                )
        return entries


class TopicResolver:
    """Picks one topic for a schedule firing, or None if the source is empty."""

    def __init__(
        self,
        feed_reader: FeedReader | None = None,
        *,
        rng: random.Random | None = None,
        recent_entries: int = DEFAULT_RECENT_ENTRIES,
    ) -> None:
        self.feed_reader = feed_reader or FeedparserReader()
        self.rng = rng or random.Random()
        self.recent_entries = recent_entries

    def resolve(self, source: TopicSource) -> str | None:
        if source.kind == TopicSourceKind.MANUAL:
            return self._pick(source.topics)
        if source.kind == TopicSourceKind.KEYWORDS:
            keyword = self._pick(_split(source.keywords))
            return f"How to {keyword}" if keyword else None
        if source.kind == TopicSourceKind.TRENDING:
            keyword = self._pick(_split(source.keywords))
            return f"Latest trends in {keyword}" if keyword else None
        if source.kind == TopicSourceKind.RSS:
            return self._from_feeds(source.feeds)
        return None

    def _pick(self, options: list[str]) -> str | None:
        options = [o.strip() for o in options if o.strip()]
        return self.rng.choice(options) if options else None

    def _from_feeds(self, feeds: list[str]) -> str | None:
        """Random recent title from the first feed that yields any."""
        for url in feeds:
            try:
                entries = self.feed_reader.fetch(url, self.recent_entries)
            except Exception:
                logger.warning("Failed to read feed: %s", url, exc_info=True)
                continue
            if entries:
                return self.rng.choice(entries).title
        return None


def _split(values: list[str]) -> list[str]:
    parts: list[str] = []
    for value in values:
        parts.extend(p.strip() for p in value.split(","))
    return [p for p in parts if p]
