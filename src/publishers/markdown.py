"""Plain markdown publisher: one file per article with frontmatter."""

from __future__ import annotations

import logging
import re
from pathlib import Path

from autowriter.errors import PersistenceError, PublishError
from autowriter.generation.models import Item
from autowriter.publishers.base import ContentPublisher
from autowriter.shared.storage import atomic_write_text

logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(text: str, max_length: int = 80) -> str:
    slug = _SLUG_RE.sub("-", text.lower()).strip("-")
    return slug[:max_length].rstrip("-") or "post"


class MarkdownPublisher(ContentPublisher):
    """Writes articles under ``<directory>/<slug>.md``."""

    platform = "markdown"

    def __init__(self, directory: Path, *, default_status: str = "publish") -> None:
        self.directory = directory
        self.default_status = default_status

    def output_path(self, item: Item) -> Path:
        return self.directory / f"{slugify(item.title)}-{item.id}.md"

    def _frontmatter(self, item: Item) -> str:
        target = item.target
        title = item.title.replace('"', '\\"')
        lines: list[str] = ["---"]
        lines.append(f'title: "{title}"')
        lines.append(f"status: {self.resolve_status(item, self.default_status)}")
        if target.publish_at is not None:
            lines.append(f"date: {target.publish_at.isoformat()}")
        if target.author:
            lines.append(f"author: {target.author}")
        if target.category:
            lines.append(f"category: {target.category}")
        if target.tags:
            lines.append("tags:")
            for tag in target.tags:
                lines.append(f"  - {tag}")
        lines.append("---")
        lines.append("")
        return "\n".join(lines)

    def publish(self, item: Item) -> str:
        if not item.body:
            raise PublishError(f"Item {item.id} has no rendered body")
        path = self.output_path(item)
        try:
            atomic_write_text(path, self._frontmatter(item) + "\n" + item.body + "\n")
        except PersistenceError as exc:
            raise PublishError(str(exc)) from exc
        logger.info("Wrote %s", path)
        return str(path)
