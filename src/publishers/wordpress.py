"""WordPress publisher using the REST API and application passwords."""

from __future__ import annotations

import base64
import json
import logging
import urllib.error
import urllib.parse
import urllib.request

from pydantic import BaseModel

from autowriter.errors import PublishError
from autowriter.generation.models import Item
from autowriter.publishers.base import ContentPublisher

logger = logging.getLogger(__name__)


class WordPressConfig(BaseModel):
    """Configuration for the WordPress REST API."""

    url: str = ""
    username: str = ""
    app_password: str = ""
    timeout: int = 30

    @property
    def is_configured(self) -> bool:
        return bool(self.url and self.username and self.app_password)


class WordPressClient:
    """Minimal client for ``/wp-json/wp/v2``."""

    def __init__(self, config: WordPressConfig) -> None:
        self.config = config
        self.base_url = config.url.rstrip("/") + "/wp-json/wp/v2"

    def _auth_header(self) -> str:
        raw = f"{self.config.username}:{self.config.app_password}".encode()
        return "Basic " + base64.b64encode(raw).decode("ascii")

    def _request(self, method: str, path: str, data: dict | None = None) -> dict | list:
        body = json.dumps(data).encode("utf-8") if data is not None else None
        req = urllib.request.Request(
            f"{self.base_url}{path}",
            data=body,
            method=method,
            headers={
                "Authorization": self._auth_header(),
                "Content-Type": "application/json",
            },
        )
        with urllib.request.urlopen(req, timeout=self.config.timeout) as resp:
            return json.loads(resp.read().decode("utf-8"))

    def tag_ids(self, names: list[str]) -> list[int]:
        """Resolve tag names to ids, creating tags that do not exist yet."""
        ids: list[int] = []
        for name in names:
            query = urllib.parse.urlencode({"search": name})
            found = self._request("GET", f"/tags?{query}")
            match = next(
                (t for t in found if isinstance(t, dict) and t.get("name", "").lower() == name.lower()),
                None,
            )
            if match is None:
                match = self._request("POST", "/tags", {"name": name})
            ids.append(int(match["id"]))
        return ids

    def create_post(self, post: dict) -> dict:
        result = self._request("POST", "/posts", post)
        if not isinstance(result, dict):
            raise ValueError("Unexpected response creating post")
        return result


class WordPressPublisher(ContentPublisher):
    """Creates WordPress posts from finished items."""

    platform = "wordpress"

    def __init__(self, config: WordPressConfig, *, default_status: str = "publish") -> None:
        self._client = WordPressClient(config) if config.is_configured else None
        self.default_status = default_status

    def _post_data(self, item: Item) -> dict:
        target = item.target
        post: dict = {
            "title": item.title,
            "content": item.body or "",
            "status": self.resolve_status(item, self.default_status),
        }
        if target.publish_at is not None:
            post["date_gmt"] = target.publish_at.strftime("%Y-%m-%dT%H:%M:%S")
        if target.author.isdigit():
            post["author"] = int(target.author)
        if target.category.isdigit():
            post["categories"] = [int(target.category)]
        return post

    def publish(self, item: Item) -> str:
        if self._client is None:
            raise PublishError("WordPress is not configured (url, username and app_password)")
        post = self._post_data(item)
        try:
            if item.target.tags:
                post["tags"] = self._client.tag_ids(item.target.tags)
            created = self._client.create_post(post)
        except urllib.error.HTTPError as exc:
            raise PublishError(f"WordPress rejected '{item.title}' ({exc.code})") from exc
        except (urllib.error.URLError, ValueError, KeyError) as exc:
            raise PublishError(f"WordPress publish failed for '{item.title}': {exc}") from exc
        logger.info("Created WordPress post %s", created.get("id"))
        return str(created["id"])
