"""Ghost publisher using the Admin API and a PyJWT-signed admin token."""

from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.request

import jwt
from pydantic import BaseModel

from autowriter.errors import PublishError
from autowriter.generation.models import Item
from autowriter.publishers.base import ContentPublisher

logger = logging.getLogger(__name__)

TOKEN_LIFETIME = 5 * 60

# Ghost's names for the statuses items carry.
STATUS_MAP = {"publish": "published", "future": "scheduled", "draft": "draft"}


class GhostConfig(BaseModel):
    """Site URL and ``<key id>:<hex secret>`` admin key."""

    url: str = ""
    admin_api_key: str = ""
    timeout: int = 30

    @property
    def is_configured(self) -> bool:
        return bool(self.url and self.admin_api_key)


def ghost_status(status: str) -> str:
    return STATUS_MAP.get(status, status)


def mobiledoc(markdown: str) -> str:
    """A single markdown card; Ghost renders it server-side."""
    return json.dumps(
        {
            "version": "0.3.1",
            "markups": [],
            "atoms": [],
            "cards": [["markdown", {"markdown": markdown}]],
            "sections": [[10, 0]],
        }
    )


class GhostClient:
    """Posts to ``/ghost/api/admin``. Every failure surfaces as PublishError."""

    def __init__(self, config: GhostConfig, clock=time.time) -> None:
        self.config = config
        self.base_url = config.url.rstrip("/") + "/ghost/api/admin"
        self._clock = clock

    def admin_token(self) -> str:
        try:
            key_id, secret = self.config.admin_api_key.split(":")
            signing_key = bytes.fromhex(secret)
        except ValueError as exc:
            raise PublishError("Ghost admin key must look like '<id>:<hex secret>'") from exc
        issued = int(self._clock())
        return jwt.encode(
            {"iat": issued, "exp": issued + TOKEN_LIFETIME, "aud": "/admin/"},
            signing_key,
            algorithm="HS256",
            headers={"kid": key_id},
        )

    @staticmethod
    def _error_detail(exc: urllib.error.HTTPError) -> str:
        try:
            errors = json.loads(exc.read().decode("utf-8")).get("errors") or []
            return errors[0].get("message") or str(exc.code)
        except (ValueError, AttributeError, IndexError, OSError):
            return str(exc.code)

    def _request(self, method: str, path: str, data: dict | None = None) -> dict:
        req = urllib.request.Request(
            f"{self.base_url}{path}",
            data=json.dumps(data).encode("utf-8") if data is not None else None,
            method=method,
            headers={
                "Authorization": f"Ghost {self.admin_token()}",
                "Content-Type": "application/json",
            },
        )
        try:
            with urllib.request.urlopen(req, timeout=self.config.timeout) as resp:
                return json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as exc:
            raise PublishError(f"Ghost answered {exc.code}: {self._error_detail(exc)}") from exc
        except urllib.error.URLError as exc:
            raise PublishError(f"Ghost is unreachable: {exc.reason}") from exc
        except ValueError as exc:
            raise PublishError(f"Ghost sent an unreadable response: {exc}") from exc

    def create_post(self, post: dict) -> dict:
        """Create one post and return Ghost's record of it."""
        result = self._request("POST", "/posts/", {"posts": [post]})
        posts = result.get("posts") if isinstance(result, dict) else None
        if not posts or not isinstance(posts[0], dict) or "id" not in posts[0]:
            raise PublishError("Ghost response did not include the created post")
        return posts[0]


class GhostPublisher(ContentPublisher):
    """Creates Ghost posts from finished items."""

    platform = "ghost"

    def __init__(self, config: GhostConfig, *, default_status: str = "publish") -> None:
        self._client = GhostClient(config) if config.is_configured else None
        self.default_status = default_status

    def _post_data(self, item: Item) -> dict:
        target = item.target
        post: dict = {
            "title": item.title,
            "mobiledoc": mobiledoc(item.body or ""),
            "status": ghost_status(self.resolve_status(item, self.default_status)),
        }
        tags = list(target.tags)
        if target.category and target.category not in tags:
            tags.insert(0, target.category)
        if tags:
            post["tags"] = [{"name": t} for t in tags]
        if target.publish_at is not None:
            post["published_at"] = target.publish_at.isoformat()
        if target.author:
            key = "email" if "@" in target.author else "slug"
            post["authors"] = [{key: target.author}]
        return post

    def publish(self, item: Item) -> str:
        if self._client is None:
            raise PublishError("Ghost is not configured (set GHOST_URL and GHOST_ADMIN_API_KEY)")
        try:
            created = self._client.create_post(self._post_data(item))
        except PublishError as exc:
            raise PublishError(f"Ghost rejected '{item.title}': {exc}") from exc
        logger.info("Created Ghost post %s", created.get("id"))
        return str(created["id"])
