"""Base class for content publishing targets."""

from __future__ import annotations

from abc import ABC, abstractmethod

from autowriter.generation.models import Item


class ContentPublisher(ABC):
    """Turns a finished item into a content record on some platform."""

    platform: str = ""

    @abstractmethod
    def publish(self, item: Item) -> str:
        """Publish *item* and return the platform's content id.

        Raises:
            PublishError: The platform rejected the item.
        """

    @staticmethod
    def resolve_status(item: Item, default: str = "publish") -> str:
        """Immediate items use the configured status; timed ones are held back."""
        if item.target.publish_at is not None:
            return "future"
        return item.target.post_status or default
