"""Content publisher factory and registry."""

from __future__ import annotations

from pathlib import Path

from autowriter.config import AutowriterConfig
from autowriter.publishers.base import ContentPublisher


def create_publisher(platform: str, config: AutowriterConfig) -> ContentPublisher:
    """Create a publisher for the given platform.

    Args:
        platform: One of "markdown", "ghost" or "wordpress".
        config: Loaded configuration with the platform's section.

    Returns:
        A ContentPublisher instance for the platform.

    Raises:
        ValueError: If the platform is unknown.
    """
    default_status = config.publisher.post_status

    if platform == "markdown":
        from autowriter.publishers.markdown import MarkdownPublisher

        return MarkdownPublisher(
            Path(config.markdown.directory).expanduser(), default_status=default_status
        )
    if platform == "ghost":
        from autowriter.publishers.ghost import GhostConfig, GhostPublisher

        ghost = config.ghost
        return GhostPublisher(
            GhostConfig(
                url=ghost.url,
                admin_api_key=ghost.admin_api_key.get_secret_value(),
                timeout=ghost.timeout,
            ),
            default_status=default_status,
        )
    if platform == "wordpress":
        from autowriter.publishers.wordpress import WordPressConfig, WordPressPublisher

        wp = config.wordpress
        return WordPressPublisher(
            WordPressConfig(
                url=wp.url,
                username=wp.username,
                app_password=wp.app_password.get_secret_value(),
                timeout=wp.timeout,
            ),
            default_status=default_status,
        )

    raise ValueError(f"Unknown platform: {platform!r}")
