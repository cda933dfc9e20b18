"""Unified configuration loaded from .autowriter.toml, env vars, and CLI flags.

Loading order: defaults → TOML file → env vars → CLI flags.
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path

from pydantic import BaseModel, Field, SecretStr, model_validator

from autowriter.shared.storage import load_model, save_model

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".autowriter.toml"
CONFIG_SEARCH_PATHS = [
    Path("."),
    Path.home() / ".config" / "autowriter",
]
SETTINGS_FILENAME = "settings.json"


class StorageConfig(BaseModel):
    """[storage] section."""

    directory: str = "./.autowriter"

    @property
    def path(self) -> Path:
        return Path(self.directory).expanduser()


class ProviderSectionConfig(BaseModel):
    """[provider] section."""

    active: str = "anthropic"
    timeout: int = 120


class ProviderCredentials(BaseModel):
    """A single [providers.<name>] table."""

    api_key: SecretStr = SecretStr("")
    model: str = ""
    endpoint_url: str = ""


class ProvidersConfig(BaseModel):
    """[providers] section with one table per backend."""

    anthropic: ProviderCredentials = Field(default_factory=ProviderCredentials)
    openai: ProviderCredentials = Field(default_factory=ProviderCredentials)
    local: ProviderCredentials = Field(
        default_factory=lambda: ProviderCredentials(endpoint_url="http://localhost:8080")
    )

    def get(self, name: str) -> ProviderCredentials:
        creds = getattr(self, name, None)
        if not isinstance(creds, ProviderCredentials):
            raise KeyError(name)
        return creds


class GenerationConfig(BaseModel):
    """[generation] section."""

    model: str = ""
    max_tokens: int = 1000
    temperature: float = 0.7
    heading_count: int = 3
    max_batch_size: int = 10
    inter_item_delay: float = 2.0
    max_stage_retries: int = 3
    lock_ttl: int = 180
    body_format: str = "markdown"
    default_cost_per_1k: float = 0.0015


class PublisherSectionConfig(BaseModel):
    """[publisher] section."""

    platform: str = "markdown"
    post_status: str = "publish"


class MarkdownSectionConfig(BaseModel):
    """[markdown] section."""

    directory: str = "./posts"


class GhostSectionConfig(BaseModel):
    """[ghost] section."""

    url: str = ""
    admin_api_key: SecretStr = SecretStr("")
    timeout: int = 30


class WordPressSectionConfig(BaseModel):
    """[wordpress] section."""

    url: str = ""
    username: str = ""
    app_password: SecretStr = SecretStr("")
    timeout: int = 30


class SchedulingConfig(BaseModel):
    """[scheduling] section."""

    cleanup_days: int = 30
    rss_recent_entries: int = 5
    tick_interval: int = 60


class AutowriterConfig(BaseModel):
    """Top-level configuration model for autowriter."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    provider: ProviderSectionConfig = Field(default_factory=ProviderSectionConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    publisher: PublisherSectionConfig = Field(default_factory=PublisherSectionConfig)
    markdown: MarkdownSectionConfig = Field(default_factory=MarkdownSectionConfig)
    ghost: GhostSectionConfig = Field(default_factory=GhostSectionConfig)
    wordpress: WordPressSectionConfig = Field(default_factory=WordPressSectionConfig)
    scheduling: SchedulingConfig = Field(default_factory=SchedulingConfig)

    @model_validator(mode="after")
    def _check_lock_margin(self) -> AutowriterConfig:
        # A lock that expires mid-call lets a second advance start the same stage.
        if self.generation.lock_ttl <= self.provider.timeout:
            raise ValueError(
                f"generation.lock_ttl ({self.generation.lock_ttl}s) must exceed "
                f"provider.timeout ({self.provider.timeout}s)"
            )
        return self


class RuntimeSettings(BaseModel):
    """Generation defaults an operator may change without editing TOML."""

    active_provider: str = "anthropic"
    model: str = ""
    max_tokens: int = 1000
    temperature: float = 0.7
    heading_count: int = 3


class SettingsStore:
    """JSON overlay for runtime settings, stored next to job state.

    Values saved here win over the TOML ``[generation]`` and
    ``[provider]`` defaults.
    """

    def __init__(self, state_dir: Path, config: AutowriterConfig | None = None) -> None:
        self._path = state_dir / SETTINGS_FILENAME
        self._config = config or AutowriterConfig()

    def _defaults(self) -> RuntimeSettings:
        gen = self._config.generation
        return RuntimeSettings(
            active_provider=self._config.provider.active,
            model=gen.model,
            max_tokens=gen.max_tokens,
            temperature=gen.temperature,
            heading_count=gen.heading_count,
        )

    def get_settings(self) -> RuntimeSettings:
        saved = load_model(self._path, RuntimeSettings)
        if saved is None:
            return self._defaults()
        data = self._defaults().model_dump()
        data.update(saved.model_dump(exclude_unset=True))
        return RuntimeSettings.model_validate(data)

    def save_settings(self, **changes: object) -> RuntimeSettings:
        """Persist the given fields on top of the current settings."""
        current = self.get_settings().model_dump()
        current.update({k: v for k, v in changes.items() if v is not None})
        settings = RuntimeSettings.model_validate(current)
        save_model(self._path, settings)
        logger.info("Saved runtime settings to %s", self._path)
        return settings


def load_config(path: str | Path | None = None) -> AutowriterConfig:
    """Load configuration from a TOML file.

    Search order:
    1. Explicit path (if provided)
    2. .autowriter.toml in CWD
    3. ~/.config/autowriter/config.toml

    Then overlay environment variables.

    Args:
        path: Explicit path to a TOML file.

    Returns:
        Merged AutowriterConfig.
    """
    data: dict[str, object] = {}

    if path is not None:
        toml_path = Path(path)
        if toml_path.exists():
            data = _load_toml(toml_path)
        else:
            logger.warning("Config file not found: %s", toml_path)
    else:
        for search_dir in CONFIG_SEARCH_PATHS:
            candidate = search_dir / CONFIG_FILENAME
            if candidate.exists():
                data = _load_toml(candidate)
                logger.info("Loaded config from %s", candidate)
                break
        global_config = Path.home() / ".config" / "autowriter" / "config.toml"
        if not data and global_config.exists():
            data = _load_toml(global_config)
            logger.info("Loaded config from %s", global_config)

    config = AutowriterConfig.model_validate(data) if data else AutowriterConfig()
    return _apply_env_vars(config)


def merge_cli_overrides(config: AutowriterConfig, **cli_kwargs: object) -> AutowriterConfig:
    """Overlay explicitly-set CLI flags onto the config.

    Only overrides values where the CLI flag was explicitly provided
    (i.e., not None).
    """
    data = config.model_dump()

    mapping: dict[str, tuple[str, ...]] = {
        "state_dir": ("storage", "directory"),
        "provider": ("provider", "active"),
        "model": ("generation", "model"),
        "heading_count": ("generation", "heading_count"),
        "publisher": ("publisher", "platform"),
    }

    for key, value in cli_kwargs.items():
        if value is None or key not in mapping:
            continue
        _set_path(data, mapping[key], value)

    return AutowriterConfig.model_validate(data)


def _load_toml(path: Path) -> dict[str, object]:
    """Load a TOML file and return the data dict."""
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (tomllib.TOMLDecodeError, OSError) as exc:
        logger.warning("Failed to parse %s: %s", path, exc)
        return {}


def _set_path(data: dict, path: tuple[str, ...], value: object) -> None:
    target = data
    for part in path[:-1]:
        target = target[part]
    target[path[-1]] = value


def _apply_env_vars(config: AutowriterConfig) -> AutowriterConfig:
    """Apply environment variable overrides to config."""
    data = config.model_dump()

    env_mapping: dict[str, tuple[str, ...]] = {
        "AUTOWRITER_STATE_DIR": ("storage", "directory"),
        "AUTOWRITER_PROVIDER": ("provider", "active"),
        "AUTOWRITER_MODEL": ("generation", "model"),
        "ANTHROPIC_API_KEY": ("providers", "anthropic", "api_key"),
        "OPENAI_API_KEY": ("providers", "openai", "api_key"),
        "AUTOWRITER_LOCAL_ENDPOINT": ("providers", "local", "endpoint_url"),
        "GHOST_URL": ("ghost", "url"),
        "GHOST_ADMIN_API_KEY": ("ghost", "admin_api_key"),
        "WORDPRESS_URL": ("wordpress", "url"),
        "WORDPRESS_USERNAME": ("wordpress", "username"),
        "WORDPRESS_APP_PASSWORD": ("wordpress", "app_password"),
    }

    for env_var, path in env_mapping.items():
        value = os.environ.get(env_var)
        if value is not None:
            _set_path(data, path, value.strip())

    timeout_raw = os.environ.get("AUTOWRITER_PROVIDER_TIMEOUT")
    if timeout_raw is not None:
        try:
            data["provider"]["timeout"] = int(timeout_raw)
        except ValueError:
            logger.warning("Ignoring non-integer AUTOWRITER_PROVIDER_TIMEOUT=%r", timeout_raw)

    return AutowriterConfig.model_validate(data)
