"""Shared fixtures: a scripted provider, a recording publisher and engine wiring."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from autowriter.config import AutowriterConfig, GenerationConfig, StorageConfig
from autowriter.errors import PublishError
from autowriter.generation.engine import JobEngine
from autowriter.generation.models import Item
from autowriter.generation.store import JobStore
from autowriter.generation.templates import TemplateLibrary
from autowriter.lock import ExecutionLock, MemoryKVStore
from autowriter.providers.base import AIProvider, GenerateOptions, GenerationResult, ModelInfo
from autowriter.providers.manager import ProviderManager
from autowriter.publishers.base import ContentPublisher

DEFAULT_RESPONSES = {
    "intro": "An engaging introduction.",
    "headings": "1. First heading\n2. Second heading\n3. Third heading",
    "content": "Section body text. [CONCLUSION] Section summary.",
    "conclusion": "Final thoughts.",
}


def default_responder(prompt: str, options: GenerateOptions) -> str:
    stage = options.label.split(":", 1)[0]
    return DEFAULT_RESPONSES.get(stage, "ok")


class StubProvider(AIProvider):
    """Provider returning scripted text; a responder may return an exception to raise."""

    name = "stub"
    description = "Scripted provider"
    default_model = "stub-1"
    models = (ModelInfo(id="stub-1", name="Stub", cost_per_1k_tokens=0.002),)

    def __init__(
        self,
        responder: Callable[[str, GenerateOptions], str | Exception] | None = None,
        tokens: int = 10,
    ) -> None:
        super().__init__()
        self.responder = responder or default_responder
        self.tokens = tokens
        self.calls: list[tuple[str, GenerateOptions]] = []

    @property
    def is_configured(self) -> bool:
        return True

    def generate(self, prompt: str, options: GenerateOptions | None = None) -> GenerationResult:
        options = options or GenerateOptions()
        self.calls.append((prompt, options))
        reply = self.responder(prompt, options)
        if isinstance(reply, Exception):
            raise reply
        return GenerationResult(
            text=reply,
            tokens_used=self.tokens,
            finish_reason="end_turn",
            model=self.resolve_model(options.model),
            provider=self.name,
        )

    def stages_called(self) -> list[str]:
        return [opts.label.split(":", 1)[0] for _, opts in self.calls]


class RecordingPublisher(ContentPublisher):
    """Keeps published items in memory; rejects topics listed in ``reject``."""

    platform = "memory"

    def __init__(self, reject: set[str] | None = None) -> None:
        self.reject = reject or set()
        self.published: list[Item] = []

    def publish(self, item: Item) -> str:
        if item.topic in self.reject:
            raise PublishError(f"Rejected {item.topic}")
        self.published.append(item.model_copy(deep=True))
        return f"post-{len(self.published)}"


@pytest.fixture
def config(tmp_path: Path) -> AutowriterConfig:
    return AutowriterConfig(
        storage=StorageConfig(directory=str(tmp_path / "state")),
        generation=GenerationConfig(inter_item_delay=0),
    )


@pytest.fixture
def state_dir(config: AutowriterConfig) -> Path:
    return config.storage.path


@pytest.fixture
def stub() -> StubProvider:
    return StubProvider()


@pytest.fixture
def stub_cls() -> type[StubProvider]:
    return StubProvider


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def publisher_cls() -> type[RecordingPublisher]:
    return RecordingPublisher


@pytest.fixture
def kv() -> MemoryKVStore:
    return MemoryKVStore()


@pytest.fixture
def make_engine(
    config: AutowriterConfig, state_dir: Path, kv: MemoryKVStore
) -> Callable[..., JobEngine]:
    """Build an engine over shared on-disk stores and a shared lock store."""

    def _make(
        provider: AIProvider,
        publisher: ContentPublisher | None = None,
        *,
        cfg: AutowriterConfig | None = None,
    ) -> JobEngine:
        cfg = cfg or config
        providers = ProviderManager(cfg, state_dir, providers={provider.name: provider}, active=provider.name)
        return JobEngine(
            JobStore(state_dir),
            ExecutionLock(kv, ttl=cfg.generation.lock_ttl),
            providers,
            publisher or RecordingPublisher(),
            config=cfg,
            templates=TemplateLibrary(state_dir),
            sleep=lambda _seconds: None,
        )

    return _make


@pytest.fixture
def engine(make_engine, stub: StubProvider, publisher: RecordingPublisher) -> JobEngine:
    return make_engine(stub, publisher)
