"""Item pipeline: one bounded generation step per invocation.

Stages run strictly in order::

    pending → intro → headings → content(N) → conclusion → finalize → completed

Each call to :meth:`ItemPipeline.advance` performs a single provider
request (or the final publish), so the latency and cost of one advance
stay predictable however long the article is.
"""

from __future__ import annotations

import html
import logging
from collections.abc import Callable
from typing import Protocol

from autowriter.errors import ProviderEmptyResult
from autowriter.generation import prompts
from autowriter.generation.models import (
    Item,
    ItemArtifacts,
    ItemStatus,
    PendingOutput,
    SectionArtifact,
    Stage,
    utc_now,
)
from autowriter.generation.templates import TemplateDefinition, TemplateLibrary
from autowriter.generation.text import parse_headings, split_conclusion
from autowriter.providers.base import GenerateOptions, GenerationResult

logger = logging.getLogger(__name__)


class Generator(Protocol):
    def generate(self, prompt: str, options: GenerateOptions | None = None) -> GenerationResult: ...


class Publisher(Protocol):
    def publish(self, item: Item) -> str: ...


def render_body(item: Item, body_format: str = "markdown") -> str:
    """Join intro, sections and final conclusion into the article body."""
    artifacts = item.artifacts
    parts: list[str] = [(artifacts.intro or "").strip()]

    def heading(text: str) -> str:
        if body_format == "html":
            return f"<h2>{html.escape(text)}</h2>"
        return f"## {text}"

    for section in artifacts.sections:
        parts.append(f"{heading(section.heading)}\n\n{section.content.strip()}")
    parts.append(f"{heading('Conclusion')}\n\n{(artifacts.final_conclusion or '').strip()}")
    return "\n\n".join(p for p in parts if p)


def pad_headings(headings: list[str], count: int, topic: str) -> list[str]:
    """Extend a short heading list to *count* entries derived from the topic."""
    padded = list(headings)
    part = len(padded) + 1
    while len(padded) < count:
        padded.append(f"{topic}: part {part}")
        part += 1
    return padded


class ItemPipeline:
    """Drives one item forward by exactly one stage per call."""

    def __init__(
        self,
        generator: Generator,
        publisher: Publisher,
        *,
        body_format: str = "markdown",
        system_prompt: str = prompts.SYSTEM_PROMPT,
        templates: TemplateLibrary | None = None,
    ) -> None:
        self.generator = generator
        self.publisher = publisher
        self.templates = templates or TemplateLibrary()
        self.body_format = body_format
        self.system_prompt = system_prompt
        self._handlers: dict[Stage, Callable[[Item, Callable[[], None] | None], None]] = {
            Stage.INTRO: self._intro,
            Stage.HEADINGS: self._headings,
            Stage.CONTENT: self._content,
            Stage.CONCLUSION: self._conclusion,
            Stage.FINALIZE: self._finalize,
        }

    def advance(self, item: Item, checkpoint: Callable[[], None] | None = None) -> Stage:
        """Perform the item's next unit of work and return its new stage.

        Args:
            item: The item to advance; mutated in place.
            checkpoint: Persists the owning job. Called after the raw
                provider output is attached to the item and before it is
                parsed.

        Raises:
            ProviderError: The provider call failed; the stage is unchanged.
            PublishError: The publisher rejected the finished article.
            PersistenceError: The checkpoint write failed.
            ValueError: The item is already terminal.
        """
        if item.is_terminal:
            raise ValueError(f"Item {item.id} is already {item.status}")

        if item.stage == Stage.PENDING:
            item.status = ItemStatus.PROCESSING
            item.stage = item.stage.next()

        stage = item.stage
        self._handlers[stage](item, checkpoint)
        item.stage_attempts = 0
        item.last_error = None
        item.updated_at = utc_now()
        logger.debug("Item %s: %s -> %s", item.id, stage, item.stage)
        return item.stage

    # ── Provider calls ───────────────────────────────────────────

    def _template(self, item: Item) -> TemplateDefinition | None:
        if not item.template_id:
            return None
        template = self.templates.get(item.template_id)
        if template is None:
            logger.warning("Item %s: template %s no longer exists", item.id, item.template_id)
        return template

    def _guidance(self, item: Item, stage: Stage) -> str:
        template = self._template(item)
        return template.guidance(stage, item.topic, item.heading_count) if template else ""

    def _options(self, item: Item, stage: Stage) -> GenerateOptions:
        max_tokens = item.max_tokens
        if max_tokens is None:
            template = self._template(item)
            if template is not None:
                max_tokens = template.stage_tokens(stage, item.heading_count)
        return GenerateOptions(
            model=item.model,
            max_tokens=max_tokens,
            temperature=item.temperature,
            system_prompt=self.system_prompt,
            label=f"{stage}:{item.id}",
        )

    def _generate(
        self,
        item: Item,
        stage: Stage,
        prompt: str,
        checkpoint: Callable[[], None] | None,
        *,
        section_index: int | None = None,
    ) -> str:
        saved = item.pending_output
        if saved is not None and saved.stage == stage and saved.section_index == section_index:
            logger.info("Item %s: applying saved %s output", item.id, stage)
            return saved.text

        result = self.generator.generate(prompt, self._options(item, stage))
        item.tokens_used += result.tokens_used
        item.cost = round(item.cost + result.cost, 6)
        item.pending_output = PendingOutput(
            stage=stage,
            section_index=section_index,
            text=result.text,
            tokens_used=result.tokens_used,
            cost=result.cost,
            model=result.model,
        )
        if checkpoint is not None:
            checkpoint()
        return result.text

    # ── Stages ───────────────────────────────────────────────────

    def _intro(self, item: Item, checkpoint: Callable[[], None] | None) -> None:
        prompt = prompts.intro_prompt(
            item.topic,
            item.include_keywords,
            item.exclude_keywords,
            self._guidance(item, Stage.INTRO),
        )
        text = self._generate(item, Stage.INTRO, prompt, checkpoint)
        item.artifacts.intro = text.strip()
        item.pending_output = None
        item.stage = item.stage.next()

    def _headings(self, item: Item, checkpoint: Callable[[], None] | None) -> None:
        prompt = prompts.headings_prompt(
            item.topic, item.heading_count, item.include_keywords, item.exclude_keywords
        )
        text = self._generate(item, Stage.HEADINGS, prompt, checkpoint)
        item.pending_output = None
        headings = parse_headings(text, item.heading_count)
        if not headings:
            raise ProviderEmptyResult("No headings could be parsed from the response")
        if len(headings) < item.heading_count:
            logger.warning(
                "Item %s: asked for %d headings, got %d; padding", item.id, item.heading_count, len(headings)
            )
            headings = pad_headings(headings, item.heading_count, item.topic)
        item.artifacts.headings = headings
        item.artifacts.sections = [SectionArtifact(heading=h) for h in headings]
        item.artifacts.sections_completed = 0
        item.stage = item.stage.next()

    def _content(self, item: Item, checkpoint: Callable[[], None] | None) -> None:
        artifacts = item.artifacts
        index = artifacts.sections_completed
        section = artifacts.sections[index]
        prompt = prompts.section_prompt(
            section.heading,
            item.include_keywords,
            item.exclude_keywords,
            self._guidance(item, Stage.CONTENT),
        )
        text = self._generate(item, Stage.CONTENT, prompt, checkpoint, section_index=index)
        section.content, section.conclusion = split_conclusion(text)
        item.pending_output = None
        artifacts.sections_completed = index + 1
        if artifacts.sections_completed >= len(artifacts.sections):
            item.stage = item.stage.next()

    def _conclusion(self, item: Item, checkpoint: Callable[[], None] | None) -> None:
        sections = item.artifacts.sections
        summaries = [s.conclusion for s in sections if s.conclusion]
        if not summaries:
            summaries = [s.content for s in sections]
        prompt = prompts.conclusion_prompt(
            summaries,
            item.include_keywords,
            item.exclude_keywords,
            self._guidance(item, Stage.CONCLUSION),
        )
        text = self._generate(item, Stage.CONCLUSION, prompt, checkpoint)
        item.artifacts.final_conclusion = text.strip()
        item.pending_output = None
        item.stage = item.stage.next()

    def _finalize(self, item: Item, checkpoint: Callable[[], None] | None) -> None:
        item.body = render_body(item, self.body_format)
        item.content_id = self.publisher.publish(item)
        item.status = ItemStatus.COMPLETED
        item.stage = item.stage.next()
        item.completed_at = utc_now()
        item.artifacts = ItemArtifacts()
        logger.info("Item %s published as %s", item.id, item.content_id)
