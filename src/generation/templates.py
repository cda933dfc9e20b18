"""Content templates: per-stage prompts, token limits and generation settings.

Each template section is attached to one pipeline stage (intro, content
or conclusion). Its prompt is added to that stage's instructions with
``{topic}`` and ``{headings}`` filled in, and its ``max_tokens`` caps
the stage's provider calls. The sum of all section budgets is the
per-article token estimate.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path

import pydantic
from pydantic import BaseModel, Field, field_validator

from autowriter.errors import ValidationError
from autowriter.generation.models import Stage
from autowriter.lock import file_mutex
from autowriter.shared.storage import load_model, save_model

logger = logging.getLogger(__name__)

TEMPLATES_FILENAME = "templates.json"
DEFAULT_SECTION_TOKENS = 200
TEMPLATE_STAGES = (Stage.INTRO, Stage.CONTENT, Stage.CONCLUSION)


def fill_placeholders(text: str, variables: dict[str, object]) -> str:
    """Replace ``{name}`` markers; unknown markers are left as they are."""
    for key, value in variables.items():
        text = text.replace("{" + key + "}", str(value))
    return text


class TemplateSection(BaseModel):
    key: str
    stage: Stage = Stage.CONTENT
    prompt: str = ""
    max_tokens: int = DEFAULT_SECTION_TOKENS

    @field_validator("stage")
    @classmethod
    def _generation_stage(cls, value: Stage) -> Stage:
        if value not in TEMPLATE_STAGES:
            raise ValueError(f"sections belong to intro, content or conclusion, not {value}")
        return value


class TemplateSettings(BaseModel):
    temperature: float | None = None
    heading_count: int | None = None


class TemplateDefinition(BaseModel):
    """A named article structure: what each stage asks for and may spend."""

    id: str
    name: str
    description: str = ""
    category: str = "general"
    sections: list[TemplateSection] = Field(default_factory=list)
    settings: TemplateSettings = Field(default_factory=TemplateSettings)
    builtin: bool = False
    usage_count: int = 0

    @property
    def token_budget(self) -> int:
        """Tokens one article of this template is expected to consume."""
        return sum(s.max_tokens for s in self.sections)

    def sections_for(self, stage: Stage) -> list[TemplateSection]:
        return [s for s in self.sections if s.stage == stage]

    def guidance(self, stage: Stage, topic: str, heading_count: int) -> str:
        """Section prompts for *stage* with the placeholders filled in."""
        variables = {"topic": topic, "headings": heading_count}
        prompts = [fill_placeholders(s.prompt, variables).strip() for s in self.sections_for(stage)]
        return " ".join(p for p in prompts if p)

    def stage_tokens(self, stage: Stage, heading_count: int) -> int | None:
        """Token cap for one provider call at *stage*.

        The content budget is shared by the per-heading calls. Returns
        None when the template has no section for the stage.
        """
        sections = self.sections_for(stage)
        if not sections:
            return None
        total = sum(s.max_tokens for s in sections)
        if stage == Stage.CONTENT:
            return max(1, total // max(1, heading_count))
        return total


def _builtin(
    id: str,
    name: str,
    description: str,
    category: str,
    sections: list[tuple[str, Stage, int, str]],
    temperature: float,
    heading_count: int,
) -> TemplateDefinition:
    return TemplateDefinition(
        id=id,
        name=name,
        description=description,
        category=category,
        sections=[
            TemplateSection(key=key, stage=stage, max_tokens=tokens, prompt=prompt)
            for key, stage, tokens, prompt in sections
        ],
        settings=TemplateSettings(temperature=temperature, heading_count=heading_count),
        builtin=True,
    )


BUILTIN_TEMPLATES: dict[str, TemplateDefinition] = {
    t.id: t
    for t in (
        _builtin(
            "blog_post",
            "Blog Post",
            "Standard blog post with introduction, main content, and conclusion",
            "general",
            [
                ("introduction", Stage.INTRO, 200, "Hook the reader and provide context."),
                (
                    "main_content",
                    Stage.CONTENT,
                    800,
                    "This is one of {headings} main sections; give detailed information.",
                ),
                (
                    "conclusion",
                    Stage.CONCLUSION,
                    150,
                    "Summarize the key points and end with a call to action.",
                ),
            ],
            0.7,
            3,
        ),
        _builtin(
            "how_to_guide",
            "How-To Guide",
            "Step-by-step tutorial with clear instructions",
            "tutorial",
            [
                (
                    "introduction",
                    Stage.INTRO,
                    150,
                    "Explain what readers will learn about '{topic}' and why it is useful.",
                ),
                (
                    "prerequisites",
                    Stage.INTRO,
                    100,
                    "List the prerequisites and requirements for '{topic}'.",
                ),
                ("steps", Stage.CONTENT, 600, "Use numbered steps and be specific."),
                ("troubleshooting", Stage.CONTENT, 200, "Include common troubleshooting tips."),
                ("conclusion", Stage.CONCLUSION, 100, "Summarize what was accomplished."),
            ],
            0.3,
            5,
        ),
        _builtin(
            "product_review",
            "Product Review",
            "Product review with features, pros and cons, and a verdict",
            "review",
            [
                ("introduction", Stage.INTRO, 150, "Provide context and first impressions of '{topic}'."),
                ("features", Stage.CONTENT, 300, "Describe key features and specifications in detail."),
                ("pros_cons", Stage.CONTENT, 250, "Be balanced and honest about pros and cons."),
                ("comparison", Stage.CONTENT, 200, "Compare with similar products where relevant."),
                (
                    "verdict",
                    Stage.CONCLUSION,
                    150,
                    "Give a final verdict and rating, including who should buy it and why.",
                ),
            ],
            0.5,
            5,
        ),
        _builtin(
            "news_article",
            "News Article",
            "News article with an inverted pyramid structure",
            "news",
            [
                ("headline", Stage.INTRO, 50, "Open with a compelling, informative headline sentence."),
                ("lead", Stage.INTRO, 100, "Cover who, what, when, where and why up front."),
                ("body", Stage.CONTENT, 500, "Provide details, quotes and context."),
                ("background", Stage.CONTENT, 200, "Add background information on the story."),
            ],
            0.2,
            2,
        ),
        _builtin(
            "listicle",
            "Listicle",
            "List-based article with numbered points",
            "general",
            [
                (
                    "introduction",
                    Stage.INTRO,
                    150,
                    "Explain what the list of {headings} items covers and why it is valuable.",
                ),
                ("list_items", Stage.CONTENT, 600, "Treat this as one detailed, valuable list item."),
                ("conclusion", Stage.CONCLUSION, 100, "Summarize the key takeaways."),
            ],
            0.6,
            10,
        ),
    )
}


class _TemplateData(BaseModel):
    templates: list[TemplateDefinition] = Field(default_factory=list)
    usage: dict[str, int] = Field(default_factory=dict)


class TemplateLibrary:
    """Built-in templates plus operator-defined ones stored as JSON.

    Usage counts for every template, built-in or custom, live in the same
    file. Without a state directory the library is read-only.
    """

    def __init__(self, state_dir: Path | None = None) -> None:
        self._path = state_dir / TEMPLATES_FILENAME if state_dir else None

    def _load(self) -> _TemplateData:
        if self._path is None:
            return _TemplateData()
        return load_model(self._path, _TemplateData) or _TemplateData()

    def _require_path(self) -> Path:
        if self._path is None:
            raise ValidationError("Custom templates need a state directory")
        return self._path

    @staticmethod
    def _with_usage(template: TemplateDefinition, data: _TemplateData) -> TemplateDefinition:
        return template.model_copy(update={"usage_count": data.usage.get(template.id, 0)})

    def get(self, template_id: str) -> TemplateDefinition | None:
        data = self._load()
        if template_id in BUILTIN_TEMPLATES:
            return self._with_usage(BUILTIN_TEMPLATES[template_id], data)
        for template in data.templates:
            if template.id == template_id:
                return self._with_usage(template, data)
        return None

    def all(self, category: str | None = None) -> list[TemplateDefinition]:
        """Built-ins first, then by usage (most used first) and name."""
        data = self._load()
        templates = [self._with_usage(t, data) for t in (*BUILTIN_TEMPLATES.values(), *data.templates)]
        if category:
            templates = [t for t in templates if t.category == category]
        return sorted(templates, key=lambda t: (not t.builtin, -t.usage_count, t.name))

    def categories(self) -> dict[str, int]:
        """Template count per category, largest first."""
        counts: dict[str, int] = {}
        for template in self.all():
            counts[template.category] = counts.get(template.category, 0) + 1
        return dict(sorted(counts.items(), key=lambda kv: (-kv[1], kv[0])))

    def save(self, template: TemplateDefinition) -> TemplateDefinition:
        """Create or replace a custom template."""
        path = self._require_path()
        if not template.id or not template.name or not template.sections:
            raise ValidationError("A template needs an id, a name and at least one section")
        if template.id in BUILTIN_TEMPLATES:
            raise ValidationError(f"Cannot overwrite built-in template {template.id!r}")
        stored = template.model_copy(update={"builtin": False, "usage_count": 0})
        with file_mutex(path):
            data = self._load()
            data.templates = [t for t in data.templates if t.id != template.id]
            data.templates.append(stored)
            save_model(path, data)
        logger.info("Saved template %s", template.id)
        return stored

    def delete(self, template_id: str) -> bool:
        if self._path is None or template_id in BUILTIN_TEMPLATES:
            return False
        with file_mutex(self._path):
            data = self._load()
            remaining = [t for t in data.templates if t.id != template_id]
            if len(remaining) == len(data.templates):
                return False
            data.templates = remaining
            data.usage.pop(template_id, None)
            save_model(self._path, data)
        logger.info("Deleted template %s", template_id)
        return True

    def increment_usage(self, template_id: str) -> int:
        """Count one job created from *template_id*. Returns the new count."""
        if self._path is None:
            return 0
        with file_mutex(self._path):
            data = self._load()
            data.usage[template_id] = data.usage.get(template_id, 0) + 1
            save_model(self._path, data)
            return data.usage[template_id]

    # ── Exchange ─────────────────────────────────────────────────

    def export(self, template_id: str, version: str = "") -> dict | None:
        """Portable JSON-ready form of a template, or None if unknown."""
        template = self.get(template_id)
        if template is None:
            return None
        exported = template.model_dump(mode="json", exclude={"builtin", "usage_count"})
        exported["version"] = version
        exported["exported_at"] = datetime.now(UTC).isoformat()
        return exported

    def import_template(self, raw: dict) -> TemplateDefinition:
        """Store an exported template as a new custom one.

        The name gets an ``(Imported)`` suffix and the id is made unique
        against every existing template.

        Raises:
            ValidationError: *raw* is not a valid template.
        """
        try:
            template = TemplateDefinition.model_validate(raw)
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Invalid template: {exc}") from exc

        base = template.id or "template"
        new_id = base
        suffix = 1
        while self.get(new_id) is not None:
            new_id = f"{base}_imported" if suffix == 1 else f"{base}_imported_{suffix}"
            suffix += 1
        imported = template.model_copy(update={"id": new_id, "name": f"{template.name} (Imported)"})
        return self.save(imported)

