"""Tests for built-in and custom content templates."""

from __future__ import annotations

from pathlib import Path

import pydantic
import pytest

from autowriter.errors import ValidationError
from autowriter.generation.models import Stage
from autowriter.generation.templates import (
    BUILTIN_TEMPLATES,
    TemplateDefinition,
    TemplateLibrary,
    TemplateSection,
    fill_placeholders,
)


class TestBuiltins:
    def test_expected_templates(self):
        assert set(BUILTIN_TEMPLATES) == {
            "blog_post",
            "how_to_guide",
            "product_review",
            "news_article",
            "listicle",
        }

    def test_blog_post_budget(self):
        assert BUILTIN_TEMPLATES["blog_post"].token_budget == 1150
        assert BUILTIN_TEMPLATES["blog_post"].settings.heading_count == 3

    def test_listicle_settings(self):
        listicle = BUILTIN_TEMPLATES["listicle"]
        assert listicle.settings.heading_count == 10
        assert listicle.builtin is True


class TestLibrary:
    def _custom(self, template_id: str = "faq") -> TemplateDefinition:
        return TemplateDefinition(
            id=template_id,
            name="FAQ",
            sections=[TemplateSection(key="q", max_tokens=150), TemplateSection(key="a", max_tokens=350)],
        )

    def test_save_and_get(self, tmp_path: Path):
        library = TemplateLibrary(tmp_path)
        library.save(self._custom())
        loaded = TemplateLibrary(tmp_path).get("faq")
        assert loaded is not None
        assert loaded.token_budget == 500
        assert [t.id for t in library.all()][-1] == "faq"

    def test_cannot_shadow_builtin(self, tmp_path: Path):
        with pytest.raises(ValidationError):
            TemplateLibrary(tmp_path).save(self._custom("blog_post"))

    def test_needs_sections(self, tmp_path: Path):
        with pytest.raises(ValidationError):
            TemplateLibrary(tmp_path).save(TemplateDefinition(id="empty", name="Empty"))

    def test_without_state_dir(self):
        library = TemplateLibrary()
        assert library.get("news_article") is not None
        assert library.get("faq") is None
        with pytest.raises(ValidationError):
            library.save(self._custom())

    def test_delete(self, tmp_path: Path):
        library = TemplateLibrary(tmp_path)
        library.save(self._custom())
        assert library.delete("faq") is True
        assert library.delete("faq") is False
        assert library.delete("blog_post") is False


class TestStageSettings:
    def test_guidance_fills_placeholders(self):
        how_to = BUILTIN_TEMPLATES["how_to_guide"]
        guidance = how_to.guidance(Stage.INTRO, "sourdough", 5)
        assert "learn about 'sourdough'" in guidance
        assert "prerequisites and requirements for 'sourdough'" in guidance
        assert how_to.guidance(Stage.CONCLUSION, "sourdough", 5) == "Summarize what was accomplished."

    def test_unknown_placeholder_is_kept(self):
        assert fill_placeholders("{topic} by {author}", {"topic": "Tea"}) == "Tea by {author}"

    def test_content_budget_is_split_across_headings(self):
        blog = BUILTIN_TEMPLATES["blog_post"]
        assert blog.stage_tokens(Stage.INTRO, 3) == 200
        assert blog.stage_tokens(Stage.CONTENT, 4) == 200
        assert blog.stage_tokens(Stage.CONCLUSION, 4) == 150

    def test_stage_without_section_has_no_cap(self):
        assert BUILTIN_TEMPLATES["news_article"].stage_tokens(Stage.CONCLUSION, 2) is None

    def test_section_must_target_a_generation_stage(self):
        with pytest.raises(pydantic.ValidationError):
            TemplateSection(key="x", stage=Stage.HEADINGS)


class TestUsage:
    def test_increment_usage_shows_on_templates(self, tmp_path: Path):
        library = TemplateLibrary(tmp_path)
        assert library.increment_usage("listicle") == 1
        assert library.increment_usage("listicle") == 2
        assert TemplateLibrary(tmp_path).get("listicle").usage_count == 2
        assert library.get("blog_post").usage_count == 0

    def test_most_used_custom_template_sorts_first(self, tmp_path: Path):
        library = TemplateLibrary(tmp_path)
        for template_id in ("aaa", "zzz"):
            library.save(
                TemplateDefinition(id=template_id, name=template_id, sections=[TemplateSection(key="s")])
            )
        library.increment_usage("zzz")
        custom = [t.id for t in library.all() if not t.builtin]
        assert custom == ["zzz", "aaa"]

    def test_delete_forgets_usage(self, tmp_path: Path):
        library = TemplateLibrary(tmp_path)
        library.save(TemplateDefinition(id="faq", name="FAQ", sections=[TemplateSection(key="q")]))
        library.increment_usage("faq")
        library.delete("faq")
        library.save(TemplateDefinition(id="faq", name="FAQ", sections=[TemplateSection(key="q")]))
        assert library.get("faq").usage_count == 0

    def test_without_state_dir_usage_is_not_kept(self):
        assert TemplateLibrary().increment_usage("blog_post") == 0

    def test_categories(self):
        categories = TemplateLibrary().categories()
        assert categories == {"general": 2, "news": 1, "review": 1, "tutorial": 1}
        assert [t.id for t in TemplateLibrary().all("general")] == ["blog_post", "listicle"]


class TestExchange:
    def test_export_carries_version(self, tmp_path: Path):
        exported = TemplateLibrary(tmp_path).export("news_article", version="1.2.0")
        assert exported["version"] == "1.2.0"
        assert "exported_at" in exported
        assert "usage_count" not in exported
        assert TemplateLibrary(tmp_path).export("missing") is None

    def test_import_gets_unique_id(self, tmp_path: Path):
        library = TemplateLibrary(tmp_path)
        exported = library.export("blog_post")
        first = library.import_template(exported)
        second = library.import_template(exported)
        assert first.id == "blog_post_imported"
        assert second.id == "blog_post_imported_2"
        assert first.name == "Blog Post (Imported)"
        assert first.builtin is False
        assert first.token_budget == 1150

    def test_import_rejects_invalid_payload(self, tmp_path: Path):
        with pytest.raises(ValidationError, match="Invalid template"):
            TemplateLibrary(tmp_path).import_template({"name": "No id"})
