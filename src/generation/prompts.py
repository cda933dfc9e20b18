"""Prompts for each pipeline stage and for topic suggestions."""

from __future__ import annotations

from autowriter.generation.text import CONCLUSION_MARKER

SYSTEM_PROMPT = (
    "You are an experienced blog writer. Output only the requested text, "
    "with no preamble, no commentary and no closing remarks."
)

INTRO_PROMPT = (
    "Compose a SEO optimized engaging introduction on the topic: '{topic}'. "
    "Ensure that each paragraph begins with a capitalized letter. "
    "Please do not include a conclusion in this introduction."
)

HEADINGS_PROMPT = (
    "Generate {count} headings based on the following topic: '{topic}'. "
    "Present the answer as a numbered list and ensure that the first letter "
    "of each heading is capitalized. Do not include any conversation or extra comments."
)

SECTION_PROMPT = (
    "Compose an SEO-friendly blog section centered around the subject '{heading}'. "
    "This section should provide in-depth information on '{heading}', subtly integrating "
    "appropriate SEO tags, pertinent keywords and phrases. The resulting text should "
    "seamlessly integrate within a broader article. "
    "Do not replicate the subject '{heading}' as a headline or subheading in your output. "
    "Additionally, after the main content, please provide a conclusion that summarizes "
    "the key points discussed in the section. "
    "Start the conclusion by adding the marker '{marker}'"
)

CONCLUSION_PROMPT = (
    "Compose a concise conclusion by synthesizing the key takeaways from the "
    "following blog sections:\n\n{sections}\n\n"
    "Ensure the first letter of each paragraph is capitalized. "
    "Do not engage in a conversational style or provide additional commentary."
)

TOPICS_PROMPT = (
    "Generate {count} SEO-optimized blog titles based on the following subject: '{subject}'. "
    "The titles should be succinct and directly related to the subject. "
    "Please maintain a professional tone. "
    "Format as a numbered list."
)


def keyword_clauses(include: list[str], exclude: list[str]) -> str:
    """Constraint sentences appended verbatim to every generation prompt."""
    clauses = ""
    if exclude:
        clauses += f" Make sure you ignore the keywords: {', '.join(exclude)}."
    if include:
        clauses += f" Make sure you include the keywords: {', '.join(include)}."
    return clauses


def _guided(prompt: str, guidance: str) -> str:
    return f"{prompt} {guidance.strip()}" if guidance.strip() else prompt


def intro_prompt(topic: str, include: list[str], exclude: list[str], guidance: str = "") -> str:
    return _guided(INTRO_PROMPT.format(topic=topic), guidance) + keyword_clauses(include, exclude)


def headings_prompt(topic: str, count: int, include: list[str], exclude: list[str]) -> str:
    return HEADINGS_PROMPT.format(topic=topic, count=count) + keyword_clauses(include, exclude)


def section_prompt(heading: str, include: list[str], exclude: list[str], guidance: str = "") -> str:
    prompt = SECTION_PROMPT.format(heading=heading, marker=CONCLUSION_MARKER)
    return _guided(prompt, guidance) + keyword_clauses(include, exclude)


def conclusion_prompt(
    section_conclusions: list[str],
    include: list[str],
    exclude: list[str],
    guidance: str = "",
) -> str:
    sections = "\n\n".join(c for c in section_conclusions if c)
    return _guided(CONCLUSION_PROMPT.format(sections=sections), guidance) + keyword_clauses(include, exclude)


def topics_prompt(subject: str, count: int) -> str:
    return TOPICS_PROMPT.format(subject=subject, count=count)
