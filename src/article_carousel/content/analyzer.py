"""Carousel format analysis.

Decides how many slides an article gets and what each slide is for, and
suggests a headline per slide from the article's own structure.
"""

from __future__ import annotations

import re

from .models import Article, CarouselFormat, SlideType

DEFAULT_PAGE_COUNT = 5
CTA_HEADLINE = "Ready to learn more?"
MAX_HEADLINE_CHARS = 60

# Page counts for article types that get a non-default format
PAGE_COUNTS_BY_TYPE = {
    "deep_dive": 7,
    "how_to": 6,
}

_HEADING_RE = re.compile(r"^#+\s*(.+)$", re.MULTILINE)


def _structure_for(page_count: int) -> list[SlideType]:
    return [SlideType.TITLE] + [SlideType.CONTENT] * (page_count - 2) + [SlideType.CTA]


def get_recommended_format(article_type: str | None) -> CarouselFormat:
    """Get the slide structure for an article type, without headlines."""
    page_count = PAGE_COUNTS_BY_TYPE.get(article_type or "", DEFAULT_PAGE_COUNT)
    return CarouselFormat(page_count=page_count, structure=_structure_for(page_count))


def analyze_format(article: Article) -> CarouselFormat:
    """Analyze an article to determine its carousel format.

    Args:
        article: Article to analyze.

    Returns:
        CarouselFormat with structure and advisory headlines.
    """
    fmt = get_recommended_format(article.article_type)
    fmt.suggested_headlines = suggest_headlines(article, fmt.page_count)
    return fmt


def suggest_headlines(article: Article, page_count: int) -> list[str]:
    """Suggest one headline per slide."""
    headlines = [clean_text(article.title)]

    for i in range(page_count - 2):
        section = article.sections[i] if i < len(article.sections) else ""
        if section.strip():
            headlines.append(extract_headline(section))
        else:
            headlines.append(f"Key Insight {i + 1}")

    headlines.append(CTA_HEADLINE)
    return headlines


def extract_heading(section: str) -> str | None:
    """Get the first markdown heading of a section, if any."""
    match = _HEADING_RE.search(section)
    return match.group(1).strip() if match else None


def extract_headline(section: str) -> str:
    """Extract a short headline from a section of text (max ~60 chars)."""
    heading = extract_heading(section)
    if heading:
        return limit_headline(heading)

    first_sentence = re.split(r"[.!?]", section, maxsplit=1)[0].strip()
    if len(first_sentence) <= MAX_HEADLINE_CHARS:
        return clean_text(first_sentence)

    # Natural break point
    first_clause = re.split(r"[,;:–—]", first_sentence, maxsplit=1)[0]
    if first_clause and len(first_clause) <= MAX_HEADLINE_CHARS:
        return clean_text(first_clause)

    return limit_headline(first_sentence)


def limit_headline(text: str, limit: int = MAX_HEADLINE_CHARS) -> str:
    """Limit a headline to ``limit`` chars at a word boundary."""
    cleaned = clean_text(text)
    if len(cleaned) <= limit:
        return cleaned

    truncated = cleaned[:limit]
    last_space = truncated.rfind(" ")
    if last_space > limit // 2:
        return truncated[:last_space]
    return truncated


def clean_text(text: str) -> str:
    """Normalize whitespace and strip markdown heading markers."""
    text = re.sub(r"^#+\s*", "", text.strip())
    return re.sub(r"\s+", " ", text).strip()
