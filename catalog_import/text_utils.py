"""Text cleanup helpers for names, descriptions and identifiers."""

import re
from typing import Optional

from bs4 import BeautifulSoup

__all__ = [
    "strip_markup",
    "title_case",
    "clean_description",
    "short_description",
    "slugify",
    "image_stem",
    "parent_sku",
]

# Words kept lowercase inside titles (never the first word)
MINOR_WORDS = frozenset({
    "a", "an", "and", "as", "at", "but", "by", "for", "from",
    "in", "into", "near", "nor", "of", "on", "onto", "or",
    "the", "to", "with",
})

SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+")
TRAILING_YEAR_RE = re.compile(r"\s*20\d{2}\s*\.?\s*$")
RESTRICTED_RE = re.compile(r"\s*Restricted[^.]*\.\s*$", re.IGNORECASE)


def strip_markup(text: Optional[str]) -> str:
    """Return the visible text of an HTML fragment with whitespace collapsed."""
    if not text:
        return ""
    if "<" not in text and "&" not in text:
        return " ".join(text.split())
    soup = BeautifulSoup(text, "lxml")
    return " ".join(soup.get_text(" ").split())


def title_case(text: str) -> str:
    """Title-case a product name, keeping minor words lowercase after the first."""
    words = text.lower().split(" ")
    out = []
    for index, word in enumerate(words):
        if index > 0 and word in MINOR_WORDS:
            out.append(word)
        else:
            out.append(word[:1].upper() + word[1:])
    return " ".join(out).strip()


def clean_description(description: Optional[str]) -> str:
    """Strip markup plus trailing release-year and restriction notes."""
    cleaned = strip_markup(description)
    cleaned = TRAILING_YEAR_RE.sub("", cleaned)
    cleaned = RESTRICTED_RE.sub("", cleaned)
    return " ".join(cleaned.split())


def short_description(description: str, max_length: int = 160) -> str:
    """First two sentences that fit in ``max_length``, else a word-boundary cut."""
    short = ""
    for sentence in SENTENCE_RE.findall(description)[:2]:
        if len(short) + len(sentence) > max_length:
            break
        short += sentence

    if not short:
        short = description[:max_length]
        last_space = short.rfind(" ")
        if len(description) > max_length and last_space > 0:
            short = short[:last_space] + "..."

    return short.strip()


def slugify(text: str, max_length: int = 200) -> str:
    """URL slug: lowercase alphanumerics joined by single hyphens."""
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug[:max_length].rstrip("-")


def image_stem(product_name: str, max_length: int = 50) -> str:
    """Deterministic filename stem for a product's cached images."""
    stem = re.sub(r"[^a-z0-9\s-]", "", product_name.lower())
    stem = re.sub(r"\s+", "-", stem)
    stem = re.sub(r"-+", "-", stem)
    return stem[:max_length] or "product"


def parent_sku(manufacturer_code: str, base_name: str) -> str:
    """SKU for the parent of a variation group, e.g. ``VAR-ACME-FOO-BAR``."""
    name_part = re.sub(r"[^a-zA-Z0-9]", "-", base_name[:30])
    name_part = re.sub(r"-+", "-", name_part).strip("-")
    return f"VAR-{manufacturer_code}-{name_part}".upper()
