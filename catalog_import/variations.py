"""Variation grouping.

Partitions a flat list of product records into variable-product groups and
standalone (simple) products. Records group together when their *base name*
(the name with variant tokens stripped), manufacturer and type all match.
Each group then gets one varying attribute, chosen by an ordered list of
strategies, and one option value per member.
"""

import logging
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Pattern, Sequence, Tuple

from catalog_import.config import VariationVocabulary, default_vocabulary
from catalog_import.logging_config import get_logger, log_import_event
from catalog_import.models import (
    ProductRecord,
    VariationAttribute,
    VariationConflict,
    VariationGroup,
)
from catalog_import.text_utils import title_case

__all__ = [
    "VariationDetector",
    "VariationResult",
    "extract_base_name",
    "detect_variations",
]

logger = get_logger("variations")

GroupKey = Tuple[str, str, str]
AttributeStrategy = Callable[[Sequence[ProductRecord], str], bool]

BRACKETS_RE = re.compile(r"\s*\[[^\]]*\]|\s*\([^)]*\)")
INCH_MARK_RE = re.compile(r"\s*\d*\.?\d+\s*(?:\"|″|'')")
PACK_COUNT_RE = re.compile(r"\s*\b\d+\s*(?:PK|PACK|PCS|PC|PIECES|PIECE|CT|COUNT)\b", re.IGNORECASE)
TRAILING_NUMBER_RE = re.compile(r"\s+\d*\.?\d+\.?\s*$")
TRAILING_PUNCT_RE = re.compile(r"[\s.\-,/]+$")


def _alternation(words: Sequence[str]) -> str:
    """Regex alternation, longest first, with flexible inner whitespace."""
    ordered = sorted(set(w.upper() for w in words if w.strip()), key=lambda w: (-len(w), w))
    if not ordered:
        return "(?!)"  # matches nothing
    return "|".join(r"\s+".join(re.escape(part) for part in w.split()) for w in ordered)


@dataclass
class VariationResult:
    """Outcome of one detection pass.

    ``groups`` and ``singles`` partition the input. ``conflicts`` lists
    rejected candidate groups; their members are also in ``singles``.
    """

    groups: List[VariationGroup] = field(default_factory=list)
    conflicts: List[VariationConflict] = field(default_factory=list)
    singles: List[ProductRecord] = field(default_factory=list)


class VariationDetector:
    """Groups records into variations using an injected keyword vocabulary."""

    def __init__(self, vocabulary: Optional[VariationVocabulary] = None):
        self.vocabulary = vocabulary or default_vocabulary()
        vocab = self.vocabulary

        units = _alternation(vocab.size_units)
        self._size_token_re: Pattern = re.compile(
            rf"(?<![\w.])(\d*\.?\d+)\s*(FL\.?\s*)?({units})\b\.?", re.IGNORECASE
        )
        self._phrase_re = re.compile(
            rf"[\s\-,/]+(?:{_alternation(vocab.multi_word_phrases)})\s*$", re.IGNORECASE
        )
        self._word_re = re.compile(
            rf"[\s\-,/]+(?:{_alternation(vocab.single_words)})\s*$", re.IGNORECASE
        )
        self._bulk_res = [re.compile(p, re.IGNORECASE) for p in vocab.bulk_display_names]

        # Colour phrases (e.g. "Rose Gold") are preferred over their single words
        color_set = {c.upper() for c in vocab.name_colors}
        color_terms = [p for p in vocab.multi_word_phrases if set(p.upper().split()) & color_set]
        color_terms.extend(vocab.name_colors)
        self._color_re = re.compile(rf"\b(?:{_alternation(color_terms)})\b", re.IGNORECASE)
        self._style_re = re.compile(rf"\b(?:{_alternation(vocab.style_words)})\b", re.IGNORECASE)
        self._flavor_re = re.compile(
            rf"\b(?:{_alternation(vocab.flavor_indicators)})\b", re.IGNORECASE
        )

        # Tried in order; the first strategy that matches names the attribute
        self.strategies: List[Tuple[VariationAttribute, AttributeStrategy]] = [
            (VariationAttribute.COLOR, self.varies_by_color),
            (VariationAttribute.FLAVOR, self.has_flavor_indicator),
            (VariationAttribute.SIZE, self.varies_by_size),
            (VariationAttribute.STYLE, self.varies_by_style),
        ]

    # -------------------------------------------------------------------------
    # Base names
    # -------------------------------------------------------------------------

    def _strip_once(self, name: str) -> str:
        base = " ".join(name.split())
        base = BRACKETS_RE.sub("", base)
        base = INCH_MARK_RE.sub("", base)
        base = self._size_token_re.sub("", base)
        base = PACK_COUNT_RE.sub("", base)
        base = " ".join(base.split())
        base = TRAILING_NUMBER_RE.sub("", base)
        base = self._phrase_re.sub("", base)
        base = self._word_re.sub("", base)
        return TRAILING_PUNCT_RE.sub("", base).strip()

    def extract_base_name(self, name: str) -> str:
        """Strip variant tokens from a product name.

        Repeats the strip until nothing changes, so the result is stable
        under a second application. A strip that would leave nothing is
        not applied.
        """
        current = " ".join((name or "").split())
        while True:
            stripped = self._strip_once(current)
            if not stripped or stripped == current:
                return current
            current = stripped

    def is_bulk_display(self, record: ProductRecord) -> bool:
        name = record.name.strip()
        return any(r.match(name) for r in self._bulk_res)

    # -------------------------------------------------------------------------
    # Token extraction
    # -------------------------------------------------------------------------

    def variant_suffix(self, name: str, base_name: str) -> str:
        """The part of ``name`` that is not the base name."""
        clean = " ".join(name.split())
        if base_name and clean.lower().startswith(base_name.lower()):
            suffix = clean[len(base_name):]
        else:
            base_words = {w.lower() for w in base_name.split()}
            suffix = " ".join(w for w in clean.split() if w.lower() not in base_words)
        return suffix.strip(" -,/.()[]")

    def size_tokens(self, text: str) -> List[str]:
        return [self.normalize_size(m.group(0)) for m in self._size_token_re.finditer(text)]

    def normalize_size(self, value: str) -> str:
        """Normalize a size like ``2.5OZ`` or ``8 fl. oz`` to ``2.5 oz`` / ``8 fl oz``."""
        match = self._size_token_re.search(value)
        if not match:
            return " ".join(value.split())
        number, fluid, unit = match.groups()
        if number.startswith("."):
            number = "0" + number
        unit = self.vocabulary.unit_aliases.get(unit.lower(), unit.lower())
        return f"{number} {'fl ' if fluid else ''}{unit}"

    def normalize_color(self, value: str) -> str:
        cleaned = " ".join(value.replace("-", " ").split())
        alias = self.vocabulary.color_aliases.get(cleaned.lower())
        return alias or title_case(cleaned)

    def name_colors(self, text: str) -> List[str]:
        return [m.group(0) for m in self._color_re.finditer(text)]

    def style_words(self, text: str) -> List[str]:
        return [m.group(0) for m in self._style_re.finditer(text)]

    # -------------------------------------------------------------------------
    # Attribute strategies
    # -------------------------------------------------------------------------

    def varies_by_color(self, members: Sequence[ProductRecord], base_name: str) -> bool:
        fields = {
            self.normalize_color(m.attributes.color).casefold()
            for m in members
            if m.attributes.color and m.attributes.color.strip()
        }
        if len(fields) >= 2:
            return True
        from_names = set()
        for m in members:
            found = self.name_colors(self.variant_suffix(m.name, base_name))
            if found:
                from_names.add(" ".join(found[0].split()).casefold())
        return len(from_names) >= 2

    def has_flavor_indicator(self, members: Sequence[ProductRecord], base_name: str) -> bool:
        return any(self._flavor_re.search(m.name) for m in members)

    def varies_by_size(self, members: Sequence[ProductRecord], base_name: str) -> bool:
        sizes = set()
        for m in members:
            if m.attributes.size:
                sizes.add(self.normalize_size(m.attributes.size).casefold())
            sizes.update(s.casefold() for s in self.size_tokens(m.name))
        return len(sizes) >= 2

    def varies_by_style(self, members: Sequence[ProductRecord], base_name: str) -> bool:
        styles = set()
        for m in members:
            found = self.style_words(self.variant_suffix(m.name, base_name))
            if found:
                styles.add(found[0].casefold())
        return len(styles) >= 2

    def choose_attribute(
        self, members: Sequence[ProductRecord], base_name: str
    ) -> VariationAttribute:
        for attribute, strategy in self.strategies:
            if strategy(members, base_name):
                return attribute
        return VariationAttribute.NONE

    # -------------------------------------------------------------------------
    # Option values
    # -------------------------------------------------------------------------

    def option_value(
        self, record: ProductRecord, attribute: VariationAttribute, base_name: str
    ) -> str:
        suffix = self.variant_suffix(record.name, base_name)

        if attribute is VariationAttribute.COLOR:
            if record.attributes.color and record.attributes.color.strip():
                return self.normalize_color(record.attributes.color)
            colors = self.name_colors(suffix) or self.name_colors(record.name)
            if colors:
                return self.normalize_color(colors[0])
        elif attribute is VariationAttribute.SIZE:
            if record.attributes.size and record.attributes.size.strip():
                return self.normalize_size(record.attributes.size)
            sizes = self.size_tokens(record.name)
            if sizes:
                return sizes[0]
        elif attribute is VariationAttribute.STYLE:
            styles = self.style_words(suffix)
            if styles:
                return title_case(styles[0])

        return title_case(suffix) if suffix else title_case(" ".join(record.name.split()))

    # -------------------------------------------------------------------------
    # Detection
    # -------------------------------------------------------------------------

    def _candidate_groups(
        self, records: Sequence[ProductRecord]
    ) -> "OrderedDict[GroupKey, List[ProductRecord]]":
        buckets: "OrderedDict[GroupKey, List[ProductRecord]]" = OrderedDict()
        for record in records:
            if not record.name.strip() or self.is_bulk_display(record):
                continue
            key = (self.extract_base_name(record.name), record.manufacturer_code, record.type_code)
            buckets.setdefault(key, []).append(record)
        return buckets

    def detect(self, records: Sequence[ProductRecord]) -> VariationResult:
        """Partition ``records`` into variation groups and single records."""
        result = VariationResult()
        grouped_ids = set()

        for (base_name, _mfr, _type), members in self._candidate_groups(records).items():
            if len(members) < 2:
                continue

            attribute = self.choose_attribute(members, base_name)
            values = [self.option_value(m, attribute, base_name) for m in members]

            seen: Dict[str, int] = {}
            for value in values:
                seen[value.casefold()] = seen.get(value.casefold(), 0) + 1
            duplicates = tuple(sorted({v for v in values if seen[v.casefold()] > 1}))

            if duplicates:
                conflict = VariationConflict(
                    base_name=base_name,
                    variation_attribute=attribute,
                    members=tuple(members),
                    duplicate_values=duplicates,
                )
                result.conflicts.append(conflict)
                log_import_event(
                    "variation_conflict",
                    {
                        "message": f"Variation conflict in '{base_name}': "
                                   f"duplicate {attribute.value} values {list(duplicates)}",
                        "base_name": base_name,
                        "attribute": attribute.value,
                        "skus": conflict.skus,
                    },
                    level=logging.WARNING,
                    logger_name="variations",
                )
                continue

            result.groups.append(VariationGroup(
                base_name=base_name,
                variation_attribute=attribute,
                members=tuple(members),
                option_values=tuple(values),
            ))
            grouped_ids.update(id(m) for m in members)

        result.singles = [r for r in records if id(r) not in grouped_ids]
        logger.info(
            f"Detected {len(result.groups)} variation groups, "
            f"{len(result.conflicts)} conflicts, {len(result.singles)} single products"
        )
        return result


def extract_base_name(name: str, vocabulary: Optional[VariationVocabulary] = None) -> str:
    """Base name of a product name under the given (or default) vocabulary."""
    return VariationDetector(vocabulary).extract_base_name(name)


def detect_variations(
    records: Sequence[ProductRecord],
    vocabulary: Optional[VariationVocabulary] = None,
) -> List[VariationGroup]:
    """Return only the valid variation groups found in ``records``."""
    return VariationDetector(vocabulary).detect(records).groups
