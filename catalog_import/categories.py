"""Category resolution with similarity-based inference.

Resolution tries, in order:

1. explicit: the record's own category codes that exist in the mapping
2. inferred-similarity: a weighted vote among already-categorized records
   sharing name words, SKU prefixes or a rounded price with the target
3. inferred-by-type: a static product-type to category table
4. none: an explicitly empty assignment

The similarity index is built once per run and only read afterwards.
"""

import re
from collections import OrderedDict, defaultdict
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, Iterable, List, Mapping, NamedTuple, Optional, Sequence, Set, Tuple

from catalog_import.config import InferenceSettings, default_inference_settings
from catalog_import.logging_config import get_logger
from catalog_import.models import CategoryAssignment, CategoryMethod, ProductRecord

__all__ = [
    "CategoryIndex",
    "CategoryResolver",
    "infer_categories",
    "significant_words",
    "sku_prefixes",
    "price_key",
]

logger = get_logger("categories")

Strategy = Callable[[ProductRecord], List[str]]


class IndexedRecord(NamedTuple):
    sku: str
    manufacturer_code: str
    codes: Tuple[str, ...]


def significant_words(name: str, settings: InferenceSettings) -> List[str]:
    """Lowercased name words long enough to matter and not stop words."""
    text = re.sub(r"[^a-z0-9\s]", " ", (name or "").lower())
    words: List[str] = []
    for word in text.split():
        if len(word) >= settings.min_word_length and word not in settings.stop_words:
            if word not in words:
                words.append(word)
    return words


def sku_prefixes(sku: str, settings: InferenceSettings) -> List[str]:
    """Prefix keys of a SKU: fixed-length heads plus its leading letters."""
    normalized = re.sub(r"[^A-Z0-9]", "", (sku or "").upper())
    prefixes: List[str] = []
    for length in settings.sku_prefix_lengths:
        if len(normalized) >= length:
            prefixes.append(normalized[:length])
    letters = re.match(r"^[A-Z]+", normalized)
    if letters and len(letters.group(0)) >= settings.min_letter_prefix:
        prefixes.append(letters.group(0))
    return list(OrderedDict.fromkeys(prefixes))


def price_key(price: Decimal) -> int:
    """Wholesale price rounded to the nearest dollar (halves round up)."""
    return int(Decimal(price).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class CategoryIndex:
    """Lookup tables over records that already carry mappable categories."""

    def __init__(
        self,
        records: Iterable[ProductRecord],
        category_mapping: Mapping[str, str],
        settings: Optional[InferenceSettings] = None,
    ):
        self.settings = settings or default_inference_settings()
        self.by_word: Dict[str, List[IndexedRecord]] = defaultdict(list)
        self.by_sku_prefix: Dict[str, List[IndexedRecord]] = defaultdict(list)
        self.by_price: Dict[int, List[IndexedRecord]] = defaultdict(list)
        self.size = 0

        for record in records:
            codes = tuple(c for c in record.category_codes if c in category_mapping)
            if not codes:
                continue
            entry = IndexedRecord(record.sku, record.manufacturer_code, codes)
            for word in significant_words(record.name, self.settings):
                self.by_word[word].append(entry)
            for prefix in sku_prefixes(record.sku, self.settings):
                self.by_sku_prefix[prefix].append(entry)
            self.by_price[price_key(record.wholesale_price)].append(entry)
            self.size += 1

        logger.debug(
            f"Category index: {self.size} records, {len(self.by_word)} words, "
            f"{len(self.by_sku_prefix)} SKU prefixes, {len(self.by_price)} price points"
        )

    def votes(self, target: ProductRecord) -> Dict[str, int]:
        """Weighted votes per category code for ``target``."""
        settings = self.settings
        tally: Dict[str, int] = OrderedDict()

        def vote(entry: IndexedRecord, weight: int) -> None:
            for code in entry.codes:
                tally[code] = tally.get(code, 0) + weight

        # A candidate votes once via names, however many words it shares
        name_voters: Set[str] = set()
        for word in significant_words(target.name, settings):
            for entry in self.by_word.get(word, ()):
                if entry.sku == target.sku or entry.sku in name_voters:
                    continue
                if entry.manufacturer_code != target.manufacturer_code:
                    continue
                name_voters.add(entry.sku)
                vote(entry, settings.name_weight)

        for prefix in sku_prefixes(target.sku, settings):
            for entry in self.by_sku_prefix.get(prefix, ()):
                if entry.sku != target.sku:
                    vote(entry, settings.sku_weight)

        for entry in self.by_price.get(price_key(target.wholesale_price), ()):
            if entry.sku != target.sku and entry.manufacturer_code == target.manufacturer_code:
                vote(entry, settings.price_weight)

        return tally

    def infer(self, target: ProductRecord) -> List[str]:
        """Codes whose vote total reaches the threshold, strongest first."""
        tally = self.votes(target)
        qualifying = [(code, weight) for code, weight in tally.items()
                      if weight >= self.settings.min_votes]
        qualifying.sort(key=lambda item: -item[1])
        return [code for code, _ in qualifying[: self.settings.max_codes]]


class CategoryResolver:
    """Resolves category codes for records through the fallback chain."""

    def __init__(
        self,
        records: Sequence[ProductRecord],
        category_mapping: Mapping[str, str],
        type_category_mapping: Optional[Mapping[str, Sequence[str]]] = None,
        settings: Optional[InferenceSettings] = None,
    ):
        self.category_mapping = category_mapping
        self.type_category_mapping = {
            k.upper(): list(v) for k, v in (type_category_mapping or {}).items()
        }
        self.settings = settings or default_inference_settings()
        self.index = CategoryIndex(records, category_mapping, self.settings)

        self.strategies: List[Tuple[CategoryMethod, Strategy]] = [
            (CategoryMethod.EXPLICIT, self.explicit_codes),
            (CategoryMethod.INFERRED_SIMILARITY, self.index.infer),
            (CategoryMethod.INFERRED_BY_TYPE, self.type_codes),
        ]

    def explicit_codes(self, record: ProductRecord) -> List[str]:
        return [c for c in record.category_codes if c in self.category_mapping]

    def type_codes(self, record: ProductRecord) -> List[str]:
        codes = self.type_category_mapping.get(record.type_code.upper(), [])
        return [c for c in codes if c in self.category_mapping]

    def resolve(self, record: ProductRecord) -> CategoryAssignment:
        for method, strategy in self.strategies:
            codes = list(OrderedDict.fromkeys(strategy(record)))[: self.settings.max_codes]
            if codes:
                return CategoryAssignment(
                    product_sku=record.sku, resolved_codes=tuple(codes), method=method
                )
        logger.debug(f"No category resolved for {record.sku}")
        return CategoryAssignment.unresolved(record.sku)


def infer_categories(
    all_records: Sequence[ProductRecord],
    target: ProductRecord,
    category_mapping: Mapping[str, str],
    type_category_mapping: Optional[Mapping[str, Sequence[str]]] = None,
    settings: Optional[InferenceSettings] = None,
) -> CategoryAssignment:
    """Resolve categories for one record.

    Builds a fresh index; callers resolving many records should build one
    :class:`CategoryResolver` and reuse it.
    """
    resolver = CategoryResolver(all_records, category_mapping, type_category_mapping, settings)
    return resolver.resolve(target)
