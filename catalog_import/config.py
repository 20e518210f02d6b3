"""Configuration and constants for the catalog importer.

Paths and network settings may be overridden from the environment (a local
``.env`` file is honoured). Keyword tables used by the grouping and inference
engines live in frozen dataclasses so callers and tests can inject their own.
"""

import json
import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Set, Tuple

from dotenv import load_dotenv

from catalog_import.logging_config import get_logger

__all__ = [
    "DATA_DIR",
    "DB_PATH",
    "IMAGE_CACHE_DIR",
    "IMAGE_BASE_URL",
    "REPORT_PATH",
    "HEADERS",
    "REQUEST_TIMEOUT",
    "MAX_FETCH_RETRIES",
    "RETRY_DELAY_SECONDS",
    "IMAGE_CONCURRENCY",
    "TARGET_SIZE",
    "WEBP_QUALITY",
    "SINK_CHUNK_SIZE",
    "ConfigurationError",
    "PricingCurve",
    "VariationVocabulary",
    "InferenceSettings",
    "default_pricing_curve",
    "default_vocabulary",
    "default_inference_settings",
    "load_code_mapping",
    "load_type_category_mapping",
    "load_excluded_types",
]

load_dotenv()


class ConfigurationError(Exception):
    """Raised when configuration is present but unusable."""
    pass


# Data locations
DATA_DIR = os.getenv("CATALOG_DATA_DIR", "data")
DB_PATH = os.getenv("CATALOG_DB_PATH", str(Path(DATA_DIR) / "catalog.db"))
IMAGE_CACHE_DIR = os.getenv("CATALOG_IMAGE_CACHE_DIR", str(Path(DATA_DIR) / "image-cache"))
REPORT_PATH = str(Path(DATA_DIR) / "import-report.json")

# Relative image paths in supplier feeds are resolved against this host
IMAGE_BASE_URL = os.getenv("CATALOG_IMAGE_BASE_URL", "https://images.williams-trading.com")

HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; CatalogImporter/1.0)",
}

# Image fetching
REQUEST_TIMEOUT = int(os.getenv("CATALOG_REQUEST_TIMEOUT", "15"))
MAX_FETCH_RETRIES = int(os.getenv("CATALOG_MAX_FETCH_RETRIES", "3"))
RETRY_DELAY_SECONDS = float(os.getenv("CATALOG_RETRY_DELAY", "1.0"))  # linear: attempt * delay
IMAGE_CONCURRENCY = int(os.getenv("CATALOG_IMAGE_CONCURRENCY", "4"))

# Image output
TARGET_SIZE = 650
WEBP_QUALITY = 90

# Products per image/sink batch in the pipeline
SINK_CHUNK_SIZE = 50


# =============================================================================
# Pricing
# =============================================================================

@dataclass(frozen=True)
class PricingCurve:
    """Markup curve parameters.

    ``max_mult`` applies at or below ``min_price``; ``min_mult`` at or above
    ``max_price``. Between the two the multiplier decays logarithmically.
    """

    min_price: Decimal = Decimal("5")
    max_price: Decimal = Decimal("100")
    max_mult: Decimal = Decimal("3.0")
    min_mult: Decimal = Decimal("2.1")
    discount_pct: Decimal = Decimal("10")

    def __post_init__(self) -> None:
        if self.min_price <= 0 or self.max_price <= self.min_price:
            raise ConfigurationError("Pricing curve needs 0 < min_price < max_price")
        if self.min_mult > self.max_mult:
            raise ConfigurationError("Pricing curve needs min_mult <= max_mult")
        if not Decimal("0") < self.discount_pct < Decimal("100"):
            raise ConfigurationError("Sale discount must be between 0 and 100 percent")


def default_pricing_curve() -> PricingCurve:
    return PricingCurve()


# =============================================================================
# Variation vocabulary
# =============================================================================
# Multi-word phrases are always tried before single words, longest first.

_MULTI_WORD_PHRASES: Tuple[str, ...] = (
    # Flavours / scents
    "PINA COLADA", "MANGO PASSION", "CHERRY LEMONADE", "BUTTER RUM", "BANANA CREAM",
    "KEY LIME", "ORANGE CREAM", "TAHITIAN VANILLA", "NATURAL ALOE", "CREME BRULEE",
    "MINT CHOCOLATE", "COOKIES AND CREAM", "STRAWBERRY BANANA", "PASSION FRUIT",
    "BLUE RASPBERRY", "GREEN APPLE", "COTTON CANDY", "BUBBLE GUM", "ROOT BEER",
    "CHERRY VANILLA", "CHOCOLATE MINT", "FRENCH LAVENDER", "WARM VANILLA", "COOL MINT",
    "FRESH STRAWBERRY", "WILD CHERRY", "PINK LEMONADE", "LEMON DROP", "BERRY BLAST",
    "SWEET NECTAR", "ISLAND PARADISE", "PEACHY KEEN", "FLORAL HAZE", "FROSTED CAKE",
    # Colours / finishes
    "BLACK ICE", "CLASSIC WHITE", "MIDNIGHT BLACK", "PEARL WHITE", "ROSE GOLD",
    "MATTE BLACK", "HOT PINK", "LIGHT BLUE", "DARK BLUE", "SKY BLUE",
    # Sizes as words
    "EXTRA LARGE", "EXTRA SMALL", "EXTRA LONG", "SUPER LARGE", "OS QUEEN", "ONE SIZE",
    "TRAVEL SIZE", "SAMPLE SIZE",
)

_FLAVOR_WORDS: Tuple[str, ...] = (
    "MANGO", "CHERRY", "STRAWBERRY", "VANILLA", "ALOE", "CHOCOLATE", "MINT", "GRAPE",
    "LEMON", "LIME", "BANANA", "RASPBERRY", "BLUEBERRY", "PEACH", "APPLE", "WATERMELON",
    "COCONUT", "LAVENDER", "PEPPERMINT", "SPEARMINT", "EUCALYPTUS", "JASMINE",
    "CINNAMON", "GINGER", "HONEY", "CARAMEL", "MOCHA", "COFFEE", "MELON", "BERRY",
    "TROPICAL", "CITRUS", "FLORAL", "UNFLAVORED", "UNSCENTED",
)

_COLOR_WORDS: Tuple[str, ...] = (
    "RED", "BLUE", "GREEN", "PINK", "PURPLE", "BLACK", "WHITE", "CLEAR", "SILVER",
    "GOLD", "BRONZE", "COPPER", "GREY", "GRAY", "BROWN", "YELLOW", "TEAL", "NAVY",
    "NUDE", "TAN", "BEIGE", "IVORY", "ORANGE",
)

_SIZE_WORDS: Tuple[str, ...] = (
    "SMALL", "MEDIUM", "LARGE", "XLARGE", "XS", "XL", "XXL", "XXXL", "2XL", "3XL",
    "SM", "MED", "LG", "MINI", "PETITE", "REGULAR", "JUMBO", "GIANT", "KING", "QUEEN",
)

# Colour keywords recognised inside names (also used for option values)
_NAME_COLORS: Tuple[str, ...] = _COLOR_WORDS + ("MIDNIGHT", "PEARL", "MATTE", "ROSE")

_COLOR_ALIASES: Dict[str, str] = {
    "blk": "Black",
    "wht": "White",
    "clr": "Clear",
    "slv": "Silver",
    "gld": "Gold",
    "pnk": "Pink",
    "prp": "Purple",
    "blu": "Blue",
    "grn": "Green",
    "ylw": "Yellow",
    "org": "Orange",
    "brn": "Brown",
    "gry": "Gray",
    "grey": "Gray",
}

_STYLE_WORDS: Tuple[str, ...] = (
    "COOLING", "WARMING", "TINGLING", "SENSITIZING", "DESENSITIZING",
    "ICE", "FIRE", "HEAT", "COOL", "WARM", "HOT", "COLD",
    "WATER", "HYBRID", "OIL", "ORGANIC",
    "GEL", "LIQUID", "CREAM", "LOTION", "SPRAY", "FOAM",
)

_SIZE_UNITS: Tuple[str, ...] = ("OZ", "ML", "G", "LB", "IN", "INCH", "INCHES", "MM", "CM")

_UNIT_ALIASES: Dict[str, str] = {
    "inch": "in",
    "inches": "in",
    "lbs": "lb",
}

# Whole names that are merchandising items rather than sellable variants
_BULK_DISPLAY_NAMES: Tuple[str, ...] = (
    r"^COUNTER\s*DISPLAY$",
    r"^SAMPLE\s*PACKET$",
    r"^DISPLAY\s*STAND$",
)


@dataclass(frozen=True)
class VariationVocabulary:
    """Keyword tables consumed by the variation grouping engine."""

    multi_word_phrases: Tuple[str, ...] = _MULTI_WORD_PHRASES
    flavor_words: Tuple[str, ...] = _FLAVOR_WORDS
    color_words: Tuple[str, ...] = _COLOR_WORDS
    size_words: Tuple[str, ...] = _SIZE_WORDS
    name_colors: Tuple[str, ...] = _NAME_COLORS
    color_aliases: Dict[str, str] = field(default_factory=lambda: dict(_COLOR_ALIASES))
    flavor_indicators: Tuple[str, ...] = (
        "flavor", "scent", "taste", "natural", "vanilla", "chocolate", "strawberry",
    )
    style_words: Tuple[str, ...] = _STYLE_WORDS
    size_units: Tuple[str, ...] = _SIZE_UNITS
    unit_aliases: Dict[str, str] = field(default_factory=lambda: dict(_UNIT_ALIASES))
    bulk_display_names: Tuple[str, ...] = _BULK_DISPLAY_NAMES

    @property
    def single_words(self) -> Tuple[str, ...]:
        """Single-word variant tokens stripped from the end of names."""
        return self.flavor_words + self.color_words + self.size_words


def default_vocabulary() -> VariationVocabulary:
    return VariationVocabulary()


# =============================================================================
# Category inference
# =============================================================================

_STOP_WORDS: FrozenSet[str] = frozenset({
    "a", "an", "the", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "as", "is", "was", "are", "were", "been",
    "be", "have", "has", "had", "do", "does", "did", "will", "would", "could",
    "should", "may", "might", "must", "shall", "can", "need", "dare", "ought",
    "used", "up", "down", "out", "off", "over", "under", "again", "further",
    "then", "once", "here", "there", "when", "where", "why", "how", "all",
    "each", "every", "both", "few", "more", "most", "other", "some", "such",
    "no", "nor", "not", "only", "own", "same", "so", "than", "too", "very",
    # Size words
    "small", "medium", "large", "xl", "xxl", "mini", "petite", "plus", "size",
    "sm", "md", "lg", "s", "m", "l",
    # Colour words
    "black", "white", "red", "blue", "green", "pink", "purple", "clear",
    # Descriptors and units
    "new", "pack", "set", "kit", "oz", "ml", "inch", "inches", "piece", "pieces",
})


@dataclass(frozen=True)
class InferenceSettings:
    """Weights and limits for category voting.

    The weights and the vote threshold were tuned by hand against supplier
    feeds; they carry no meaning beyond that.
    """

    name_weight: int = 3
    sku_weight: int = 2
    price_weight: int = 1
    min_votes: int = 2
    max_codes: int = 3
    min_word_length: int = 3
    sku_prefix_lengths: Tuple[int, ...] = (4, 6)
    min_letter_prefix: int = 2
    stop_words: FrozenSet[str] = _STOP_WORDS


def default_inference_settings() -> InferenceSettings:
    return InferenceSettings()


# =============================================================================
# External mapping files
# =============================================================================

def _read_json(path: Path) -> Optional[dict]:
    logger = get_logger("config")
    if not path.exists():
        logger.warning(f"Mapping file not found: {path}")
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Could not load {path}: {e}")
        return None
    if not isinstance(data, dict):
        logger.warning(f"Ignoring {path}: expected a JSON object")
        return None
    return data


def load_code_mapping(path: Path) -> Dict[str, str]:
    """Load a ``{"codeToId": {...}}`` mapping (categories or manufacturers).

    Sink-side ids are returned as strings. A missing file yields an empty map.
    """
    data = _read_json(Path(path))
    if not data:
        return {}
    code_to_id = data.get("codeToId") or {}
    return {str(code): str(sink_id) for code, sink_id in code_to_id.items()}


def load_type_category_mapping(path: Path) -> Dict[str, List[str]]:
    """Load ``{"typeToCategory": {TYPE: [codes]}}`` keyed by upper-cased type code."""
    data = _read_json(Path(path))
    if not data:
        return {}
    mapping: Dict[str, List[str]] = {}
    for type_code, codes in (data.get("typeToCategory") or {}).items():
        if isinstance(codes, str):
            codes = [codes]
        mapping[str(type_code).upper()] = [str(c) for c in codes]
    return mapping


def load_excluded_types(path: Path) -> Set[str]:
    """Load ``{"excludedTypes": [{"code": ...}]}`` as a set of upper-cased codes."""
    data = _read_json(Path(path))
    if not data:
        return set()
    codes: Set[str] = set()
    for entry in data.get("excludedTypes") or []:
        if isinstance(entry, dict) and entry.get("code"):
            codes.add(str(entry["code"]).upper())
    return codes
