"""Supplier feed importer: variation grouping, category inference, image normalization and pricing."""

__version__ = "0.1.0"

# Re-export main components for convenient imports
from catalog_import.categories import CategoryResolver, infer_categories
from catalog_import.config import (
    DB_PATH,
    IMAGE_CACHE_DIR,
    InferenceSettings,
    PricingCurve,
    VariationVocabulary,
)
from catalog_import.images import ImageNormalizer
from catalog_import.models import (
    CategoryAssignment,
    CategoryMethod,
    ImageArtifact,
    PriceQuote,
    ProductRecord,
    RunStats,
    VariationAttribute,
    VariationGroup,
)
from catalog_import.pipeline import ImportRun, import_feed
from catalog_import.pricing import price
from catalog_import.readers import read_feed
from catalog_import.sink import CatalogSink, DryRunSink, SqliteCatalogSink
from catalog_import.variations import VariationDetector, detect_variations, extract_base_name

__all__ = [
    # Version
    "__version__",
    # Config
    "DB_PATH",
    "IMAGE_CACHE_DIR",
    "InferenceSettings",
    "PricingCurve",
    "VariationVocabulary",
    # Models
    "CategoryAssignment",
    "CategoryMethod",
    "ImageArtifact",
    "PriceQuote",
    "ProductRecord",
    "RunStats",
    "VariationAttribute",
    "VariationGroup",
    # Engines
    "CategoryResolver",
    "infer_categories",
    "ImageNormalizer",
    "price",
    "VariationDetector",
    "detect_variations",
    "extract_base_name",
    # Pipeline
    "read_feed",
    "ImportRun",
    "import_feed",
    "CatalogSink",
    "SqliteCatalogSink",
    "DryRunSink",
]
