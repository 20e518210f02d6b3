"""Data models shared across the import pipeline.

Records are immutable once parsed. Every later stage produces a new derived
structure that refers back to its record by ``sku``/``barcode``.
"""

from dataclasses import asdict, dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

__all__ = [
    "Dimensions",
    "ProductAttributes",
    "ProductRecord",
    "VariationAttribute",
    "VariationGroup",
    "VariationConflict",
    "CategoryMethod",
    "CategoryAssignment",
    "PriceQuote",
    "ImageArtifact",
    "ImageFailure",
    "MemberPayload",
    "RunStats",
]


@dataclass(frozen=True)
class Dimensions:
    length: Optional[Decimal] = None
    width: Optional[Decimal] = None  # width or diameter
    height: Optional[Decimal] = None
    weight: Optional[Decimal] = None


@dataclass(frozen=True)
class ProductAttributes:
    color: Optional[str] = None
    material: Optional[str] = None
    size: Optional[str] = None  # only delimited feeds carry an explicit size column


@dataclass(frozen=True)
class ProductRecord:
    """One wholesale catalog entry as read from a supplier feed.

    A record is importable when both ``sku`` and ``barcode`` are non-empty,
    and sellable when ``wholesale_price`` is positive.
    """

    sku: str
    barcode: str
    name: str
    description: str = ""
    wholesale_price: Decimal = Decimal("0")
    stock_quantity: int = 0
    active: bool = True
    dimensions: Dimensions = field(default_factory=Dimensions)
    attributes: ProductAttributes = field(default_factory=ProductAttributes)
    manufacturer_code: str = ""
    manufacturer_name: str = ""
    type_code: str = ""
    type_name: str = ""
    category_codes: Tuple[str, ...] = ()
    images: Tuple[str, ...] = ()

    # Feed flags carried through to the sink
    on_sale: bool = False
    discountable: bool = True
    release_date: Optional[str] = None
    source: str = ""

    @property
    def importable(self) -> bool:
        return bool(self.sku and self.barcode)

    @property
    def sellable(self) -> bool:
        return self.wholesale_price > 0


class VariationAttribute(str, Enum):
    COLOR = "color"
    FLAVOR = "flavor"
    SIZE = "size"
    STYLE = "style"
    NONE = "none"

    @property
    def label(self) -> str:
        """Storefront attribute label for the varying option."""
        return {
            VariationAttribute.COLOR: "Color",
            VariationAttribute.FLAVOR: "Flavor",
            VariationAttribute.SIZE: "Size",
            VariationAttribute.STYLE: "Style",
            VariationAttribute.NONE: "Variant",
        }[self]


@dataclass(frozen=True)
class VariationGroup:
    """Records sharing a base name, manufacturer and type.

    ``option_values`` is parallel to ``members`` and never holds duplicates
    (compared case-insensitively).
    """

    base_name: str
    variation_attribute: VariationAttribute
    members: Tuple[ProductRecord, ...]
    option_values: Tuple[str, ...]

    def __post_init__(self) -> None:
        if len(self.members) < 2:
            raise ValueError("A variation group needs at least two members")
        if len(self.option_values) != len(self.members):
            raise ValueError("Each member needs exactly one option value")
        folded = [v.casefold() for v in self.option_values]
        if len(set(folded)) != len(folded):
            raise ValueError(f"Duplicate option values in group '{self.base_name}'")

    @property
    def manufacturer_code(self) -> str:
        return self.members[0].manufacturer_code

    @property
    def type_code(self) -> str:
        return self.members[0].type_code

    def options(self) -> List[Tuple[ProductRecord, str]]:
        return list(zip(self.members, self.option_values))


@dataclass(frozen=True)
class VariationConflict:
    """A candidate group rejected because members share an option value.

    Its members are imported as simple products instead.
    """

    base_name: str
    variation_attribute: VariationAttribute
    members: Tuple[ProductRecord, ...]
    duplicate_values: Tuple[str, ...]

    @property
    def skus(self) -> List[str]:
        return [m.sku for m in self.members]


class CategoryMethod(str, Enum):
    EXPLICIT = "explicit"
    INFERRED_SIMILARITY = "inferred-similarity"
    INFERRED_BY_TYPE = "inferred-by-type"
    NONE = "none"


@dataclass(frozen=True)
class CategoryAssignment:
    product_sku: str
    resolved_codes: Tuple[str, ...]
    method: CategoryMethod

    def __post_init__(self) -> None:
        if (not self.resolved_codes) != (self.method is CategoryMethod.NONE):
            raise ValueError(
                "resolved_codes must be empty exactly when method is 'none' "
                f"(sku={self.product_sku}, method={self.method.value})"
            )

    @classmethod
    def unresolved(cls, sku: str) -> "CategoryAssignment":
        return cls(product_sku=sku, resolved_codes=(), method=CategoryMethod.NONE)


@dataclass(frozen=True)
class PriceQuote:
    regular_price: Decimal
    sale_price: Decimal
    multiplier: Decimal


@dataclass(frozen=True)
class ImageArtifact:
    """A processed square image on disk.

    Equal ``content_hash`` values mean byte-identical files.
    """

    content_hash: str
    local_path: str
    width: int
    height: int
    source_ref: str = ""
    from_cache: bool = False


@dataclass(frozen=True)
class ImageFailure:
    ref: str
    index: int
    kind: str  # "fetch", "decode", "invalid" or "cache"
    message: str
    attempts: int = 0


@dataclass
class MemberPayload:
    """Everything the sink needs to write one member of a variation group."""

    record: ProductRecord
    option_value: str
    assignment: CategoryAssignment
    quote: PriceQuote
    images: List[ImageArtifact] = field(default_factory=list)


@dataclass
class RunStats:
    """Counters and per-item errors for one import run."""

    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    simple_products: int = 0
    variable_products: int = 0
    variations: int = 0
    variation_conflicts: int = 0
    images_succeeded: int = 0
    images_failed: int = 0
    images_cached: int = 0
    zero_image_products: int = 0
    category_methods: Dict[str, int] = field(
        default_factory=lambda: {m.value: 0 for m in CategoryMethod}
    )
    errors: List[Dict[str, str]] = field(default_factory=list)
    warnings: List[Dict[str, str]] = field(default_factory=list)

    def add_error(self, sku: str, message: str, barcode: str = "") -> None:
        self.errors.append({"sku": sku, "barcode": barcode, "message": message})

    def add_warning(self, sku: str, message: str, barcode: str = "") -> None:
        self.warnings.append({"sku": sku, "barcode": barcode, "message": message})

    def record_category(self, assignment: CategoryAssignment) -> None:
        self.category_methods[assignment.method.value] += 1

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
