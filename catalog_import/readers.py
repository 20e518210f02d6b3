"""Supplier feed readers.

Two feed shapes are supported:

* tag-structured XML: ``<products><product active=.. on_sale=.. discountable=..>``
  with nested ``images``, ``categories``, ``manufacturer`` and ``type`` elements
* delimited CSV with fixed named columns (``UPC``, ``Product Name``,
  ``Image 1``..``Image 3``, ``Category 1``..``Category 3`` and so on)

Both produce canonical :class:`ProductRecord` sequences. A malformed record
is skipped and logged; only an unreadable feed raises :class:`FeedError`.
"""

import csv
import io
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, List, Optional, Union

from bs4 import BeautifulSoup
from bs4.element import Tag

from catalog_import.logging_config import get_logger, log_import_event
from catalog_import.models import Dimensions, ProductAttributes, ProductRecord

__all__ = [
    "FeedError",
    "RecordParseError",
    "FeedParseResult",
    "parse_xml_feed",
    "parse_csv_feed",
    "read_feed",
]

logger = get_logger("readers")

CSV_REQUIRED_COLUMNS = ("UPC", "Product Name")


class FeedError(Exception):
    """Raised when a feed cannot be read at all."""
    pass


class RecordParseError(ValueError):
    """Raised for a single malformed record; the record is skipped."""
    pass


@dataclass
class FeedParseResult:
    records: List[ProductRecord] = field(default_factory=list)
    skipped: List[Dict[str, str]] = field(default_factory=list)

    def skip(self, identifier: str, reason: str) -> None:
        self.skipped.append({"sku": identifier, "message": reason})
        log_import_event(
            "record_skipped",
            {"message": f"Skipping record {identifier or '?'}: {reason}", "sku": identifier},
            level=logging.WARNING,
            logger_name="readers",
        )


def _decimal(value: Optional[str], field_name: str, default: str = "0") -> Decimal:
    text = (value or "").strip().replace("$", "").replace(",", "")
    if not text:
        text = default
    try:
        number = Decimal(text)
    except InvalidOperation as e:
        raise RecordParseError(f"Invalid {field_name}: {value!r}") from e
    if not number.is_finite():
        raise RecordParseError(f"Invalid {field_name}: {value!r}")
    return number


def _text(parent: Tag, name: str) -> str:
    child = parent.find(name, recursive=False)
    if child is None:
        return ""
    return child.get_text().strip()


def _flag(value: Optional[str], default: str) -> bool:
    return (value if value not in (None, "") else default).strip() == "1"


# =============================================================================
# XML feeds
# =============================================================================

def _parse_xml_product(el: Tag, source: str) -> ProductRecord:
    sku = _text(el, "sku")
    if not sku:
        raise RecordParseError("Missing sku")

    wholesale = _decimal(_text(el, "price"), "price")
    if wholesale < 0:
        raise RecordParseError(f"Negative price: {wholesale}")
    stock = int(_decimal(_text(el, "stock_quantity"), "stock_quantity"))

    images: List[str] = []
    images_el = el.find("images", recursive=False)
    if images_el is not None:
        for image in images_el.find_all("image"):
            ref = image.get_text().strip()
            if ref:
                images.append(ref)

    category_codes: List[str] = []
    categories_el = el.find("categories", recursive=False)
    if categories_el is not None:
        for category in categories_el.find_all("category"):
            code = (category.get("code") or "").strip()
            if code and code not in category_codes:
                category_codes.append(code)

    manufacturer = el.find("manufacturer", recursive=False)
    product_type = el.find("type", recursive=False)

    return ProductRecord(
        sku=sku,
        barcode=_text(el, "barcode"),
        name=_text(el, "name"),
        description=_text(el, "description"),
        wholesale_price=wholesale,
        stock_quantity=max(stock, 0),
        active=_flag(el.get("active"), "1"),
        on_sale=_flag(el.get("on_sale"), "0"),
        discountable=_flag(el.get("discountable"), "1"),
        dimensions=Dimensions(
            length=_decimal(_text(el, "length"), "length"),
            width=_decimal(_text(el, "diameter"), "diameter"),
            height=_decimal(_text(el, "height"), "height"),
            weight=_decimal(_text(el, "weight"), "weight"),
        ),
        attributes=ProductAttributes(
            color=_text(el, "color") or None,
            material=_text(el, "material") or None,
        ),
        manufacturer_code=(manufacturer.get("code") or "").strip() if manufacturer else "",
        manufacturer_name=manufacturer.get_text().strip() if manufacturer else "",
        type_code=(product_type.get("code") or "").strip() if product_type else "",
        type_name=product_type.get_text().strip() if product_type else "",
        category_codes=tuple(category_codes),
        images=tuple(images),
        release_date=_text(el, "release_date") or None,
        source=source,
    )


def parse_xml_feed(content: Union[str, bytes], source: str = "xml") -> FeedParseResult:
    """Parse an XML product feed.

    Raises:
        FeedError: If the document has no ``products``/``product`` structure
    """
    soup = BeautifulSoup(content, "xml")
    root = soup.find("products")
    if root is None:
        raise FeedError("Invalid XML structure: missing products.product")
    elements = root.find_all("product", recursive=False)
    if not elements:
        raise FeedError("Invalid XML structure: missing products.product")

    result = FeedParseResult()
    for el in elements:
        try:
            result.records.append(_parse_xml_product(el, source))
        except RecordParseError as e:
            result.skip(_text(el, "sku"), str(e))

    logger.info(f"Parsed {len(result.records)} products from XML ({len(result.skipped)} skipped)")
    return result


# =============================================================================
# CSV feeds
# =============================================================================

def _brand_code(brand: str) -> str:
    return "-".join(brand.upper().split())


def _parse_csv_row(row: Dict[str, str], source: str) -> ProductRecord:
    def col(name: str) -> str:
        return (row.get(name) or "").strip()

    upc = col("UPC")
    name = col("Product Name")
    if not upc or not name:
        raise RecordParseError("Missing UPC or Product Name")

    wholesale = _decimal(col("Price"), "Price")
    if wholesale < 0:
        raise RecordParseError(f"Negative price: {wholesale}")

    images = tuple(col(f"Image {i}") for i in (1, 2, 3) if col(f"Image {i}"))
    categories: List[str] = []
    for i in (1, 2, 3):
        value = col(f"Category {i}")
        if value and value not in categories:
            categories.append(value)

    brand = col("Brand")
    return ProductRecord(
        sku=col("Handle") or upc,
        barcode=upc,
        name=name,
        description=col("Description"),
        wholesale_price=wholesale,
        stock_quantity=max(int(_decimal(col("Stock"), "Stock")), 0),
        active=True,
        discountable=col("Discountable").upper() == "Y",
        dimensions=Dimensions(
            length=_decimal(col("Length"), "Length"),
            width=_decimal(col("Width"), "Width"),
            height=_decimal(col("Height"), "Height"),
            weight=_decimal(col("Weight"), "Weight"),
        ),
        attributes=ProductAttributes(
            color=col("Color") or None,
            material=col("Material") or None,
            size=col("Size") or None,
        ),
        manufacturer_code=_brand_code(brand),
        manufacturer_name=brand,
        category_codes=tuple(categories),
        images=images,
        source=source,
    )


def parse_csv_feed(content: str, source: str = "csv") -> FeedParseResult:
    """Parse a delimited product feed (one row per product).

    Raises:
        FeedError: If the header row lacks the identifying columns
    """
    reader = csv.DictReader(io.StringIO(content))
    headers = [h.strip() for h in (reader.fieldnames or [])]
    missing = [c for c in CSV_REQUIRED_COLUMNS if c not in headers]
    if missing:
        raise FeedError(f"CSV feed is missing required columns: {', '.join(missing)}")
    reader.fieldnames = headers

    result = FeedParseResult()
    for line_no, row in enumerate(reader, start=2):
        if not any((v or "").strip() for v in row.values() if isinstance(v, str)):
            continue
        try:
            result.records.append(_parse_csv_row(row, source))
        except RecordParseError as e:
            identifier = (row.get("Handle") or row.get("UPC") or f"line {line_no}").strip()
            result.skip(identifier, str(e))

    logger.info(f"Parsed {len(result.records)} products from CSV ({len(result.skipped)} skipped)")
    return result


def read_feed(path: Union[str, Path]) -> FeedParseResult:
    """Read a feed file, choosing the parser from its extension.

    Raises:
        FeedError: If the file cannot be read or has an unknown format
    """
    path = Path(path)
    suffix = path.suffix.lower()
    try:
        if suffix == ".xml":
            return parse_xml_feed(path.read_bytes(), source=path.name)
        if suffix in (".csv", ".txt"):
            return parse_csv_feed(path.read_text(encoding="utf-8-sig"), source=path.name)
    except OSError as e:
        raise FeedError(f"Could not read feed {path}: {e}") from e
    except UnicodeDecodeError as e:
        raise FeedError(f"Feed {path} is not valid UTF-8: {e}") from e
    raise FeedError(f"Unsupported feed format: {path.suffix or path.name}")
