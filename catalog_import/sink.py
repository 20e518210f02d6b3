"""Catalog sinks: where finished products are written.

:class:`CatalogSink` is the contract the pipeline writes through. Writes are
idempotent by barcode (products) and by parent SKU (variation parents), so a
re-run updates rows instead of duplicating them.
"""

import sqlite3
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from catalog_import.db import (
    DEFAULT_DB_PATH,
    get_connection,
    get_existing_barcodes,
    init_db,
    replace_product_categories,
    replace_product_images,
    replace_variable_categories,
    upsert_product_row,
    upsert_variable_product_row,
)
from catalog_import.logging_config import get_logger
from catalog_import.models import (
    CategoryAssignment,
    CategoryMethod,
    ImageArtifact,
    MemberPayload,
    PriceQuote,
    ProductRecord,
    VariationGroup,
)
from catalog_import.text_utils import (
    clean_description,
    parent_sku,
    short_description,
    slugify,
    title_case,
)

__all__ = [
    "SinkError",
    "CatalogSink",
    "SqliteCatalogSink",
    "DryRunSink",
    "product_row",
]

logger = get_logger("sink")


class SinkError(Exception):
    """Raised when the sink rejects a write."""
    pass


class CatalogSink(ABC):
    """Destination for normalized products and variation groups."""

    @abstractmethod
    def upsert_product(
        self,
        record: ProductRecord,
        assignment: CategoryAssignment,
        quote: PriceQuote,
        images: Sequence[ImageArtifact],
    ) -> str:
        """Write one simple product; returns its sink id."""

    @abstractmethod
    def upsert_variation_group(
        self,
        group: VariationGroup,
        members: Sequence[MemberPayload],
    ) -> str:
        """Write a variation parent and all its members; returns the parent's sink id."""

    @abstractmethod
    def has_barcode(self, barcode: str) -> bool:
        """Whether a product with this barcode is already stored."""

    def close(self) -> None:
        pass


def _dec(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def product_row(
    record: ProductRecord,
    assignment: CategoryAssignment,
    quote: PriceQuote,
    manufacturer_id: Optional[str] = None,
    parent_id: Optional[int] = None,
    option_value: Optional[str] = None,
) -> Dict[str, Any]:
    """Storefront-ready column values for one product."""
    name = title_case(record.name)
    description = clean_description(record.description)
    return {
        "barcode": record.barcode,
        "sku": record.sku,
        "name": name,
        "slug": slugify(f"{name} {record.barcode}"),
        "description": description,
        "short_description": short_description(description),
        "wholesale_price": _dec(record.wholesale_price),
        "regular_price": _dec(quote.regular_price),
        "sale_price": _dec(quote.sale_price),
        "multiplier": _dec(quote.multiplier),
        "stock_quantity": record.stock_quantity,
        "manufacturer_code": record.manufacturer_code,
        "manufacturer_id": manufacturer_id,
        "type_code": record.type_code,
        "length": _dec(record.dimensions.length),
        "width": _dec(record.dimensions.width),
        "height": _dec(record.dimensions.height),
        "weight": _dec(record.dimensions.weight),
        "color": record.attributes.color,
        "material": record.attributes.material,
        "on_sale": int(record.on_sale),
        "discountable": int(record.discountable),
        "release_date": record.release_date,
        "category_method": assignment.method.value,
        "parent_id": parent_id,
        "option_value": option_value,
    }


def _image_rows(images: Sequence[ImageArtifact]) -> List[Dict[str, str]]:
    return [
        {"content_hash": a.content_hash, "local_path": a.local_path, "source_ref": a.source_ref}
        for a in images
    ]


def _merged_codes(assignments: Sequence[CategoryAssignment]) -> Tuple[List[str], CategoryMethod]:
    """Union of member category codes (first-seen order) and the strongest method."""
    codes: List[str] = []
    for a in assignments:
        for code in a.resolved_codes:
            if code not in codes:
                codes.append(code)
    order = list(CategoryMethod)
    methods = [a.method for a in assignments] or [CategoryMethod.NONE]
    return codes, min(methods, key=order.index)


class SqliteCatalogSink(CatalogSink):
    """Writes the catalog into the local SQLite store.

    Args:
        db_path: Database file (created and migrated on first use)
        category_mapping: Category code to sink-side id
        manufacturer_mapping: Manufacturer code to sink-side id
    """

    def __init__(
        self,
        db_path: str = DEFAULT_DB_PATH,
        category_mapping: Optional[Mapping[str, str]] = None,
        manufacturer_mapping: Optional[Mapping[str, str]] = None,
    ):
        self.db_path = db_path
        self.category_mapping = dict(category_mapping or {})
        self.manufacturer_mapping = dict(manufacturer_mapping or {})
        init_db(db_path)
        self._barcodes: Set[str] = get_existing_barcodes(db_path)

    def _categories(self, codes: Sequence[str]) -> List[Tuple[str, Optional[str]]]:
        return [(code, self.category_mapping.get(code)) for code in codes]

    def has_barcode(self, barcode: str) -> bool:
        return barcode in self._barcodes

    def upsert_product(
        self,
        record: ProductRecord,
        assignment: CategoryAssignment,
        quote: PriceQuote,
        images: Sequence[ImageArtifact],
    ) -> str:
        row = product_row(
            record, assignment, quote,
            manufacturer_id=self.manufacturer_mapping.get(record.manufacturer_code),
        )
        try:
            with get_connection(self.db_path) as conn:
                product_id, created = upsert_product_row(conn, row)
                replace_product_categories(conn, product_id, self._categories(assignment.resolved_codes))
                replace_product_images(conn, product_id, _image_rows(images))
                conn.commit()
        except sqlite3.Error as e:
            raise SinkError(f"Could not write product {record.sku}: {e}") from e

        self._barcodes.add(record.barcode)
        logger.debug(f"{'Created' if created else 'Updated'} product {record.sku} (id={product_id})")
        return f"product:{product_id}"

    def upsert_variation_group(self, group: VariationGroup, members: Sequence[MemberPayload]) -> str:
        if len(members) < 2:
            raise SinkError(f"Variation group '{group.base_name}' needs at least two members")

        codes, method = _merged_codes([m.assignment for m in members])
        first = group.members[0]
        name = title_case(group.base_name)
        sku = parent_sku(group.manufacturer_code, group.base_name)
        parent = {
            "parent_sku": sku,
            "name": name,
            "slug": slugify(f"{name} {group.manufacturer_code}"),
            "manufacturer_code": group.manufacturer_code,
            "manufacturer_id": self.manufacturer_mapping.get(group.manufacturer_code),
            "type_code": first.type_code,
            "attribute": group.variation_attribute.value,
            "attribute_label": group.variation_attribute.label,
            "price": str(min(m.quote.regular_price for m in members)),
            "category_method": method.value,
        }

        try:
            with get_connection(self.db_path) as conn:
                variable_id, _created = upsert_variable_product_row(conn, parent)
                replace_variable_categories(conn, variable_id, self._categories(codes))
                for member in members:
                    row = product_row(
                        member.record, member.assignment, member.quote,
                        manufacturer_id=parent["manufacturer_id"],
                        parent_id=variable_id,
                        option_value=member.option_value,
                    )
                    product_id, _ = upsert_product_row(conn, row)
                    replace_product_categories(
                        conn, product_id, self._categories(member.assignment.resolved_codes)
                    )
                    replace_product_images(conn, product_id, _image_rows(member.images))
                conn.commit()
        except sqlite3.Error as e:
            raise SinkError(f"Could not write variation group {sku}: {e}") from e

        self._barcodes.update(m.record.barcode for m in members)
        logger.debug(f"Wrote variation group {sku} with {len(members)} members")
        return f"variable:{variable_id}"


class DryRunSink(CatalogSink):
    """Records writes in memory without persisting anything."""

    def __init__(self, existing_barcodes: Optional[Set[str]] = None):
        self._barcodes: Set[str] = set(existing_barcodes or ())
        self.products: List[Dict[str, Any]] = []
        self.groups: List[Dict[str, Any]] = []

    def has_barcode(self, barcode: str) -> bool:
        return barcode in self._barcodes

    def upsert_product(
        self,
        record: ProductRecord,
        assignment: CategoryAssignment,
        quote: PriceQuote,
        images: Sequence[ImageArtifact],
    ) -> str:
        self.products.append({
            "record": record,
            "assignment": assignment,
            "quote": quote,
            "images": list(images),
        })
        self._barcodes.add(record.barcode)
        return f"dry-run:{record.barcode}"

    def upsert_variation_group(self, group: VariationGroup, members: Sequence[MemberPayload]) -> str:
        sku = parent_sku(group.manufacturer_code, group.base_name)
        self.groups.append({"parent_sku": sku, "group": group, "members": list(members)})
        self._barcodes.update(m.record.barcode for m in members)
        return f"dry-run:{sku}"
