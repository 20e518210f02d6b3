"""SQLite schema and helpers for the local catalog store."""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional, Sequence, Set, Tuple

from catalog_import.config import DB_PATH

__all__ = [
    "DEFAULT_DB_PATH",
    "get_connection",
    "init_db",
    "get_existing_barcodes",
    "upsert_product_row",
    "upsert_variable_product_row",
    "replace_product_categories",
    "replace_variable_categories",
    "replace_product_images",
    "get_product_by_barcode",
    "get_variable_product",
    "get_product_images",
    "get_product_count",
]

DEFAULT_DB_PATH = DB_PATH

PRODUCT_COLUMNS = (
    "barcode", "sku", "name", "slug", "description", "short_description",
    "wholesale_price", "regular_price", "sale_price", "multiplier",
    "stock_quantity", "manufacturer_code", "manufacturer_id", "type_code",
    "length", "width", "height", "weight", "color", "material",
    "on_sale", "discountable", "release_date", "category_method",
    "parent_id", "option_value",
)

VARIABLE_COLUMNS = (
    "parent_sku", "name", "slug", "manufacturer_code", "manufacturer_id",
    "type_code", "attribute", "attribute_label", "price", "category_method",
)


@contextmanager
def get_connection(db_path: str = DEFAULT_DB_PATH) -> Generator[sqlite3.Connection, None, None]:
    """Context manager for database connections."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: str = DEFAULT_DB_PATH) -> None:
    """Initialize the database schema."""
    with get_connection(db_path) as conn:
        cursor = conn.cursor()

        # Parents of variation groups
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS variable_products (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                parent_sku TEXT UNIQUE NOT NULL,
                name TEXT NOT NULL,
                slug TEXT,
                manufacturer_code TEXT,
                manufacturer_id TEXT,
                type_code TEXT,
                attribute TEXT NOT NULL,
                attribute_label TEXT NOT NULL,
                price TEXT,
                category_method TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # Simple products and variation members, keyed by barcode
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS products (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                barcode TEXT UNIQUE NOT NULL,
                sku TEXT NOT NULL,
                name TEXT NOT NULL,
                slug TEXT,
                description TEXT,
                short_description TEXT,
                wholesale_price TEXT,
                regular_price TEXT,
                sale_price TEXT,
                multiplier TEXT,
                stock_quantity INTEGER DEFAULT 0,
                manufacturer_code TEXT,
                manufacturer_id TEXT,
                type_code TEXT,
                length TEXT,
                width TEXT,
                height TEXT,
                weight TEXT,
                color TEXT,
                material TEXT,
                on_sale INTEGER DEFAULT 0,
                discountable INTEGER DEFAULT 1,
                release_date TEXT,
                category_method TEXT,
                parent_id INTEGER,
                option_value TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (parent_id) REFERENCES variable_products(id) ON DELETE SET NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS product_categories (
                product_id INTEGER NOT NULL,
                category_code TEXT NOT NULL,
                category_id TEXT,
                position INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (product_id, category_code),
                FOREIGN KEY (product_id) REFERENCES products(id) ON DELETE CASCADE
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS variable_product_categories (
                variable_id INTEGER NOT NULL,
                category_code TEXT NOT NULL,
                category_id TEXT,
                position INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (variable_id, category_code),
                FOREIGN KEY (variable_id) REFERENCES variable_products(id) ON DELETE CASCADE
            )
        """)

        # Position 0 is the primary image
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS product_images (
                product_id INTEGER NOT NULL,
                position INTEGER NOT NULL,
                content_hash TEXT NOT NULL,
                local_path TEXT NOT NULL,
                source_ref TEXT,
                PRIMARY KEY (product_id, position),
                FOREIGN KEY (product_id) REFERENCES products(id) ON DELETE CASCADE
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_products_parent ON products(parent_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_images_hash ON product_images(content_hash)")

        conn.commit()


def get_existing_barcodes(db_path: str = DEFAULT_DB_PATH) -> Set[str]:
    """Barcodes of every product already stored."""
    with get_connection(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT barcode FROM products")
        return {row["barcode"] for row in cursor.fetchall()}


def _upsert(
    conn: sqlite3.Connection,
    table: str,
    key: str,
    columns: Sequence[str],
    row: Dict[str, Any],
) -> Tuple[int, bool]:
    values = [row.get(c) for c in columns]
    cursor = conn.cursor()
    cursor.execute(f"SELECT id FROM {table} WHERE {key} = ?", (row[key],))
    existing = cursor.fetchone()

    if existing:
        set_clause = ", ".join(f"{c} = ?" for c in columns)
        cursor.execute(
            f"UPDATE {table} SET {set_clause}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            values + [existing["id"]],
        )
        return existing["id"], False

    placeholders = ", ".join("?" for _ in columns)
    cursor.execute(
        f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
        values,
    )
    return cursor.lastrowid, True


def upsert_product_row(conn: sqlite3.Connection, row: Dict[str, Any]) -> Tuple[int, bool]:
    """Insert or update a product by barcode, returning ``(id, created)``.

    The caller owns the transaction.
    """
    return _upsert(conn, "products", "barcode", PRODUCT_COLUMNS, row)


def upsert_variable_product_row(conn: sqlite3.Connection, row: Dict[str, Any]) -> Tuple[int, bool]:
    """Insert or update a variation parent by parent SKU, returning ``(id, created)``."""
    return _upsert(conn, "variable_products", "parent_sku", VARIABLE_COLUMNS, row)


def replace_product_categories(
    conn: sqlite3.Connection,
    product_id: int,
    categories: Sequence[Tuple[str, Optional[str]]],
) -> None:
    """Set a product's categories to ``(code, sink_id)`` pairs, in order."""
    conn.execute("DELETE FROM product_categories WHERE product_id = ?", (product_id,))
    conn.executemany(
        "INSERT INTO product_categories (product_id, category_code, category_id, position) "
        "VALUES (?, ?, ?, ?)",
        [(product_id, code, sink_id, pos) for pos, (code, sink_id) in enumerate(categories)],
    )


def replace_variable_categories(
    conn: sqlite3.Connection,
    variable_id: int,
    categories: Sequence[Tuple[str, Optional[str]]],
) -> None:
    conn.execute("DELETE FROM variable_product_categories WHERE variable_id = ?", (variable_id,))
    conn.executemany(
        "INSERT INTO variable_product_categories (variable_id, category_code, category_id, position) "
        "VALUES (?, ?, ?, ?)",
        [(variable_id, code, sink_id, pos) for pos, (code, sink_id) in enumerate(categories)],
    )


def replace_product_images(
    conn: sqlite3.Connection,
    product_id: int,
    images: Sequence[Dict[str, str]],
) -> None:
    """Set a product's images; list order becomes image position."""
    conn.execute("DELETE FROM product_images WHERE product_id = ?", (product_id,))
    conn.executemany(
        "INSERT INTO product_images (product_id, position, content_hash, local_path, source_ref) "
        "VALUES (?, ?, ?, ?, ?)",
        [
            (product_id, pos, img["content_hash"], img["local_path"], img.get("source_ref"))
            for pos, img in enumerate(images)
        ],
    )


def get_product_by_barcode(db_path: str, barcode: str) -> Optional[Dict[str, Any]]:
    """Get a stored product with its category codes."""
    with get_connection(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM products WHERE barcode = ?", (barcode,))
        row = cursor.fetchone()
        if not row:
            return None
        product = dict(row)
        cursor.execute(
            "SELECT category_code FROM product_categories WHERE product_id = ? ORDER BY position",
            (product["id"],),
        )
        product["categories"] = [r["category_code"] for r in cursor.fetchall()]
        return product


def get_product_images(db_path: str, product_id: int) -> List[Dict[str, Any]]:
    with get_connection(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute(
            "SELECT position, content_hash, local_path, source_ref FROM product_images "
            "WHERE product_id = ? ORDER BY position",
            (product_id,),
        )
        return [dict(r) for r in cursor.fetchall()]


def get_variable_product(db_path: str, parent_sku: str) -> Optional[Dict[str, Any]]:
    """Get a variation parent with its members (ordered by id) and categories."""
    with get_connection(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM variable_products WHERE parent_sku = ?", (parent_sku,))
        row = cursor.fetchone()
        if not row:
            return None
        parent = dict(row)
        cursor.execute(
            "SELECT barcode, sku, option_value, regular_price, sale_price FROM products "
            "WHERE parent_id = ? ORDER BY id",
            (parent["id"],),
        )
        parent["members"] = [dict(r) for r in cursor.fetchall()]
        cursor.execute(
            "SELECT category_code FROM variable_product_categories "
            "WHERE variable_id = ? ORDER BY position",
            (parent["id"],),
        )
        parent["categories"] = [r["category_code"] for r in cursor.fetchall()]
        return parent


def get_product_count(db_path: str = DEFAULT_DB_PATH, variable: bool = False) -> int:
    """Count stored simple/member products, or variation parents."""
    table = "variable_products" if variable else "products"
    with get_connection(db_path) as conn:
        cursor = conn.cursor()
        cursor.execute(f"SELECT COUNT(*) as count FROM {table}")
        return cursor.fetchone()["count"]
