"""Tests for the SQLite and dry-run catalog sinks."""

from decimal import Decimal

import pytest

from conftest import make_record

from catalog_import.db import (
    get_product_by_barcode,
    get_product_count,
    get_product_images,
    get_variable_product,
)
from catalog_import.models import (
    CategoryAssignment,
    CategoryMethod,
    ImageArtifact,
    MemberPayload,
    PriceQuote,
    VariationAttribute,
    VariationGroup,
)
from catalog_import.sink import DryRunSink, SinkError, SqliteCatalogSink, product_row

QUOTE = PriceQuote(Decimal("29.97"), Decimal("26.97"), Decimal("2.88"))


def explicit(sku, *codes):
    return CategoryAssignment(sku, tuple(codes), CategoryMethod.EXPLICIT)


def artifact(name):
    return ImageArtifact(content_hash=f"hash-{name}", local_path=f"/cache/{name}.webp",
                         width=650, height=650, source_ref=f"/{name}.jpg")


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "catalog.db")


@pytest.fixture
def sink(db_path):
    return SqliteCatalogSink(
        db_path,
        category_mapping={"C1": "101", "C2": "102"},
        manufacturer_mapping={"ACME": "7"},
    )


def color_group():
    red = make_record("A1", "Foo Bar Red")
    blue = make_record("A2", "Foo Bar Blue")
    group = VariationGroup(
        base_name="Foo Bar",
        variation_attribute=VariationAttribute.COLOR,
        members=(red, blue),
        option_values=("Red", "Blue"),
    )
    cheap = PriceQuote(Decimal("19.97"), Decimal("17.97"), Decimal("2.95"))
    payloads = [
        MemberPayload(red, "Red", explicit("A1", "C1"), QUOTE, [artifact("red")]),
        MemberPayload(blue, "Blue", explicit("A2", "C2", "C1"), cheap, []),
    ]
    return group, payloads


class TestProductRow:

    def test_storefront_fields(self):
        record = make_record("A1", "the joy of lube", description="<p>Nice. Really nice. 2021</p>")
        row = product_row(record, explicit("A1", "C1"), QUOTE)

        assert row["name"] == "The Joy of Lube"
        assert row["slug"] == "the-joy-of-lube-bc-a1"
        assert row["description"] == "Nice. Really nice."
        assert row["regular_price"] == "29.97"
        assert row["category_method"] == "explicit"
        assert row["parent_id"] is None


class TestSqliteCatalogSink:
    """Idempotent writes into the local store."""

    def test_simple_product(self, sink, db_path):
        record = make_record("A1", "Glide Lube", categories=("C1",))
        sink_id = sink.upsert_product(record, explicit("A1", "C1"), QUOTE,
                                      [artifact("one"), artifact("two")])

        stored = get_product_by_barcode(db_path, "BC-A1")
        assert sink_id == f"product:{stored['id']}"
        assert stored["regular_price"] == "29.97"
        assert stored["sale_price"] == "26.97"
        assert stored["manufacturer_id"] == "7"
        assert stored["categories"] == ["C1"]
        images = get_product_images(db_path, stored["id"])
        assert [i["content_hash"] for i in images] == ["hash-one", "hash-two"]
        assert sink.has_barcode("BC-A1")

    def test_rerun_updates_in_place(self, sink, db_path):
        record = make_record("A1", "Glide Lube")
        sink.upsert_product(record, explicit("A1", "C1"), QUOTE, [artifact("one")])
        cheaper = PriceQuote(Decimal("9.97"), Decimal("8.97"), Decimal("3.0"))

        sink.upsert_product(record, explicit("A1", "C2"), cheaper, [])

        assert get_product_count(db_path) == 1
        stored = get_product_by_barcode(db_path, "BC-A1")
        assert stored["regular_price"] == "9.97"
        assert stored["categories"] == ["C2"]
        assert get_product_images(db_path, stored["id"]) == []

    def test_existing_barcodes_loaded_on_open(self, sink, db_path):
        sink.upsert_product(make_record("A1", "Glide Lube"), explicit("A1", "C1"), QUOTE, [])

        reopened = SqliteCatalogSink(db_path)

        assert reopened.has_barcode("BC-A1")
        assert not reopened.has_barcode("BC-NOPE")

    def test_variation_group(self, sink, db_path):
        group, payloads = color_group()

        sink_id = sink.upsert_variation_group(group, payloads)

        parent = get_variable_product(db_path, "VAR-ACME-FOO-BAR")
        assert sink_id == f"variable:{parent['id']}"
        assert parent["attribute"] == "color"
        assert parent["attribute_label"] == "Color"
        assert parent["price"] == "19.97"
        assert parent["categories"] == ["C1", "C2"]
        assert [m["option_value"] for m in parent["members"]] == ["Red", "Blue"]
        assert get_product_count(db_path, variable=True) == 1
        assert get_product_count(db_path) == 2

    def test_variation_group_rerun_is_idempotent(self, sink, db_path):
        group, payloads = color_group()

        sink.upsert_variation_group(group, payloads)
        sink.upsert_variation_group(group, payloads)

        assert get_product_count(db_path, variable=True) == 1
        assert get_product_count(db_path) == 2

    def test_group_needs_two_payloads(self, sink):
        group, payloads = color_group()

        with pytest.raises(SinkError):
            sink.upsert_variation_group(group, payloads[:1])


class TestDryRunSink:

    def test_records_without_writing(self, tmp_path):
        sink = DryRunSink(existing_barcodes={"OLD"})
        group, payloads = color_group()

        sink.upsert_product(make_record("S1", "Single"), explicit("S1", "C1"), QUOTE, [])
        parent_id = sink.upsert_variation_group(group, payloads)

        assert parent_id == "dry-run:VAR-ACME-FOO-BAR"
        assert len(sink.products) == 1
        assert len(sink.groups) == 1
        assert sink.has_barcode("OLD")
        assert sink.has_barcode("BC-A2")
        assert list(tmp_path.iterdir()) == []
