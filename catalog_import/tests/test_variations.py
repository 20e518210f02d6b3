"""Tests for base-name extraction and variation grouping."""

import pytest

from conftest import make_record

from catalog_import.config import VariationVocabulary
from catalog_import.models import VariationAttribute, VariationGroup
from catalog_import.variations import (
    VariationDetector,
    detect_variations,
    extract_base_name,
)


@pytest.fixture
def detector():
    return VariationDetector()


class TestExtractBaseName:
    """Stripping variant tokens from product names."""

    @pytest.mark.parametrize("name,expected", [
        ("Foo Bar Red", "Foo Bar"),
        ("FOO BAR BLUE", "FOO BAR"),
        ("Glide Lube 8 oz", "Glide Lube"),
        ("Glide Lube 2.5oz", "Glide Lube"),
        ("Glide Lube 100 ML", "Glide Lube"),
        ("Silk Wand 7 inch", "Silk Wand"),
        ("Foo Bar [Strawberry]", "Foo Bar"),
        ("Foo Bar (Travel Size)", "Foo Bar"),
        ("Massage Oil - Lavender", "Massage Oil"),
        ("Sleeve Small", "Sleeve"),
        ("Candy Strings 12 pack", "Candy Strings"),
    ])
    def test_strips_variant_tokens(self, detector, name, expected):
        assert detector.extract_base_name(name) == expected

    def test_multi_word_phrase_wins_over_single_word(self, detector):
        # "LEMONADE" alone is not a variant word; only the full phrase strips
        assert detector.extract_base_name("Foo Cherry Lemonade") == "Foo"
        assert detector.extract_base_name("Foo Wild Cherry") == "Foo"
        assert detector.extract_base_name("Foo Rose Gold") == "Foo"

    def test_only_trailing_tokens_are_stripped(self, detector):
        assert detector.extract_base_name("Red Rocket Lube") == "Red Rocket Lube"

    def test_stacked_trailing_tokens(self, detector):
        assert detector.extract_base_name("Foo Bar Cherry 4 oz") == "Foo Bar"

    def test_never_strips_to_empty(self, detector):
        assert detector.extract_base_name("Red") == "Red"
        assert detector.extract_base_name("Large") == "Large"

    @pytest.mark.parametrize("name", [
        "Foo Bar Red",
        "Foo Bar Red Blue",
        "Glide Lube Vanilla 8 oz (Net)",
        "Massage Candle Pina Colada 6 oz",
        "Sleeve - Small / Black",
        "Plain Name",
        "Red",
        "  spaced   out   name  ",
    ])
    def test_idempotent(self, detector, name):
        once = detector.extract_base_name(name)
        assert detector.extract_base_name(once) == once

    def test_module_function_uses_default_vocabulary(self):
        assert extract_base_name("Foo Bar Red") == "Foo Bar"

    def test_injected_vocabulary(self):
        vocab = VariationVocabulary(
            multi_word_phrases=(),
            flavor_words=(),
            color_words=("ZORB",),
            size_words=(),
        )
        detector = VariationDetector(vocab)

        assert detector.extract_base_name("Widget Zorb") == "Widget"
        assert detector.extract_base_name("Widget Red") == "Widget Red"


class TestDetectVariations:
    """Grouping records and choosing the varying attribute."""

    def test_color_group_from_names(self, detector):
        records = [
            make_record("A1", "Foo Bar Red"),
            make_record("A2", "Foo Bar Blue"),
        ]

        result = detector.detect(records)

        assert len(result.groups) == 1
        group = result.groups[0]
        assert group.base_name == "Foo Bar"
        assert group.variation_attribute is VariationAttribute.COLOR
        assert list(group.option_values) == ["Red", "Blue"]
        assert [m.sku for m in group.members] == ["A1", "A2"]
        assert result.singles == []

    def test_color_field_beats_name_and_is_normalized(self, detector):
        records = [
            make_record("S1", "Stroker Sleeve", color="blk"),
            make_record("S2", "Stroker Sleeve", color="pink"),
        ]

        group = detector.detect(records).groups[0]

        assert group.variation_attribute is VariationAttribute.COLOR
        assert list(group.option_values) == ["Black", "Pink"]

    def test_flavor_indicator(self, detector):
        records = [
            make_record("F1", "Tasty Lube Vanilla"),
            make_record("F2", "Tasty Lube Mango"),
        ]

        group = detector.detect(records).groups[0]

        assert group.base_name == "Tasty Lube"
        assert group.variation_attribute is VariationAttribute.FLAVOR
        assert list(group.option_values) == ["Vanilla", "Mango"]

    def test_size_from_names(self, detector):
        records = [
            make_record("L1", "Glide Lube 4 oz"),
            make_record("L2", "Glide Lube 8 OZ"),
        ]

        group = detector.detect(records).groups[0]

        assert group.variation_attribute is VariationAttribute.SIZE
        assert list(group.option_values) == ["4 oz", "8 oz"]

    def test_size_from_explicit_field(self, detector):
        records = [
            make_record("R1", "Cock Ring", size="Small"),
            make_record("R2", "Cock Ring", size="Large"),
        ]

        group = detector.detect(records).groups[0]

        assert group.variation_attribute is VariationAttribute.SIZE
        assert list(group.option_values) == ["Small", "Large"]

    def test_style_words(self, detector):
        records = [
            make_record("G1", "Foo Gel (Warming)"),
            make_record("G2", "Foo Gel (Cooling)"),
        ]

        group = detector.detect(records).groups[0]

        assert group.variation_attribute is VariationAttribute.STYLE
        assert list(group.option_values) == ["Warming", "Cooling"]

    def test_no_recognised_attribute_uses_name_suffix(self, detector):
        records = [
            make_record("N1", "Foo Thing [A1]"),
            make_record("N2", "Foo Thing [B2]"),
        ]

        group = detector.detect(records).groups[0]

        assert group.variation_attribute is VariationAttribute.NONE
        assert list(group.option_values) == ["A1", "B2"]

    def test_different_manufacturer_or_type_not_grouped(self, detector):
        records = [
            make_record("M1", "Foo Bar Red", manufacturer="ACME"),
            make_record("M2", "Foo Bar Blue", manufacturer="OTHER"),
            make_record("M3", "Foo Bar Green", type_code="TOYS"),
        ]

        result = detector.detect(records)

        assert result.groups == []
        assert [r.sku for r in result.singles] == ["M1", "M2", "M3"]

    def test_duplicate_option_values_become_conflict(self, detector):
        records = [
            make_record("D1", "Foo Bar Red"),
            make_record("D2", "Foo Bar Red"),
        ]

        result = detector.detect(records)

        assert result.groups == []
        assert len(result.conflicts) == 1
        assert result.conflicts[0].skus == ["D1", "D2"]
        assert result.conflicts[0].duplicate_values == ("Red",)
        # Conflicting members fall back to simple products
        assert [r.sku for r in result.singles] == ["D1", "D2"]

    def test_bulk_displays_never_grouped(self, detector):
        records = [
            make_record("B1", "Counter Display", color="Red"),
            make_record("B2", "Counter Display", color="Blue"),
        ]

        result = detector.detect(records)

        assert result.groups == []
        assert len(result.singles) == 2

    def test_result_is_a_partition(self, detector):
        records = [
            make_record("P1", "Foo Bar Red"),
            make_record("P2", "Foo Bar Blue"),
            make_record("P3", "Glide Lube 4 oz"),
            make_record("P4", "Glide Lube 8 oz"),
            make_record("P5", "Lonely Product"),
            make_record("P6", "Dup Name Red"),
            make_record("P7", "Dup Name Red"),
        ]

        result = detector.detect(records)

        grouped = [m.sku for g in result.groups for m in g.members]
        single = [r.sku for r in result.singles]
        assert sorted(grouped + single) == sorted(r.sku for r in records)
        assert len(set(grouped)) == len(grouped)
        assert not set(grouped) & set(single)

    def test_detect_variations_returns_groups_only(self):
        groups = detect_variations([
            make_record("A1", "Foo Bar Red"),
            make_record("A2", "Foo Bar Blue"),
            make_record("A3", "Other"),
        ])

        assert len(groups) == 1
        assert groups[0].base_name == "Foo Bar"


class TestVariationGroupModel:

    def test_needs_two_members(self):
        with pytest.raises(ValueError):
            VariationGroup("Foo", VariationAttribute.COLOR, (make_record("A1", "Foo Red"),), ("Red",))

    def test_option_values_unique_ignoring_case(self):
        members = (make_record("A1", "Foo Red"), make_record("A2", "Foo RED"))
        with pytest.raises(ValueError):
            VariationGroup("Foo", VariationAttribute.COLOR, members, ("Red", "RED"))

    def test_labels(self):
        assert VariationAttribute.COLOR.label == "Color"
        assert VariationAttribute.NONE.label == "Variant"
