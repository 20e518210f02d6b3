"""Import run orchestration.

One run takes the parsed records of a feed through filtering, variation
grouping, category resolution, pricing and image normalization, then hands
each simple product or variation group to the catalog sink exactly once.
Per-item failures are recorded in :class:`RunStats`; the run carries on.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Union

from catalog_import.categories import CategoryResolver
from catalog_import.config import (
    SINK_CHUNK_SIZE,
    InferenceSettings,
    PricingCurve,
    VariationVocabulary,
)
from catalog_import.images import ImageNormalizer, NormalizeOutcome
from catalog_import.logging_config import get_logger, log_import_event
from catalog_import.models import (
    ImageArtifact,
    MemberPayload,
    ProductRecord,
    RunStats,
    VariationGroup,
)
from catalog_import.pricing import PricingCalculator
from catalog_import.readers import read_feed
from catalog_import.shutdown import shutdown_requested
from catalog_import.sink import CatalogSink, SinkError
from catalog_import.variations import VariationDetector

__all__ = [
    "ImportRun",
    "import_feed",
]

logger = get_logger("pipeline")


@dataclass
class _Unit:
    """One sink write: a variation group or a simple product."""

    group: Optional[VariationGroup] = None
    record: Optional[ProductRecord] = None

    @property
    def records(self) -> Sequence[ProductRecord]:
        return self.group.members if self.group else (self.record,)


def _chunks(items: Sequence[_Unit], size: int) -> Iterable[Sequence[_Unit]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class ImportRun:
    """Context for a single import run.

    Args:
        sink: Destination for finished products
        normalizer: Image normalizer (may be None when ``skip_images`` is set)
        category_mapping: Category code to sink-side id
        type_category_mapping: Product type code to fallback category codes
        excluded_types: Product type codes never imported
        vocabulary: Keyword tables for variation grouping
        inference_settings: Weights and limits for category voting
        pricing_curve: Markup curve parameters
        barcodes: When given, only records with these barcodes are imported
        skip_images: Import without fetching or processing images
        detect_variations: Group variations (otherwise every record is simple)
        update_existing: Rewrite products the sink already holds
        chunk_size: Products per image/sink batch
    """

    def __init__(
        self,
        sink: CatalogSink,
        normalizer: Optional[ImageNormalizer],
        category_mapping: Mapping[str, str],
        type_category_mapping: Optional[Mapping[str, Sequence[str]]] = None,
        excluded_types: Optional[Set[str]] = None,
        vocabulary: Optional[VariationVocabulary] = None,
        inference_settings: Optional[InferenceSettings] = None,
        pricing_curve: Optional[PricingCurve] = None,
        barcodes: Optional[Set[str]] = None,
        skip_images: bool = False,
        detect_variations: bool = True,
        update_existing: bool = False,
        chunk_size: int = SINK_CHUNK_SIZE,
    ):
        if normalizer is None and not skip_images:
            raise ValueError("An image normalizer is required unless skip_images is set")
        self.sink = sink
        self.normalizer = normalizer
        self.category_mapping = category_mapping
        self.type_category_mapping = type_category_mapping or {}
        self.excluded_types = {t.upper() for t in (excluded_types or ())}
        self.detector = VariationDetector(vocabulary)
        self.inference_settings = inference_settings
        self.pricing = PricingCalculator(pricing_curve)
        self.barcodes = set(barcodes) if barcodes is not None else None
        self.skip_images = skip_images
        self.detect_variations = detect_variations
        self.update_existing = update_existing
        self.chunk_size = max(1, chunk_size)

        self.stats = RunStats()
        self._written: Set[str] = set()
        self.resolver: Optional[CategoryResolver] = None

    # -------------------------------------------------------------------------
    # Filtering
    # -------------------------------------------------------------------------

    def _skip(self, record: ProductRecord, reason: str, error: bool = False) -> None:
        self.stats.skipped += 1
        if error:
            self.stats.add_error(record.sku, reason, record.barcode)
        log_import_event(
            "record_skipped",
            {"message": f"Skipping {record.sku or '?'}: {reason}",
             "sku": record.sku, "barcode": record.barcode},
            level=logging.WARNING if error else logging.DEBUG,
            logger_name="pipeline",
        )

    def _eligible(self, records: Sequence[ProductRecord]) -> List[ProductRecord]:
        eligible: List[ProductRecord] = []
        seen: Set[str] = set()
        for record in records:
            if not record.importable:
                self._skip(record, "missing sku or barcode", error=True)
            elif self.barcodes is not None and record.barcode not in self.barcodes:
                self._skip(record, "not in barcode filter")
            elif record.type_code.upper() in self.excluded_types:
                self._skip(record, f"excluded product type {record.type_code}")
            elif not record.active:
                self._skip(record, "inactive")
            elif not record.sellable:
                self._skip(record, f"unsellable wholesale price {record.wholesale_price}", error=True)
            elif record.barcode in seen:
                self._skip(record, f"duplicate barcode {record.barcode} in feed", error=True)
            else:
                seen.add(record.barcode)
                eligible.append(record)
        return eligible

    def _already_imported(self, unit: _Unit) -> bool:
        if self.update_existing:
            return False
        return all(self.sink.has_barcode(r.barcode) for r in unit.records)

    # -------------------------------------------------------------------------
    # Images
    # -------------------------------------------------------------------------

    def _images_for(self, units: Sequence[_Unit]) -> Dict[str, NormalizeOutcome]:
        if self.skip_images:
            return {}
        jobs = [
            (r.barcode, r.images, r.name)
            for unit in units for r in unit.records if r.images
        ]
        if not jobs:
            return {}
        # Cache filenames carry the barcode
        return asyncio.run(self.normalizer.normalize_many(jobs, key_in_filename=True))

    def _collect_images(
        self, record: ProductRecord, outcomes: Dict[str, NormalizeOutcome]
    ) -> List[ImageArtifact]:
        outcome = outcomes.get(record.barcode)
        artifacts = outcome.artifacts if outcome else []
        if outcome:
            self.stats.images_succeeded += len(outcome.artifacts)
            self.stats.images_cached += sum(1 for a in outcome.artifacts if a.from_cache)
            self.stats.images_failed += len(outcome.failures)
            for failure in outcome.failures:
                self.stats.add_warning(
                    record.sku, f"image {failure.index + 1} ({failure.kind}): {failure.message}",
                    record.barcode,
                )
        if not artifacts and not self.skip_images:
            self.stats.zero_image_products += 1
            self.stats.add_warning(record.sku, "imported without images", record.barcode)
        return artifacts

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def _write_simple(self, record: ProductRecord, outcomes: Dict[str, NormalizeOutcome]) -> None:
        if record.barcode in self._written:
            logger.warning(f"Barcode {record.barcode} already written this run, skipping")
            return
        existed = self.sink.has_barcode(record.barcode)
        assignment = self.resolver.resolve(record)
        quote = self.pricing.price(record.wholesale_price)
        images = self._collect_images(record, outcomes)

        self.sink.upsert_product(record, assignment, quote, images)
        self._written.add(record.barcode)
        self.stats.record_category(assignment)
        self.stats.simple_products += 1
        if existed:
            self.stats.updated += 1
        else:
            self.stats.created += 1

    def _write_group(self, group: VariationGroup, outcomes: Dict[str, NormalizeOutcome]) -> None:
        dupes = [m.barcode for m in group.members if m.barcode in self._written]
        if dupes:
            logger.warning(f"Group '{group.base_name}' has members already written: {dupes}")
            return
        existed = [self.sink.has_barcode(m.barcode) for m in group.members]
        payloads = []
        for record, option in group.options():
            payloads.append(MemberPayload(
                record=record,
                option_value=option,
                assignment=self.resolver.resolve(record),
                quote=self.pricing.price(record.wholesale_price),
                images=self._collect_images(record, outcomes),
            ))

        self.sink.upsert_variation_group(group, payloads)
        self._written.update(m.barcode for m in group.members)
        for payload in payloads:
            self.stats.record_category(payload.assignment)
        self.stats.variable_products += 1
        self.stats.variations += len(payloads)
        self.stats.updated += sum(existed)
        self.stats.created += len(existed) - sum(existed)

    def _write(self, unit: _Unit, outcomes: Dict[str, NormalizeOutcome]) -> None:
        try:
            if unit.group:
                self._write_group(unit.group, outcomes)
            else:
                self._write_simple(unit.record, outcomes)
        except SinkError as e:
            for record in unit.records:
                self.stats.add_error(record.sku, f"sink rejected write: {e}", record.barcode)
            log_import_event(
                "sink_error",
                {"message": str(e), "skus": [r.sku for r in unit.records]},
                level=logging.ERROR,
                logger_name="pipeline",
            )

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def run(self, records: Sequence[ProductRecord]) -> RunStats:
        """Import ``records`` and return the run statistics."""
        records = list(records)
        self.stats.processed += len(records)
        log_import_event("run_start", {
            "message": f"Import run started with {len(records)} records",
            "records": len(records),
            "skip_images": self.skip_images,
            "detect_variations": self.detect_variations,
        }, logger_name="pipeline")

        # Built once from every record, then only read
        self.resolver = CategoryResolver(
            records, self.category_mapping, self.type_category_mapping, self.inference_settings
        )

        eligible = self._eligible(records)
        units: List[_Unit] = []
        if self.detect_variations:
            detection = self.detector.detect(eligible)
            self.stats.variation_conflicts += len(detection.conflicts)
            for conflict in detection.conflicts:
                for member in conflict.members:
                    self.stats.add_warning(
                        member.sku,
                        f"variation conflict in '{conflict.base_name}' "
                        f"({conflict.variation_attribute.value}: {', '.join(conflict.duplicate_values)}); "
                        "imported as simple product",
                        member.barcode,
                    )
            units.extend(_Unit(group=g) for g in detection.groups)
            units.extend(_Unit(record=r) for r in detection.singles)
        else:
            units.extend(_Unit(record=r) for r in eligible)

        pending: List[_Unit] = []
        for unit in units:
            if self._already_imported(unit):
                for record in unit.records:
                    self._skip(record, "already imported")
            else:
                pending.append(unit)

        for batch_no, batch in enumerate(_chunks(pending, self.chunk_size), start=1):
            if shutdown_requested():
                remaining = sum(len(u.records) for u in pending[(batch_no - 1) * self.chunk_size:])
                logger.warning(f"Shutdown requested, stopping with {remaining} products not written")
                break
            outcomes = self._images_for(batch)
            for unit in batch:
                self._write(unit, outcomes)
            logger.info(
                f"Batch {batch_no}: {self.stats.created} created, {self.stats.updated} updated, "
                f"{len(self.stats.errors)} errors so far"
            )

        log_import_event("run_complete", {
            "message": (
                f"Import finished: {self.stats.created} created, {self.stats.updated} updated, "
                f"{self.stats.skipped} skipped, {len(self.stats.errors)} errors"
            ),
            "stats": {k: v for k, v in self.stats.to_dict().items() if k not in ("errors", "warnings")},
        }, logger_name="pipeline")
        return self.stats


def import_feed(path: Union[str, Path], run: ImportRun) -> RunStats:
    """Read a feed file and import it with ``run``.

    Raises:
        FeedError: If the feed cannot be read at all
    """
    result = read_feed(path)
    log_import_event("feed_parsed", {
        "message": f"Read {len(result.records)} records from {path}",
        "path": str(path),
        "records": len(result.records),
        "skipped": len(result.skipped),
    }, logger_name="pipeline")

    run.stats.processed += len(result.skipped)
    run.stats.skipped += len(result.skipped)
    for item in result.skipped:
        run.stats.add_error(item["sku"], f"parse error: {item['message']}")
    return run.run(result.records)
