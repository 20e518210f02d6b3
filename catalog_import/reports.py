"""Run reports: JSON summary, errors CSV and a console summary."""

import csv
import json
import os
from datetime import datetime
from typing import Dict, List, Optional

from catalog_import.models import RunStats

__all__ = [
    "write_report",
    "write_errors_csv",
    "format_summary",
]

ERROR_FIELDS = ["sku", "barcode", "message"]


def write_report(stats: RunStats, path: str, extra: Optional[Dict[str, object]] = None) -> None:
    """Write the run statistics as a JSON report."""
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    report = {
        "generated_at": datetime.now().isoformat(timespec="seconds"),
        **(extra or {}),
        **stats.to_dict(),
    }
    with open(path, "w", encoding="utf-8") as f:
        json.dump(report, f, indent=2, ensure_ascii=False)


def write_errors_csv(stats: RunStats, path: str) -> int:
    """Write per-item errors and warnings to CSV. Returns the row count."""
    rows: List[Dict[str, str]] = []
    for level, items in (("error", stats.errors), ("warning", stats.warnings)):
        for item in items:
            rows.append({"level": level, **{k: item.get(k, "") for k in ERROR_FIELDS}})

    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=["level"] + ERROR_FIELDS)
        writer.writeheader()
        writer.writerows(rows)
    return len(rows)


def format_summary(stats: RunStats) -> str:
    methods = stats.category_methods
    lines = [
        "=" * 60,
        "IMPORT SUMMARY",
        "=" * 60,
        f"Processed:            {stats.processed}",
        f"Created:              {stats.created}",
        f"Updated:              {stats.updated}",
        f"Skipped:              {stats.skipped}",
        f"Simple products:      {stats.simple_products}",
        f"Variable products:    {stats.variable_products} ({stats.variations} variations)",
        f"Variation conflicts:  {stats.variation_conflicts}",
        "Categories:",
        f"  explicit:           {methods.get('explicit', 0)}",
        f"  by similarity:      {methods.get('inferred-similarity', 0)}",
        f"  by product type:    {methods.get('inferred-by-type', 0)}",
        f"  uncategorized:      {methods.get('none', 0)}",
        f"Images:               {stats.images_succeeded} ok "
        f"({stats.images_cached} cached), {stats.images_failed} failed",
        f"Products w/o images:  {stats.zero_image_products}",
        f"Errors:               {len(stats.errors)}",
    ]
    for error in stats.errors[:10]:
        lines.append(f"  - {error['sku'] or '?'}: {error['message']}")
    if len(stats.errors) > 10:
        lines.append(f"  ... and {len(stats.errors) - 10} more")
    return "\n".join(lines)
