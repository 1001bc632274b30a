"""Ordering and deduplication of harvested records."""

from typing import Iterable

from .harvester import CommitRecord


def merge(records: Iterable[CommitRecord]) -> list[CommitRecord]:
    """
    Sort records by timestamp and drop duplicates.

    The sort is stable, so records sharing a timestamp keep their harvest
    order. Of several records with the same (timestamp, message) only the
    first is kept. Skipped records (no filtered message) are dropped.
    """
    ordered = sorted(
        (r for r in records if r.filtered_message is not None),
        key=lambda r: r.timestamp,
    )

    seen: set[tuple[int, str | None]] = set()
    merged = []
    for record in ordered:
        if record.key in seen:
            continue
        seen.add(record.key)
        merged.append(record)
    return merged
