"""Point-in-time composition recovery from history snapshots."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional

from index_engine.core.logging import get_logger
from index_engine.domain.models import CompositionEntry, SnapshotEntry
from index_engine.gateways import IndexStore

logger = get_logger("engine.snapshot")


@dataclass(frozen=True)
class SnapshotRecord:
    date: date
    snapshot: Dict[str, SnapshotEntry]

    def to_composition(self) -> List[CompositionEntry]:
        """Composition rows exactly as frozen, ordered by ticker."""
        return [
            CompositionEntry(
                ticker=ticker,
                target_weight=entry.weight,
                entry_price=entry.entry_price,
                entry_date=entry.entry_date,
            )
            for ticker, entry in sorted(self.snapshot.items())
        ]


@dataclass
class RestoreResult:
    success: bool
    reason: Optional[str] = None
    snapshot_date: Optional[date] = None
    restored: int = 0


async def get_last_snapshot(store: IndexStore, index_id: int) -> Optional[SnapshotRecord]:
    """Most recent history point carrying a non-empty snapshot."""
    points = await store.list_history_points(index_id)
    for point in reversed(points):
        if point.has_snapshot:
            return SnapshotRecord(date=point.date, snapshot=dict(point.composition_snapshot))
    return None


async def restore_composition(
    store: IndexStore, index_id: int, record: Optional[SnapshotRecord] = None
) -> RestoreResult:
    """Reset the live composition to a snapshot and drop later logs.

    Logs dated on the snapshot day itself are kept. No new log is written.
    """
    record = record or await get_last_snapshot(store, index_id)
    if record is None:
        return RestoreResult(success=False, reason="nenhum snapshot de composição encontrado")

    entries = record.to_composition()
    await store.replace_composition(index_id, entries, logs=[], delete_logs_after=record.date)
    logger.info(
        f"[RESTORE] Index {index_id}: {len(entries)} constituents restored "
        f"from snapshot of {record.date.isoformat()}"
    )
    return RestoreResult(success=True, snapshot_date=record.date, restored=len(entries))
