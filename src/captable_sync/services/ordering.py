"""Ordering and batch trimming of a cycle's decoded events."""

from __future__ import annotations

from collections.abc import Iterable

from captable_sync.services.decoder import NormalizedEvent


def sort_events(events: Iterable[NormalizedEvent]) -> list[NormalizedEvent]:
    """Return events in global apply order ``(block, tx_index, log_index)``."""
    return sorted(events, key=lambda event: event.origin)


def trim_events(
    events: Iterable[NormalizedEvent], max_events: int, end_block: int
) -> tuple[list[NormalizedEvent], int]:
    """Bound a batch to roughly ``max_events`` without splitting a block.

    Blocks are taken whole, in order, until the running count reaches
    ``max_events``. The first block is always taken even when it alone
    exceeds the cap, so a non-empty input never yields an empty batch.

    Returns:
        The trimmed events and the checkpoint to commit with them: ``end_block``
        when nothing was dropped, otherwise the last included block.
    """
    ordered = sort_events(events)
    included: list[NormalizedEvent] = []
    last_block: int | None = None

    for event in ordered:
        block = event.origin.block
        if block != last_block:
            if included and len(included) >= max_events:
                return included, included[-1].origin.block
            last_block = block
        included.append(event)

    return included, end_block
