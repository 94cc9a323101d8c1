import itertools
import random

import pytest

from captable_sync.services.decoder import EventOrigin, NormalizedEvent
from captable_sync.services.ordering import sort_events, trim_events
from captable_sync.services.structs import EntityCreatedData, EntityKind


def make_event(block: int, tx_index: int = 0, log_index: int = 0) -> NormalizedEvent:
    return NormalizedEvent(
        type=EntityKind.STAKEHOLDER,
        timestamp=0,
        payload=EntityCreatedData(kind=EntityKind.STAKEHOLDER, entity_id=f"{block}-{tx_index}-{log_index}"),
        origin=EventOrigin(block, tx_index, log_index),
    )


def blocks_of(events: list[NormalizedEvent]) -> list[int]:
    return [event.origin.block for event in events]


def test_sort_is_independent_of_input_permutation() -> None:
    events = [make_event(101, 1, 0), make_event(101, 0, 3), make_event(100, 5, 1), make_event(101, 0, 2)]
    expected = sort_events(events)

    for permutation in itertools.permutations(events):
        assert sort_events(permutation) == expected

    assert [e.origin for e in expected] == [
        (100, 5, 1),
        (101, 0, 2),
        (101, 0, 3),
        (101, 1, 0),
    ]


def test_trim_stops_at_block_boundary() -> None:
    events = [make_event(101, 0, i) for i in range(3)] + [make_event(102, 0, i) for i in range(2)]
    random.Random(7).shuffle(events)

    trimmed, checkpoint = trim_events(events, max_events=3, end_block=110)

    assert blocks_of(trimmed) == [101, 101, 101]
    assert checkpoint == 101


def test_trim_keeps_oversized_first_block_whole() -> None:
    events = [make_event(101, 0, i) for i in range(5)]

    trimmed, checkpoint = trim_events(events, max_events=3, end_block=150)

    assert len(trimmed) == 5
    assert checkpoint == 150


def test_trim_oversized_first_block_followed_by_more_blocks() -> None:
    events = [make_event(101, 0, i) for i in range(5)] + [make_event(105, 0, 0)]

    trimmed, checkpoint = trim_events(events, max_events=3, end_block=150)

    assert blocks_of(trimmed) == [101] * 5
    assert checkpoint == 101


def test_trim_returns_range_end_when_everything_fits() -> None:
    events = [make_event(101), make_event(102), make_event(104)]

    trimmed, checkpoint = trim_events(events, max_events=10, end_block=120)

    assert len(trimmed) == 3
    assert checkpoint == 120


def test_trim_of_empty_range_advances_to_end() -> None:
    trimmed, checkpoint = trim_events([], max_events=3, end_block=120)

    assert trimmed == []
    assert checkpoint == 120


@pytest.mark.parametrize("max_events", [1, 2, 3, 4, 7, 50])
def test_trim_never_splits_a_block(max_events: int) -> None:
    rng = random.Random(max_events)
    events = [
        make_event(block, tx, log)
        for block in range(200, 210)
        for tx in range(rng.randint(0, 2))
        for log in range(rng.randint(1, 3))
    ]
    events.append(make_event(200, 9, 0))
    rng.shuffle(events)
    per_block = {block: sum(1 for e in events if e.origin.block == block) for block in range(200, 210)}

    trimmed, checkpoint = trim_events(events, max_events=max_events, end_block=209)

    included = set(blocks_of(trimmed))
    for block in included:
        assert blocks_of(trimmed).count(block) == per_block[block]
    assert trimmed == sort_events(trimmed)
    assert checkpoint >= max(included)
