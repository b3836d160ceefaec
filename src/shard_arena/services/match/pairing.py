"""Queue pairing with expanding Elo windows."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime

from shard_arena.core.config import MatchmakingConfig
from shard_arena.models import MatchmakingEntry


def search_window(entry: MatchmakingEntry, now: datetime, config: MatchmakingConfig) -> int:
    """Elo distance an entry accepts after waiting since ``joined_at``.

    The window starts at ``base_window`` and widens by ``window_step`` for
    every full ``window_step_seconds`` waited, capped at ``max_window``.

    Args:
        entry: Queue entry.
        now: Current time.
        config: Matchmaking settings.

    Returns:
        Maximum accepted rating difference.
    """
    waited = max(0.0, (now - entry.joined_at).total_seconds())
    steps = int(waited // config.window_step_seconds)
    return min(config.max_window, config.base_window + steps * config.window_step)


def is_compatible(
    entry_a: MatchmakingEntry,
    entry_b: MatchmakingEntry,
    now: datetime,
    config: MatchmakingConfig,
) -> bool:
    """Check whether two entries may be paired.

    Entries must share mode and declared stake, belong to different shards
    (and owners unless ``allow_same_owner``), and their Elo gap must fit in
    both entries' search windows.
    """
    if entry_a.mode != entry_b.mode or entry_a.shard_id == entry_b.shard_id:
        return False
    if entry_a.stake_amount != entry_b.stake_amount:
        return False
    if not config.allow_same_owner and entry_a.owner_id == entry_b.owner_id:
        return False
    gap = abs(entry_a.elo_rating - entry_b.elo_rating)
    return gap <= search_window(entry_a, now, config) and gap <= search_window(
        entry_b, now, config
    )


def _queue_order(entry: MatchmakingEntry) -> tuple[datetime, str]:
    return entry.joined_at, entry.id


def pair_queue(
    entries: list[MatchmakingEntry],
    now: datetime,
    config: MatchmakingConfig,
) -> list[tuple[MatchmakingEntry, MatchmakingEntry]]:
    """Pair queue entries, oldest first.

    Entries are grouped by mode and walked in (joined_at, id) order. Each
    unpaired entry takes the oldest later entry it is compatible with, so the
    longest-waiting entries match first and ties resolve by id.

    Args:
        entries: Open queue entries (any order, any mode).
        now: Current time, used for the search windows.
        config: Matchmaking settings.

    Returns:
        List of (older, newer) entry pairs. The older entry challenges.
    """
    by_mode: dict[str, list[MatchmakingEntry]] = defaultdict(list)
    for entry in entries:
        by_mode[entry.mode.value].append(entry)

    pairs: list[tuple[MatchmakingEntry, MatchmakingEntry]] = []
    for mode in sorted(by_mode):
        ordered = sorted(by_mode[mode], key=_queue_order)
        used: set[str] = set()

        for i, entry_a in enumerate(ordered):
            if entry_a.id in used:
                continue

            for entry_b in ordered[i + 1 :]:
                if entry_b.id in used:
                    continue
                if not is_compatible(entry_a, entry_b, now, config):
                    continue

                pairs.append((entry_a, entry_b))
                used.add(entry_a.id)
                used.add(entry_b.id)
                break

    return pairs
