from .pairing import is_compatible, pair_queue, search_window
from .queue import MatchQueue, parse_mode

__all__ = [
    "MatchQueue",
    "is_compatible",
    "pair_queue",
    "parse_mode",
    "search_window",
]
