"""
Pair helpers: ``BASE-QUOTE`` instrument names.
"""

from typing import Tuple


def parse_pair(pair: str) -> Tuple[str, str]:
    """Split ``BTC-USDT`` into ``("BTC", "USDT")``."""
    parts = pair.split("-")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ValueError(f"invalid pair {pair!r}, expected BASE-QUOTE")
    return parts[0].upper(), parts[1].upper()