"""Last known-good price per symbol, used when the source fails."""

from __future__ import annotations
import threading
from typing import Dict, Optional, Tuple


class PriceCache:
    def __init__(self):
        self._prices: Dict[str, Tuple[float, int]] = {}
        self._lock = threading.Lock()

    def put(self, symbol: str, price: float, ts: int) -> None:
        with self._lock:
            self._prices[symbol] = (float(price), int(ts))

    def get(self, symbol: str, now: int, max_age_ms: int) -> Optional[float]:
        """Cached price if it is no older than max_age_ms at `now`, else None."""
        with self._lock:
            entry = self._prices.get(symbol)
        if entry is None:
            return None
        price, ts = entry
        if now - ts > max_age_ms:
            return None
        return price

    def clear(self) -> None:
        with self._lock:
            self._prices.clear()
