"""
Price change statistics for sync runs.
"""
import threading
from typing import Optional

from .models import PriceChange, PriceChangeStats


class PriceChangeAggregator:
    """
    Accumulates list price movements across one sync job.

    Safe to feed from several worker threads; ``snapshot()`` returns a
    ``PriceChangeStats`` with the average change percent over every item
    that had a prior price.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._increased = 0
        self._decreased = 0
        self._unchanged = 0
        self._new = 0
        self._change_total = 0.0
        self._changed_count = 0
        self._max_increase: Optional[PriceChange] = None
        self._max_decrease: Optional[PriceChange] = None

    def record(self, sku: str, old_price: Optional[float], new_price: float) -> Optional[PriceChange]:
        """Record one item. ``old_price`` is None for an item new to the list."""
        with self._lock:
            if old_price is None:
                self._new += 1
                return None

            if old_price == 0:
                change_percent = 0.0 if new_price == 0 else 100.0
            else:
                change_percent = (new_price - old_price) / old_price * 100
            change = PriceChange(sku, old_price, new_price, change_percent)

            if new_price > old_price:
                self._increased += 1
                if self._max_increase is None or change_percent > self._max_increase.change_percent:
                    self._max_increase = change
            elif new_price < old_price:
                self._decreased += 1
                if self._max_decrease is None or change_percent < self._max_decrease.change_percent:
                    self._max_decrease = change
            else:
                self._unchanged += 1

            self._change_total += change_percent
            self._changed_count += 1
            return change

    def snapshot(self) -> PriceChangeStats:
        with self._lock:
            average = self._change_total / self._changed_count if self._changed_count else 0.0
            return PriceChangeStats(
                increased=self._increased,
                decreased=self._decreased,
                unchanged=self._unchanged,
                new=self._new,
                average_change_percent=average,
                max_increase=self._max_increase,
                max_decrease=self._max_decrease,
            )
