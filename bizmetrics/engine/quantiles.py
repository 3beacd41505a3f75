"""
Streaming Quantile Sketch

KLL sketch (Karnin, Lang & Liberty, 2016) for approximate quantiles over
large streams without a full sort. Each level holds a compactor; when the
sketch is full the lowest overflowing level is sorted and every other item
is promoted one level up with double weight.

Rank error is roughly 1.7 / k of the stream length with high probability.
Streams that never trigger a compaction (fewer than ~k items) are exact.

The coin flips come from a seeded RNG so that the same stream always
produces the same estimate, which keeps report reruns idempotent.
"""

import math
import random
from typing import Iterable, List, Optional, Sequence, Tuple

DEFAULT_K = 200
_CAPACITY_DECAY = 2.0 / 3.0


class QuantileSketch:
    """
    Mergeable approximate quantile sketch.

    Example:
        sketch = QuantileSketch(k=200)
        sketch.extend(hourly_counts)
        p50 = sketch.quantile(0.5)
        boundaries = sketch.approx_quantiles(100)  # 101 values, min..max
    """

    def __init__(self, k: int = DEFAULT_K, seed: int = 0):
        if k < 8:
            raise ValueError("k must be at least 8")
        self.k = k
        self._rng = random.Random(seed)
        self._compactors: List[List[float]] = [[]]
        self._size = 0
        self._max_size = 0
        self.count = 0
        self.min: Optional[float] = None
        self.max: Optional[float] = None
        self._update_max_size()

    def __len__(self) -> int:
        return self.count

    @property
    def height(self) -> int:
        return len(self._compactors)

    def _capacity(self, level: int) -> int:
        depth = self.height - level - 1
        return max(2, int(math.ceil(self.k * _CAPACITY_DECAY ** depth)))

    def _update_max_size(self) -> None:
        self._max_size = sum(self._capacity(h) for h in range(self.height))

    def _grow(self) -> None:
        self._compactors.append([])
        self._update_max_size()

    def _compact_level(self, level: int) -> None:
        items = self._compactors[level]
        items.sort()
        # Odd item out stays behind at this level
        leftover = [items.pop()] if len(items) % 2 else []
        offset = 1 if self._rng.random() < 0.5 else 0
        self._compactors[level + 1].extend(items[offset::2])
        self._compactors[level] = leftover

    def _compress(self) -> None:
        while self._size >= self._max_size:
            for level in range(self.height):
                if len(self._compactors[level]) >= self._capacity(level):
                    if level + 1 >= self.height:
                        self._grow()
                    self._compact_level(level)
                    self._size = sum(len(c) for c in self._compactors)
                    break
            else:
                break

    def update(self, value) -> None:
        """Add one observation. None and NaN are ignored."""
        if value is None:
            return
        value = float(value)
        if math.isnan(value):
            return
        self._compactors[0].append(value)
        self._size += 1
        self.count += 1
        self.min = value if self.min is None else min(self.min, value)
        self.max = value if self.max is None else max(self.max, value)
        if self._size >= self._max_size:
            self._compress()

    def extend(self, values: Iterable) -> "QuantileSketch":
        for value in values:
            self.update(value)
        return self

    def merge(self, other: "QuantileSketch") -> "QuantileSketch":
        """Fold ``other`` into this sketch. Order of merges does not matter for the bound."""
        if other.count == 0:
            return self
        while self.height < other.height:
            self._grow()
        for level, items in enumerate(other._compactors):
            self._compactors[level].extend(items)
        self._size = sum(len(c) for c in self._compactors)
        self.count += other.count
        self.min = other.min if self.min is None else min(self.min, other.min)
        self.max = other.max if self.max is None else max(self.max, other.max)
        self._compress()
        return self

    def _weighted_items(self) -> List[Tuple[float, int]]:
        items = [
            (value, 1 << level)
            for level, compactor in enumerate(self._compactors)
            for value in compactor
        ]
        items.sort()
        return items

    def rank(self, value: float) -> float:
        """Estimated fraction of observations <= value"""
        if self.count == 0:
            return 0.0
        weighted = self._weighted_items()
        total = sum(w for _, w in weighted)
        below = sum(w for v, w in weighted if v <= value)
        return below / total

    def _quantiles_from(self, weighted: Sequence[Tuple[float, int]], fractions: Sequence[float]) -> List[float]:
        total = sum(w for _, w in weighted)
        results = []
        for q in fractions:
            if q <= 0:
                results.append(self.min)
                continue
            if q >= 1:
                results.append(self.max)
                continue
            target = q * total
            cumulative = 0
            chosen = weighted[-1][0]
            for value, weight in weighted:
                cumulative += weight
                if cumulative >= target:
                    chosen = value
                    break
            results.append(chosen)
        return results

    def quantile(self, q: float) -> Optional[float]:
        """Estimated value at fraction ``q`` (0..1); None on an empty sketch"""
        if not 0 <= q <= 1:
            raise ValueError(f"Quantile fraction must be within [0, 1], got {q}")
        if self.count == 0:
            return None
        return self._quantiles_from(self._weighted_items(), [q])[0]

    def approx_quantiles(self, buckets: int) -> List[Optional[float]]:
        """
        ``buckets + 1`` boundaries from min to max, matching the warehouse
        ``APPROX_QUANTILES(x, buckets)`` layout (index i = i/buckets quantile).
        """
        if buckets < 1:
            raise ValueError("buckets must be positive")
        if self.count == 0:
            return [None] * (buckets + 1)
        fractions = [i / buckets for i in range(buckets + 1)]
        return self._quantiles_from(self._weighted_items(), fractions)


def approx_percentiles(
    values: Iterable,
    percentiles: Sequence[int],
    k: int = DEFAULT_K,
) -> List[Optional[float]]:
    """Sketch ``values`` once and read several integer percentiles (0..100)"""
    sketch = QuantileSketch(k=k).extend(values)
    if sketch.count == 0:
        return [None] * len(percentiles)
    return sketch._quantiles_from(sketch._weighted_items(), [p / 100 for p in percentiles])
