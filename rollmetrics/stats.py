"""
Streaming statistics: Welford running mean/variance and min/max ranges.
"""
from __future__ import annotations

import math
from dataclasses import dataclass


@dataclass
class RunningStat:
    mean: float = 0.0
    m2: float = 0.0
    count: int = 0

    @property
    def variance(self) -> float:
        return variance(self)

    def to_dict(self) -> dict[str, float]:
        return {"mean": self.mean, "m2": self.m2, "count": self.count}


@dataclass
class RangeStat(RunningStat):
    """
    RunningStat plus observed min/max. Starts at (+inf, -inf) and narrows
    monotonically. Used for left/right symmetry deltas and joint angles (deg).
    """

    min: float = math.inf
    max: float = -math.inf

    def push(self, value: float) -> None:
        self.min = min(self.min, value)
        self.max = max(self.max, value)
        u = update_running(self, value)
        self.mean, self.m2, self.count = u.mean, u.m2, u.count

    def to_dict(self) -> dict[str, float | None]:
        out = super().to_dict()
        # JSON has no infinities; an empty range serializes as nulls.
        out["min"] = self.min if self.count else None
        out["max"] = self.max if self.count else None
        return out


def update_running(s: RunningStat, value: float) -> RunningStat:
    """One Welford step. Returns a new RunningStat; `s` is not modified."""
    count = s.count + 1
    delta = value - s.mean
    mean = s.mean + delta / count
    m2 = s.m2 + delta * (value - mean)
    return RunningStat(mean=mean, m2=m2, count=count)


def variance(s: RunningStat) -> float:
    """Sample variance, or 0 with fewer than two values."""
    if s.count < 2:
        return 0.0
    return s.m2 / (s.count - 1)


def finalize_variance(s: RunningStat) -> dict[str, float]:
    var = variance(s)
    return {"mean": s.mean, "variance": var, "stdev": math.sqrt(var)}


def round_half_up(x: float) -> int:
    """Round to int with .5 going up (2.5 -> 3), unlike round()'s half-to-even."""
    return int(math.floor(x + 0.5))


def round_to(x: float, ndigits: int) -> float:
    """Fixed-decimal rounding for report values (half away from zero)."""
    q = 10 ** ndigits
    return math.copysign(math.floor(abs(x) * q + 0.5) / q, x)
