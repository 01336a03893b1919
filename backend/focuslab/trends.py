"""Trend analysis over performance samples.

An ordinary least-squares line is fitted to ``(index, score)`` pairs. The
slope is per sample, so ``slope * 7`` is a weekly rate only when there is
about one sample per day; pass ``resample=True`` to ``learning_curve`` to
average samples per calendar day first.
"""

from collections import OrderedDict
from dataclasses import asdict, dataclass
from datetime import tzinfo
from typing import List, Optional, Sequence

from .clock import as_utc, local_day
from .models import PerformancePoint
from .utils.cancellation import CancelToken, check

STABLE_THRESHOLD = 0.5
MIN_CONFIDENCE = 30
MAX_CONFIDENCE = 95


@dataclass(frozen=True)
class LinearFit:
    slope: float
    intercept: float
    r_squared: float


@dataclass(frozen=True)
class TrendResult:
    trend: str
    improvement_rate: float
    confidence: int
    projected_performance: float

    def to_dict(self) -> dict:
        return asdict(self)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def linear_fit(values: Sequence[float]) -> Optional[LinearFit]:
    """Least-squares fit of ``values`` against their index; ``None`` below two values."""
    n = len(values)
    if n < 2:
        return None
    sum_x = sum_y = sum_xy = sum_xx = 0.0
    for x, y in enumerate(values):
        sum_x += x
        sum_y += y
        sum_xy += x * y
        sum_xx += x * x
    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_xx - sum_x * sum_x)
    intercept = (sum_y - slope * sum_x) / n
    mean_y = sum_y / n
    ss_res = ss_tot = 0.0
    for x, y in enumerate(values):
        ss_res += (y - (slope * x + intercept)) ** 2
        ss_tot += (y - mean_y) ** 2
    r_squared = 0.0 if ss_tot == 0 else 1 - ss_res / ss_tot
    return LinearFit(slope, intercept, r_squared)


def classify(rate: float, threshold: float = STABLE_THRESHOLD) -> str:
    if abs(rate) < threshold:
        return "stable"
    return "improving" if rate > 0 else "declining"


def analyze(scores: Sequence[float]) -> TrendResult:
    """Classify ``scores`` (oldest first) and project the next period.

    Confidence is R² as a percentage clamped to [30, 95]; with fewer than
    three samples it is fixed at 30, and with fewer than two there is no
    fit at all and confidence is 0.
    """
    if not scores:
        return TrendResult("stable", 0.0, 0, 0.0)
    if len(scores) == 1:
        return TrendResult("stable", 0.0, 0, round(_clamp(scores[0], 0, 100), 2))

    fit = linear_fit(scores)
    rate = fit.slope * 7
    if len(scores) < 3:
        confidence = MIN_CONFIDENCE
    else:
        confidence = round(_clamp(fit.r_squared * 100, MIN_CONFIDENCE, MAX_CONFIDENCE))
    improvement_rate = round(rate, 2)
    projected = _clamp(scores[-1] + improvement_rate * (confidence / 100), 0, 100)
    return TrendResult(classify(rate), improvement_rate, confidence, round(projected, 2))


def resample_daily(points: Sequence[PerformancePoint], tz: tzinfo) -> List[dict]:
    """Average points per calendar day; input must be sorted by time."""
    days: "OrderedDict" = OrderedDict()
    for p in points:
        day = local_day(p.recorded_at, tz)
        bucket = days.setdefault(day, {"scores": [], "duration": 0})
        bucket["scores"].append(p.score)
        bucket["duration"] += p.duration_minutes or 0
    return [
        {
            "date": day.isoformat(),
            "score": round(sum(b["scores"]) / len(b["scores"]), 2),
            "source": "daily_average",
            "duration_minutes": b["duration"],
        }
        for day, b in days.items()
    ]


def _point_dict(p: PerformancePoint) -> dict:
    return {
        "date": as_utc(p.recorded_at).isoformat(),
        "score": p.score,
        "source": getattr(p.source, "value", p.source),
        "duration_minutes": p.duration_minutes,
    }


def learning_curve(
    points: Sequence[PerformancePoint],
    window_size: int,
    tz: tzinfo,
    resample: bool = False,
    cancel: Optional[CancelToken] = None,
) -> dict:
    """Fit a trend to the most recent ``window_size`` samples."""
    ordered = sorted(points, key=lambda p: as_utc(p.recorded_at))
    check(cancel, "learning curve")
    samples = resample_daily(ordered, tz) if resample else [_point_dict(p) for p in ordered]
    if window_size > 0:
        samples = samples[-window_size:]
    check(cancel, "learning curve")
    result = analyze([s["score"] for s in samples])
    return {"points": samples, **result.to_dict()}
