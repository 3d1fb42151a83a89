# src/outbreak_projections/growth/fit.py
"""
Log-linear growth fits on an incidence series.

log(count) is regressed on the day offset from the first date of the series,
using only the intervals with a non-zero count. A split date cuts the series
into two segments, [start, split) and [split, end], fitted independently.
"""

# Store type annotations as strings instead of evaluating them immediately.
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date
from typing import Optional, Tuple, Union

import numpy as np
from scipy.stats import linregress, t as student_t

from ..cases.incidence import IncidenceSeries
from ..errors import InsufficientDataError, InvalidParameterError, InvalidSplitError

logger = logging.getLogger(__name__)

LOG2 = math.log(2.0)


@dataclass(frozen=True)
class GrowthFit:
    intercept: float
    slope: float
    slope_std_error: float
    intercept_std_error: float
    r_squared: float
    n_observations_used: int
    start: Optional[date] = None
    end: Optional[date] = None
    origin: Optional[date] = None
    failure: Optional[str] = None

    @classmethod
    def failed(cls, reason, start=None, end=None, origin=None) -> "GrowthFit":
        nan = float("nan")
        return cls(nan, nan, nan, nan, nan, 0, start, end, origin, reason)

    @property
    def fitted(self) -> bool:
        return self.failure is None

    @property
    def growth_rate(self) -> float:
        return self.slope

    @property
    def dof(self) -> int:
        return self.n_observations_used - 2

    @property
    def doubling_time(self) -> Optional[float]:
        if not self.fitted or not self.slope > 0:
            return None
        return LOG2 / self.slope

    @property
    def halving_time(self) -> Optional[float]:
        if not self.fitted or not self.slope < 0:
            return None
        return LOG2 / -self.slope

    def confint(self, level: float = 0.95) -> Tuple[float, float]:
        """Confidence interval of the growth rate (Student-t, n - 2 dof)."""
        if not self.fitted:
            return (float("nan"), float("nan"))
        if self.dof < 1 or self.slope_std_error == 0:
            return (self.slope, self.slope)
        q = student_t.ppf(0.5 + level / 2.0, self.dof)
        return (self.slope - q * self.slope_std_error, self.slope + q * self.slope_std_error)

    def doubling_time_confint(self, level: float = 0.95) -> Optional[Tuple[float, float]]:
        """Doubling (or halving) time bounds; infinite where the rate CI crosses 0."""
        if self.doubling_time is None and self.halving_time is None:
            return None
        lo, hi = self.confint(level)
        sign = 1.0 if self.slope > 0 else -1.0
        bounds = sorted(LOG2 / (sign * r) if sign * r > 0 else math.inf for r in (lo, hi))
        return (bounds[0], bounds[1])

    def predict(self, offsets) -> np.ndarray:
        """Fitted counts exp(intercept + slope * offset)."""
        return np.exp(self.intercept + self.slope * np.asarray(offsets, dtype=float))

    def summary(self) -> str:
        if not self.fitted:
            return f"growth fit {self.start} to {self.end}: failed ({self.failure})"
        lines = [
            f"growth fit {self.start} to {self.end} ({self.n_observations_used} points)",
            f"  growth rate r = {self.slope:.4f} /day (se {self.slope_std_error:.4f})",
            f"  R^2 = {self.r_squared:.3f}",
        ]
        if self.doubling_time is not None:
            lines.append(f"  doubling time = {self.doubling_time:.2f} days")
        elif self.halving_time is not None:
            lines.append(f"  halving time = {self.halving_time:.2f} days")
        return "\n".join(lines)


@dataclass(frozen=True)
class SplitGrowthFit:
    before: GrowthFit
    after: GrowthFit
    split: date

    @property
    def n_observations_used(self) -> int:
        return self.before.n_observations_used + self.after.n_observations_used

    def summary(self) -> str:
        return f"split at {self.split}\nbefore: {self.before.summary()}\nafter: {self.after.summary()}"


def ols(x, y):
    """Ordinary least squares of y on x.

    Returns (intercept, slope, slope_se, intercept_se, r_squared).
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if x.size < 2:
        raise InsufficientDataError(f"Need at least 2 points to fit a line, got {x.size}")
    if x.size == 2:
        # linregress divides by n - 2 for the standard errors
        slope = (y[1] - y[0]) / (x[1] - x[0])
        return y[0] - slope * x[0], slope, 0.0, 0.0, 1.0
    res = linregress(x, y)
    r_squared = res.rvalue ** 2 if np.isfinite(res.rvalue) else 1.0
    return float(res.intercept), float(res.slope), float(res.stderr), float(res.intercept_stderr), float(r_squared)


def fit_segment(series: IncidenceSeries, origin: Optional[date] = None) -> GrowthFit:
    """Fit log(count) ~ day offset over every non-zero interval of `series`.

    Args:
        series: incidence series (stratified series use their totals)
        origin: date of day offset 0; defaults to the first date of `series`
    Raises:
        InsufficientDataError
    """
    counts = series.totals
    nonzero = counts > 0
    n = int(nonzero.sum())
    if n < 2:
        raise InsufficientDataError(
            f"Segment {series.start} to {series.end} has {n} non-zero interval(s); at least 2 are needed"
        )

    origin = series.start if origin is None else origin
    x = series.day_offsets(origin)[nonzero]
    y = np.log(counts[nonzero])
    intercept, slope, se, ise, r2 = ols(x, y)

    logger.debug("Fitted %s..%s: r=%.4f se=%.4f n=%d", series.start, series.end, slope, se, n)
    return GrowthFit(
        intercept=intercept,
        slope=slope,
        slope_std_error=se,
        intercept_std_error=ise,
        r_squared=r2,
        n_observations_used=n,
        start=series.start,
        end=series.end,
        origin=origin,
    )


def fit_split(series: IncidenceSeries, split: date) -> SplitGrowthFit:
    """Fit [start, split) and [split, end] separately.

    A side without enough data is kept as a failed GrowthFit so that the
    other side is still usable.
    """
    if len(series) == 0 or split < series.start or split > series.end:
        raise InvalidSplitError(f"Split date {split} is outside {series.start} to {series.end}")

    before = series.subset(end=date.fromordinal(split.toordinal() - 1))
    after = series.subset(start=split)

    fits = []
    for label, segment in (("before", before), ("after", after)):
        try:
            fits.append(fit_segment(segment))
        except InsufficientDataError as exc:
            logger.warning("Could not fit the %s-split segment: %s", label, exc)
            fits.append(GrowthFit.failed(str(exc), segment.start, segment.end, segment.start))

    return SplitGrowthFit(before=fits[0], after=fits[1], split=split)


def fit_growth(series: IncidenceSeries, split: Optional[date] = None) -> Union[GrowthFit, SplitGrowthFit]:
    """Single fit when `split` is None, two independent fits otherwise."""
    if split is None:
        return fit_segment(series)
    return fit_split(series, split)


def find_best_split(series: IncidenceSeries, min_points: int = 3) -> SplitGrowthFit:
    """Try every split date and keep the one with the best mean R^2.

    Only splits leaving at least `min_points` non-zero intervals on each
    side are considered.
    """
    if min_points < 2:
        raise InvalidParameterError("min_points must be >= 2")

    counts = series.totals
    best = None
    best_score = -np.inf
    for i, candidate in enumerate(series.dates[1:], start=1):
        if (counts[:i] > 0).sum() < min_points or (counts[i:] > 0).sum() < min_points:
            continue
        fit = fit_split(series, candidate)
        score = 0.5 * (fit.before.r_squared + fit.after.r_squared)
        if score > best_score:
            best, best_score = fit, score

    if best is None:
        raise InsufficientDataError(
            f"No split leaves {min_points} non-zero intervals on both sides"
        )
    logger.info("Best split at %s (mean R^2 %.3f)", best.split, best_score)
    return best
