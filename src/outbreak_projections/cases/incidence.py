# src/outbreak_projections/cases/incidence.py
"""
Bucket per-case event dates into a dense, zero-filled incidence series.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import List, Optional, Tuple
import logging

import numpy as np
import pandas as pd

from ..errors import InvalidCountError, InvalidParameterError
from .expand import CATEGORIES, EventSequence

logger = logging.getLogger(__name__)


def date_range(start: date, end: date, step: int = 1) -> List[date]:
    """Dates start, start+step, ... up to and including end."""
    n = (end - start).days // step
    return [start + timedelta(days=i * step) for i in range(n + 1)]


@dataclass(frozen=True)
class IncidenceSeries:
    """Case counts per interval.

    ``dates`` are the first day of each interval and are contiguous at
    ``interval`` days. ``counts`` has shape (n,) for a plain series, or
    (n, len(groups)) for a stratified one. The array is read-only.
    """
    dates: Tuple[date, ...]
    counts: np.ndarray = field(repr=False, compare=False)
    interval: int = 1
    groups: Optional[Tuple[str, ...]] = None

    def __post_init__(self):
        raw = np.asarray(self.counts)
        if raw.dtype.kind not in "iuf":
            raise InvalidCountError(f"Incidence counts must be numeric, got dtype {raw.dtype}")
        if raw.dtype.kind == "f" and not np.all(np.isfinite(raw) & (raw == np.floor(raw))):
            raise InvalidCountError("Incidence counts must be finite integers")
        counts = np.array(raw, dtype=int)
        expected = (len(self.dates),) if self.groups is None else (len(self.dates), len(self.groups))
        if counts.shape != expected:
            raise InvalidParameterError(
                f"counts has shape {counts.shape}, expected {expected}"
            )
        if counts.size and counts.min() < 0:
            raise InvalidCountError("Incidence counts must be non-negative")
        counts.setflags(write=False)
        object.__setattr__(self, "counts", counts)
        object.__setattr__(self, "dates", tuple(self.dates))

    def __len__(self):
        return len(self.dates)

    @property
    def start(self) -> Optional[date]:
        return self.dates[0] if self.dates else None

    @property
    def end(self) -> Optional[date]:
        return self.dates[-1] if self.dates else None

    @property
    def is_stratified(self):
        return self.groups is not None

    @property
    def totals(self) -> np.ndarray:
        """Counts summed over groups (a copy of `counts` when unstratified)."""
        if self.groups is None:
            return self.counts.copy()
        return self.counts.sum(axis=1)

    @property
    def total(self) -> int:
        return int(self.counts.sum())

    def day_offsets(self, origin: Optional[date] = None) -> np.ndarray:
        """Days between each interval start and `origin` (default: first date)."""
        origin = self.start if origin is None else origin
        return np.array([(d - origin).days for d in self.dates], dtype=float)

    def group(self, name: str) -> "IncidenceSeries":
        if self.groups is None or name not in self.groups:
            raise KeyError(f"No group {name!r} in incidence series")
        j = self.groups.index(name)
        return IncidenceSeries(self.dates, self.counts[:, j], self.interval, None)

    def subset(self, start: Optional[date] = None, end: Optional[date] = None) -> "IncidenceSeries":
        """Intervals whose start date lies in [start, end]; a new series."""
        keep = [
            i for i, d in enumerate(self.dates)
            if (start is None or d >= start) and (end is None or d <= end)
        ]
        counts = self.counts[keep] if keep else self.counts[:0]
        return IncidenceSeries(tuple(self.dates[i] for i in keep), counts, self.interval, self.groups)

    def tail(self, n: int) -> "IncidenceSeries":
        if n <= 0:
            return self.subset(end=date.min)
        return IncidenceSeries(self.dates[-n:], self.counts[-n:], self.interval, self.groups)

    def to_frame(self) -> pd.DataFrame:
        df = pd.DataFrame({"date": list(self.dates)})
        if self.groups is None:
            df["count"] = self.counts
        else:
            for j, g in enumerate(self.groups):
                df[g] = self.counts[:, j]
            df["count"] = self.totals
        return df


def build_incidence(
    events: EventSequence,
    interval: int = 1,
    by_category: bool = False,
    first_date: Optional[date] = None,
    last_date: Optional[date] = None,
) -> IncidenceSeries:
    """Count events per `interval`-day bin from the first to the last date.

    Bins start at `first_date` (default: earliest event) and every bin up to
    the one holding `last_date` (default: latest event) is present, with
    zero where nothing happened.
    """
    if int(interval) != interval or interval < 1:
        raise InvalidParameterError(f"interval must be a positive integer (got {interval})")
    interval = int(interval)
    if by_category and not events.is_stratified:
        raise InvalidParameterError("Event sequence has no categories to stratify by")

    groups = CATEGORIES if by_category else None

    if len(events) == 0 and (first_date is None or last_date is None):
        logger.warning("Building incidence from an empty event sequence")
        shape = (0,) if groups is None else (0, len(groups))
        return IncidenceSeries((), np.zeros(shape, dtype=int), interval, groups)

    first = min(events.dates) if first_date is None else first_date
    last = max(events.dates) if last_date is None else last_date
    if last < first:
        raise InvalidParameterError(f"last_date {last} is before first_date {first}")

    bin_dates = date_range(first, last, interval)
    offsets = np.array([(d - first).days for d in events.dates], dtype=int)
    bins = offsets // interval
    if offsets.size and (offsets.min() < 0 or bins.max() >= len(bin_dates)):
        raise InvalidParameterError("Events fall outside the requested date range")

    if groups is None:
        counts = np.bincount(bins, minlength=len(bin_dates))
    else:
        counts = np.zeros((len(bin_dates), len(groups)), dtype=int)
        cat_index = np.array([groups.index(c) for c in events.categories], dtype=int)
        np.add.at(counts, (bins, cat_index), 1)

    logger.debug("Incidence: %d events into %d bins of %d day(s)", len(events), len(bin_dates), interval)
    return IncidenceSeries(tuple(bin_dates), counts, interval, groups)


def incidence_from_counts(dates, counts, interval: int = 1) -> IncidenceSeries:
    """Build a series straight from dense counts (dates must be contiguous)."""
    dates = tuple(dates)
    for prev, cur in zip(dates, dates[1:]):
        if (cur - prev).days != interval:
            raise InvalidParameterError(f"Dates are not contiguous at {interval} day(s): {prev}, {cur}")
    return IncidenceSeries(dates, np.asarray(counts), interval, None)
