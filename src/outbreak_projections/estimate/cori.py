# src/outbreak_projections/estimate/cori.py
"""
Time-varying reproduction number (Cori et al. 2013).

Incidence is modelled as I_t ~ Poisson(R_t * Lambda_t) with the total
infectiousness Lambda_t = sum_k p_k I_{t-k}. With a Gamma(a, b) prior on R
held constant over a window [t - tau + 1, t], the posterior is
    Gamma(a + sum I_s, 1 / (1/b + sum Lambda_s))      (shape, scale)
over the window. The first interval only seeds Lambda, so the first window
ends on the (tau + 1)-th interval.
"""

from dataclasses import asdict, dataclass
from datetime import date
from typing import Iterator, List, Optional
import logging

import numpy as np
import pandas as pd
from scipy.stats import gamma

from ..cases.incidence import IncidenceSeries
from ..errors import InsufficientHistoryError, InvalidParameterError
from ..simulate.calculate_serial_weights import (
    SerialInterval,
    UncertainSIConfig,
    sample_serial_intervals,
)

logger = logging.getLogger(__name__)

QUANTILES = (0.025, 0.5, 0.975)


@dataclass(frozen=True)
class RWindow:
    window_start: date
    window_end: date
    mean_r: float
    std_r: float
    median_r: float
    quantile_0025_r: float
    quantile_0975_r: float


@dataclass(frozen=True)
class RTimeSeries:
    windows: tuple
    window_size: int
    method: str

    def __len__(self):
        return len(self.windows)

    def __iter__(self) -> Iterator[RWindow]:
        return iter(self.windows)

    def __getitem__(self, i) -> RWindow:
        return self.windows[i]

    @property
    def mean_r(self) -> np.ndarray:
        return np.array([w.mean_r for w in self.windows])

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([asdict(w) for w in self.windows], columns=list(RWindow.__dataclass_fields__))


def total_infectiousness(incid, p) -> np.ndarray:
    """Lambda_t = sum_{k>=1} p_k I_{t-k}; p[0] is the (empty) lag-0 mass.

    Lambda_0 is 0.
    """
    incid = np.asarray(incid, dtype=float)
    n = incid.size
    lam = np.zeros(n)
    max_lag = len(p) - 1
    for t in range(1, n):
        k = min(t, max_lag)
        # p_1..p_k against I_{t-1}..I_{t-k}
        lam[t] = np.dot(p[1:k + 1], incid[t - 1::-1][:k])
    return lam


def window_bounds(n: int, window: int):
    """0-based (start, end) index pairs of every sliding window."""
    starts = np.arange(1, n - window + 1)
    return starts, starts + window - 1


def posterior_parameters(incid, p, window, mean_prior, std_prior):
    """Posterior (shape, scale) for every window."""
    a_prior = (mean_prior / std_prior) ** 2
    b_prior = std_prior ** 2 / mean_prior

    incid = np.asarray(incid, dtype=float)
    lam = total_infectiousness(incid, p)
    starts, ends = window_bounds(incid.size, window)

    cum_i = np.concatenate(([0.0], np.cumsum(incid)))
    cum_l = np.concatenate(([0.0], np.cumsum(lam)))
    sum_i = cum_i[ends + 1] - cum_i[starts]
    sum_l = cum_l[ends + 1] - cum_l[starts]

    shape = a_prior + sum_i
    scale = 1.0 / (1.0 / b_prior + sum_l)
    return shape, scale


def check_history(series: IncidenceSeries, window: int):
    if window < 1:
        raise InvalidParameterError("window must be >= 1")
    if len(series) < window + 1:
        raise InsufficientHistoryError(
            f"Need at least {window + 1} intervals for a window of {window}, got {len(series)}"
        )


def estimate_r(
    series: IncidenceSeries,
    si: Optional[SerialInterval] = None,
    uncertain: Optional[UncertainSIConfig] = None,
    window: int = 7,
    mean_prior: float = 5.0,
    std_prior: float = 5.0,
    rng=None,
) -> RTimeSeries:
    """Estimate R over sliding windows of `window` intervals.

    Exactly one of `si` (parametric serial interval) and `uncertain`
    (serial interval drawn from truncated normals) must be given.

    Raises:
        InsufficientHistoryError, InvalidParameterError
    """
    if (si is None) == (uncertain is None):
        raise InvalidParameterError("Give exactly one of si and uncertain")
    if mean_prior <= 0 or std_prior <= 0:
        raise InvalidParameterError("Prior mean and std must be > 0")
    if si is not None and si.interval != series.interval:
        raise InvalidParameterError(
            f"Series interval ({series.interval}) differs from serial interval ({si.interval})"
        )
    check_history(series, window)

    incid = series.totals
    if si is not None:
        return parametric_r(series, incid, si, window, mean_prior, std_prior)
    return uncertain_si_r(series, incid, uncertain, window, mean_prior, std_prior, rng)


def parametric_r(series, incid, si, window, mean_prior, std_prior) -> RTimeSeries:
    shape, scale = posterior_parameters(incid, si.pmf, window, mean_prior, std_prior)
    starts, ends = window_bounds(len(series), window)

    post = gamma(a=shape, scale=scale)
    q_lo, q_med, q_hi = (post.ppf(q) for q in QUANTILES)
    mean = shape * scale
    std = np.sqrt(shape) * scale

    windows = tuple(
        RWindow(series.dates[s], series.dates[e], float(m), float(sd), float(md), float(lo), float(hi))
        for s, e, m, sd, md, lo, hi in zip(starts, ends, mean, std, q_med, q_lo, q_hi)
    )
    logger.info("Estimated R over %d windows (parametric serial interval)", len(windows))
    return RTimeSeries(windows=windows, window_size=window, method="parametric_si")


def uncertain_si_r(series, incid, config, window, mean_prior, std_prior, rng) -> RTimeSeries:
    rng = np.random.default_rng(rng)
    sis = sample_serial_intervals(config, rng=rng, interval=series.interval)
    starts, ends = window_bounds(len(series), window)

    # (n_windows, n1 * n2) pooled draws
    draws: List[np.ndarray] = []
    for si in sis:
        shape, scale = posterior_parameters(incid, si.pmf, window, mean_prior, std_prior)
        draws.append(rng.gamma(shape[:, None], scale[:, None], size=(shape.size, config.n2)))
    pooled = np.concatenate(draws, axis=1)

    q_lo, q_med, q_hi = np.quantile(pooled, QUANTILES, axis=1)
    mean = pooled.mean(axis=1)
    std = pooled.std(axis=1, ddof=1) if pooled.shape[1] > 1 else np.zeros(len(starts))

    windows = tuple(
        RWindow(series.dates[s], series.dates[e], float(m), float(sd), float(md), float(lo), float(hi))
        for s, e, m, sd, md, lo, hi in zip(starts, ends, mean, std, q_med, q_lo, q_hi)
    )
    logger.info(
        "Estimated R over %d windows (%d serial intervals x %d draws)",
        len(windows), config.n1, config.n2,
    )
    return RTimeSeries(windows=windows, window_size=window, method="uncertain_si")


def flag_windows(ts: RTimeSeries) -> pd.DataFrame:
    """Table of windows with flags for 95% intervals entirely above or below 1."""
    df = ts.to_frame()
    df["above_one"] = df["quantile_0025_r"] > 1.0
    df["below_one"] = df["quantile_0975_r"] < 1.0
    return df
