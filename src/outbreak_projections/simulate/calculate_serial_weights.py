# src/outbreak_projections/simulate/calculate_serial_weights.py
# Discrete serial interval distributions p_k from a continuous gamma g(u),
# used by the growth->R conversion, the Cori estimator and the projections.
from dataclasses import dataclass, field
from functools import lru_cache
import logging

import numpy as np
from numpy.polynomial.legendre import leggauss
from scipy.stats import gamma, truncnorm

from ..errors import InvalidParameterError

logger = logging.getLogger(__name__)

# Tail mass left beyond the last lag when max_lag is not given
TAIL_TOLERANCE = 1e-8
METHODS = ("cdf", "triangular")


def gamma_parameters(mean, std):
    """Return (shape, scale) of the gamma with the given mean and std."""
    if not np.isfinite(mean) or not np.isfinite(std) or mean <= 0 or std <= 0:
        raise InvalidParameterError(
            f"Serial interval mean and std must be > 0 (got mean={mean}, std={std})"
        )
    shape = (mean / std) ** 2
    scale = std ** 2 / mean
    return shape, scale


def default_max_lag(mean, std, interval=1.0, w=0.0, tol=TAIL_TOLERANCE):
    """First lag whose upper boundary leaves less than `tol` of the mass."""
    shape, scale = gamma_parameters(mean, std)
    upper = gamma.isf(tol, a=shape, scale=scale)
    return max(1, int(np.ceil(upper / interval - w)))


@lru_cache(maxsize=64)
def cdf_weights(mean, std, k_max, interval=1.0, w=0.0):
    """Weights for lags 1..k_max from differences of the gamma CDF.

    Lag k collects the mass in ((k - 1 + w) * interval, (k + w) * interval].
    Lag 1 also absorbs everything below its lower boundary, so that no
    probability sits at lag 0.
    Returns
        w (nparray(k_max,)): array with weights that sum to one
    """
    if k_max < 1:
        raise InvalidParameterError("k_max must be >= 1")
    shape, scale = gamma_parameters(mean, std)
    g = gamma(a=shape, scale=scale)

    bounds = (np.arange(1, k_max + 1) + w) * interval
    cdf = g.cdf(bounds)
    weights = np.diff(np.concatenate(([0.0], cdf)))

    total = float(weights.sum())
    if total <= 0:
        raise InvalidParameterError("Serial interval weights sum to zero")
    weights = weights / total
    # cached: callers share this array
    weights.setflags(write=False)
    return weights


@lru_cache(maxsize=64)
def triangular_weights(mean, std, k_max, nquad=32, step=1.0):
    """Triangular-kernel weights for lags 1..k_max.

    w_k = int_(k-1)^(k+1) [1 - |u - k|] g(u) du on a grid of width `step`,
    evaluated with Gauss-Legendre quadrature instead of quad() for speed.
    """
    if k_max < 1:
        raise InvalidParameterError("k_max must be >= 1")
    shape, scale = gamma_parameters(mean, std)
    g = gamma(a=shape, scale=scale)

    if k_max == 1:
        w = np.array([1.0], dtype=float)
        w.setflags(write=False)
        return w

    nodes, weights = leggauss(nquad)
    w = np.zeros(k_max)

    for k in range(1, k_max + 1):
        center = step * k
        left = step * (k - 1)
        right = step * (k + 1)
        half_width = 0.5 * (right - left)
        midpoint = 0.5 * (right + left)

        u = half_width * nodes + midpoint

        tri = 1.0 - np.abs(u - center) / step
        tri[tri < 0.0] = 0.0

        w[k - 1] = half_width * np.sum(weights * tri * g.pdf(u))

    total = float(w.sum())
    if total <= 0:
        raise InvalidParameterError("Serial interval weights sum to zero")
    w = w / total
    w.setflags(write=False)
    return w


@dataclass(frozen=True)
class SerialInterval:
    """Discretised serial interval.

    ``pmf`` is indexed by lag (in units of ``interval`` days) and always has
    ``pmf[0] == 0``.
    """
    mean: float
    std: float
    interval: float = 1.0
    w: float = 0.0
    method: str = "cdf"
    pmf: np.ndarray = field(default=None, repr=False, compare=False)

    @property
    def shape(self):
        return (self.mean / self.std) ** 2

    @property
    def scale(self):
        return self.std ** 2 / self.mean

    @property
    def cv(self):
        return self.std / self.mean

    @property
    def max_lag(self):
        return len(self.pmf) - 1

    @property
    def weights(self):
        """pmf over lags 1..max_lag (drops the empty lag 0)."""
        return self.pmf[1:]

    @property
    def lags(self):
        return np.arange(1, self.max_lag + 1)

    def pmf_at(self, lag):
        if lag < 0 or lag > self.max_lag:
            return 0.0
        return float(self.pmf[lag])


def make_serial_interval(
    mean,
    std=None,
    cv=None,
    interval=1.0,
    w=0.0,
    max_lag=None,
    method="cdf",
    nquad=32,
):
    """Build a SerialInterval from a mean and either a std or a coefficient of variation.

    Args:
        mean (float): mean serial interval in days
        std (float): standard deviation in days
        cv (float): coefficient of variation, used when std is None
        interval (float): width of one lag in days
        w (float): position of the bin boundaries inside an interval, in [0, 1]
        max_lag (int): largest lag kept; chosen from the gamma tail if None
        method (str): "cdf" or "triangular"
    Returns:
        SerialInterval
    Raises:
        InvalidParameterError
    """
    if std is None:
        if cv is None:
            raise InvalidParameterError("Either std or cv must be provided")
        if cv <= 0:
            raise InvalidParameterError("cv must be > 0")
        std = cv * mean
    gamma_parameters(mean, std)
    if interval <= 0:
        raise InvalidParameterError("interval must be > 0")
    if not 0.0 <= w <= 1.0:
        raise InvalidParameterError("w must lie in [0, 1]")
    if method not in METHODS:
        raise InvalidParameterError(f"Unknown discretisation method: {method}")

    if max_lag is None:
        max_lag = default_max_lag(mean, std, interval=interval, w=w)
    max_lag = int(max_lag)

    if method == "cdf":
        weights = cdf_weights(float(mean), float(std), max_lag, float(interval), float(w))
    else:
        weights = triangular_weights(float(mean), float(std), max_lag, nquad, float(interval))

    pmf = np.concatenate(([0.0], weights))
    pmf.setflags(write=False)
    logger.debug("Serial interval mean=%.3f std=%.3f -> %d lags", mean, std, max_lag)
    return SerialInterval(
        mean=float(mean), std=float(std), interval=float(interval), w=float(w),
        method=method, pmf=pmf,
    )


def draw_truncated_normal(mean, sd, lower, upper, size=None, rng=None):
    """Draw from N(mean, sd) truncated to [lower, upper]."""
    if lower > upper:
        raise InvalidParameterError(f"Lower bound {lower} is above upper bound {upper}")
    if sd < 0:
        raise InvalidParameterError("sd must be >= 0")
    if sd == 0:
        return np.clip(np.full(size if size is not None else (), float(mean)), lower, upper)
    a = (lower - mean) / sd
    b = (upper - mean) / sd
    return truncnorm.rvs(a, b, loc=mean, scale=sd, size=size, random_state=rng)


def sample_serial_intervals(config, rng=None, max_lag=None, interval=1.0, w=0.0):
    """Draw `config.n1` serial intervals for the uncertain-SI estimator.

    Means and stds come from truncated normals bounded by the config; pairs
    with std >= mean are redrawn.
    """
    config.validate()
    rng = np.random.default_rng(rng)

    if max_lag is None:
        max_lag = default_max_lag(config.max_mean_si, config.max_std_si, interval=interval, w=w)

    out = []
    attempts = 0
    while len(out) < config.n1:
        attempts += 1
        if attempts > 1000 * config.n1:
            raise InvalidParameterError("Could not draw serial intervals with std < mean")
        mean = float(draw_truncated_normal(
            config.mean_si, config.std_mean_si, config.min_mean_si, config.max_mean_si, rng=rng))
        std = float(draw_truncated_normal(
            config.std_si, config.std_std_si, config.min_std_si, config.max_std_si, rng=rng))
        if std >= mean or std <= 0:
            continue
        out.append(make_serial_interval(mean, std, interval=interval, w=w, max_lag=max_lag))
    return out


@dataclass(frozen=True)
class UncertainSIConfig:
    mean_si: float
    std_mean_si: float
    min_mean_si: float
    max_mean_si: float
    std_si: float
    std_std_si: float
    min_std_si: float
    max_std_si: float
    n1: int = 100
    n2: int = 100

    def validate(self):
        if self.min_mean_si > self.max_mean_si:
            raise InvalidParameterError("min_mean_si must be <= max_mean_si")
        if self.min_std_si > self.max_std_si:
            raise InvalidParameterError("min_std_si must be <= max_std_si")
        if self.max_mean_si <= 0 or self.max_std_si <= 0:
            raise InvalidParameterError("Upper serial interval bounds must be > 0")
        if self.std_mean_si < 0 or self.std_std_si < 0:
            raise InvalidParameterError("Prior standard deviations must be >= 0")
        if self.min_std_si >= self.max_mean_si:
            raise InvalidParameterError("std bounds leave no draw with std < mean")
        if self.n1 < 1 or self.n2 < 1:
            raise InvalidParameterError("n1 and n2 must be >= 1")
        return self
