# src/outbreak_projections/growth/convert.py
"""
Reproduction number from a growth rate and a discrete serial interval.

For a renewal process growing as exp(r t) the Euler-Lotka relation gives
    1 / R = sum_k p_k exp(-r k dt)
with p_k the serial interval pmf on lags of dt days (Wallinga & Lipsitch).
"""

from dataclasses import dataclass, field
from typing import Dict, Sequence
import logging

import numpy as np
from scipy.stats import t as student_t

from ..errors import DegenerateFitError, InvalidParameterError
from ..simulate.calculate_serial_weights import SerialInterval
from .fit import GrowthFit, SplitGrowthFit

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RSample:
    """Draws from the sampling distribution of a reproduction number."""
    draws: np.ndarray = field(repr=False)

    def __post_init__(self):
        draws = np.array(self.draws, dtype=float).ravel()
        draws.setflags(write=False)
        object.__setattr__(self, "draws", draws)

    def __len__(self):
        return self.draws.size

    def __iter__(self):
        return iter(self.draws.tolist())

    @property
    def mean(self) -> float:
        return float(np.mean(self.draws))

    @property
    def median(self) -> float:
        return float(np.median(self.draws))

    @property
    def std(self) -> float:
        return float(np.std(self.draws, ddof=1)) if self.draws.size > 1 else 0.0

    def quantile(self, q):
        return np.quantile(self.draws, q)

    def summary(self, quantiles: Sequence[float] = (0.025, 0.5, 0.975)) -> Dict[str, float]:
        out = {"mean": self.mean, "median": self.median, "std": self.std}
        for q in quantiles:
            out[f"q{q:g}"] = float(self.quantile(q))
        return out

    def histogram(self, bins=30):
        """(counts, bin_edges) as returned by numpy.histogram."""
        return np.histogram(self.draws, bins=bins)


def growth_rate_to_r(r, si: SerialInterval):
    """Convert growth rate(s) per day into R; vectorised over `r`.

    Written as sum(p) / sum(p exp(-r k)) so that r = 0 gives exactly 1.
    """
    r = np.asarray(r, dtype=float)
    p = si.weights
    lags_days = si.lags * si.interval
    denom = np.sum(np.exp(-np.multiply.outer(r, lags_days)) * p, axis=-1)
    out = p.sum() / denom
    return float(out) if out.ndim == 0 else out


def sample_r(
    fit: GrowthFit,
    si: SerialInterval,
    n_sim: int = 1000,
    rng=None,
    distribution: str = "t",
) -> RSample:
    """Monte Carlo R draws propagating the uncertainty of the fitted slope.

    Args:
        fit: a successful GrowthFit (one side of a split fit)
        si: serial interval
        n_sim: number of draws
        rng: numpy Generator or seed
        distribution: "t" (Student-t with n - 2 dof) or "normal"
    Raises:
        DegenerateFitError, InvalidParameterError
    """
    if isinstance(fit, SplitGrowthFit):
        raise InvalidParameterError("Pass fit.before or fit.after, not the split fit itself")
    if fit is None or not fit.fitted or not np.isfinite(fit.slope):
        reason = getattr(fit, "failure", None) or "no fit"
        raise DegenerateFitError(f"Cannot convert a failed growth fit to R ({reason})")
    if n_sim < 1:
        raise InvalidParameterError("n_sim must be >= 1")
    if distribution not in ("t", "normal"):
        raise InvalidParameterError(f"Unknown slope distribution: {distribution}")

    rng = np.random.default_rng(rng)
    se = fit.slope_std_error if np.isfinite(fit.slope_std_error) else 0.0

    if distribution == "t" and fit.dof >= 1:
        noise = student_t.rvs(fit.dof, size=n_sim, random_state=rng)
    else:
        noise = rng.standard_normal(n_sim)
    r_draws = fit.slope + se * noise

    sample = RSample(growth_rate_to_r(r_draws, si))
    logger.info("R from r=%.4f: median %.3f over %d draws", fit.slope, sample.median, n_sim)
    return sample
