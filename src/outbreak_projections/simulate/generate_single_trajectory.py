# src/outbreak_projections/simulate/generate_single_trajectory.py
# One branching-process path continuing an observed incidence tail.
#
# For each future day d:
#   lambda_d = R_d * sum_{k=1}^{K} w_k I_{d-k}
# where I comes from the seed tail for days before the horizon and from this
# trajectory's own draws afterwards. I_d ~ Poisson(lambda_d), or negative
# binomial with dispersion k when overdispersion is set.

import numpy as np
from numpy.random import default_rng

from ..errors import InvalidParameterError


def draw_cases(lam, rng, overdispersion=None):
    """Realised count for an expected value `lam`."""
    if lam <= 0.0:
        return 0
    if overdispersion is None:
        return int(rng.poisson(lam))
    # mean lam, variance lam + lam^2 / k
    k = float(overdispersion)
    return int(rng.negative_binomial(k, k / (k + lam)))


def r_for_day(R, day, time_change):
    """R in force on future day `day` (0-based) given the change points."""
    if time_change is None:
        return R
    phase = int(np.searchsorted(time_change, day, side="right"))
    return R[phase]


def simulate_trajectory(
    w,
    seed_counts,
    n_days,
    R,
    rng=None,
    overdispersion=None,
    time_change=None,
):
    """Simulate a single trajectory with the renewal method.

    Args:
        w (array): serial interval weights for lags 1..K
        seed_counts (array): observed counts, oldest first
        n_days (int): number of future days to simulate
        R (float or sequence): reproduction number, or one per phase when
            time_change is given
        rng: numpy Generator
        overdispersion (float): negative binomial dispersion k, Poisson if None
        time_change (sequence): sorted day offsets (0-based) where R changes
    Returns:
        np.ndarray shape (n_days,), daily counts
    """
    if n_days < 1:
        raise InvalidParameterError("n_days must be >= 1")

    w_arr = np.asarray(w, dtype=float)
    if w_arr.ndim != 1:
        raise InvalidParameterError("w is not a 1D sequence of weights")
    k_support = w_arr.size

    if rng is None:
        rng = default_rng()

    seed = np.asarray(seed_counts, dtype=int)
    history = np.zeros(k_support + n_days, dtype=int)
    # keep the last k_support seed days, zero-padded on the left
    tail = seed[-k_support:]
    history[k_support - tail.size:k_support] = tail

    # weights reversed so they line up with I_{d-K}..I_{d-1}
    w_rev = w_arr[::-1]

    trajectory = np.zeros(n_days, dtype=int)
    for d in range(n_days):
        t = k_support + d
        lam_base = float(np.dot(w_rev, history[t - k_support:t]))
        lam = float(r_for_day(R, d, time_change)) * lam_base
        new_cases = draw_cases(lam, rng, overdispersion)
        history[t] = new_cases
        trajectory[d] = new_cases

    return trajectory
