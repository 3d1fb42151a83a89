#
# **batch_processing.py**
#
# Purpose: run `simulate_trajectory` once per simulation to build an ensemble
# of future daily counts (days x simulations), derive cumulative counts and
# per-day summaries, and optionally write the ensemble to a .csv with headers
# sim_id, R_draw, day_1, ..., day_n, cumulative_cases.
#

import csv
import logging
import tempfile
from dataclasses import dataclass, field
from datetime import date, timedelta
from pathlib import Path
from typing import Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from numpy.random import SeedSequence, default_rng

from ..cases.incidence import IncidenceSeries
from ..errors import InvalidParameterError
from .calculate_serial_weights import SerialInterval
from .generate_single_trajectory import simulate_trajectory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectionEnsemble:
    """Simulated daily counts, shape (n_days, n_sim)."""
    counts: np.ndarray = field(repr=False)
    dates: Optional[Tuple[date, ...]] = None
    r_draws: Optional[np.ndarray] = field(default=None, repr=False)

    def __post_init__(self):
        counts = np.array(self.counts, dtype=int)
        if counts.ndim != 2:
            raise InvalidParameterError("counts must be a (n_days, n_sim) array")
        counts.setflags(write=False)
        object.__setattr__(self, "counts", counts)

    @property
    def n_days(self) -> int:
        return self.counts.shape[0]

    @property
    def n_sim(self) -> int:
        return self.counts.shape[1]

    def mean_by_day(self) -> np.ndarray:
        return self.counts.mean(axis=1)

    def quantiles(self, q) -> np.ndarray:
        """Per-day quantiles across simulations; shape (len(q), n_days)."""
        return np.quantile(self.counts, q, axis=1)

    def summarize(self, quantiles: Sequence[float] = (0.025, 0.5, 0.975)) -> pd.DataFrame:
        df = pd.DataFrame({"day": np.arange(1, self.n_days + 1)})
        if self.dates is not None:
            df["date"] = list(self.dates)
        df["mean"] = self.mean_by_day()
        for q, values in zip(quantiles, self.quantiles(list(quantiles))):
            df[f"q{q:g}"] = values
        return df

    def to_frame(self) -> pd.DataFrame:
        """One row per day, one column per simulation."""
        index = pd.Index(list(self.dates), name="date") if self.dates is not None else None
        cols = [f"sim_{i}" for i in range(1, self.n_sim + 1)]
        return pd.DataFrame(self.counts, index=index, columns=cols)

    def cumulate(self, offset: int = 0) -> "CumulativeEnsemble":
        """Running totals along the day axis, optionally starting from `offset` cases."""
        return CumulativeEnsemble(
            counts=np.cumsum(self.counts, axis=0) + int(offset),
            dates=self.dates,
            r_draws=self.r_draws,
        )


class CumulativeEnsemble(ProjectionEnsemble):
    """Running sums of a ProjectionEnsemble along the day axis."""


def resolve_seed(seed) -> Tuple[np.ndarray, Optional[date], int]:
    """Return (counts, last date, interval) for an IncidenceSeries or plain counts."""
    if isinstance(seed, IncidenceSeries):
        return seed.totals, seed.end, seed.interval
    return np.asarray(seed, dtype=int), None, 1


def check_r(R, time_change):
    """Normalise R into a list of phases, each a float or a 1D array of draws."""
    phases = list(R) if time_change is not None else [R]
    if time_change is not None:
        tc = np.asarray(time_change, dtype=int)
        if tc.ndim != 1 or np.any(tc < 1) or np.any(np.diff(tc) <= 0):
            raise InvalidParameterError("time_change must be increasing day offsets >= 1")
        if len(phases) != tc.size + 1:
            raise InvalidParameterError(
                f"Need {tc.size + 1} R values for {tc.size} change point(s), got {len(phases)}"
            )

    out = []
    for phase in phases:
        values = getattr(phase, "draws", phase)
        arr = np.asarray(values, dtype=float)
        if arr.size == 0:
            raise InvalidParameterError("R sample is empty")
        if np.any(~np.isfinite(arr)) or np.any(arr < 0):
            raise InvalidParameterError("R must be finite and >= 0")
        out.append(float(arr) if arr.ndim == 0 else arr.ravel())
    return out


def project(
    seed,
    R,
    si: SerialInterval,
    n_days: int = 14,
    n_sim: int = 1000,
    rng_seed=None,
    overdispersion: Optional[float] = None,
    time_change: Optional[Sequence[int]] = None,
) -> ProjectionEnsemble:
    """Project future daily counts with a branching process.

    Args:
        seed: IncidenceSeries or sequence of recent counts (oldest first)
        R: scalar, RSample / array of draws sampled once per simulation, or a
            list of those, one per phase, when time_change is given
        si: serial interval; its weights give the infectiousness profile
        n_days: horizon
        n_sim: number of simulations
        rng_seed: int or SeedSequence; simulation i always uses child stream i
        overdispersion: negative binomial dispersion k (Poisson if None)
        time_change: day offsets (1-based boundaries) where R switches phase
    Returns:
        ProjectionEnsemble
    Raises:
        InvalidParameterError
    """
    if n_days < 1 or n_sim < 1:
        raise InvalidParameterError("n_days and n_sim must be >= 1")
    if overdispersion is not None and overdispersion <= 0:
        raise InvalidParameterError("overdispersion must be > 0")

    counts, last_date, interval = resolve_seed(seed)
    if counts.size == 0:
        raise InvalidParameterError("Seed incidence is empty")
    if interval != si.interval:
        raise InvalidParameterError(
            f"Seed interval ({interval}) differs from serial interval ({si.interval})"
        )
    if counts.size < si.max_lag:
        logger.warning(
            "Seed tail has %d intervals, shorter than the serial interval support (%d); padding with zeros",
            counts.size, si.max_lag,
        )

    phases = check_r(R, time_change)
    tc = None if time_change is None else np.asarray(time_change, dtype=int)

    ss = rng_seed if isinstance(rng_seed, SeedSequence) else SeedSequence(rng_seed)
    children = ss.spawn(n_sim)

    trajectories = np.zeros((n_days, n_sim), dtype=int)
    r_draws = np.zeros((n_sim, len(phases)))

    for sim_id in range(n_sim):
        rng = default_rng(children[sim_id])
        # draw this simulation's R for each phase from its own stream
        r_sim = [p if isinstance(p, float) else float(rng.choice(p)) for p in phases]
        r_draws[sim_id] = r_sim

        trajectories[:, sim_id] = simulate_trajectory(
            w=si.weights,
            seed_counts=counts,
            n_days=n_days,
            R=r_sim if tc is not None else r_sim[0],
            rng=rng,
            overdispersion=overdispersion,
            time_change=tc,
        )

    dates = None
    if last_date is not None:
        dates = tuple(last_date + timedelta(days=interval * (i + 1)) for i in range(n_days))

    logger.info("Projected %d simulations over %d days", n_sim, n_days)
    return ProjectionEnsemble(
        counts=trajectories,
        dates=dates,
        r_draws=r_draws[:, 0] if len(phases) == 1 else r_draws,
    )


def default_csv_path(use_tempfile=True):
    """Define the filepath of csv"""
    if use_tempfile:
        tf = tempfile.NamedTemporaryFile(prefix="projected_cases_", suffix=".csv")
        p = Path(tf.name)
        tf.close()
        return p
    return Path("projected_cases.csv")


def write_ensemble_csv(ensemble: ProjectionEnsemble, out_path=None, use_tempfile=True):
    """Write one row per simulation: sim_id, R_draw, day_1..day_n, cumulative_cases."""
    if out_path is None:
        csv_path = default_csv_path(use_tempfile=use_tempfile)
    else:
        csv_path = Path(out_path)
    csv_path.parent.mkdir(parents=True, exist_ok=True)

    header = ["sim_id", "R_draw"] + [f"day_{d}" for d in range(1, ensemble.n_days + 1)] + [
        "cumulative_cases",
    ]
    r_draws = ensemble.r_draws
    if r_draws is not None and np.ndim(r_draws) > 1:
        # first phase only
        r_draws = r_draws[:, 0]

    with csv_path.open("w", newline="") as fh:
        writer = csv.writer(fh)
        writer.writerow(header)
        for i in range(ensemble.n_sim):
            traj = ensemble.counts[:, i]
            r_val = float(r_draws[i]) if r_draws is not None else float("nan")
            writer.writerow([i + 1, r_val, *traj.tolist(), int(traj.sum())])

    logger.info("Ensemble written to %s", csv_path)
    return csv_path
