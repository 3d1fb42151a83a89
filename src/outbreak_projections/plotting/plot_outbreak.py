# src/outbreak_projections/plotting/plot_outbreak.py
from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
from matplotlib.collections import LineCollection

from ..cases.incidence import IncidenceSeries
from ..estimate.cori import RTimeSeries
from ..growth.convert import RSample
from ..growth.fit import GrowthFit, SplitGrowthFit
from ..simulate.batch_processing import ProjectionEnsemble

# ---------- helpers ----------


def save_figure(fig, save_path: Optional[str]):
    if save_path:
        out = Path(save_path)
        out.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(out, dpi=150)
    return fig


def _fit_line(ax, fit: GrowthFit, series: IncidenceSeries, color):
    if not fit.fitted:
        return
    seg = series.subset(fit.start, fit.end)
    x = seg.day_offsets(fit.origin)
    ax.plot(seg.dates, fit.predict(x), color=color, lw=2,
            label=f"r = {fit.slope:.3f}/day")

# ---------- plotting routines ----------


def plot_incidence(
    series: IncidenceSeries,
    fit: Optional[Union[GrowthFit, SplitGrowthFit]] = None,
    save_path: Optional[str] = None,
    figsize: Tuple[int, int] = (10, 5),
):
    """Bar chart of incidence (stacked by group when stratified) with optional fitted curves."""
    fig, ax = plt.subplots(figsize=figsize)
    width = 0.9 * series.interval

    if series.is_stratified:
        bottom = np.zeros(len(series))
        for j, g in enumerate(series.groups):
            ax.bar(series.dates, series.counts[:, j], width=width, bottom=bottom, align="edge", label=g)
            bottom += series.counts[:, j]
    else:
        ax.bar(series.dates, series.counts, width=width, align="edge", color="steelblue", alpha=0.8)

    if isinstance(fit, SplitGrowthFit):
        _fit_line(ax, fit.before, series, "darkorange")
        _fit_line(ax, fit.after, series, "firebrick")
        ax.axvline(fit.split, color="k", ls="--", lw=1)
    elif fit is not None:
        _fit_line(ax, fit, series, "darkorange")

    ax.set_xlabel("Date")
    ax.set_ylabel("Incidence")
    if series.is_stratified or fit is not None:
        ax.legend()
    fig.autofmt_xdate()
    fig.tight_layout()
    return save_figure(fig, save_path)


def plot_r_sample(sample: RSample, bins: int = 30, save_path: Optional[str] = None,
                  figsize: Tuple[int, int] = (7, 4)):
    fig, ax = plt.subplots(figsize=figsize)
    ax.hist(sample.draws, bins=bins, color="slategray", alpha=0.8)
    ax.axvline(sample.median, color="firebrick", lw=2, label=f"median {sample.median:.2f}")
    ax.axvline(1.0, color="k", ls=":", lw=1)
    ax.set_xlabel("R")
    ax.set_ylabel("Frequency")
    ax.legend()
    fig.tight_layout()
    return save_figure(fig, save_path)


def plot_r_timeseries(rts: RTimeSeries, save_path: Optional[str] = None,
                      figsize: Tuple[int, int] = (10, 4)):
    ends = [w.window_end for w in rts]
    fig, ax = plt.subplots(figsize=figsize)
    ax.fill_between(ends, [w.quantile_0025_r for w in rts], [w.quantile_0975_r for w in rts],
                    color="tab:blue", alpha=0.25, label="95% CrI")
    ax.plot(ends, [w.mean_r for w in rts], color="tab:blue", lw=2, label="mean R")
    ax.axhline(1.0, color="k", ls=":", lw=1)
    ax.set_xlabel(f"End of {rts.window_size}-day window")
    ax.set_ylabel("R")
    ax.legend()
    fig.autofmt_xdate()
    fig.tight_layout()
    return save_figure(fig, save_path)


def plot_projections(
    ensemble: ProjectionEnsemble,
    series: Optional[IncidenceSeries] = None,
    quantiles: Optional[Tuple[float, float]] = (0.10, 0.90),
    max_lines: int = 200,
    random_seed: Optional[int] = 42,
    save_path: Optional[str] = None,
    figsize: Tuple[int, int] = (10, 6),
):
    """
    Projected trajectories:
    - draws up to `max_lines` randomly chosen simulations with a LineCollection
    - overlays the per-day mean and a quantile ribbon over all simulations
    - shows the observed incidence when `series` is given
    """
    fig, ax = plt.subplots(figsize=figsize)
    days = np.arange(1, ensemble.n_days + 1)
    x = list(ensemble.dates) if ensemble.dates is not None else days

    rng = np.random.default_rng(random_seed)
    n_plot = min(max_lines, ensemble.n_sim)
    idx = rng.choice(ensemble.n_sim, size=n_plot, replace=False)

    if ensemble.dates is None:
        segs = [np.column_stack([days, ensemble.counts[:, i]]) for i in idx]
        ax.add_collection(LineCollection(segs, colors="gray", alpha=0.15, linewidths=0.8))
    else:
        for i in idx:
            ax.plot(x, ensemble.counts[:, i], color="gray", alpha=0.15, lw=0.8)

    if quantiles:
        lo, hi = ensemble.quantiles(list(quantiles))
        ax.fill_between(x, lo, hi, color="tab:orange", alpha=0.3,
                        label=f"{int(quantiles[0] * 100)}-{int(quantiles[1] * 100)}% range")
    ax.plot(x, ensemble.mean_by_day(), color="tab:red", lw=2, label="mean")

    if series is not None:
        if ensemble.dates is None:
            obs_x = np.arange(1 - len(series), 1)
        else:
            obs_x = list(series.dates)
        ax.plot(obs_x, series.totals, color="k", marker="o", ms=3, lw=1, label="observed")

    ax.autoscale_view()
    ax.set_xlabel("Date" if ensemble.dates is not None else "Day")
    ax.set_ylabel("Daily cases")
    ax.legend()
    fig.tight_layout()
    return save_figure(fig, save_path)
