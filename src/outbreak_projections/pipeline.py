# src/outbreak_projections/pipeline.py
"""
End-to-end analysis: reports -> incidence -> growth fit -> R -> projections.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Union
import logging
import pathlib

import pandas as pd

from .cases.expand import CaseReport, EventSequence, expand_cases, reports_from_frame
from .cases.incidence import IncidenceSeries, build_incidence
from .errors import DegenerateFitError
from .estimate.cori import RTimeSeries, estimate_r
from .growth.convert import RSample, sample_r
from .growth.fit import GrowthFit, SplitGrowthFit, fit_growth
from .simulate.batch_processing import (
    CumulativeEnsemble,
    ProjectionEnsemble,
    project,
    write_ensemble_csv,
)
from .simulate.calculate_serial_weights import (
    SerialInterval,
    UncertainSIConfig,
    make_serial_interval,
)

# Start logger
logger = logging.getLogger(__name__)

# COVID-19 serial interval (Nishiura et al. 2020), days
MEAN_SI_DAYS = 4.7
SD_SI_DAYS = 2.9


@dataclass
class AnalysisConfig:
    column: str = "new_cases"
    by_category: bool = False
    interval: int = 1
    split: Optional[date] = None
    mean_si: float = MEAN_SI_DAYS
    std_si: float = SD_SI_DAYS
    si_w: float = 0.0
    window: int = 7
    uncertain_si: Optional[UncertainSIConfig] = None
    n_sim: int = 1000
    n_days: int = 30
    seed: Optional[int] = None
    overdispersion: Optional[float] = None
    columns: Optional[Dict[str, str]] = None
    out_dir: Optional[str] = None
    make_plots: bool = False


@dataclass
class AnalysisResult:
    reports: List[CaseReport]
    events: EventSequence
    incidence: IncidenceSeries
    si: SerialInterval
    fit: Union[GrowthFit, SplitGrowthFit]
    r_sample: Optional[RSample] = None
    r_timeseries: Optional[RTimeSeries] = None
    projections: Optional[ProjectionEnsemble] = None
    cumulative: Optional[CumulativeEnsemble] = None
    outputs: Dict[str, pathlib.Path] = field(default_factory=dict)


def latest_fit(fit: Union[GrowthFit, SplitGrowthFit]) -> GrowthFit:
    """The segment that describes current growth."""
    return fit.after if isinstance(fit, SplitGrowthFit) else fit


def prepare_incidence(frame: pd.DataFrame, cfg: AnalysisConfig):
    reports = reports_from_frame(frame, columns=cfg.columns)
    events = expand_cases(reports, column=cfg.column, by_category=cfg.by_category)
    incidence = build_incidence(
        events,
        interval=cfg.interval,
        by_category=cfg.by_category,
        first_date=reports[0].date if reports else None,
        last_date=reports[-1].date if reports else None,
    )
    logger.info("Incidence: %d intervals, %d cases", len(incidence), incidence.total)
    return reports, events, incidence


def run_analysis(frame: pd.DataFrame, cfg: AnalysisConfig) -> AnalysisResult:
    """Run every stage on a decoded report table.

    The growth fit and R(t) are always computed. The R sample and the
    projections use the latest segment of the fit and are left as None when
    that segment could not be fit. Outputs are written to `cfg.out_dir` when
    it is set.
    """
    reports, events, incidence = prepare_incidence(frame, cfg)
    si = make_serial_interval(cfg.mean_si, cfg.std_si, interval=cfg.interval, w=cfg.si_w)

    fit = fit_growth(incidence, split=cfg.split)
    logger.info("%s", fit.summary())

    # one parent seed per stochastic stage
    seeds = [None, None, None] if cfg.seed is None else [cfg.seed, cfg.seed + 1, cfg.seed + 2]

    # R(t) does not depend on the growth fit
    r_ts = estimate_r(
        incidence,
        si=None if cfg.uncertain_si else si,
        uncertain=cfg.uncertain_si,
        window=cfg.window,
        rng=seeds[1],
    )
    result = AnalysisResult(
        reports=reports, events=events, incidence=incidence, si=si, fit=fit,
        r_timeseries=r_ts,
    )

    try:
        result.r_sample = sample_r(latest_fit(fit), si, n_sim=cfg.n_sim, rng=seeds[0])
    except DegenerateFitError as exc:
        logger.warning("Skipping R sample and projections: %s", exc)
    else:
        ensemble = project(
            incidence, result.r_sample, si,
            n_days=cfg.n_days, n_sim=cfg.n_sim, rng_seed=seeds[2],
            overdispersion=cfg.overdispersion,
        )
        result.projections = ensemble
        result.cumulative = ensemble.cumulate(offset=incidence.total)

    if cfg.out_dir:
        write_outputs(result, pathlib.Path(cfg.out_dir), make_plots=cfg.make_plots)
    return result


def write_outputs(result: AnalysisResult, out_dir: pathlib.Path, make_plots: bool = False):
    out_dir.mkdir(parents=True, exist_ok=True)
    outputs = result.outputs

    outputs["incidence"] = out_dir / "incidence.csv"
    result.incidence.to_frame().to_csv(outputs["incidence"], index=False)

    if result.r_sample is not None:
        outputs["r_sample"] = out_dir / "r_sample.csv"
        pd.DataFrame({"R": result.r_sample.draws}).to_csv(outputs["r_sample"], index=False)
    if result.r_timeseries is not None:
        outputs["r_timeseries"] = out_dir / "r_timeseries.csv"
        result.r_timeseries.to_frame().to_csv(outputs["r_timeseries"], index=False)
    if result.projections is not None:
        outputs["projections"] = write_ensemble_csv(
            result.projections, out_path=out_dir / "projections.csv", use_tempfile=False)
        outputs["projection_summary"] = out_dir / "projection_summary.csv"
        result.projections.summarize().to_csv(outputs["projection_summary"], index=False)

    if make_plots:
        # matplotlib is only imported when figures are requested
        from .plotting import plot_outbreak as plots

        outputs["incidence_png"] = out_dir / "incidence.png"
        plots.plot_incidence(result.incidence, result.fit, save_path=outputs["incidence_png"])
        if result.r_sample is not None:
            outputs["r_sample_png"] = out_dir / "r_sample.png"
            plots.plot_r_sample(result.r_sample, save_path=outputs["r_sample_png"])
        if result.r_timeseries is not None:
            outputs["r_timeseries_png"] = out_dir / "r_timeseries.png"
            plots.plot_r_timeseries(result.r_timeseries, save_path=outputs["r_timeseries_png"])
        if result.projections is not None:
            outputs["projections_png"] = out_dir / "projections.png"
            plots.plot_projections(result.projections, result.incidence.tail(30),
                                   save_path=outputs["projections_png"])

    for name, path in outputs.items():
        logger.info("Wrote %s -> %s", name, path)
    return outputs
