#!/usr/bin/env python3
# src/outbreak_projections/runner.py: command line entry point
#
#   python -m outbreak_projections.runner fit data/cases.csv --split 2020-03-10
#   python -m outbreak_projections.runner rt data/cases.csv --window 7
#   python -m outbreak_projections.runner project data/cases.csv --n-sim 1000 --n-days 30
#   python -m outbreak_projections.runner all data/cases.csv --out-dir results --plots

import argparse
import logging
import re
import time
from datetime import date
from pathlib import Path
from typing import List, Optional

import pandas as pd

from . import pipeline
from .cases.expand import ITALY_COLUMNS
from .estimate.cori import estimate_r, flag_windows
from .growth.convert import sample_r
from .growth.fit import fit_growth
from .simulate.batch_processing import project, write_ensemble_csv
from .simulate.calculate_serial_weights import UncertainSIConfig, make_serial_interval

logger = logging.getLogger(__name__)


# Parser for lists like 0.5,1.2
def parse_float_list(s: Optional[str]) -> List[float]:
    if not s:
        return []
    return [float(x) for x in re.split(r"[,\s;]+", s.strip()) if x]


def parse_date(s: Optional[str]) -> Optional[date]:
    if not s:
        return None
    return date.fromisoformat(s)


def add_common(p):
    p.add_argument("csv", metavar="PATH",
                   help="Decoded daily report table (CSV)")
    p.add_argument("--italy", action="store_true",
                   help="Input uses the Italian Civil Protection column names")
    p.add_argument("--column", default="new_cases", choices=["new_cases", "total_active"],
                   help="Count column to expand (default: new_cases)")
    p.add_argument("--interval", type=int, default=1, metavar="DAYS",
                   help="Incidence interval in days (default: 1)")
    p.add_argument("--mean-si", type=float, default=pipeline.MEAN_SI_DAYS, metavar="DAYS",
                   help=f"Serial interval mean (default: {pipeline.MEAN_SI_DAYS})")
    p.add_argument("--std-si", type=float, default=pipeline.SD_SI_DAYS, metavar="DAYS",
                   help=f"Serial interval std (default: {pipeline.SD_SI_DAYS})")
    p.add_argument("--seed", type=int, default=42, metavar="SEED",
                   help="RNG seed for reproducibility (default: 42)")
    p.add_argument("--out", default=None, metavar="PATH",
                   help="Output CSV path (printed to stdout if omitted)")


def config_from_args(args) -> pipeline.AnalysisConfig:
    return pipeline.AnalysisConfig(
        column=args.column,
        interval=args.interval,
        split=parse_date(getattr(args, "split", None)),
        mean_si=args.mean_si,
        std_si=args.std_si,
        window=getattr(args, "window", 7),
        uncertain_si=uncertain_config(getattr(args, "uncertain", None), args.mean_si, args.std_si),
        n_sim=getattr(args, "n_sim", 1000),
        n_days=getattr(args, "n_days", 30),
        seed=args.seed,
        overdispersion=getattr(args, "overdispersion", None),
        columns=ITALY_COLUMNS if args.italy else None,
        out_dir=getattr(args, "out_dir", None),
        make_plots=getattr(args, "plots", False),
    )


def uncertain_config(s: Optional[str], mean_si: float, std_si: float) -> Optional[UncertainSIConfig]:
    """UncertainSIConfig from "std_mean,min_mean,max_mean,std_std,min_std,max_std,n1,n2"."""
    if not s:
        return None
    vals = parse_float_list(s)
    if len(vals) != 8:
        raise ValueError("--uncertain needs 8 comma separated values")
    return UncertainSIConfig(
        mean_si=mean_si, std_mean_si=vals[0], min_mean_si=vals[1], max_mean_si=vals[2],
        std_si=std_si, std_std_si=vals[3], min_std_si=vals[4], max_std_si=vals[5],
        n1=int(vals[6]), n2=int(vals[7]),
    )


def emit(df: pd.DataFrame, out: Optional[str]):
    if out:
        Path(out).parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(out, index=False)
        print("Saved ->", out)
    else:
        print(df.to_string(index=False))


def main(argv=None):
    p = argparse.ArgumentParser(description="Outbreak growth, R and projection runner")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = p.add_subparsers(dest="cmd", required=True)

    # ---------- fit ----------
    fit_p = sub.add_parser("fit", help="Log-linear growth fit (optionally split)")
    add_common(fit_p)
    fit_p.add_argument("--split", type=str, default=None, metavar="YYYY-MM-DD",
                       help="Change-point date; fits [start, split) and [split, end]")
    fit_p.add_argument("--n-sim", type=int, default=1000, metavar="N",
                       help="R draws from the latest segment (default: 1000)")

    # ---------- rt ----------
    rt_p = sub.add_parser("rt", help="Time-varying R (Cori et al.)")
    add_common(rt_p)
    rt_p.add_argument("--window", type=int, default=7, metavar="DAYS")
    rt_p.add_argument("--uncertain", type=str, default=None, metavar="LIST",
                      help="Uncertain SI: std_mean,min_mean,max_mean,std_std,min_std,max_std,n1,n2")

    # ---------- project ----------
    pr_p = sub.add_parser("project", help="Branching-process projections")
    add_common(pr_p)
    pr_p.add_argument("--R", dest="R", type=str, default=None, metavar="LIST",
                      help="R value(s) to sample from; default: growth-fit R sample")
    pr_p.add_argument("--split", type=str, default=None, metavar="YYYY-MM-DD")
    pr_p.add_argument("--n-sim", type=int, default=1000, metavar="N")
    pr_p.add_argument("--n-days", type=int, default=30, metavar="DAYS")
    pr_p.add_argument("--overdispersion", type=float, default=None, metavar="K",
                      help="Negative binomial dispersion (default: Poisson)")
    pr_p.add_argument("--summary", action="store_true",
                      help="Write per-day mean/quantiles instead of every simulation")

    # ---------- all ----------
    all_p = sub.add_parser("all", help="Run every stage and write all tables")
    add_common(all_p)
    all_p.add_argument("--split", type=str, default=None, metavar="YYYY-MM-DD")
    all_p.add_argument("--window", type=int, default=7, metavar="DAYS")
    all_p.add_argument("--uncertain", type=str, default=None, metavar="LIST",
                       help="Uncertain SI: std_mean,min_mean,max_mean,std_std,min_std,max_std,n1,n2")
    all_p.add_argument("--n-sim", type=int, default=1000, metavar="N")
    all_p.add_argument("--n-days", type=int, default=30, metavar="DAYS")
    all_p.add_argument("--overdispersion", type=float, default=None, metavar="K")
    all_p.add_argument("--out-dir", default="results", metavar="DIR")
    all_p.add_argument("--plots", action="store_true", help="Also write PNG figures")

    args = p.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    t0 = time.perf_counter()

    frame = pd.read_csv(args.csv)
    try:
        cfg = config_from_args(args)
    except ValueError as exc:
        p.error(str(exc))

    if args.cmd == "all":
        result = pipeline.run_analysis(frame, cfg)
        print(result.fit.summary())
        print("Outputs written to", cfg.out_dir)

    else:
        _, _, incidence = pipeline.prepare_incidence(frame, cfg)
        si = make_serial_interval(cfg.mean_si, cfg.std_si, interval=cfg.interval)

        if args.cmd == "fit":
            fit = fit_growth(incidence, split=cfg.split)
            print(fit.summary())
            sample = sample_r(pipeline.latest_fit(fit), si, n_sim=cfg.n_sim, rng=cfg.seed)
            emit(pd.DataFrame([sample.summary()]), args.out)

        elif args.cmd == "rt":
            rts = estimate_r(
                incidence,
                si=None if cfg.uncertain_si else si,
                uncertain=cfg.uncertain_si,
                window=cfg.window,
                rng=cfg.seed,
            )
            emit(flag_windows(rts), args.out)

        elif args.cmd == "project":
            if args.R:
                R = parse_float_list(args.R)
            else:
                fit = fit_growth(incidence, split=cfg.split)
                R = sample_r(pipeline.latest_fit(fit), si, n_sim=cfg.n_sim, rng=cfg.seed)
            ensemble = project(
                incidence, R, si,
                n_days=cfg.n_days, n_sim=cfg.n_sim, rng_seed=cfg.seed,
                overdispersion=cfg.overdispersion,
            )
            if args.summary or not args.out:
                emit(ensemble.summarize(), args.out)
            else:
                write_ensemble_csv(ensemble, out_path=args.out, use_tempfile=False)
                print("Projections ->", args.out)

    print(f"Done in {time.perf_counter() - t0:.2f}s")


if __name__ == "__main__":
    main()
