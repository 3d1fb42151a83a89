# src/outbreak_projections/cases/expand.py
"""
Turn daily case reports into one event date per case.

The reports arrive already decoded (a pandas DataFrame or a list of
CaseReport rows); this module only validates them and repeats dates.
"""

from dataclasses import dataclass
from datetime import date
from numbers import Integral, Real
from typing import Dict, List, Optional, Sequence, Tuple
import logging

import numpy as np
import pandas as pd

from ..errors import InvalidCountError

logger = logging.getLogger(__name__)

CATEGORIES = ("hospital", "icu", "home")
COUNT_COLUMNS = ("new_cases", "hospitalized", "icu", "home_quarantine", "total_active")
CATEGORY_COLUMNS = {"hospital": "hospitalized", "icu": "icu", "home": "home_quarantine"}

# Italian Civil Protection national daily CSV -> internal column names
ITALY_COLUMNS = {
    "data": "date",
    "nuovi_positivi": "new_cases",
    "ricoverati_con_sintomi": "hospitalized",
    "terapia_intensiva": "icu",
    "isolamento_domiciliare": "home_quarantine",
    "totale_positivi": "total_active",
}


@dataclass(frozen=True)
class CaseReport:
    date: date
    new_cases: int = 0
    hospitalized: int = 0
    icu: int = 0
    home_quarantine: int = 0
    total_active: int = 0


@dataclass(frozen=True)
class EventSequence:
    """One date per case, sorted; optionally tagged with a category."""
    dates: Tuple[date, ...]
    categories: Optional[Tuple[str, ...]] = None

    def __len__(self):
        return len(self.dates)

    @property
    def is_stratified(self):
        return self.categories is not None


def check_count(value, label="count"):
    """Return `value` as an int, raising InvalidCountError if it is not a non-negative integer."""
    if isinstance(value, bool) or not isinstance(value, (Integral, Real, np.number)):
        raise InvalidCountError(f"{label} is not numeric: {value!r}")
    if isinstance(value, Integral):
        count = int(value)
    else:
        fval = float(value)
        if not np.isfinite(fval) or not fval.is_integer():
            raise InvalidCountError(f"{label} is not an integer: {value!r}")
        count = int(fval)
    if count < 0:
        raise InvalidCountError(f"{label} is negative: {value!r}")
    return count


def check_reports(reports: Sequence[CaseReport]) -> List[CaseReport]:
    """Reports must be in strictly increasing date order."""
    reports = list(reports)
    for prev, cur in zip(reports, reports[1:]):
        if cur.date <= prev.date:
            raise InvalidCountError(
                f"Report dates must be strictly increasing ({prev.date} then {cur.date})"
            )
    return reports


def expand_cases(reports, column="new_cases", by_category=False) -> EventSequence:
    """Repeat each report date once per case.

    Args:
        reports: sequence of CaseReport, ordered by date
        column: "new_cases" or "total_active"
        by_category: tag each case with hospital/icu/home; needs "total_active"
    Returns:
        EventSequence
    Raises:
        InvalidCountError
    """
    if column not in ("new_cases", "total_active"):
        raise InvalidCountError(f"Unknown count column: {column}")
    if by_category and column != "total_active":
        raise InvalidCountError("Category breakdown is only available for total_active")

    reports = check_reports(reports)
    dates: List[date] = []
    categories: List[str] = []

    for report in reports:
        count = check_count(getattr(report, column), f"{column} on {report.date}")
        if not by_category:
            dates.extend([report.date] * count)
            continue

        parts = {
            cat: check_count(getattr(report, col), f"{col} on {report.date}")
            for cat, col in CATEGORY_COLUMNS.items()
        }
        if sum(parts.values()) != count:
            raise InvalidCountError(
                f"Categories on {report.date} sum to {sum(parts.values())}, expected {count}"
            )
        for cat in CATEGORIES:
            dates.extend([report.date] * parts[cat])
            categories.extend([cat] * parts[cat])

    logger.debug("Expanded %d reports into %d events", len(reports), len(dates))
    return EventSequence(
        dates=tuple(dates),
        categories=tuple(categories) if by_category else None,
    )


def reports_from_frame(
    frame: pd.DataFrame,
    columns: Optional[Dict[str, str]] = None,
    fill_gaps: bool = True,
) -> List[CaseReport]:
    """Convert a decoded report table into CaseReport rows.

    Dates are parsed to calendar dates (any time of day is dropped). Count
    columns absent from the table are treated as zero. Missing dates become
    explicit zero rows when `fill_gaps` is set.
    """
    df = frame.rename(columns=columns) if columns else frame.copy()
    if "date" not in df.columns:
        raise InvalidCountError("Report table has no 'date' column")

    df["date"] = pd.to_datetime(df["date"]).dt.normalize()
    if df["date"].duplicated().any():
        dups = sorted(df.loc[df["date"].duplicated(), "date"].dt.date.unique())
        raise InvalidCountError(f"Duplicate report dates: {dups}")
    df = df.sort_values("date")

    for col in COUNT_COLUMNS:
        if col not in df.columns:
            df[col] = 0

    if fill_gaps and len(df) > 0:
        full = pd.date_range(df["date"].iloc[0], df["date"].iloc[-1], freq="D")
        n_missing = len(full) - len(df)
        if n_missing:
            logger.warning("Filling %d missing report dates with zero counts", n_missing)
        df = df.set_index("date").reindex(full, fill_value=0).rename_axis("date").reset_index()

    reports = []
    for row in df.itertuples(index=False):
        reports.append(CaseReport(
            date=row.date.date(),
            **{col: check_count(getattr(row, col), f"{col} on {row.date.date()}")
               for col in COUNT_COLUMNS},
        ))
    return reports


def reports_to_frame(reports: Sequence[CaseReport]) -> pd.DataFrame:
    return pd.DataFrame(
        [(r.date, *(getattr(r, c) for c in COUNT_COLUMNS)) for r in reports],
        columns=["date", *COUNT_COLUMNS],
    )
