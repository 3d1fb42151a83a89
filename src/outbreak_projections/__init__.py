"""Outbreak growth, reproduction number and branching-process projections."""

from .version_info import VERSION as __version__
from .errors import (
    OutbreakModelError,
    InvalidCountError,
    InsufficientDataError,
    InvalidSplitError,
    DegenerateFitError,
    InsufficientHistoryError,
    InvalidParameterError,
)
from .cases.expand import CaseReport, EventSequence, expand_cases, reports_from_frame
from .cases.incidence import IncidenceSeries, build_incidence, incidence_from_counts
from .growth.fit import GrowthFit, SplitGrowthFit, fit_growth, find_best_split
from .growth.convert import RSample, growth_rate_to_r, sample_r
from .simulate.calculate_serial_weights import SerialInterval, UncertainSIConfig, make_serial_interval
from .estimate.cori import RTimeSeries, RWindow, estimate_r
from .simulate.batch_processing import CumulativeEnsemble, ProjectionEnsemble, project
