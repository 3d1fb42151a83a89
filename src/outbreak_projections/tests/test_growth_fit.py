import math
from datetime import date, timedelta

import numpy as np
import pytest

from outbreak_projections.cases.incidence import incidence_from_counts
from outbreak_projections.errors import InsufficientDataError, InvalidSplitError
from outbreak_projections.growth.fit import GrowthFit, find_best_split, fit_growth, fit_segment

D0 = date(2020, 2, 24)


def series(counts):
    return incidence_from_counts([D0 + timedelta(days=i) for i in range(len(counts))], counts)


def test_doubling_series_has_slope_log2():
    fit = fit_growth(series([1, 2, 4, 8, 16, 32, 64]))
    assert isinstance(fit, GrowthFit)
    assert fit.slope == pytest.approx(math.log(2), abs=1e-9)
    assert fit.doubling_time == pytest.approx(1.0, abs=1e-9)
    assert fit.halving_time is None
    assert fit.r_squared == pytest.approx(1.0)
    assert fit.n_observations_used == 7


def test_zero_days_are_excluded():
    fit = fit_growth(series([1, 0, 4, 0, 16]))
    assert fit.n_observations_used == 3
    assert fit.slope == pytest.approx(math.log(2))


def test_fit_is_deterministic():
    s = series([3, 5, 4, 9, 12, 10, 20, 25])
    a = fit_segment(s)
    b = fit_segment(s)
    assert (a.slope, a.intercept, a.r_squared) == (b.slope, b.intercept, b.r_squared)


def test_decline_reports_halving_time():
    fit = fit_growth(series([64, 32, 16, 8, 4]))
    assert fit.slope < 0
    assert fit.doubling_time is None
    assert fit.halving_time == pytest.approx(1.0)


def test_confidence_interval_contains_slope():
    fit = fit_growth(series([3, 5, 4, 9, 12, 10, 20, 25]))
    lo, hi = fit.confint(0.95)
    assert lo < fit.slope < hi
    dlo, dhi = fit.doubling_time_confint(0.95)
    assert dlo <= fit.doubling_time <= dhi


def test_all_zero_segment_raises():
    with pytest.raises(InsufficientDataError):
        fit_growth(series([0, 0, 0, 0]))


def test_empty_segment_raises():
    s = series([1, 2, 3]).subset(start=D0 + timedelta(days=10))
    with pytest.raises(InsufficientDataError):
        fit_segment(s)


def test_single_nonzero_point_raises():
    with pytest.raises(InsufficientDataError):
        fit_growth(series([0, 5, 0]))


def test_split_boundary():
    """
    The before segment only uses dates < split, the after segment dates >= split,
    and together they use every non-zero date.
    """
    counts = [1, 2, 0, 8, 16, 20, 18, 0, 15, 12]
    s = series(counts)
    split = D0 + timedelta(days=5)
    fit = fit_growth(s, split=split)

    assert fit.before.end == split - timedelta(days=1)
    assert fit.after.start == split
    assert fit.before.n_observations_used == 4
    assert fit.after.n_observations_used == 4
    assert fit.n_observations_used == sum(c > 0 for c in counts)


def test_split_outside_range_raises():
    s = series([1, 2, 4, 8])
    with pytest.raises(InvalidSplitError):
        fit_growth(s, split=D0 - timedelta(days=1))
    with pytest.raises(InvalidSplitError):
        fit_growth(s, split=D0 + timedelta(days=4))


def test_failed_side_keeps_other_side():
    s = series([0, 1, 0, 4, 8, 16])
    fit = fit_growth(s, split=D0 + timedelta(days=3))

    assert not fit.before.fitted
    assert fit.before.failure
    assert math.isnan(fit.before.slope)
    assert fit.after.fitted
    assert fit.after.slope == pytest.approx(math.log(2))


def test_predict_reproduces_exact_series():
    counts = [1, 2, 4, 8, 16]
    fit = fit_growth(series(counts))
    assert np.allclose(fit.predict(np.arange(5)), counts)


def test_best_split_finds_the_peak():
    counts = [1, 2, 4, 8, 16, 32, 64, 128, 256, 512, 256, 128, 64, 32, 16, 8]
    best = find_best_split(series(counts))
    assert best.split in (D0 + timedelta(days=9), D0 + timedelta(days=10))
    assert best.before.slope > 0
    assert best.after.slope < 0


def test_summary_mentions_doubling_time():
    text = fit_growth(series([1, 2, 4, 8])).summary()
    assert "doubling time" in text
