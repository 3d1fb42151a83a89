import csv
from datetime import date, timedelta

import numpy as np
import pytest

from outbreak_projections.cases.incidence import incidence_from_counts
from outbreak_projections.errors import InvalidParameterError
from outbreak_projections.growth.convert import RSample
from outbreak_projections.simulate.batch_processing import (
    CumulativeEnsemble,
    project,
    write_ensemble_csv,
)
from outbreak_projections.simulate.calculate_serial_weights import make_serial_interval

D0 = date(2020, 3, 1)


@pytest.fixture
def si():
    return make_serial_interval(4.7, 2.9)


def flat_seed(level=20, n=40):
    return incidence_from_counts([D0 + timedelta(days=i) for i in range(n)], [level] * n)


def test_shape_and_dates(si):
    seed = flat_seed()
    ens = project(seed, 1.3, si, n_days=10, n_sim=25, rng_seed=1)
    assert ens.counts.shape == (10, 25)
    assert ens.dates[0] == seed.end + timedelta(days=1)
    assert ens.dates[-1] == seed.end + timedelta(days=10)
    assert np.all(ens.r_draws == 1.3)


def test_non_negative_and_cumulative(si):
    ens = project(flat_seed(), RSample([0.8, 1.1, 1.6]), si, n_days=14, n_sim=50, rng_seed=2)
    cum = ens.cumulate()

    assert isinstance(cum, CumulativeEnsemble)
    assert ens.counts.dtype.kind == "i" and cum.counts.dtype.kind == "i"
    assert np.all(ens.counts >= 0)
    assert np.all(np.diff(cum.counts, axis=0) >= 0)
    assert np.array_equal(cum.counts[-1], ens.counts.sum(axis=0))
    assert set(np.unique(ens.r_draws)) <= {0.8, 1.1, 1.6}


def test_cumulate_with_offset(si):
    seed = flat_seed()
    ens = project(seed, 1.0, si, n_days=5, n_sim=4, rng_seed=3)
    cum = ens.cumulate(offset=seed.total)
    assert np.array_equal(cum.counts[0], ens.counts[0] + seed.total)


def test_same_seed_same_ensemble(si):
    a = project(flat_seed(), RSample([0.9, 1.4]), si, n_days=10, n_sim=30, rng_seed=42)
    b = project(flat_seed(), RSample([0.9, 1.4]), si, n_days=10, n_sim=30, rng_seed=42)
    assert np.array_equal(a.counts, b.counts)
    assert np.array_equal(a.r_draws, b.r_draws)


def test_simulation_streams_do_not_depend_on_n_sim(si):
    """
    Simulation i draws from its own stream, so adding simulations leaves the
    first ones unchanged.
    """
    small = project(flat_seed(), RSample([0.9, 1.4]), si, n_days=10, n_sim=5, rng_seed=7)
    large = project(flat_seed(), RSample([0.9, 1.4]), si, n_days=10, n_sim=12, rng_seed=7)
    assert np.array_equal(small.counts, large.counts[:, :5])


def test_r_one_keeps_mean_flat(si):
    """
    R=1 from a flat seed: the expected daily count stays at the seed level.
    """
    ens = project(flat_seed(level=20), 1.0, si, n_days=10, n_sim=2000, rng_seed=11)
    assert np.allclose(ens.mean_by_day(), 20.0, atol=2.0)


def test_zero_r_and_plain_seed(si):
    ens = project([3, 4, 5], 0.0, si, n_days=6, n_sim=10, rng_seed=0)
    assert ens.dates is None
    assert np.all(ens.counts == 0)


def test_time_change_phases(si):
    ens = project(flat_seed(), [2.0, 0.0], si, n_days=8, n_sim=20, rng_seed=5, time_change=[4])
    assert np.all(ens.counts[4:] == 0)
    assert ens.counts[:4].sum() > 0
    assert ens.r_draws.shape == (20, 2)


def test_overdispersion_runs(si):
    ens = project(flat_seed(), 1.2, si, n_days=7, n_sim=40, rng_seed=9, overdispersion=0.5)
    assert np.all(ens.counts >= 0)


@pytest.mark.parametrize("kwargs", [
    {"n_days": 0},
    {"n_sim": 0},
    {"R": -1.0},
    {"R": [1.0, 2.0], "time_change": [3, 2]},
    {"R": [1.0], "time_change": [3]},
    {"overdispersion": 0.0},
])
def test_invalid_arguments(si, kwargs):
    args = {"R": 1.0, "n_days": 5, "n_sim": 5}
    args.update(kwargs)
    with pytest.raises(InvalidParameterError):
        project(flat_seed(), si=si, rng_seed=0, **args)


def test_empty_seed_raises(si):
    with pytest.raises(InvalidParameterError):
        project([], 1.0, si, n_days=5, n_sim=5)


def test_summary_frame(si):
    ens = project(flat_seed(), 1.0, si, n_days=6, n_sim=50, rng_seed=4)
    df = ens.summarize()
    assert list(df.columns) == ["day", "date", "mean", "q0.025", "q0.5", "q0.975"]
    assert len(df) == 6
    assert ens.to_frame().shape == (6, 50)


def test_write_ensemble_csv(tmp_path, si):
    """
    One row per simulation plus a header; cumulative_cases is the row total.
    """
    ens = project(flat_seed(), RSample([1.0, 1.5]), si, n_days=4, n_sim=5, rng_seed=6)
    out_csv = tmp_path / "projections.csv"
    csv_path = write_ensemble_csv(ens, out_path=str(out_csv), use_tempfile=False)

    assert csv_path == out_csv
    rows = list(csv.reader(csv_path.open()))
    assert len(rows) == 5 + 1
    assert rows[0][:2] == ["sim_id", "R_draw"]
    assert rows[0][-1] == "cumulative_cases"

    for row in csv.DictReader(csv_path.open()):
        day_vals = [int(row[f"day_{d}"]) for d in range(1, 5)]
        assert int(row["cumulative_cases"]) == sum(day_vals)
        assert float(row["R_draw"]) in (1.0, 1.5)
