import numpy as np
import pytest
from scipy.stats import gamma
from scipy.integrate import quad

from outbreak_projections.errors import InvalidParameterError
from outbreak_projections.simulate.calculate_serial_weights import (
    UncertainSIConfig,
    draw_truncated_normal,
    make_serial_interval,
    sample_serial_intervals,
    cdf_weights,
    triangular_weights,
)


def slow_reference_weights(mean, std, k_max, step=7.0):
    """
    Slow but precise reference implementation of the triangular kernel using quad.
    """
    var = std ** 2
    shape = (mean / std) ** 2
    scale = var / mean
    g = gamma(a=shape, scale=scale)

    w = np.zeros(k_max, dtype=float)

    for k in range(1, k_max + 1):
        center = step * k
        left = max(0.0, step * (k - 1))
        right = step * (k + 1)

        def integrand(u):
            tri = 1.0 - abs(u - center) / step
            if tri < 0.0:
                return 0.0
            return tri * g.pdf(u)

        val, _ = quad(integrand, left, right, epsabs=1e-10, epsrel=1e-10)
        w[k - 1] = val

    w /= w.sum()
    return w


@pytest.mark.parametrize("method", ["cdf", "triangular"])
def test_pmf_sums_to_one(method):
    si = make_serial_interval(mean=5.2, std=2.8, method=method)
    assert si.pmf[0] == 0.0
    assert np.all(si.pmf >= 0)
    assert abs(si.pmf.sum() - 1.0) < 1e-6


def test_offset_and_mode():
    """
    Mean 5.2, sd 2.8 on daily lags: nothing at lag 0 and the mode at lag 4-5.
    """
    si = make_serial_interval(mean=5.2, std=2.8, interval=1, w=0)
    assert si.pmf_at(0) == 0.0
    assert int(np.argmax(si.pmf)) in (4, 5)


def test_gamma_parameters():
    si = make_serial_interval(mean=4.0, std=2.0)
    assert si.shape == pytest.approx(4.0)
    assert si.scale == pytest.approx(1.0)
    assert si.cv == pytest.approx(0.5)


def test_cv_parameterisation_matches_std():
    a = make_serial_interval(mean=6.0, cv=0.5)
    b = make_serial_interval(mean=6.0, std=3.0)
    assert np.array_equal(a.pmf, b.pmf)


def test_discrete_mean_close_to_continuous_mean():
    """
    With bins centred on the lags (w = 0.5) the discrete mean is close to the gamma mean.
    """
    si = make_serial_interval(mean=7.5, std=3.4, w=0.5)
    assert np.dot(si.lags, si.weights) == pytest.approx(7.5, abs=0.1)


def test_pmf_is_read_only():
    si = make_serial_interval(mean=5.2, std=2.8)
    with pytest.raises(ValueError):
        si.pmf[1] = 0.5


def test_triangular_weights_match_reference():
    mean = 15.3
    std = 9.3
    k_max = 10
    step = 7.0

    w_fast = triangular_weights(mean, std, k_max, nquad=64, step=step)
    w_slow = slow_reference_weights(mean, std, k_max, step=step)

    assert np.allclose(w_fast, w_slow, atol=1e-5, rtol=1e-5)


def test_weekly_interval():
    si = make_serial_interval(mean=15.3, std=9.3, interval=7.0, method="triangular")
    assert si.interval == 7.0
    assert abs(si.weights.sum() - 1.0) < 1e-12
    assert si.max_lag < 30


@pytest.mark.parametrize("kwargs", [
    {"mean": 0.0, "std": 1.0},
    {"mean": 5.0, "std": -1.0},
    {"mean": 5.0},
    {"mean": 5.0, "std": 2.0, "w": 1.5},
    {"mean": 5.0, "std": 2.0, "interval": 0},
    {"mean": 5.0, "std": 2.0, "method": "spline"},
    {"mean": 5.0, "std": 2.0, "max_lag": 0},
])
def test_invalid_parameters(kwargs):
    with pytest.raises(InvalidParameterError):
        make_serial_interval(**kwargs)


def test_truncated_normal_respects_bounds():
    rng = np.random.default_rng(0)
    draws = draw_truncated_normal(5.0, 3.0, 4.0, 6.0, size=1000, rng=rng)
    assert draws.min() >= 4.0
    assert draws.max() <= 6.0


def test_truncated_normal_inverted_bounds():
    with pytest.raises(InvalidParameterError):
        draw_truncated_normal(5.0, 1.0, 6.0, 4.0)


def test_sample_serial_intervals():
    cfg = UncertainSIConfig(
        mean_si=4.8, std_mean_si=3.0, min_mean_si=2.0, max_mean_si=7.5,
        std_si=2.3, std_std_si=1.5, min_std_si=0.5, max_std_si=4.0, n1=20, n2=10,
    )
    sis = sample_serial_intervals(cfg, rng=11)
    assert len(sis) == 20
    assert all(2.0 <= s.mean <= 7.5 and 0.5 <= s.std <= 4.0 for s in sis)
    assert all(s.std < s.mean for s in sis)
    # common support so the draws can be pooled
    assert len({s.max_lag for s in sis}) == 1


def test_uncertain_config_inverted_bounds():
    cfg = UncertainSIConfig(
        mean_si=4.8, std_mean_si=3.0, min_mean_si=7.5, max_mean_si=2.0,
        std_si=2.3, std_std_si=1.5, min_std_si=0.5, max_std_si=4.0,
    )
    with pytest.raises(InvalidParameterError):
        cfg.validate()


@pytest.mark.parametrize("weights_fn", [cdf_weights, triangular_weights])
def test_cached_weights_are_read_only(weights_fn):
    first = weights_fn(5.2, 2.8, 20)
    with pytest.raises(ValueError):
        first[0] = 1.0
    assert weights_fn(5.2, 2.8, 20) is first
    assert first.sum() == pytest.approx(1.0)
