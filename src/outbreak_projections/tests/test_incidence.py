from datetime import date, timedelta

import numpy as np
import pytest

from outbreak_projections.cases.expand import CaseReport, EventSequence, expand_cases
from outbreak_projections.cases.incidence import build_incidence, incidence_from_counts
from outbreak_projections.errors import InvalidCountError, InvalidParameterError

D0 = date(2020, 3, 1)


def day(i):
    return D0 + timedelta(days=i)


def stratified_events():
    reports = [
        CaseReport(day(0), hospitalized=1, icu=0, home_quarantine=2, total_active=3),
        CaseReport(day(1), hospitalized=0, icu=0, home_quarantine=0, total_active=0),
        CaseReport(day(2), hospitalized=2, icu=1, home_quarantine=4, total_active=7),
        CaseReport(day(3), hospitalized=0, icu=2, home_quarantine=0, total_active=2),
    ]
    return expand_cases(reports, column="total_active", by_category=True)


def test_conservation_and_zero_fill():
    """
    Every date between the first and last event is present, and the counts
    add up to the number of events.
    """
    events = EventSequence(dates=(day(0), day(0), day(3), day(7), day(7), day(7)))
    inc = build_incidence(events)

    assert inc.dates == tuple(day(i) for i in range(8))
    assert inc.total == len(events)
    assert inc.counts.tolist() == [2, 0, 0, 1, 0, 0, 0, 3]


def test_stratified_rows_sum_to_unstratified():
    events = stratified_events()
    plain = build_incidence(events)
    strat = build_incidence(events, by_category=True)

    assert strat.groups == ("hospital", "icu", "home")
    assert np.array_equal(strat.counts.sum(axis=1), plain.counts)
    assert strat.total == plain.total == len(events)
    assert strat.group("icu").counts.tolist() == [0, 0, 1, 2]


def test_build_is_deterministic():
    events = stratified_events()
    a = build_incidence(events, by_category=True)
    b = build_incidence(events, by_category=True)
    assert a.dates == b.dates
    assert np.array_equal(a.counts, b.counts)


def test_weekly_interval():
    events = EventSequence(dates=tuple(day(i) for i in range(15)))
    inc = build_incidence(events, interval=7)

    assert inc.dates == (day(0), day(7), day(14))
    assert inc.counts.tolist() == [7, 7, 1]
    assert inc.interval == 7


def test_counts_are_read_only():
    inc = build_incidence(EventSequence(dates=(day(0), day(2))))
    with pytest.raises(ValueError):
        inc.counts[0] = 10


def test_subset_and_tail_do_not_mutate():
    inc = incidence_from_counts([day(i) for i in range(5)], [1, 2, 3, 4, 5])
    sub = inc.subset(day(1), day(3))
    assert sub.counts.tolist() == [2, 3, 4]
    assert inc.tail(2).counts.tolist() == [4, 5]
    assert len(inc) == 5
    assert len(inc.subset(day(10))) == 0


def test_explicit_range_pads_with_zeros():
    events = EventSequence(dates=(day(2),))
    inc = build_incidence(events, first_date=day(0), last_date=day(4))
    assert inc.counts.tolist() == [0, 0, 1, 0, 0]


def test_invalid_interval():
    with pytest.raises(InvalidParameterError):
        build_incidence(EventSequence(dates=(day(0),)), interval=0)


def test_non_contiguous_counts_rejected():
    with pytest.raises(InvalidParameterError):
        incidence_from_counts([day(0), day(2)], [1, 1])


@pytest.mark.parametrize("counts", [[1.7, 2.9], [1.0, np.nan], [1, np.inf], ["1", "2"]])
def test_non_integral_counts_rejected(counts):
    with pytest.raises(InvalidCountError):
        incidence_from_counts([day(0), day(1)], counts)


def test_integral_float_counts_accepted():
    inc = incidence_from_counts([day(0), day(1)], [1.0, 3.0])
    assert inc.counts.tolist() == [1, 3]
    assert inc.total == 4


def test_to_frame_has_total_column():
    df = build_incidence(stratified_events(), by_category=True).to_frame()
    assert list(df.columns) == ["date", "hospital", "icu", "home", "count"]
    assert df["count"].sum() == 12
