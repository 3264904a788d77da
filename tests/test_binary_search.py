import math

import pytest

from dpaggregates.algorithm import (
    DEFAULT_CONFIDENCE_LEVEL,
    LaplaceMechanism,
    NumericType,
    default_epsilon,
)
from dpaggregates.binary_search import BinarySearch, BinarySearchSummary

DATA_SIZE = 10000


class ZeroNoiseMechanism(LaplaceMechanism):
    def add_noise(self, value, privacy_budget=1.0):
        return float(value)


def make_search(quantile, lower, upper, datapoints=0,
                value_type=NumericType.INT64, epsilon=None):
    if epsilon is None:
        epsilon = default_epsilon()
    return BinarySearch(
        epsilon, lower, upper, datapoints, quantile,
        ZeroNoiseMechanism(default_epsilon(), 1.0), value_type,
    )


def spread_values():
    # Rounds half away from zero; all values are nonnegative.
    return [math.floor(200 * i / DATA_SIZE + 0.5) for i in range(DATA_SIZE)]


def test_median():
    search = make_search(0.5, 0, 400)
    search.add_entries(spread_values())
    assert search.partial_result(1.0).value() == 100


def test_percentile():
    search = make_search(0.6, 0, 400)
    search.add_entries(spread_values())
    assert search.partial_result(1.0).value() == 120


def test_repeated_result():
    search = make_search(0.5, 0, 400, datapoints=1)
    search.add_entries(spread_values())
    first = search.partial_result(0.5).value()
    second = search.partial_result(0.5).value()
    assert first == second


def test_min():
    search = make_search(0, 0, 400)
    search.add_entries(spread_values())
    assert abs(search.partial_result(1.0).value() - 0) <= 10


def test_max():
    search = make_search(1, 0, 400)
    search.add_entries(spread_values())
    assert abs(search.partial_result(1.0).value() - 200) <= 10


def test_serialize_merge():
    search = make_search(0.5, 0, 400)
    for _ in range(100):
        search.add_entry(100)
        search.add_entry(200)
    summary = search.serialize()
    assert isinstance(summary, BinarySearchSummary)
    assert len(summary.values) == 200

    search_2 = make_search(0.5, 0, 400)
    for _ in range(100):
        search_2.add_entry(300)
    search_2.merge(summary)
    assert search_2.partial_result(1.0).value() == 200


def test_merge_without_data_fails():
    search = make_search(0.5, 0, 400)
    with pytest.raises(ValueError, match="no binary search data"):
        search.merge(None)


def test_merge_wrong_summary_fails():
    search = make_search(0.5, 0, 400)
    with pytest.raises(ValueError, match="unable to be unpacked"):
        search.merge({"values": [1, 2]})


def test_drop_nan_entries():
    search = make_search(0.5, 0, 400, value_type=NumericType.DOUBLE, epsilon=1)
    for value in spread_values():
        search.add_entry(value)
        search.add_entry(math.nan)
    assert search.partial_result(1.0).value() == pytest.approx(100, abs=0.001)


def test_extreme_bounds_median_search():
    limits = NumericType.INT64
    search = make_search(0.5, limits.lowest(), limits.max_value())
    search.add_entries(spread_values())
    assert search.partial_result(1.0).value() == 100


def test_error_confidence_interval():
    search = make_search(0.5, 0.0, 1000.0)
    search.add_entries([100] * DATA_SIZE)
    output = search.partial_result()
    interval = output.error_report.noise_confidence_interval
    assert interval.confidence_level == DEFAULT_CONFIDENCE_LEVEL
    assert interval.upper_bound == pytest.approx(0, abs=1e-6)
    assert interval.lower_bound == pytest.approx(0, abs=1e-6)


def test_memory_used():
    search = make_search(0.5, 1, 2, datapoints=1, value_type=NumericType.DOUBLE)
    assert search.memory_used() > 0


def test_reset_clears_entries():
    search = make_search(0.5, 0, 400)
    search.add_entries([300] * 50)
    search.reset()
    search.add_entries([100] * 50)
    assert search.serialize().values == tuple([100] * 50)


def test_probability_left_symmetric_at_median():
    search = make_search(0.5, 0, 400)
    assert search.bayesian_probability_left(0.1, 5.0, 5.0) == pytest.approx(0.5)


def test_probability_left_at_zero_quantile_without_evidence():
    search = make_search(0, 0, 400)
    assert search.bayesian_probability_left(0.1, 0.0, 10.0) == pytest.approx(0.5)


@pytest.mark.parametrize("quantile", [0.3, 0.5, 0.8])
def test_probability_left_grows_with_count_below(quantile):
    search = make_search(quantile, 0, 400)
    many_below = search.bayesian_probability_left(0.1, 10.0, 0.0)
    many_above = search.bayesian_probability_left(0.1, 0.0, 10.0)
    assert 0.0 <= many_above < many_below <= 1.0