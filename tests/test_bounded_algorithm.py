import pytest

from dpaggregates.algorithm import Algorithm, NumericType, Output
from dpaggregates.approx_bounds import ApproxBounds, ApproxBoundsBuilder
from dpaggregates.bounded_algorithm import BoundedAlgorithmBuilder

VALUE_TYPES = [NumericType.INT64, NumericType.DOUBLE]


class _TrivialAlgorithm(Algorithm):
    def add_entry(self, entry):
        pass

    def generate_result(self, privacy_budget):
        return Output()

    def reset_state(self):
        pass

    def serialize(self):
        return None

    def merge(self, summary):
        pass

    def memory_used(self):
        return 1


class _TrivialBuilder(BoundedAlgorithmBuilder):
    def build_algorithm(self):
        self.bounds_setup()
        return _TrivialAlgorithm(1)


@pytest.mark.parametrize("value_type", VALUE_TYPES)
def test_manual_bounds(value_type):
    builder = _TrivialBuilder(value_type)
    builder.set_lower(1).set_upper(2)
    algorithm = builder.build()
    assert algorithm.epsilon == 1
    assert algorithm.partial_result() == Output()
    assert builder.lower == 1
    assert builder.upper == 2
    assert builder.has_bounds()
    assert builder.approx_bounds is None


@pytest.mark.parametrize("value_type", VALUE_TYPES)
def test_approx_bounds_clears_manual_bounds(value_type):
    bounds = ApproxBoundsBuilder(value_type).build()
    builder = _TrivialBuilder(value_type)
    builder.set_lower(1).set_upper(2).set_approx_bounds(bounds)
    builder.build()
    assert not builder.has_bounds()
    assert builder.lower is None
    assert builder.upper is None
    assert builder.approx_bounds is bounds


@pytest.mark.parametrize("value_type", VALUE_TYPES)
def test_automatic_approx_bounds(value_type):
    builder = _TrivialBuilder(value_type)
    builder.build()
    assert not builder.has_bounds()
    assert isinstance(builder.approx_bounds, ApproxBounds)
    assert (
        builder.approx_bounds.num_positive_bins()
        == ApproxBoundsBuilder(value_type).num_bins
    )


@pytest.mark.parametrize("value_type", VALUE_TYPES)
def test_only_lower_bound_builds_approx_bounds(value_type):
    builder = _TrivialBuilder(value_type)
    builder.set_lower(1)
    builder.build()
    assert not builder.has_bounds()
    assert builder.lower == 1
    assert (
        builder.approx_bounds.num_positive_bins()
        == ApproxBoundsBuilder(value_type).num_bins
    )


def test_default_approx_bounds_uses_builder_epsilon():
    builder = _TrivialBuilder(NumericType.DOUBLE).set_epsilon(2.5)
    builder.bounds_setup()
    assert builder.approx_bounds.epsilon == 2.5
    assert (
        builder.approx_bounds.num_positive_bins()
        == ApproxBoundsBuilder(NumericType.DOUBLE).num_bins
    )


def test_clear_bounds():
    builder = _TrivialBuilder(NumericType.DOUBLE)
    builder.set_lower(-3).set_upper(3)
    assert builder.has_bounds()
    builder.clear_bounds()
    assert not builder.has_bounds()
    assert builder.lower is None and builder.upper is None

    builder.set_approx_bounds(ApproxBoundsBuilder(NumericType.DOUBLE).build())
    assert builder.approx_bounds is not None
    builder.clear_bounds()
    assert builder.approx_bounds is None


def test_bounds_are_cast_to_value_type():
    builder = _TrivialBuilder(NumericType.INT64)
    builder.set_lower(1.7).set_upper(4.2)
    assert builder.lower == 1
    assert builder.upper == 4
    assert builder.build().partial_result() == Output()
    assert builder.approx_bounds is None