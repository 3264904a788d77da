"""Differentially private mean of bounded input."""

from __future__ import annotations

import math
import sys
from dataclasses import dataclass

from .algorithm import (
    Algorithm,
    ErrorReport,
    LaplaceMechanism,
    MechanismFactory,
    NumericType,
    Output,
    clamp,
)
from .approx_bounds import ApproxBounds, ApproxBoundsSummary
from .bounded_algorithm import BoundedAlgorithmBuilder


def _half(difference, integral: bool):
    """Half of a difference, truncated toward zero for integral types."""
    if not integral:
        return difference / 2
    return difference // 2 if difference >= 0 else -((-difference) // 2)


def _midpoint(lower, upper, value_type: NumericType) -> float:
    return float(lower + _half(upper - lower, value_type.integral()))


def _sensitivity(lower, upper, value_type: NumericType) -> float:
    return float(_half(abs(upper - lower), value_type.integral()))


def check_bounds(lower, upper, value_type: NumericType) -> None:
    """Raise if upper - lower cannot be represented in an integral type."""
    if value_type.integral():
        difference = upper - lower
        if not value_type.lowest() <= difference <= value_type.max_value():
            raise ValueError("Upper - lower caused integer overflow.")


@dataclass(frozen=True)
class BoundedMeanSummary:
    """Count and partial sums of a BoundedMean, for merging."""

    count: int = 0
    pos_sum: tuple = ()
    neg_sum: tuple = ()
    bounds_summary: ApproxBoundsSummary | None = None


class BoundedMean(Algorithm):
    """Differentially private average of input clamped to [lower, upper].

    Inputs are summed as their offset from the middle of the range, which
    halves the sensitivity of the sum compared with noisy sum over noisy count.
    """

    def __init__(
        self,
        epsilon: float,
        lower,
        upper,
        mechanism_factory: MechanismFactory,
        sum_mechanism: LaplaceMechanism | None,
        count_mechanism: LaplaceMechanism,
        value_type: NumericType = NumericType.DOUBLE,
        approx_bounds: ApproxBounds | None = None,
    ) -> None:
        super().__init__(epsilon)
        self._value_type = value_type
        self._lower = value_type.cast(lower)
        self._upper = value_type.cast(upper)
        self._midpoint = _midpoint(self._lower, self._upper, value_type)
        self._mechanism_factory = mechanism_factory
        self._sum_mechanism = sum_mechanism
        self._count_mechanism = count_mechanism
        self._approx_bounds = approx_bounds
        self._raw_count = 0
        # With automatic bounds a partial sum is kept for every histogram bin;
        # otherwise one already-clamped sum is enough.
        if approx_bounds is not None:
            bins = approx_bounds.num_positive_bins()
            self._pos_sum: list = [0] * bins
            self._neg_sum: list = [0] * bins
        else:
            self._pos_sum = [0]
            self._neg_sum = []

    def _convert(self, entry):
        return self._value_type.cast(entry) if self._value_type.integral() else float(entry)

    def add_entry(self, entry) -> None:
        if math.isnan(entry):
            return
        value = self._convert(entry)
        self._raw_count += 1
        if self._approx_bounds is None:
            self._pos_sum[0] += clamp(self._lower, self._upper, value)
            return
        self._approx_bounds.add_entry(value)
        if value >= 0:
            self._approx_bounds.add_to_partial_sums(self._pos_sum, value)
        else:
            self._approx_bounds.add_to_partial_sums(self._neg_sum, value)

    def generate_result(self, privacy_budget: float) -> Output:
        if privacy_budget == 0.0:
            return Output()
        remaining_budget = privacy_budget
        error_report = None

        if self._approx_bounds is not None:
            bounds_budget = privacy_budget / 2
            remaining_budget -= bounds_budget
            bounds = self._approx_bounds.generate_result(bounds_budget)
            self._lower, self._upper = bounds.elements[0], bounds.elements[1]
            check_bounds(self._lower, self._upper, self._value_type)
            self._midpoint = _midpoint(self._lower, self._upper, self._value_type)
            total = self._approx_bounds.compute_from_partials(
                self._pos_sum,
                self._neg_sum,
                lambda x: x,
                self._lower,
                self._upper,
                self._raw_count,
            )
            error_report = ErrorReport(
                bounding_report=self._approx_bounds.get_bounding_report(
                    self._lower, self._upper
                )
            )
            # The sensitivity may have changed with the bounds.
            self._sum_mechanism = None
        else:
            total = self._pos_sum[0]

        self._build_mechanism()

        count_budget = remaining_budget / 2
        remaining_budget -= count_budget
        noised_count = self._count_mechanism.add_noise(self._raw_count, count_budget)

        if noised_count <= 1:
            return Output(elements=[self._midpoint], error_report=error_report)

        normalized_sum = self._sum_mechanism.add_noise(
            float(total) - self._raw_count * self._midpoint, remaining_budget
        )
        average = normalized_sum / noised_count + self._midpoint
        return Output(
            elements=[clamp(float(self._lower), float(self._upper), average)],
            error_report=error_report,
        )

    def _build_mechanism(self) -> None:
        if self._sum_mechanism is None:
            self._sum_mechanism = self._mechanism_factory(
                self.epsilon, _sensitivity(self._lower, self._upper, self._value_type)
            )

    def reset_state(self) -> None:
        self._pos_sum = [0] * len(self._pos_sum)
        self._neg_sum = [0] * len(self._neg_sum)
        self._raw_count = 0
        if self._approx_bounds is not None:
            self._approx_bounds.reset_state()
            self._sum_mechanism = None

    def serialize(self) -> BoundedMeanSummary:
        bounds_summary = (
            self._approx_bounds.serialize() if self._approx_bounds is not None else None
        )
        return BoundedMeanSummary(
            count=self._raw_count,
            pos_sum=tuple(self._pos_sum),
            neg_sum=tuple(self._neg_sum),
            bounds_summary=bounds_summary,
        )

    def merge(self, summary) -> None:
        if summary is None:
            raise ValueError("Cannot merge summary with no bounded mean data.")
        if not isinstance(summary, BoundedMeanSummary):
            raise ValueError("Bounded mean summary unable to be unpacked.")
        self._raw_count += summary.count
        if len(self._pos_sum) != len(summary.pos_sum) or len(self._neg_sum) != len(
            summary.neg_sum
        ):
            raise ValueError(
                "Merged BoundedMeans must have equal number of partial sums."
            )
        self._pos_sum = [
            a + self._convert(b) for a, b in zip(self._pos_sum, summary.pos_sum)
        ]
        self._neg_sum = [
            a + self._convert(b) for a, b in zip(self._neg_sum, summary.neg_sum)
        ]
        if self._approx_bounds is not None:
            self._approx_bounds.merge(summary.bounds_summary or ApproxBoundsSummary())

    def memory_used(self) -> int:
        memory = (
            sys.getsizeof(self)
            + sys.getsizeof(self._pos_sum)
            + sys.getsizeof(self._neg_sum)
        )
        if self._approx_bounds is not None:
            memory += self._approx_bounds.memory_used()
        if self._sum_mechanism is not None:
            memory += self._sum_mechanism.memory_used()
        if self._mechanism_factory is not None:
            memory += sys.getsizeof(self._mechanism_factory)
        return memory


class BoundedMeanBuilder(BoundedAlgorithmBuilder):
    """Builds a BoundedMean with manual or automatic bounds."""

    def build_algorithm(self) -> BoundedMean:
        self.bounds_setup()

        # With manual bounds, fail at build time if the sensitivity is bad.
        sum_mechanism = None
        if self.has_bounds():
            check_bounds(self.lower, self.upper, self.value_type)
            sum_mechanism = self.make_mechanism(
                _sensitivity(self.lower, self.upper, self.value_type)
            )

        count_mechanism = self.make_mechanism(1.0)

        approx_bounds, self.approx_bounds = self.approx_bounds, None
        return BoundedMean(
            self.epsilon,
            self.lower if self.lower is not None else 0,
            self.upper if self.upper is not None else 0,
            self.mechanism_factory,
            sum_mechanism,
            count_mechanism,
            self.value_type,
            approx_bounds,
        )