"""Differentially private quantile search by Bayesian binary search."""

from __future__ import annotations

import math
import sys
from bisect import bisect_left, bisect_right, insort
from dataclasses import dataclass
from itertools import accumulate

from .algorithm import (
    DEFAULT_CONFIDENCE_LEVEL,
    Algorithm,
    ConfidenceInterval,
    ErrorReport,
    LaplaceMechanism,
    NumericType,
    Output,
)

MAX_BAYESIAN_ITERATIONS = 10000
DEFAULT_LOCAL_BUDGET_FRACTION = 0.01
MAX_LOCAL_BUDGET_FRACTION = 0.1
PROBABILITY_TOO_UNCERTAIN = 0.4
PROBABILITY_TOO_CERTAIN = 0.49
SINGULARITY_TOLERANCE = 1e-6


@dataclass(frozen=True)
class BinarySearchSummary:
    """The raw inputs of a binary search, for merging."""

    values: tuple[float, ...] = ()


def _round_half_away(value: float) -> float:
    return math.copysign(math.floor(abs(value) + 0.5), value)


class _WeightMap:
    """Sorted buckets: each key starts a subrange holding the given weight."""

    def __init__(self) -> None:
        self.keys: list[float] = []
        self.weights: list[float] = []

    def __setitem__(self, key: float, weight: float) -> None:
        index = bisect_left(self.keys, key)
        if index < len(self.keys) and self.keys[index] == key:
            self.weights[index] = weight
        else:
            self.keys.insert(index, key)
            self.weights.insert(index, weight)

    def apply_update(self, m: float, update_left: float) -> None:
        """Scale buckets below m by update_left, the rest by its complement."""
        split = bisect_left(self.keys, m)
        update_right = 1 - update_left
        updated = [w * update_left for w in self.weights[:split]]
        updated += [w * update_right for w in self.weights[split:]]
        total = sum(updated)
        if total == 0:
            return
        self.weights = [w / total for w in updated]

    def median_bucket(self, upper: float) -> tuple[float, float, float, float]:
        """Return (lower bound, weight, cumulative weight, upper bound) of the
        bucket where the cumulative weight first reaches one half."""
        cumulative = list(accumulate(self.weights))
        index = next(
            (i for i, total in enumerate(cumulative) if total >= 0.5),
            len(cumulative) - 1,
        )
        upper_bound = self.keys[index + 1] if index + 1 < len(self.keys) else upper
        return self.keys[index], self.weights[index], cumulative[index], upper_bound


class BinarySearch(Algorithm):
    """Finds a quantile of the input within [lower, upper].

    A probability map over subranges of the search space is refined by noisy
    counts of inputs below and above a moving split point.
    """

    def __init__(
        self,
        epsilon: float,
        lower,
        upper,
        datapoints: int,
        quantile: float,
        mechanism: LaplaceMechanism,
        value_type: NumericType = NumericType.DOUBLE,
    ) -> None:
        super().__init__(epsilon)
        self._value_type = value_type
        self._lower = value_type.cast(lower)
        self._upper = value_type.cast(upper)
        self._datapoints = datapoints
        self._quantile = quantile
        self._mechanism = mechanism
        self._values: list[int | float] = []

    def add_entry(self, entry) -> None:
        if math.isnan(entry):
            return
        value = self._value_type.cast(entry) if self._value_type.integral() else float(entry)
        insort(self._values, value)

    def reset_state(self) -> None:
        self._values.clear()

    def generate_result(self, privacy_budget: float) -> Output:
        if privacy_budget == 0.0:
            return Output()
        return self._bayesian_search(privacy_budget)

    def serialize(self) -> BinarySearchSummary:
        return BinarySearchSummary(values=tuple(self._values))

    def merge(self, summary) -> None:
        if summary is None:
            raise ValueError("Cannot merge summary with no binary search data.")
        if not isinstance(summary, BinarySearchSummary):
            raise ValueError("Binary search summary unable to be unpacked.")
        for value in summary.values:
            insort(self._values, value)

    def memory_used(self) -> int:
        return (
            sys.getsizeof(self)
            + self._mechanism.memory_used()
            + sys.getsizeof(self._values)
        )

    def bayesian_probability_left(
        self, privacy_budget: float, noisy_less: float, noisy_more: float
    ) -> float:
        """Probability that the quantile lies left of the probed value, given
        noisy counts below (noisy_less) and above (noisy_more) it."""
        p = self._quantile
        b = privacy_budget * self.epsilon
        lo, up = noisy_less, noisy_more

        # Removable singularity at p = 1/2.
        if abs(p - 0.5) < SINGULARITY_TOLERANCE:
            if lo < up:
                return -0.25 * math.exp(b * (lo - up)) * (-2 + b * (lo - up))
            return 1 + math.exp(b * (up - lo)) * (-0.5 + 0.25 * b * (up - lo))

        # Singularities at p = 0 and p = 1.
        if abs(p) < SINGULARITY_TOLERANCE:
            if lo <= 0:
                return math.exp(b * lo) / 2
            return 1 - math.exp(-b * lo) / 2
        if abs(p - 1) < SINGULARITY_TOLERANCE:
            if up <= 0:
                return 1 - math.exp(b * up) / 2
            return math.exp(-b * up) / 2

        denom = 2 * (-1 + 2 * p)
        if lo < p * (lo + up):
            num1 = math.exp(b * (lo + p * up / (p - 1)))
            num2 = math.exp(b * (lo * (1 / p - 1) - up))
            return (-1 * num1 + 2 * num1 * p - num1 * p * p + num2 * p * p) / denom
        num1 = math.exp(-b * (lo + p * up / (p - 1)))
        num2 = math.exp(b * (lo - lo / p + up))
        return (-2 + num1 * (-1 + p) ** 2 + 4 * p - num2 * p * p) / denom

    def _bayesian_search(self, privacy_budget: float) -> Output:
        local_budget = privacy_budget * DEFAULT_LOCAL_BUDGET_FRACTION
        remaining_budget = privacy_budget
        max_local_budget = privacy_budget * MAX_LOCAL_BUDGET_FRACTION
        lower = float(self._lower)
        upper = float(self._upper)

        weights = _WeightMap()
        m = lower / 2.0 + upper / 2.0
        weights[lower] = 0.5
        weights[m] = 0.5

        num_values = len(self._values)
        iterations = 0
        while (
            remaining_budget - local_budget > 0
            and iterations < MAX_BAYESIAN_ITERATIONS
        ):
            iterations += 1
            percentile = self._percentile(m)
            noisy_less = self._mechanism.add_noise(percentile * num_values, local_budget)
            noisy_more = self._mechanism.add_noise(
                (1 - percentile) * num_values, local_budget
            )

            # Push extreme quantiles toward the range of the data.
            if self._quantile == 0:
                noisy_less -= self._datapoints
            elif self._quantile == 1:
                noisy_more -= self._datapoints

            update_left = self.bayesian_probability_left(
                local_budget, noisy_less, noisy_more
            )
            remaining_budget -= local_budget
            local_budget = min(
                self._update_local_budget(local_budget, update_left), max_local_budget
            )
            weights.apply_update(m, update_left)

            # Split the median bucket, assuming uniform probability within it.
            lower_bound, w, sum_w, upper_bound = weights.median_bucket(upper)
            width = upper_bound - lower_bound
            if width <= 0 or w == 0:
                m = lower_bound
                continue
            m = (0.5 - sum_w + w) / w * width + lower_bound
            weights[lower_bound] = w * (m - lower_bound) / width
            weights[m] = w * (upper_bound - m) / width

        if self._value_type.integral():
            m = _round_half_away(m)

        interval = self._error_confidence_interval(DEFAULT_CONFIDENCE_LEVEL, weights, m)
        return Output(
            elements=[self._value_type.cast(m)],
            error_report=ErrorReport(noise_confidence_interval=interval),
        )

    def _percentile(self, m: float) -> float:
        num_values = len(self._values)
        if num_values == 0:
            return 0.5
        below = bisect_left(self._values, m) / num_values
        at_or_below = bisect_right(self._values, m) / num_values
        if self._value_type.integral():
            return at_or_below
        return (below + at_or_below) / 2

    @staticmethod
    def _update_local_budget(local_budget: float, update_left: float) -> float:
        certainty = abs(update_left - 0.5)
        if certainty < PROBABILITY_TOO_UNCERTAIN:
            return local_budget * 2
        if certainty > PROBABILITY_TOO_CERTAIN:
            return local_budget / 2
        return local_budget

    def _error_confidence_interval(
        self, confidence_level: float, weights: _WeightMap, result: float
    ) -> ConfidenceInterval:
        interval = ConfidenceInterval(confidence_level=confidence_level)
        found_lower = False
        keys = weights.keys
        for index, (key, sum_w) in enumerate(zip(keys, accumulate(weights.weights))):
            if not found_lower and sum_w >= 0.5 - confidence_level / 2:
                interval.upper_bound = result - key
                found_lower = True
            if sum_w > 0.5 + confidence_level / 2:
                following = (
                    keys[index + 1] if index + 1 < len(keys) else float(self._upper)
                )
                interval.lower_bound = result - following
                break
        return interval