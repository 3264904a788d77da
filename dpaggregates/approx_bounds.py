"""Approximate bounds of the input from noisy logarithmic histograms."""

from __future__ import annotations

import math
import sys
from collections.abc import Callable, MutableSequence, Sequence
from dataclasses import dataclass

from .algorithm import (
    Algorithm,
    AlgorithmBuilder,
    BoundingReport,
    LaplaceMechanism,
    NumericType,
    Output,
)

_THRESHOLD_TOO_LARGE = (
    "Bin count threshold was too large to find approximate bounds. Either run "
    "over a larger dataset or decrease success_probability and try again."
)


@dataclass(frozen=True)
class ApproxBoundsSummary:
    """Raw histogram counts of an ApproxBounds, for merging."""

    pos_bin_count: tuple[int, ...] = ()
    neg_bin_count: tuple[int, ...] = ()


class ApproxBounds(Algorithm):
    """Finds an approximate minimum and maximum of the input.

    Inputs are counted in logarithmic bins, one histogram for positive and one
    for negative values. Positive bin i covers (scale * base^(i-1),
    scale * base^i]; positive bin 0 also holds zero. After noise is added to
    every count, the outermost bins whose noisy count reaches the threshold k
    give the bounds.
    """

    def __init__(
        self,
        epsilon: float,
        num_bins: int,
        scale: float,
        base: float,
        k: float,
        preset_k: bool,
        mechanism: LaplaceMechanism,
        value_type: NumericType = NumericType.DOUBLE,
    ) -> None:
        super().__init__(epsilon)
        self._value_type = value_type
        self._scale = scale
        self._base = base
        self._k = k
        self._preset_k = preset_k
        self._mechanism = mechanism
        self._pos_bins = [0] * num_bins
        self._neg_bins = [0] * num_bins
        self._noisy_pos_bins: list[int | float] = []
        self._noisy_neg_bins: list[int | float] = []
        self._boundaries = self._make_boundaries(num_bins)

    def _make_boundaries(self, num_bins: int) -> list[int | float]:
        limit = self._value_type.max_value()
        cap = limit / self._base
        boundaries = []
        boundary = self._scale
        for _ in range(num_bins):
            if boundary >= cap:
                boundaries.append(limit)
                continue
            boundaries.append(self._value_type.cast(boundary))
            boundary *= self._base
        return boundaries

    def add_entry(self, entry) -> None:
        if math.isnan(entry):
            return
        value = self._value_type.cast(entry) if self._value_type.integral() else entry
        index = self.most_significant_bit(value)
        if value >= 0:
            self._pos_bins[index] += 1
        else:
            self._neg_bins[index] += 1

    def generate_result(self, privacy_budget: float) -> Output:
        """Return an output holding the approximate minimum, then maximum."""
        if privacy_budget == 0.0:
            return Output()

        threshold = self._k if self._preset_k else self._k / privacy_budget
        self._noisy_pos_bins = self._add_noise(privacy_budget, self._pos_bins)
        self._noisy_neg_bins = self._add_noise(privacy_budget, self._neg_bins)
        size = len(self._pos_bins)

        minimum = next(
            (
                self.neg_right_bin_boundary(i)
                for i in reversed(range(size))
                if self._noisy_neg_bins[i] >= threshold
            ),
            None,
        )
        if minimum is None:
            minimum = next(
                (
                    self._pos_left_bin_boundary(i)
                    for i in range(size)
                    if self._noisy_pos_bins[i] >= threshold
                ),
                None,
            )

        maximum = next(
            (
                self.pos_right_bin_boundary(i)
                for i in reversed(range(size))
                if self._noisy_pos_bins[i] >= threshold
            ),
            None,
        )
        if maximum is None:
            maximum = next(
                (
                    self._neg_left_bin_boundary(i)
                    for i in range(size)
                    if self._noisy_neg_bins[i] >= threshold
                ),
                None,
            )

        if minimum is None or maximum is None:
            raise ValueError(_THRESHOLD_TOO_LARGE)
        return Output(elements=[minimum, maximum])

    def reset_state(self) -> None:
        self._pos_bins = [0] * len(self._pos_bins)
        self._neg_bins = [0] * len(self._neg_bins)

    def serialize(self) -> ApproxBoundsSummary:
        return ApproxBoundsSummary(
            pos_bin_count=tuple(self._pos_bins),
            neg_bin_count=tuple(self._neg_bins),
        )

    def merge(self, summary) -> None:
        if summary is None:
            raise ValueError("Cannot merge summary with no histogram data.")
        if not isinstance(summary, ApproxBoundsSummary):
            raise ValueError("Approximate bounds summary unable to be unpacked.")
        if len(self._pos_bins) != len(summary.pos_bin_count) or len(
            self._neg_bins
        ) != len(summary.neg_bin_count):
            raise ValueError(
                "Merged approximate max summary must have the same number of "
                "bin counts as this histogram."
            )
        self._pos_bins = [a + b for a, b in zip(self._pos_bins, summary.pos_bin_count)]
        self._neg_bins = [a + b for a, b in zip(self._neg_bins, summary.neg_bin_count)]

    def memory_used(self) -> int:
        memory = (
            sys.getsizeof(self)
            + sys.getsizeof(self._pos_bins)
            + sys.getsizeof(self._neg_bins)
            + sys.getsizeof(self._noisy_pos_bins)
            + sys.getsizeof(self._noisy_neg_bins)
            + sys.getsizeof(self._boundaries)
        )
        if self._mechanism is not None:
            memory += self._mechanism.memory_used()
        return memory

    def num_positive_bins(self) -> int:
        return len(self._pos_bins)

    def most_significant_bit(self, value) -> int:
        """Bin index for the magnitude of value; zero maps to bin 0."""
        if value == 0:
            return 0
        limit = self._value_type.max_value()
        magnitude = limit if value <= -limit else abs(value)
        last = len(self._pos_bins) - 1
        exponent = (math.log(float(magnitude)) - math.log(self._scale)) / math.log(
            self._base
        )
        if math.isinf(exponent):
            msb = last if exponent > 0 else 0
        else:
            msb = math.ceil(exponent)
        return max(0, min(msb, last))

    def pos_right_bin_boundary(self, bin_index: int):
        """Larger-magnitude boundary of a positive bin."""
        return self._boundaries[bin_index]

    def neg_right_bin_boundary(self, bin_index: int):
        """Larger-magnitude boundary of a negative bin."""
        boundary = self.pos_right_bin_boundary(bin_index)
        if boundary == self._value_type.max_value():
            return self._value_type.lowest()
        return -1 * boundary

    def _pos_left_bin_boundary(self, bin_index: int):
        if bin_index == 0:
            return self._value_type.cast(0)
        return self.pos_right_bin_boundary(bin_index - 1)

    def _neg_left_bin_boundary(self, bin_index: int):
        return -1 * self._pos_left_bin_boundary(bin_index)

    def add_to_partials(
        self,
        partials: MutableSequence,
        value,
        make_partial: Callable[[object, object], object],
    ) -> None:
        """Split value into per-bin contributions and add them to partials.

        make_partial(right, left) gives the contribution of a bin spanning
        from left to right; the bin holding value receives only the part of
        value beyond its left boundary, capped at the full bin contribution.
        """
        msb = self.most_significant_bit(value)
        for i in range(msb + 1):
            if value >= 0:
                partial = make_partial(
                    self.pos_right_bin_boundary(i), self._pos_left_bin_boundary(i)
                )
            else:
                partial = make_partial(
                    self.neg_right_bin_boundary(i), self._neg_left_bin_boundary(i)
                )
            if i < msb:
                partials[i] += partial
                continue
            if value > 0:
                remainder = make_partial(value, self._pos_left_bin_boundary(i))
            else:
                remainder = make_partial(value, self._neg_left_bin_boundary(i))
            partials[msb] += partial if abs(partial) < abs(remainder) else remainder

    def add_to_partial_sums(self, sums: MutableSequence, value) -> None:
        """Split value into per-bin partial sums."""
        self.add_to_partials(sums, value, lambda first, second: first - second)

    def compute_from_partials(
        self,
        pos_partials: Sequence,
        neg_partials: Sequence,
        value_transform: Callable[[object], object],
        lower,
        upper,
        count: int,
    ):
        """Combine partials for the bins within [lower, upper] into the value
        the inputs would give if clamped to those bounds."""
        lower_msb = self.most_significant_bit(lower)
        upper_msb = self.most_significant_bit(upper)
        value = 0
        if lower <= 0 <= upper:
            if lower < 0:
                value += sum(neg_partials[: lower_msb + 1])
            if upper > 0:
                value += sum(pos_partials[: upper_msb + 1])
        elif upper < 0:
            value += count * value_transform(upper)
            value += sum(neg_partials[upper_msb + 1 : lower_msb + 1])
        else:
            value += count * value_transform(lower)
            value += sum(pos_partials[lower_msb + 1 : upper_msb + 1])
        return value

    def get_bounding_report(self, lower, upper) -> BoundingReport:
        """Report the bounds and, once a result exists, noisy input counts."""
        report = BoundingReport(lower_bound=lower, upper_bound=upper)
        try:
            report.num_inputs = self._num_inputs()
            report.num_outside = self._num_inputs_outside(lower, upper)
        except ValueError:
            pass
        return report

    def _add_noise(self, privacy_budget: float, bins: list[int]) -> list:
        return [
            self._value_type.cast(self._mechanism.add_noise(count, privacy_budget))
            for count in bins
        ]

    def _num_inputs_outside(self, lower, upper) -> float:
        if not self._noisy_pos_bins:
            raise ValueError(
                "Noisy histogram bins have not been created. Try generating "
                "results first."
            )
        lower_msb = self.most_significant_bit(lower)
        upper_msb = self.most_significant_bit(upper)

        if lower == 0:
            neg_i, pos_i = -1, 0
        elif lower < 0:
            neg_i, pos_i = lower_msb, 0
        else:
            neg_i, pos_i = -1, lower_msb + 1
        num_outside = sum(self._noisy_neg_bins[neg_i + 1 :])
        num_outside += sum(self._noisy_pos_bins[:pos_i])

        if upper == 0:
            pos_i, neg_i = 0, -1
        elif upper < 0:
            pos_i, neg_i = 0, upper_msb
        else:
            pos_i, neg_i = upper_msb + 1, -1
        num_outside += sum(self._noisy_neg_bins[: neg_i + 1])
        num_outside += sum(self._noisy_pos_bins[pos_i:])
        return num_outside

    def _num_inputs(self) -> float:
        return self._num_inputs_outside(0, 0)


class ApproxBoundsBuilder(AlgorithmBuilder):
    """Builds ApproxBounds; defaults cover the whole range of the value type."""

    def __init__(self, value_type: NumericType = NumericType.DOUBLE) -> None:
        super().__init__(value_type)
        self.base = 2.0
        self.success_probability = 1 - 10.0**-9
        self.scale = 1.0 if value_type.integral() else value_type.smallest_positive()
        self.num_bins = (
            math.ceil(
                (math.log(float(value_type.max_value())) - math.log(self.scale))
                / math.log(self.base)
            )
            + 1
        )
        self.k = 0.0
        self.has_k = False

    def set_num_bins(self, num_bins: int):
        self.num_bins = num_bins
        return self

    def set_scale(self, scale: float):
        self.scale = scale
        return self

    def set_base(self, base: float):
        self.base = base
        return self

    def set_success_probability(self, success_probability: float):
        """Set the chance of choosing a bin that was non-empty before noise."""
        self.success_probability = success_probability
        self.has_k = False
        return self

    def set_threshold(self, k: float):
        """Set the bin count threshold directly."""
        self.k = k
        self.has_k = True
        return self

    def build_algorithm(self) -> ApproxBounds:
        mechanism = self.make_mechanism(1.0)
        if self.num_bins < 1:
            raise ValueError("Must have one or more bins.")
        if self.scale <= 0:
            raise ValueError("Scale must be positive.")
        if self.base <= 1:
            raise ValueError("Base must be greater than 1.")
        if self.has_k:
            if self.k < 0:
                raise ValueError("k threshold must be nonnegative.")
            k = self.k
        else:
            if self.success_probability <= 0 or self.success_probability >= 1:
                raise ValueError("Success percentage must be between 0 and 1.")
            k = (
                -math.log(
                    2
                    - 2 * self.success_probability ** (1.0 / (2 * self.num_bins - 1))
                )
                / self.epsilon
            )
        return ApproxBounds(
            self.epsilon,
            self.num_bins,
            self.scale,
            self.base,
            k,
            self.has_k,
            mechanism,
            self.value_type,
        )