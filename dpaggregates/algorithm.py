"""Core types shared by the differentially private aggregations."""

from __future__ import annotations

import enum
import logging
import math
import random
import sys
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_DELTA = 0.0
DEFAULT_CONFIDENCE_LEVEL = 0.95
FULL_PRIVACY_BUDGET = 1.0


class NumericType(enum.Enum):
    """The numeric type an algorithm works on, with its limits."""

    INT32 = "int32"
    INT64 = "int64"
    DOUBLE = "double"

    def integral(self) -> bool:
        return self is not NumericType.DOUBLE

    def max_value(self) -> int | float:
        return _LIMITS[self][1]

    def lowest(self) -> int | float:
        return _LIMITS[self][0]

    def smallest_positive(self) -> int | float:
        """The smallest positive normal value (1 for integral types)."""
        return 1 if self.integral() else sys.float_info.min

    def cast(self, value: float) -> int | float:
        """Convert a value the way a static cast to this type would."""
        if not self.integral():
            return float(value)
        if math.isnan(value):
            raise ValueError("Cannot represent NaN as an integer.")
        if math.isinf(value):
            return self.max_value() if value > 0 else self.lowest()
        return max(self.lowest(), min(self.max_value(), int(value)))


_LIMITS = {
    NumericType.INT32: (-(2**31), 2**31 - 1),
    NumericType.INT64: (-(2**63), 2**63 - 1),
    NumericType.DOUBLE: (-sys.float_info.max, sys.float_info.max),
}


@dataclass
class ConfidenceInterval:
    lower_bound: float = 0.0
    upper_bound: float = 0.0
    confidence_level: float = 0.0


@dataclass
class BoundingReport:
    lower_bound: int | float | None = None
    upper_bound: int | float | None = None
    num_inputs: float | None = None
    num_outside: float | None = None


@dataclass
class ErrorReport:
    noise_confidence_interval: ConfidenceInterval | None = None
    bounding_report: BoundingReport | None = None


@dataclass
class Output:
    """The result of an algorithm: its elements and an optional error report."""

    elements: list[int | float] = field(default_factory=list)
    error_report: ErrorReport | None = None

    def value(self) -> int | float:
        """The first element of the output."""
        if not self.elements:
            raise ValueError("Output holds no elements.")
        return self.elements[0]


def default_epsilon() -> float:
    """Epsilon used when none is given; meant for tests and experiments only."""
    return math.log(3)


def clamp(lower, upper, value):
    """Limit value to the closed range [lower, upper]."""
    return max(lower, min(upper, value))


class LaplaceMechanism:
    """Adds Laplace noise calibrated to epsilon and sensitivity."""

    def __init__(self, epsilon: float, sensitivity: float) -> None:
        if math.isnan(epsilon) or epsilon < 0:
            raise ValueError("Epsilon must be nonnegative.")
        if math.isnan(sensitivity) or sensitivity < 0 or math.isinf(sensitivity):
            raise ValueError("Sensitivity must be finite and nonnegative.")
        diversity = sensitivity / epsilon if epsilon > 0 else math.inf
        if not math.isfinite(diversity):
            raise ValueError("Sensitivity is too high.")
        self.epsilon = epsilon
        self.sensitivity = sensitivity
        self.diversity = diversity
        self._rng = random.Random()

    def add_noise(self, value: float, privacy_budget: float = 1.0) -> float:
        """Return value plus Laplace noise for the given share of the budget."""
        if not privacy_budget > 0 or privacy_budget > 1:
            raise ValueError("Privacy budget must be in (0, 1].")
        scale = self.diversity / privacy_budget
        if scale == 0:
            return float(value)
        rate = 1.0 / scale
        return float(value) + self._rng.expovariate(rate) - self._rng.expovariate(rate)

    def memory_used(self) -> int:
        return sys.getsizeof(self) + sys.getsizeof(self._rng)


MechanismFactory = Callable[[float, float], LaplaceMechanism]


class Algorithm(ABC):
    """A differentially private algorithm with a privacy budget in [0, 1].

    Partial results may each spend a fraction of the budget; a plain result
    spends whatever remains.
    """

    def __init__(self, epsilon: float) -> None:
        self._epsilon = epsilon
        self._privacy_budget = FULL_PRIVACY_BUDGET

    @property
    def epsilon(self) -> float:
        return self._epsilon

    @abstractmethod
    def add_entry(self, entry) -> None:
        """Add one input."""

    def add_entries(self, entries: Iterable) -> None:
        for entry in entries:
            self.add_entry(entry)

    def result(self, entries: Iterable) -> Output:
        """Reset, add all entries and spend the full budget on a result."""
        self.reset()
        self.add_entries(entries)
        return self.partial_result()

    def partial_result(self, privacy_budget: float | None = None) -> Output:
        if privacy_budget is None:
            privacy_budget = self.remaining_privacy_budget()
        return self.generate_result(self.consume_privacy_budget(privacy_budget))

    def remaining_privacy_budget(self) -> float:
        return self._privacy_budget

    def consume_privacy_budget(self, fraction: float) -> float:
        """Spend a fraction of the budget and return the amount actually spent."""
        if fraction < 0:
            raise ValueError(f"Requested budget {fraction} should be positive.")
        if fraction > self._privacy_budget:
            raise ValueError(
                f"Requested budget {fraction} exceeds remaining budget of "
                f"{self._privacy_budget}"
            )
        fraction = clamp(0.0, 1.0, fraction)
        budget = self._privacy_budget
        self._privacy_budget = max(0.0, self._privacy_budget - fraction)
        return budget - self._privacy_budget

    def reset(self) -> None:
        """Forget all input and restore the full budget."""
        self._privacy_budget = FULL_PRIVACY_BUDGET
        self.reset_state()

    @abstractmethod
    def serialize(self) -> Any:
        """Summarise the current entries so they can be merged elsewhere."""

    @abstractmethod
    def merge(self, summary: Any) -> None:
        """Merge a summary produced by an identically configured algorithm."""

    @abstractmethod
    def memory_used(self) -> int:
        """Approximate memory held by the algorithm, in bytes."""

    @abstractmethod
    def generate_result(self, privacy_budget: float) -> Output:
        """Compute the result over all input since the last reset."""

    @abstractmethod
    def reset_state(self) -> None:
        """Clear the algorithm-specific state."""


class AlgorithmBuilder(ABC):
    """Collects epsilon and the noise mechanism, then builds an algorithm."""

    def __init__(self, value_type: NumericType = NumericType.DOUBLE) -> None:
        self.value_type = value_type
        self.epsilon = default_epsilon()
        self.using_default_epsilon = True
        self.mechanism_factory: MechanismFactory = LaplaceMechanism

    def set_epsilon(self, epsilon: float):
        self.epsilon = epsilon
        self.using_default_epsilon = False
        return self

    def set_laplace_mechanism(self, mechanism_factory: MechanismFactory):
        self.mechanism_factory = mechanism_factory
        return self

    def make_mechanism(self, sensitivity: float) -> LaplaceMechanism:
        return self.mechanism_factory(self.epsilon, sensitivity)

    def build(self) -> Algorithm:
        if self.using_default_epsilon:
            logger.warning(
                "Default epsilon of %s is being used. Consider setting your own "
                "epsilon based on privacy considerations.",
                self.epsilon,
            )
        return self.build_algorithm()

    @abstractmethod
    def build_algorithm(self) -> Algorithm:
        """Construct the algorithm from the collected settings."""