"""Builders for algorithms that need lower and upper bounds on their input."""

from __future__ import annotations

from .algorithm import AlgorithmBuilder, NumericType
from .approx_bounds import ApproxBounds, ApproxBoundsBuilder


class BoundedAlgorithmBuilder(AlgorithmBuilder):
    """Builder for algorithms that clamp input or derive sensitivity from bounds.

    Bounds come from one of three places: set by hand with ``set_lower`` and
    ``set_upper``; found automatically by an ApproxBounds passed to
    ``set_approx_bounds``; or found automatically by a default ApproxBounds
    that ``bounds_setup`` constructs when neither of the others is present.
    """

    def __init__(self, value_type: NumericType = NumericType.DOUBLE) -> None:
        super().__init__(value_type)
        self.lower: int | float | None = None
        self.upper: int | float | None = None
        self.approx_bounds: ApproxBounds | None = None

    def set_lower(self, lower):
        self.lower = self.value_type.cast(lower)
        return self

    def set_upper(self, upper):
        self.upper = self.value_type.cast(upper)
        return self

    def clear_bounds(self):
        """Forget manual bounds and any ApproxBounds set earlier."""
        self.lower = None
        self.upper = None
        self.approx_bounds = None
        return self

    def set_approx_bounds(self, approx_bounds: ApproxBounds):
        """Find bounds automatically with the given ApproxBounds.

        Manual bounds set before are removed.
        """
        self.clear_bounds()
        self.approx_bounds = approx_bounds
        return self

    def has_bounds(self) -> bool:
        """True when both bounds were set by hand."""
        return self.lower is not None and self.upper is not None

    def bounds_setup(self) -> None:
        """Construct a default ApproxBounds if manual bounds are incomplete."""
        if not self.has_bounds() and self.approx_bounds is None:
            self.approx_bounds = (
                ApproxBoundsBuilder(self.value_type)
                .set_epsilon(self.epsilon)
                .set_laplace_mechanism(self.mechanism_factory)
                .build()
            )