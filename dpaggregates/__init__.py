"""Differentially private mean, approximate bounds and quantile search with privacy-budget accounting."""

__version__ = "0.1.0"
__all__ = [
    "algorithm",
    "approx_bounds",
    "binary_search",
    "bounded_algorithm",
    "bounded_mean",
]