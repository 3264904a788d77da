# dpaggregates

Differentially private aggregate statistics for Python, with no runtime
dependencies.

Every algorithm adds Laplace noise that is scaled to its privacy parameter
`epsilon`. Each algorithm also tracks a *privacy budget*. This is the
fraction in `[0, 1]` of the total epsilon that has not been spent yet.
Each partial result uses up part of that budget.

## Modules

- `dpaggregates.algorithm` holds the shared pieces:
  - `Algorithm` is the abstract base class. It handles entries, partial
    results, budget accounting, serialization and merging.
  - `AlgorithmBuilder` is the abstract base for the builders.
  - `LaplaceMechanism` is the noise source.
  - `NumericType` (`INT32`, `INT64`, `DOUBLE`) gives the value type and its
    limits.
  - The result types are `Output`, `ErrorReport`, `BoundingReport` and
    `ConfidenceInterval`.
  - The helpers are `default_epsilon()` and `clamp()`.
- `dpaggregates.approx_bounds`:
  - `ApproxBounds` finds an approximate minimum and maximum of the data. It
    counts the positive and the negative inputs in logarithmic histograms,
    adds noise to the counts and applies a threshold.
  - `ApproxBoundsBuilder` builds it.
- `dpaggregates.binary_search`: `BinarySearch` is a Bayesian, noise-aware
  search for a quantile within fixed bounds. It reports an error confidence
  interval with its result.
- `dpaggregates.bounded_algorithm`: `BoundedAlgorithmBuilder` is the base
  builder for algorithms that need bounds. You can set the bounds by hand
  or supply an `ApproxBounds`. If you do neither, it creates a default
  `ApproxBounds`.
- `dpaggregates.bounded_mean`:
  - `BoundedMean` is a differentially private mean.
  - `BoundedMeanBuilder` builds it.
  - `check_bounds()` rejects integral bounds whose difference overflows
    the value type.

Invalid parameters and failed results raise `ValueError`.

## Installation

```
pip install dpaggregates
```

To run the tests, install the `test` extra.

## Usage

### Mean with manual bounds

```python
from dpaggregates.bounded_mean import BoundedMeanBuilder

mean = BoundedMeanBuilder().set_epsilon(1.0).set_lower(1).set_upper(9).build()
output = mean.result([2, 4, 6, 8])
print(output.value())   # a noisy mean, clamped to [1, 9]
```

Inputs outside the bounds are clamped to them, and the result always lies
within `[lower, upper]`. NaN inputs are ignored.

If you do not call `set_epsilon`, `default_epsilon()` (ln 3) is used and a
warning is logged.

### Mean with automatic bounds

If you set no bounds, the builder creates a default `ApproxBounds`. Half of
the privacy budget then goes into finding the bounds. The output carries a
`BoundingReport` with:

- the chosen bounds,
- the noisy number of inputs,
- the noisy number of inputs that fell outside the bounds.

```python
mean = BoundedMeanBuilder().set_epsilon(1.0).build()
mean.add_entries([10] * 100 + [-10] * 100)
output = mean.partial_result()
report = output.error_report.bounding_report
print(report.lower_bound, report.upper_bound, report.num_inputs)
```

If no histogram bin reaches the threshold, `partial_result()` raises
`ValueError`. This happens, for example, when there are no inputs.

### Approximate bounds

```python
from dpaggregates.algorithm import NumericType
from dpaggregates.approx_bounds import ApproxBoundsBuilder

bounds = (
    ApproxBoundsBuilder(NumericType.INT64)
    .set_epsilon(1.0)
    .set_num_bins(4)
    .set_base(2)
    .set_scale(1)
    .set_threshold(3)
    .build()
)
bounds.add_entries([0, -5, -5, -7, 7, 7, 3, -6, 6, 5, 1])
lower, upper = bounds.partial_result().elements
```

You can call `set_success_probability` instead of setting a fixed
threshold. The threshold is then derived from that probability, epsilon
and the number of bins, and it is divided by the privacy budget spent.

By default the bins cover the whole range of the value type.

### Quantile search

`BinarySearch` has no builder. You construct it directly with its bounds,
its quantile and a mechanism:

```python
from dpaggregates.algorithm import LaplaceMechanism
from dpaggregates.binary_search import BinarySearch

epsilon = 1.0
median = BinarySearch(epsilon, 0, 400, 0, 0.5, LaplaceMechanism(epsilon, 1.0))
median.add_entries(range(200))
output = median.partial_result()
print(output.value(), output.error_report.noise_confidence_interval)
```

The `datapoints` argument, `0` above, matters only for the quantiles `0`
and `1`. For those it pushes the result toward the range of the data.

### Custom noise

`set_laplace_mechanism(factory)` replaces the noise source. The factory is
any callable that takes `(epsilon, sensitivity)` and returns a
`LaplaceMechanism`, or an object with the same `add_noise` and
`memory_used` methods. Every mechanism the builder makes uses that
factory, and so does the default `ApproxBounds` it may create.

### Privacy budget

```python
first = mean.partial_result(0.5)    # spend half of the budget
second = mean.partial_result()      # spend whatever is left
mean.remaining_privacy_budget()     # 0.0
mean.reset()                        # clear the entries and restore the full budget
```

Asking for more budget than remains raises `ValueError`.

### Distributed aggregation

`serialize()` returns a frozen summary:

| Algorithm      | Summary                |
|----------------|------------------------|
| `ApproxBounds` | `ApproxBoundsSummary`  |
| `BinarySearch` | `BinarySearchSummary`  |
| `BoundedMean`  | `BoundedMeanSummary`   |

`merge(summary)` adds that state into another algorithm that was built
with the same parameters. A summary of the wrong kind, or one with a
different number of bins, raises `ValueError`.

## What is not included

- Only the mean, approximate bounds and quantile search are available.
  There is no count, sum, variance or standard deviation.
- There is no ready-made builder for minimum, maximum, median or
  percentile.
- There are no database aggregate functions and no command-line tool.
  The package is a library only.
- Summaries are plain Python objects. The package defines no wire format
  for them.