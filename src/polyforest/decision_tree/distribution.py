"""Outcome histograms and the probability distributions derived from them."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from functools import reduce

from pydantic import BaseModel, ConfigDict, Field

from polyforest.exceptions import EmptyHistogramError


def normalize_histogram(histogram: Mapping[int, float]) -> dict[int, float]:
    """Divide each count by the sum of all counts.

    Args:
        histogram (Mapping[int, float]): Outcome to count.

    Returns:
        dict[int, float]: Outcome to probability.

    Raises:
        EmptyHistogramError: If the counts do not sum to a positive number.

    Examples:
        >>> normalize_histogram({0: 1, 1: 3})
        {0: 0.25, 1: 0.75}
    """
    normalizer = float(sum(histogram.values()))
    if normalizer <= 0.0:
        raise EmptyHistogramError(dict(histogram))
    return {outcome: count / normalizer for outcome, count in histogram.items()}


def add_histograms[T: (int, float)](first: Mapping[int, T], second: Mapping[int, T]) -> dict[int, T]:
    """Sum two histograms over the union of their keys, treating missing keys as 0.

    The operation is associative and commutative.

    Args:
        first (Mapping[int, T]): A histogram.
        second (Mapping[int, T]): Another histogram.

    Returns:
        dict[int, T]: The summed histogram, keyed in ascending outcome order.

    Examples:
        >>> add_histograms({0: 2, 1: 1}, {1: 4, 2: 5})
        {0: 2, 1: 5, 2: 5}
    """
    return {outcome: first.get(outcome, 0) + second.get(outcome, 0) for outcome in sorted(first.keys() | second.keys())}


def sum_histograms[T: (int, float)](histograms: Iterable[Mapping[int, T]]) -> dict[int, T]:
    """Fold `add_histograms` over any number of histograms.

    Args:
        histograms (Iterable[Mapping[int, T]]): The histograms to sum.

    Returns:
        dict[int, T]: The summed histogram; empty when no histograms are given.
    """
    return reduce(add_histograms, histograms, {})


def smooth_histogram(histogram: Mapping[int, int], outcomes: Iterable[int]) -> dict[int, int]:
    """Add one to the count of every outcome in the outcome universe.

    Args:
        histogram (Mapping[int, int]): Outcome to count.
        outcomes (Iterable[int]): The outcome universe.

    Returns:
        dict[int, int]: The add-one smoothed histogram.

    Examples:
        >>> smooth_histogram({1: 3}, [0, 1])
        {0: 1, 1: 4}
    """
    return add_histograms(histogram, dict.fromkeys(outcomes, 1))


class OutcomeDistribution(BaseModel):
    """A probability distribution over integer outcomes.

    Attributes:
        dist (dict[int, float]): Outcome to probability.

    Examples:
        >>> distribution = OutcomeDistribution(dist={0: 0.25, 1: 0.75})
        >>> distribution.best_outcome(), distribution.probability(2)
        (1, 0.0)
    """

    model_config = ConfigDict(frozen=True)

    dist: dict[int, float] = Field(description="Outcome to probability.")

    @classmethod
    def from_histogram(cls, histogram: Mapping[int, float]) -> OutcomeDistribution:
        """Normalize a histogram into a distribution.

        Args:
            histogram (Mapping[int, float]): Outcome to count.

        Returns:
            OutcomeDistribution: The normalized distribution.

        Raises:
            EmptyHistogramError: If the counts sum to zero.
        """
        return cls(dist=normalize_histogram(histogram))

    def best_outcome(self) -> int:
        """Return the most probable outcome, preferring the smallest on ties.

        Returns:
            int: The mode of the distribution.

        Raises:
            EmptyHistogramError: If the distribution is empty.
        """
        if not self.dist:
            raise EmptyHistogramError({})
        return min(self.dist, key=lambda outcome: (-self.dist[outcome], outcome))

    def probability(self, outcome: int) -> float:
        """Return the probability of `outcome`, or 0.0 if it is not in the support."""
        return self.dist.get(outcome, 0.0)
