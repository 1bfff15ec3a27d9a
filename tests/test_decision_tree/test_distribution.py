"""Tests for histogram arithmetic and outcome distributions."""

from __future__ import annotations

import pytest
from pytest_check import check

from polyforest.decision_tree.distribution import (
    OutcomeDistribution,
    add_histograms,
    normalize_histogram,
    smooth_histogram,
    sum_histograms,
)
from polyforest.exceptions import EmptyHistogramError


class TestNormalizeHistogram:
    """Tests for `normalize_histogram`."""

    def test_divides_by_total(self) -> None:
        """Each count is divided by the sum of all counts."""
        distribution = normalize_histogram({0: 1, 1: 3})

        with check:
            assert distribution == pytest.approx({0: 0.25, 1: 0.75})
        with check:
            assert sum(distribution.values()) == pytest.approx(1.0)

    @pytest.mark.parametrize("histogram", [{}, {0: 0, 1: 0}], ids=["empty", "all_zero"])
    def test_zero_total_raises(self, histogram: dict[int, int]) -> None:
        """A histogram summing to zero cannot be normalized.

        Args:
            histogram (dict[int, int]): Histogram with no mass.
        """
        with pytest.raises(EmptyHistogramError):
            normalize_histogram(histogram)

    def test_zero_total_is_zero_division(self) -> None:
        """The error surfaces as ZeroDivisionError for callers expecting arithmetic errors."""
        with pytest.raises(ZeroDivisionError):
            normalize_histogram({2: 0})


class TestAddHistograms:
    """Tests for `add_histograms` and `sum_histograms`."""

    def test_sums_over_key_union(self) -> None:
        """Missing keys count as zero."""
        assert add_histograms({0: 2, 1: 1}, {1: 4, 2: 5}) == {0: 2, 1: 5, 2: 5}

    def test_commutative(self) -> None:
        """Argument order does not matter."""
        first = {0: 1.5, 3: 2.0}
        second = {3: 1.0, 4: 0.5}

        assert add_histograms(first, second) == add_histograms(second, first)

    def test_associative(self) -> None:
        """Grouping does not matter."""
        a, b, c = {0: 1}, {0: 2, 1: 3}, {1: 1, 2: 7}

        assert add_histograms(add_histograms(a, b), c) == add_histograms(a, add_histograms(b, c))

    def test_sum_of_no_histograms_is_empty(self) -> None:
        """Folding over nothing yields the empty histogram."""
        assert sum_histograms([]) == {}

    def test_sum_of_many(self) -> None:
        """sum_histograms folds add_histograms."""
        assert sum_histograms([{0: 1}, {1: 2}, {0: 3, 1: 1}]) == {0: 4, 1: 3}


class TestSmoothHistogram:
    """Tests for add-one smoothing."""

    def test_adds_one_to_every_outcome(self) -> None:
        """Unseen outcomes get count 1; seen outcomes get one more."""
        assert smooth_histogram({1: 3}, [0, 1, 2]) == {0: 1, 1: 4, 2: 1}

    def test_empty_histogram_becomes_uniform(self) -> None:
        """A node that saw no data smooths to a uniform histogram."""
        assert smooth_histogram({}, [0, 1]) == {0: 1, 1: 1}


class TestOutcomeDistribution:
    """Tests for OutcomeDistribution."""

    def test_from_histogram(self) -> None:
        """from_histogram normalizes the counts."""
        distribution = OutcomeDistribution.from_histogram({0: 3, 1: 1})

        with check:
            assert distribution.probability(0) == pytest.approx(0.75)
        with check:
            assert distribution.probability(1) == pytest.approx(0.25)

    def test_probability_of_unknown_outcome_is_zero(self) -> None:
        """Outcomes outside the support have probability 0."""
        assert OutcomeDistribution(dist={0: 1.0}).probability(9) == 0.0

    def test_best_outcome(self) -> None:
        """The mode is the most probable outcome."""
        assert OutcomeDistribution(dist={0: 0.2, 1: 0.5, 2: 0.3}).best_outcome() == 1

    def test_best_outcome_ties_prefer_smallest(self) -> None:
        """Ties go to the smallest outcome regardless of insertion order."""
        assert OutcomeDistribution(dist={2: 0.4, 1: 0.4, 0: 0.2}).best_outcome() == 1

    def test_best_outcome_of_empty_distribution_raises(self) -> None:
        """An empty distribution has no mode."""
        with pytest.raises(EmptyHistogramError):
            OutcomeDistribution(dist={}).best_outcome()
