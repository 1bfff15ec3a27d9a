"""Information gain metrics used to choose decision tree splits.

A metric scores how much a candidate split of a node's training vectors
improves the purity of their outcomes. Counts are numpy arrays indexed by
outcome position. A split is only made when its gain exceeds the metric's
`minimum_gain`.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

import numpy as np
from pydantic import BaseModel, ConfigDict, Field


@runtime_checkable
class InformationGainMetric(Protocol):
    """Protocol for split-scoring metrics."""

    @property
    def minimum_gain(self) -> float:
        """Gain a split must exceed to be made."""
        ...

    def gain(self, parent_counts: np.ndarray, child_counts: Sequence[np.ndarray]) -> float:
        """Score splitting `parent_counts` into `child_counts`.

        Args:
            parent_counts (np.ndarray): Outcome counts at the node.
            child_counts (Sequence[np.ndarray]): Outcome counts of each child;
                they sum to `parent_counts`.

        Returns:
            float: The gain; larger is better.
        """
        ...


class EntropyGainMetric(BaseModel):
    """Information gain in bits per training vector.

    `H(parent) - sum(n_child / n_parent * H(child))` with Shannon entropy `H`.

    Attributes:
        minimum_gain (float): Gain a split must exceed to be made.

    Examples:
        >>> metric = EntropyGainMetric(minimum_gain=0.0)
        >>> metric.gain(np.array([2, 2]), [np.array([2, 0]), np.array([0, 2])])
        1.0
    """

    model_config = ConfigDict(frozen=True)

    minimum_gain: float = Field(default=0.0, ge=0.0, description="Gain a split must exceed to be made.")

    def gain(self, parent_counts: np.ndarray, child_counts: Sequence[np.ndarray]) -> float:
        """Return the entropy reduction, in bits, of the split."""
        total = parent_counts.sum()
        if total == 0:
            return 0.0
        weighted_child_entropy = sum(counts.sum() / total * _entropy_bits(counts) for counts in child_counts)
        return float(_entropy_bits(parent_counts) - weighted_child_entropy)


class MultinomialGainMetric(BaseModel):
    """Total log-likelihood gain, in nats, of modelling each child separately.

    Equals the number of training vectors at the node times the information
    gain in nats, so larger nodes need proportionally stronger evidence to be
    rejected by `minimum_gain`.

    Attributes:
        minimum_gain (float): Gain a split must exceed to be made.
    """

    model_config = ConfigDict(frozen=True)

    minimum_gain: float = Field(default=0.0, ge=0.0, description="Gain a split must exceed to be made.")

    def gain(self, parent_counts: np.ndarray, child_counts: Sequence[np.ndarray]) -> float:
        """Return the log-likelihood gain, in nats, of the split."""
        children_log_likelihood = sum(_log_likelihood(counts) for counts in child_counts)
        return float(children_log_likelihood - _log_likelihood(parent_counts))


def _entropy_bits(counts: np.ndarray) -> float:
    """Shannon entropy, in bits, of the distribution given by `counts`."""
    total = counts.sum()
    if total == 0:
        return 0.0
    probabilities = counts[counts > 0] / total
    return float(-np.sum(probabilities * np.log2(probabilities)))


def _log_likelihood(counts: np.ndarray) -> float:
    """Maximum-likelihood multinomial log-likelihood, in nats, of `counts`."""
    total = counts.sum()
    if total == 0:
        return 0.0
    observed = counts[counts > 0].astype(np.float64)
    return float(np.sum(observed * np.log(observed / total)))
