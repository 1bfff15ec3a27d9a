"""Protocols for probabilistic classifiers and the trainers that induce them.

`DecisionTree` and `RandomForest` both satisfy `ProbabilisticClassifier`;
`DecisionTreeTrainer`, `RandomForestTrainer` and `OmnibusTrainer` satisfy
`ProbabilisticClassifierTrainer`. Classification is a pure function of the
immutable classifier, so one classifier may serve any number of concurrent
callers without locking.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from polyforest.decision_tree.distribution import OutcomeDistribution
from polyforest.decision_tree.models import Justification
from polyforest.features import FeatureVector, FeatureVectorSource


@runtime_checkable
class ProbabilisticClassifier(Protocol):
    """Protocol for classifiers producing outcome distributions and justifications."""

    def classify(self, feature_vector: FeatureVector) -> tuple[int, Justification]:
        """Return the most probable outcome and why it was chosen.

        Args:
            feature_vector (FeatureVector): The vector to classify.

        Returns:
            tuple[int, Justification]: The outcome and its justification.
        """
        ...

    def outcome_distribution(self, feature_vector: FeatureVector) -> OutcomeDistribution:
        """Return a probability distribution over every outcome.

        Args:
            feature_vector (FeatureVector): The vector to classify.

        Returns:
            OutcomeDistribution: The distribution.
        """
        ...

    def outcome_distribution_with_justification(
        self, feature_vector: FeatureVector
    ) -> tuple[OutcomeDistribution, Justification]:
        """Return the outcome distribution together with its justification.

        Args:
            feature_vector (FeatureVector): The vector to classify.

        Returns:
            tuple[OutcomeDistribution, Justification]: The distribution and its justification.
        """
        ...

    def all_features(self) -> set[int]:
        """Return every feature index the classifier consults."""
        ...


@runtime_checkable
class ProbabilisticClassifierTrainer(Protocol):
    """Protocol for trainers inducing a classifier from a feature vector source."""

    def __call__(self, source: FeatureVectorSource) -> ProbabilisticClassifier:
        """Induce a classifier from the labeled vectors of `source`.

        Args:
            source (FeatureVectorSource): The training data.

        Returns:
            ProbabilisticClassifier: The induced classifier.
        """
        ...
