"""Classify vectors of named features with integer-indexed classifiers.

Callers describe an example as a mapping from feature name to value. The
wrapper assigns each name an integer index at training time, keeps the part
of that index the trained classifier actually consults, and translates named
vectors into binary `SparseVector`s when classifying: a named feature is
present when its value is nonzero.
"""

from __future__ import annotations

from collections.abc import Mapping
from functools import cached_property
from pathlib import Path

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from polyforest.decision_tree.classifier import ProbabilisticClassifierTrainer
from polyforest.decision_tree.distribution import OutcomeDistribution
from polyforest.decision_tree.forest import RandomForest
from polyforest.decision_tree.models import (
    DecisionTree,
    DecisionTreeJustification,
    Justification,
    RandomForestJustification,
)
from polyforest.features import ClassificationTask, InMemoryFeatureVectorSource, SparseVector
from polyforest.logging import TRAINING_LEVEL

type FeatureName = str
type NamedFeatureVector = Mapping[FeatureName, float]

WRAPPER_TASK_NAME = "basic"


def create_dt_feature_vector(
    feature_vector: NamedFeatureVector,
    feature_name_to_index: Mapping[FeatureName, int],
    outcome: int | None = None,
) -> SparseVector:
    """Translate a named feature vector into a binary integer-indexed vector.

    Names with a nonzero value that appear in `feature_name_to_index` become
    present features; every other name is ignored.

    Args:
        feature_vector (NamedFeatureVector): Feature name to value.
        feature_name_to_index (Mapping[FeatureName, int]): Feature name to index.
        outcome (int | None): Known outcome, if any.

    Returns:
        SparseVector: A vector sized one past the largest known index.

    Examples:
        >>> vector = create_dt_feature_vector({"a": 1.0, "b": 0.0, "z": 2.0}, {"a": 0, "b": 3})
        >>> vector.nonzero_features(), vector.num_features
        ({0: 1}, 4)
    """
    true_attributes = {
        feature_name_to_index[name]
        for name, value in feature_vector.items()
        if value != 0 and name in feature_name_to_index
    }
    num_features = max(feature_name_to_index.values(), default=-1) + 1
    return SparseVector.from_true_attributes(sorted(true_attributes), num_features=num_features, outcome=outcome)


class TrainingData(BaseModel):
    """Named feature vectors paired with their outcomes.

    Attributes:
        labeled_vectors (list[tuple[dict[FeatureName, float], int]]): The
            training examples.
    """

    model_config = ConfigDict(frozen=True)

    labeled_vectors: list[tuple[dict[FeatureName, float], int]] = Field(description="The training examples.")

    @property
    def feature_names(self) -> tuple[FeatureName, ...]:
        """Every feature name in the data, in first-seen order."""
        return tuple(dict.fromkeys(name for vector, _ in self.labeled_vectors for name in vector))


class WrapperClassifier(BaseModel):
    """A trained classifier together with the names of the features it consults.

    Attributes:
        classifier (DecisionTree | RandomForest): The integer-indexed classifier.
        feature_name_map (list[tuple[int, FeatureName]]): Feature index and
            name of each feature the classifier consults.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    classifier: DecisionTree | RandomForest = Field(description="The integer-indexed classifier.")
    feature_name_map: list[tuple[int, FeatureName]] = Field(
        default_factory=list,
        description="Index and name of each feature the classifier consults.",
    )

    @cached_property
    def feature_name_to_index(self) -> dict[FeatureName, int]:
        """Feature name to index; the inverse of `feature_name_map`."""
        return {name: index for index, name in self.feature_name_map}

    @cached_property
    def feature_names_by_index(self) -> dict[int, FeatureName]:
        """Feature index to name."""
        return dict(self.feature_name_map)

    def _to_dt_vector(self, feature_vector: NamedFeatureVector) -> SparseVector:
        return create_dt_feature_vector(feature_vector, self.feature_name_to_index)

    def classify(self, feature_vector: NamedFeatureVector) -> int:
        """Return the most probable outcome of a named feature vector."""
        outcome, _ = self.classifier.classify(self._to_dt_vector(feature_vector))
        return outcome

    def get_distribution(self, feature_vector: NamedFeatureVector) -> dict[int, float]:
        """Return the probability of every outcome for a named feature vector."""
        return dict(self.classifier.outcome_distribution(self._to_dt_vector(feature_vector)).dist)

    def classify_and_justify(self, feature_vector: NamedFeatureVector) -> tuple[int, str]:
        """Return the most probable outcome and a readable justification.

        Args:
            feature_vector (NamedFeatureVector): Feature name to value.

        Returns:
            tuple[int, str]: The outcome and its rendered justification.
        """
        outcome, justification = self.classifier.classify(self._to_dt_vector(feature_vector))
        return outcome, self.pretty_print_justification(justification)

    def get_distribution_with_justification(
        self, feature_vector: NamedFeatureVector
    ) -> tuple[OutcomeDistribution, Justification]:
        """Return the outcome distribution together with its justification."""
        return self.classifier.outcome_distribution_with_justification(self._to_dt_vector(feature_vector))

    def explain_decision_tree_justification(
        self, justification: DecisionTreeJustification
    ) -> dict[FeatureName, int]:
        """Map each decision on the justification's path to `feature name -> value`.

        Args:
            justification (DecisionTreeJustification): A decision tree justification.

        Returns:
            dict[FeatureName, int]: The followed value of each named feature,
                in root-to-node order.
        """
        return {
            self.feature_names_by_index.get(decision.feature, str(decision.feature)): decision.feature_value
            for decision in justification.decisions
        }

    def explain_random_forest_justification(
        self, justification: RandomForestJustification
    ) -> list[dict[FeatureName, int]]:
        """Explain the path of every tree that voted for the winning outcome."""
        return [
            self.explain_decision_tree_justification(tree_justification)
            for tree_justification in justification.decision_tree_justifications
        ]

    def pretty_print_justification(self, justification: Justification) -> str:
        """Render a justification of either kind with feature names."""
        return justification.pretty_print(self.feature_names_by_index)


class WrapperClassifierTrainer:
    """Trains a `WrapperClassifier` from named training data.

    Examples:
        >>> from polyforest.decision_tree.fitting import DecisionTreeTrainer
        >>> data = TrainingData(labeled_vectors=[({"noun": 1.0}, 1), ({"verb": 1.0}, 0)])
        >>> wrapper = WrapperClassifierTrainer(DecisionTreeTrainer(seed=0))(data)
        >>> wrapper.classify({"noun": 1.0})
        1
    """

    def __init__(self, classifier_trainer: ProbabilisticClassifierTrainer) -> None:
        """Initialize the trainer.

        Args:
            classifier_trainer (ProbabilisticClassifierTrainer): Trainer of the
                underlying classifier. It must produce a `DecisionTree` or a
                `RandomForest`.
        """
        self.classifier_trainer = classifier_trainer

    def __call__(self, training_data: TrainingData) -> WrapperClassifier:
        """Index the feature names, train the classifier, and wrap it.

        Args:
            training_data (TrainingData): Named training examples.

        Returns:
            WrapperClassifier: The wrapped classifier, naming only the features
                it consults.
        """
        feature_names = training_data.feature_names
        feature_name_to_index = {name: index for index, name in enumerate(feature_names)}
        source = InMemoryFeatureVectorSource(
            [
                create_dt_feature_vector(vector, feature_name_to_index, outcome)
                for vector, outcome in training_data.labeled_vectors
            ],
            ClassificationTask(name=WRAPPER_TASK_NAME),
        )
        logger.log(
            TRAINING_LEVEL,
            "Wrapper training data indexed",
            num_vectors=source.num_vectors,
            num_features=len(feature_names),
        )
        classifier = self.classifier_trainer(source)
        used_features = classifier.all_features()
        feature_name_map = [(index, name) for index, name in enumerate(feature_names) if index in used_features]
        return WrapperClassifier(classifier=classifier, feature_name_map=feature_name_map)  # type: ignore[arg-type]


def load_wrapper_classifier(path: str | Path) -> WrapperClassifier:
    """Read a wrapper classifier written by `save_classifier`.

    Args:
        path (str | Path): The JSON file.

    Returns:
        WrapperClassifier: The validated wrapper.
    """
    return WrapperClassifier.model_validate_json(Path(path).read_text(encoding="utf-8"))
