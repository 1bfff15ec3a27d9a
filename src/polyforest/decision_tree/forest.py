"""Random forest: an immutable ensemble of decision trees voting by histogram."""

from __future__ import annotations

from typing import Self

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, model_validator
from pydantic.alias_generators import to_camel

from polyforest.decision_tree.distribution import OutcomeDistribution, sum_histograms
from polyforest.decision_tree.models import DecisionTree, RandomForestJustification, TreeVote
from polyforest.exceptions import InvalidConfigurationError
from polyforest.features import FeatureVector


class RandomForest(BaseModel):
    """An ensemble of decision trees sharing one outcome universe.

    Each tree contributes its add-one smoothed histogram at the node the
    vector reaches. The histograms are summed and normalized once, so trees
    that saw more training vectors at the reached node weigh more, and the
    result does not depend on the order of the trees.

    Attributes:
        all_outcomes (list[int]): Every possible outcome.
        decision_trees (list[DecisionTree]): The member trees; at least one.

    Examples:
        >>> tree = DecisionTree(
        ...     outcomes=[0, 1],
        ...     child=[{0: 1, 1: 2}, {}, {}],
        ...     splitting_feature=[0, None, None],
        ...     outcome_histograms=[{0: 2, 1: 2}, {0: 2}, {1: 2}],
        ... )
        >>> forest = RandomForest(all_outcomes=[0, 1], decision_trees=[tree])
        >>> from polyforest.features import SparseVector
        >>> forest.outcome_distribution(SparseVector(num_features=1)).best_outcome()
        0
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    all_outcomes: list[NonNegativeInt] = Field(description="Every possible outcome.")
    decision_trees: list[DecisionTree] = Field(description="The member trees.")

    @model_validator(mode="after")
    def _validate_has_trees(self) -> Self:
        """Reject an ensemble without trees or with trees over other outcomes.

        Returns:
            RandomForest: The validated instance.

        Raises:
            InvalidConfigurationError: If `decision_trees` is empty, or a tree's
                outcomes differ from `all_outcomes`.
        """
        if not self.decision_trees:
            raise InvalidConfigurationError(
                "A random forest needs at least one decision tree",
                parameter="decision_trees",
                value=self.decision_trees,
            )
        expected = set(self.all_outcomes)
        for index, tree in enumerate(self.decision_trees):
            if set(tree.outcomes) != expected:
                raise InvalidConfigurationError(
                    f"Decision tree {index} has outcomes {sorted(set(tree.outcomes))}, "
                    f"but the forest's outcomes are {sorted(expected)}",
                    parameter="decision_trees",
                    value=tree.outcomes,
                )
        return self

    def classify(self, feature_vector: FeatureVector) -> tuple[int, RandomForestJustification]:
        """Return the forest's most probable outcome and the trees that voted for it.

        Args:
            feature_vector (FeatureVector): The vector to classify.

        Returns:
            tuple[int, RandomForestJustification]: The outcome (smallest on
                ties) and its justification.
        """
        _, justification = self.outcome_distribution_with_justification(feature_vector)
        return justification.winning_outcome, justification

    def outcome_distribution(self, feature_vector: FeatureVector) -> OutcomeDistribution:
        """Return the histogram-weighted vote of every tree as a distribution."""
        return OutcomeDistribution.from_histogram(
            sum_histograms(tree.smoothed_histogram(tree.find_decision_point(feature_vector)) for tree in self.decision_trees)
        )

    def outcome_distribution_with_justification(
        self, feature_vector: FeatureVector
    ) -> tuple[OutcomeDistribution, RandomForestJustification]:
        """Return the forest distribution together with the trees supporting its mode.

        A tree supports the winning outcome when its own smoothed distribution
        at the reached node has that outcome as its mode. The most convincing
        supporting tree is the one whose reached node diverges most from its
        root distribution.

        Args:
            feature_vector (FeatureVector): The vector to classify.

        Returns:
            tuple[OutcomeDistribution, RandomForestJustification]: The
                distribution and its justification.
        """
        nodes = [tree.find_decision_point(feature_vector) for tree in self.decision_trees]
        histograms = [tree.smoothed_histogram(node) for tree, node in zip(self.decision_trees, nodes, strict=True)]
        distribution = OutcomeDistribution.from_histogram(sum_histograms(histograms))
        winning_outcome = distribution.best_outcome()

        tree_votes = tuple(
            TreeVote(
                tree=index,
                justification=tree.justification_for(node),
                divergence_score=tree.divergence_score(node),
            )
            for index, (tree, node) in enumerate(zip(self.decision_trees, nodes, strict=True))
            if tree.node_distribution(node).best_outcome() == winning_outcome
        )
        most_convincing = min(tree_votes, key=lambda vote: (-vote.divergence_score, vote.tree), default=None)

        justification = RandomForestJustification(
            total_tree_count=len(self.decision_trees),
            winning_outcome=winning_outcome,
            tree_votes=tree_votes,
            most_convincing_tree=most_convincing.tree if most_convincing is not None else None,
        )
        return distribution, justification

    def all_features(self) -> set[int]:
        """Return every feature that some member tree splits on."""
        return set().union(*(tree.all_features() for tree in self.decision_trees))
