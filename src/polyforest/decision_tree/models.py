"""Decision tree model, decision paths, and classification justifications."""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from functools import cached_property
from graphlib import CycleError, TopologicalSorter
from typing import Annotated, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, model_validator
from pydantic.alias_generators import to_camel

from polyforest.decision_tree.distribution import OutcomeDistribution, normalize_histogram, smooth_histogram
from polyforest.exceptions import StructuralInvalidTreeError
from polyforest.features import FeatureVector

# ---------------------------------------------------------------------------
# Decision paths
# ---------------------------------------------------------------------------


class DTDecision(BaseModel):
    """A decision made at a decision tree node.

    Attributes:
        feature (int): The splitting feature at the node.
        feature_value (int): The value of the splitting feature that was followed.
    """

    model_config = ConfigDict(frozen=True)

    feature: int = Field(description="The splitting feature at the node.")
    feature_value: int = Field(description="The value of the splitting feature that was followed.")


class DTDecisionPath(BaseModel):
    """The sequence of decisions leading from the root to a node.

    Attributes:
        decisions (tuple[DTDecision, ...]): Decisions in root-to-node order.
    """

    model_config = ConfigDict(frozen=True)

    decisions: tuple[DTDecision, ...] = Field(default=(), description="Decisions in root-to-node order.")


# ---------------------------------------------------------------------------
# Justifications
# ---------------------------------------------------------------------------


class DecisionTreeJustification(BaseModel):
    """Why a decision tree chose its outcome: the node the vector reached.

    Attributes:
        kind (Literal["decision_tree"]): Discriminator; always `"decision_tree"`.
        node (int): The decision node reached by the classified vector.
        decisions (tuple[DTDecision, ...]): The decision path from the root to `node`.

    Examples:
        >>> justification = DecisionTreeJustification(
        ...     node=2,
        ...     decisions=(DTDecision(feature=0, feature_value=1),),
        ... )
        >>> justification.pretty_print({0: "stack1.pos=NN"})
        '[ stack1.pos=NN = 1 ]'
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["decision_tree"] = Field(default="decision_tree", description='Discriminator. Always "decision_tree".')
    node: int = Field(ge=0, description="The decision node reached by the classified vector.")
    decisions: tuple[DTDecision, ...] = Field(default=(), description="The decision path from the root to the node.")

    def pretty_print(self, feature_names: Mapping[int, str]) -> str:
        """Render the decision path as `[ name = value, ... ]`.

        Args:
            feature_names (Mapping[int, str]): Feature index to name. Unnamed
                features are shown by index.

        Returns:
            str: The rendered decision path.
        """
        rendered = ", ".join(
            f"{feature_names.get(decision.feature, str(decision.feature))} = {decision.feature_value}"
            for decision in self.decisions
        )
        return f"[ {rendered} ]"


class TreeVote(BaseModel):
    """A member tree of a forest that voted for the winning outcome.

    Attributes:
        tree (int): Index of the tree in the forest.
        justification (DecisionTreeJustification): The tree's own justification.
        divergence_score (float): Divergence score of the reached node.
    """

    model_config = ConfigDict(frozen=True)

    tree: int = Field(ge=0, description="Index of the tree in the forest.")
    justification: DecisionTreeJustification = Field(description="The tree's own justification.")
    divergence_score: float = Field(description="Divergence score of the node the tree reached.")


class RandomForestJustification(BaseModel):
    """Why a random forest chose its outcome: the trees that voted for it.

    Attributes:
        kind (Literal["random_forest"]): Discriminator; always `"random_forest"`.
        total_tree_count (int): Number of trees in the forest.
        winning_outcome (int): The outcome the forest chose.
        tree_votes (tuple[TreeVote, ...]): Trees whose own classification is the
            winning outcome, in forest order.
        most_convincing_tree (int | None): Index of the voting tree with the
            highest divergence score, or `None` when no tree voted for the
            winning outcome.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["random_forest"] = Field(default="random_forest", description='Discriminator. Always "random_forest".')
    total_tree_count: int = Field(ge=1, description="Number of trees in the forest.")
    winning_outcome: int = Field(description="The outcome the forest chose.")
    tree_votes: tuple[TreeVote, ...] = Field(default=(), description="Trees that voted for the winning outcome.")
    most_convincing_tree: int | None = Field(
        default=None,
        description="Index of the voting tree with the highest divergence score.",
    )

    @property
    def decision_tree_count_for_outcome(self) -> int:
        """Number of trees that voted for the winning outcome."""
        return len(self.tree_votes)

    @property
    def decision_tree_justifications(self) -> tuple[DecisionTreeJustification, ...]:
        """Justifications of the trees that voted for the winning outcome."""
        return tuple(vote.justification for vote in self.tree_votes)

    def pretty_print(self, feature_names: Mapping[int, str]) -> str:
        """Summarize the vote and render each voting tree's decision path.

        Args:
            feature_names (Mapping[int, str]): Feature index to name.

        Returns:
            str: Multi-line summary of the forest vote.
        """
        tree_paths = ",\n\n".join(vote.justification.pretty_print(feature_names) for vote in self.tree_votes)
        return (
            f"\nRandom Forest with {self.total_tree_count} trees, of which "
            f"{self.decision_tree_count_for_outcome} trees voted for the current outcome\n"
            f"Top {self.decision_tree_count_for_outcome} decision tree justification(s):\n"
            f"[\n{tree_paths}\n]\n"
        )


# Use this alias when accepting either justification; pydantic selects the model from `kind`.
type Justification = Annotated[
    DecisionTreeJustification | RandomForestJustification,
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Decision tree
# ---------------------------------------------------------------------------


class DecisionTree(BaseModel):
    """Immutable decision tree over integer-valued features and outcomes.

    Each field is a per-node table; element `i` describes node `i`, and node 0
    is the root. A node whose splitting feature is `None` is a leaf.

    Attributes:
        outcomes (list[int]): Every possible outcome.
        child (list[dict[int, int]]): For each node, feature value to child node id.
        splitting_feature (list[int | None]): For each node, the feature it splits on.
        outcome_histograms (list[dict[int, int]]): For each node, how many
            training vectors of each outcome reached it.

    Examples:
        >>> tree = DecisionTree(
        ...     outcomes=[0, 1],
        ...     child=[{0: 1, 1: 2}, {}, {}],
        ...     splitting_feature=[0, None, None],
        ...     outcome_histograms=[{0: 3, 1: 3}, {0: 3}, {1: 3}],
        ... )
        >>> from polyforest.features import SparseVector
        >>> outcome, justification = tree.classify(SparseVector.from_true_attributes([0], num_features=1))
        >>> outcome, justification.node
        (1, 2)
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    outcomes: list[NonNegativeInt] = Field(min_length=1, description="Every possible outcome.")
    child: list[dict[int, NonNegativeInt]] = Field(
        min_length=1,
        description="For each node, a map from feature value to child node id.",
    )
    splitting_feature: list[NonNegativeInt | None] = Field(
        description="For each node, the feature it splits on; None for leaves.",
    )
    outcome_histograms: list[dict[NonNegativeInt, NonNegativeInt]] = Field(
        description="For each node, the count of training vectors of each outcome that reached it.",
    )

    @model_validator(mode="after")
    def _validate_histogram_outcomes(self) -> Self:
        """Validate that histograms only count declared outcomes.

        Returns:
            DecisionTree: The validated instance.

        Raises:
            ValueError: If a histogram counts an outcome outside `outcomes`.
        """
        known = set(self.outcomes)
        for node, histogram in enumerate(self.outcome_histograms):
            unknown = sorted(set(histogram) - known)
            if unknown:
                raise ValueError(f"Node {node} histogram counts outcomes {unknown} outside outcomes={self.outcomes}")
        return self

    @model_validator(mode="after")
    def _validate_tree_structure(self) -> Self:
        """Validate that the node tables describe a single tree rooted at node 0.

        Returns:
            DecisionTree: The validated instance.

        Raises:
            StructuralInvalidTreeError: If the tables are inconsistent, or the
                child relation is not a tree rooted at node 0.
        """
        _sort_nodes_topologically(self.child, self.splitting_feature, self.outcome_histograms)
        return self

    # ------------------------------------------------------------------
    # Cached derived structure
    # ------------------------------------------------------------------

    @property
    def num_nodes(self) -> int:
        """Number of nodes in the tree."""
        return len(self.child)

    @cached_property
    def topological_order(self) -> tuple[int, ...]:
        """Node ids ordered so that every parent precedes its children; the root is first."""
        return _sort_nodes_topologically(self.child, self.splitting_feature, self.outcome_histograms)

    @cached_property
    def decision_paths(self) -> tuple[DTDecisionPath, ...]:
        """For each node, the decision path from the root to that node."""
        paths: dict[int, tuple[DTDecision, ...]] = {0: ()}
        for node in self.topological_order:
            feature = self.splitting_feature[node]
            for feature_value, child_node in self.child[node].items():
                # A node with children always has a splitting feature (checked at construction).
                paths[child_node] = (*paths[node], DTDecision(feature=feature, feature_value=feature_value))  # type: ignore[arg-type]
        return tuple(DTDecisionPath(decisions=paths[node]) for node in range(self.num_nodes))

    @cached_property
    def root_distribution(self) -> dict[int, float]:
        """Unsmoothed outcome distribution at the root; empty if the root saw no data."""
        return _normalize_or_empty(self.outcome_histograms[0])

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def find_decision_point(self, feature_vector: FeatureVector) -> int:
        """Find the node at which no child covers the feature vector.

        Starting at the root, follow the child keyed by the vector's value for
        the node's splitting feature until there is no such child.

        Args:
            feature_vector (FeatureVector): The vector to classify.

        Returns:
            int: The decision node reached by the vector.
        """
        node = 0
        while (next_node := self._select_child(node, feature_vector)) is not None:
            node = next_node
        return node

    def classify(self, feature_vector: FeatureVector) -> tuple[int, DecisionTreeJustification]:
        """Return the most probable outcome and the node that decided it.

        Args:
            feature_vector (FeatureVector): The vector to classify.

        Returns:
            tuple[int, DecisionTreeJustification]: The outcome (smallest on
                ties) and a justification naming the reached node.
        """
        distribution, justification = self.outcome_distribution_with_justification(feature_vector)
        return distribution.best_outcome(), justification

    def outcome_distribution(self, feature_vector: FeatureVector) -> OutcomeDistribution:
        """Return the add-one smoothed outcome distribution at the reached node.

        Args:
            feature_vector (FeatureVector): The vector to classify.

        Returns:
            OutcomeDistribution: Probability of every outcome; none is zero.
        """
        return self.node_distribution(self.find_decision_point(feature_vector))

    def outcome_distribution_with_justification(
        self, feature_vector: FeatureVector
    ) -> tuple[OutcomeDistribution, DecisionTreeJustification]:
        """Return the smoothed distribution together with the reached node.

        Args:
            feature_vector (FeatureVector): The vector to classify.

        Returns:
            tuple[OutcomeDistribution, DecisionTreeJustification]: The
                distribution and its justification.
        """
        node = self.find_decision_point(feature_vector)
        return self.node_distribution(node), self.justification_for(node)

    def outcome_histogram(self, feature_vector: FeatureVector) -> dict[int, int]:
        """Return the raw training histogram at the reached node."""
        return dict(self.outcome_histograms[self.find_decision_point(feature_vector)])

    def smoothed_histogram(self, node: int) -> dict[int, int]:
        """Return the add-one smoothed histogram of `node` over every outcome."""
        return smooth_histogram(self.outcome_histograms[node], self.outcomes)

    def node_distribution(self, node: int) -> OutcomeDistribution:
        """Return the add-one smoothed outcome distribution of `node`."""
        return OutcomeDistribution.from_histogram(self.smoothed_histogram(node))

    def justification_for(self, node: int) -> DecisionTreeJustification:
        """Build the justification naming `node` and its decision path."""
        return DecisionTreeJustification(node=node, decisions=self.decision_paths[node].decisions)

    def decision_path(self, node: int) -> DTDecisionPath:
        """Return the decision path from the root to `node`."""
        return self.decision_paths[node]

    def divergence_score(self, node: int) -> float:
        """Score how far a node's outcome distribution departs from the root's.

        Computed as `len(outcomes) * KL(node || root)` over unsmoothed
        distributions, summing only outcomes with nonzero probability in both.

        Args:
            node (int): The node to score.

        Returns:
            float: The divergence score; 0.0 for the root itself.
        """
        node_distribution = _normalize_or_empty(self.outcome_histograms[node])
        kl_divergence = sum(
            p * math.log(p / q)
            for outcome, q in self.root_distribution.items()
            if q != 0 and (p := node_distribution.get(outcome, 0.0)) != 0
        )
        return len(self.outcomes) * kl_divergence

    def all_features(self) -> set[int]:
        """Return every feature that some node splits on."""
        return {feature for feature in self.splitting_feature if feature is not None}

    def render(self, feature_names: Sequence[str], outcome_names: Sequence[str]) -> str:
        """Render the tree as indented text for binary features.

        Each internal node prints its feature name followed by its `1` branch
        and then its `0` branch; a missing branch prints `+` or `-`. Leaves
        print the name of their most probable outcome.

        Args:
            feature_names (Sequence[str]): Feature index to name.
            outcome_names (Sequence[str]): Outcome to name.

        Returns:
            str: The rendered tree, one node per line.
        """
        lines: list[str] = []
        stack: list[tuple[int | str, str]] = [(0, "")]
        while stack:
            item, tabbing = stack.pop()
            if isinstance(item, str):
                lines.append(tabbing + item)
                continue
            feature = self.splitting_feature[item]
            if feature is None:
                lines.append(tabbing + outcome_names[self.node_distribution(item).best_outcome()])
                continue
            lines.append(tabbing + feature_names[feature])
            children = self.child[item]
            branch_tabbing = tabbing + "  "
            # Pushed in reverse so the `1` branch is rendered first.
            stack.append((children.get(0, "-"), branch_tabbing))
            stack.append((children.get(1, "+"), branch_tabbing))
        return "\n".join(lines)

    def _select_child(self, node: int, feature_vector: FeatureVector) -> int | None:
        """Return the child of `node` covering the vector, if there is one."""
        feature = self.splitting_feature[node]
        if feature is None:
            return None
        return self.child[node].get(feature_vector.get_feature(feature))


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _normalize_or_empty(histogram: Mapping[int, int]) -> dict[int, float]:
    """Normalize a histogram, mapping an all-zero histogram to an empty distribution."""
    if sum(histogram.values()) <= 0:
        return {}
    return normalize_histogram(histogram)


def _sort_nodes_topologically(
    child: Sequence[Mapping[int, int]],
    splitting_feature: Sequence[int | None],
    outcome_histograms: Sequence[Mapping[int, int]],
) -> tuple[int, ...]:
    """Validate the node tables and return a root-first topological order.

    Args:
        child (Sequence[Mapping[int, int]]): Per-node feature value to child id.
        splitting_feature (Sequence[int | None]): Per-node splitting feature.
        outcome_histograms (Sequence[Mapping[int, int]]): Per-node histograms.

    Returns:
        tuple[int, ...]: Node ids with every parent before its children.

    Raises:
        StructuralInvalidTreeError: If the tables differ in length, a leaf has
            children, a child id is out of range, the root has a parent, a
            node has several parents, the child relation has a cycle, or a
            node is unreachable from the root.
    """
    num_nodes = len(child)
    if not (len(splitting_feature) == len(outcome_histograms) == num_nodes):
        msg = (
            f"Node tables must have equal lengths, got child={num_nodes}, "
            f"splitting_feature={len(splitting_feature)}, outcome_histograms={len(outcome_histograms)}"
        )
        raise StructuralInvalidTreeError(msg)

    parents: dict[int, set[int]] = {node: set() for node in range(num_nodes)}
    for node, children in enumerate(child):
        if splitting_feature[node] is None and children:
            raise StructuralInvalidTreeError(f"Leaf node {node} has children {sorted(children.values())}", node=node)
        for child_node in children.values():
            if not 0 <= child_node < num_nodes:
                raise StructuralInvalidTreeError(
                    f"Node {node} has child {child_node} outside [0, {num_nodes})",
                    node=node,
                )
            if child_node == 0:
                raise StructuralInvalidTreeError(f"Root node 0 is a child of node {node}", node=0)
            if parents[child_node]:
                raise StructuralInvalidTreeError(
                    f"Node {child_node} has more than one parent: {sorted(parents[child_node] | {node})}",
                    node=child_node,
                )
            parents[child_node].add(node)

    try:
        order = tuple(TopologicalSorter(parents).static_order())
    except CycleError as e:
        raise StructuralInvalidTreeError(f"Cycle detected in decision tree child relation: {e.args[1]}") from e

    orphans = [node for node in range(1, num_nodes) if not parents[node]]
    if orphans:
        raise StructuralInvalidTreeError(f"Nodes {orphans} are unreachable from the root", node=orphans[0])
    return order
