"""Decision tree induction and classifier evaluation."""

from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass, field
from typing import Final, NamedTuple

import numpy as np
from loguru import logger
from sklearn.metrics import accuracy_score, log_loss

from polyforest.decision_tree.classifier import ProbabilisticClassifier
from polyforest.decision_tree.gain import EntropyGainMetric, InformationGainMetric
from polyforest.decision_tree.models import DecisionTree
from polyforest.exceptions import InvalidConfigurationError
from polyforest.features import FeatureVectorSource

# ---------------------------------------------------------------------------
# Module-level constants
# ---------------------------------------------------------------------------

_MIN_NODE_SIZE_FLOOR: Final[int] = 1  # Smallest accepted `minimum_node_size`.
_GAIN_TOLERANCE: Final[float] = 1e-12  # Float rounding of an uninformative split stays below this.

type Seed = int | np.random.SeedSequence | None


class TrainingMatrix(NamedTuple):
    """A feature vector source materialized as numpy arrays.

    Attributes:
        feature_matrix (np.ndarray): `(n_vectors, n_features)` int64 feature values.
        outcome_positions (np.ndarray): `(n_vectors,)` position of each vector's
            outcome in `outcomes`.
        outcomes (tuple[int, ...]): The outcome universe, ascending.
    """

    feature_matrix: np.ndarray
    outcome_positions: np.ndarray
    outcomes: tuple[int, ...]


# ---------------------------------------------------------------------------
# Public interface -- Materialization
# ---------------------------------------------------------------------------


def materialize_source(source: FeatureVectorSource) -> TrainingMatrix:
    """Read every labeled vector of `source` into dense numpy arrays.

    Args:
        source (FeatureVectorSource): The training data.

    Returns:
        TrainingMatrix: The materialized vectors.

    Raises:
        InvalidConfigurationError: If the source has no vectors, no outcomes,
            or a vector without a known outcome.
    """
    outcomes = tuple(source.all_outcomes)
    if not outcomes:
        raise InvalidConfigurationError(
            f"Source for task '{source.classification_task.name}' declares no outcomes",
            parameter="all_outcomes",
            value=outcomes,
        )
    vectors = list(source.iter_vectors())
    if not vectors:
        raise InvalidConfigurationError(
            f"Source for task '{source.classification_task.name}' has no training vectors",
            parameter="source",
            value=source,
        )

    position_of = {outcome: position for position, outcome in enumerate(outcomes)}
    num_features = source.num_features
    feature_matrix = np.zeros((len(vectors), num_features), dtype=np.int64)
    outcome_positions = np.empty(len(vectors), dtype=np.int64)
    for row, vector in enumerate(vectors):
        if vector.outcome not in position_of:
            raise InvalidConfigurationError(
                f"Vector {row} has outcome {vector.outcome!r}, which is not one of {list(outcomes)}",
                parameter="source",
                value=vector.outcome,
            )
        outcome_positions[row] = position_of[vector.outcome]
        for index, value in vector.nonzero_features().items():
            if index < num_features:
                feature_matrix[row, index] = value
    return TrainingMatrix(feature_matrix, outcome_positions, outcomes)


# ---------------------------------------------------------------------------
# Public interface -- Tree induction
# ---------------------------------------------------------------------------


class DecisionTreeTrainer:
    """Induces a `DecisionTree` from a feature vector source.

    The tree is grown breadth-first. At every node a random subset of the
    features is examined and the one with the highest gain is chosen, the
    smallest feature index winning ties. The node gets one child per distinct
    value of that feature among its training vectors. Growth stops at pure
    nodes, nodes smaller than `minimum_node_size`, nodes at `maximum_depth`,
    and nodes where no examined feature gains more than the metric's
    `minimum_gain`.

    When `validation_fraction > 0`, that share of the vectors is held out and
    used for reduced-error pruning: working bottom-up, an internal node reached
    by at least one held-out vector becomes a leaf when doing so does not
    increase the number of misclassified held-out vectors.

    Training is deterministic for a fixed seed.

    Examples:
        >>> from polyforest.features import ClassificationTask, DenseVector, InMemoryFeatureVectorSource
        >>> source = InMemoryFeatureVectorSource(
        ...     [DenseVector(values=(value,), outcome=value) for value in (0, 1, 0, 1)],
        ...     ClassificationTask(name="basic"),
        ... )
        >>> tree = DecisionTreeTrainer(seed=0)(source)
        >>> tree.splitting_feature
        [0, None, None]
    """

    def __init__(
        self,
        validation_fraction: float = 0.0,
        gain_metric: InformationGainMetric | None = None,
        features_examined_per_node: float = 1.0,
        *,
        maximum_depth: int | None = None,
        use_bagging: bool = False,
        minimum_node_size: int = 2,
        seed: int | None = None,
    ) -> None:
        """Initialize the trainer.

        Args:
            validation_fraction (float): Share of vectors held out for pruning,
                in `[0, 1)`.
            gain_metric (InformationGainMetric | None): Split-scoring metric.
                Defaults to `EntropyGainMetric(minimum_gain=0.0)`.
            features_examined_per_node (float): Share of features examined at
                each node, in `[0, 1]`.
            maximum_depth (int | None): Maximum depth; `None` for unlimited.
            use_bagging (bool): Train on a bootstrap resample of the vectors.
            minimum_node_size (int): Nodes with fewer training vectors are not split.
            seed (int | None): Default random seed.

        Raises:
            InvalidConfigurationError: If any hyperparameter is out of range.
        """
        if not 0.0 <= validation_fraction < 1.0:
            raise InvalidConfigurationError(
                f"validation_fraction must be in [0, 1), got {validation_fraction}",
                parameter="validation_fraction",
                value=validation_fraction,
            )
        if not 0.0 <= features_examined_per_node <= 1.0:
            raise InvalidConfigurationError(
                f"features_examined_per_node = {features_examined_per_node}, which is not between 0 and 1",
                parameter="features_examined_per_node",
                value=features_examined_per_node,
            )
        if maximum_depth is not None and maximum_depth < 0:
            raise InvalidConfigurationError(
                f"maximum_depth must be non-negative, got {maximum_depth}",
                parameter="maximum_depth",
                value=maximum_depth,
            )
        if minimum_node_size < _MIN_NODE_SIZE_FLOOR:
            raise InvalidConfigurationError(
                f"minimum_node_size must be at least {_MIN_NODE_SIZE_FLOOR}, got {minimum_node_size}",
                parameter="minimum_node_size",
                value=minimum_node_size,
            )
        self.validation_fraction = validation_fraction
        self.gain_metric: InformationGainMetric = gain_metric or EntropyGainMetric(minimum_gain=0.0)
        self.features_examined_per_node = features_examined_per_node
        self.maximum_depth = maximum_depth
        self.use_bagging = use_bagging
        self.minimum_node_size = minimum_node_size
        self.seed = seed

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(validation_fraction={self.validation_fraction}, "
            f"gain_metric={self.gain_metric!r}, features_examined_per_node={self.features_examined_per_node}, "
            f"maximum_depth={self.maximum_depth}, use_bagging={self.use_bagging})"
        )

    def __call__(self, source: FeatureVectorSource) -> DecisionTree:
        """Induce a decision tree from `source` using the trainer's seed."""
        return self.train(source)

    def train(self, source: FeatureVectorSource, *, seed: Seed = None) -> DecisionTree:
        """Induce a decision tree from `source`.

        Args:
            source (FeatureVectorSource): The training data.
            seed (Seed): Random seed overriding the trainer's default.

        Returns:
            DecisionTree: The induced tree.
        """
        return self.train_materialized(materialize_source(source), seed=seed)

    def train_materialized(self, data: TrainingMatrix, *, seed: Seed = None) -> DecisionTree:
        """Induce a decision tree from already materialized training data.

        Args:
            data (TrainingMatrix): The materialized training data.
            seed (Seed): Random seed overriding the trainer's default.

        Returns:
            DecisionTree: The induced tree.
        """
        rng = np.random.default_rng(seed if seed is not None else self.seed)
        validation_rows, training_rows = self._partition_rows(len(data.outcome_positions), rng)

        nodes = self._grow(data, training_rows, rng)
        num_pruned = _prune(nodes, data, validation_rows) if len(validation_rows) > 0 else 0
        tree = _assemble_tree(nodes, data.outcomes)
        logger.debug(
            "Decision tree induced",
            num_nodes=tree.num_nodes,
            num_pruned=num_pruned,
            num_training=len(training_rows),
            num_validation=len(validation_rows),
        )
        return tree

    def _partition_rows(self, num_vectors: int, rng: np.random.Generator) -> tuple[np.ndarray, np.ndarray]:
        """Split row ids into held-out validation rows and training rows.

        The hold-out is drawn from the distinct rows first; bagging then
        resamples only the remaining rows, so no validation row is ever
        trained on.

        Args:
            num_vectors (int): Number of materialized vectors.
            rng (np.random.Generator): Source of shuffling and resampling.

        Returns:
            tuple[np.ndarray, np.ndarray]: Validation rows and training rows.
        """
        rows = np.arange(num_vectors)
        num_held_out = min(round(self.validation_fraction * num_vectors), num_vectors - 1)
        if num_held_out > 0:
            rows = rng.permutation(rows)
        validation_rows, training_rows = rows[:num_held_out], rows[num_held_out:]
        if self.use_bagging:
            training_rows = rng.choice(training_rows, size=len(training_rows), replace=True)
        return validation_rows, training_rows

    def _grow(self, data: TrainingMatrix, training_rows: np.ndarray, rng: np.random.Generator) -> list[_GrowingNode]:
        """Grow the unpruned tree breadth-first.

        Args:
            data (TrainingMatrix): The materialized training data.
            training_rows (np.ndarray): Rows used for growing.
            rng (np.random.Generator): Source of feature subsampling randomness.

        Returns:
            list[_GrowingNode]: Nodes indexed by id; node 0 is the root.
        """
        num_outcomes = len(data.outcomes)
        nodes = [_GrowingNode(rows=training_rows, depth=0)]
        queue: deque[int] = deque([0])
        while queue:
            node = nodes[queue.popleft()]
            node.counts = np.bincount(data.outcome_positions[node.rows], minlength=num_outcomes)
            if self._is_terminal(node):
                continue
            split = self._best_split(data, node, self._sample_features(rng, data.feature_matrix.shape[1]))
            if split is None:
                continue
            feature, values, value_positions = split
            node.feature = feature
            for position, value in enumerate(values):
                nodes.append(_GrowingNode(rows=node.rows[value_positions == position], depth=node.depth + 1))
                node.children[int(value)] = len(nodes) - 1
                queue.append(len(nodes) - 1)
        return nodes

    def _is_terminal(self, node: _GrowingNode) -> bool:
        """Whether growth stops at `node` before any split is examined."""
        return (
            np.count_nonzero(node.counts) <= 1
            or len(node.rows) < self.minimum_node_size
            or (self.maximum_depth is not None and node.depth >= self.maximum_depth)
        )

    def _sample_features(self, rng: np.random.Generator, num_features: int) -> np.ndarray:
        """Choose the features examined at one node, in ascending order."""
        num_examined = math.ceil(self.features_examined_per_node * num_features)
        if num_examined >= num_features:
            return np.arange(num_features)
        return np.sort(rng.choice(num_features, size=num_examined, replace=False))

    def _best_split(
        self,
        data: TrainingMatrix,
        node: _GrowingNode,
        candidate_features: np.ndarray,
    ) -> tuple[int, np.ndarray, np.ndarray] | None:
        """Find the examined feature with the highest gain above the metric's minimum.

        Args:
            data (TrainingMatrix): The materialized training data.
            node (_GrowingNode): The node being split.
            candidate_features (np.ndarray): Ascending feature indices to examine.

        Returns:
            tuple[int, np.ndarray, np.ndarray] | None: The chosen feature, its
                distinct values at the node, and each row's position among
                those values; `None` when no split qualifies.
        """
        num_outcomes = len(data.outcomes)
        node_outcomes = data.outcome_positions[node.rows]
        best: tuple[int, np.ndarray, np.ndarray] | None = None
        best_gain = self.gain_metric.minimum_gain
        for feature in candidate_features:
            values, value_positions = np.unique(data.feature_matrix[node.rows, feature], return_inverse=True)
            if len(values) < 2:
                continue
            child_counts = np.bincount(
                value_positions * num_outcomes + node_outcomes,
                minlength=len(values) * num_outcomes,
            ).reshape(len(values), num_outcomes)
            gain = self.gain_metric.gain(node.counts, list(child_counts))
            # Gains within rounding error of the best so far count as ties; the smallest feature index wins.
            if gain > best_gain + _GAIN_TOLERANCE:
                best_gain = gain
                best = (int(feature), values, value_positions)
        return best


# ---------------------------------------------------------------------------
# Public interface -- Evaluation
# ---------------------------------------------------------------------------


def evaluate_classifier(classifier: ProbabilisticClassifier, source: FeatureVectorSource) -> dict[str, float]:
    """Compute evaluation metrics for a classifier on labeled vectors.

    Args:
        classifier (ProbabilisticClassifier): The classifier to evaluate.
        source (FeatureVectorSource): Labeled evaluation vectors.

    Returns:
        dict[str, float]: `{"accuracy": ...}`, plus `"log_loss"` when the
            source declares at least two outcomes.

    Raises:
        InvalidConfigurationError: If the source has no vectors.
    """
    outcomes = list(source.all_outcomes)
    true_outcomes: list[int] = []
    predicted_outcomes: list[int] = []
    probabilities: list[list[float]] = []
    for vector in source.iter_vectors():
        distribution = classifier.outcome_distribution(vector)
        true_outcomes.append(vector.outcome)  # type: ignore[arg-type]
        predicted_outcomes.append(distribution.best_outcome())
        probabilities.append([distribution.probability(outcome) for outcome in outcomes])
    if not true_outcomes:
        raise InvalidConfigurationError(
            f"Cannot evaluate on task '{source.classification_task.name}': the source has no vectors",
            parameter="source",
            value=source,
        )

    metrics = {"accuracy": float(accuracy_score(true_outcomes, predicted_outcomes))}
    if len(outcomes) >= 2:
        metrics["log_loss"] = float(log_loss(true_outcomes, probabilities, labels=outcomes))
    return metrics


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


@dataclass
class _GrowingNode:
    """A mutable node of a tree under construction.

    Attributes:
        rows (np.ndarray): Training rows that reach this node.
        depth (int): Distance from the root.
        counts (np.ndarray): Outcome counts of `rows`, by outcome position.
        feature (int | None): The splitting feature; `None` for leaves.
        children (dict[int, int]): Feature value to child node id.
        pruned (bool): Whether the node was turned into a leaf by pruning.
    """

    rows: np.ndarray
    depth: int
    counts: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.int64))
    feature: int | None = None
    children: dict[int, int] = field(default_factory=dict)
    pruned: bool = False


def _prune(nodes: list[_GrowingNode], data: TrainingMatrix, validation_rows: np.ndarray) -> int:
    """Apply reduced-error pruning using held-out rows.

    Args:
        nodes (list[_GrowingNode]): Grown nodes; children always have larger ids
            than their parents.
        data (TrainingMatrix): The materialized training data.
        validation_rows (np.ndarray): Held-out rows.

    Returns:
        int: Number of internal nodes turned into leaves.
    """
    num_nodes = len(nodes)
    majority = [int(np.argmax(node.counts)) for node in nodes]
    reached = np.zeros(num_nodes, dtype=np.int64)
    errors_as_leaf = np.zeros(num_nodes, dtype=np.int64)
    errors_stopping_here = np.zeros(num_nodes, dtype=np.int64)

    for row in validation_rows:
        true_position = data.outcome_positions[row]
        node_id = 0
        while True:
            reached[node_id] += 1
            wrong = int(majority[node_id] != true_position)
            errors_as_leaf[node_id] += wrong
            node = nodes[node_id]
            next_id = node.children.get(int(data.feature_matrix[row, node.feature])) if node.feature is not None else None
            if next_id is None:
                errors_stopping_here[node_id] += wrong
                break
            node_id = next_id

    subtree_errors = errors_stopping_here.copy()
    num_pruned = 0
    # Children have larger ids than parents, so descending ids visit children first.
    for node_id in range(num_nodes - 1, -1, -1):
        node = nodes[node_id]
        if node.feature is None:
            continue
        subtree_errors[node_id] += sum(subtree_errors[child_id] for child_id in node.children.values())
        if reached[node_id] > 0 and errors_as_leaf[node_id] <= subtree_errors[node_id]:
            node.pruned = True
            subtree_errors[node_id] = errors_as_leaf[node_id]
            num_pruned += 1
    return num_pruned


def _assemble_tree(nodes: list[_GrowingNode], outcomes: tuple[int, ...]) -> DecisionTree:
    """Renumber the surviving nodes breadth-first and build the immutable tree.

    Args:
        nodes (list[_GrowingNode]): Grown (and possibly pruned) nodes.
        outcomes (tuple[int, ...]): The outcome universe, ascending.

    Returns:
        DecisionTree: The assembled tree.
    """
    child: list[dict[int, int]] = []
    splitting_feature: list[int | None] = []
    outcome_histograms: list[dict[int, int]] = []

    new_id = {0: 0}
    queue: deque[int] = deque([0])
    while queue:
        old_id = queue.popleft()
        node = nodes[old_id]
        outcome_histograms.append({
            outcomes[position]: int(count) for position, count in enumerate(node.counts) if count > 0
        })
        if node.feature is None or node.pruned:
            child.append({})
            splitting_feature.append(None)
            continue
        children: dict[int, int] = {}
        for value in sorted(node.children):
            old_child = node.children[value]
            new_id[old_child] = len(new_id)
            children[value] = new_id[old_child]
            queue.append(old_child)
        child.append(children)
        splitting_feature.append(node.feature)

    return DecisionTree(
        outcomes=list(outcomes),
        child=child,
        splitting_feature=splitting_feature,
        outcome_histograms=outcome_histograms,
    )
