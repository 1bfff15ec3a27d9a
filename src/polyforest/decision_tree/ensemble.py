"""Parallel random forest training and task-based trainer routing."""

from __future__ import annotations

import tempfile
import time
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Final

import numpy as np
from loguru import logger

from polyforest.decision_tree.classifier import ProbabilisticClassifier, ProbabilisticClassifierTrainer
from polyforest.decision_tree.fitting import DecisionTreeTrainer, TrainingMatrix, materialize_source
from polyforest.decision_tree.forest import RandomForest
from polyforest.decision_tree.gain import EntropyGainMetric, InformationGainMetric
from polyforest.decision_tree.models import DecisionTree
from polyforest.decision_tree.persistence import load_decision_tree, stage_decision_tree
from polyforest.exceptions import InvalidConfigurationError, TrainingTimeoutError
from polyforest.features import ClassificationTask, FeatureVectorSource
from polyforest.logging import TRAINING_LEVEL
from polyforest.settings import STAGING_MODES, StagingMode, TrainerSettings

DECISION_TREE_TASK_PREFIX: Final[str] = "dt-"
STAGING_DIR_PREFIX: Final[str] = "polyforest-"


class RandomForestTrainer:
    """Trains the member trees of a random forest on a bounded thread pool.

    The training source is read once; every tree is then induced from the
    same materialized data with its own seed, spawned from a single
    `numpy.random.SeedSequence`. Trees are assembled in task order, so for a
    fixed seed the forest is the same whatever order the tasks finish in.

    Arguments left as `None` take their value from `TrainerSettings`.

    Examples:
        >>> trainer = RandomForestTrainer(0.0, 24, 0.1, EntropyGainMetric(minimum_gain=0.0), num_threads=6)
        >>> trainer.num_decision_trees, trainer.num_threads
        (24, 6)
    """

    def __init__(
        self,
        validation_fraction: float,
        num_decision_trees: int,
        features_examined_per_node: float,
        gain_metric: InformationGainMetric,
        *,
        use_bagging: bool = False,
        maximum_depth_per_tree: int | None = None,
        num_threads: int | None = None,
        timeout: float | None = None,
        staging: StagingMode | None = None,
        staging_dir: str | Path | None = None,
        seed: int | None = None,
        settings: TrainerSettings | None = None,
        tree_trainer: DecisionTreeTrainer | None = None,
    ) -> None:
        """Initialize the trainer.

        Args:
            validation_fraction (float): Share of vectors each tree holds out
                for pruning.
            num_decision_trees (int): Number of trees to train.
            features_examined_per_node (float): Share of features examined at
                each node, in `[0, 1]`.
            gain_metric (InformationGainMetric): Split-scoring metric.
            use_bagging (bool): Train each tree on a bootstrap resample.
            maximum_depth_per_tree (int | None): Depth limit for every tree.
            num_threads (int | None): Worker pool size.
            timeout (float | None): Seconds the whole build may take.
            staging (StagingMode | None): `"memory"` or `"disk"`.
            staging_dir (str | Path | None): Parent of the per-build staging
                directory when staging on disk.
            seed (int | None): Seed from which every tree seed is spawned.
            settings (TrainerSettings | None): Defaults for unset arguments.
                Read from the environment when `None`.
            tree_trainer (DecisionTreeTrainer | None): Trainer for the member
                trees. Built from the hyperparameters above when `None`; when
                given, its own hyperparameters must equal those above.

        Raises:
            InvalidConfigurationError: If a hyperparameter is out of range.
        """
        settings = settings or TrainerSettings()
        if num_decision_trees < 1:
            raise InvalidConfigurationError(
                f"num_decision_trees must be at least 1, got {num_decision_trees}",
                parameter="num_decision_trees",
                value=num_decision_trees,
            )
        self.num_decision_trees = num_decision_trees
        self.num_threads = num_threads if num_threads is not None else settings.num_threads
        if self.num_threads < 1:
            raise InvalidConfigurationError(
                f"num_threads must be at least 1, got {self.num_threads}",
                parameter="num_threads",
                value=self.num_threads,
            )
        self.timeout = timeout if timeout is not None else settings.training_timeout_seconds
        if self.timeout <= 0:
            raise InvalidConfigurationError(
                f"timeout must be positive, got {self.timeout}",
                parameter="timeout",
                value=self.timeout,
            )
        self.staging: StagingMode = staging or settings.staging
        if self.staging not in STAGING_MODES:
            raise InvalidConfigurationError(
                f"staging must be one of {list(STAGING_MODES)}, got {self.staging!r}",
                parameter="staging",
                value=self.staging,
            )
        self.staging_dir = Path(staging_dir) if staging_dir is not None else settings.staging_dir
        self.seed = seed
        configured = DecisionTreeTrainer(
            validation_fraction,
            gain_metric,
            features_examined_per_node,
            maximum_depth=maximum_depth_per_tree,
            use_bagging=use_bagging,
        )
        if tree_trainer is not None:
            _check_tree_trainer_agrees(tree_trainer, configured)
        self.tree_trainer = tree_trainer or configured

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(num_decision_trees={self.num_decision_trees}, "
            f"num_threads={self.num_threads}, staging={self.staging!r}, tree_trainer={self.tree_trainer!r})"
        )

    def __call__(self, source: FeatureVectorSource) -> RandomForest:
        """Induce a random forest from `source`.

        Args:
            source (FeatureVectorSource): The training data.

        Returns:
            RandomForest: A forest of `num_decision_trees` trees.

        Raises:
            TrainingTimeoutError: If the trees are not all trained within `timeout`.
        """
        data = materialize_source(source)
        tree_seeds = np.random.SeedSequence(self.seed).spawn(self.num_decision_trees)
        logger.log(
            TRAINING_LEVEL,
            "Random forest build started",
            task=source.classification_task.name,
            num_trees=self.num_decision_trees,
            num_threads=self.num_threads,
            num_vectors=len(data.outcome_positions),
            staging=self.staging,
        )
        start = time.perf_counter()
        if self.staging == "disk":
            with tempfile.TemporaryDirectory(
                prefix=STAGING_DIR_PREFIX,
                dir=self.staging_dir,
                ignore_cleanup_errors=True,
            ) as staging_dir:
                staged = self._run_tasks(data, tree_seeds, Path(staging_dir))
                trees = [load_decision_tree(path) for path in staged]  # type: ignore[arg-type]
        else:
            trees = self._run_tasks(data, tree_seeds, None)  # type: ignore[assignment]

        forest = RandomForest(all_outcomes=list(data.outcomes), decision_trees=trees)  # type: ignore[arg-type]
        logger.log(
            TRAINING_LEVEL,
            "Random forest build finished",
            task=source.classification_task.name,
            num_trees=len(forest.decision_trees),
            elapsed_seconds=round(time.perf_counter() - start, 3),
        )
        return forest

    def _run_tasks(
        self,
        data: TrainingMatrix,
        tree_seeds: list[np.random.SeedSequence],
        staging_dir: Path | None,
    ) -> list[DecisionTree | Path]:
        """Train every tree on the pool and collect the results in task order.

        Args:
            data (TrainingMatrix): The materialized training data.
            tree_seeds (list[np.random.SeedSequence]): One seed per tree.
            staging_dir (Path | None): Where to stage trees; `None` keeps them
                in memory.

        Returns:
            list[DecisionTree | Path]: The trees, or their staging files.

        Raises:
            TrainingTimeoutError: If the tasks do not finish within `timeout`.
        """
        executor = ThreadPoolExecutor(max_workers=self.num_threads, thread_name_prefix="polyforest")
        futures: list[Future[DecisionTree | Path]] = []
        try:
            futures = [
                executor.submit(self._train_one, data, index, tree_seed, staging_dir)
                for index, tree_seed in enumerate(tree_seeds)
            ]
            done, not_done = wait(futures, timeout=self.timeout, return_when=FIRST_EXCEPTION)
            failed = [future for future in futures if future in done and future.exception() is not None]
            if failed:
                error = failed[0].exception()
                logger.warning(
                    "Decision tree training failed; cancelling pending trees",
                    error=repr(error),
                    completed=len(done),
                    total=len(futures),
                )
                raise error  # type: ignore[misc]
            if not_done:
                logger.warning(
                    "Random forest build timed out; cancelling pending trees",
                    timeout=self.timeout,
                    completed=len(done),
                    total=len(futures),
                )
                msg = f"Trained {len(done)} of {len(futures)} decision trees within {self.timeout} seconds"
                raise TrainingTimeoutError(msg, timeout=self.timeout, completed=len(done), total=len(futures))
        except BaseException:
            executor.shutdown(wait=False, cancel_futures=True)
            raise
        executor.shutdown(wait=True)
        return [future.result() for future in futures]

    def _train_one(
        self,
        data: TrainingMatrix,
        index: int,
        tree_seed: np.random.SeedSequence,
        staging_dir: Path | None,
    ) -> DecisionTree | Path:
        """Train one member tree, staging it on disk when `staging_dir` is set."""
        tree = self.tree_trainer.train_materialized(data, seed=tree_seed)
        logger.debug("Decision tree trained", index=index, num_nodes=tree.num_nodes)
        if staging_dir is None:
            return tree
        return stage_decision_tree(tree, staging_dir, index)


class OmnibusTrainer:
    """Chooses a trainer by the name of the source's classification task.

    Tasks whose filename-friendly name starts with `dt-` go to `dt_trainer`;
    every other task goes to `rf_trainer`. Both default to a 24-tree forest
    examining a tenth of the features per node on 6 threads.

    Examples:
        >>> trainer = OmnibusTrainer()
        >>> trainer.select_trainer(ClassificationTask(name="DT arclabel")) is trainer.dt_trainer
        True
    """

    def __init__(
        self,
        dt_trainer: ProbabilisticClassifierTrainer | None = None,
        rf_trainer: ProbabilisticClassifierTrainer | None = None,
    ) -> None:
        """Initialize the trainer.

        Args:
            dt_trainer (ProbabilisticClassifierTrainer | None): Trainer for
                `dt-` tasks.
            rf_trainer (ProbabilisticClassifierTrainer | None): Trainer for
                every other task.
        """
        self.dt_trainer = dt_trainer or _default_forest_trainer()
        self.rf_trainer = rf_trainer or _default_forest_trainer()

    def select_trainer(self, classification_task: ClassificationTask) -> ProbabilisticClassifierTrainer:
        """Return the trainer responsible for `classification_task`."""
        if classification_task.filename_friendly_name.startswith(DECISION_TREE_TASK_PREFIX):
            return self.dt_trainer
        return self.rf_trainer

    def __call__(self, source: FeatureVectorSource) -> ProbabilisticClassifier:
        """Train a classifier with the trainer selected for the source's task.

        Args:
            source (FeatureVectorSource): The training data.

        Returns:
            ProbabilisticClassifier: The trained classifier.
        """
        trainer = self.select_trainer(source.classification_task)
        logger.log(
            TRAINING_LEVEL,
            "Routing classification task",
            task=source.classification_task.name,
            trainer=type(trainer).__name__,
            route="dt" if trainer is self.dt_trainer else "rf",
        )
        return trainer(source)


def _default_forest_trainer() -> RandomForestTrainer:
    return RandomForestTrainer(0.0, 24, 0.1, EntropyGainMetric(minimum_gain=0.0), num_threads=6)


_SHARED_TREE_HYPERPARAMETERS: Final[tuple[str, ...]] = (
    "validation_fraction",
    "gain_metric",
    "features_examined_per_node",
    "maximum_depth",
    "use_bagging",
)


def _check_tree_trainer_agrees(tree_trainer: DecisionTreeTrainer, configured: DecisionTreeTrainer) -> None:
    """Reject a member-tree trainer whose hyperparameters differ from the forest's.

    Args:
        tree_trainer (DecisionTreeTrainer): The trainer passed by the caller.
        configured (DecisionTreeTrainer): The trainer the forest's own
            hyperparameters describe.

    Raises:
        InvalidConfigurationError: If any shared hyperparameter differs.
    """
    conflicts = {
        name: (getattr(configured, name), getattr(tree_trainer, name))
        for name in _SHARED_TREE_HYPERPARAMETERS
        if getattr(configured, name) != getattr(tree_trainer, name)
    }
    if conflicts:
        details = ", ".join(f"{name}: forest={forest!r}, tree_trainer={tree!r}" for name, (forest, tree) in conflicts.items())
        raise InvalidConfigurationError(
            f"tree_trainer disagrees with the forest hyperparameters ({details})",
            parameter="tree_trainer",
            value=tree_trainer,
        )
