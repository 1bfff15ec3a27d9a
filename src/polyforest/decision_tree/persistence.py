"""JSON persistence for trained classifiers.

Classifiers are written with the camel-case field names of the serialized
format (`splittingFeature`, `outcomeHistograms`, `allOutcomes`,
`decisionTrees`) and validated on load, so a tree read back from disk obeys
the same structural checks as a freshly trained one.

Ensemble training may stage finished trees on disk; `stage_decision_tree`
writes each tree to its own file, failing rather than overwriting.
"""

from __future__ import annotations

from pathlib import Path
from typing import Final

from loguru import logger
from pydantic import BaseModel, TypeAdapter

from polyforest.decision_tree.forest import RandomForest
from polyforest.decision_tree.models import DecisionTree

__all__ = [
    "STAGING_FILE_TEMPLATE",
    "load_classifier",
    "load_decision_tree",
    "load_random_forest",
    "save_classifier",
    "stage_decision_tree",
]

STAGING_FILE_TEMPLATE: Final[str] = "tree-{index:05d}.json"

type Classifier = DecisionTree | RandomForest

_CLASSIFIER_ADAPTER: Final[TypeAdapter[Classifier]] = TypeAdapter(DecisionTree | RandomForest)


def save_classifier(classifier: BaseModel, path: str | Path) -> Path:
    """Write a classifier to `path` as JSON.

    Args:
        classifier (BaseModel): A `DecisionTree`, `RandomForest` or
            `WrapperClassifier`.
        path (str | Path): Destination file; parent directories must exist.

    Returns:
        Path: The written file.
    """
    path = Path(path)
    path.write_text(classifier.model_dump_json(by_alias=True), encoding="utf-8")
    logger.debug("Classifier saved", path=str(path), classifier_type=type(classifier).__name__)
    return path


def load_decision_tree(path: str | Path) -> DecisionTree:
    """Read a decision tree written by `save_classifier`.

    Args:
        path (str | Path): The JSON file.

    Returns:
        DecisionTree: The validated tree.

    Raises:
        pydantic.ValidationError: If the file is not a serialized decision tree.
        StructuralInvalidTreeError: If the node tables do not form a tree.
    """
    return DecisionTree.model_validate_json(Path(path).read_text(encoding="utf-8"))


def load_random_forest(path: str | Path) -> RandomForest:
    """Read a random forest written by `save_classifier`.

    Args:
        path (str | Path): The JSON file.

    Returns:
        RandomForest: The validated forest.

    Raises:
        pydantic.ValidationError: If the file is not a serialized random forest.
        InvalidConfigurationError: If the forest has no trees.
    """
    return RandomForest.model_validate_json(Path(path).read_text(encoding="utf-8"))


def load_classifier(path: str | Path) -> Classifier:
    """Read either a decision tree or a random forest, whichever the file holds.

    Args:
        path (str | Path): The JSON file.

    Returns:
        Classifier: The validated classifier.
    """
    return _CLASSIFIER_ADAPTER.validate_json(Path(path).read_text(encoding="utf-8"))


def stage_decision_tree(tree: DecisionTree, directory: str | Path, index: int) -> Path:
    """Write one ensemble member to its own staging file.

    Args:
        tree (DecisionTree): The trained tree.
        directory (str | Path): The build's staging directory.
        index (int): Position of the tree in the ensemble.

    Returns:
        Path: The staging file.

    Raises:
        FileExistsError: If a tree was already staged under `index`.
    """
    path = Path(directory) / STAGING_FILE_TEMPLATE.format(index=index)
    with path.open("x", encoding="utf-8") as staging_file:
        staging_file.write(tree.model_dump_json(by_alias=True))
    logger.debug("Decision tree staged", index=index, path=str(path))
    return path
