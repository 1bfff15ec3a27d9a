"""polyforest: Probabilistic decision tree and random forest classifiers with justifications."""

from loguru import logger

from polyforest.decision_tree import (
    DecisionTree,
    DecisionTreeTrainer,
    OmnibusTrainer,
    RandomForest,
    RandomForestTrainer,
)
from polyforest.features import (
    ClassificationTask,
    DataFrameFeatureVectorSource,
    DenseVector,
    InMemoryFeatureVectorSource,
    SparseVector,
)
from polyforest.logging import PACKAGE_NAME, enable_logging
from polyforest.settings import TrainerSettings
from polyforest.wrapper import WrapperClassifier, WrapperClassifierTrainer

logger.disable(PACKAGE_NAME)  # noqa: RUF067 - Disable logging for the polyforest package by default

__all__ = [
    "ClassificationTask",
    "DataFrameFeatureVectorSource",
    "DecisionTree",
    "DecisionTreeTrainer",
    "DenseVector",
    "InMemoryFeatureVectorSource",
    "OmnibusTrainer",
    "RandomForest",
    "RandomForestTrainer",
    "SparseVector",
    "TrainerSettings",
    "WrapperClassifier",
    "WrapperClassifierTrainer",
    "enable_logging",
]
