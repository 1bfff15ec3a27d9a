"""Decision tree sub-package: models, induction, ensembles, and persistence."""

from __future__ import annotations

from polyforest.decision_tree.classifier import ProbabilisticClassifier, ProbabilisticClassifierTrainer
from polyforest.decision_tree.distribution import (
    OutcomeDistribution,
    add_histograms,
    normalize_histogram,
    smooth_histogram,
    sum_histograms,
)
from polyforest.decision_tree.ensemble import OmnibusTrainer, RandomForestTrainer
from polyforest.decision_tree.fitting import DecisionTreeTrainer, TrainingMatrix, evaluate_classifier, materialize_source
from polyforest.decision_tree.forest import RandomForest
from polyforest.decision_tree.gain import EntropyGainMetric, InformationGainMetric, MultinomialGainMetric
from polyforest.decision_tree.models import (
    DecisionTree,
    DecisionTreeJustification,
    DTDecision,
    DTDecisionPath,
    Justification,
    RandomForestJustification,
    TreeVote,
)
from polyforest.decision_tree.persistence import (
    load_classifier,
    load_decision_tree,
    load_random_forest,
    save_classifier,
    stage_decision_tree,
)

__all__ = [
    "DTDecision",
    "DTDecisionPath",
    "DecisionTree",
    "DecisionTreeJustification",
    "DecisionTreeTrainer",
    "EntropyGainMetric",
    "InformationGainMetric",
    "Justification",
    "MultinomialGainMetric",
    "OmnibusTrainer",
    "OutcomeDistribution",
    "ProbabilisticClassifier",
    "ProbabilisticClassifierTrainer",
    "RandomForest",
    "RandomForestJustification",
    "RandomForestTrainer",
    "TrainingMatrix",
    "TreeVote",
    "add_histograms",
    "evaluate_classifier",
    "load_classifier",
    "load_decision_tree",
    "load_random_forest",
    "materialize_source",
    "normalize_histogram",
    "save_classifier",
    "smooth_histogram",
    "stage_decision_tree",
    "sum_histograms",
]
