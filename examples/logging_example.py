"""Demonstrates how to enable and configure logging in polyforest.

polyforest logging is disabled by default. Users opt in by calling ``enable_logging()``,
which returns a ``LoggingHandle``. The handle can be used as a context manager
(``with enable_logging(): ...``) or disabled manually via ``handle.disable()``.
When the last active handle is disabled, polyforest logging is automatically turned off.

Key concepts shown here:

- ``level``: controls the minimum log level. The custom ``TRAINING`` level
  (numeric value 25, between INFO and WARNING) surfaces ensemble build
  milestones and trainer routing, and is the default. ``DEBUG`` adds one
  record per trained tree.
- ``log_format``: ``"short"`` shows ``timestamp | level | function - message``;
  ``"full"`` adds the module and line number.
- Automatic cleanup: logging is re-disabled when the context manager exits.
"""

import polars as pl

from polyforest import (
    ClassificationTask,
    DataFrameFeatureVectorSource,
    OmnibusTrainer,
    RandomForestTrainer,
    enable_logging,
)
from polyforest.decision_tree import DecisionTreeTrainer, EntropyGainMetric, evaluate_classifier

# Shift (1) when the next buffer word is a noun, otherwise reduce (0)
transitions = pl.DataFrame({
    "buffer1_is_noun": [1, 1, 0, 0, 1, 0, 1, 0],
    "stack1_is_verb": [0, 1, 1, 0, 0, 1, 1, 0],
    "lowercase": [1, 0, 1, 1, 0, 0, 1, 1],
    "transition": [1, 1, 0, 0, 1, 0, 1, 0],
})

with enable_logging(level="DEBUG", log_format="full"):
    trainer = OmnibusTrainer(
        dt_trainer=DecisionTreeTrainer(seed=0),
        rf_trainer=RandomForestTrainer(0.0, 8, 0.5, EntropyGainMetric(), num_threads=4, seed=0),
    )

    for task_name in ("dt-transition", "rf-transition"):
        source = DataFrameFeatureVectorSource(transitions, "transition", ClassificationTask(name=task_name))
        classifier = trainer(source)
        print(f"\n{task_name}: {evaluate_classifier(classifier, source)}\n")

# Logging automatically disabled here
