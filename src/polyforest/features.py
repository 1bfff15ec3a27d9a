"""Integer-indexed feature vectors and the training sources that supply them.

A feature vector maps non-negative feature indices to integer values. Indices
that are absent read as 0, so `get_feature` never fails. Vectors used for
training also carry their known outcome.

A feature vector source is a fixed collection of labeled vectors together with
the outcome universe of its classification task. The outcome universe is
determined once, when the source is constructed.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator, Sequence
from typing import Protocol, Self, runtime_checkable

import polars as pl
from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, field_validator, model_validator

from polyforest.exceptions import InvalidConfigurationError

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9]+")


class ClassificationTask(BaseModel):
    """A named classification task.

    Attributes:
        name (str): Human-readable task name, e.g. `"dt-arclabel"`.

    Examples:
        >>> ClassificationTask(name="DT Arc Label").filename_friendly_name
        'dt-arc-label'
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1, description="Human-readable task name.")

    @property
    def filename_friendly_name(self) -> str:
        """Lower-cased task name with non-alphanumeric runs collapsed to `-`."""
        return _NON_ALPHANUMERIC.sub("-", self.name.lower()).strip("-")


@runtime_checkable
class FeatureVector(Protocol):
    """Protocol for integer-indexed feature vectors."""

    @property
    def outcome(self) -> int | None:
        """The known outcome of this vector, or `None` outside of training."""
        ...

    @property
    def num_features(self) -> int:
        """Size of the feature index space this vector was built for."""
        ...

    def get_feature(self, index: int) -> int:
        """Return the value of feature `index`, or 0 when it is absent."""
        ...

    def nonzero_features(self) -> dict[int, int]:
        """Return every feature whose value is not 0."""
        ...


class SparseVector(BaseModel):
    """A feature vector storing only its nonzero features.

    Attributes:
        outcome (int | None): Known outcome (training only).
        num_features (int): Size of the feature index space.
        values (dict[int, int]): Nonzero feature values keyed by feature index.
            Zero entries are dropped at construction.

    Examples:
        >>> vector = SparseVector.from_true_attributes([0, 3], num_features=5)
        >>> vector.get_feature(3), vector.get_feature(1), vector.get_feature(99)
        (1, 0, 0)
    """

    model_config = ConfigDict(frozen=True)

    outcome: NonNegativeInt | None = Field(default=None, description="Known outcome (training only).")
    num_features: NonNegativeInt = Field(description="Size of the feature index space.")
    values: dict[NonNegativeInt, int] = Field(
        default_factory=dict,
        description="Nonzero feature values keyed by feature index.",
    )

    @field_validator("values", mode="after")
    @classmethod
    def _drop_zero_values(cls, value: dict[int, int]) -> dict[int, int]:
        """Remove explicit zero entries so absent and zero features coincide.

        Args:
            value (dict[int, int]): The raw feature values.

        Returns:
            dict[int, int]: The values without zero entries.
        """
        return {index: feature_value for index, feature_value in value.items() if feature_value != 0}

    @model_validator(mode="after")
    def _validate_indices_in_range(self) -> Self:
        """Validate that every stored index is below `num_features`.

        Returns:
            SparseVector: The validated instance.

        Raises:
            ValueError: If an index is outside `[0, num_features)`.
        """
        out_of_range = sorted(index for index in self.values if index >= self.num_features)
        if out_of_range:
            raise ValueError(f"Feature indices {out_of_range} are not below num_features={self.num_features}")
        return self

    @classmethod
    def from_true_attributes(
        cls,
        true_attributes: Iterable[int],
        *,
        num_features: int,
        outcome: int | None = None,
    ) -> SparseVector:
        """Build a binary vector whose listed features have value 1.

        Args:
            true_attributes (Iterable[int]): Indices of the features that are present.
            num_features (int): Size of the feature index space.
            outcome (int | None): Known outcome, if any.

        Returns:
            SparseVector: The binary vector.
        """
        return cls(outcome=outcome, num_features=num_features, values=dict.fromkeys(true_attributes, 1))

    def get_feature(self, index: int) -> int:
        """Return the value of feature `index`, or 0 when it is absent.

        Args:
            index (int): The feature index.

        Returns:
            int: The feature value.
        """
        return self.values.get(index, 0)

    def nonzero_features(self) -> dict[int, int]:
        """Return every feature whose value is not 0.

        Returns:
            dict[int, int]: Feature index to value.
        """
        return dict(self.values)

    def with_outcome(self, outcome: int | None) -> SparseVector:
        """Return a copy of this vector labeled with `outcome`."""
        return self.model_copy(update={"outcome": outcome})


class DenseVector(BaseModel):
    """A feature vector storing a value for every feature index.

    Attributes:
        outcome (int | None): Known outcome (training only).
        values (tuple[int, ...]): Feature values; position is the feature index.

    Examples:
        >>> DenseVector(values=(0, 2, 1)).get_feature(1)
        2
    """

    model_config = ConfigDict(frozen=True)

    outcome: NonNegativeInt | None = Field(default=None, description="Known outcome (training only).")
    values: tuple[int, ...] = Field(description="Feature values; position is the feature index.")

    @property
    def num_features(self) -> int:
        """Size of the feature index space."""
        return len(self.values)

    def get_feature(self, index: int) -> int:
        """Return the value of feature `index`, or 0 when it is out of range.

        Args:
            index (int): The feature index.

        Returns:
            int: The feature value.
        """
        if 0 <= index < len(self.values):
            return self.values[index]
        return 0

    def nonzero_features(self) -> dict[int, int]:
        """Return every feature whose value is not 0.

        Returns:
            dict[int, int]: Feature index to value.
        """
        return {index: value for index, value in enumerate(self.values) if value != 0}

    def with_outcome(self, outcome: int | None) -> DenseVector:
        """Return a copy of this vector labeled with `outcome`."""
        return self.model_copy(update={"outcome": outcome})


# ---------------------------------------------------------------------------
# Feature vector sources
# ---------------------------------------------------------------------------


@runtime_checkable
class FeatureVectorSource(Protocol):
    """Protocol for a fixed collection of labeled feature vectors.

    `all_outcomes` is fixed when the source is constructed and must be known
    before training begins.
    """

    @property
    def classification_task(self) -> ClassificationTask:
        """The task these vectors were extracted for."""
        ...

    @property
    def all_outcomes(self) -> tuple[int, ...]:
        """Every outcome of the classification task, in ascending order."""
        ...

    @property
    def num_vectors(self) -> int:
        """Number of vectors in the source."""
        ...

    @property
    def num_features(self) -> int:
        """Size of the feature index space."""
        ...

    def iter_vectors(self) -> Iterator[FeatureVector]:
        """Iterate over the labeled vectors."""
        ...


class InMemoryFeatureVectorSource:
    """A feature vector source holding its vectors in a list.

    Examples:
        >>> source = InMemoryFeatureVectorSource(
        ...     [DenseVector(values=(0,), outcome=0), DenseVector(values=(1,), outcome=1)],
        ...     ClassificationTask(name="basic"),
        ... )
        >>> source.all_outcomes, source.num_vectors
        ((0, 1), 2)
    """

    def __init__(
        self,
        feature_vectors: Sequence[FeatureVector],
        classification_task: ClassificationTask,
        all_outcomes: Iterable[int] | None = None,
    ) -> None:
        """Initialize the source.

        Args:
            feature_vectors (Sequence[FeatureVector]): Labeled vectors.
            classification_task (ClassificationTask): The task of these vectors.
            all_outcomes (Iterable[int] | None): The outcome universe. When
                `None`, it is the sorted set of the vectors' outcomes.

        Raises:
            InvalidConfigurationError: If a vector has no outcome, or an
                outcome outside `all_outcomes`.
        """
        self._feature_vectors = tuple(feature_vectors)
        self._classification_task = classification_task
        unlabeled = [position for position, vector in enumerate(self._feature_vectors) if vector.outcome is None]
        if unlabeled:
            raise InvalidConfigurationError(
                f"Training vectors must carry an outcome; vectors at positions {unlabeled[:10]} do not",
                parameter="feature_vectors",
                value=unlabeled,
            )
        observed = {vector.outcome for vector in self._feature_vectors}
        outcomes = tuple(sorted(set(all_outcomes))) if all_outcomes is not None else tuple(sorted(observed))  # type: ignore[arg-type]
        _validate_outcomes_known(observed, outcomes)  # type: ignore[arg-type]
        self._all_outcomes = outcomes
        self._num_features = max((vector.num_features for vector in self._feature_vectors), default=0)

    def __len__(self) -> int:
        return len(self._feature_vectors)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(task={self._classification_task.name!r}, "
            f"num_vectors={self.num_vectors}, all_outcomes={self._all_outcomes})"
        )

    @property
    def classification_task(self) -> ClassificationTask:
        """The task these vectors were extracted for."""
        return self._classification_task

    @property
    def all_outcomes(self) -> tuple[int, ...]:
        """Every outcome of the classification task, in ascending order."""
        return self._all_outcomes

    @property
    def num_vectors(self) -> int:
        """Number of vectors in the source."""
        return len(self._feature_vectors)

    @property
    def num_features(self) -> int:
        """Largest `num_features` among the vectors."""
        return self._num_features

    def iter_vectors(self) -> Iterator[FeatureVector]:
        """Iterate over the labeled vectors.

        Yields:
            FeatureVector: Each vector in insertion order.
        """
        yield from self._feature_vectors


class DataFrameFeatureVectorSource:
    """A feature vector source backed by a Polars DataFrame.

    Every column other than `outcome_column` is an integer feature column; its
    position among the feature columns is its feature index. Null feature
    values read as 0. Vectors are built lazily, one row at a time.

    Examples:
        >>> df = pl.DataFrame({"f0": [0, 1], "f1": [1, 1], "label": [0, 1]})
        >>> source = DataFrameFeatureVectorSource(df, "label", ClassificationTask(name="basic"))
        >>> source.feature_columns, source.all_outcomes
        (('f0', 'f1'), (0, 1))
    """

    def __init__(
        self,
        dataframe: pl.DataFrame,
        outcome_column: str,
        classification_task: ClassificationTask,
        all_outcomes: Iterable[int] | None = None,
    ) -> None:
        """Initialize the source.

        Args:
            dataframe (pl.DataFrame): Feature columns plus the outcome column.
            outcome_column (str): Name of the outcome column.
            classification_task (ClassificationTask): The task of these vectors.
            all_outcomes (Iterable[int] | None): The outcome universe. When
                `None`, it is the sorted set of values in `outcome_column`.

        Raises:
            InvalidConfigurationError: If the outcome column is missing, has
                nulls or negative values, a column is not integer-typed, or an
                outcome lies outside `all_outcomes`.
        """
        if outcome_column not in dataframe.columns:
            raise InvalidConfigurationError(
                f"Outcome column '{outcome_column}' not found in DataFrame",
                parameter="outcome_column",
                value=outcome_column,
            )
        non_integer = [
            name
            for name, dtype in dataframe.schema.items()
            if not (dtype.is_integer() or dtype == pl.Boolean)
        ]
        if non_integer:
            raise InvalidConfigurationError(
                f"Feature and outcome columns must be integer-typed; got non-integer columns {non_integer}",
                parameter="dataframe",
                value=non_integer,
            )
        outcome_series = dataframe[outcome_column]
        if outcome_series.null_count() > 0:
            raise InvalidConfigurationError(
                f"Outcome column '{outcome_column}' contains null values",
                parameter="outcome_column",
                value=outcome_column,
            )
        observed = {int(value) for value in outcome_series.unique().to_list()}
        if any(value < 0 for value in observed):
            raise InvalidConfigurationError(
                f"Outcome column '{outcome_column}' contains negative outcomes",
                parameter="outcome_column",
                value=sorted(observed),
            )
        outcomes = tuple(sorted(set(all_outcomes))) if all_outcomes is not None else tuple(sorted(observed))
        _validate_outcomes_known(observed, outcomes)

        self._feature_columns = tuple(name for name in dataframe.columns if name != outcome_column)
        self._outcome_column = outcome_column
        self._dataframe = dataframe.select(
            *(pl.col(name).cast(pl.Int64).fill_null(0) for name in self._feature_columns),
            pl.col(outcome_column).cast(pl.Int64),
        )
        self._classification_task = classification_task
        self._all_outcomes = outcomes

    def __len__(self) -> int:
        return self._dataframe.height

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(task={self._classification_task.name!r}, "
            f"num_vectors={self.num_vectors}, num_features={self.num_features})"
        )

    @property
    def feature_columns(self) -> tuple[str, ...]:
        """Feature column names in feature-index order."""
        return self._feature_columns

    @property
    def classification_task(self) -> ClassificationTask:
        """The task these vectors were extracted for."""
        return self._classification_task

    @property
    def all_outcomes(self) -> tuple[int, ...]:
        """Every outcome of the classification task, in ascending order."""
        return self._all_outcomes

    @property
    def num_vectors(self) -> int:
        """Number of rows in the backing DataFrame."""
        return self._dataframe.height

    @property
    def num_features(self) -> int:
        """Number of feature columns."""
        return len(self._feature_columns)

    def iter_vectors(self) -> Iterator[FeatureVector]:
        """Build one `DenseVector` per DataFrame row.

        Yields:
            FeatureVector: Each row as a labeled dense vector.
        """
        for row in self._dataframe.iter_rows():
            yield DenseVector(values=row[:-1], outcome=row[-1])


def _validate_outcomes_known(observed: set[int], all_outcomes: tuple[int, ...]) -> None:
    """Raise if any observed outcome is missing from the outcome universe.

    Args:
        observed (set[int]): Outcomes carried by the training vectors.
        all_outcomes (tuple[int, ...]): The declared outcome universe.

    Raises:
        InvalidConfigurationError: If `observed` is not a subset of `all_outcomes`.
    """
    unknown = sorted(observed - set(all_outcomes))
    if unknown:
        raise InvalidConfigurationError(
            f"Training vectors have outcomes {unknown} outside all_outcomes={list(all_outcomes)}",
            parameter="all_outcomes",
            value=list(all_outcomes),
        )
    if any(outcome < 0 for outcome in all_outcomes):
        raise InvalidConfigurationError(
            f"Outcomes must be non-negative, got {list(all_outcomes)}",
            parameter="all_outcomes",
            value=list(all_outcomes),
        )
