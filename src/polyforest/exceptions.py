"""Custom exceptions for the polyforest classifier engine.

All errors derive from `ClassifierError`. Catch it to handle any failure raised
by the classifiers, their trainers, or the persistence helpers.

- InvalidConfigurationError: Raised at construction time when a classifier or
  trainer is configured with out-of-range hyperparameters, an empty ensemble,
  or training data that cannot be trained on.
- StructuralInvalidTreeError: Raised when a decision tree's node tables do not
  describe a single tree rooted at node 0 (cycles, unreachable nodes, dangling
  child ids, leaves with children).
- TrainingTimeoutError: Raised when an ensemble build does not finish within
  its timeout. No partial forest is ever returned.
- EmptyHistogramError: Raised when an all-zero histogram is normalized. It is
  also a `ZeroDivisionError`.

None of these subclass `ValueError`, so when raised from a pydantic validator
they propagate unchanged rather than as a `ValidationError`.
"""

from __future__ import annotations


class ClassifierError(Exception):
    """Base exception for all polyforest errors."""


class InvalidConfigurationError(ClassifierError):
    """Raised when a classifier or trainer is configured with invalid values.

    Attributes:
        parameter (str | None): Name of the offending parameter, if any.
        value (object): The rejected value.

    Examples:
        >>> err = InvalidConfigurationError(
        ...     "features_examined_per_node must be between 0 and 1",
        ...     parameter="features_examined_per_node",
        ...     value=1.5,
        ... )
        >>> err.parameter
        'features_examined_per_node'
    """

    parameter: str | None
    value: object

    def __init__(self, message: str, *, parameter: str | None = None, value: object = None) -> None:
        """Initialize InvalidConfigurationError.

        Args:
            message (str): Description of the configuration problem.
            parameter (str | None): Name of the offending parameter.
            value (object): The rejected value.
        """
        super().__init__(message)
        self.parameter = parameter
        self.value = value

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Representation including message, parameter, and value.
        """
        return f"{self.__class__.__name__}(message={str(self)!r}, parameter={self.parameter!r}, value={self.value!r})"


class StructuralInvalidTreeError(ClassifierError):
    """Raised when decision tree node tables are not a tree rooted at node 0.

    Attributes:
        node (int | None): The node at which the problem was detected, if known.

    Examples:
        >>> err = StructuralInvalidTreeError("node 2 has 2 parents", node=2)
        >>> err.node
        2
    """

    node: int | None

    def __init__(self, message: str, *, node: int | None = None) -> None:
        """Initialize StructuralInvalidTreeError.

        Args:
            message (str): Description of the structural problem.
            node (int | None): The offending node id.
        """
        super().__init__(message)
        self.node = node

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Representation including message and node.
        """
        return f"{self.__class__.__name__}(message={str(self)!r}, node={self.node!r})"


class TrainingTimeoutError(ClassifierError):
    """Raised when an ensemble build exceeds its timeout.

    Attributes:
        timeout (float): The timeout, in seconds, that was exceeded.
        completed (int): Number of training tasks that had finished.
        total (int): Number of training tasks that were submitted.
    """

    timeout: float
    completed: int
    total: int

    def __init__(self, message: str, *, timeout: float, completed: int, total: int) -> None:
        """Initialize TrainingTimeoutError.

        Args:
            message (str): Description of the timeout.
            timeout (float): The timeout in seconds.
            completed (int): Number of finished training tasks.
            total (int): Number of submitted training tasks.
        """
        super().__init__(message)
        self.timeout = timeout
        self.completed = completed
        self.total = total

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Representation including message, timeout, and progress.
        """
        return (
            f"{self.__class__.__name__}("
            f"message={str(self)!r}, timeout={self.timeout!r}, "
            f"completed={self.completed!r}, total={self.total!r})"
        )


class EmptyHistogramError(ClassifierError, ZeroDivisionError):
    """Raised when a histogram whose counts sum to zero is normalized.

    Normalization inputs are always smoothed first, so this error signals a
    construction bug rather than a data problem.

    Attributes:
        histogram (dict[int, float]): The histogram that could not be normalized.
    """

    histogram: dict[int, float]

    def __init__(self, histogram: dict[int, float]) -> None:
        """Initialize EmptyHistogramError.

        Args:
            histogram (dict[int, float]): The offending histogram.
        """
        super().__init__(f"Cannot normalize a histogram whose counts sum to zero: {histogram!r}")
        self.histogram = histogram
