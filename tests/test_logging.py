"""Tests for loguru logging in polyforest.

This module verifies that logging is disabled by default and that
structured log records are produced when enabled, covering forest builds,
trainer routing, and the enable_logging handle lifecycle.
"""

from __future__ import annotations

import contextlib
import io
import re
import sys
import warnings
from collections.abc import Generator
from typing import NamedTuple
from unittest import mock

import loguru
import pytest
from loguru import logger
from pytest_check import check

from polyforest.decision_tree.ensemble import OmnibusTrainer, RandomForestTrainer
from polyforest.decision_tree.fitting import DecisionTreeTrainer, TrainingMatrix
from polyforest.decision_tree.gain import EntropyGainMetric
from polyforest.decision_tree.models import DecisionTree
from polyforest.exceptions import InvalidConfigurationError
from polyforest.features import ClassificationTask, DenseVector, InMemoryFeatureVectorSource
from polyforest.logging import (
    PACKAGE_NAME,
    TRAINING_LEVEL,
    TRAINING_LEVEL_NUMBER,
    LoggingHandle,
    _register_training_level,
    enable_logging,
)
from polyforest.settings import TrainerSettings


class LogSink(NamedTuple):
    """Log sink with records list and handler ID for cleanup.

    Attributes:
        records (list[loguru.Record]): List that accumulates log record dictionaries.
        handler_id (int): Logger handler ID for cleanup.
    """

    records: list[loguru.Record]
    handler_id: int


@contextlib.contextmanager
def capturing_sink(*, enable_polyforest: bool = True) -> Generator[list[loguru.Record]]:
    """Context manager that adds a loguru sink and yields the captured records list.

    Pass `enable_polyforest=False` when testing state after a `LoggingHandle`
    has already been disabled, so the sink observes whether polyforest records
    flow without this helper re-enabling the logger.

    Args:
        enable_polyforest (bool): When True (default), enables the polyforest
            logger for the block and disables it again on exit.

    Yields:
        Generator[list[loguru.Record]]: Records captured while the context is active.
    """
    captured_records: list[loguru.Record] = []

    def _sink(message: loguru.Message) -> None:
        captured_records.append(message.record)

    handler_id = logger.add(_sink)
    if enable_polyforest:
        logger.enable(PACKAGE_NAME)
    try:
        yield captured_records
    finally:
        if enable_polyforest:
            logger.disable(PACKAGE_NAME)
        logger.remove(handler_id)


@pytest.fixture(autouse=True)
def restore_active_ids() -> Generator[None]:
    """Save and restore LoggingHandle._active_ids around each test.

    Tests that call enable_logging() can leak handler IDs into later tests if
    they fail before cleanup. This fixture removes any handler added during
    the test and restores the shared set in place.

    Yields:
        None: Nothing; used only for setup/teardown side effects.
    """
    saved_ids: set[int] = set(LoggingHandle._active_ids)

    yield

    added_ids = LoggingHandle._active_ids - saved_ids
    for handler_id in added_ids:
        with contextlib.suppress(ValueError):
            logger.remove(handler_id)
    LoggingHandle._active_ids.clear()
    LoggingHandle._active_ids.update(saved_ids)


@pytest.fixture
def log_sink() -> Generator[LogSink]:
    """Create a sink that captures log records for testing.

    Yields:
        Generator[LogSink]: Named tuple with records list and handler_id for cleanup.
    """
    captured_records: list[loguru.Record] = []

    def sink(message: loguru.Message) -> None:
        captured_records.append(message.record)

    handler_id = logger.add(sink)
    logger.enable(PACKAGE_NAME)

    yield LogSink(records=captured_records, handler_id=handler_id)

    logger.disable(PACKAGE_NAME)
    logger.remove(handler_id)


class _FailingTreeTrainer(DecisionTreeTrainer):
    """Tree trainer that always fails."""

    def train_materialized(self, data: TrainingMatrix, *, seed: object = None) -> DecisionTree:
        msg = "disk full"
        raise RuntimeError(msg)


def _make_source(task_name: str = "transitions") -> InMemoryFeatureVectorSource:
    rows = [((0, 1), 0), ((0, 0), 0), ((1, 1), 1), ((1, 0), 1)]
    return InMemoryFeatureVectorSource(
        [DenseVector(values=values, outcome=outcome) for values, outcome in rows],
        ClassificationTask(name=task_name),
    )


def _make_forest_trainer(**kwargs: object) -> RandomForestTrainer:
    return RandomForestTrainer(
        0.0,
        3,
        1.0,
        EntropyGainMetric(),
        seed=0,
        settings=TrainerSettings(num_threads=2),
        **kwargs,  # type: ignore[arg-type]
    )


def _polyforest_records(records: list[loguru.Record]) -> list[loguru.Record]:
    return [r for r in records if (r["name"] or "").startswith(PACKAGE_NAME)]


def test_logging_disabled_by_default() -> None:
    """Verify no polyforest records are captured when logging is disabled.

    Given: polyforest logging disabled, a sink capturing all output
    When: A random forest is trained
    Then: No polyforest log records are captured
    """
    # Arrange - explicitly disable to protect against test ordering issues
    logger.disable(PACKAGE_NAME)

    # Act & Assert
    with capturing_sink(enable_polyforest=False) as captured_records:
        _make_forest_trainer()(_make_source())

        with check:
            assert _polyforest_records(captured_records) == [], "No polyforest logs should be captured when disabled"


class TestTrainingLogging:
    """Tests for records emitted while training."""

    def test_forest_build_logs_start_and_finish(self, log_sink: LogSink) -> None:
        """Verify a forest build emits TRAINING records with structured extras.

        Given: Logging enabled
        When: A three-tree forest is trained on two threads
        Then: Start and finish records at TRAINING level carry the build parameters

        Args:
            log_sink (LogSink): Fixture providing log sink for capturing records.
        """
        # Act
        _make_forest_trainer()(_make_source())

        # Assert
        training_records = [r for r in log_sink.records if r["level"].name == TRAINING_LEVEL]
        messages = [r["message"] for r in training_records]
        with check:
            assert messages == ["Random forest build started", "Random forest build finished"]
        started = training_records[0]["extra"]
        with check:
            assert started["task"] == "transitions"
        with check:
            assert started["num_trees"] == 3
        with check:
            assert started["num_threads"] == 2
        with check:
            assert started["num_vectors"] == 4
        with check:
            assert started["staging"] == "memory"
        with check:
            assert training_records[1]["extra"]["num_trees"] == 3

    def test_each_tree_logs_at_debug(self, log_sink: LogSink) -> None:
        """Verify every trained tree produces a DEBUG record naming its index.

        Args:
            log_sink (LogSink): Fixture providing log sink for capturing records.
        """
        _make_forest_trainer()(_make_source())

        indices = sorted(
            r["extra"]["index"] for r in log_sink.records if r["message"] == "Decision tree trained"
        )
        with check:
            assert indices == [0, 1, 2]

    def test_task_failure_logs_warning(self, log_sink: LogSink) -> None:
        """Verify a failing tree produces a WARNING before the error propagates.

        Args:
            log_sink (LogSink): Fixture providing log sink for capturing records.
        """
        with pytest.raises(RuntimeError, match="disk full"):
            _make_forest_trainer(tree_trainer=_FailingTreeTrainer())(_make_source())

        warning_records = [r for r in log_sink.records if r["level"].name == "WARNING"]
        with check:
            assert len(warning_records) == 1
        with check:
            assert "disk full" in warning_records[0]["extra"]["error"]
        with check:
            assert warning_records[0]["extra"]["total"] == 3

    @pytest.mark.parametrize(
        ("task_name", "route"),
        [("dt-arclabel", "dt"), ("transition", "rf")],
        ids=["decision-tree-route", "forest-route"],
    )
    def test_omnibus_logs_route(self, log_sink: LogSink, task_name: str, route: str) -> None:
        """Verify the omnibus trainer logs which trainer a task was routed to.

        Args:
            log_sink (LogSink): Fixture providing log sink for capturing records.
            task_name (str): The classification task name.
            route (str): Expected route.
        """
        # Arrange
        trainer = OmnibusTrainer(dt_trainer=_make_forest_trainer(), rf_trainer=_make_forest_trainer())

        # Act
        trainer(_make_source(task_name))

        # Assert
        routing = [r for r in log_sink.records if r["message"] == "Routing classification task"]
        with check:
            assert len(routing) == 1
        with check:
            assert routing[0]["level"].name == TRAINING_LEVEL
        with check:
            assert routing[0]["extra"]["route"] == route
        with check:
            assert routing[0]["extra"]["task"] == task_name


class TestTrainingLevelRegistration:
    """Tests for TRAINING custom log level registration edge cases."""

    def test_training_level_registered_with_correct_number(self) -> None:
        """Verify the TRAINING level is registered between INFO and WARNING at import time."""
        level = logger.level(TRAINING_LEVEL)

        with check:
            assert level.no == TRAINING_LEVEL_NUMBER == 25

    def test_duplicate_level_wrong_number_warns_not_raises(self) -> None:
        """Verify a numeric mismatch on TRAINING registration issues a warning, not an exception.

        Given: The TRAINING level already exists with a different numeric value
        When: _register_training_level() runs and detects the conflict
        Then: A UserWarning describes the conflict; no ValueError is raised
        """
        # Arrange
        fake_level = mock.MagicMock(spec=["no"])
        fake_level.no = TRAINING_LEVEL_NUMBER + 1

        # Act
        with (
            mock.patch("polyforest.logging.logger.level", return_value=fake_level),
            warnings.catch_warnings(record=True) as caught,
        ):
            warnings.simplefilter("always")
            _register_training_level()

        # Assert
        with check:
            assert len(caught) == 1
        with check:
            assert issubclass(caught[0].category, UserWarning)
        with check:
            assert "already registered with numeric value" in str(caught[0].message)
        with check:
            assert str(TRAINING_LEVEL_NUMBER) in str(caught[0].message)


class TestEnableLoggingLifecycle:
    """Tests for enable_logging handle creation, disable, and context manager."""

    def test_disable_is_idempotent(self) -> None:
        """Disabling a handle twice does not raise."""
        handle = enable_logging()

        handle.disable()
        handle.disable()

        assert handle.handler_id is None

    @pytest.mark.parametrize("handle_count", [1, 2], ids=["single-handle", "two-handles"])
    def test_disable_all_handles_stops_logging(self, handle_count: int) -> None:
        """Verify polyforest logging is re-disabled after all active handles are disabled.

        Args:
            handle_count (int): Number of handles to create and disable before asserting.
        """
        # Arrange
        handles = [enable_logging() for _ in range(handle_count)]
        for handle in handles:
            handle.disable()

        # Act & Assert
        with capturing_sink(enable_polyforest=False) as captured_records:
            _make_forest_trainer()(_make_source())

            with check:
                assert _polyforest_records(captured_records) == []

    def test_one_of_two_handles_disabled_keeps_logging(self) -> None:
        """Records keep flowing while another handle is still active."""
        # Arrange
        first = enable_logging()
        second = enable_logging()
        first.disable()

        # Act
        with capturing_sink(enable_polyforest=False) as captured_records:
            _make_forest_trainer()(_make_source())
        second.disable()

        # Assert
        with check:
            assert len(_polyforest_records(captured_records)) > 0

    def test_context_manager_exit_cleans_up_on_exception(self) -> None:
        """Verify __exit__ removes the handler even when the block raises."""
        handle_ref: list[LoggingHandle] = []

        with pytest.raises(RuntimeError, match="simulated error"), enable_logging() as handle:
            handle_ref.append(handle)
            raise RuntimeError("simulated error")

        with check:
            assert handle_ref[0].handler_id is None

    def test_get_active_handle_count_tracks_handles(self) -> None:
        """The active count rises with each enable and returns to baseline after disable."""
        # Arrange
        baseline_count = LoggingHandle.get_active_handle_count()

        # Act
        with enable_logging(), enable_logging():
            during = LoggingHandle.get_active_handle_count()

        # Assert
        with check:
            assert during == baseline_count + 2
        with check:
            assert LoggingHandle.get_active_handle_count() == baseline_count


class TestEnableLoggingOutput:
    """Tests for enable_logging level filtering and formats."""

    @pytest.mark.parametrize(
        ("level", "present_levels", "absent_levels"),
        [
            ("TRAINING", ["TRAINING", "WARNING"], ["DEBUG"]),
            ("DEBUG", ["DEBUG", "TRAINING", "WARNING"], []),
            ("WARNING", ["WARNING"], ["TRAINING", "DEBUG"]),
        ],
        ids=["default-training-level", "debug-level-captures-all", "warning-level-excludes-training"],
    )
    def test_enable_logging_level_filtering(
        self,
        monkeypatch: pytest.MonkeyPatch,
        level: str,
        present_levels: list[str],
        absent_levels: list[str],
    ) -> None:
        """Verify the stderr handler renders only records at or above its level.

        Args:
            monkeypatch (pytest.MonkeyPatch): Pytest fixture for patching sys.stderr safely.
            level (str): The log level passed to enable_logging.
            present_levels (list[str]): Level names that must appear in stderr output.
            absent_levels (list[str]): Level names that must not appear in stderr output.
        """
        # Arrange
        captured_stderr = io.StringIO()
        monkeypatch.setattr(sys, "stderr", captured_stderr)
        handle = enable_logging(level=level)  # type: ignore[arg-type]

        # Act - a successful build logs TRAINING and DEBUG; a failing one adds WARNING
        _make_forest_trainer()(_make_source())
        with pytest.raises(RuntimeError):
            _make_forest_trainer(tree_trainer=_FailingTreeTrainer())(_make_source())
        handle.disable()
        stderr_output = captured_stderr.getvalue()

        # Assert
        for expected_level in present_levels:
            with check:
                assert expected_level in stderr_output, f"Should have {expected_level} logs (level={level})"
        for excluded_level in absent_levels:
            with check:
                assert excluded_level not in stderr_output, f"Should NOT have {excluded_level} logs (level={level})"

    @pytest.mark.parametrize(
        ("log_format", "expected_present", "expected_absent"),
        [
            ("short", ["__call__"], ["polyforest.decision_tree.ensemble"]),
            ("full", ["polyforest.decision_tree.ensemble", "__call__"], []),
        ],
        ids=["short-format", "full-format"],
    )
    def test_enable_logging_format_renders_expected_tokens(
        self,
        monkeypatch: pytest.MonkeyPatch,
        log_format: str,
        expected_present: list[str],
        expected_absent: list[str],
    ) -> None:
        """Verify log_format controls which source-location tokens appear in stderr.

        Args:
            monkeypatch (pytest.MonkeyPatch): Pytest fixture for patching sys.stderr safely.
            log_format (str): The log_format passed to enable_logging.
            expected_present (list[str]): Substrings that must appear in stderr output.
            expected_absent (list[str]): Substrings that must not appear in stderr output.
        """
        # Arrange
        captured_stderr = io.StringIO()
        monkeypatch.setattr(sys, "stderr", captured_stderr)
        handle = enable_logging(log_format=log_format)  # type: ignore[arg-type]

        # Act
        _make_forest_trainer()(_make_source())
        handle.disable()
        stderr_output = captured_stderr.getvalue()

        # Assert
        for token in expected_present:
            with check:
                assert token in stderr_output
        for token in expected_absent:
            with check:
                assert token not in stderr_output
        if log_format == "full":
            with check:
                assert re.search(r"polyforest\.decision_tree\.ensemble:__call__:\d+", stderr_output)

    def test_enable_logging_writes_to_given_stream(self) -> None:
        """An explicit sink receives the records instead of stderr."""
        # Arrange
        stream = io.StringIO()

        # Act
        with enable_logging(sink=stream):
            _make_forest_trainer()(_make_source())

        # Assert
        with check:
            assert TRAINING_LEVEL in stream.getvalue()
        with check:
            assert "__call__" in stream.getvalue()

    def test_enable_logging_ignores_records_from_other_packages(self) -> None:
        """Only records logged from inside polyforest reach the handler."""
        # Arrange
        stream = io.StringIO()

        # Act
        with enable_logging(level="DEBUG", sink=stream):
            logger.warning("outside the package")

        # Assert
        assert "outside the package" not in stream.getvalue()

    def test_enable_logging_rejects_unknown_format(self) -> None:
        """Formats other than short and full are refused without adding a handler."""
        # Arrange
        baseline_count = LoggingHandle.get_active_handle_count()

        # Act
        with pytest.raises(InvalidConfigurationError) as exc_info:
            enable_logging(log_format="verbose")  # type: ignore[arg-type]

        # Assert
        with check:
            assert exc_info.value.parameter == "log_format"
        with check:
            assert LoggingHandle.get_active_handle_count() == baseline_count
