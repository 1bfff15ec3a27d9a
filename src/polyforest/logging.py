"""Opt-in loguru output for polyforest training.

polyforest logs through loguru but stays silent until `enable_logging()` is
called. Each call installs one handler that only passes records emitted from
inside the package and returns a `LoggingHandle` owning that handler. The
package is switched back off once the last handle is released.

Trainers log build milestones and trainer routing at the custom `TRAINING`
level (25, between INFO and WARNING), per-tree progress and pruning at DEBUG,
and member-tree failures at WARNING.

Importing this module drops loguru's default handler (id 0) so that records
are not printed twice once a handler is installed here.
"""

from __future__ import annotations

import contextlib
import sys
import threading
import warnings
from pathlib import Path
from typing import TYPE_CHECKING, ClassVar, Final, Literal, TextIO

from loguru import logger

from polyforest.exceptions import InvalidConfigurationError

if TYPE_CHECKING:
    from types import TracebackType

PACKAGE_NAME: Final[str] = __name__.split(".")[0]
TRAINING_LEVEL: Final[str] = "TRAINING"
TRAINING_LEVEL_NUMBER: Final[int] = 25

type LogLevel = Literal["TRACE", "DEBUG", "INFO", "TRAINING", "WARNING", "ERROR", "CRITICAL"]
type LogFormat = Literal["short", "full"]
type LogSink = TextIO | str | Path


def _build_format(location: str) -> str:
    return (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "  # noqa: RUF027 - loguru format string
        f"{location} - "
        "<level>{message}</level> {extra}"
    )


_LOG_FORMATS: Final[dict[str, str]] = {
    "short": _build_format("<cyan>{function}</cyan>"),
    "full": _build_format("<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan>"),
}

with contextlib.suppress(ValueError):
    logger.remove(0)


def _register_training_level() -> None:
    """Add the TRAINING level to loguru unless it is already known.

    loguru cannot renumber an existing level, so a TRAINING level registered
    elsewhere with another number is kept and reported with a `UserWarning`.
    """
    try:
        registered = logger.level(TRAINING_LEVEL).no
    except ValueError:
        logger.level(TRAINING_LEVEL, no=TRAINING_LEVEL_NUMBER, color="<cyan><bold>", icon="🌲")
        return
    if registered != TRAINING_LEVEL_NUMBER:
        warnings.warn(
            f"{TRAINING_LEVEL} level already registered with numeric value {registered}; "
            f"polyforest logs it as if it were {TRAINING_LEVEL_NUMBER}",
            UserWarning,
            stacklevel=2,
        )


_register_training_level()


class LoggingHandle:
    """Owner of one polyforest log handler.

    Release it with `disable()` or by leaving a `with` block. Handles are
    counted across threads; polyforest logging is switched off again when the
    count drops to zero.

    Examples:
        >>> with enable_logging(level="DEBUG"):  # doctest: +SKIP
        ...     RandomForestTrainer(0.0, 8, 0.5, EntropyGainMetric())(source)
    """

    _active_ids: ClassVar[set[int]] = set()
    _lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(self, handler_id: int) -> None:
        self.handler_id: int | None = handler_id
        with self._lock:
            self._active_ids.add(handler_id)

    def __repr__(self) -> str:
        state = "released" if self.handler_id is None else f"handler_id={self.handler_id}"
        return f"{self.__class__.__name__}({state})"

    def __enter__(self) -> LoggingHandle:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.disable()

    def disable(self) -> None:
        """Remove this handle's handler; calling it again does nothing."""
        with self._lock:
            handler_id, self.handler_id = self.handler_id, None
            if handler_id is None:
                return
            self._active_ids.discard(handler_id)
            # The handler may already be gone after a global logger.remove().
            with contextlib.suppress(ValueError):
                logger.remove(handler_id)
            if not self._active_ids:
                logger.disable(PACKAGE_NAME)

    @classmethod
    def get_active_handle_count(cls) -> int:
        """Number of handles not yet disabled."""
        with cls._lock:
            return len(cls._active_ids)


def enable_logging(
    *,
    level: LogLevel = TRAINING_LEVEL,
    log_format: LogFormat = "short",
    sink: LogSink | None = None,
) -> LoggingHandle:
    """Start emitting polyforest log records.

    Args:
        level (LogLevel): Lowest level rendered. The default, `"TRAINING"`,
            shows build milestones and trainer routing; `"DEBUG"` adds one
            record per trained tree, staging files and pruning.
        log_format (LogFormat): `"short"` names only the logging function;
            `"full"` prefixes it with the module and appends the line number.
        sink (LogSink | None): Stream or file path to write to. The current
            `sys.stderr` when `None`.

    Returns:
        LoggingHandle: Handle that removes the handler again.

    Raises:
        InvalidConfigurationError: If `log_format` is not `"short"` or `"full"`.
    """
    if log_format not in _LOG_FORMATS:
        raise InvalidConfigurationError(
            f"log_format must be one of {sorted(_LOG_FORMATS)}, got {log_format!r}",
            parameter="log_format",
            value=log_format,
        )
    handler_id = logger.add(
        sys.stderr if sink is None else sink,
        level=level,
        format=_LOG_FORMATS[log_format],
        filter={"": False, PACKAGE_NAME: True},
    )
    logger.enable(PACKAGE_NAME)
    return LoggingHandle(handler_id)
