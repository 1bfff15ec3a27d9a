"""Environment-driven defaults for ensemble training."""

from __future__ import annotations

from pathlib import Path
from typing import Final, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

type StagingMode = Literal["memory", "disk"]

STAGING_MODES: Final[tuple[StagingMode, ...]] = ("memory", "disk")

THIRTY_DAYS_SECONDS: Final[float] = 30 * 24 * 60 * 60.0


class TrainerSettings(BaseSettings):
    """Default values for trainer arguments that are left unset.

    Values are read from `POLYFOREST_*` environment variables (or a `.env`
    file) when the settings object is created. Trainers only consult settings
    for arguments that were not passed explicitly.

    Attributes:
        num_threads (int): Worker pool size for ensemble training.
        training_timeout_seconds (float): Upper bound on an ensemble build.
        staging (StagingMode): Where finished trees wait until the ensemble is
            assembled: in memory, or as JSON files on disk.
        staging_dir (Path | None): Parent directory for disk staging. `None`
            uses the system temporary directory.

    Examples:
        >>> TrainerSettings(num_threads=4).num_threads
        4
    """

    model_config = SettingsConfigDict(
        env_prefix="POLYFOREST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    num_threads: int = Field(default=1, ge=1, description="Worker pool size for ensemble training.")
    training_timeout_seconds: float = Field(
        default=THIRTY_DAYS_SECONDS,
        gt=0,
        description="Upper bound, in seconds, on the time an ensemble build may take.",
    )
    staging: StagingMode = Field(
        default="memory",
        description="Where finished trees are held until the ensemble is assembled.",
    )
    staging_dir: Path | None = Field(
        default=None,
        description="Parent directory for disk staging; the system temp dir when unset.",
    )
