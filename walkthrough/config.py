"""Settings for the walkthrough host, read from WALKTHROUGH_* variables."""

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from walkthrough.engine.engine import MAX_STEPS


class Settings(BaseSettings):
    """
    Host configuration.

    Environment variables:
    - WALKTHROUGH_SCRIPTS: bundle file or directory to search
    - WALKTHROUGH_STATE_FILE: YAML file for saved run state
    - WALKTHROUGH_MAX_STEPS: step ceiling per run
    - WALKTHROUGH_COMMAND_TIMEOUT: seconds before a command is killed (0 = none)
    - WALKTHROUGH_VERBOSE: echo commands before running them
    - WALKTHROUGH_LOG_LEVEL: DEBUG, INFO, WARNING or ERROR

    Empty variables count as unset.
    """

    scripts_path: Path = Field(
        default_factory=lambda: Path.cwd() / "walkthroughs",
        validation_alias="WALKTHROUGH_SCRIPTS",
    )
    state_file: Path = Field(
        default_factory=lambda: Path.cwd() / ".walkthrough-state.yaml",
        validation_alias="WALKTHROUGH_STATE_FILE",
    )
    max_steps: int = MAX_STEPS
    command_timeout: Optional[float] = 20.0
    verbose: bool = False
    log_level: str = "WARNING"

    model_config = SettingsConfigDict(
        env_prefix="WALKTHROUGH_",
        case_sensitive=False,
        env_ignore_empty=True,
        populate_by_name=True,
        extra="ignore",
    )

    @field_validator("max_steps")
    @classmethod
    def check_max_steps(cls, value: int) -> int:
        if value < 1:
            raise ValueError("WALKTHROUGH_MAX_STEPS must be at least 1")
        return value

    @field_validator("command_timeout")
    @classmethod
    def zero_timeout_disables(cls, value: Optional[float]) -> Optional[float]:
        return value if value else None

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        return value.strip().upper()
