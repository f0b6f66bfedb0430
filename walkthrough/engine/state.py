"""Run-state persistence - saved answers and variables for resume."""

import logging
import os
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class SavedRunState(BaseModel):
    """Snapshot written by the host after every run."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    script_id: str
    answers: Dict[str, str] = Field(default_factory=dict)
    vars: Dict[str, str] = Field(default_factory=dict)
    last_status: Optional[str] = None
    last_message: Optional[str] = None
    updated_at: int = Field(default_factory=_now_ms)

    def to_blob(self) -> dict:
        """Serializable form with camelCase keys."""
        return self.model_dump(by_alias=True)


def state_key(workspace: Optional[Union[str, Path]] = None) -> str:
    """Storage key for a workspace's saved run state."""
    base = str(workspace) if workspace else 'global'
    return f"walkthrough.state:{base}"


class RunStateStore(ABC):
    """Interface for saved-run-state storage."""

    @abstractmethod
    def get(self, key: str) -> Optional[SavedRunState]:
        """Return the saved state for ``key`` or None."""
        pass

    @abstractmethod
    def update(self, key: str, state: Optional[SavedRunState]) -> None:
        """Store ``state`` under ``key``; None clears it."""
        pass


class MemoryRunStateStore(RunStateStore):
    """In-process store, used by tests and embedded hosts."""

    def __init__(self):
        self.states: Dict[str, SavedRunState] = {}

    def get(self, key: str) -> Optional[SavedRunState]:
        return self.states.get(key)

    def update(self, key: str, state: Optional[SavedRunState]) -> None:
        if state is None:
            self.states.pop(key, None)
        else:
            self.states[key] = state


class FileRunStateStore(RunStateStore):
    """
    YAML file holding a mapping of state key to saved run state.

    Updates merge into the existing file. The file is deleted once it holds
    no state at all.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _read(self) -> Dict[str, dict]:
        if not self.path.exists():
            return {}
        with open(self.path, 'r') as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed state file %s", self.path)
            return {}
        return data

    def get(self, key: str) -> Optional[SavedRunState]:
        blob = self._read().get(key)
        if not blob:
            return None
        return SavedRunState.model_validate(blob)

    def update(self, key: str, state: Optional[SavedRunState]) -> None:
        data = self._read()
        if state is None:
            data.pop(key, None)
        else:
            data[key] = state.to_blob()

        if not data:
            if self.path.exists():
                os.remove(self.path)
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            yaml.safe_dump(data, f, sort_keys=True)
