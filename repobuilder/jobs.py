"""Job contract shared with the scheduler that dispatches rebuild jobs."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class JobType:
    name: str
    version: int

    def to_dict(self) -> dict:
        return {"name": self.name, "version": self.version}


class DependencyType(str, Enum):
    """How the scheduler decides whether a job still needs to run."""

    ALWAYS = "always"
    CREATE_FILE = "create-file"
    LOCAL_FILE = "local-file"


class JobErrors(RuntimeError):
    """Merged view of every error a job recorded."""

    def __init__(self, errors: List[BaseException]) -> None:
        self.errors = list(errors)
        super().__init__("\n".join(str(error) for error in self.errors))

    def __len__(self) -> int:
        return len(self.errors)


class JobBase:
    """Identity, dependency and outcome bookkeeping for a job.

    Errors may be added from any thread; every recorded error shows up
    exactly once in :meth:`error`.
    """

    def __init__(self, job_id: str, job_type: JobType) -> None:
        self._id = job_id
        self._type = job_type
        self._dependency = DependencyType.ALWAYS
        self._errors: List[BaseException] = []
        self._completed = False
        self._state_lock = threading.Lock()

    @property
    def id(self) -> str:
        return self._id

    @property
    def type(self) -> JobType:
        return self._type

    @property
    def dependency(self) -> DependencyType:
        return self._dependency

    def set_dependency(self, dependency: DependencyType) -> None:
        if dependency != DependencyType.ALWAYS:
            logger.warning(
                "job only supports 'always' dependencies, keeping existing dependency",
                job_id=self._id,
                requested=str(getattr(dependency, "value", dependency)),
                current=self._dependency.value,
            )
            return
        self._dependency = dependency

    def add_error(self, error: Optional[BaseException]) -> None:
        if error is None:
            return
        with self._state_lock:
            self._errors.append(error)

    def has_errors(self) -> bool:
        with self._state_lock:
            return bool(self._errors)

    @property
    def errors(self) -> List[BaseException]:
        with self._state_lock:
            return list(self._errors)

    def error(self) -> Optional[JobErrors]:
        errors = self.errors
        if not errors:
            return None
        return JobErrors(errors)

    def mark_complete(self) -> None:
        with self._state_lock:
            self._completed = True

    @property
    def completed(self) -> bool:
        with self._state_lock:
            return self._completed
