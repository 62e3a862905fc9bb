"""Object-store synchronisation for staged repository trees."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol

import structlog

from .deadline import Deadline
from .utils import run_command

logger = structlog.get_logger(__name__)


class StorageError(RuntimeError):
    """Raised when the object store cannot be configured."""


class ObjectStore(Protocol):
    def pull(self, local: Path, remote: str, *, deadline: Optional[Deadline] = None) -> None:
        ...

    def push(self, local: Path, remote: str, *, deadline: Optional[Deadline] = None) -> None:
        ...


@dataclass(frozen=True)
class S3SyncStore:
    """Mirror directories to and from an S3 bucket with ``aws s3 sync``.

    Newly pushed objects receive the ``permissions`` canned ACL. Retries are
    delegated to the AWS CLI through ``AWS_MAX_ATTEMPTS``.
    """

    bucket: str
    region: str = "us-east-1"
    profile: str = ""
    dry_run: bool = False
    verbose: bool = False
    permissions: str = "public-read"
    max_retries: int = 10
    executable: str = "aws"

    def __post_init__(self) -> None:
        if not self.bucket:
            raise StorageError("an S3 bucket name is required")
        if self.max_retries < 0:
            raise StorageError("max_retries must not be negative")

    def uri(self, remote: str) -> str:
        return f"s3://{self.bucket}/{remote.strip('/')}"

    def _sync_command(self, source: str, destination: str, *, push: bool) -> List[str]:
        command = [self.executable, "s3", "sync", source, destination, "--region", self.region]
        if self.profile:
            command.extend(["--profile", self.profile])
        if push and self.permissions:
            command.extend(["--acl", self.permissions])
        if self.dry_run:
            command.append("--dryrun")
        if not self.verbose:
            command.append("--only-show-errors")
        return command

    def _sync(self, source: str, destination: str, *, push: bool, deadline: Optional[Deadline]) -> None:
        action = "push" if push else "pull"
        timeout = None
        if deadline is not None:
            deadline.check(f"{action} {source} -> {destination}")
            timeout = deadline.remaining()

        command = self._sync_command(source, destination, push=push)
        logger.debug("syncing", action=action, source=source, destination=destination, bucket=self.bucket)
        result = run_command(
            command,
            env={"AWS_MAX_ATTEMPTS": str(self.max_retries), "AWS_RETRY_MODE": "standard"},
            timeout=timeout,
            merge_output=True,
        )
        if self.verbose and result.stdout.strip():
            logger.info("sync output", action=action, output=result.stdout.strip())

    def pull(self, local: Path, remote: str, *, deadline: Optional[Deadline] = None) -> None:
        Path(local).mkdir(parents=True, exist_ok=True)
        self._sync(self.uri(remote), str(local), push=False, deadline=deadline)

    def push(self, local: Path, remote: str, *, deadline: Optional[Deadline] = None) -> None:
        self._sync(str(local), self.uri(remote), push=True, deadline=deadline)
