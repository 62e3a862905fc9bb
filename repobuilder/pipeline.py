from __future__ import annotations

import itertools
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import structlog

from .builders import BUILDERS, RepoBuilder
from .deadline import Deadline
from .jobs import JobBase, JobType
from .models import RepositoryConfig, RepositoryDefinition, SigningConfig
from .release import ReleaseVersion
from .signing import Signer
from .storage import ObjectStore, S3SyncStore, StorageError
from .utils import ensure_directory

logger = structlog.get_logger(__name__)

BUILD_REPO_JOB = JobType(name="build-repo", version=3)

DEFAULT_TIMEOUT_S = 30 * 60
DEVELOPMENT_TIMEOUT_S = 60 * 60

_job_numbers = itertools.count(1)

_STEP_MESSAGES = {
    "mkdir": "problem creating directory {local}",
    "pull": "problem syncing from {remote} to {local}",
    "inject": "problem copying packages into staging repos",
    "rebuild": "problem building repo in '{changed}'",
    "push": "problem uploading {changed} to {remote}",
}


class SetupError(RuntimeError):
    """Raised when a job definition cannot be turned into a runnable job."""


class RemoteRebuildError(RuntimeError):
    """A failure that aborted the pipeline of a single remote."""

    def __init__(self, remote: str, step: str, message: str, cause: BaseException) -> None:
        self.remote = remote
        self.step = step
        self.cause = cause
        super().__init__(f"[{remote}] {message}: {cause}")

    @property
    def is_timeout(self) -> bool:
        if isinstance(self.cause, TimeoutError):
            return True
        return any(isinstance(error, TimeoutError) for error in getattr(self.cause, "errors", ()))


class RebuildJob(JobBase):
    """Rebuilds every remote repository of one distro with a new set of packages.

    ``run`` pulls each remote's package location into the workspace,
    stages the new packages, regenerates metadata and pushes the changed
    subtree back. Remotes are processed concurrently and independently;
    failures are recorded on the job rather than raised.
    """

    def __init__(
        self,
        conf: RepositoryConfig,
        distro: Optional[RepositoryDefinition],
        version: str,
        arch: str,
        profile: str = "",
        packages: Sequence[str | Path] = (),
        *,
        store: Optional[ObjectStore] = None,
        signer: Optional[Signer] = None,
        signing: Optional[SigningConfig] = None,
    ) -> None:
        self.release = ReleaseVersion.parse(version)
        type_name = distro.type if distro is not None else "unknown"
        super().__init__(f"build-{type_name}-repo.{next(_job_numbers)}", BUILD_REPO_JOB)

        self.conf = conf
        self.workspace = Path(conf.workspace) if conf.workspace else Path(os.getcwd())
        self.distro = distro
        self.version = version
        self.arch = distro.arch_for(arch) if distro is not None else arch
        self.profile = profile
        self.packages: List[str] = [str(package) for package in packages]
        self.store = store
        self.signer = signer
        self.signing = signing if signing is not None else SigningConfig.from_env(os.environ)
        self.builder: Optional[RepoBuilder] = None
        self.deadline: Optional[Deadline] = None
        self.working_dirs: List[str] = []
        self.log = logger.bind(
            job_id=self.id,
            repo=distro.name if distro is not None else None,
            version=str(self.release),
        )

        self._output: Dict[str, str] = {}
        self._output_lock = threading.Lock()

    def record_output(self, key: str, text: str) -> None:
        with self._output_lock:
            self._output[key] = text

    @property
    def output(self) -> Dict[str, str]:
        with self._output_lock:
            return dict(self._output)

    def default_timeout(self) -> float:
        if self.release.is_development_series or self.release.is_development_build:
            return DEVELOPMENT_TIMEOUT_S
        return DEFAULT_TIMEOUT_S

    def setup(self) -> bool:
        """Select the builder and collaborators; record a setup error on failure."""

        if self.builder is not None:
            return True

        if self.distro is None:
            self.add_error(SetupError("invalid job definition, missing distro"))
            return False

        factory = BUILDERS.get(self.distro.type)
        if factory is None:
            self.add_error(SetupError(f"invalid distro definition '{self.distro.type}'"))
            return False

        if self.store is None:
            try:
                self.store = S3SyncStore(
                    bucket=self.distro.bucket,
                    region=self.distro.region,
                    profile=self.profile,
                    dry_run=self.conf.dry_run,
                    verbose=self.conf.verbose,
                )
            except StorageError as exc:
                self.add_error(SetupError(f"problem getting s3 bucket '{self.distro.bucket}': {exc}"))
                return False

        if self.signer is None:
            self.signer = Signer(
                self.signing,
                notary_url=self.conf.services.notary_url,
                distro_type=self.distro.type,
                release=self.release,
                record_output=self.record_output,
                job_id=self.id,
                repo=self.distro.name,
            )

        self.builder = factory(self)
        return True

    def run(self, deadline: Optional[Deadline] = None) -> None:
        try:
            if not self.setup():
                self.log.error("job setup failed", error=str(self.error()))
                return

            self.deadline = deadline if deadline is not None else Deadline.after(self.default_timeout())
            remotes = list(self.distro.repos)
            with ThreadPoolExecutor(max_workers=max(len(remotes), 1), thread_name_prefix="remote") as pool:
                list(pool.map(self._rebuild_remote, remotes))

            if self.has_errors():
                self.log.warning(
                    "completed rebuilding repositories",
                    outcome="encountered problem",
                    remotes=len(remotes),
                    error=str(self.error()),
                )
            else:
                self.log.info("completed rebuilding repositories", remotes=len(remotes))
        finally:
            self.mark_complete()

    def _rebuild_remote(self, remote: str) -> None:
        with self._output_lock:
            self.working_dirs.append(remote)

        log = self.log.bind(remote=remote)
        local = self.workspace / remote
        location = self.release.package_location
        context: Dict[str, Any] = {"remote": remote, "local": local, "changed": None}
        log.debug("rebuilding repo", bucket=self.distro.bucket)

        step = "mkdir"
        try:
            ensure_directory(local)

            step = "pull"
            if self.conf.dry_run:
                log.info("dry run, skipping pull", local=str(local / location))
            else:
                log.debug("downloading packages", local=str(local / location))
                self.store.pull(local / location, f"{remote}/{location}", deadline=self.deadline)

            step = "inject"
            log.info("copying new packages into local staging area")
            changed = self.builder.inject_package(local, location)
            context["changed"] = changed

            step = "rebuild"
            self.builder.rebuild_repo(changed)

            step = "push"
            source = self.builder.publish_root(changed)
            context["changed"] = source
            component = source.relative_to(local).as_posix()
            target = remote if component == "." else f"{remote}/{component}"
            if self.conf.dry_run:
                log.info("dry run, skipping push", local=str(source), remote=target)
            else:
                self.store.push(source, target, deadline=self.deadline)
        except Exception as exc:
            message = _STEP_MESSAGES[step].format(**context)
            log.warning(message, step=step, error=str(exc))
            self.add_error(RemoteRebuildError(remote, step, message, exc))
            return

        log.info("rebuilt repo", remote=target)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.to_dict(),
            "dependency": self.dependency.value,
            "distro": self.distro.name if self.distro is not None else None,
            "version": self.version,
            "arch": self.arch,
            "completed": self.completed,
            "working_dirs": list(self.working_dirs),
            "errors": [str(error) for error in self.errors],
            "output": self.output,
        }
