"""Format-specific package injection and metadata regeneration.

Each distro format has one builder. Builders are looked up in
:data:`BUILDERS` by the distro's :class:`~repobuilder.models.DistroType` and
only ever talk to the job through the attributes listed on
:class:`BuildTarget`.
"""

from __future__ import annotations

import gzip
import os
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from .deadline import Deadline
from .models import DistroType, RepositoryDefinition
from .release import ReleaseVersion
from .signing import Signer
from .utils import directory_lock, ensure_directory, run_command

DEB_SUFFIX = ".deb"


class InjectionError(RuntimeError):
    """Raised when one or more packages could not be staged or signed."""

    def __init__(self, errors: Sequence[BaseException], messages: Optional[Sequence[str]] = None) -> None:
        self.errors = list(errors)
        if messages is None:
            messages = [str(error) for error in self.errors]
        super().__init__("; ".join(messages))

    @property
    def is_timeout(self) -> bool:
        return any(isinstance(error, TimeoutError) for error in self.errors)


class MetadataError(RuntimeError):
    """Raised when repository metadata could not be regenerated."""


class BuildTarget(Protocol):
    distro: RepositoryDefinition
    release: ReleaseVersion
    arch: str
    packages: Sequence[str]
    signer: Optional[Signer]
    deadline: Optional[Deadline]
    log: object


class RepoBuilder(Protocol):
    def inject_package(self, staging_dir: Path, location: str) -> Path:
        ...

    def rebuild_repo(self, changed_dir: Path) -> None:
        ...

    def publish_root(self, changed_dir: Path) -> Path:
        ...


def _remove_stale(path: Path, source: Path, log) -> None:
    """Delete ``path`` unless it is already a link to ``source``."""

    if not path.exists():
        return
    try:
        if os.path.samefile(path, source):
            return
    except OSError as exc:
        log.debug("cannot compare staged file with package", path=str(path), package=str(source), error=str(exc))
    try:
        path.unlink()
    except OSError as exc:
        log.warning("problem removing previous development build", path=str(path), error=str(exc))


def staged_name(release: ReleaseVersion, mirror: Path) -> Path:
    """Development builds are staged under their series so that they replace each other."""

    return mirror.with_name(mirror.name.replace(str(release), release.series, 1))


def link_packages(target: BuildTarget, dest: Path, *, sign: bool = False) -> List[Path]:
    """Hard-link the target's packages into ``dest`` and return the new links.

    Existing destinations are left alone, so re-running converges. With
    ``sign`` every new link is signed in place, concurrently; this returns
    only after all signings have finished.
    """

    log = target.log
    release = target.release
    errors: List[BaseException] = []
    messages: List[str] = []
    linked: List[Path] = []
    signings: Dict[Future, Path] = {}

    with ThreadPoolExecutor(max_workers=max(len(target.packages), 1), thread_name_prefix="sign") as pool:
        for package in target.packages:
            source = Path(package)
            if target.distro.type == DistroType.DEB and not source.name.endswith(DEB_SUFFIX):
                # Packages index files from the build output match the package glob
                continue

            if not dest.exists():
                log.info("creating directory", path=str(dest))
                try:
                    ensure_directory(dest)
                except OSError as exc:
                    errors.append(exc)
                    messages.append(f"problem creating directory {dest}: {exc}")
                    continue

            mirror = dest / source.name
            if release.is_development_build:
                _remove_stale(mirror, source, log)
                renamed = staged_name(release, mirror)
                if renamed != mirror:
                    log.debug("renaming development package", source=str(mirror), destination=str(renamed))
                    _remove_stale(renamed, source, log)
                    mirror = renamed

            if mirror.exists():
                log.debug("package already staged", package=str(source), destination=str(mirror))
                continue

            log.debug("copying package to local staging", package=str(source), destination=str(dest))
            try:
                os.link(source, mirror)
            except OSError as exc:
                errors.append(exc)
                messages.append(f"problem copying package {source} to {mirror}: {exc}")
                continue
            linked.append(mirror)

            if sign:
                if target.signer is None:
                    errors.append(RuntimeError(f"no signer available for {mirror}"))
                    messages.append(str(errors[-1]))
                    continue
                future = pool.submit(target.signer.sign_file, mirror, "", True, deadline=target.deadline)
                signings[future] = mirror

    for future, mirror in signings.items():
        exc = future.exception()
        if exc is not None:
            errors.append(exc)
            messages.append(f"problem signing file {mirror}: {exc}")

    if errors:
        raise InjectionError(errors, messages)
    return linked


def _run_tool(target: BuildTarget, command: List[str], cwd: Path, *, merge_output: bool = False):
    """Run a metadata tool with whatever time is left on the target's deadline."""

    deadline = target.deadline
    if deadline is not None:
        deadline.check(f"running {command[0]} in {cwd}")
    return run_command(
        command,
        cwd=cwd,
        check=False,
        timeout=deadline.remaining() if deadline is not None else None,
        merge_output=merge_output,
    )


def _archive_root(path: Path) -> Path:
    """The directory that ``Filename:`` entries of a Packages index are relative to."""

    for parent in path.parents:
        if parent.name == "dists":
            return parent.parent
    return path


class DebRepoBuilder:
    """Stages ``.deb`` packages into ``<location>/<component>/binary-<arch>``."""

    def __init__(self, target: BuildTarget) -> None:
        self.target = target

    def inject_package(self, staging_dir: Path, location: str) -> Path:
        changed = ensure_directory(Path(staging_dir) / location / self.target.distro.component)
        link_packages(self.target, changed / f"binary-{self.target.arch}")
        return changed

    def publish_root(self, changed_dir: Path) -> Path:
        # the suite Release manifest sits beside the component
        return Path(changed_dir).parent

    def rebuild_repo(self, changed_dir: Path) -> None:
        changed_dir = Path(changed_dir)
        suite_dir = changed_dir.parent
        with directory_lock(changed_dir):
            for arch_dir in sorted(changed_dir.glob("binary-*")):
                if arch_dir.is_dir():
                    self._write_packages(arch_dir)
            self._write_release(suite_dir, changed_dir.name)

        signer = self.target.signer
        if signer is None:
            raise MetadataError(f"no signer available for {suite_dir / 'Release'}")
        signer.sign_file(suite_dir / "Release", "gpg", False, deadline=self.target.deadline)

    def _write_packages(self, arch_dir: Path) -> None:
        root = _archive_root(arch_dir)
        relative = arch_dir.relative_to(root) if root != arch_dir else Path(".")
        result = _run_tool(self.target, ["dpkg-scanpackages", "--multiversion", str(relative)], root)
        if result.returncode != 0:
            raise MetadataError(f"dpkg-scanpackages failed in {arch_dir}: {result.stderr.strip()}")

        (arch_dir / "Packages").write_text(result.stdout)
        with gzip.open(arch_dir / "Packages.gz", "wt") as handle:
            handle.write(result.stdout)

        distro = self.target.distro
        stanza = [
            f"Archive: {arch_dir.parent.parent.name}",
            f"Component: {arch_dir.parent.name}",
            f"Origin: {distro.name}",
            f"Label: {distro.name}",
            f"Architecture: {arch_dir.name[len('binary-'):]}",
        ]
        (arch_dir / "Release").write_text("\n".join(stanza) + "\n")
        self.target.log.debug("wrote package index", path=str(arch_dir))

    def _write_release(self, suite_dir: Path, component: str) -> None:
        distro = self.target.distro
        for stale in ("Release", "Release.gpg"):
            (suite_dir / stale).unlink(missing_ok=True)

        architectures = distro.architectures or (self.target.arch,)
        options = {
            "Origin": distro.name,
            "Label": distro.name,
            "Suite": suite_dir.name,
            "Codename": distro.code_name or suite_dir.name,
            "Architectures": " ".join(architectures),
            "Components": component,
            "Description": " ".join(part for part in (distro.name, distro.edition, "packages") if part),
        }
        command = ["apt-ftparchive"]
        for key, value in options.items():
            command.extend(["-o", f"APT::FTPArchive::Release::{key}={value}"])
        command.extend(["release", "."])

        result = _run_tool(self.target, command, suite_dir)
        if result.returncode != 0:
            raise MetadataError(f"apt-ftparchive failed in {suite_dir}: {result.stderr.strip()}")
        (suite_dir / "Release").write_text(result.stdout)


class RpmRepoBuilder:
    """Stages ``.rpm`` packages into ``<location>/<arch>/RPMS`` and signs each one."""

    def __init__(self, target: BuildTarget) -> None:
        self.target = target

    def inject_package(self, staging_dir: Path, location: str) -> Path:
        changed = ensure_directory(Path(staging_dir) / location)
        link_packages(self.target, changed / self.target.arch / "RPMS", sign=True)
        return changed

    def publish_root(self, changed_dir: Path) -> Path:
        return Path(changed_dir)

    def rebuild_repo(self, changed_dir: Path) -> None:
        changed_dir = Path(changed_dir)
        with directory_lock(changed_dir):
            arch_dirs = sorted(
                path for path in changed_dir.iterdir() if path.is_dir() and not path.name.startswith(".")
            )
            for arch_dir in arch_dirs:
                result = _run_tool(self.target, ["createrepo", "--update", "."], arch_dir, merge_output=True)
                if result.returncode != 0:
                    raise MetadataError(f"createrepo failed in {arch_dir}: {result.stdout.strip()}")
                self.target.log.debug("regenerated repository metadata", path=str(arch_dir))

        signer = self.target.signer
        for arch_dir in arch_dirs:
            repomd = arch_dir / "repodata" / "repomd.xml"
            if signer is None:
                raise MetadataError(f"no signer available for {repomd}")
            signer.sign_file(repomd, "asc", False, deadline=self.target.deadline)


BuilderFactory = Callable[[BuildTarget], RepoBuilder]

BUILDERS: Dict[DistroType, BuilderFactory] = {
    DistroType.DEB: DebRepoBuilder,
    DistroType.RPM: RpmRepoBuilder,
}
