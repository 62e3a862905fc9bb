from __future__ import annotations

import threading
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import pytest
import structlog

from repobuilder.deadline import Deadline
from repobuilder.models import RepositoryConfig, RepositoryDefinition, ServicesConfig, SigningConfig


class FakeStore:
    """In-memory stand-in for the object store that records every transfer."""

    def __init__(self, fail_pull: Sequence[str] = ()) -> None:
        self.fail_pull = set(fail_pull)
        self.pulls: List[Tuple[Path, str]] = []
        self.pushes: List[Tuple[Path, str]] = []
        self._lock = threading.Lock()

    def pull(self, local: Path, remote: str, *, deadline: Optional[Deadline] = None) -> None:
        with self._lock:
            self.pulls.append((Path(local), remote))
        if any(remote.startswith(prefix) for prefix in self.fail_pull):
            raise RuntimeError(f"simulated pull failure for {remote}")
        Path(local).mkdir(parents=True, exist_ok=True)

    def push(self, local: Path, remote: str, *, deadline: Optional[Deadline] = None) -> None:
        with self._lock:
            self.pushes.append((Path(local), remote))


class RecordingSigner:
    """Signer double that records calls instead of running the notary client."""

    def __init__(self, fail: Sequence[str] = ()) -> None:
        self.fail = set(fail)
        self.calls: List[Tuple[Path, str, bool]] = []
        self._lock = threading.Lock()

    def sign_file(self, path, extension: str = "", overwrite: bool = False, *, deadline=None) -> str:
        with self._lock:
            self.calls.append((Path(path), extension, overwrite))
        if Path(path).name in self.fail:
            raise RuntimeError(f"notary refused {Path(path).name}")
        return "signed"


class StagingTarget:
    """Minimal object exposing what builders read from a job."""

    def __init__(self, distro: RepositoryDefinition, release, arch: str, packages: Sequence[Path], signer=None) -> None:
        self.distro = distro
        self.release = release
        self.arch = arch
        self.packages = [str(package) for package in packages]
        self.signer = signer
        self.deadline = None
        self.log = structlog.get_logger("tests")


def make_package(directory: Path, name: str, content: str = "payload") -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text(content)
    return path


@pytest.fixture
def deb_distro() -> RepositoryDefinition:
    return RepositoryDefinition.from_dict(
        {
            "name": "ubuntu1604",
            "type": "deb",
            "bucket": "repo.example.com",
            "code_name": "xenial",
            "component": "multiverse",
            "architectures": ["amd64"],
            "repos": ["apt/ubuntu/dists/xenial/mongodb-org"],
        }
    )


@pytest.fixture
def rpm_distro() -> RepositoryDefinition:
    return RepositoryDefinition.from_dict(
        {
            "name": "rhel7",
            "type": "rpm",
            "bucket": "repo.example.com",
            "repos": ["yum/redhat/7/mongodb-org", "yum/redhat/7Server/mongodb-org"],
        }
    )


@pytest.fixture
def repo_config(tmp_path: Path) -> RepositoryConfig:
    return RepositoryConfig(
        workspace=tmp_path / "workspace",
        services=ServicesConfig(notary_url="http://notary.example.net:5000"),
    )


@pytest.fixture
def signing_config() -> SigningConfig:
    return SigningConfig(token="secret-token", legacy_token="legacy-token")

