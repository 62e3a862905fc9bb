from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple


class DistroType(str, Enum):
    """Package format of a repository family."""

    DEB = "deb"
    RPM = "rpm"

    def __str__(self) -> str:
        return self.value


DEFAULT_ARCH_ALIASES: Dict[DistroType, Dict[str, str]] = {
    DistroType.DEB: {
        "x86_64": "amd64",
        "ppc64le": "ppc64el",
        "aarch64": "arm64",
    },
    DistroType.RPM: {},
}


@dataclass(frozen=True)
class RepositoryDefinition:
    """A configured package repository family and its remote layout."""

    name: str
    type: DistroType
    bucket: str
    region: str = "us-east-1"
    code_name: str = ""
    edition: str = ""
    component: str = "main"
    architectures: Tuple[str, ...] = ()
    repos: Tuple[str, ...] = ()
    arch_aliases: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RepositoryDefinition":
        distro_type = DistroType(str(data["type"]).lower())
        aliases = dict(DEFAULT_ARCH_ALIASES.get(distro_type, {}))
        aliases.update(data.get("arch_aliases") or {})
        return cls(
            name=data["name"],
            type=distro_type,
            bucket=data.get("bucket", ""),
            region=data.get("region", "us-east-1"),
            code_name=data.get("code_name", ""),
            edition=data.get("edition", ""),
            component=data.get("component", "main"),
            architectures=tuple(data.get("architectures", [])),
            repos=tuple(data.get("repos", [])),
            arch_aliases=aliases,
        )

    def arch_for(self, arch: str) -> str:
        """Translate a build architecture name into this distro's naming."""

        return self.arch_aliases.get(arch, arch)


@dataclass(frozen=True)
class ServicesConfig:
    notary_url: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServicesConfig":
        return cls(notary_url=data.get("notary_url", ""))


@dataclass(frozen=True)
class RepositoryConfig:
    """Global settings shared by every task of a rebuild job."""

    workspace: Optional[Path] = None
    dry_run: bool = False
    verbose: bool = False
    services: ServicesConfig = field(default_factory=ServicesConfig)


@dataclass(frozen=True)
class SigningConfig:
    """Credentials and key overrides for the notary signing client."""

    token: str = ""
    legacy_token: str = ""
    key_name: str = ""
    client: str = "notary-client.py"

    @classmethod
    def from_env(cls, environ: Mapping[str, str], *, client: Optional[str] = None) -> "SigningConfig":
        return cls(
            token=environ.get("NOTARY_TOKEN", ""),
            legacy_token=environ.get("NOTARY_TOKEN_DEB_LEGACY", ""),
            key_name=environ.get("NOTARY_KEY_NAME", ""),
            client=client or "notary-client.py",
        )
