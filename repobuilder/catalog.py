from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import yaml

from .models import RepositoryConfig, RepositoryDefinition, ServicesConfig


class CatalogError(RuntimeError):
    """Raised when the repository configuration cannot be parsed."""


@dataclass
class RepoCatalog:
    """Loader for the repository configuration file."""

    path: Path
    _cache: Optional[Dict[str, Any]] = None

    @classmethod
    def from_file(cls, path: str | Path) -> "RepoCatalog":
        return cls(path=Path(path))

    def _load(self) -> Dict[str, Any]:
        if self._cache is not None:
            return self._cache

        try:
            raw_data = yaml.safe_load(self.path.read_text())
        except OSError as exc:
            raise CatalogError(f"Cannot read repository config {self.path}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise CatalogError(f"Repository config {self.path} is not valid YAML: {exc}") from exc

        if not isinstance(raw_data, dict) or not isinstance(raw_data.get("repos"), list):
            raise CatalogError("Config must contain a top-level 'repos' list")

        distros: Dict[str, RepositoryDefinition] = {}
        for entry in raw_data["repos"]:
            try:
                definition = RepositoryDefinition.from_dict(entry)
            except (KeyError, TypeError, ValueError) as exc:
                raise CatalogError(f"Invalid repository definition {entry!r}: {exc}") from exc
            distros[definition.name] = definition

        self._cache = {
            "distros": distros,
            "services": ServicesConfig.from_dict(raw_data.get("services") or {}),
            "workspace": raw_data.get("workspace"),
        }
        return self._cache

    @property
    def services(self) -> ServicesConfig:
        return self._load()["services"]

    def iter_repos(self) -> Iterable[RepositoryDefinition]:
        return self._load()["distros"].values()

    def get(self, name: str) -> RepositoryDefinition:
        try:
            return self._load()["distros"][name]
        except KeyError as exc:
            raise CatalogError(f"Unknown distro: {name}") from exc

    def config(
        self,
        *,
        workspace: str | Path | None = None,
        dry_run: bool = False,
        verbose: bool = False,
    ) -> RepositoryConfig:
        """Build the global config, preferring an explicit workspace over the file's."""

        root = workspace or self._load()["workspace"] or Path.cwd()
        return RepositoryConfig(
            workspace=Path(root),
            dry_run=dry_run,
            verbose=verbose,
            services=self.services,
        )

    def __len__(self) -> int:
        return len(self._load()["distros"])

    def __contains__(self, name: str) -> bool:
        return name in self._load()["distros"]
