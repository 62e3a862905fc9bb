"""Rebuild and republish DEB and RPM package repositories."""

from .catalog import RepoCatalog
from .deadline import Deadline
from .models import DistroType, RepositoryConfig, RepositoryDefinition, SigningConfig
from .pipeline import RebuildJob
from .release import ReleaseVersion

__all__ = [
    "Deadline",
    "DistroType",
    "RebuildJob",
    "ReleaseVersion",
    "RepoCatalog",
    "RepositoryConfig",
    "RepositoryDefinition",
    "SigningConfig",
]
