from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import List

import structlog

from .catalog import CatalogError, RepoCatalog
from .logging import configure_logging
from .models import SigningConfig
from .pipeline import RebuildJob

logger = structlog.get_logger(__name__)


class NoPackagesError(RuntimeError):
    """Raised when the package directory holds nothing to publish."""


def get_packages(root: str | Path, suffix: str) -> List[str]:
    """Return every file below ``root`` whose name ends with ``suffix``."""

    root = Path(root)
    if not root.is_dir():
        raise FileNotFoundError(f"package path '{root}' does not exist")
    return sorted(str(path) for path in root.rglob(f"*{suffix}") if path.is_file())


def build_repo(
    packages: str,
    config_path: str,
    workspace: str | None,
    distro_name: str,
    edition: str,
    version: str,
    arch: str,
    profile: str,
    dry_run: bool,
    verbose: bool = False,
) -> RebuildJob:
    catalog = RepoCatalog.from_file(config_path)
    distro = catalog.get(distro_name)
    conf = catalog.config(workspace=workspace, dry_run=dry_run, verbose=verbose)

    found = get_packages(packages, f".{distro.type.value}")
    if not found:
        raise NoPackagesError(f"no packages found in path '{packages}'")

    job = RebuildJob(
        conf,
        distro,
        version,
        arch,
        profile,
        found,
        signing=SigningConfig.from_env(os.environ),
    )
    logger.info(
        "starting repository rebuild",
        job_id=job.id,
        distro=distro.name,
        edition=edition or distro.edition,
        version=version,
        packages=len(found),
        dry_run=dry_run,
    )
    job.run()
    return job


def cmd_list(args: argparse.Namespace) -> int:
    catalog = RepoCatalog.from_file(args.config)
    for distro in catalog.iter_repos():
        print(f"{distro.name}\t{distro.type}\t{','.join(distro.repos)}")
    return 0


def cmd_build_repo(args: argparse.Namespace) -> int:
    job = build_repo(
        args.packages,
        args.config,
        args.workspace,
        args.distro,
        args.edition,
        args.version,
        args.arch,
        args.profile,
        args.dry_run,
        args.verbose,
    )
    print(json.dumps(job.to_dict(), indent=2))
    return 1 if job.has_errors() else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Rebuild and publish package repositories")
    parser.add_argument(
        "--config",
        default="repobuilder.yaml",
        help="Path to the repository configuration file.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser("list", help="List configured distros")
    list_parser.set_defaults(func=cmd_list)

    build = subparsers.add_parser("build-repo", help="Add packages to a distro's repositories")
    build.add_argument("--distro", required=True, help="Name of the distro definition.")
    build.add_argument("--version", required=True, help="Release version of the packages.")
    build.add_argument("--edition", default="", help="Build edition, for logging.")
    build.add_argument("--arch", default="x86_64", help="Build architecture of the packages.")
    build.add_argument("--packages", required=True, help="Directory holding the new packages.")
    build.add_argument("--profile", default=os.environ.get("AWS_PROFILE", ""), help="AWS credentials profile.")
    build.add_argument("--workspace", default=None, help="Directory used for staging repositories.")
    build.add_argument("--dry-run", action="store_true", help="Skip all transfers to and from the bucket.")
    build.set_defaults(func=cmd_build_repo)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(verbose=args.verbose)
    try:
        return args.func(args)
    except (CatalogError, NoPackagesError, FileNotFoundError) as exc:
        logger.error("cannot build repository", error=str(exc))
        return 2


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
