from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

_VERSION_PATTERN = re.compile(r"^(?P<major>\d+)\.(?P<minor>\d+)\.(?P<patch>\d+)(?:-(?P<suffix>.*))?$")
_RC_PATTERN = re.compile(r"^rc(?P<number>\d*)$")


class InvalidVersion(ValueError):
    """Raised when a release version string cannot be parsed."""


@dataclass(frozen=True)
class ReleaseVersion:
    """A parsed server release version and its classification.

    Versions follow ``MAJOR.MINOR.PATCH`` with an optional ``-suffix``. A
    suffix of ``rcN`` marks a release candidate; any other suffix (for
    example the ``-42-gdeadbee`` tail of a nightly) marks a development
    build.
    """

    source: str
    major: int
    minor: int
    patch: int
    suffix: Optional[str] = None

    @classmethod
    def parse(cls, text: str) -> "ReleaseVersion":
        match = _VERSION_PATTERN.match(text.strip()) if text else None
        if match is None:
            raise InvalidVersion(f"'{text}' is not a valid release version")
        return cls(
            source=text.strip(),
            major=int(match.group("major")),
            minor=int(match.group("minor")),
            patch=int(match.group("patch")),
            suffix=match.group("suffix"),
        )

    def __str__(self) -> str:
        return self.source

    @property
    def series(self) -> str:
        return f"{self.major}.{self.minor}"

    @property
    def is_release_candidate(self) -> bool:
        return self.suffix is not None and _RC_PATTERN.match(self.suffix) is not None

    @property
    def is_development_build(self) -> bool:
        return self.suffix is not None and not self.is_release_candidate

    @property
    def is_release(self) -> bool:
        return self.suffix is None

    @property
    def is_development_series(self) -> bool:
        # rapid releases replaced the odd-minor development series at 5.0
        if self.major >= 5:
            return self.minor != 0
        return self.minor % 2 == 1

    @property
    def is_stable_series(self) -> bool:
        return not self.is_development_series

    @property
    def stable_release_series(self) -> str:
        """Series of the stable release line this version belongs to."""

        if self.is_stable_series:
            return self.series
        if self.major >= 5 or self.minor >= 9:
            return f"{self.major + 1}.0"
        return f"{self.major}.{self.minor + 1}"

    @property
    def package_location(self) -> str:
        """Repository subpath that packages of this release are published under."""

        if self.is_development_build:
            return "development"
        if self.is_release_candidate:
            return "testing"
        return self.series
