"""Package signing through the notary service client.

The notary client is an external executable. It signs a file in place
(``overwrite``) or writes a detached signature next to it named
``<file>.<extension>``. Only its exit code and combined output are
available to us.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, List, Optional, Tuple

import structlog

from .deadline import Deadline
from .models import DistroType, SigningConfig
from .release import ReleaseVersion
from .utils import CommandError, CommandTimeout, run_command

logger = structlog.get_logger(__name__)

LEGACY_DEB_SERIES = frozenset({"2.6", "3.0"})
LEGACY_DEB_KEY = "richard"
SIGNING_COMMENT = "repobuilder package signing"
REDACTED = "XXXXX"

OutputRecorder = Callable[[str, str], None]


class SigningError(RuntimeError):
    """Raised when a file could not be signed."""


class Signer:
    def __init__(
        self,
        config: SigningConfig,
        *,
        notary_url: str,
        distro_type: DistroType,
        release: ReleaseVersion,
        record_output: Optional[OutputRecorder] = None,
        **log_fields: object,
    ) -> None:
        self.config = config
        self.notary_url = notary_url
        self.distro_type = distro_type
        self.release = release
        self._record_output = record_output
        self._log = logger.bind(version=str(release), **log_fields)

    def key_and_token(self) -> Tuple[str, str, str]:
        """Return the key name, auth token and the variable the token comes from."""

        if self.config.key_name:
            return self.config.key_name, self.config.token, "NOTARY_TOKEN"
        if self.distro_type == DistroType.DEB and self.release.series in LEGACY_DEB_SERIES:
            return LEGACY_DEB_KEY, self.config.legacy_token, "NOTARY_TOKEN_DEB_LEGACY"
        return f"server-{self.release.stable_release_series}", self.config.token, "NOTARY_TOKEN"

    def build_command(self, path: Path, extension: str, overwrite: bool, key_name: str, token: str) -> List[str]:
        command = [
            self.config.client,
            "--key-name", key_name,
            "--auth-token", token,
            "--comment", SIGNING_COMMENT,
            "--notary-url", self.notary_url,
            "--archive-file-ext", extension,
            "--outputs", "sig",
        ]
        if overwrite:
            command.extend(["--package-file-suffix", ""])
        command.append(path.name)
        return command

    def sign_file(
        self,
        path: str | Path,
        extension: str = "",
        overwrite: bool = False,
        *,
        deadline: Optional[Deadline] = None,
    ) -> str:
        """Sign ``path`` and return the client's output.

        ``overwrite`` replaces the package with its signed version; otherwise
        a detached signature is written to ``<path>.<extension>``. The
        extension only affects non-package files.
        """

        path = Path(path)
        key_name, token, token_source = self.key_and_token()
        if not token:
            raise SigningError(
                f"the notary service auth token ({token_source}) is not defined in the environment"
            )

        log = self._log.bind(path=str(path), extension=extension)
        if extension.startswith("."):
            log.warning("extension has leading dot, which is usually a problem")
        if overwrite and extension:
            log.critical("specified overwrite with an archive extension", impact="no package impact")

        if deadline is not None:
            deadline.check(f"signing {path}")

        if not overwrite:
            # detached signatures are always regenerated from scratch
            stale = Path(f"{path}.{extension}")
            try:
                stale.unlink()
            except FileNotFoundError:
                pass
            except OSError as exc:
                log.warning("problem removing stale signature", filename=str(stale), error=str(exc))

        command = self.build_command(path, extension, overwrite, key_name, token)
        redacted = [REDACTED if part == token else part for part in command]
        log.info("running notary-client command", cmd=" ".join(redacted))

        try:
            result = run_command(
                command,
                cwd=path.parent,
                check=False,
                timeout=deadline.remaining() if deadline is not None else None,
                merge_output=True,
            )
        except CommandTimeout as exc:
            self._record(path, exc.output.strip())
            raise CommandTimeout(redacted, exc.timeout, exc.output) from None
        except OSError as exc:
            self._record(path, str(exc))
            raise SigningError(f"problem running notary service client for {path}: {exc}") from exc

        output = result.stdout.strip(" \n\t")
        self._record(path, output)
        if result.returncode != 0:
            log.warning("error signing file", output=output, returncode=result.returncode)
            raise SigningError(
                f"problem with notary service client signing file {path}: {output}"
            ) from CommandError(redacted, result.returncode, output, "")

        log.info("signed file", output=output)
        return output

    def _record(self, path: Path, output: str) -> None:
        if self._record_output is not None:
            self._record_output(str(path), output)

