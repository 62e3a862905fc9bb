from __future__ import annotations

import os
import subprocess
import threading
from pathlib import Path
from typing import Dict, Mapping, Sequence


class CommandError(RuntimeError):
    """Raised when a subprocess exits with a non-zero status code."""

    def __init__(self, command: Sequence[str], returncode: int, stdout: str, stderr: str) -> None:
        self.command = list(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(
            f"Command {' '.join(command)} failed with exit code {returncode}\nSTDOUT:{stdout}\nSTDERR:{stderr}"
        )


class CommandTimeout(TimeoutError):
    """Raised when a subprocess is killed for running past its timeout."""

    def __init__(self, command: Sequence[str], timeout: float, output: str = "") -> None:
        self.command = list(command)
        self.timeout = timeout
        self.output = output
        super().__init__(f"Command {' '.join(command)} timed out after {timeout:.1f}s")


def _as_text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def run_command(
    command: Sequence[str],
    *,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    check: bool = True,
    timeout: float | None = None,
    merge_output: bool = False,
) -> subprocess.CompletedProcess[str]:
    """Execute a subprocess command and return the completed process.

    With ``merge_output`` stderr is folded into stdout, which preserves the
    interleaving of the two streams for tools whose output is only logged.
    """

    process_env = os.environ.copy()
    if env:
        process_env.update(env)

    try:
        result = subprocess.run(
            list(command),
            cwd=str(cwd) if cwd else None,
            env=process_env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT if merge_output else subprocess.PIPE,
            text=True,
            check=False,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as exc:
        raise CommandTimeout(command, exc.timeout, _as_text(exc.stdout) + _as_text(exc.stderr)) from exc

    if check and result.returncode != 0:
        raise CommandError(command, result.returncode, result.stdout, result.stderr or "")
    return result


def ensure_directory(path: str | Path, mode: int = 0o755) -> Path:
    """Create a directory and return its Path object."""

    path = Path(path)
    path.mkdir(mode=mode, parents=True, exist_ok=True)
    return path


_LOCKS_GUARD = threading.Lock()
_DIRECTORY_LOCKS: Dict[str, threading.Lock] = {}


def directory_lock(path: str | Path) -> threading.Lock:
    """Return the process-wide lock that serialises work on ``path``."""

    key = str(Path(path).resolve())
    with _LOCKS_GUARD:
        lock = _DIRECTORY_LOCKS.get(key)
        if lock is None:
            lock = _DIRECTORY_LOCKS[key] = threading.Lock()
        return lock
