"""Thin wrapper around subprocess for calling the macOS command-line tools."""

import logging
import shlex
import subprocess

from .errors import PreconditionError

log = logging.getLogger(__name__)


def _display(cmd, secrets):
    hidden = {s for s in secrets if s}
    return " ".join("****" if c in hidden else shlex.quote(c) for c in cmd)


def run(cmd, *, check=True, capture=False, timeout=None, cwd=None, env=None,
        secrets=()):
    """Run *cmd*, logging it first with any of *secrets* masked.

    Raises ``CalledProcessError`` on a non-zero exit when *check* is set and
    ``PreconditionError`` when the executable does not exist.
    ``TimeoutExpired`` propagates to the caller.
    """
    cmd = [str(c) for c in cmd]
    log.info("$ %s", _display(cmd, secrets))
    try:
        return subprocess.run(
            cmd,
            check=check,
            capture_output=capture,
            text=True,
            timeout=timeout,
            cwd=str(cwd) if cwd else None,
            env=env,
        )
    except FileNotFoundError:
        raise PreconditionError(f"{cmd[0]} not found on PATH") from None
