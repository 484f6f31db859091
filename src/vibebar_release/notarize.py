"""Sign, notarize and staple the disk image."""

import json
import logging
import subprocess
from pathlib import Path
from typing import Optional

from .errors import NotarizationError
from .shell import run

log = logging.getLogger(__name__)

ACCEPTED = "Accepted"
# Extra seconds past notarytool's own --timeout before we give up on the process.
_PROCESS_GRACE = 120


def sign_dmg(dmg_path: Path, identity: str) -> None:
    log.info("Signing DMG")
    run(["codesign", "--force", "--sign", identity, "--timestamp", dmg_path])


def _auth_args(config) -> list:
    return ["--apple-id", config.apple_id,
            "--password", config.apple_app_password,
            "--team-id", config.apple_team_id]


def _parse_output(stdout: str) -> dict:
    try:
        data = json.loads(stdout.strip() or "{}")
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def submit(dmg_path: Path, config) -> dict:
    """Submit and block until notarytool reports a verdict.

    Returns notarytool's JSON result (``id``, ``status``, ``message``).
    """
    minutes = config.notary_timeout_minutes
    log.info("Submitting for notarization (this may take several minutes)...")
    try:
        result = run(["xcrun", "notarytool", "submit", dmg_path,
                      *_auth_args(config), "--wait", "--timeout", f"{minutes}m",
                      "--output-format", "json"],
                     check=False, capture=True, timeout=minutes * 60 + _PROCESS_GRACE,
                     secrets=[config.apple_app_password])
    except subprocess.TimeoutExpired:
        raise NotarizationError(
            f"Notarization did not finish within {minutes} minutes") from None

    info = _parse_output(result.stdout)
    if not info.get("status"):
        raise NotarizationError(
            f"notarytool submit failed (exit {result.returncode}): "
            f"{result.stderr.strip() or result.stdout.strip()}",
            submission_id=info.get("id"))
    log.info("Submission %s: %s", info.get("id"), info["status"])
    return info


def fetch_log(submission_id: str, config) -> Optional[str]:
    """Fetch the notary log for a submission. Failures are logged, not raised."""
    try:
        result = run(["xcrun", "notarytool", "log", submission_id,
                      *_auth_args(config)],
                     check=False, capture=True, timeout=300,
                     secrets=[config.apple_app_password])
    except subprocess.TimeoutExpired:
        log.warning("Timed out fetching notarization log for %s", submission_id)
        return None
    if result.returncode != 0:
        log.warning("Could not fetch notarization log for %s: %s",
                    submission_id, result.stderr.strip())
        return None
    return result.stdout


def staple(dmg_path: Path) -> None:
    log.info("Stapling notarization ticket to %s", dmg_path.name)
    run(["xcrun", "stapler", "staple", dmg_path])
    run(["xcrun", "stapler", "validate", dmg_path])


def notarize_dmg(dmg_path: Path, identity: str, config) -> str:
    """Sign, submit, and staple *dmg_path*. Returns the submission id.

    Anything other than an ``Accepted`` verdict raises ``NotarizationError``
    after printing the notary log; the image is left unstapled.
    """
    sign_dmg(dmg_path, identity)
    info = submit(dmg_path, config)
    submission_id = info.get("id")
    status = info["status"]

    if status != ACCEPTED:
        detail = fetch_log(submission_id, config) if submission_id else None
        if detail:
            log.error("Notarization log for %s:\n%s", submission_id, detail)
        raise NotarizationError(
            f"Notarization {status}: {info.get('message', 'no message')}",
            submission_id=submission_id, status=status)

    staple(dmg_path)
    log.info("Code signing and notarization complete")
    return submission_id
