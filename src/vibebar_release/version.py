"""Release version resolution and the numeric CFBundleVersion derivation."""

import logging
import re
from typing import Optional

from .errors import PreconditionError, VersionOrderError
from .shell import run

log = logging.getLogger(__name__)

DEFAULT_VERSION = "0.0.0-dev"
FALLBACK_BUNDLE_VERSION = "1"
PRERELEASE_LABELS = ("alpha", "beta", "rc")

_PRERELEASE_RE = re.compile(
    r"^(?P<label>[A-Za-z]+)\.?(?P<number>\d+)$")


def strip_version(tag: str) -> str:
    """'v1.3.0' -> '1.3.0'. Only a single leading 'v' is removed."""
    return tag.strip().removeprefix("v")


def _git(repo_root, *args) -> Optional[str]:
    """stdout of a git command, or None when git is missing or fails."""
    try:
        result = run(["git", "-C", repo_root, *args], check=False, capture=True)
    except PreconditionError as e:
        log.warning("%s", e)
        return None
    return result.stdout if result.returncode == 0 else None


def latest_git_tag(repo_root) -> Optional[str]:
    tag = (_git(repo_root, "describe", "--tags", "--abbrev=0") or "").strip()
    return tag or None


def previous_release_tag(repo_root, version: str) -> Optional[str]:
    """Most recently created tag that is not *version* itself."""
    output = _git(repo_root, "tag", "--list", "--sort=-creatordate") or ""
    for tag in output.split():
        if strip_version(tag) != version:
            return tag
    return None


def resolve_version(repo_root, override: Optional[str] = None) -> str:
    """Version from *override*, else the latest git tag, else 0.0.0-dev."""
    version = override or latest_git_tag(repo_root) or DEFAULT_VERSION
    return strip_version(version)


def _split(version: str):
    core, _, rest = version.partition("-")
    core = core.split("+", 1)[0]
    prerelease = rest.split("+", 1)[0] if rest else ""
    return core, prerelease


def bundle_version(version: str) -> str:
    """Derive the digits-only CFBundleVersion from a human version.

    The major/minor/patch digits are concatenated; an ``alpha``/``beta``/``rc``
    pre-release number is appended zero-padded to two digits, so
    ``1.3.0-beta.4`` becomes ``13004``. An empty result becomes ``1``.
    """
    core, prerelease = _split(strip_version(version))
    digits = re.sub(r"\D", "", core)

    if prerelease:
        m = _PRERELEASE_RE.match(prerelease)
        if m and m.group("label").lower() in PRERELEASE_LABELS:
            digits += f"{int(m.group('number')):02d}"
        else:
            log.warning("Pre-release tag %r is not one of %s; "
                        "bundle version ignores it", prerelease,
                        "/".join(PRERELEASE_LABELS))

    if not digits:
        log.warning("Version %r has no digits; bundle version defaults to %s",
                    version, FALLBACK_BUNDLE_VERSION)
        return FALLBACK_BUNDLE_VERSION
    return digits


def is_monotonic(previous: Optional[str], current: str) -> bool:
    """True when *current* does not sort below *previous* (or there is none)."""
    if not previous or not str(previous).strip().isdigit():
        return True
    return int(current) >= int(previous)


def check_monotonic(previous: Optional[str], current: str, *, strict: bool) -> None:
    """Report a bundle version regression.

    Sparkle only offers an update whose CFBundleVersion is higher than the
    installed one, so a regression means users never see this release.
    """
    if is_monotonic(previous, current):
        return
    message = (f"Bundle version {current} is lower than the previous "
               f"bundle version {previous}")
    if strict:
        raise VersionOrderError(message)
    log.warning(message)
