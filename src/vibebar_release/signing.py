"""Code signing for the app bundle: ad-hoc for local builds, Developer ID for releases.

Nested code is signed before the code that contains it. ``BundleSigner``
walks the bundle leaf-to-root and refuses any step taken out of that order:

    UNSIGNED -> FRAMEWORK_SIGNED -> HELPERS_SIGNED -> BUNDLE_SIGNED -> VERIFIED
"""

import enum
import logging
import re
from pathlib import Path
from typing import Optional

from .errors import SigningIdentityError, SigningOrderError
from .shell import run

log = logging.getLogger(__name__)

ADHOC_IDENTITY = "-"
DEVELOPER_ID_CLASS = "Developer ID Application"

_IDENTITY_RE = re.compile(r'^\s*\d+\)\s+([0-9A-F]{40})\s+"(.+)"\s*$')


class SigningState(enum.IntEnum):
    UNSIGNED = 0
    FRAMEWORK_SIGNED = 1
    HELPERS_SIGNED = 2
    BUNDLE_SIGNED = 3
    VERIFIED = 4


# ---------------------------------------------------------------------------
# Identity lookup
# ---------------------------------------------------------------------------

def find_identity(team_id: Optional[str] = None) -> str:
    """Return the SHA-1 of the first Developer ID Application identity.

    With *team_id*, only identities issued to that team qualify.
    """
    result = run(["security", "find-identity", "-v", "-p", "codesigning"],
                 check=False, capture=True)
    if result.returncode != 0:
        raise SigningIdentityError(
            f"security find-identity failed: {result.stderr.strip()}")

    for line in result.stdout.splitlines():
        m = _IDENTITY_RE.match(line)
        if not m:
            continue
        sha1, name = m.groups()
        if not name.startswith(DEVELOPER_ID_CLASS):
            continue
        if team_id and f"({team_id})" not in name:
            continue
        log.info("Signing identity: %s", name)
        return sha1

    wanted = f"{DEVELOPER_ID_CLASS} ({team_id})" if team_id else DEVELOPER_ID_CLASS
    raise SigningIdentityError(f"No '{wanted}' certificate found in the keychain")


# ---------------------------------------------------------------------------
# Bundle walking
# ---------------------------------------------------------------------------

def framework_components(framework: Path) -> list:
    """Signable code nested in a framework, deepest first, framework last."""
    parts = []
    versions = framework / "Versions"
    if versions.is_dir():
        for vdir in sorted(versions.iterdir()):
            # Versions/Current is a symlink to one of the real version dirs
            if vdir.is_symlink() or not vdir.is_dir():
                continue
            parts.extend(sorted((vdir / "XPCServices").glob("*.xpc")))
            for name in ("Autoupdate", "Updater.app"):
                if (vdir / name).exists():
                    parts.append(vdir / name)
    parts.sort(key=lambda p: len(p.parts), reverse=True)
    parts.append(framework)
    return parts


def helper_binaries(app_path: Path, main_executable: str) -> list:
    macos_dir = app_path / "Contents" / "MacOS"
    return sorted(p for p in macos_dir.iterdir()
                  if p.is_file() and not p.is_symlink() and p.name != main_executable)


# ---------------------------------------------------------------------------
# Signer
# ---------------------------------------------------------------------------

class BundleSigner:
    """Signs one .app bundle, enforcing leaf-to-root order."""

    def __init__(self, app_path: Path, identity: str, *, bundle_id: str,
                 entitlements: Optional[Path] = None,
                 main_executable: str = "VibeBarApp"):
        self.app_path = Path(app_path)
        self.identity = identity
        self.bundle_id = bundle_id
        self.main_executable = main_executable
        self.state = SigningState.UNSIGNED
        self.entitlements = None
        if entitlements is not None and not self.adhoc:
            if Path(entitlements).is_file():
                self.entitlements = Path(entitlements)
            else:
                log.warning("Entitlements file not found: %s", entitlements)

    @property
    def adhoc(self) -> bool:
        return self.identity == ADHOC_IDENTITY

    def _advance(self, required: SigningState, new: SigningState) -> None:
        if self.state != required:
            raise SigningOrderError(
                f"Cannot move to {new.name} from {self.state.name} "
                f"(requires {required.name})")
        self.state = new

    def _codesign(self, path: Path, *, identifier=None, entitlements=False,
                  preserve_entitlements=False) -> None:
        cmd = ["codesign", "--force", "--sign", self.identity]
        if not self.adhoc:
            cmd += ["--options", "runtime", "--timestamp"]
        if identifier:
            cmd += ["--identifier", identifier]
        if entitlements and self.entitlements:
            cmd += ["--entitlements", self.entitlements]
        elif preserve_entitlements and not self.adhoc:
            cmd += ["--preserve-metadata=entitlements"]
        cmd.append(path)
        rel = path.relative_to(self.app_path.parent) if path != self.app_path else path.name
        log.info("Signing: %s", rel)
        run(cmd)

    # --- transitions, innermost first ---

    def sign_frameworks(self) -> None:
        self._advance(SigningState.UNSIGNED, SigningState.FRAMEWORK_SIGNED)
        frameworks_dir = self.app_path / "Contents" / "Frameworks"
        if not frameworks_dir.is_dir():
            return
        for framework in sorted(frameworks_dir.glob("*.framework")):
            for part in framework_components(framework):
                self._codesign(part, preserve_entitlements=part.suffix == ".xpc")

    def sign_helpers(self) -> None:
        self._advance(SigningState.FRAMEWORK_SIGNED, SigningState.HELPERS_SIGNED)
        for helper in helper_binaries(self.app_path, self.main_executable):
            self._codesign(helper, identifier=f"{self.bundle_id}.{helper.name}",
                           entitlements=True)

    def sign_bundle(self) -> None:
        self._advance(SigningState.HELPERS_SIGNED, SigningState.BUNDLE_SIGNED)
        self._codesign(self.app_path, identifier=self.bundle_id, entitlements=True)

    def verify(self) -> None:
        """Verify the bundle signature; any failure is fatal."""
        if self.state != SigningState.BUNDLE_SIGNED:
            raise SigningOrderError(
                f"Cannot verify {self.app_path.name}: signing stopped at "
                f"{self.state.name}")
        run(["codesign", "--verify", "--deep", "--strict", "--verbose=2",
             self.app_path])
        self.state = SigningState.VERIFIED

    def assess(self) -> bool:
        """Gatekeeper assessment. Logged only; rejection before notarization is normal."""
        result = run(["spctl", "--assess", "--type", "execute", "--verbose=2",
                      self.app_path], check=False, capture=True)
        if result.returncode == 0:
            log.info("Gatekeeper: accepted")
            return True
        log.info("Gatekeeper: rejected (pre-notarization) %s", result.stderr.strip())
        return False

    def sign_all(self) -> SigningState:
        self.sign_frameworks()
        self.sign_helpers()
        self.sign_bundle()
        self.verify()
        if not self.adhoc:
            self.assess()
        return self.state


def sign_adhoc(app_path: Path, bundle_id: str) -> SigningState:
    """Ad-hoc sign with a stable identifier so TCC grants survive rebuilds."""
    log.info("Ad-hoc signing %s as %s", app_path.name, bundle_id)
    return BundleSigner(app_path, ADHOC_IDENTITY, bundle_id=bundle_id).sign_all()


def sign_release(app_path: Path, identity: str, bundle_id: str,
                 entitlements: Optional[Path]) -> SigningState:
    log.info("Developer ID signing %s", app_path.name)
    return BundleSigner(app_path, identity, bundle_id=bundle_id,
                        entitlements=entitlements).sign_all()
