"""The release as an ordered list of named steps.

Each step takes the current ``ArtifactState`` and the ``ReleaseConfig`` and
returns the updated state, or raises. Steps run strictly in order; the first
exception stops the run and leaves whatever is on disk for inspection.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from . import build, bundle, checksum, dmg, notarize, signing
from .config import ReleaseConfig, require_credentials
from .errors import ReleaseError
from .version import bundle_version, resolve_version

log = logging.getLogger(__name__)


@dataclass
class ArtifactState:
    version: str
    bundle_version: str
    build_dir: Optional[Path] = None
    app_path: Optional[Path] = None
    dmg_path: Optional[Path] = None
    checksum_path: Optional[Path] = None
    identity: Optional[str] = None
    signing_state: signing.SigningState = signing.SigningState.UNSIGNED
    submission_id: Optional[str] = None
    stapled: bool = False
    completed: list = field(default_factory=list)


@dataclass
class Step:
    name: str
    func: Callable[[ArtifactState, ReleaseConfig], ArtifactState]


def initial_state(config: ReleaseConfig) -> ArtifactState:
    version = resolve_version(config.repo_root, config.version)
    return ArtifactState(version=version, bundle_version=bundle_version(version))


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------

def step_build(state, config):
    state.build_dir = build.build_universal(config.repo_root, config.architectures)
    return state


def step_assemble(state, config):
    if state.build_dir is None:
        raise ReleaseError("Nothing built yet; run the build step first")
    config.dist_dir.mkdir(parents=True, exist_ok=True)
    state.app_path = bundle.assemble_bundle(
        state.build_dir, config.app_path, config, state.version)
    state.signing_state = signing.SigningState.UNSIGNED
    return state


def step_resolve_identity(state, config):
    require_credentials(config)
    state.identity = signing.find_identity(config.apple_team_id)
    return state


def step_sign_adhoc(state, config):
    state.signing_state = signing.sign_adhoc(state.app_path, config.bundle_id)
    return state


def step_sign_release(state, config):
    state.signing_state = signing.sign_release(
        state.app_path, state.identity, config.bundle_id, config.entitlements)
    return state


def step_dmg(state, config):
    if state.signing_state != signing.SigningState.VERIFIED:
        raise ReleaseError(
            f"Refusing to image an unverified bundle ({state.signing_state.name})")
    state.dmg_path = config.dist_dir / dmg.dmg_name(config.app_name, state.version)
    dmg.create_dmg(state.app_path, state.dmg_path, config.app_name)
    state.stapled = False
    return state


def step_notarize(state, config):
    state.submission_id = notarize.notarize_dmg(state.dmg_path, state.identity, config)
    state.stapled = True
    return state


def step_checksum(state, config):
    # Stapling rewrites the image, so a signed release is hashed only after it.
    if config.enable_signing and not state.stapled:
        raise ReleaseError("Checksum requested before the notarization ticket was stapled")
    state.checksum_path = checksum.write_checksum(state.dmg_path)
    return state


def release_steps(config: ReleaseConfig, *, skip_build: bool = False) -> list:
    steps = [] if skip_build else [Step("build", step_build)]
    steps.append(Step("assemble", step_assemble))
    if config.enable_signing:
        # Resolve credentials and identity before anything is signed.
        steps.insert(0, Step("identity", step_resolve_identity))
        steps.append(Step("sign", step_sign_release))
        steps.append(Step("dmg", step_dmg))
        steps.append(Step("notarize", step_notarize))
    else:
        steps.append(Step("sign", step_sign_adhoc))
        steps.append(Step("dmg", step_dmg))
    steps.append(Step("checksum", step_checksum))
    return steps


def run_pipeline(steps: list, state: ArtifactState, config: ReleaseConfig) -> ArtifactState:
    total = len(steps)
    for i, step in enumerate(steps, 1):
        log.info("[%d/%d] %s", i, total, step.name)
        state = step.func(state, config)
        state.completed.append(step.name)
    return state
