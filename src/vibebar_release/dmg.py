"""Build the drag-to-install disk image."""

import logging
import os
import shutil
from pathlib import Path

from .errors import PreconditionError
from .shell import run

log = logging.getLogger(__name__)

STAGING_NAME = ".dmg-staging"


def dmg_name(app_name: str, version: str) -> str:
    return f"{app_name}-{version}-universal.dmg"


def stage(app_path: Path, staging: Path) -> Path:
    """Copy the bundle next to an /Applications symlink for drag-to-install."""
    if staging.exists():
        shutil.rmtree(staging)
    staging.mkdir(parents=True)
    shutil.copytree(app_path, staging / app_path.name, symlinks=True)
    os.symlink("/Applications", staging / "Applications")
    return staging


def create_dmg(app_path: Path, dmg_path: Path, volume_name: str) -> Path:
    """Create a compressed read-only (UDZO) image of *app_path*.

    The bundle is copied by value, so it must be signed before this runs.
    """
    if not app_path.is_dir():
        raise PreconditionError(f"App bundle not found: {app_path}")

    if dmg_path.exists():
        dmg_path.unlink()
    staging = stage(app_path, dmg_path.parent / STAGING_NAME)

    log.info("Creating %s", dmg_path.name)
    run(["hdiutil", "create", "-volname", volume_name,
         "-srcfolder", staging, "-ov", "-format", "UDZO", dmg_path])

    shutil.rmtree(staging)
    size_mb = dmg_path.stat().st_size / (1024 * 1024)
    log.info("DMG created at %s (%.1f MB)", dmg_path, size_mb)
    return dmg_path
