"""Assemble VibeBar.app from build products, plugins and resources."""

import json
import logging
import plistlib
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .build import EXECUTABLES
from .descriptor import build_info_plist
from .errors import PreconditionError, VersionMismatchError
from .shell import run
from .version import bundle_version, check_monotonic, previous_release_tag

log = logging.getLogger(__name__)

MANIFEST_NAME = "component-versions.json"
FRAMEWORK_NAME = "Sparkle.framework"
MAIN_EXECUTABLE = "VibeBarApp"

# plugin directory, manifest inside it, manifest key holding its version
PLUGINS = {
    "claude": ("claude-vibebar-plugin", ".claude-plugin/plugin.json",
               "claudePluginVersion"),
    "opencode": ("opencode-vibebar-plugin", "package.json",
                 "opencodePluginVersion"),
}


def _read_json(path: Path) -> dict:
    if not path.is_file():
        raise PreconditionError(f"Required file not found: {path}")
    try:
        with open(path) as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise PreconditionError(f"Invalid JSON in {path}: {e}") from e


def load_manifest(path: Path) -> dict:
    return _read_json(path)


def check_plugin_versions(manifest: dict, plugins_dir: Path) -> None:
    """Fail unless each plugin's own version matches the manifest."""
    for name, (dirname, rel, key) in PLUGINS.items():
        declared = _read_json(plugins_dir / dirname / rel).get("version")
        expected = manifest.get(key)
        if declared != expected:
            raise VersionMismatchError(f"{name} plugin ({key})", expected, declared)
        log.debug("%s plugin version %s matches manifest", name, declared)


def read_bundle_version(app_path: Path) -> Optional[str]:
    """CFBundleVersion of an existing bundle, if there is one."""
    plist = app_path / "Contents" / "Info.plist"
    if not plist.exists():
        return None
    try:
        with open(plist, "rb") as f:
            return plistlib.load(f).get("CFBundleVersion")
    except (plistlib.InvalidFileException, ValueError) as e:
        log.debug("Could not read %s: %s", plist, e)
        return None


def _copy_tree(src: Path, dst: Path) -> None:
    if dst.exists():
        shutil.rmtree(dst)
    shutil.copytree(src, dst, symlinks=True)


def assemble_bundle(build_dir: Path, app_path: Path, config, version: str) -> Path:
    """Create *app_path* from *build_dir*. Any existing bundle is replaced.

    All inputs are checked before the old bundle is removed, so a missing
    file or a version mismatch never leaves a half-built bundle behind.
    """
    manifest = load_manifest(config.manifest)
    if not config.plugins_dir.is_dir():
        raise PreconditionError(f"Plugins directory not found: {config.plugins_dir}")
    check_plugin_versions(manifest, config.plugins_dir)

    binaries = [build_dir / name for name in EXECUTABLES]
    for path in binaries:
        if not path.is_file():
            raise PreconditionError(f"Build product not found: {path}")

    framework = config.sparkle_framework or build_dir / FRAMEWORK_NAME
    if not framework.is_dir():
        log.info("No %s at %s; building without auto-update", FRAMEWORK_NAME, framework)
        framework = None

    build_number = bundle_version(version)
    if config.previous_bundle_version:
        check_monotonic(config.previous_bundle_version, build_number, strict=True)
    else:
        previous = read_bundle_version(app_path)
        if previous is None:
            tag = previous_release_tag(config.repo_root, version)
            previous = bundle_version(tag) if tag else None
        check_monotonic(previous, build_number, strict=False)

    contents = app_path / "Contents"
    macos_dir = contents / "MacOS"
    resources = contents / "Resources"

    if app_path.exists():
        shutil.rmtree(app_path)
    macos_dir.mkdir(parents=True)
    resources.mkdir()

    for path in binaries:
        shutil.copy2(path, macos_dir / path.name)
    log.info("Binaries copied to %s", macos_dir)

    _copy_tree(config.plugins_dir, resources / "plugins")
    shutil.copy2(config.manifest, resources / MANIFEST_NAME)
    log.info("Plugins and %s bundled", MANIFEST_NAME)

    if config.icon and config.icon.is_file():
        shutil.copy2(config.icon, resources / "AppIcon.icns")
    else:
        log.info("No app icon at %s; skipping", config.icon)

    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    (resources / "build-timestamp.txt").write_text(stamp + "\n")

    if framework is not None:
        frameworks_dir = contents / "Frameworks"
        frameworks_dir.mkdir()
        _copy_tree(framework, frameworks_dir / FRAMEWORK_NAME)
        run(["install_name_tool", "-add_rpath", "@executable_path/../Frameworks",
             macos_dir / MAIN_EXECUTABLE])
        log.info("Embedded %s", FRAMEWORK_NAME)

    (contents / "Info.plist").write_text(build_info_plist(
        config.app_name, config.bundle_id, version, build_number,
        public_key=config.sparkle_public_key,
        feed_url=config.feed_url,
        minimum_system_version=config.minimum_system_version,
    ))
    log.info("Info.plist generated (version %s, build %s)", version, build_number)
    return app_path
