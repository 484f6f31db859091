"""Plugin release helpers: archive the Claude plugin, publish the OpenCode
plugin to npm, and wire both into a local developer setup."""

import json
import logging
import os
import re
import shutil
import tarfile
from pathlib import Path
from typing import Optional

from .checksum import sha256sum
from .errors import PreconditionError
from .shell import run

log = logging.getLogger(__name__)

CLAUDE_PLUGIN = "claude-vibebar-plugin"
CLAUDE_PLUGIN_ID = "vibebar-claude"
CLAUDE_MANIFEST = Path(".claude-plugin") / "plugin.json"
OPENCODE_PLUGIN = "opencode-vibebar-plugin"

_VERSION_RE = re.compile(r'"version"\s*:\s*"([^"]+)"')


def manifest_version(manifest: Path) -> str:
    """First ``"version": "..."`` value in *manifest*, found by pattern match."""
    if not manifest.is_file():
        raise PreconditionError(f"Claude plugin manifest not found: {manifest}")
    m = _VERSION_RE.search(manifest.read_text())
    if not m:
        raise PreconditionError(f"Unable to parse version from {manifest}")
    return m.group(1)


def package_claude_plugin(plugins_dir: Path, dist_dir: Path) -> Path:
    """Archive the Claude plugin as ``<dist>/claude-vibebar-plugin-<ver>.tgz``."""
    plugin_dir = plugins_dir / CLAUDE_PLUGIN
    version = manifest_version(plugin_dir / CLAUDE_MANIFEST)

    dist_dir.mkdir(parents=True, exist_ok=True)
    archive = dist_dir / f"{CLAUDE_PLUGIN}-{version}.tgz"
    if archive.exists():
        archive.unlink()

    log.info("Packing Claude plugin %s -> %s", version, archive)
    with tarfile.open(archive, "w:gz") as tar:
        tar.add(plugin_dir, arcname=".")
    return archive


def publish_opencode_plugin(plugins_dir: Path, npm_token: Optional[str] = None,
                            extra_args=()) -> None:
    plugin_dir = plugins_dir / OPENCODE_PLUGIN
    if not (plugin_dir / "package.json").is_file():
        raise PreconditionError(f"package.json not found in {plugin_dir}")
    if npm_token:
        run(["npm", "config", "set", f"//registry.npmjs.org/:_authToken={npm_token}"],
            secrets=[f"//registry.npmjs.org/:_authToken={npm_token}"])
    log.info("Publishing OpenCode plugin from %s", plugin_dir)
    run(["npm", "publish", "--access", "public", *extra_args], cwd=plugin_dir)


# ---------------------------------------------------------------------------
# Local developer setup
# ---------------------------------------------------------------------------

def opencode_config_path() -> Path:
    return Path.home() / ".config" / "opencode" / "opencode.json"


def register_opencode_plugin(config_file: Path, plugin_path: Path) -> bool:
    """Add *plugin_path* to the ``plugin`` array, keeping entries unique.

    Creates the file when missing. Returns True when the file was changed.
    """
    config_file.parent.mkdir(parents=True, exist_ok=True)
    data = {}
    if config_file.exists():
        try:
            data = json.loads(config_file.read_text() or "{}")
        except json.JSONDecodeError as e:
            raise PreconditionError(f"Invalid JSON in {config_file}: {e}") from e

    if not isinstance(data, dict):
        raise PreconditionError(f"{config_file} must hold a JSON object")
    entries = data.get("plugin") or []
    if isinstance(entries, str):
        entries = [entries]
    if not isinstance(entries, list):
        raise PreconditionError(
            f'"plugin" in {config_file} must be a list of paths, '
            f"not {type(entries).__name__}")
    merged = list(dict.fromkeys([*entries, str(plugin_path)]))
    if config_file.exists() and merged == entries:
        return False

    data["plugin"] = merged
    config_file.write_text(json.dumps(data, indent=2) + "\n")
    return True


def manual_claude_steps(plugin_dir: Path) -> list:
    return [
        f'claude plugin install "{plugin_dir}"',
        f"claude plugin enable {CLAUDE_PLUGIN_ID}",
    ]


def install_claude_plugin(plugin_dir: Path) -> bool:
    """Install and enable the Claude plugin. Returns False if the user must do it."""
    if shutil.which("claude") is None:
        log.warning("claude command not found")
        return False
    result = run(["claude", "plugin", "install", plugin_dir], check=False)
    if result.returncode != 0:
        log.warning("claude plugin install failed (exit %d)", result.returncode)
        return False
    enabled = run(["claude", "plugin", "enable", CLAUDE_PLUGIN_ID], check=False)
    if enabled.returncode != 0:
        log.warning("claude plugin enable failed (exit %d)", enabled.returncode)
    return True


def setup_local_plugins(plugins_dir: Path, config_file: Optional[Path] = None) -> dict:
    """Point OpenCode and Claude at the plugins in this checkout."""
    opencode_dir = plugins_dir / OPENCODE_PLUGIN
    claude_dir = plugins_dir / CLAUDE_PLUGIN
    for d in (opencode_dir, claude_dir):
        if not d.is_dir():
            raise PreconditionError(f"Plugin dir not found: {d}")

    config_file = config_file or opencode_config_path()
    changed = register_opencode_plugin(config_file, opencode_dir)
    log.info("%s %s", "Updated" if changed else "Unchanged", config_file)

    return {
        "opencode_config": config_file,
        "claude_installed": install_claude_plugin(claude_dir),
        "claude_dir": claude_dir,
    }


def default_socket_path() -> str:
    return os.path.expanduser(
        "~/Library/Application Support/VibeBar/runtime/agent.sock")
