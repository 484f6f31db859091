"""Shared test fixtures: a fake VibeBar checkout and a recording command runner."""

import json
import logging
import os
import subprocess
from pathlib import Path

import pytest

from vibebar_release import build, bundle, dmg, notarize, plugins, signing, sparkle, version
from vibebar_release import config as config_module
from vibebar_release.config import load_config

# Every module that shells out imports ``run`` by name.
_RUN_USERS = (build, bundle, dmg, notarize, plugins, signing, sparkle, version)

_ENV_VARS = ("VERSION", "VIBEBAR_ENABLE_SIGNING", "APPLE_TEAM_ID", "APPLE_ID",
             "APPLE_APP_PASSWORD", "SPARKLE_PUBLIC_KEY",
             "PREVIOUS_BUNDLE_VERSION", "NPM_TOKEN")

IDENTITY_SHA = "A" * 40
FIND_IDENTITY_OUTPUT = f"""\
  1) {"B" * 40} "Apple Development: Someone (ABCDE12345)"
  2) {IDENTITY_SHA} "Developer ID Application: VibeBar Inc (TEAM123456)"
     2 valid identities found
"""


class FakeRunner:
    """Stands in for ``shell.run``: records every command, answers from a script.

    ``on(*prefix, ...)`` registers a response for commands starting with
    *prefix*; the most recent matching registration wins. ``effect`` is called
    with the command before the result is returned and may raise.
    """

    def __init__(self):
        self.calls = []
        self._responses = []

    def on(self, *prefix, returncode=0, stdout="", stderr="", effect=None):
        self._responses.append((tuple(prefix), returncode, stdout, stderr, effect))

    def __call__(self, cmd, *, check=True, capture=False, timeout=None,
                 cwd=None, env=None, secrets=()):
        cmd = [str(c) for c in cmd]
        self.calls.append(cmd)
        rc, out, err = 0, "", ""
        for prefix, r, o, e, effect in reversed(self._responses):
            if tuple(cmd[:len(prefix)]) == prefix:
                if effect is not None:
                    effect(cmd)
                rc, out, err = r, o, e
                break
        if check and rc != 0:
            raise subprocess.CalledProcessError(rc, cmd, out, err)
        return subprocess.CompletedProcess(cmd, rc, out, err)

    def commands(self, *prefix):
        return [c for c in self.calls if tuple(c[:len(prefix)]) == prefix]

    def index(self, *prefix):
        """Position of the first call starting with *prefix*."""
        for i, c in enumerate(self.calls):
            if tuple(c[:len(prefix)]) == prefix:
                return i
        raise AssertionError(f"{prefix} was never run")


def _write_dmg(cmd):
    Path(cmd[-1]).write_bytes(b"fresh disk image")


def _staple(cmd):
    with open(cmd[-1], "ab") as f:
        f.write(b"+stapled ticket")


@pytest.fixture
def fake_run(monkeypatch):
    runner = FakeRunner()
    runner.on("hdiutil", "create", effect=_write_dmg)
    runner.on("xcrun", "stapler", "staple", effect=_staple)
    runner.on("security", "find-identity", stdout=FIND_IDENTITY_OUTPUT)
    for module in _RUN_USERS:
        monkeypatch.setattr(module, "run", runner)
    return runner


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr("vibebar_release.config.get_app_password", lambda apple_id: None)


@pytest.fixture(autouse=True)
def reset_logging():
    """Drop handlers installed by setup_logging; they hold per-test streams."""
    yield
    root = logging.getLogger()
    while config_module._installed_handlers:
        handler = config_module._installed_handlers.pop()
        root.removeHandler(handler)
        handler.close()


def write_json(path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2))


@pytest.fixture
def repo(tmp_path):
    """A minimal VibeBar checkout with consistent component versions."""
    root = tmp_path / "VibeBar"
    root.mkdir()
    write_json(root / "component-versions.json", {
        "appVersion": "1.3.0",
        "wrapperVersion": "1.0.0",
        "claudePluginVersion": "0.4.0",
        "opencodePluginVersion": "0.2.1",
    })
    write_json(root / "plugins" / "claude-vibebar-plugin" / ".claude-plugin" / "plugin.json",
               {"name": "vibebar-claude", "version": "0.4.0"})
    (root / "plugins" / "claude-vibebar-plugin" / "scripts").mkdir()
    (root / "plugins" / "claude-vibebar-plugin" / "scripts" / "emit.js").write_text("// emit\n")
    write_json(root / "plugins" / "opencode-vibebar-plugin" / "package.json",
               {"name": "opencode-vibebar-plugin", "version": "0.2.1"})

    resources = root / "Sources" / "VibeBarApp" / "Resources"
    resources.mkdir(parents=True)
    (resources / "AppIcon.icns").write_bytes(b"icns")
    (resources / "VibeBar.entitlements").write_text("<plist/>")
    return root


@pytest.fixture
def build_dir(tmp_path):
    out = tmp_path / "products"
    out.mkdir()
    for name in build.EXECUTABLES:
        p = out / name
        p.write_bytes(b"\xca\xfe\xba\xbe" + name.encode())
        os.chmod(p, 0o755)
    return out


@pytest.fixture
def sparkle_build_dir(build_dir):
    fw = build_dir / "Sparkle.framework"
    vdir = fw / "Versions" / "B"
    (vdir / "XPCServices" / "Installer.xpc").mkdir(parents=True)
    (vdir / "XPCServices" / "Downloader.xpc").mkdir()
    (vdir / "Updater.app").mkdir()
    (vdir / "Autoupdate").write_bytes(b"bin")
    (vdir / "Sparkle").write_bytes(b"bin")
    os.symlink("B", fw / "Versions" / "Current")
    os.symlink("Versions/Current/Sparkle", fw / "Sparkle")
    return build_dir


@pytest.fixture
def config(repo):
    return load_config(cli_overrides={"repo_root": str(repo), "version": "1.3.0"})


@pytest.fixture
def release_config(repo, monkeypatch):
    monkeypatch.setenv("APPLE_TEAM_ID", "TEAM123456")
    monkeypatch.setenv("APPLE_ID", "dev@vibebar.app")
    monkeypatch.setenv("APPLE_APP_PASSWORD", "abcd-efgh-ijkl-mnop")
    return load_config(cli_overrides={"repo_root": str(repo), "version": "1.3.0",
                                      "enable_signing": True})
