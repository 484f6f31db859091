"""Release configuration: YAML file, env vars, keyring and logging setup."""

import logging
import os
from dataclasses import dataclass, fields
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

import yaml

from .errors import PreconditionError

CONFIG_FILENAME = "vibebar-release.yaml"
SERVICE_NAME = "vibebar-release"

DEFAULTS = {
    "repo_root": ".",
    "dist_dir": "dist",
    "app_name": "VibeBar",
    "bundle_id": "com.vibebar.app",
    "version": None,
    "enable_signing": False,
    "apple_team_id": None,
    "apple_id": None,
    "apple_app_password": None,
    "sparkle_public_key": None,
    "feed_url": "https://vibebar.yelog.org/appcast.xml",
    "minimum_system_version": "13.0",
    "previous_bundle_version": None,
    "entitlements": "Sources/VibeBarApp/Resources/VibeBar.entitlements",
    "icon": "Sources/VibeBarApp/Resources/AppIcon.icns",
    "manifest": "component-versions.json",
    "plugins_dir": "plugins",
    "sparkle_framework": None,
    "architectures": ["arm64", "x86_64"],
    "notary_timeout_minutes": 30,
    "npm_token": None,
}

# Keys whose values are paths relative to repo_root.
_PATH_KEYS = ("dist_dir", "entitlements", "icon", "manifest", "plugins_dir",
              "sparkle_framework")

_ENV_MAP = {
    "version": "VERSION",
    "enable_signing": "VIBEBAR_ENABLE_SIGNING",
    "apple_team_id": "APPLE_TEAM_ID",
    "apple_id": "APPLE_ID",
    "apple_app_password": "APPLE_APP_PASSWORD",
    "sparkle_public_key": "SPARKLE_PUBLIC_KEY",
    "previous_bundle_version": "PREVIOUS_BUNDLE_VERSION",
    "npm_token": "NPM_TOKEN",
}

# Credentials that must never be written into the YAML file.
_SECRET_KEYS = {"apple_app_password", "npm_token"}

REQUIRED_CREDENTIALS = ("apple_team_id", "apple_id", "apple_app_password")

_installed_handlers = []


@dataclass
class ReleaseConfig:
    repo_root: Path
    dist_dir: Path
    app_name: str
    bundle_id: str
    version: Optional[str]
    enable_signing: bool
    apple_team_id: Optional[str]
    apple_id: Optional[str]
    apple_app_password: Optional[str]
    sparkle_public_key: Optional[str]
    feed_url: str
    minimum_system_version: str
    previous_bundle_version: Optional[str]
    entitlements: Path
    icon: Path
    manifest: Path
    plugins_dir: Path
    sparkle_framework: Optional[Path]
    architectures: list
    notary_timeout_minutes: int
    npm_token: Optional[str]

    @property
    def app_path(self) -> Path:
        return self.dist_dir / f"{self.app_name}.app"


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


# ---------------------------------------------------------------------------
# Keyring (app-specific password storage)
# ---------------------------------------------------------------------------

def get_app_password(apple_id: str) -> Optional[str]:
    """Read the notarization app password from the OS keychain."""
    try:
        import keyring
        return keyring.get_password(SERVICE_NAME, apple_id)
    except Exception:
        return None


def set_app_password(apple_id: str, password: str) -> None:
    """Store the notarization app password in the OS keychain."""
    import keyring
    keyring.set_password(SERVICE_NAME, apple_id, password)


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------

def setup_logging(verbose: bool = False, log_dir: Optional[Path] = None) -> None:
    """Configure console output and, when *log_dir* is given, a rotating log."""
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    while _installed_handlers:
        root.removeHandler(_installed_handlers.pop())

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        fh = RotatingFileHandler(str(log_dir / "release.log"),
                                 maxBytes=1_000_000, backupCount=3)
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"))
        root.addHandler(fh)
        _installed_handlers.append(fh)

    ch = logging.StreamHandler()
    ch.setLevel(logging.DEBUG if verbose else logging.INFO)
    ch.setFormatter(logging.Formatter("==> %(message)s"))
    root.addHandler(ch)
    _installed_handlers.append(ch)


# ---------------------------------------------------------------------------
# Config loading
# ---------------------------------------------------------------------------

def load_config(config_path=None, cli_overrides=None) -> ReleaseConfig:
    """Load config with precedence: CLI args > env vars > config file > defaults.

    The config file is *config_path* when given, otherwise
    ``vibebar-release.yaml`` in the repo root (if it exists).
    """
    config = dict(DEFAULTS)
    cli_overrides = cli_overrides or {}
    if cli_overrides.get("repo_root") is not None:
        config["repo_root"] = cli_overrides["repo_root"]

    # 1. Config file
    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise PreconditionError(f"Config file not found: {path}")
    else:
        path = Path(config["repo_root"]) / CONFIG_FILENAME

    if path.exists():
        try:
            with open(path) as f:
                file_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise PreconditionError(f"Invalid config file {path}: {e}") from e
        for key in DEFAULTS:
            if key in file_config and key not in _SECRET_KEYS:
                config[key] = file_config[key]
        for key in _SECRET_KEYS & set(file_config):
            logging.getLogger(__name__).warning(
                "Ignoring %s in %s; use the environment or keychain", key, path)

    # 2. Env var overrides
    for key, env_var in _ENV_MAP.items():
        val = os.environ.get(env_var)
        if val:
            config[key] = val

    # 3. CLI arg overrides
    for key, val in cli_overrides.items():
        if val is not None:
            config[key] = val

    # 4. Fall back to the keychain for the app password
    if not config.get("apple_app_password") and config.get("apple_id"):
        config["apple_app_password"] = get_app_password(config["apple_id"])

    config["enable_signing"] = _parse_bool(config["enable_signing"])
    config["notary_timeout_minutes"] = int(config["notary_timeout_minutes"])

    root = Path(config["repo_root"]).resolve()
    config["repo_root"] = root
    for key in _PATH_KEYS:
        if config[key] is not None:
            p = Path(config[key]).expanduser()
            config[key] = p if p.is_absolute() else root / p

    names = {f.name for f in fields(ReleaseConfig)}
    return ReleaseConfig(**{k: v for k, v in config.items() if k in names})


def require_credentials(config: ReleaseConfig) -> None:
    """Abort unless every notarization credential is present."""
    for key in REQUIRED_CREDENTIALS:
        if not getattr(config, key):
            raise PreconditionError(f"{_ENV_MAP[key]} is required")
