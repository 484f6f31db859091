"""Sparkle EdDSA key generation for update signing."""

import logging
import re
import shutil
import tarfile
from pathlib import Path
from typing import Optional

import requests

from .errors import PreconditionError, ReleaseError
from .shell import run

log = logging.getLogger(__name__)

SPARKLE_VERSION = "2.6.4"
SPARKLE_URL = ("https://github.com/sparkle-project/Sparkle/releases/download/"
               "{version}/Sparkle-{version}.tar.xz")
PRIVATE_KEY_FILE = ".sparkle_private_key.pem"

_PUBLIC_KEY_RE = re.compile(r"([A-Za-z0-9+/]{40,}=)")


def download_tools(dest: Path, version: str = SPARKLE_VERSION) -> Path:
    """Download and unpack a Sparkle release; returns the generate_keys path."""
    url = SPARKLE_URL.format(version=version)
    archive = dest / f"Sparkle-{version}.tar.xz"
    log.info("Downloading Sparkle tools %s", version)
    try:
        with requests.get(url, stream=True, timeout=60) as resp:
            resp.raise_for_status()
            with open(archive, "wb") as f:
                for chunk in resp.iter_content(chunk_size=65536):
                    f.write(chunk)
    except requests.RequestException as e:
        raise PreconditionError(f"Could not download Sparkle from {url}: {e}") from e

    try:
        with tarfile.open(archive, "r:xz") as tar:
            tar.extractall(dest, filter="data")
    except tarfile.TarError as e:
        raise PreconditionError(f"Could not unpack {archive.name}: {e}") from e
    tool = dest / "bin" / "generate_keys"
    if not tool.exists():
        raise PreconditionError(f"generate_keys missing from {url}")
    return tool


def find_generate_keys(download_dir: Path) -> Path:
    found = shutil.which("generate_keys")
    if found:
        return Path(found)
    return download_tools(download_dir)


def parse_public_key(output: str) -> Optional[str]:
    m = _PUBLIC_KEY_RE.search(output)
    return m.group(1) if m else None


def generate_keys(tool: Path, private_key: Path) -> str:
    """Write a new private key to *private_key* and return the public key."""
    run([tool, "-f", private_key])
    result = run([tool, "-f", private_key, "-p"], capture=True)
    public_key = parse_public_key(result.stdout)
    if not public_key:
        raise ReleaseError("Could not read the public key from generate_keys")
    return public_key
