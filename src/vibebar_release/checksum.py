"""SHA-256 side files in shasum format."""

import hashlib
import logging
from pathlib import Path

log = logging.getLogger(__name__)


def sha256sum(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for blk in iter(lambda: f.read(65536), b""):
            h.update(blk)
    return h.hexdigest()


def write_checksum(path: Path) -> Path:
    """Write ``<digest>  <name>`` to ``<path>.sha256`` and return that path."""
    digest = sha256sum(path)
    sha_path = path.with_name(path.name + ".sha256")
    sha_path.write_text(f"{digest}  {path.name}\n")
    log.info("SHA-256: %s", digest)
    return sha_path


def verify_checksum(sha_path: Path) -> bool:
    """True when the side file still matches the file it names."""
    digest, _, name = sha_path.read_text().strip().partition("  ")
    target = sha_path.parent / name
    return target.exists() and sha256sum(target) == digest
