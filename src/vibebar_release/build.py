"""Compile the Swift products per architecture and merge them with lipo."""

import logging
import shutil
from pathlib import Path

from .errors import PreconditionError
from .shell import run

log = logging.getLogger(__name__)

EXECUTABLES = ("VibeBarApp", "vibebar-agent", "vibebar")


def _bin_path(repo_root: Path, arch: str) -> Path:
    result = run(["swift", "build", "-c", "release", "--arch", arch,
                  "--package-path", repo_root, "--show-bin-path"],
                 capture=True)
    return Path(result.stdout.strip())


def build_universal(repo_root: Path, architectures=("arm64", "x86_64")) -> Path:
    """Build every executable for each arch and return the universal output dir.

    Frameworks SwiftPM copies next to the products (Sparkle.framework) are
    taken from the first architecture's output; they ship as universal
    binaries already.
    """
    arch_dirs = []
    for arch in architectures:
        log.info("swift build -c release (%s)", arch)
        run(["swift", "build", "-c", "release", "--arch", arch,
             "--package-path", repo_root])
        arch_dirs.append(_bin_path(repo_root, arch))

    out_dir = repo_root / ".build" / "universal" / "release"
    if out_dir.exists():
        shutil.rmtree(out_dir)
    out_dir.mkdir(parents=True)

    for name in EXECUTABLES:
        inputs = [d / name for d in arch_dirs]
        for p in inputs:
            if not p.exists():
                raise PreconditionError(f"Build product not found: {p}")
        run(["lipo", "-create", *inputs, "-output", out_dir / name])
        run(["lipo", "-info", out_dir / name])

    for framework in arch_dirs[0].glob("*.framework"):
        shutil.copytree(framework, out_dir / framework.name, symlinks=True)

    log.info("Universal binaries in %s", out_dir)
    return out_dir
