"""Command line for building, signing and shipping VibeBar."""

import functools
import logging
import subprocess
import sys
import tempfile
from pathlib import Path

import click

from . import __version__
from .build import build_universal
from .bundle import assemble_bundle
from .checksum import sha256sum, verify_checksum, write_checksum
from .config import load_config, require_credentials, set_app_password, setup_logging
from .dmg import create_dmg
from .errors import PreconditionError, ReleaseError
from .notarize import notarize_dmg
from .pipeline import initial_state, release_steps, run_pipeline
from .plugins import (
    default_socket_path,
    manual_claude_steps,
    package_claude_plugin,
    publish_opencode_plugin,
    setup_local_plugins,
)
from .signing import find_identity, sign_adhoc, sign_release
from .sparkle import PRIVATE_KEY_FILE, find_generate_keys, generate_keys
from .version import bundle_version, resolve_version

log = logging.getLogger(__name__)


def _fail_on_error(func):
    """Turn expected failures into a logged message and exit status 1."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ReleaseError as e:
            log.error("%s", e)
        except subprocess.CalledProcessError as e:
            cmd = e.cmd[0] if isinstance(e.cmd, (list, tuple)) else e.cmd
            log.error("%s exited with status %d", cmd, e.returncode)
            if e.stderr:
                log.error("%s", e.stderr.strip())
        sys.exit(1)
    return wrapper


def _config(ctx, **overrides):
    opts = ctx.obj
    overrides["repo_root"] = opts["repo_root"]
    return load_config(opts["config_path"], cli_overrides=overrides)


@click.group()
@click.option("--config", "config_path", type=click.Path(dir_okay=False),
              help="Path to vibebar-release.yaml")
@click.option("--repo-root", type=click.Path(file_okay=False, exists=True),
              help="VibeBar checkout (default: current directory)")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.version_option(__version__, prog_name="vibebar-release")
@click.pass_context
def main(ctx, config_path, repo_root, verbose):
    """Build, sign, notarize and package the VibeBar macOS app."""
    setup_logging(verbose=verbose)
    ctx.obj = {"config_path": config_path, "repo_root": repo_root, "verbose": verbose}


@main.command()
@click.option("--version", "version_override", help="Override the release version")
@click.pass_context
@_fail_on_error
def version(ctx, version_override):
    """Show the release version and its numeric bundle version."""
    config = _config(ctx, version=version_override)
    ver = resolve_version(config.repo_root, config.version)
    click.echo(f"version: {ver}")
    click.echo(f"bundle version: {bundle_version(ver)}")


@main.command()
@click.pass_context
@_fail_on_error
def build(ctx):
    """Compile universal binaries with SwiftPM."""
    config = _config(ctx)
    out = build_universal(config.repo_root, config.architectures)
    click.echo(str(out))


@main.command()
@click.option("--build-dir", required=True, type=click.Path(file_okay=False, exists=True),
              help="Directory holding the universal build products")
@click.option("--version", "version_override", help="Override the release version")
@click.option("--no-sign", is_flag=True, help="Skip ad-hoc signing")
@click.pass_context
@_fail_on_error
def assemble(ctx, build_dir, version_override, no_sign):
    """Assemble the .app bundle from existing build products."""
    config = _config(ctx, version=version_override)
    ver = resolve_version(config.repo_root, config.version)
    config.dist_dir.mkdir(parents=True, exist_ok=True)
    app = assemble_bundle(Path(build_dir), config.app_path, config, ver)
    if not no_sign:
        sign_adhoc(app, config.bundle_id)
    click.echo(str(app))


@main.command()
@click.option("--sign/--no-sign", "enable_signing", default=None,
              help="Developer ID sign and notarize (default: $VIBEBAR_ENABLE_SIGNING)")
@click.option("--version", "version_override", help="Override the release version")
@click.option("--build-dir", type=click.Path(file_okay=False, exists=True),
              help="Use existing build products instead of building")
@click.pass_context
@_fail_on_error
def package(ctx, enable_signing, version_override, build_dir):
    """Build, bundle, sign, image and checksum a release."""
    config = _config(ctx, enable_signing=enable_signing, version=version_override)
    setup_logging(verbose=ctx.obj["verbose"], log_dir=config.dist_dir / "logs")

    state = initial_state(config)
    if build_dir:
        state.build_dir = Path(build_dir)
    log.info("Packaging %s %s (build %s)", config.app_name, state.version,
             state.bundle_version)
    state = run_pipeline(release_steps(config, skip_build=bool(build_dir)), state, config)

    click.echo("\nDone! Output:")
    click.echo(f"  {state.dmg_path}")
    click.echo(f"  {state.checksum_path}")


@main.command("sign-and-notarize")
@click.argument("app_path", type=click.Path(file_okay=False, exists=True))
@click.argument("dmg_path", type=click.Path(dir_okay=False))
@click.pass_context
@_fail_on_error
def sign_and_notarize(ctx, app_path, dmg_path):
    """Developer ID sign APP_PATH, rebuild DMG_PATH from it, notarize and staple.

    Needs APPLE_TEAM_ID, APPLE_ID and APPLE_APP_PASSWORD.
    """
    config = _config(ctx, enable_signing=True)
    require_credentials(config)
    setup_logging(verbose=ctx.obj["verbose"], log_dir=config.dist_dir / "logs")

    identity = find_identity(config.apple_team_id)
    app, dmg = Path(app_path), Path(dmg_path)
    sign_release(app, identity, config.bundle_id, config.entitlements)
    # The image holds a copy of the bundle, so it is rebuilt from the signed one.
    create_dmg(app, dmg, config.app_name)
    notarize_dmg(dmg, identity, config)
    sha_path = write_checksum(dmg)
    click.echo(f"Notarized: {dmg}")
    click.echo(f"Checksum:  {sha_path}")


@main.command()
@click.argument("path", type=click.Path(dir_okay=False, exists=True))
@click.option("--verify", is_flag=True,
              help="Check PATH against its existing .sha256 file instead")
@_fail_on_error
def checksum(path, verify):
    """Write PATH.sha256 in shasum format."""
    path = Path(path)
    if not verify:
        click.echo(str(write_checksum(path)))
        return
    sha_path = path if path.suffix == ".sha256" else path.with_name(path.name + ".sha256")
    if not sha_path.is_file():
        raise PreconditionError(f"Checksum file not found: {sha_path}")
    if not verify_checksum(sha_path):
        raise ReleaseError(f"Checksum mismatch: {sha_path}")
    click.echo(f"OK: {sha_path}")


@main.command("store-password")
@click.option("--apple-id", help="Apple ID (default: $APPLE_ID)")
@click.password_option("--password", help="App-specific password for notarytool")
@click.pass_context
@_fail_on_error
def store_password(ctx, apple_id, password):
    """Save the notarization app password in the login keychain."""
    config = _config(ctx)
    apple_id = apple_id or config.apple_id
    if not apple_id:
        raise PreconditionError("APPLE_ID is required")
    set_app_password(apple_id, password)
    click.echo(f"Stored app password for {apple_id} in the keychain")


@main.command("plugin-package")
@click.pass_context
@_fail_on_error
def plugin_package(ctx):
    """Archive the Claude plugin for a marketplace release."""
    config = _config(ctx)
    archive = package_claude_plugin(config.plugins_dir, config.dist_dir)
    click.echo(f"{sha256sum(archive)}  {archive}")
    click.echo("\nPackage complete.\nSuggested release flow:")
    click.echo("1) Create git tag for this version.")
    click.echo("2) Publish/update your Claude marketplace source repository.")
    click.echo("3) Announce install source:\n   claude plugin install <source>")


@main.command("plugin-publish", context_settings={"ignore_unknown_options": True})
@click.argument("npm_args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
@_fail_on_error
def plugin_publish(ctx, npm_args):
    """Publish the OpenCode plugin to npm (extra args go to npm publish)."""
    config = _config(ctx)
    publish_opencode_plugin(config.plugins_dir, config.npm_token, npm_args)


@main.command("plugin-setup")
@click.pass_context
@_fail_on_error
def plugin_setup(ctx):
    """Register the local plugins with OpenCode and Claude."""
    config = _config(ctx)
    result = setup_local_plugins(config.plugins_dir)
    click.echo(f"OpenCode config: {result['opencode_config']}")
    if not result["claude_installed"]:
        click.echo("Install the Claude plugin manually:")
        for line in manual_claude_steps(result["claude_dir"]):
            click.echo(f"  {line}")
    click.echo("\nNext steps")
    click.echo("1. Start agent:\n   swift run vibebar-agent --verbose")
    click.echo("2. Ensure plugins can reach socket path:")
    click.echo(f'   export VIBEBAR_AGENT_SOCKET="${{VIBEBAR_AGENT_SOCKET:-{default_socket_path()}}}"')
    click.echo("3. Start VibeBar menu app:\n   swift run VibeBarApp")


@main.command("sparkle-keys")
@click.option("--force", is_flag=True, help="Overwrite an existing private key")
@click.pass_context
@_fail_on_error
def sparkle_keys(ctx, force):
    """Generate the Sparkle EdDSA key pair used to sign updates."""
    config = _config(ctx)
    private_key = config.repo_root / PRIVATE_KEY_FILE
    if private_key.exists() and not force:
        click.confirm(f"Private key already exists at {private_key}. Overwrite?",
                      abort=True)

    with tempfile.TemporaryDirectory() as tmp:
        tool = find_generate_keys(Path(tmp))
        public_key = generate_keys(tool, private_key)

    click.echo(f"Private key file: {private_key}")
    click.echo("KEEP THIS FILE SECRET - never commit it!")
    click.echo(f"Public key: {public_key}")
    click.echo("\nNext steps:")
    click.echo("1. Add the private key to GitHub Secrets as SPARKLE_PRIVATE_KEY")
    click.echo("2. Set SPARKLE_PUBLIC_KEY (or sparkle_public_key in vibebar-release.yaml)")
    click.echo(f"3. Add {PRIVATE_KEY_FILE} to .gitignore")


if __name__ == "__main__":
    main()
