"""Tests for DMG signing, notarization verdict handling and stapling."""

import json
import logging
import subprocess

import pytest

from vibebar_release import notarize, shell
from vibebar_release.errors import NotarizationError
from vibebar_release.notarize import fetch_log, notarize_dmg, submit

from conftest import IDENTITY_SHA


def _verdict(status, sub_id="2efe2717-52ef-43a5-96dc-0797e4ca1041", message=None):
    return json.dumps({"id": sub_id, "status": status,
                       "message": message or f"Processing complete ({status})"})


@pytest.fixture
def dmg(tmp_path):
    path = tmp_path / "VibeBar-1.3.0-universal.dmg"
    path.write_bytes(b"signed image")
    return path


class TestNotarizeDmg:
    def test_accepted_staples_and_validates(self, fake_run, release_config, dmg):
        fake_run.on("xcrun", "notarytool", "submit", stdout=_verdict("Accepted"))
        sub_id = notarize_dmg(dmg, IDENTITY_SHA, release_config)
        assert sub_id == "2efe2717-52ef-43a5-96dc-0797e4ca1041"
        assert fake_run.index("codesign", "--force") < fake_run.index("xcrun", "notarytool", "submit")
        assert fake_run.index("xcrun", "notarytool", "submit") < fake_run.index("xcrun", "stapler", "staple")
        assert fake_run.index("xcrun", "stapler", "staple") < fake_run.index("xcrun", "stapler", "validate")
        assert dmg.read_bytes().endswith(b"+stapled ticket")

    def test_dmg_signed_with_identity(self, fake_run, release_config, dmg):
        fake_run.on("xcrun", "notarytool", "submit", stdout=_verdict("Accepted"))
        notarize_dmg(dmg, IDENTITY_SHA, release_config)
        assert fake_run.commands("codesign")[0] == [
            "codesign", "--force", "--sign", IDENTITY_SHA, "--timestamp", str(dmg)]

    def test_submit_args(self, fake_run, release_config, dmg):
        fake_run.on("xcrun", "notarytool", "submit", stdout=_verdict("Accepted"))
        notarize_dmg(dmg, IDENTITY_SHA, release_config)
        cmd = fake_run.commands("xcrun", "notarytool", "submit")[0]
        assert cmd[3] == str(dmg)
        assert cmd[cmd.index("--apple-id") + 1] == "dev@vibebar.app"
        assert cmd[cmd.index("--team-id") + 1] == "TEAM123456"
        assert cmd[cmd.index("--password") + 1] == "abcd-efgh-ijkl-mnop"
        assert "--wait" in cmd
        assert cmd[cmd.index("--timeout") + 1] == "30m"

    def test_invalid_prints_log_and_fails(self, fake_run, release_config, dmg, caplog):
        fake_run.on("xcrun", "notarytool", "submit", stdout=_verdict("Invalid"))
        fake_run.on("xcrun", "notarytool", "log",
                    stdout='{"issues": [{"message": "The binary is not signed."}]}')
        with caplog.at_level(logging.ERROR):
            with pytest.raises(NotarizationError) as exc:
                notarize_dmg(dmg, IDENTITY_SHA, release_config)
        assert exc.value.status == "Invalid"
        assert exc.value.submission_id == "2efe2717-52ef-43a5-96dc-0797e4ca1041"
        log_cmd = fake_run.commands("xcrun", "notarytool", "log")[0]
        assert log_cmd[3] == "2efe2717-52ef-43a5-96dc-0797e4ca1041"
        assert "The binary is not signed." in caplog.text
        assert fake_run.commands("xcrun", "stapler") == []
        assert dmg.read_bytes() == b"signed image"

    def test_log_fetch_failure_still_reports_rejection(self, fake_run, release_config, dmg, caplog):
        fake_run.on("xcrun", "notarytool", "submit", stdout=_verdict("Rejected"))
        fake_run.on("xcrun", "notarytool", "log", returncode=69, stderr="network down")
        with pytest.raises(NotarizationError, match="Rejected"):
            notarize_dmg(dmg, IDENTITY_SHA, release_config)
        assert "Could not fetch notarization log" in caplog.text

    def test_staple_failure_is_fatal(self, fake_run, release_config, dmg):
        fake_run.on("xcrun", "notarytool", "submit", stdout=_verdict("Accepted"))
        fake_run.on("xcrun", "stapler", "validate", returncode=65)
        with pytest.raises(subprocess.CalledProcessError):
            notarize_dmg(dmg, IDENTITY_SHA, release_config)


class TestSubmit:
    def test_timeout(self, fake_run, release_config, dmg):
        def _hang(cmd):
            raise subprocess.TimeoutExpired(cmd, 1920)
        fake_run.on("xcrun", "notarytool", "submit", effect=_hang)
        with pytest.raises(NotarizationError, match="within 30 minutes"):
            submit(dmg, release_config)

    def test_tool_error_without_verdict(self, fake_run, release_config, dmg):
        fake_run.on("xcrun", "notarytool", "submit", returncode=1,
                    stderr="Error: HTTP status code: 401. Unable to authenticate.")
        with pytest.raises(NotarizationError, match="401"):
            submit(dmg, release_config)

    def test_garbage_output(self, fake_run, release_config, dmg):
        fake_run.on("xcrun", "notarytool", "submit", stdout="Conducting pre-submission checks")
        with pytest.raises(NotarizationError, match="submit failed"):
            submit(dmg, release_config)

    def test_password_not_logged(self, release_config, dmg, caplog, monkeypatch):
        # Use the real shell.run so its command logging is exercised.
        def fake_subprocess_run(cmd, **kwargs):
            return subprocess.CompletedProcess(cmd, 0, _verdict("Accepted"), "")
        monkeypatch.setattr(notarize, "run", shell.run)
        monkeypatch.setattr(shell.subprocess, "run", fake_subprocess_run)
        with caplog.at_level(logging.INFO):
            submit(dmg, release_config)
        assert "abcd-efgh-ijkl-mnop" not in caplog.text
        assert "****" in caplog.text


class TestFetchLog:
    def test_timeout_returns_none(self, fake_run, release_config):
        def _hang(cmd):
            raise subprocess.TimeoutExpired(cmd, 300)
        fake_run.on("xcrun", "notarytool", "log", effect=_hang)
        assert fetch_log("abc", release_config) is None
