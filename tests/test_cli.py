"""Tests for the OpenTag command line interface."""

import json
import logging

import pytest
from typer.testing import CliRunner

from opentag.cli import app
from opentag.infrastructure.config_manager import StoreConfig
from opentag.infrastructure.settings import settings

runner = CliRunner()

PROFILE = {
    "full_name": "Jane Doe",
    "date_of_birth": "1990-05-15",
    "height_cm": 175,
    "weight_kg": 70,
    "blood_group": "O+",
    "organ_donor": True,
    "allergies": ["Peanuts"],
    "emergency_contact": "5551234567",
}


@pytest.fixture(autouse=True)
def restore_root_logger():
    """The CLI callback reconfigures the root logger; undo it after each test."""
    root_logger = logging.getLogger()
    handlers, level = list(root_logger.handlers), root_logger.level
    yield
    root_logger.handlers[:] = handlers
    root_logger.setLevel(level)


@pytest.fixture
def profile_file(tmp_path):
    path = tmp_path / "profile.json"
    path.write_text(json.dumps(PROFILE))
    return path


@pytest.fixture
def duckdb_store(monkeypatch, tmp_path):
    """Point the CLI at a file-backed store shared between invocations."""
    monkeypatch.setattr(settings, "_store_config", StoreConfig(store_type="duckdb", db_path=str(tmp_path / "tags.duckdb")))


def issued_url(output: str) -> str:
    return next(line for line in output.splitlines() if "?data=" in line).strip()


class TestIssueCommand:
    """Test suite for `opentag issue`."""

    def test_serverless_issue_prints_url(self, profile_file):
        result = runner.invoke(app, ["issue", str(profile_file), "--pin", "1234"])
        assert result.exit_code == 0
        assert "Issued serverless tag" in result.output
        assert issued_url(result.output).startswith(settings.serverless_base_url)

    def test_issued_tags_use_aes_gcm(self, profile_file):
        result = runner.invoke(app, ["issue", str(profile_file), "--pin", "1234"])
        assert result.exit_code == 0
        assert issued_url(result.output).endswith("&method=AES-GCM")

    def test_legacy_option_removed(self, profile_file):
        """Test that the legacy cipher cannot be chosen for new tags."""
        result = runner.invoke(app, ["issue", str(profile_file), "--pin", "1234", "--legacy"])
        assert result.exit_code == 2

    def test_pin_prompted_with_confirmation(self, profile_file):
        result = runner.invoke(app, ["issue", str(profile_file)], input="1234\n1234\n")
        assert result.exit_code == 0
        assert "?data=" in result.output

    def test_invalid_pin(self, profile_file):
        result = runner.invoke(app, ["issue", str(profile_file), "--pin", "12"])
        assert result.exit_code == 1
        assert "PIN must be exactly 4 digits" in result.output

    def test_invalid_profile(self, tmp_path):
        path = tmp_path / "profile.json"
        path.write_text(json.dumps({**PROFILE, "blood_group": "Z+"}))
        result = runner.invoke(app, ["issue", str(path), "--pin", "1234"])
        assert result.exit_code == 1
        assert "Invalid profile" in result.output
        assert "blood_group" in result.output

    def test_hyphenated_name_rejected(self, tmp_path):
        path = tmp_path / "profile.json"
        path.write_text(json.dumps({**PROFILE, "full_name": "Mary-Jane Doe"}))
        result = runner.invoke(app, ["issue", str(path), "--pin", "1234"])
        assert result.exit_code == 1
        assert "Failed to issue tag" in result.output


class TestScanCommand:
    """Test suite for `opentag scan`."""

    def test_scan_with_pin_shows_card(self, profile_file):
        url = issued_url(runner.invoke(app, ["issue", str(profile_file), "--pin", "1234"]).output)
        result = runner.invoke(app, ["scan", url, "--pin", "1234"])
        assert result.exit_code == 0
        assert "Medical Card" in result.output
        assert "Jane Doe" in result.output
        assert "Peanuts" in result.output
        assert "22.9 (Normal)" in result.output

    def test_wrong_pin_exits_non_zero(self, profile_file):
        url = issued_url(runner.invoke(app, ["issue", str(profile_file), "--pin", "1234"]).output)
        result = runner.invoke(app, ["scan", url, "--pin", "4321"])
        assert result.exit_code == 1
        assert "Incorrect PIN" in result.output

    def test_prompt_retries_until_correct(self, profile_file):
        url = issued_url(runner.invoke(app, ["issue", str(profile_file), "--pin", "1234"]).output)
        result = runner.invoke(app, ["scan", url], input="0000\n1234\n")
        assert result.exit_code == 0
        assert "Incorrect PIN" in result.output
        assert "Jane Doe" in result.output

    def test_damaged_tag(self):
        result = runner.invoke(app, ["scan", "https://opentag.github.io/serverless?data="])
        assert result.exit_code == 1
        assert "OpenTag might be damaged" in result.output


class TestOnlineCommands:
    """Test suite for online issue, scan and delete through a DuckDB store."""

    def test_issue_scan_delete(self, profile_file, duckdb_store):
        issued = runner.invoke(app, ["issue", str(profile_file), "--pin", "1234", "--mode", "online", "--tag-id", "a1b2c3"])
        assert issued.exit_code == 0
        assert "a1b2c3" in issued.output

        scanned = runner.invoke(app, ["scan", "a1b2c3", "--online", "--pin", "1234"])
        assert scanned.exit_code == 0
        assert "blood group O+" in scanned.output
        assert "Medical Card" in scanned.output

        deleted = runner.invoke(app, ["delete", "a1b2c3"])
        assert deleted.exit_code == 0
        assert runner.invoke(app, ["delete", "a1b2c3"]).exit_code == 1

    def test_scan_accepts_online_url(self, profile_file, duckdb_store):
        runner.invoke(app, ["issue", str(profile_file), "--mode", "online", "--tag-id", "open", "--no-encrypt"])
        result = runner.invoke(app, ["scan", "https://opentag.github.io/tag?id=open", "--online"])
        assert result.exit_code == 0
        assert "Jane Doe" in result.output

    @pytest.mark.parametrize("store_config", [StoreConfig(), StoreConfig(store_type="duckdb", db_path=":memory:")])
    def test_online_mode_needs_persistent_store(self, profile_file, monkeypatch, store_config):
        """Test that online commands refuse a store that is lost when the process exits."""
        monkeypatch.setattr(settings, "_store_config", store_config)
        issued = runner.invoke(app, ["issue", str(profile_file), "--pin", "1234", "--mode", "online"])
        assert issued.exit_code == 1
        assert "persistent store" in issued.output
        assert "Issued" not in issued.output
        assert runner.invoke(app, ["delete", "a1b2c3"]).exit_code == 1

    def test_unknown_tag(self, duckdb_store):
        result = runner.invoke(app, ["scan", "missing", "--online", "--pin", "1234"])
        assert result.exit_code == 1
        assert "No tag found" in result.output


class TestInfoAndVersion:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "OpenTag v1.0.0" in result.output

    def test_info(self, duckdb_store):
        result = runner.invoke(app, ["info"])
        assert result.exit_code == 0
        assert "OpenTag Configuration" in result.output
        assert "duckdb" in result.output
