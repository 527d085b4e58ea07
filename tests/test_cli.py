"""Tests for the command-line interface."""

import json

import pytest
import yaml
from click.testing import CliRunner

from classroom_tutor.cli import cli


@pytest.fixture
def runner(monkeypatch):
    monkeypatch.delenv("TUTOR_CONFIG_PATH", raising=False)
    return CliRunner()


class TestHelplines:
    """Tests for the helplines command."""

    def test_country_alias(self, runner):
        """Aliases are normalized and the country's lines listed."""
        result = runner.invoke(cli, ["helplines", "uk"])
        assert result.exit_code == 0
        assert "Helplines (GB)" in result.output
        assert "Samaritans" in result.output


class TestInitConfig:
    """Tests for init-config."""

    def test_writes_yaml(self, runner, tmp_path):
        """A default YAML config is written."""
        target = tmp_path / "config.yaml"
        result = runner.invoke(cli, ["init-config", str(target)])
        assert result.exit_code == 0
        data = yaml.safe_load(target.read_text())
        assert "llm" in data
        assert "safety" in data

    def test_json_format(self, runner, tmp_path):
        target = tmp_path / "config.json"
        result = runner.invoke(cli, ["init-config", str(target), "--format", "json"])
        assert result.exit_code == 0
        assert "memory" in json.loads(target.read_text())

    def test_refuses_overwrite(self, runner, tmp_path):
        """An existing file is kept unless --force is given."""
        target = tmp_path / "config.yaml"
        target.write_text("keep: me\n")

        result = runner.invoke(cli, ["init-config", str(target)])
        assert result.exit_code != 0
        assert "already exists" in result.output
        assert target.read_text() == "keep: me\n"

        result = runner.invoke(cli, ["init-config", str(target), "--force"])
        assert result.exit_code == 0
        assert "keep" not in target.read_text()


class TestCheck:
    """Tests for the gate check command."""

    def test_benign_message_passes(self, runner):
        result = runner.invoke(cli, ["check", "What is photosynthesis?"])
        assert result.exit_code == 0, result.output
        assert "Gate" in result.output
        assert "passed" in result.output

    def test_concern_reports_phrase(self, runner):
        """A self-harm phrase is reported as a concern with the matched phrase."""
        result = runner.invoke(cli, ["check", "Sometimes I want to die"])
        assert result.exit_code == 0, result.output
        assert "concern" in result.output
        assert "Matched phrase" in result.output
        assert "want to die" in result.output
