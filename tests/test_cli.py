"""
CLI smoke tests: node management and argument checks that happen before any API call.
"""

import json
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from bwh.cli import cli
from bwh.errors import BWHError, VE_LOCKED
from bwh.types import LiveServiceInfo

KEY = "private_key_123"


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config(tmp_path, monkeypatch):
    monkeypatch.delenv("BWH_INSTANCE", raising=False)
    return str(tmp_path / "config.yaml")


def add_node(runner, config, name="web", veid="123456"):
    return runner.invoke(cli, ["-c", config, "node", "add", name, "--api-key", KEY, "--veid", veid])


def test_version(runner):
    result = runner.invoke(cli, ["version"])
    assert result.exit_code == 0
    assert "bwh-python/" in result.output


def test_node_add_and_list(runner, config):
    assert add_node(runner, config).exit_code == 0
    assert add_node(runner, config, "db", "654321").exit_code == 0

    result = runner.invoke(cli, ["-c", config, "node", "list", "--format", "json"])

    assert result.exit_code == 0
    payload = json.loads(result.output)
    assert payload["default_instance"] == "web"
    assert payload["instances"]["db"]["veid"] == "654321"
    assert payload["instances"]["web"]["api_key"] == "priv****_123"


def test_node_add_duplicate(runner, config):
    add_node(runner, config)
    result = add_node(runner, config)
    assert result.exit_code == 1
    assert "already exists" in result.output


def test_no_instances(runner, config):
    result = runner.invoke(cli, ["-c", config, "rate-limit"])
    assert result.exit_code == 1
    assert "no instances configured" in result.output


def test_invalid_ssh_key_rejected_before_api(runner, config):
    add_node(runner, config)
    with patch("bwh.cli.client_for") as client_for:
        result = runner.invoke(cli, ["-c", config, "ssh", "set", "ssh-rsa", "-y"])
    assert result.exit_code == 1
    assert "invalid SSH key format at position 1" in result.output
    client_for.assert_not_called()


def test_bad_backup_token(runner, config):
    add_node(runner, config)
    with patch("bwh.cli.client_for") as client_for:
        result = runner.invoke(cli, ["-c", config, "backup", "copy-to-snapshot", "abc"])
    assert result.exit_code == 1
    assert "expected 40 characters" in result.output
    client_for.assert_not_called()


def test_connect_print(runner, config):
    add_node(runner, config)
    client = MagicMock()
    client.get_live_service_info.return_value = LiveServiceInfo(
        ip_addresses=["2001:db8::1", "1.2.3.4"], ssh_port=2222,
    )
    with patch("bwh.cli.client_for", return_value=client):
        result = runner.invoke(cli, ["-c", config, "connect", "--print"])
    assert result.exit_code == 0
    assert "ssh -p 2222 -o PasswordAuthentication=no root@1.2.3.4" in result.output


def test_locked_error_hint(runner, config):
    add_node(runner, config)
    client = MagicMock()
    client.start.side_effect = BWHError(VE_LOCKED, "VE is locked")
    with patch("bwh.cli.client_for", return_value=client):
        result = runner.invoke(cli, ["-c", config, "start"])
    assert result.exit_code == 1
    assert "failed to start VPS" in result.output
    assert "busy" in result.output
