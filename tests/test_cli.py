"""CLI tests via click's CliRunner."""

from click.testing import CliRunner

from safespace.auth.jwt import user_id_from_token
from safespace.cli.main import cli


def test_token_command_prints_valid_jwt():
    result = CliRunner().invoke(cli, ["token", "7"])
    assert result.exit_code == 0
    assert user_id_from_token(result.output.strip()) == 7


def test_test_broadcast_rejects_unknown_channel():
    result = CliRunner().invoke(cli, ["test-broadcast", "nowhere"])
    assert result.exit_code == 1
    assert "Unknown channel" in result.output


def test_remote_commands_need_a_token(monkeypatch):
    monkeypatch.delenv("SAFESPACE_TOKEN", raising=False)
    result = CliRunner().invoke(cli, ["alerts"])
    assert result.exit_code == 1
    assert "SAFESPACE_TOKEN" in result.output
