"""Integration tests for main.py -- the operations CLI.

Each test points DATABASE_URL at a fresh SQLite file so separate main()
invocations share state the way separate shell commands would.
"""

import json

import pytest

import main
from core.config import get_settings


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv("SECRET_KEY", "cli-secret-key-that-is-long-enough-for-hs256")
    monkeypatch.setenv("PASSWORD_SCHEME", "pbkdf2_sha256")
    monkeypatch.setenv("PBKDF2_ITERATIONS", "1000")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def _json(capsys) -> dict:
    return json.loads(capsys.readouterr().out)


class TestCli:
    def test_register_login_verify(self, cli_env, capsys) -> None:
        assert main.main(["--json", "register", "alice", "--password", "hunter22"]) == 0
        registered = _json(capsys)
        assert registered["user"]["username"] == "alice"

        assert main.main(["--json", "login", "alice", "--password", "hunter22"]) == 0
        token = _json(capsys)["token"]

        assert main.main(["--json", "verify", f"Bearer {token}"]) == 0
        verified = _json(capsys)
        assert verified == {"authenticated": True, "user": registered["user"]}

    def test_verify_rejects_garbage(self, cli_env, capsys) -> None:
        assert main.main(["--json", "verify", "garbage"]) == 1
        assert _json(capsys) == {"authenticated": False, "reason": "malformed"}

    def test_wrong_password_reports_error(self, cli_env, capsys) -> None:
        main.main(["register", "alice", "--password", "hunter22"])
        capsys.readouterr()
        assert main.main(["--json", "login", "alice", "--password", "nope-nope"]) == 1
        assert _json(capsys)["error"]["code"] == "unauthorized"

    def test_tally_and_posts_on_empty_store(self, cli_env, capsys) -> None:
        assert main.main(["--json", "tally", "post-1", "post-2"]) == 0
        assert _json(capsys) == {"post-1": 0, "post-2": 0}
        assert main.main(["posts"]) == 0
        assert "No posts." in capsys.readouterr().out

    def test_missing_configuration(self, monkeypatch, capsys) -> None:
        monkeypatch.setenv("SECRET_KEY", "")
        get_settings.cache_clear()
        try:
            assert main.main(["verify", "x"]) == 2
        finally:
            get_settings.cache_clear()
        assert "Configuration error" in capsys.readouterr().err

    def test_no_command_prints_help(self, capsys) -> None:
        assert main.main([]) == 0
        assert "usage" in capsys.readouterr().out.lower()
