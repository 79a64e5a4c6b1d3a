"""Tests for the main.py administrative CLI."""

import io

import pytest

import main
from auth.container import build_container
from auth.models import Role
from core.config import get_settings


@pytest.fixture
def cli_db(tmp_path, monkeypatch):
    """Point get_settings() at a fresh database for the duration of one test."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


def _stdin(monkeypatch, text):
    monkeypatch.setattr("sys.stdin", io.StringIO(text))


def test_create_admin(cli_db, monkeypatch, capsys):
    _stdin(monkeypatch, "Adm1n!pass\n")

    code = main.main(["create-admin", "--identifier", "1001", "--military-id", "mil-1", "--password-stdin"])

    assert code == 0
    assert "Created ADMIN user" in capsys.readouterr().out
    container = build_container(cli_db)
    try:
        user = container.users.find_by_identifier_with_password_hash(1001)
        assert user.role is Role.ADMIN
        assert container.hasher.compare("Adm1n!pass", user.hashed_password)
    finally:
        container.close()


def test_create_user_with_role(cli_db, monkeypatch):
    _stdin(monkeypatch, "Ch3fe!pass\n")
    code = main.main(
        ["create-user", "--identifier", "1002", "--military-id", "mil-2", "--role", "CHEFE", "--password-stdin"]
    )
    assert code == 0
    container = build_container(cli_db)
    try:
        assert container.users.find_by_identifier_with_password_hash(1002).role is Role.CHEFE
    finally:
        container.close()


def test_duplicate_identifier_fails(cli_db, monkeypatch, capsys):
    args = ["create-admin", "--identifier", "1001", "--military-id", "mil-1", "--password-stdin"]
    _stdin(monkeypatch, "Adm1n!pass\n")
    assert main.main(args) == 0
    _stdin(monkeypatch, "Adm1n!pass\n")
    assert main.main(args) == 1
    assert "already exists" in capsys.readouterr().out


def test_empty_password_fails(cli_db, monkeypatch):
    _stdin(monkeypatch, "\n")
    assert main.main(["create-admin", "--identifier", "1001", "--military-id", "m", "--password-stdin"]) == 1


def test_overlong_password_fails(cli_db, monkeypatch, capsys):
    _stdin(monkeypatch, "x" * 80 + "\n")
    assert main.main(["create-admin", "--identifier", "1001", "--military-id", "m", "--password-stdin"]) == 1
    assert "72 bytes" in capsys.readouterr().out


def test_identifier_out_of_range_is_rejected(cli_db):
    with pytest.raises(SystemExit):
        main.main(["create-admin", "--identifier", "0", "--military-id", "m", "--password-stdin"])


def test_hash_password(cli_db, monkeypatch, capsys):
    _stdin(monkeypatch, "S3cret!pass\n")
    assert main.main(["hash-password", "--password-stdin"]) == 0
    assert capsys.readouterr().out.strip().startswith("$2b$")


def test_purge(cli_db, capsys):
    assert main.main(["purge"]) == 0
    assert "Removed 0" in capsys.readouterr().out


def test_no_command_prints_help(cli_db, capsys):
    assert main.main([]) == 0
    assert "usage" in capsys.readouterr().out.lower()
