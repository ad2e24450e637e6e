"""Tests for the slotbook command line."""

from __future__ import annotations

import sys

import pytest

from slotbook import cli
from slotbook.database import Database


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("DATABASE_PATH", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(f"database:\n  path: {tmp_path / 'cli.db'}\nadmin:\n  email: root@example.com\n")
    return path


def run(monkeypatch, *argv: str) -> None:
    monkeypatch.setattr(sys, "argv", ["slotbook", *argv])
    cli.main()


def open_db(tmp_path) -> Database:
    db = Database(tmp_path / "cli.db")
    db.connect()
    return db


def test_create_admin_from_config_email(tmp_path, config_path, monkeypatch, capsys):
    run(monkeypatch, "create-user", "Root", "-c", str(config_path), "--admin")
    out = capsys.readouterr().out
    assert "Created super_admin #1: Root <root@example.com>" in out
    assert "API key: " in out

    db = open_db(tmp_path)
    assert db.get_user_by_email("root@example.com").is_super_admin
    db.close()


def test_create_user_rejects_duplicates(tmp_path, config_path, monkeypatch, capsys):
    run(monkeypatch, "create-user", "Alice", "alice@example.com", "-c", str(config_path), "--alias", "alice")
    with pytest.raises(SystemExit):
        run(monkeypatch, "create-user", "Alice", "ALICE@example.com", "-c", str(config_path))
    with pytest.raises(SystemExit):
        run(monkeypatch, "create-user", "Al", "al@example.com", "-c", str(config_path), "--alias", "alice")
    assert "already taken" in capsys.readouterr().out


def test_create_user_bad_timezone(config_path, monkeypatch, capsys):
    with pytest.raises(SystemExit):
        run(monkeypatch, "create-user", "Bob", "bob@example.com", "-c", str(config_path), "--timezone", "Nowhere/City")
    assert "Unknown timezone" in capsys.readouterr().out


def test_hours_replaces_week(tmp_path, config_path, monkeypatch, capsys):
    run(monkeypatch, "create-user", "Alice", "alice@example.com", "-c", str(config_path))
    run(monkeypatch, "hours", "alice@example.com", "mon=09:00-17:00", "tue=10:00-12:30", "-c", str(config_path))
    assert "Tuesday: 10:00-12:30" in capsys.readouterr().out

    db = open_db(tmp_path)
    rules = db.get_working_hours(db.get_user_by_email("alice@example.com").id)
    assert [(r.day_of_week, r.start_time, r.end_time) for r in rules] == [
        (1, "09:00", "17:00"),
        (2, "10:00", "12:30"),
    ]
    db.close()


@pytest.mark.parametrize("day_spec", ["s=09:00-17:00", "mon=17:00-09:00", "mon=9am-5pm"])
def test_hours_rejects_bad_input(config_path, monkeypatch, day_spec):
    run(monkeypatch, "create-user", "Alice", "alice@example.com", "-c", str(config_path))
    with pytest.raises(SystemExit):
        run(monkeypatch, "hours", "alice@example.com", day_spec, "-c", str(config_path))


def test_init_writes_config(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    run(monkeypatch, "init")
    assert (tmp_path / "config.yaml").exists()
    assert (tmp_path / ".env").exists()
