"""
Tests for the command-line front end.
"""
import pytest

from dashsync.cli import build_parser, main


def test_parser_requires_a_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_parser_rejects_unknown_column():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["move", "t1", "todo", "archive"])


def test_add_task_prints_board(clean_env, capsys):
    assert main(["--user", "alice", "add-task", "Buy milk"]) == 0
    out = capsys.readouterr().out
    assert "To Do (1)" in out
    assert "Buy milk" in out


def test_no_user_is_an_error(clean_env, capsys):
    assert main(["board"]) == 1
    assert "No user signed in" in capsys.readouterr().err


def test_bad_config_path_is_an_error(clean_env, tmp_path, capsys):
    assert main(["--config", str(tmp_path / "missing.yaml"), "--user", "alice", "board"]) == 1
    assert "Config error" in capsys.readouterr().err


def test_move_of_unknown_task_fails(clean_env, capsys):
    assert main(["--user", "alice", "move", "ghost", "todo", "done"]) == 1
    assert "not moved" in capsys.readouterr().err


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# SQLite backend: state survives between runs
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@pytest.fixture
def sqlite_env(clean_env, db_path):
    clean_env.setenv("DASHSYNC_DB", db_path)
    clean_env.setenv("DASHSYNC_USER", "alice")
    return ["--backend", "sqlite"]


def test_board_persists_between_runs(sqlite_env, capsys):
    assert main(sqlite_env + ["add-task", "Water plants"]) == 0
    capsys.readouterr()

    assert main(sqlite_env + ["board"]) == 0
    out = capsys.readouterr().out
    assert "To Do (1)" in out
    assert "Water plants" in out


def test_notes_filter_between_runs(sqlite_env, capsys):
    assert main(sqlite_env + ["add-note", "wifi: hunter2", "--category", "akun"]) == 0
    assert main(sqlite_env + ["add-note", "eggs", "--category", "must-buy"]) == 0
    capsys.readouterr()

    assert main(sqlite_env + ["notes", "--category", "akun"]) == 0
    out = capsys.readouterr().out
    assert "wifi: hunter2" in out
    assert "eggs" not in out
    assert "(1 of 2)" in out


def test_bad_numeric_config_is_an_error(clean_env, write_config, capsys):
    path = write_config('failure_history: "abc"\n')
    assert main(["--config", path, "--user", "alice", "board"]) == 1
    assert "failure_history" in capsys.readouterr().err
