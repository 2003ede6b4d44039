"""Tests for the db-bridge CLI against SQLite profiles."""

from pathlib import Path

import pytest

from conftest import USERS_SCHEMA, build_sqlite, fetch_all, table_names
from db_bridge.cli import build_parser, main

DB_TOML = """
[profiles.local]
kind = "sqlite"
path = "source.db"
description = "Local fixture"

[profiles.copy]
kind = "sqlite"
path = "copy.db"
create_if_missing = true

[profiles.missing]
kind = "sqlite"
path = "absent.db"
"""


@pytest.fixture
def cli_config(tmp_path: Path) -> Path:
    build_sqlite(tmp_path / "source.db", USERS_SCHEMA)
    config_file = tmp_path / "db.toml"
    config_file.write_text(DB_TOML)
    return config_file


def run_cli(config_file: Path, *args: str) -> int:
    return main(["--config", str(config_file), *args])


# ============================================================================
# Parser
# ============================================================================


class TestParser:
    """Argument parsing."""

    def test_migrate_arguments(self) -> None:
        args = build_parser().parse_args(["migrate", "--from", "prod", "--to", "local", "--yes"])
        assert args.source == "prod"
        assert args.target == "local"
        assert args.yes is True
        assert args.schema_only is False

    def test_translate_kinds_validated(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["translate", "a.sql", "--from", "oracle", "--to", "sqlite"])

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


# ============================================================================
# profiles / check
# ============================================================================


class TestProfiles:
    def test_lists_profiles(self, cli_config: Path, capsys: pytest.CaptureFixture) -> None:
        assert run_cli(cli_config, "profiles") == 0
        out = capsys.readouterr().out
        assert "Database Profiles" in out
        assert "local" in out
        assert "copy" in out

    def test_missing_config(self, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        assert run_cli(tmp_path / "nope.toml", "profiles") == 1
        assert "Database config not found" in capsys.readouterr().out


class TestCheck:
    def test_reachable(self, cli_config: Path, capsys: pytest.CaptureFixture) -> None:
        assert run_cli(cli_config, "check", "local", "copy") == 0
        assert "OK" in capsys.readouterr().out

    def test_unreachable(self, cli_config: Path, capsys: pytest.CaptureFixture) -> None:
        assert run_cli(cli_config, "check", "local", "missing") == 1
        assert "FAILED" in capsys.readouterr().out

    def test_unknown_profile(self, cli_config: Path, capsys: pytest.CaptureFixture) -> None:
        assert run_cli(cli_config, "check", "nope") == 1
        assert "not found" in capsys.readouterr().out


# ============================================================================
# backup / restore
# ============================================================================


class TestBackupRestore:
    def test_backup(self, cli_config: Path, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        out = tmp_path / "backups" / "local.sql"

        assert run_cli(cli_config, "backup", "local", "-o", str(out)) == 0

        text = out.read_text()
        assert "INSERT INTO users" in text
        assert "Dumped 2 tables" in capsys.readouterr().out

    def test_backup_schema_only(self, cli_config: Path, tmp_path: Path) -> None:
        out = tmp_path / "schema.sql"
        assert run_cli(cli_config, "backup", "local", "-o", str(out), "--schema-only") == 0
        assert "INSERT INTO" not in out.read_text()

    def test_custom_requires_native(self, cli_config: Path, capsys: pytest.CaptureFixture) -> None:
        assert run_cli(cli_config, "backup", "local", "--custom") == 1
        assert "--custom requires --native" in capsys.readouterr().out

    def test_restore_requires_confirmation(
        self, cli_config: Path, tmp_path: Path, capsys: pytest.CaptureFixture
    ) -> None:
        dump = tmp_path / "local.sql"
        run_cli(cli_config, "backup", "local", "-o", str(dump))

        assert run_cli(cli_config, "restore", "copy", str(dump)) == 1
        assert "--yes" in capsys.readouterr().out
        assert not (tmp_path / "copy.db").exists()

    def test_restore(self, cli_config: Path, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        dump = tmp_path / "local.sql"
        run_cli(cli_config, "backup", "local", "-o", str(dump))

        assert run_cli(cli_config, "restore", "copy", str(dump), "--yes") == 0

        assert table_names(tmp_path / "copy.db") == ["order", "users"]
        assert "Executed 7 statements" in capsys.readouterr().out

    def test_restore_missing_file(self, cli_config: Path, tmp_path: Path) -> None:
        assert run_cli(cli_config, "restore", "copy", str(tmp_path / "none.sql"), "--yes") == 1

    def test_restore_failure_reported(
        self, cli_config: Path, tmp_path: Path, capsys: pytest.CaptureFixture
    ) -> None:
        dump = tmp_path / "bad.sql"
        dump.write_text("CREATE TABLE t (a);\nINSERT INTO nowhere VALUES (1);\n")

        assert run_cli(cli_config, "restore", "copy", str(dump), "--yes") == 1
        assert "Statement 2 of 2 failed" in capsys.readouterr().out


# ============================================================================
# translate
# ============================================================================


class TestTranslate:
    MYSQL_SQL = "CREATE TABLE `t` (`id` int NOT NULL AUTO_INCREMENT, PRIMARY KEY (`id`)) ENGINE=InnoDB;\n"

    def test_to_file(self, tmp_path: Path) -> None:
        source = tmp_path / "in.sql"
        source.write_text(self.MYSQL_SQL)
        out = tmp_path / "out.sql"

        assert main(["translate", str(source), "--from", "mysql", "--to", "sqlite", "-o", str(out)]) == 0

        assert out.read_text() == 'CREATE TABLE "t" ("id" int NOT NULL, PRIMARY KEY ("id"));\n'

    def test_to_stdout(self, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        source = tmp_path / "in.sql"
        source.write_text(self.MYSQL_SQL)

        assert main(["translate", str(source), "--from", "mysql", "--to", "postgres"]) == 0

        assert 'CREATE TABLE "t" ("id" SERIAL NOT NULL, PRIMARY KEY ("id"));' in capsys.readouterr().out

    def test_missing_file(self, tmp_path: Path) -> None:
        assert main(["translate", str(tmp_path / "none.sql"), "--from", "mysql", "--to", "sqlite"]) == 1


# ============================================================================
# migrate
# ============================================================================


class TestMigrate:
    def test_migrate(self, cli_config: Path, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        assert run_cli(cli_config, "migrate", "--from", "local", "--to", "copy", "--yes") == 0

        assert fetch_all(tmp_path / "copy.db", "SELECT name FROM users ORDER BY id") == [
            ("Ann",),
            ("O'Brien; Jr",),
        ]
        assert "Migration Complete" in capsys.readouterr().out

    def test_requires_confirmation(self, cli_config: Path, tmp_path: Path) -> None:
        assert run_cli(cli_config, "migrate", "--from", "local", "--to", "copy") == 1
        assert not (tmp_path / "copy.db").exists()

    def test_same_database(self, cli_config: Path, capsys: pytest.CaptureFixture) -> None:
        assert run_cli(cli_config, "migrate", "--from", "local", "--to", "local", "--yes") == 1
        assert "Failed during idle" in capsys.readouterr().out

    def test_unreachable_source(self, cli_config: Path, capsys: pytest.CaptureFixture) -> None:
        assert run_cli(cli_config, "migrate", "--from", "missing", "--to", "copy", "--yes") == 1
        assert "Failed during probing-source" in capsys.readouterr().out
