"""
Tests for dump pipeline construction and artifact naming.
"""

import shlex
from datetime import datetime

import pytest

from dump_agent.services.dump.command_builder import (
    build_artifact_name,
    build_dump_pipeline,
    claim_artifact_path,
    shell_escape,
)


class TestShellEscape:
    @pytest.mark.parametrize(
        "value",
        [
            "db host",
            "o'brien",
            'say "hi"',
            "tab\tseparated",
            "it's a \"mixed\" 'value'",
            "",
        ],
    )
    def test_shell_parses_back_to_original(self, value):
        assert shlex.split(shell_escape(value)) == [value]

    def test_plain_value_is_left_alone(self):
        assert shell_escape("localhost") == "localhost"
        assert shell_escape("3306") == "3306"

    def test_single_quote_uses_close_escape_reopen_idiom(self):
        assert shell_escape("o'brien") == "'o'\"'\"'brien'"


class TestBuildDumpPipeline:
    def _arg_after(self, tokens, flag):
        return tokens[tokens.index(flag) + 1]

    def test_components_with_spaces_and_quotes_round_trip(self, make_settings, backup_dir):
        settings = make_settings(
            mysql_host="db host",
            mysql_user="o'brien",
            mysql_db='shop "main"',
            backup_tables="orders,it's",
        )
        target = backup_dir / "my backup.sql.gz"

        tokens = shlex.split(build_dump_pipeline(settings, target))

        assert self._arg_after(tokens, "-h") == "db host"
        assert self._arg_after(tokens, "-u") == "o'brien"
        assert self._arg_after(tokens, "-P") == "3306"
        assert 'shop "main"' in tokens
        assert "orders" in tokens
        assert "it's" in tokens
        assert tokens[-1] == str(target)
        assert tokens[-2] == ">"

    def test_pipeline_order(self, settings, backup_dir):
        command = build_dump_pipeline(settings, backup_dir / "out.sql.gz")

        assert command.startswith("mysqldump -h 127.0.0.1 -P 3306 -u root")
        assert "--single-transaction" in command
        assert "| gzip -c >" in command

    def test_password_never_on_command_line(self, make_settings, backup_dir):
        settings = make_settings(mysql_pass="s3cret-pass")
        command = build_dump_pipeline(settings, backup_dir / "out.sql.gz")
        assert "s3cret-pass" not in command

    def test_each_table_is_a_separate_argument(self, make_settings, backup_dir):
        settings = make_settings(backup_tables="orders,customers")
        tokens = shlex.split(build_dump_pipeline(settings, backup_dir / "out.sql.gz"))
        db_index = tokens.index("klinik")
        assert tokens[db_index + 1 : db_index + 3] == ["orders", "customers"]


class TestArtifactNaming:
    def test_name_format(self):
        name = build_artifact_name("klinik", "klinik_apps", datetime(2026, 1, 2, 3, 4, 5))
        assert name == "klinik_klinik_apps_20260102_030405.sql.gz"

    def test_claim_returns_plain_name_when_free(self, backup_dir):
        path = claim_artifact_path(backup_dir, "db_t_20260102_030405.sql.gz")
        assert path == backup_dir / "db_t_20260102_030405.sql.gz"
        assert path.exists()

    def test_claim_adds_counter_on_collision(self, backup_dir):
        first = claim_artifact_path(backup_dir, "db_t_20260102_030405.sql.gz")
        second = claim_artifact_path(backup_dir, "db_t_20260102_030405.sql.gz")
        third = claim_artifact_path(backup_dir, "db_t_20260102_030405.sql.gz")

        assert second.name == "db_t_20260102_030405_1.sql.gz"
        assert third.name == "db_t_20260102_030405_2.sql.gz"
        assert len({first, second, third}) == 3
