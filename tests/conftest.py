"""
Pytest configuration og shared fixtures.
"""

import pytest

from dump_agent.config import Settings
from dump_agent.dependencies import reset_singletons


@pytest.fixture(autouse=True)
def clean_singletons():
    """Automatically reset singletons before hver test."""
    reset_singletons()
    yield
    reset_singletons()


@pytest.fixture
def backup_dir(tmp_path):
    path = tmp_path / "backups"
    path.mkdir()
    return path


@pytest.fixture
def make_settings(tmp_path, backup_dir):
    """Factory for Settings that never reads the real environment file."""

    def _make(**overrides) -> Settings:
        values = dict(
            mysql_db="klinik",
            backup_tables="klinik_apps",
            backup_dir=str(backup_dir),
            telegram_bot_token="123:ABC",
            telegram_chat_id="-1001",
            telegram_api_base="https://telegram.test",
            log_file_path=str(tmp_path / "logs" / "dump_agent.log"),
        )
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
def settings(make_settings):
    return make_settings()


@pytest.fixture
def write_stub(tmp_path):
    """Write an executable bash script standing in for mysqldump/gzip."""

    def _write(name: str, body: str):
        path = tmp_path / name
        path.write_text("#!/bin/bash\n" + body + "\n", encoding="utf-8")
        path.chmod(0o755)
        return path

    return _write
