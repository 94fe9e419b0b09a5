"""Tests for environment-driven settings."""

import pytest

from fieldgate.config import Settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in [
        "DATABASE_URL",
        "FIELDGATE_DB_PATH",
        "FIELDGATE_PROJECTS_PATH",
        "FIELDGATE_DEFAULT_PAGE_SIZE",
        "FIELDGATE_MAX_PAGE_SIZE",
        "FIELDGATE_SNAPSHOT_FAILURE_FATAL",
        "FIELDGATE_DISABLE_AUTH",
        "FIELDGATE_ADMIN_ROLE",
    ]:
        monkeypatch.delenv(name, raising=False)


def test_defaults(tmp_path):
    settings = Settings.from_env(tmp_path)
    assert settings.projects_path == tmp_path / "projects"
    assert settings.default_page_size == 25
    assert settings.max_page_size == 200
    assert not settings.snapshot_failure_fatal
    assert not settings.auth_disabled
    assert settings.admin_role == "admin"


def test_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("FIELDGATE_PROJECTS_PATH", str(tmp_path / "defs"))
    monkeypatch.setenv("FIELDGATE_MAX_PAGE_SIZE", "50")
    monkeypatch.setenv("FIELDGATE_DEFAULT_PAGE_SIZE", "80")
    monkeypatch.setenv("FIELDGATE_SNAPSHOT_FAILURE_FATAL", "yes")
    monkeypatch.setenv("FIELDGATE_DISABLE_AUTH", "1")
    monkeypatch.setenv("DATABASE_URL", "memory://")

    settings = Settings.from_env(tmp_path)

    assert settings.projects_path == tmp_path / "defs"
    assert settings.max_page_size == 50
    # The default page never exceeds the ceiling
    assert settings.default_page_size == 50
    assert settings.snapshot_failure_fatal
    assert settings.auth_disabled
    assert settings.database.is_memory


@pytest.mark.parametrize("value", ["many", "0", "-3"])
def test_invalid_page_size(tmp_path, monkeypatch, value):
    monkeypatch.setenv("FIELDGATE_MAX_PAGE_SIZE", value)
    with pytest.raises(ValueError, match="FIELDGATE_MAX_PAGE_SIZE"):
        Settings.from_env(tmp_path)
