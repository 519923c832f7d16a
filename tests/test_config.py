"""Tests for settings loading."""

import pytest
from pydantic import ValidationError

from utility_splitter.config import (
    AppSettings,
    CryptoSettings,
    LocalStorageSettings,
    RemoteStoreSettings,
)


class TestSettings:
    """Tests for environment-driven configuration."""

    def test_defaults(self, monkeypatch):
        for name in ("REMOTE_STORE_BASE_URL", "REMOTE_STORE_API_USER", "REMOTE_STORE_API_PASS"):
            monkeypatch.delenv(name, raising=False)
        remote = RemoteStoreSettings(_env_file=None)
        assert not remote.is_configured
        assert remote.retry_attempts == 3
        assert CryptoSettings().pbkdf2_iterations >= 100_000

    def test_remote_from_env(self, monkeypatch):
        monkeypatch.setenv("REMOTE_STORE_BASE_URL", "https://kv.example")
        monkeypatch.setenv("REMOTE_STORE_API_USER", "house")
        monkeypatch.setenv("REMOTE_STORE_API_PASS", "secret")
        assert RemoteStoreSettings().is_configured

    def test_local_data_dir(self, monkeypatch, tmp_path):
        monkeypatch.setenv("LOCAL_STORAGE_DATA_DIR", str(tmp_path))
        assert LocalStorageSettings().data_dir == tmp_path

    def test_tenant_id_is_validated(self, monkeypatch):
        monkeypatch.setenv("TENANT_ID", "house-7")
        assert AppSettings().tenant_id == "house-7"
        monkeypatch.setenv("TENANT_ID", "house 7")
        with pytest.raises(ValidationError):
            AppSettings()

    def test_tolerances_are_bounded(self):
        with pytest.raises(ValidationError):
            AppSettings(split_tolerance=0)
        with pytest.raises(ValidationError):
            AppSettings(settle_threshold=5)
