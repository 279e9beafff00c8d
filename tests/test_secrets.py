"""
Tests for secret lookup and masking.
"""
import pytest

from branchgate.utils import secrets
from branchgate.utils.secrets import get_secret, mask_secret


@pytest.fixture(autouse=True)
def clear_cache():
    get_secret.cache_clear()
    yield
    get_secret.cache_clear()


class TestGetSecret:
    """Test secret source priority."""

    def test_file_pointer_wins(self, tmp_path, monkeypatch):
        secret_file = tmp_path / "pg"
        secret_file.write_text("from-file\n")
        monkeypatch.setenv("POSTGRES_PASSWORD_FILE", str(secret_file))
        monkeypatch.setenv("POSTGRES_PASSWORD", "from-env")

        assert get_secret("POSTGRES_PASSWORD") == "from-file"

    def test_environment_value(self, monkeypatch):
        monkeypatch.delenv("SMTP_PASSWORD_FILE", raising=False)
        monkeypatch.setenv("SMTP_PASSWORD", "from-env")

        assert get_secret("SMTP_PASSWORD") == "from-env"

    def test_secrets_directory(self, tmp_path, monkeypatch):
        (tmp_path / "redis_password").write_text("from-dir")
        monkeypatch.setattr(secrets, "SECRETS_DIR", str(tmp_path))
        monkeypatch.delenv("REDIS_PASSWORD", raising=False)
        monkeypatch.delenv("REDIS_PASSWORD_FILE", raising=False)

        assert get_secret("REDIS_PASSWORD") == "from-dir"

    def test_default(self, tmp_path, monkeypatch):
        monkeypatch.setattr(secrets, "SECRETS_DIR", str(tmp_path))
        monkeypatch.delenv("BRANCHGATE_MISSING", raising=False)

        assert get_secret("BRANCHGATE_MISSING", "fallback") == "fallback"

    def test_missing_file_pointer_falls_through(self, tmp_path, monkeypatch):
        monkeypatch.setenv("POSTGRES_PASSWORD_FILE", str(tmp_path / "absent"))
        monkeypatch.setenv("POSTGRES_PASSWORD", "from-env")

        assert get_secret("POSTGRES_PASSWORD") == "from-env"


class TestMaskSecret:
    """Test token masking for logs."""

    def test_keeps_prefix(self):
        assert mask_secret("abcdefghijklmnop") == "abcd..."

    def test_short_values_hidden(self):
        assert mask_secret("abcd1234") == "***"
        assert mask_secret(None) == "***"
