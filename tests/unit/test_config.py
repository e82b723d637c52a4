# =============================================================================
# tests/unit/test_config.py
# Unit Tests for StorageConfig loading and validation
# =============================================================================

import pytest

from flow_core.errors import ConfigurationError
from flow_core.offline.config import StorageConfig, get_config_status, load_config


SECRETS = """
[supabase]
url = "https://test-project.supabase.co"
key = "secret-anon-key"

[storage]
storage_mode = "hybrid"
remote_retry_attempts = 5
unknown_option = 1
"""


@pytest.fixture
def secrets_file(tmp_path):
    path = tmp_path / "secrets.toml"
    path.write_text(SECRETS, encoding="utf-8")
    return path


class TestLoadConfig:
    """Defaults, secrets.toml and environment layering"""

    def test_defaults(self, tmp_path):
        config = load_config(secrets_path=str(tmp_path / "missing.toml"), environ={})

        assert config.storage_mode == "auto"
        assert config.enable_fallback is True
        assert config.remote_retry_attempts == 3
        assert config.remote_failure_threshold == 5
        assert config.has_remote_credentials is False

    def test_secrets_file(self, secrets_file):
        config = load_config(secrets_path=str(secrets_file), environ={})

        assert config.supabase_url == "https://test-project.supabase.co"
        assert config.has_remote_credentials
        assert config.storage_mode == "hybrid"
        assert config.remote_retry_attempts == 5

    def test_environment_wins_over_secrets(self, secrets_file):
        config = load_config(
            secrets_path=str(secrets_file),
            environ={
                "FLOWTRACKER_STORAGE_MODE": "localStorage",
                "FLOWTRACKER_ENABLE_FALLBACK": "false",
                "FLOWTRACKER_DB_TIMEOUT": "8000",
            },
        )

        assert config.storage_mode == "local"
        assert config.enable_fallback is False
        assert config.remote_connect_timeout_ms == 8000
        assert config.remote_timeout_seconds == 8.0

    def test_explicit_overrides_win(self, tmp_path):
        config = load_config(
            secrets_path=str(tmp_path / "missing.toml"),
            environ={"FLOWTRACKER_STORAGE_MODE": "remote"},
            storage_mode="local",
        )
        assert config.storage_mode == "local"

    def test_unreadable_secrets_are_ignored(self, tmp_path):
        path = tmp_path / "secrets.toml"
        path.write_text("[supabase\nurl = ", encoding="utf-8")

        config = load_config(secrets_path=str(path), environ={})

        assert config.has_remote_credentials is False

    def test_invalid_boolean_raises(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(
                secrets_path=str(tmp_path / "missing.toml"),
                environ={"FLOWTRACKER_ENABLE_FALLBACK": "sometimes"},
            )
        assert exc_info.value.details["config_key"] == "enable_fallback"

    def test_strict_validation(self, tmp_path):
        environ = {"FLOWTRACKER_DB_RETRY_ATTEMPTS": "50", "FLOWTRACKER_SYNC_INTERVAL": "100"}

        with pytest.raises(ConfigurationError) as exc_info:
            load_config(secrets_path=str(tmp_path / "missing.toml"), environ=environ)
        assert len(exc_info.value.details["errors"]) == 2

        lenient = load_config(secrets_path=str(tmp_path / "missing.toml"), environ=environ, strict=False)
        assert lenient.remote_retry_attempts == 50


class TestValidation:
    """StorageConfig.validate()"""

    @pytest.mark.parametrize("overrides, fragment", [
        ({"storage_mode": "cloud"}, "Invalid storage mode"),
        ({"remote_connect_timeout_ms": 500}, "at least 1000ms"),
        ({"remote_retry_attempts": 11}, "between 0 and 10"),
        ({"sync_interval_ms": 1000}, "at least 5000ms"),
        ({"remote_failure_threshold": 0}, "threshold"),
        ({"retry_base_delay_seconds": 10.0, "retry_max_delay_seconds": 5.0}, "Retry delays"),
        ({"storage_mode": "remote"}, "requires SUPABASE_URL"),
    ])
    def test_invalid_values(self, overrides, fragment):
        errors = StorageConfig(**overrides).validate()
        assert any(fragment in e for e in errors)

    def test_ensure_valid_raises(self):
        with pytest.raises(ConfigurationError):
            StorageConfig(storage_mode="cloud").ensure_valid()

    def test_mode_aliases(self):
        assert StorageConfig(storage_mode="Database").storage_mode == "remote"
        assert StorageConfig(storage_mode="offline").storage_mode == "local"

    def test_to_dict_redacts_key(self):
        config = StorageConfig(supabase_url="https://x.supabase.co", supabase_key="abc")
        assert config.to_dict()["supabase_key"] == "***"
        assert config.to_dict(redact=False)["supabase_key"] == "abc"

    def test_config_status(self):
        status = get_config_status(StorageConfig(storage_mode="cloud"))
        assert status["valid"] is False
        assert status["config"]["has_remote_credentials"] is False


class TestReload:
    """Hot reload of the runtime-tunable subset"""

    def test_reload_applies_hot_options_only(self, secrets_file):
        config = load_config(secrets_path=str(secrets_file), environ={})

        changed = config.reload(environ={
            "FLOWTRACKER_ENABLE_FALLBACK": "false",
            "FLOWTRACKER_STORAGE_MODE": "local",
            "FLOWTRACKER_DEBUG_STORAGE": "true",
        })

        assert changed == {"enable_fallback": False, "debug_storage": True}
        assert config.storage_mode == "hybrid"

    def test_invalid_reload_is_ignored(self, secrets_file):
        config = load_config(secrets_path=str(secrets_file), environ={})

        changed = config.reload(environ={"FLOWTRACKER_FAILURE_THRESHOLD": "0"})

        assert changed == {}
        assert config.remote_failure_threshold == 5
