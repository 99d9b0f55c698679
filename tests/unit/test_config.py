"""
Unit tests for deployment settings.

Covers defaults, environment overrides, validation and the derived
project paths every workflow relies on.
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from shivish_deploy.config import DeploySettings, PostgresSettings, get_settings, reset_settings


class TestDefaults:
    """Default values match the stack's published ports and credentials"""

    def test_project_layout(self):
        settings = DeploySettings()

        assert settings.target_dir == Path("/opt/shivish")
        assert settings.compose_path == Path("/opt/shivish/docker-compose-production.yml")
        assert settings.dev_compose_path == Path("/opt/shivish/docker-compose.yml")

    def test_derived_directories(self, tmp_path):
        settings = DeploySettings(target_dir=tmp_path)

        assert settings.configs_dir == tmp_path / "configs"
        assert settings.nginx_dir == tmp_path / "configs" / "nginx"
        assert settings.clickhouse_config_dir == tmp_path / "configs" / "clickhouse"
        assert settings.ssl_dir == tmp_path / "configs" / "ssl"
        assert settings.data_dir == tmp_path / "data"
        assert settings.logs_dir == tmp_path / "logs"
        assert settings.microservices_dir == tmp_path / "microservices"

    def test_service_defaults(self):
        settings = DeploySettings()

        assert settings.postgres.port == 5432
        assert settings.redis.port == 6379
        assert settings.clickhouse.http_port == 8123
        assert settings.clickhouse.tcp_port == 9000
        assert settings.minio.console_port == 9001
        assert settings.compose_command == ["docker-compose"]
        assert settings.renewal_schedule == "0 2 * * *"

    def test_secret_values(self):
        settings = DeploySettings()

        secrets = settings.secret_values()

        assert settings.redis.password in secrets
        assert settings.minio.secret_key in secrets
        assert settings.jwt.secret in secrets
        assert settings.minio.access_key not in secrets


class TestEnvironmentOverrides:
    """Environment variables override defaults"""

    def test_prefixed_variables(self, monkeypatch):
        monkeypatch.setenv("SHIVISH_TARGET_DIR", "/srv/shivish")
        monkeypatch.setenv("SHIVISH_DOMAIN", "api.shivish.example")
        monkeypatch.setenv("SHIVISH_STARTUP_TIMEOUT", "90")

        settings = DeploySettings()

        assert settings.target_dir == Path("/srv/shivish")
        assert settings.domain == "api.shivish.example"
        assert settings.startup_timeout == 90.0

    def test_credentials_use_container_variable_names(self, monkeypatch):
        monkeypatch.setenv("POSTGRES_PASSWORD", "from-env")

        assert PostgresSettings().password == "from-env"

    def test_generated_env_file_names_are_honoured(self, monkeypatch, tmp_path):
        (tmp_path / ".env").write_text(
            "DB_HOST=postgres\n"
            "DB_NAME=shop\n"
            "DB_USER=operator\n"
            "DB_PASSWORD=operator_changed\n"
            "REDIS_PASSWORD=operator_changed\n"
        )
        monkeypatch.chdir(tmp_path)

        settings = DeploySettings()

        assert settings.postgres.password == "operator_changed"
        assert settings.postgres.user == "operator"
        assert settings.postgres.database == "shop"
        assert settings.redis.password == "operator_changed"

    def test_postgres_prefix_wins_over_db_alias(self, monkeypatch, tmp_path):
        (tmp_path / ".env").write_text("DB_PASSWORD=from-dotenv\n")
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("POSTGRES_PASSWORD", "from-env")

        assert PostgresSettings().password == "from-env"

    def test_cached_settings_reset(self, monkeypatch):
        reset_settings()
        monkeypatch.setenv("SHIVISH_ENVIRONMENT", "staging")
        try:
            assert get_settings() is get_settings()
            assert get_settings().environment == "staging"
        finally:
            reset_settings()


class TestValidation:
    """Invalid values are rejected"""

    def test_empty_lookup_services(self):
        with pytest.raises(ValidationError, match="ip_lookup_services"):
            DeploySettings(ip_lookup_services=[])

    def test_empty_compose_command(self):
        with pytest.raises(ValidationError, match="compose_command"):
            DeploySettings(compose_command=[])

    def test_non_positive_timeout(self):
        with pytest.raises(ValidationError):
            DeploySettings(startup_timeout=0)

    def test_port_out_of_range(self):
        with pytest.raises(ValidationError):
            PostgresSettings(port=70000)
