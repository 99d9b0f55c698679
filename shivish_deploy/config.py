"""Configuration management for shivish-deploy.

Uses Pydantic Settings for environment-based configuration. Every value can
be overridden with an environment variable or a ``.env`` file in the
working directory; credentials use the same variable names the stack's
containers read (``POSTGRES_PASSWORD``, ``MINIO_ACCESS_KEY`` ...).
"""

from pathlib import Path
from typing import List, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PostgresSettings(BaseSettings):
    """PostgreSQL credentials.

    The generated ``.env`` names these ``DB_*`` for the services, so both
    spellings are read; ``POSTGRES_*`` wins when both are set.
    """

    database: str = Field(
        default="shivish_platform",
        validation_alias=AliasChoices("POSTGRES_DB", "POSTGRES_DATABASE", "DB_NAME"),
        description="Database name",
    )
    user: str = Field(
        default="shivish_user",
        validation_alias=AliasChoices("POSTGRES_USER", "DB_USER"),
        description="Database user",
    )
    password: str = Field(
        default="shivish_secure_password_2024",
        validation_alias=AliasChoices("POSTGRES_PASSWORD", "DB_PASSWORD"),
        description="Database password",
    )
    port: int = Field(
        default=5432,
        gt=0,
        lt=65536,
        validation_alias=AliasChoices("POSTGRES_PORT", "DB_PORT"),
        description="Published port",
    )

    model_config = SettingsConfigDict(
        env_prefix="POSTGRES_", env_file=".env", extra="ignore", populate_by_name=True
    )


class RedisSettings(BaseSettings):
    """Redis credentials."""

    password: str = Field(default="redis_secure_password_2024", description="requirepass value")
    port: int = Field(default=6379, gt=0, lt=65536, description="Published port")

    model_config = SettingsConfigDict(env_prefix="REDIS_", env_file=".env", extra="ignore")


class ClickHouseSettings(BaseSettings):
    """ClickHouse credentials and limits."""

    database: str = Field(default="analytics", description="Database name")
    user: str = Field(default="analytics_user", description="Analytics user")
    password: str = Field(default="clickhouse_secure_password_2024", description="Analytics password")
    http_port: int = Field(default=8123, gt=0, lt=65536, description="HTTP interface port")
    tcp_port: int = Field(default=9000, gt=0, lt=65536, description="Native protocol port")
    max_memory_usage: int = Field(default=10_000_000_000, gt=0, description="Per-query memory limit (bytes)")

    model_config = SettingsConfigDict(env_prefix="CLICKHOUSE_", env_file=".env", extra="ignore")


class MinIOSettings(BaseSettings):
    """MinIO/S3 credentials."""

    access_key: str = Field(default="shivish_access_key", description="Root user")
    secret_key: str = Field(default="shivish_secret_key_2024_very_secure", description="Root password")
    api_port: int = Field(default=9000, gt=0, lt=65536, description="S3 API port")
    console_port: int = Field(default=9001, gt=0, lt=65536, description="Console port")

    model_config = SettingsConfigDict(env_prefix="MINIO_", env_file=".env", extra="ignore")


class GrafanaSettings(BaseSettings):
    """Grafana admin credentials."""

    password: str = Field(default="shivish_grafana_password_2024", description="Admin password")

    model_config = SettingsConfigDict(env_prefix="GRAFANA_", env_file=".env", extra="ignore")


class JWTSettings(BaseSettings):
    """Token signing settings handed to the auth service."""

    secret: str = Field(
        default="shivish_jwt_secret_key_2024_very_secure_random_string",
        description="JWT signing secret",
    )
    expiration: str = Field(default="24h", description="Token lifetime")

    model_config = SettingsConfigDict(env_prefix="JWT_", env_file=".env", extra="ignore")


class DeploySettings(BaseSettings):
    """Main deployment configuration."""

    postgres: PostgresSettings = Field(default_factory=PostgresSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    clickhouse: ClickHouseSettings = Field(default_factory=ClickHouseSettings)
    minio: MinIOSettings = Field(default_factory=MinIOSettings)
    grafana: GrafanaSettings = Field(default_factory=GrafanaSettings)
    jwt: JWTSettings = Field(default_factory=JWTSettings)

    # Project layout
    target_dir: Path = Field(default=Path("/opt/shivish"), description="Project root on the host")
    compose_file: str = Field(
        default="docker-compose-production.yml", description="Production compose file name"
    )
    dev_compose_file: str = Field(
        default="docker-compose.yml", description="Placeholder/development compose file name"
    )
    compose_command: List[str] = Field(
        default_factory=lambda: ["docker-compose"],
        description="Compose executable, e.g. [\"docker\", \"compose\"]",
    )

    # Execution
    use_sudo: bool = Field(default=True, description="Prefix privileged commands with sudo")
    dry_run: bool = Field(default=False, description="Log commands without running them")

    # Readiness budgets
    startup_timeout: float = Field(default=30.0, gt=0, description="Seconds to wait for the stack")
    nginx_timeout: float = Field(default=10.0, gt=0, description="Seconds to wait for nginx")
    clickhouse_timeout: float = Field(default=20.0, gt=0, description="Seconds to wait for ClickHouse")
    probe_timeout: float = Field(default=5.0, gt=0, description="Per-request HTTP timeout")
    poll_interval: float = Field(default=2.0, gt=0, description="Seconds between readiness polls")

    # Networking and TLS
    ip_lookup_services: List[str] = Field(
        default_factory=lambda: [
            "https://ifconfig.me",
            "https://ipinfo.io/ip",
            "https://icanhazip.com",
        ],
        description="External IP lookup services, tried in order",
    )
    domain: Optional[str] = Field(
        default=None, description="DNS name for the certificate; the external IP is used when unset"
    )
    acme_email: Optional[str] = Field(default=None, description="Let's Encrypt registration e-mail")
    renewal_schedule: str = Field(default="0 2 * * *", description="Cron schedule for certificate renewal")

    # Logging and metrics
    log_level: str = Field(default="INFO", description="Log level")
    json_logs: bool = Field(default=False, description="Emit JSON logs")
    environment: str = Field(default="production", description="Environment name")
    metrics_port: int = Field(default=9108, gt=0, lt=65536, description="Prometheus exporter port")

    model_config = SettingsConfigDict(
        env_prefix="SHIVISH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("ip_lookup_services")
    @classmethod
    def validate_lookup_services(cls, v: List[str]) -> List[str]:
        """At least one lookup service is required."""
        if not v:
            raise ValueError("ip_lookup_services cannot be empty")
        return v

    @field_validator("compose_command")
    @classmethod
    def validate_compose_command(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("compose_command cannot be empty")
        return v

    def secret_values(self) -> List[str]:
        """Credentials that must never appear in logs."""
        return [
            self.postgres.password,
            self.redis.password,
            self.clickhouse.password,
            self.minio.secret_key,
            self.grafana.password,
            self.jwt.secret,
        ]

    @property
    def compose_path(self) -> Path:
        return self.target_dir / self.compose_file

    @property
    def dev_compose_path(self) -> Path:
        return self.target_dir / self.dev_compose_file

    @property
    def configs_dir(self) -> Path:
        return self.target_dir / "configs"

    @property
    def data_dir(self) -> Path:
        return self.target_dir / "data"

    @property
    def logs_dir(self) -> Path:
        return self.target_dir / "logs"

    @property
    def microservices_dir(self) -> Path:
        return self.target_dir / "microservices"

    @property
    def nginx_dir(self) -> Path:
        return self.configs_dir / "nginx"

    @property
    def clickhouse_config_dir(self) -> Path:
        return self.configs_dir / "clickhouse"

    @property
    def ssl_dir(self) -> Path:
        """Host directory mounted at /etc/ssl/shivish in the nginx container."""
        return self.configs_dir / "ssl"


_settings_instance: Optional[DeploySettings] = None


def get_settings() -> DeploySettings:
    """
    Get or create the settings instance.

    Returns:
        DeploySettings instance
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = DeploySettings()
    return _settings_instance


def reset_settings() -> None:
    """Forget the cached settings so the next call re-reads the environment."""
    global _settings_instance
    _settings_instance = None
