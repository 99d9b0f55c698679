"""``.env`` files shared by the stack's containers."""

from pathlib import Path
from typing import Dict, List, Optional, Tuple

from shivish_deploy.config import DeploySettings
from shivish_deploy.generators.files import write_text_file
from shivish_deploy.models import Stack

_NEEDS_QUOTES = (" ", "\t", "#", "\"", "'", "$", "\\")

# Third-party integrations the services read; operators fill these in.
_PLACEHOLDER_SECTIONS: List[Tuple[str, Dict[str, str]]] = [
    (
        "Payment Gateway Configuration (REPLACE WITH YOUR ACTUAL VALUES)",
        {
            "PHONEPE_MERCHANT_ID": "your_phonepe_merchant_id",
            "PHONEPE_SALT_KEY": "your_phonepe_salt_key",
            "PHONEPE_SALT_INDEX": "1",
            "RAZORPAY_KEY_ID": "your_razorpay_key_id",
            "RAZORPAY_KEY_SECRET": "your_razorpay_key_secret",
        },
    ),
    (
        "Notification Configuration (REPLACE WITH YOUR ACTUAL VALUES)",
        {
            "SMTP_HOST": "smtp.gmail.com",
            "SMTP_PORT": "587",
            "SMTP_USERNAME": "your_email@gmail.com",
            "SMTP_PASSWORD": "your_app_password",
            "TWILIO_ACCOUNT_SID": "your_twilio_account_sid",
            "TWILIO_AUTH_TOKEN": "your_twilio_auth_token",
            "TWILIO_PHONE_NUMBER": "your_twilio_phone",
        },
    ),
]


def env_sections(settings: DeploySettings, stack: Stack) -> List[Tuple[str, Dict[str, str]]]:
    """Ordered (heading, variables) pairs making up the stack's ``.env``."""
    sections: List[Tuple[str, Dict[str, str]]] = [
        (
            "Database Configuration",
            {
                "DB_HOST": "postgres",
                "DB_PORT": str(settings.postgres.port),
                "DB_NAME": settings.postgres.database,
                "DB_USER": settings.postgres.user,
                "DB_PASSWORD": settings.postgres.password,
            },
        ),
        (
            "Redis Configuration",
            {
                "REDIS_HOST": "redis",
                "REDIS_PORT": str(settings.redis.port),
                "REDIS_PASSWORD": settings.redis.password,
            },
        ),
        (
            "ClickHouse Configuration",
            {
                "CLICKHOUSE_HOST": "clickhouse",
                "CLICKHOUSE_PORT": "8123",
                "CLICKHOUSE_DB": settings.clickhouse.database,
                "CLICKHOUSE_USER": settings.clickhouse.user,
                "CLICKHOUSE_PASSWORD": settings.clickhouse.password,
            },
        ),
        (
            "MinIO Configuration",
            {
                "MINIO_ENDPOINT": f"minio:{settings.minio.api_port}",
                "MINIO_ACCESS_KEY": settings.minio.access_key,
                "MINIO_SECRET_KEY": settings.minio.secret_key,
                "MINIO_USE_SSL": "false",
            },
        ),
        (
            "JWT Configuration",
            {
                "JWT_SECRET": settings.jwt.secret,
                "JWT_EXPIRATION": settings.jwt.expiration,
            },
        ),
    ]
    sections.extend(_PLACEHOLDER_SECTIONS)
    sections.append(("Grafana Configuration", {"GRAFANA_PASSWORD": settings.grafana.password}))
    sections.append(
        (
            "Service Ports",
            {
                f"{service.name.replace('-', '_').upper()}_PORT": str(service.host_port)
                for service in stack.microservices
            },
        )
    )
    return sections


def format_value(value: str) -> str:
    """Quote ``value`` when an env_file reader would otherwise split, truncate or expand it."""
    if not value or not any(ch in value for ch in _NEEDS_QUOTES):
        return value
    if "'" not in value:
        # single quotes are literal for both compose and dotenv readers
        return f"'{value}'"
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def render_env(settings: DeploySettings, stack: Stack) -> str:
    lines: List[str] = []
    for heading, values in env_sections(settings, stack):
        if lines:
            lines.append("")
        lines.append(f"# {heading}")
        lines.extend(f"{key}={format_value(value)}" for key, value in values.items())
    return "\n".join(lines) + "\n"


def _split_line(raw_line: str) -> Optional[Tuple[str, str]]:
    line = raw_line.strip()
    if not line or line.startswith("#"):
        return None
    if line.startswith("export "):
        line = line[len("export "):]
    if "=" not in line:
        return None
    key, value = line.split("=", 1)
    key = key.strip()
    if not key:
        return None
    return key, _unquote(value.strip())


def _unquote(value: str) -> str:
    if value[:1] == '"':
        end = 1
        while end < len(value) and value[end] != '"':
            end += 2 if value[end] == "\\" else 1
        inner = value[1:end]
        return inner.replace('\\"', '"').replace("\\\\", "\\")
    if value[:1] == "'":
        end = value.find("'", 1)
        return value[1:end] if end != -1 else value[1:]
    # unquoted: " #" starts a comment
    return value.split(" #", 1)[0].rstrip()


def parse_env(text: str) -> Dict[str, str]:
    """Parse ``KEY=value`` lines, ignoring blanks, comments and quotes."""
    data: Dict[str, str] = {}
    for raw_line in text.splitlines():
        pair = _split_line(raw_line)
        if pair:
            data[pair[0]] = pair[1]
    return data


def write_env(path: Path, values: Dict[str, str]) -> Path:
    """
    Merge ``values`` into the ``.env`` at ``path``.

    Lines are kept in place, comments included; a changed key is rewritten
    where it stands and new keys are appended.
    """
    path = Path(path)
    pending = {k: v for k, v in values.items() if v is not None}
    lines: List[str] = []
    if path.exists():
        lines = path.read_text(encoding="utf-8").splitlines()

    for index, raw_line in enumerate(lines):
        pair = _split_line(raw_line)
        if pair is None or pair[0] not in pending:
            continue
        key, current = pair
        value = pending.pop(key)
        if value != current:
            lines[index] = f"{key}={format_value(value)}"

    lines.extend(f"{key}={format_value(value)}" for key, value in pending.items())
    write_text_file(path, "\n".join(lines) + "\n", mode=0o600)
    return path
