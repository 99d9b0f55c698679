"""docker-compose file generation.

Two layouts are produced from the same stack definition:

* production: microservices run the ``shivish-<name>`` images built from Go
  sources and publish their production ports;
* placeholder: microservices are ``nginx:alpine`` stand-ins on ports
  8080-8090 and ClickHouse mounts the generated ``config.xml``/``users.xml``.
"""

import shutil
from pathlib import Path
from typing import Any, Dict, List

import structlog
import yaml

from shivish_deploy.config import DeploySettings
from shivish_deploy.errors import ConfigurationError
from shivish_deploy.generators.files import write_text_file
from shivish_deploy.models import Microservice, Stack

logger = structlog.get_logger(__name__)

COMPOSE_VERSION = "3.8"
CLICKHOUSE_TCP_HOST_PORT = 9002
RESTART_POLICY = "unless-stopped"
PLACEHOLDER_SITE_CONFIG = "/etc/nginx/conf.d/default.conf"


def _service_environment(service: Microservice, settings: DeploySettings) -> List[str]:
    env = {
        "DB_HOST": "postgres",
        "DB_PORT": str(settings.postgres.port),
        "DB_NAME": settings.postgres.database,
        "DB_USER": settings.postgres.user,
        "DB_PASSWORD": settings.postgres.password,
        "REDIS_HOST": "redis",
        "REDIS_PORT": str(settings.redis.port),
        "REDIS_PASSWORD": settings.redis.password,
    }
    if service.name == "auth-service":
        env["JWT_SECRET"] = settings.jwt.secret
    env.update(service.environment)
    if "clickhouse" in service.depends_on:
        env.update(
            {
                "CLICKHOUSE_DB": settings.clickhouse.database,
                "CLICKHOUSE_USER": settings.clickhouse.user,
                "CLICKHOUSE_PASSWORD": settings.clickhouse.password,
            }
        )
    return [f"{key}={value}" for key, value in env.items()]


def _placeholder_command(port: int) -> List[str]:
    # the reverse proxy reaches every service on its container port
    script = (
        f"sed -i -E 's/listen( +\\[::\\]:| +)80;/listen\\1{port};/' {PLACEHOLDER_SITE_CONFIG}"
        " && exec nginx -g 'daemon off;'"
    )
    return ["/bin/sh", "-c", script]


def clickhouse_service(settings: DeploySettings, stack: Stack, *, custom_config: bool) -> Dict[str, Any]:
    """Compose definition of the ClickHouse service."""
    ch = settings.clickhouse
    volumes = [
        "./data/clickhouse:/var/lib/clickhouse",
        "./logs/clickhouse:/var/log/clickhouse-server",
    ]
    if custom_config:
        volumes += [
            "./configs/clickhouse/config.xml:/etc/clickhouse-server/config.xml",
            "./configs/clickhouse/users.xml:/etc/clickhouse-server/users.xml",
        ]

    definition: Dict[str, Any] = {
        "image": "clickhouse/clickhouse-server:latest",
        "container_name": stack.container_name("clickhouse"),
        "environment": {
            "CLICKHOUSE_DB": ch.database,
            "CLICKHOUSE_USER": ch.user,
            "CLICKHOUSE_PASSWORD": ch.password,
        },
        "volumes": volumes,
        "ports": [
            f"{ch.http_port}:8123",
            f"{CLICKHOUSE_TCP_HOST_PORT}:{ch.tcp_port}",
        ],
        "networks": [stack.network],
        "restart": RESTART_POLICY,
        "ulimits": {"nofile": {"soft": 262144, "hard": 262144}},
        "depends_on": ["postgres", "redis"],
    }
    if not custom_config:
        definition["user"] = "0:0"
    return definition


def build_compose(
    stack: Stack,
    settings: DeploySettings,
    *,
    placeholders: bool = False,
) -> Dict[str, Any]:
    """
    Build the compose document as a plain dictionary.

    Args:
        stack: Services to include
        settings: Credentials and ports
        placeholders: Use nginx placeholders instead of built service images

    Returns:
        Dictionary ready for ``yaml.safe_dump``
    """
    pg = settings.postgres
    minio = settings.minio
    network = [stack.network]

    services: Dict[str, Any] = {
        "postgres": {
            "image": "postgres:15-alpine",
            "container_name": stack.container_name("postgres"),
            "environment": {
                "POSTGRES_DB": pg.database,
                "POSTGRES_USER": pg.user,
                "POSTGRES_PASSWORD": pg.password,
            },
            "volumes": ["./data/postgres:/var/lib/postgresql/data"],
            "ports": [f"{pg.port}:5432"],
            "networks": network,
            "restart": RESTART_POLICY,
        },
        "redis": {
            "image": "redis:7-alpine",
            "container_name": stack.container_name("redis"),
            "command": f"redis-server --requirepass {settings.redis.password}",
            "volumes": ["./data/redis:/data"],
            "ports": [f"{settings.redis.port}:6379"],
            "networks": network,
            "restart": RESTART_POLICY,
        },
        "clickhouse": clickhouse_service(settings, stack, custom_config=placeholders),
        "minio": {
            "image": "minio/minio:latest",
            "container_name": stack.container_name("minio"),
            "environment": {
                "MINIO_ROOT_USER": minio.access_key,
                "MINIO_ROOT_PASSWORD": minio.secret_key,
            },
            "command": 'server /data --console-address ":9001"',
            "volumes": ["./data/minio:/data"],
            "ports": [f"{minio.api_port}:9000", f"{minio.console_port}:9001"],
            "networks": network,
            "restart": RESTART_POLICY,
        },
        "prometheus": {
            "image": "prom/prometheus:latest",
            "container_name": stack.container_name("prometheus"),
            "volumes": ["./configs/prometheus/prometheus.yml:/etc/prometheus/prometheus.yml"],
            "ports": ["9090:9090"],
            "networks": network,
            "restart": RESTART_POLICY,
        },
        "grafana": {
            "image": "grafana/grafana:latest",
            "container_name": stack.container_name("grafana"),
            "environment": {"GF_SECURITY_ADMIN_PASSWORD": settings.grafana.password},
            "volumes": ["./data/grafana:/var/lib/grafana"],
            "ports": ["3000:3000"],
            "networks": network,
            "restart": RESTART_POLICY,
        },
        "nginx": {
            "image": "nginx:alpine",
            "container_name": stack.container_name("nginx"),
            "volumes": [
                "./configs/nginx/nginx.conf:/etc/nginx/nginx.conf:ro",
                "/etc/letsencrypt:/etc/letsencrypt:ro",
                "./configs/ssl:/etc/ssl/shivish:ro",
            ],
            "ports": ["80:80", "443:443"],
            "depends_on": [stack.gateway],
            "networks": network,
            "restart": RESTART_POLICY,
        },
    }

    for service in stack.microservices:
        depends = ["postgres", "redis", *service.depends_on]
        if placeholders:
            services[service.name] = {
                "image": "nginx:alpine",
                "container_name": stack.container_name(service.name),
                "command": _placeholder_command(service.container_port),
                "ports": [f"{service.placeholder_port}:{service.container_port}"],
                "networks": network,
                "restart": RESTART_POLICY,
                "depends_on": depends,
            }
            continue

        services[service.name] = {
            "image": stack.image_name(service),
            "container_name": stack.container_name(service.name),
            "ports": [f"{service.host_port}:{service.container_port}"],
            "environment": _service_environment(service, settings),
            "networks": network,
            "restart": RESTART_POLICY,
            "depends_on": depends,
        }

    return {
        "version": COMPOSE_VERSION,
        "services": services,
        "networks": {stack.network: {"driver": "bridge"}},
    }


def render_compose(stack: Stack, settings: DeploySettings, *, placeholders: bool = False) -> str:
    """Render the compose document as YAML text."""
    document = build_compose(stack, settings, placeholders=placeholders)
    return yaml.safe_dump(document, sort_keys=False, default_flow_style=False, width=120)


def write_compose(path: Path, stack: Stack, settings: DeploySettings, *, placeholders: bool = False) -> Path:
    """Write the compose file and return its path."""
    write_text_file(path, render_compose(stack, settings, placeholders=placeholders))
    return path


def load_compose(path: Path) -> Dict[str, Any]:
    """Parse an existing compose file."""
    try:
        document = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"{path} is not valid YAML: {e}") from e
    if not isinstance(document, dict):
        raise ConfigurationError(f"{path} does not contain a compose document")
    return document


def ensure_service(path: Path, name: str, definition: Dict[str, Any]) -> bool:
    """
    Make sure ``name`` is defined in the compose file at ``path``.

    A missing service is added (after backing the file up to
    ``<file>.backup``); an existing one has its published ports corrected.

    Returns:
        Whether the file was modified
    """
    path = Path(path)
    document = load_compose(path)
    services = document.setdefault("services", {}) or {}
    document["services"] = services

    existing = services.get(name)
    if existing is None:
        shutil.copy2(path, path.with_name(path.name + ".backup"))
        services[name] = definition
        logger.info("compose_service_added", path=str(path), service=name)
    elif existing.get("ports") != definition.get("ports"):
        existing["ports"] = definition.get("ports")
        logger.info("compose_service_ports_updated", path=str(path), service=name, ports=existing["ports"])
    else:
        return False

    write_text_file(path, yaml.safe_dump(document, sort_keys=False, default_flow_style=False, width=120))
    return True
