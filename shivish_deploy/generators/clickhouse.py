"""ClickHouse server configuration (``config.xml`` and ``users.xml``)."""

import xml.etree.ElementTree as ET
from typing import Any, Dict

from shivish_deploy.config import DeploySettings

# Limits used when the server does not come up with the regular config,
# typically on hosts with little memory.
MINIMAL_LIMITS = {
    "max_connections": 256,
    "max_concurrent_queries": 20,
    "max_server_memory_usage_to_ram_ratio": "0.5",
    "mark_cache_size": 268435456,
    "uncompressed_cache_size": 0,
}


def _append(parent: ET.Element, tag: str, value: Any = None) -> ET.Element:
    element = ET.SubElement(parent, tag)
    if value is not None:
        element.text = str(value)
    return element


def _append_mapping(parent: ET.Element, values: Dict[str, Any]) -> None:
    for tag, value in values.items():
        if isinstance(value, dict):
            _append_mapping(_append(parent, tag), value)
        else:
            _append(parent, tag, value)


def _serialize(root: ET.Element) -> str:
    ET.indent(root, space="    ")
    return '<?xml version="1.0"?>\n' + ET.tostring(root, encoding="unicode") + "\n"


def render_config_xml(settings: DeploySettings, *, minimal: bool = False) -> str:
    """
    Render the server ``config.xml``.

    Args:
        settings: Provides the HTTP and native ports
        minimal: Lower connection and memory limits for constrained hosts
    """
    ch = settings.clickhouse
    root = ET.Element("clickhouse")
    _append_mapping(
        root,
        {
            "logger": {
                "level": "warning" if minimal else "information",
                "log": "/var/log/clickhouse-server/clickhouse-server.log",
                "errorlog": "/var/log/clickhouse-server/clickhouse-server.err.log",
                "size": "1000M",
                "count": 10,
            },
            "http_port": 8123,
            "tcp_port": ch.tcp_port,
            "listen_host": "0.0.0.0",
            "max_connections": MINIMAL_LIMITS["max_connections"] if minimal else 4096,
            "keep_alive_timeout": 3,
            "max_concurrent_queries": MINIMAL_LIMITS["max_concurrent_queries"] if minimal else 100,
        },
    )
    if minimal:
        _append(root, "max_server_memory_usage_to_ram_ratio", MINIMAL_LIMITS["max_server_memory_usage_to_ram_ratio"])
        _append(root, "mark_cache_size", MINIMAL_LIMITS["mark_cache_size"])
        _append(root, "uncompressed_cache_size", MINIMAL_LIMITS["uncompressed_cache_size"])

    _append_mapping(
        root,
        {
            "path": "/var/lib/clickhouse/",
            "tmp_path": "/var/lib/clickhouse/tmp/",
            "user_files_path": "/var/lib/clickhouse/user_files/",
            "users_config": "users.xml",
            "default_profile": "default",
            "default_database": "default",
            "timezone": "UTC",
        },
    )
    return _serialize(root)


def render_users_xml(settings: DeploySettings) -> str:
    """Render ``users.xml`` with the default and the analytics user."""
    ch = settings.clickhouse
    root = ET.Element("clickhouse")

    users = _append(root, "users")
    for name, password in (("default", ""), (ch.user, ch.password)):
        user = _append(users, name)
        _append(user, "password", password)
        networks = _append(user, "networks")
        _append(networks, "ip", "::/0")
        _append(user, "profile", "default")
        _append(user, "quota", "default")

    quotas = _append(root, "quotas")
    interval = _append(_append(quotas, "default"), "interval")
    _append_mapping(
        interval,
        {
            "duration": 3600,
            "queries": 0,
            "errors": 0,
            "result_rows": 0,
            "read_rows": 0,
            "execution_time": 0,
        },
    )

    profiles = _append(root, "profiles")
    _append_mapping(
        _append(profiles, "default"),
        {
            "max_memory_usage": ch.max_memory_usage,
            "use_uncompressed_cache": 0,
            "load_balancing": "random",
        },
    )
    return _serialize(root)
