"""Generators for the configuration files the stack consumes."""

from .clickhouse import render_config_xml, render_users_xml
from .compose import build_compose, ensure_service, load_compose, render_compose, write_compose
from .env_file import parse_env, render_env, write_env
from .files import write_text_file
from .golang import render_dockerfile, render_go_mod, render_placeholder_main
from .nginx import letsencrypt_paths, render_http_config, render_ssl_config, self_signed_paths
from .prometheus import render_prometheus_config

__all__ = [
    "build_compose",
    "ensure_service",
    "letsencrypt_paths",
    "load_compose",
    "parse_env",
    "render_compose",
    "render_config_xml",
    "render_dockerfile",
    "render_env",
    "render_go_mod",
    "render_http_config",
    "render_placeholder_main",
    "render_prometheus_config",
    "render_ssl_config",
    "render_users_xml",
    "self_signed_paths",
    "write_compose",
    "write_env",
    "write_text_file",
]
