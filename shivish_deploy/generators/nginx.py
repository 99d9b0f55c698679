"""nginx reverse proxy configuration.

Upstream blocks are emitted in the ``http`` context for both the plain and
the TLS variant; nginx rejects ``upstream`` inside ``server``.
"""

from pathlib import Path
from typing import Tuple

from jinja2 import Environment, PackageLoader, StrictUndefined

from shivish_deploy.models import Stack

SELF_SIGNED_DIR = Path("/etc/ssl/shivish")
LETSENCRYPT_LIVE_DIR = Path("/etc/letsencrypt/live")

_BASE_HEADERS = [
    ("Host", "$host"),
    ("X-Real-IP", "$remote_addr"),
    ("X-Forwarded-For", "$proxy_add_x_forwarded_for"),
    ("X-Forwarded-Proto", "$scheme"),
]
_GATEWAY_HEADERS = [
    ("X-Forwarded-Host", "$host"),
    ("X-Forwarded-Port", "$server_port"),
]


def _proxy_headers(gateway: bool) -> str:
    headers = _BASE_HEADERS + (_GATEWAY_HEADERS if gateway else [])
    return "\n".join(f"            proxy_set_header {name} {value};" for name, value in headers)


def _get_env() -> Environment:
    env = Environment(
        loader=PackageLoader("shivish_deploy", "templates"),
        undefined=StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )
    env.globals["proxy_headers"] = _proxy_headers
    return env


def letsencrypt_paths(name: str) -> Tuple[str, str]:
    """Certificate and key paths certbot uses for ``name``."""
    live = LETSENCRYPT_LIVE_DIR / name
    return str(live / "fullchain.pem"), str(live / "privkey.pem")


def self_signed_paths() -> Tuple[str, str]:
    """Paths of the self-signed certificate inside the nginx container."""
    return str(SELF_SIGNED_DIR / "fullchain.pem"), str(SELF_SIGNED_DIR / "privkey.pem")


def render_http_config(stack: Stack, server_name: str = "_") -> str:
    """Plain HTTP reverse proxy for every route of ``stack``."""
    template = _get_env().get_template("nginx.conf.j2")
    return template.render(stack=stack, ssl=False, server_name=server_name)


def render_ssl_config(stack: Stack, server_name: str, cert_path: str, key_path: str) -> str:
    """HTTPS reverse proxy with an HTTP to HTTPS redirect."""
    template = _get_env().get_template("nginx.conf.j2")
    return template.render(
        stack=stack,
        ssl=True,
        server_name=server_name,
        cert_path=cert_path,
        key_path=key_path,
    )
