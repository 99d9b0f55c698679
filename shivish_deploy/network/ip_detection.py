"""External and internal IP address detection."""

import ipaddress
import socket
from typing import Optional, Sequence

import requests
import structlog

from shivish_deploy.errors import IPDetectionError
from shivish_deploy.utils.shell import CommandRunner

logger = structlog.get_logger(__name__)


def _parse_ip(text: str) -> Optional[str]:
    candidate = text.strip()
    try:
        return str(ipaddress.ip_address(candidate))
    except ValueError:
        return None


def detect_external_ip(
    services: Sequence[str],
    session: Optional[requests.Session] = None,
    timeout: float = 5.0,
) -> Optional[str]:
    """
    Ask each lookup service in turn for this host's public address.

    Responses that are not a bare IP literal (HTML error pages, captive
    portals) are skipped.

    Returns:
        The first valid address, or None when every service failed
    """
    session = session or requests.Session()
    for url in services:
        try:
            response = session.get(url, timeout=timeout, headers={"User-Agent": "curl/8"})
        except requests.exceptions.RequestException as e:
            logger.warning("ip_lookup_failed", service=url, error=type(e).__name__)
            continue

        if response.status_code != 200:
            logger.warning("ip_lookup_failed", service=url, status_code=response.status_code)
            continue

        address = _parse_ip(response.text)
        if address is None:
            logger.warning("ip_lookup_invalid_response", service=url, body=response.text[:64])
            continue

        logger.info("external_ip_detected", service=url, ip=address)
        return address

    logger.error("external_ip_unavailable", tried=list(services))
    return None


def require_external_ip(
    services: Sequence[str],
    session: Optional[requests.Session] = None,
    timeout: float = 5.0,
) -> str:
    """Like ``detect_external_ip`` but raise ``IPDetectionError`` on failure."""
    address = detect_external_ip(services, session=session, timeout=timeout)
    if address is None:
        raise IPDetectionError(services)
    return address


def detect_internal_ip(runner: CommandRunner) -> Optional[str]:
    """First address reported by ``hostname -I``, else the default-route source address."""
    result = runner.run(["hostname", "-I"], check=False)
    if result.ok:
        for token in result.stdout.split():
            address = _parse_ip(token)
            if address is not None:
                return address

    # No packet is sent; connect() on a UDP socket only picks a route.
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(("8.8.8.8", 80))
            return sock.getsockname()[0]
    except OSError as e:
        logger.warning("internal_ip_unavailable", error=str(e))
        return None
