"""Firewall, certificates and their renewal."""

from .certbot import CertbotClient
from .cron import install_renewal_cron
from .firewall import DEFAULT_RULES, Firewall
from .tls import build_self_signed, certificate_expires, generate_self_signed

__all__ = [
    "CertbotClient",
    "DEFAULT_RULES",
    "Firewall",
    "build_self_signed",
    "certificate_expires",
    "generate_self_signed",
    "install_renewal_cron",
]
