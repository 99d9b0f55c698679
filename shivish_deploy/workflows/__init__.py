"""One function per operator task; each takes a ``Context``."""

from .context import Context
from .monitoring import check_network, check_ports, monitor, production_urls, show_production_urls, urls
from .security import fix_nginx_ssl, provision_certificate, renew_certificates, secure_production
from .services import activate_services, fix_port_conflicts
from .setup import prepare_directories, setup_production, write_configuration

__all__ = [
    "Context",
    "activate_services",
    "check_network",
    "check_ports",
    "fix_nginx_ssl",
    "fix_port_conflicts",
    "monitor",
    "prepare_directories",
    "production_urls",
    "provision_certificate",
    "renew_certificates",
    "secure_production",
    "setup_production",
    "show_production_urls",
    "urls",
    "write_configuration",
]
