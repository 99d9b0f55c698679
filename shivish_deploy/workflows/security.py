"""Firewall, TLS certificates and the nginx configuration that uses them."""

import ipaddress
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import structlog

from shivish_deploy.errors import CertificateError
from shivish_deploy.generators import (
    letsencrypt_paths,
    render_http_config,
    render_ssl_config,
    self_signed_paths,
    write_text_file,
)
from shivish_deploy.health import HttpProbe, wait_for
from shivish_deploy.models import HealthReport
from shivish_deploy.network import detect_internal_ip, require_external_ip
from shivish_deploy.security import (
    CertbotClient,
    Firewall,
    certificate_expires,
    generate_self_signed,
    install_renewal_cron,
)
from shivish_deploy.workflows.context import Context
from shivish_deploy.workflows.monitoring import show_production_urls

logger = structlog.get_logger(__name__)

SELF_SIGNED_DAYS = 365
SELF_SIGNED_RENEW_BEFORE = timedelta(days=30)


@dataclass
class CertificateSource:
    """Where the certificate nginx serves comes from (``letsencrypt`` or ``self-signed``)."""

    kind: str
    cert_path: str
    key_path: str


@dataclass
class SecurityOutcome:
    external_ip: str
    internal_ip: Optional[str]
    server_name: str
    certificate: Optional[CertificateSource]
    report: HealthReport

    @property
    def ssl_enabled(self) -> bool:
        return self.certificate is not None


def _is_ip(name: str) -> bool:
    try:
        ipaddress.ip_address(name)
    except ValueError:
        return False
    return True


def _self_signed_host_paths(ctx: Context) -> Tuple[str, str]:
    ssl_dir = ctx.settings.ssl_dir
    return str(ssl_dir / "fullchain.pem"), str(ssl_dir / "privkey.pem")


def provision_certificate(ctx: Context, server_name: str) -> Optional[CertificateSource]:
    """
    Obtain a certificate for ``server_name``.

    Let's Encrypt does not issue certificates for bare IP addresses, so
    certbot is only used for DNS names and an IP gets a self-signed
    certificate. None means the caller should serve plain HTTP.
    """
    console = ctx.console
    if not _is_ip(server_name):
        console.info(f"Requesting Let's Encrypt certificate for {server_name}...")
        if CertbotClient(ctx.runner, ctx.compose).obtain(server_name, ctx.settings.acme_email):
            console.success("SSL certificate obtained successfully!")
            cert, key = letsencrypt_paths(server_name)
            return CertificateSource("letsencrypt", cert, key)
        console.warning("SSL certificate request failed. Port 80 may not be reachable from the internet,")
        console.warning("the DNS record may not point at this host, or a firewall blocks the request.")
        return None

    console.info(f"{server_name} is an IP address; creating a self-signed certificate...")
    cert_host, key_host = _self_signed_host_paths(ctx)
    try:
        generate_self_signed(cert_host, key_host, server_name, SELF_SIGNED_DAYS)
    except CertificateError as e:
        console.warning(str(e))
        return None
    console.success(f"Self-signed certificate created (valid {SELF_SIGNED_DAYS} days)")
    cert, key = self_signed_paths()
    return CertificateSource("self-signed", cert, key)


def install_nginx_config(ctx: Context, server_name: str, certificate: Optional[CertificateSource]) -> None:
    """Write ``nginx.conf`` for TLS when a certificate exists, plain HTTP otherwise."""
    nginx_dir = ctx.settings.nginx_dir
    if certificate is None:
        ctx.console.info("Using HTTP configuration (SSL not available)...")
        config = render_http_config(ctx.stack)
        write_text_file(nginx_dir / "nginx-production.conf", config)
    else:
        ctx.console.info("Using SSL configuration...")
        config = render_ssl_config(ctx.stack, server_name, certificate.cert_path, certificate.key_path)
        write_text_file(nginx_dir / "nginx-ssl.conf", config)
    write_text_file(nginx_dir / "nginx.conf", config)


def renewal_command(ctx: Context) -> str:
    return f"{sys.executable} -m shivish_deploy --target-dir {ctx.target_dir} renew-certs"


def verify_endpoints(ctx: Context, host: str, ssl: bool) -> HealthReport:
    """
    Wait for nginx, then check the redirect and the gateway over HTTP(S).

    With TLS enabled plain HTTP is expected to redirect; the HTTPS probe
    skips verification since the certificate may be self-signed.
    """
    settings, console = ctx.settings, ctx.console
    gateway_route = ctx.stack.get(ctx.stack.gateway).route
    if ssl:
        probes = [
            HttpProbe("HTTP to HTTPS redirect", f"http://{host}", expect_redirect=True,
                      timeout=settings.probe_timeout, session=ctx.session),
            HttpProbe("HTTPS connection", f"https://{host}{gateway_route}", verify_tls=False,
                      timeout=settings.probe_timeout, session=ctx.session),
        ]
    else:
        probes = [
            HttpProbe("HTTP connection", f"http://{host}{gateway_route}",
                      timeout=settings.probe_timeout, session=ctx.session),
        ]

    console.info(f"Waiting up to {settings.nginx_timeout:.0f}s for nginx...")
    wait_for(probes[0], settings.nginx_timeout, settings.poll_interval, sleep=ctx.sleep)

    report = ctx.health_monitor().run(probes, title="nginx")
    console.report(report)
    return report


def secure_production(ctx: Context) -> SecurityOutcome:
    """Firewall, certificate, TLS nginx config, restart and renewal."""
    console, settings = ctx.console, ctx.settings
    ctx.require_target_dir()

    console.info("Step 1: Setting up firewall rules...")
    firewall = Firewall(ctx.runner)
    if firewall.ensure_installed():
        console.info("UFW firewall installed")
    firewall.configure()
    console.text(firewall.status())
    console.success("Firewall configured successfully!")

    console.info("Step 2: Installing Certbot for SSL certificates...")
    CertbotClient(ctx.runner).ensure_installed()
    console.success("Certbot installed successfully!")

    console.info("Step 3: Getting external IP address...")
    external_ip = require_external_ip(settings.ip_lookup_services, ctx.session, settings.probe_timeout)
    internal_ip = detect_internal_ip(ctx.runner)
    console.success(f"External IP detected: {external_ip}")
    console.success(f"Internal IP: {internal_ip or 'unknown'}")

    server_name = settings.domain or external_ip
    console.info(f"Step 4: Obtaining SSL certificate for {server_name}...")
    certificate = provision_certificate(ctx, server_name)
    if certificate is None:
        console.warning("Continuing with HTTP-only setup...")

    console.info("Step 5: Writing nginx configuration...")
    install_nginx_config(ctx, server_name, certificate)

    console.info("Step 6: Restarting services...")
    ctx.compose.down()
    ctx.compose.up()

    if certificate is not None:
        console.info("Step 7: Setting up SSL certificate auto-renewal...")
        install_renewal_cron(ctx.runner, renewal_command(ctx), settings.renewal_schedule)
        console.success("SSL auto-renewal configured!")

    console.info("Step 8: Testing SSL setup...")
    report = verify_endpoints(ctx, server_name, ssl=certificate is not None)

    show_production_urls(ctx, server_name, ssl=certificate is not None)
    console.success("Production security setup completed")
    return SecurityOutcome(external_ip, internal_ip, server_name, certificate, report)


def fix_nginx_ssl(ctx: Context) -> HealthReport:
    """Rewrite nginx for TLS with the self-signed certificate and restart only nginx."""
    console, settings = ctx.console, ctx.settings
    ctx.require_target_dir()

    external_ip = require_external_ip(settings.ip_lookup_services, ctx.session, settings.probe_timeout)
    server_name = settings.domain or external_ip
    console.info(f"External IP: {external_ip}")

    console.info("Stopping nginx container...")
    ctx.compose.stop(["nginx"])

    cert_host, key_host = _self_signed_host_paths(ctx)
    if not (settings.ssl_dir / "fullchain.pem").exists():
        console.info("No self-signed certificate found, creating one...")
        generate_self_signed(cert_host, key_host, server_name, SELF_SIGNED_DAYS)

    console.info("Updating nginx configuration...")
    cert, key = self_signed_paths()
    install_nginx_config(ctx, server_name, CertificateSource("self-signed", cert, key))

    console.info("Starting nginx container...")
    ctx.compose.up(["nginx"])

    report = verify_endpoints(ctx, server_name, ssl=True)
    http = ctx.health_monitor().run(
        [HttpProbe("HTTP connection", f"http://{server_name}{ctx.stack.get(ctx.stack.gateway).route}",
                   timeout=settings.probe_timeout, session=ctx.session)],
        title="nginx (HTTP)",
    )
    report.results.extend(http.results)
    console.success("Nginx SSL configuration fixed!")
    show_production_urls(ctx, server_name, ssl=True)
    return report


def renew_certificates(ctx: Context, now: Optional[datetime] = None) -> bool:
    """
    Renew whichever certificate is in use.

    Certbot handles Let's Encrypt certificates and stops nginx only while a
    due certificate is renewed. The self-signed one is re-issued once it is
    within 30 days of expiry, then nginx is restarted to load it.

    Returns:
        Whether a certificate was renewed
    """
    settings, console = ctx.settings, ctx.console
    now = now or datetime.now(timezone.utc)

    if settings.domain and not _is_ip(settings.domain):
        if CertbotClient(ctx.runner, ctx.compose).renew():
            console.success("Let's Encrypt certificate renewed and nginx restarted")
            return True
        console.info("No certificate renewal needed")
        return False

    cert_path = settings.ssl_dir / "fullchain.pem"
    if not cert_path.exists():
        console.warning(f"No certificate at {cert_path}; nothing to renew")
        return False
    expires = certificate_expires(cert_path)
    if expires - now > SELF_SIGNED_RENEW_BEFORE:
        logger.info("certificate_still_valid", expires=expires.isoformat())
        console.info("No certificate renewal needed")
        return False

    server_name = settings.domain or require_external_ip(
        settings.ip_lookup_services, ctx.session, settings.probe_timeout
    )
    cert_host, key_host = _self_signed_host_paths(ctx)
    generate_self_signed(cert_host, key_host, server_name, SELF_SIGNED_DAYS)
    ctx.compose.restart(["nginx"])
    console.success("Certificate renewed and nginx restarted")
    return True
