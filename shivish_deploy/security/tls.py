"""Self-signed certificates for hosts that cannot get a public one."""

import ipaddress
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Tuple

import structlog
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from shivish_deploy.errors import CertificateError
from shivish_deploy.generators.files import write_text_file

logger = structlog.get_logger(__name__)


def _subject_alt_name(common_name: str) -> x509.SubjectAlternativeName:
    try:
        address = ipaddress.ip_address(common_name)
    except ValueError:
        return x509.SubjectAlternativeName([x509.DNSName(common_name)])
    return x509.SubjectAlternativeName([x509.IPAddress(address)])


def build_self_signed(common_name: str, days: int = 365) -> Tuple[bytes, bytes]:
    """
    Create a key and a self-signed server certificate for ``common_name``.

    An IP literal becomes an IP subject alternative name, anything else a
    DNS name.

    Returns:
        (certificate PEM, private key PEM)
    """
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Shivish"),
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ]
    )
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + timedelta(days=days))
        .add_extension(_subject_alt_name(common_name), critical=False)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
        .sign(key, hashes.SHA256())
    )
    cert_pem = cert.public_bytes(serialization.Encoding.PEM)
    key_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    return cert_pem, key_pem


def generate_self_signed(cert_path: Path, key_path: Path, common_name: str, days: int = 365) -> Tuple[Path, Path]:
    """Write a fresh self-signed certificate and key; raises ``CertificateError`` on I/O failure."""
    if days <= 0:
        raise CertificateError(f"Certificate lifetime must be positive, got {days} days")

    cert_pem, key_pem = build_self_signed(common_name, days)
    try:
        write_text_file(Path(cert_path), cert_pem.decode("ascii"), mode=0o644)
        write_text_file(Path(key_path), key_pem.decode("ascii"), mode=0o600)
    except OSError as e:
        raise CertificateError(f"Could not write self-signed certificate: {e}") from e

    logger.info("self_signed_certificate_created", common_name=common_name, cert=str(cert_path), days=days)
    return Path(cert_path), Path(key_path)


def certificate_expires(cert_path: Path) -> datetime:
    """Expiry (UTC) of the PEM certificate at ``cert_path``."""
    try:
        cert = x509.load_pem_x509_certificate(Path(cert_path).read_bytes())
    except (OSError, ValueError) as e:
        raise CertificateError(f"Could not read certificate {cert_path}: {e}") from e
    return cert.not_valid_after_utc
