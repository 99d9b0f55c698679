"""Detect how the host is virtualized and whether it is reachable directly."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

import requests
import structlog

from shivish_deploy.config import DeploySettings
from shivish_deploy.network.ip_detection import detect_external_ip, detect_internal_ip
from shivish_deploy.utils.shell import CommandRunner

logger = structlog.get_logger(__name__)


class Virtualization(str, Enum):
    CLOUD = "cloud"
    VIRTUALBOX = "virtualbox"
    OTHER = "other"


@dataclass(frozen=True)
class PortForwardingRule:
    """A NAT rule an operator adds in VirtualBox."""

    name: str
    host_port: int
    guest_port: int
    protocol: str = "TCP"


def detect_virtualization(root: Path = Path("/")) -> Virtualization:
    """
    Classify the host.

    OpenVZ containers expose ``/proc/vz`` without ``/proc/bc``; VirtualBox
    guests report it in the DMI product name.
    """
    root = Path(root)
    if (root / "proc/vz").is_dir() and not (root / "proc/bc").is_dir():
        return Virtualization.CLOUD

    product = root / "sys/class/dmi/id/product_name"
    try:
        if "VirtualBox" in product.read_text():
            return Virtualization.VIRTUALBOX
    except OSError:
        pass
    return Virtualization.OTHER


def port_forwarding_rules() -> List[PortForwardingRule]:
    return [
        PortForwardingRule("HTTP", 80, 80),
        PortForwardingRule("HTTPS", 443, 443),
        PortForwardingRule("SSH", 22, 22),
    ]


@dataclass
class NetworkReport:
    internal_ip: Optional[str]
    external_ip: Optional[str]
    virtualization: Virtualization
    forwarding_rules: List[PortForwardingRule] = field(default_factory=list)

    @property
    def direct_access(self) -> bool:
        """The host owns its public address, so no port forwarding is needed."""
        return self.internal_ip is not None and self.internal_ip == self.external_ip

    @property
    def needs_port_forwarding(self) -> bool:
        return self.virtualization == Virtualization.VIRTUALBOX


def inspect_network(
    runner: CommandRunner,
    settings: DeploySettings,
    session: Optional[requests.Session] = None,
    root: Path = Path("/"),
) -> NetworkReport:
    virtualization = detect_virtualization(root)
    report = NetworkReport(
        internal_ip=detect_internal_ip(runner),
        external_ip=detect_external_ip(settings.ip_lookup_services, session=session, timeout=settings.probe_timeout),
        virtualization=virtualization,
        forwarding_rules=port_forwarding_rules() if virtualization == Virtualization.VIRTUALBOX else [],
    )
    logger.info(
        "network_inspected",
        internal_ip=report.internal_ip,
        external_ip=report.external_ip,
        virtualization=virtualization.value,
        direct_access=report.direct_access,
    )
    return report
