"""Host network inspection: addresses, virtualization and ports."""

from .environment import (
    NetworkReport,
    PortForwardingRule,
    Virtualization,
    detect_virtualization,
    inspect_network,
    port_forwarding_rules,
)
from .ip_detection import detect_external_ip, detect_internal_ip, require_external_ip
from .ports import CRITICAL_PORTS, find_port_holders, kill_port_holders, listening_sockets, port_in_use

__all__ = [
    "CRITICAL_PORTS",
    "NetworkReport",
    "PortForwardingRule",
    "Virtualization",
    "detect_external_ip",
    "detect_internal_ip",
    "detect_virtualization",
    "find_port_holders",
    "inspect_network",
    "kill_port_holders",
    "listening_sockets",
    "port_forwarding_rules",
    "port_in_use",
    "require_external_ip",
]
