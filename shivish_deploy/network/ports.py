"""Find and free host ports the stack publishes."""

import socket
from typing import Dict, Iterable, List

import structlog

from shivish_deploy.utils.shell import CommandRunner

logger = structlog.get_logger(__name__)

CRITICAL_PORTS: Dict[int, str] = {
    8123: "ClickHouse HTTP",
    9002: "ClickHouse TCP",
    9000: "MinIO API",
    5432: "PostgreSQL",
    6379: "Redis",
    3000: "Grafana",
    9001: "MinIO Console",
    9090: "Prometheus",
}


def port_in_use(port: int, host: str = "127.0.0.1", timeout: float = 0.5) -> bool:
    """Whether something accepts TCP connections on ``host:port``."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.settimeout(timeout)
        return sock.connect_ex((host, port)) == 0


def find_port_holders(runner: CommandRunner, port: int) -> List[int]:
    """PIDs with a socket on ``port`` according to ``lsof``."""
    result = runner.run(["lsof", "-t", f"-i:{port}"], sudo=True, check=False)
    pids = []
    for token in result.stdout.split():
        if token.isdigit() and int(token) not in pids:
            pids.append(int(token))
    return pids


def listening_sockets(runner: CommandRunner, ports: Iterable[int]) -> List[str]:
    """``netstat -tulpn`` lines listening on any of ``ports``."""
    wanted = {f":{port}" for port in ports}
    result = runner.run(["netstat", "-tulpn"], sudo=True, check=False)
    lines = []
    for line in result.stdout.splitlines():
        fields = line.split()
        if len(fields) < 4:
            continue
        local = fields[3]
        if any(local.endswith(suffix) for suffix in wanted):
            lines.append(line)
    return lines


def kill_port_holders(runner: CommandRunner, port: int) -> List[int]:
    """Send SIGKILL to every process holding ``port``; returns the PIDs killed."""
    pids = find_port_holders(runner, port)
    if not pids:
        logger.info("port_free", port=port)
        return []

    runner.run(["kill", "-9", *(str(pid) for pid in pids)], sudo=True, check=False)
    logger.warning("port_holders_killed", port=port, pids=pids)
    return pids
