"""Health probing for the deployed stack."""

from .monitor import HealthMonitor, SystemResources, read_meminfo
from .probes import HttpProbe, PostgresProbe, Probe, RedisProbe, wait_for

__all__ = [
    "HealthMonitor",
    "HttpProbe",
    "PostgresProbe",
    "Probe",
    "RedisProbe",
    "SystemResources",
    "read_meminfo",
    "wait_for",
]
