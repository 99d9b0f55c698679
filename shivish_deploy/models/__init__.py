"""Pydantic models for the Shivish stack."""

from .common import (
    AdminRoute,
    CoreService,
    HealthReport,
    HealthStatus,
    Microservice,
    ProbeMode,
    ProbeResult,
    Stack,
)

__all__ = [
    "AdminRoute",
    "CoreService",
    "HealthReport",
    "HealthStatus",
    "Microservice",
    "ProbeMode",
    "ProbeResult",
    "Stack",
]
