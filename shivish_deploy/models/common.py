"""Common Pydantic models describing the deployed stack and its health."""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class HealthStatus(str, Enum):
    """Health status enum."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DEGRADED = "degraded"


class ProbeMode(str, Enum):
    """Which port layout a stack is probed with."""

    PRODUCTION = "production"
    PLACEHOLDER = "placeholder"


def _normalize_route(value: str) -> str:
    value = value.strip()
    if not value.startswith("/"):
        value = "/" + value
    if not value.endswith("/"):
        value = value + "/"
    return value


class Microservice(BaseModel):
    """An application service fronted by nginx."""

    name: str = Field(..., min_length=1, description="Compose service name, e.g. auth-service")
    display_name: str = Field(..., min_length=1, description="Human readable name")
    container_port: int = Field(..., gt=0, lt=65536, description="Port the process listens on")
    host_port: int = Field(..., gt=0, lt=65536, description="Published port in production")
    placeholder_port: int = Field(..., gt=0, lt=65536, description="Published port of the nginx placeholder")
    route: str = Field(..., description="nginx location prefix")
    health_path: str = Field("/health", description="Health endpoint of the real service")
    environment: Dict[str, str] = Field(default_factory=dict, description="Extra environment variables")
    depends_on: List[str] = Field(default_factory=list, description="Extra compose dependencies")

    model_config = ConfigDict(frozen=True)

    @field_validator("route")
    @classmethod
    def validate_route(cls, v: str) -> str:
        """Route prefixes are always wrapped in slashes."""
        return _normalize_route(v)

    @property
    def upstream_name(self) -> str:
        """nginx upstream identifier (``auth-service`` -> ``auth_service``)."""
        return self.name.replace("-", "_")


class AdminRoute(BaseModel):
    """An nginx location exposing an administration UI."""

    route: str = Field(..., description="nginx location prefix")
    display_name: str = Field(..., min_length=1)
    upstream_host: str = Field(..., min_length=1)
    upstream_port: int = Field(..., gt=0, lt=65536)

    model_config = ConfigDict(frozen=True)

    @field_validator("route")
    @classmethod
    def validate_route(cls, v: str) -> str:
        return _normalize_route(v)


class CoreService(BaseModel):
    """An infrastructure container probed over HTTP on the host."""

    name: str = Field(..., min_length=1)
    display_name: str = Field(..., min_length=1)
    port: int = Field(..., gt=0, lt=65536)
    path: str = Field("/", description="Path requested by the probe")

    model_config = ConfigDict(frozen=True)


class Stack(BaseModel):
    """The complete set of services that make up a deployment."""

    project: str = Field("shivish", min_length=1, description="Prefix for images and containers")
    network: str = Field("shivish-network", min_length=1, description="Compose bridge network")
    gateway: str = Field("api-gateway", description="Service nginx depends on")
    microservices: List[Microservice] = Field(default_factory=list)
    admin_routes: List[AdminRoute] = Field(default_factory=list)
    core_services: List[CoreService] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique(self) -> "Stack":
        """Service names and nginx routes must be unique."""
        names = [m.name for m in self.microservices]
        if len(names) != len(set(names)):
            raise ValueError("microservice names must be unique")
        routes = [m.route for m in self.microservices] + [a.route for a in self.admin_routes]
        if len(routes) != len(set(routes)):
            raise ValueError("route prefixes must be unique")
        return self

    def get(self, name: str) -> Microservice:
        """Look up a microservice by compose name."""
        for service in self.microservices:
            if service.name == name:
                return service
        raise KeyError(name)

    def image_name(self, service: Microservice) -> str:
        return f"{self.project}-{service.name}"

    def container_name(self, name: str) -> str:
        return f"{self.project}-{name}"

    def public_routes(self) -> List[Tuple[str, str]]:
        """(display name, route) pairs in the order operators expect them."""
        pairs = []
        for service in self.microservices:
            label = "Main API" if service.name == self.gateway else service.display_name
            pairs.append((label, service.route))
        gateway_first = sorted(pairs, key=lambda p: p[0] != "Main API")
        return gateway_first + [(a.display_name, a.route) for a in self.admin_routes]


class ProbeResult(BaseModel):
    """Outcome of a single health probe."""

    name: str
    target: str
    status: HealthStatus
    kind: str = "http"
    detail: str = ""
    latency_ms: Optional[float] = None
    checked_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY


class HealthReport(BaseModel):
    """A batch of probe results."""

    title: str = "Service Health"
    results: List[ProbeResult] = Field(default_factory=list)

    @property
    def healthy_count(self) -> int:
        return sum(1 for r in self.results if r.healthy)

    @property
    def all_healthy(self) -> bool:
        return all(r.healthy for r in self.results)

    @property
    def failed(self) -> List[ProbeResult]:
        return [r for r in self.results if not r.healthy]
