"""The Shivish platform as deployed on a single host."""

from shivish_deploy.models import AdminRoute, CoreService, Microservice, Stack

_ANALYTICS_ENV = {
    "CLICKHOUSE_HOST": "clickhouse",
    "CLICKHOUSE_PORT": "8123",
}

# name, display name, container port, production host port, placeholder port, route
_MICROSERVICES = [
    ("api-gateway", "API Gateway", 8080, 8081, 8080, "/api/"),
    ("auth-service", "Auth Service", 8080, 8080, 8081, "/auth/"),
    ("user-service", "User Service", 8098, 8098, 8082, "/users/"),
    ("ecommerce-service", "E-commerce Service", 8081, 8082, 8083, "/ecommerce/"),
    ("payment-service", "Payment Service", 8091, 8091, 8084, "/payments/"),
    ("notification-service", "Notification Service", 8092, 8092, 8085, "/notifications/"),
    ("content-service", "Content Service", 8093, 8093, 8086, "/content/"),
    ("analytics-service", "Analytics Service", 8094, 8094, 8087, "/analytics/"),
    ("verification-service", "Verification Service", 8095, 8095, 8088, "/verification/"),
    ("emergency-service", "Emergency Service", 8096, 8096, 8089, "/emergency/"),
    ("temple-service", "Temple Service", 8097, 8097, 8090, "/temple/"),
]


def default_stack() -> Stack:
    """Build the default Shivish stack definition."""
    microservices = []
    for name, display, container_port, host_port, placeholder_port, route in _MICROSERVICES:
        extra_env = dict(_ANALYTICS_ENV) if name == "analytics-service" else {}
        depends = ["clickhouse"] if name == "analytics-service" else []
        microservices.append(
            Microservice(
                name=name,
                display_name=display,
                container_port=container_port,
                host_port=host_port,
                placeholder_port=placeholder_port,
                route=route,
                environment=extra_env,
                depends_on=depends,
            )
        )

    return Stack(
        microservices=microservices,
        admin_routes=[
            AdminRoute(route="/grafana/", display_name="Grafana", upstream_host="grafana", upstream_port=3000),
            AdminRoute(route="/minio/", display_name="MinIO Console", upstream_host="minio", upstream_port=9001),
            AdminRoute(
                route="/prometheus/", display_name="Prometheus", upstream_host="prometheus", upstream_port=9090
            ),
        ],
        core_services=[
            CoreService(name="grafana", display_name="Grafana", port=3000),
            CoreService(name="minio", display_name="MinIO Console", port=9001),
            CoreService(name="prometheus", display_name="Prometheus", port=9090),
            CoreService(name="clickhouse", display_name="ClickHouse", port=8123),
        ],
    )
