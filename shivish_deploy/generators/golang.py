"""Sources for the Go microservices: placeholder server, go.mod and Dockerfile."""

from jinja2 import Environment, PackageLoader, StrictUndefined

from shivish_deploy.models import Microservice

GO_VERSION = "1.21"


def _get_env() -> Environment:
    return Environment(
        loader=PackageLoader("shivish_deploy", "templates/go"),
        undefined=StrictUndefined,
        keep_trailing_newline=True,
    )


def render_placeholder_main(service: Microservice) -> str:
    """A dependency-free HTTP server answering ``/`` and the health path."""
    return _get_env().get_template("main.go.j2").render(
        name=service.name,
        port=service.container_port,
        health_path=service.health_path,
    )


def render_go_mod(service: Microservice, go_version: str = GO_VERSION) -> str:
    """A standard-library-only ``go.mod``."""
    return _get_env().get_template("go.mod.j2").render(name=service.name, go_version=go_version)


def render_dockerfile(service: Microservice) -> str:
    """Runtime image copying the prebuilt static binary onto alpine."""
    return _get_env().get_template("Dockerfile.j2").render(
        binary=service.name,
        port=service.container_port,
    )
