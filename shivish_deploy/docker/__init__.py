"""Wrappers around the docker and docker-compose command line tools."""

from .compose import ComposeProject
from .engine import ContainerStats, DockerEngine

__all__ = ["ComposeProject", "ContainerStats", "DockerEngine"]
