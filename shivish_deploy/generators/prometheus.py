"""Prometheus scrape configuration."""

from typing import Any, Dict

import yaml

from shivish_deploy.models import Stack


def build_prometheus_config(stack: Stack, scrape_interval: str = "15s") -> Dict[str, Any]:
    """One scrape job for Prometheus itself plus one per microservice."""
    jobs = [{"job_name": "prometheus", "static_configs": [{"targets": ["localhost:9090"]}]}]
    for service in stack.microservices:
        jobs.append(
            {
                "job_name": service.name,
                "static_configs": [{"targets": [f"{service.name}:{service.container_port}"]}],
            }
        )
    return {
        "global": {"scrape_interval": scrape_interval, "evaluation_interval": scrape_interval},
        "rule_files": [],
        "scrape_configs": jobs,
    }


def render_prometheus_config(stack: Stack, scrape_interval: str = "15s") -> str:
    return yaml.safe_dump(build_prometheus_config(stack, scrape_interval), sort_keys=False)
