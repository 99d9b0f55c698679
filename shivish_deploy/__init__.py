"""Install, configure and monitor the Shivish Docker Compose stack."""

__version__ = "1.0.0"
