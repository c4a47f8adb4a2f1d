"""Connector interfaces for the Healthie GraphQL API."""

from .healthie_client import (
    HealthieClient,
    HealthieClientError,
    UpstreamError,
    UpstreamTransportError,
    UpstreamValidationError,
)

__all__ = [
    "HealthieClient",
    "HealthieClientError",
    "UpstreamError",
    "UpstreamTransportError",
    "UpstreamValidationError",
]
