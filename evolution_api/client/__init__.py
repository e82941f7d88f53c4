"""Evolution API client package."""

from evolution_api.client.http import EvolutionClient
from evolution_api.client.rate_limiter import ClientRateLimiter
from evolution_api.client.resources import (
    InstancesResource,
    MessagesResource,
    instance_summary,
)

__all__ = [
    "ClientRateLimiter",
    "EvolutionClient",
    "InstancesResource",
    "MessagesResource",
    "instance_summary",
]
