"""
Error taxonomy for the distance cache.

Routers translate these into HTTP status codes; services raise them and
let them propagate.
"""
from __future__ import annotations

from typing import Any


class DistanceCacheError(Exception):
    """Base class for every error the distance cache surfaces."""


class EntityNotFound(DistanceCacheError):
    def __init__(self, kind: str, entity_id: int):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} {entity_id} not found")


class ProviderUnavailable(DistanceCacheError):
    """The routing provider failed (network, rate limit, bad payload)."""

    def __init__(self, provider: str, reason: str):
        self.provider = provider
        self.reason = reason
        super().__init__(f"routing provider '{provider}' unavailable: {reason}")


class InvalidMode(DistanceCacheError):
    def __init__(self, value: Any):
        self.value = value
        super().__init__(f'Mode must be either "walking" or "driving", got {value!r}')


class StorageError(DistanceCacheError):
    """The persistence layer failed; the in-flight result is discarded."""
