"""Simulation result caching: keyed TTL store, parameter fingerprints, LRU cache."""

from .keys import (
    ProductCodeKey,
    SimulationKind,
    SimulationParameterKey,
    TariffRateKey,
    fingerprint,
    parse_key,
)
from .service import CachedSimulationResult, CacheMetadata, CacheStats, SimulationCache
from .store import CacheEntry, KeyedCacheStore

__all__ = [
    "CacheEntry",
    "KeyedCacheStore",
    "ProductCodeKey",
    "SimulationKind",
    "SimulationParameterKey",
    "TariffRateKey",
    "fingerprint",
    "parse_key",
    "CachedSimulationResult",
    "CacheMetadata",
    "CacheStats",
    "SimulationCache",
]
