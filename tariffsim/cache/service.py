"""
Simulation result cache: fingerprinted parameter keys over a KeyedCacheStore.
"""

import copy
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel
from tqdm import tqdm

from tariffsim.config.cache import CacheConfig
from tariffsim.errors import CacheInvariantError, KeyCollisionError
from .keys import ProductCodeKey, SimulationParameterKey, TariffRateKey, parse_key
from .store import Clock, KeyedCacheStore

logger = logging.getLogger(__name__)

PARTITION = "simulation"

ParamsLike = Union[TariffRateKey, ProductCodeKey, Dict[str, Any]]
SimulatorFn = Callable[[Union[TariffRateKey, ProductCodeKey]], Awaitable[Any]]


class CacheMetadata(BaseModel):
    """Run metadata stored next to cached results."""

    iterations_run: int = 0
    compute_time_ms: float = 0.0
    convergence_achieved: bool = True
    cache_version: Optional[str] = None


class CachedSimulationResult(BaseModel):
    key: SimulationParameterKey
    results: Any
    metadata: CacheMetadata
    cached_at: float


class CacheStats(BaseModel):
    size: int
    hit_rate: float
    total_requests: int
    max_size: int
    hits: int = 0
    misses: int = 0
    evictions: int = 0


class SimulationCache:
    """
    LRU + TTL cache for expensive simulation results.

    Keys are SHA256 fingerprints of canonical parameter sets. The canonical
    key itself is stored with every entry so a fingerprint that maps to two
    different keys is detected instead of silently returning wrong results.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Optional[Clock] = None,
        store: Optional[KeyedCacheStore] = None,
    ):
        config = config or CacheConfig()
        self.config = config
        self.store = store or KeyedCacheStore(config.max_size, clock=clock)
        self.hits = 0
        self.misses = 0
        logger.debug(f"SimulationCache created (max_size={config.max_size}, version={config.cache_version})")

    @property
    def cache_version(self) -> str:
        return self.config.cache_version

    def cache_results(
        self,
        params: ParamsLike,
        results: Any,
        metadata: Optional[Union[CacheMetadata, Dict[str, Any]]] = None,
    ) -> bool:
        """
        Store results under the fingerprint of params.

        Overwrites an existing entry for the same parameters. Returns False
        only if the store reports a broken invariant.
        """
        key = parse_key(params)
        fp = self._fingerprint(key)

        if isinstance(metadata, dict):
            metadata = CacheMetadata(**metadata)
        metadata = (metadata or CacheMetadata()).model_copy(
            update={"cache_version": self.cache_version}
        )

        payload = CachedSimulationResult(
            key=key,
            results=copy.deepcopy(results),
            metadata=metadata,
            cached_at=self.store.clock(),
        )
        try:
            self.store.set(fp, payload, PARTITION, self.config.default_ttl_seconds)
        except CacheInvariantError:
            logger.exception(f"Cache invariant violated while storing {key.country}:{fp[:12]}")
            return False

        logger.info(f"Cached simulation results for {key.country} ({fp[:12]})")
        return True

    def get_cached_results(self, params: ParamsLike) -> Optional[CachedSimulationResult]:
        """Return cached results or None. Counts a hit or a miss."""
        key = parse_key(params)
        fp = self._fingerprint(key)
        entry = self.store.get_entry(fp, PARTITION)

        if entry is None:
            self.misses += 1
            return None

        cached: CachedSimulationResult = entry.value
        if cached.metadata.cache_version != self.cache_version:
            # Written by an older algorithm version
            self.store.delete(fp, PARTITION)
            self.misses += 1
            return None

        self.hits += 1
        # Callers own their copy; edits must not leak into later hits
        return cached.model_copy(deep=True)

    def contains(self, params: ParamsLike) -> bool:
        """True if an unexpired entry exists. Does not touch stats or recency."""
        key = parse_key(params)
        return self.store.peek(self._fingerprint(key), PARTITION) is not None

    def get_cache_stats(self) -> CacheStats:
        total_requests = self.hits + self.misses
        hit_rate = self.hits / total_requests if total_requests > 0 else 0.0
        return CacheStats(
            size=sum(1 for fp in self.store.keys(PARTITION) if self.store.peek(fp, PARTITION) is not None),
            hit_rate=hit_rate,
            total_requests=total_requests,
            max_size=self.config.max_size,
            hits=self.hits,
            misses=self.misses,
            evictions=self.store.evictions,
        )

    def clear_country_cache(self, country: str) -> int:
        """Remove all entries whose key is for country. Returns count removed."""
        doomed = [
            fp for fp, entry in self.store.entries(PARTITION)
            if entry.value.key.country == country
        ]
        for fp in doomed:
            self.store.delete(fp, PARTITION)
        logger.info(f"Cleared {len(doomed)} cache entries for {country}")
        return len(doomed)

    def clear_cache(self) -> None:
        self.store.clear_partition(PARTITION)
        logger.info("Simulation cache cleared")

    def clean_expired(self) -> int:
        removed = self.store.purge_expired()
        if removed:
            logger.info(f"Cleaned {removed} expired cache entries")
        return removed

    def get_cached_keys(self) -> List[str]:
        """Fingerprints currently held, least recently used first."""
        return self.store.keys(PARTITION)

    async def prefetch_common_simulations(
        self,
        param_list: Sequence[ParamsLike],
        simulator_fn: SimulatorFn,
    ) -> int:
        """
        Warm the cache for a list of parameter sets.

        simulator_fn is awaited only for sets without a fresh entry. A failing
        simulation is logged and skipped.

        Returns:
            Number of parameter sets that were simulated and cached
        """
        logger.info(f"Prefetching {len(param_list)} common simulations")
        simulated = 0

        for params in tqdm(param_list, desc="Prefetching simulations"):
            key = parse_key(params)
            if self.contains(key):
                continue

            try:
                start = time.perf_counter()
                results = await simulator_fn(key)
                compute_time_ms = (time.perf_counter() - start) * 1000
            except Exception as e:
                logger.error(f"Error prefetching simulation for {key.country}: {e}")
                continue

            iterations = results.get("iterations_run", 0) if isinstance(results, dict) else 0
            converged = results.get("convergence_achieved", True) if isinstance(results, dict) else True
            if self.cache_results(key, results, CacheMetadata(
                iterations_run=iterations,
                compute_time_ms=compute_time_ms,
                convergence_achieved=converged,
            )):
                simulated += 1

        logger.info(f"Prefetching complete. Cache now contains {self.get_cache_stats().size} entries.")
        return simulated

    def _fingerprint(self, key: Union[TariffRateKey, ProductCodeKey]) -> str:
        fp = key.fingerprint()
        entry = self.store.peek(fp, PARTITION)
        if entry is not None and entry.value.key != key:
            raise KeyCollisionError(fp, entry.value.key.canonical_json(), key.canonical_json())
        return fp
