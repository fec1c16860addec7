from typing import Dict
from pydantic import BaseModel, Field


class CacheConfig(BaseModel):
    """Config for the simulation result cache."""
    max_size: int = Field(default=50, gt=0)
    default_ttl_seconds: float = Field(default=24 * 60 * 60, gt=0)
    cache_version: str = "1.0.0"


# === DEFAULT TTLS (seconds) ===
# Per query class. The store itself has no default, callers pick one of these.
DEFAULT_TTLS: Dict[str, int] = {
    "financial": 60 * 60,            # 1 hour
    "market": 15 * 60,               # volatile, 15 minutes
    "company": 24 * 60 * 60,         # reference data, 1 day
    "preferences": 7 * 24 * 60 * 60,
    "query": 5 * 60,
    "simulation": 24 * 60 * 60,
    "default": 30 * 60,
}


def ttl_for(partition: str) -> int:
    """TTL for a query class, falling back to the default class."""
    return DEFAULT_TTLS.get(partition, DEFAULT_TTLS["default"])
