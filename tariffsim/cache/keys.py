"""
Simulation parameter keys and their fingerprints.

A key is a closed, versioned schema: one model per simulation kind, unknown
fields rejected. Set-valued fields are sorted and deduplicated when the key
is built, so two keys built from the same values in a different order are
equal and fingerprint identically.
"""

import hashlib
import json
from enum import Enum
from typing import Annotated, Iterable, Literal, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

DEFAULT_CACHE_VERSION = "1.0.0"


class SimulationKind(str, Enum):
    TARIFF_RATE = "tariff_rate"
    PRODUCT_CODE = "product_code"


class _ParameterKeyBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    country: str = Field(min_length=1)
    time_horizon: int = Field(gt=0, description="Months")
    product_categories: Tuple[str, ...] = ()
    scenarios: Tuple[str, ...] = ()
    confidence_level: float = Field(gt=0, lt=1)
    cache_version: str = DEFAULT_CACHE_VERSION

    @field_validator("product_categories", "scenarios", mode="before")
    @classmethod
    def _canonical_set(cls, value):
        if value is None:
            return ()
        if isinstance(value, str):
            value = [value]
        return tuple(sorted(set(value)))

    def canonical(self) -> dict:
        """Plain dict with every field, sets already in canonical order."""
        return self.model_dump(mode="json")

    def canonical_json(self) -> str:
        return json.dumps(self.canonical(), sort_keys=True, separators=(",", ":"))

    def fingerprint(self) -> str:
        return fingerprint(self)


class TariffRateKey(_ParameterKeyBase):
    """Simulation driven by an ad valorem tariff rate (percent)."""

    kind: Literal["tariff_rate"] = "tariff_rate"
    tariff_rate: float = Field(ge=0)


class ProductCodeKey(_ParameterKeyBase):
    """Simulation driven by the schedule of an HS product code."""

    kind: Literal["product_code"] = "product_code"
    product_code: str = Field(min_length=1)


SimulationParameterKey = Annotated[
    Union[TariffRateKey, ProductCodeKey], Field(discriminator="kind")
]

_key_adapter = TypeAdapter(SimulationParameterKey)


def parse_key(data: Union[dict, TariffRateKey, ProductCodeKey]) -> Union[TariffRateKey, ProductCodeKey]:
    """Validate a raw mapping into the matching key model.

    Mappings without ``kind`` are inferred from which driver field they carry.
    """
    if isinstance(data, (TariffRateKey, ProductCodeKey)):
        return data
    if "kind" not in data:
        kind = SimulationKind.PRODUCT_CODE if "product_code" in data else SimulationKind.TARIFF_RATE
        data = {**data, "kind": kind.value}
    return _key_adapter.validate_python(data)


def fingerprint(key: Union[TariffRateKey, ProductCodeKey]) -> str:
    """SHA256 hex digest of the key's canonical JSON."""
    return hashlib.sha256(key.canonical_json().encode()).hexdigest()


def iter_parameters(key: Union[TariffRateKey, ProductCodeKey]) -> Iterable[Tuple[str, object]]:
    """(name, value) pairs of a key, sets as lists, version excluded."""
    for name, value in key.canonical().items():
        if name == "cache_version":
            continue
        yield name, value
