"""
Monte Carlo model of tariff impact on trade value.

Each iteration draws a price pass-through share, an import demand elasticity
and a horizon-scaled market shock, and yields the percentage change in
trade value. Named scenarios shift the shock distribution.
"""

import logging
from typing import Callable, Dict, List, Optional, Union

import numpy as np

from tariffsim.cache.keys import ProductCodeKey, TariffRateKey

logger = logging.getLogger(__name__)

ProgressFn = Callable[[float], None]

# Applied MFN rates by HS chapter (first two digits), percent
HS_CHAPTER_RATES = {
    "03": 15.0,   # Fish
    "09": 12.0,   # Coffee, tea, spices
    "40": 8.0,    # Rubber
    "44": 5.0,    # Wood
    "61": 20.0,   # Apparel, knitted
    "62": 20.0,   # Apparel, not knitted
    "64": 25.0,   # Footwear
    "84": 3.5,    # Machinery
    "85": 4.0,    # Electrical equipment
    "94": 10.0,   # Furniture
}
DEFAULT_PRODUCT_RATE = 10.0

# Shift of the mean shock (percentage points) per named scenario
SCENARIO_SHIFTS = {
    "baseline": 0.0,
    "growth": 2.0,
    "recession": -3.0,
    "retaliation": -4.0,
    "escalation": -5.0,
    "trade_deal": 3.0,
}

# Outcome bands on the simulated trade value change, percent
PESSIMISTIC_BELOW = -10.0
OPTIMISTIC_ABOVE = -2.0

HISTOGRAM_BINS = 50

Params = Union[TariffRateKey, ProductCodeKey]


def effective_rate(params: Params) -> float:
    if isinstance(params, TariffRateKey):
        return params.tariff_rate
    return HS_CHAPTER_RATES.get(params.product_code[:2], DEFAULT_PRODUCT_RATE)


def draw_impacts(params: Params, n: int, rng: np.random.Generator) -> np.ndarray:
    """Draw n simulated trade value changes (percent)."""
    rate = effective_rate(params)
    horizon_scale = np.sqrt(params.time_horizon / 12.0)

    # More product categories diversify idiosyncratic risk
    diversification = 1.0 / np.sqrt(max(1, len(params.product_categories)))

    shift = 0.0
    for scenario in params.scenarios:
        if scenario not in SCENARIO_SHIFTS:
            logger.debug(f"Unknown scenario '{scenario}' ignored")
        shift += SCENARIO_SHIFTS.get(scenario, 0.0)

    pass_through = rng.beta(6.0, 4.0, size=n)
    elasticity = np.abs(rng.normal(1.2, 0.3, size=n))
    shock = rng.normal(shift, 4.0 * horizon_scale * (0.5 + 0.5 * diversification), size=n)

    return -rate * pass_through * elasticity + shock


def summarize(params: Params, samples: np.ndarray, keep_samples: bool = False) -> Dict:
    """Build the results payload from simulated samples."""
    n = len(samples)
    std = float(np.std(samples))
    alpha = (1.0 - params.confidence_level) / 2.0

    counts, edges = np.histogram(samples, bins=HISTOGRAM_BINS)
    cumulative = np.cumsum(counts) / n
    distribution = [
        {"bin": float(edge), "frequency": int(count), "cumulative": float(cum)}
        for edge, count, cum in zip(edges[:-1], counts, cumulative)
    ]

    bands = {
        "pessimistic": samples < PESSIMISTIC_BELOW,
        "optimistic": samples > OPTIMISTIC_ABOVE,
    }
    bands["realistic"] = ~(bands["pessimistic"] | bands["optimistic"])
    scenarios = {
        case: {
            "probability": float(mask.mean()),
            "mean": float(samples[mask].mean()) if mask.any() else None,
        }
        for case, mask in bands.items()
    }

    # Standard error within 5% of the spread
    std_error = std / np.sqrt(n) if n else float("inf")
    converged = bool(n > 1 and std_error <= 0.05 * max(std, 1e-9))

    results = {
        "summary": {
            "mean": float(np.mean(samples)),
            "median": float(np.median(samples)),
            "min": float(np.min(samples)),
            "max": float(np.max(samples)),
            "std": std,
            "variance": float(np.var(samples)),
        },
        "percentiles": {
            "p5": float(np.percentile(samples, 5)),
            "p25": float(np.percentile(samples, 25)),
            "p50": float(np.percentile(samples, 50)),
            "p75": float(np.percentile(samples, 75)),
            "p95": float(np.percentile(samples, 95)),
        },
        "confidence_interval": {
            "level": params.confidence_level,
            "lower": float(np.quantile(samples, alpha)),
            "upper": float(np.quantile(samples, 1.0 - alpha)),
        },
        "scenarios": scenarios,
        "distribution": distribution,
        "effective_tariff_rate": effective_rate(params),
        "iterations_run": n,
        "convergence_achieved": converged,
    }
    if keep_samples:
        results["samples"] = samples.tolist()
    return results


def simulate_tariff_impact(
    params: Params,
    iterations: int = 5000,
    seed: Optional[int] = None,
    progress: Optional[ProgressFn] = None,
    batch_size: int = 500,
) -> Dict:
    """
    Run the full simulation synchronously.

    progress, when given, is called with the completed percentage after
    every batch.
    """
    rng = np.random.default_rng(seed)
    batches: List[np.ndarray] = []
    done = 0
    while done < iterations:
        n = min(batch_size, iterations - done)
        batches.append(draw_impacts(params, n, rng))
        done += n
        if progress is not None:
            progress(done / iterations * 100)

    return summarize(params, np.concatenate(batches))
