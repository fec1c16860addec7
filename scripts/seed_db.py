import asyncio
import logging
import sys
import os

# Add project root to path
sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from tariffsim.app import build_orchestrator
from tariffsim.db.session import engine, SessionLocal
from tariffsim.db.models import Base
from tariffsim.orchestrator.models import RunConfig, RunSettings, SimulationStatus
from tariffsim.workers.monte_carlo import simulate_tariff_impact

# Country / rate pairs that are requested most often
COMMON_SIMULATIONS = [
    {"country": "Vietnam", "tariff_rate": 46.0, "time_horizon": 12, "confidence_level": 0.95},
    {"country": "China", "tariff_rate": 34.0, "time_horizon": 12, "confidence_level": 0.95},
    {"country": "Mexico", "tariff_rate": 25.0, "time_horizon": 6, "confidence_level": 0.9},
    {"country": "Vietnam", "product_code": "6109", "time_horizon": 12, "confidence_level": 0.95},
]

SEED_SETTINGS = RunSettings(iterations=2000, seed=0)


async def simulate(key):
    return simulate_tariff_impact(key, iterations=SEED_SETTINGS.iterations, seed=SEED_SETTINGS.seed)


async def seed_common_runs(orchestrator, param_list=COMMON_SIMULATIONS):
    """Warm the cache, then store one named run per parameter set."""
    await orchestrator.cache.prefetch_common_simulations(param_list, simulate)

    # Warm entries complete straight from cache and are persisted as runs
    outputs = []
    for params in param_list:
        outputs.append(await orchestrator.start_run(
            RunConfig(parameters=params, settings=SEED_SETTINGS, name=f"Seed: {params['country']}"),
            actor="seed",
        ))
    return outputs


async def seed():
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] [%(name)s] %(message)s")
    print("Creating tables...")
    Base.metadata.create_all(bind=engine)

    print("Initializing orchestrator...")
    db = SessionLocal()
    orchestrator = build_orchestrator(db)

    try:
        print(f"Seeding {len(COMMON_SIMULATIONS)} simulations...")
        outputs = await seed_common_runs(orchestrator)
    finally:
        await orchestrator.shutdown()
        db.close()

    for output in outputs:
        print(f"  {output.input_id}: {output.status.value} (from cache: {output.from_cache})")
    completed = sum(1 for o in outputs if o.status == SimulationStatus.COMPLETED)

    print(f"\nStored runs: {completed}/{len(COMMON_SIMULATIONS)}")
    print(f"Cache stats: {orchestrator.cache.get_cache_stats()}")

    if orchestrator.store.degraded:
        print("❌ Database unavailable, runs were kept in memory only.")
    elif completed == len(COMMON_SIMULATIONS):
        print("✅ Database seeding successful!")
    else:
        print("❌ Some simulations failed.")

if __name__ == "__main__":
    asyncio.run(seed())
