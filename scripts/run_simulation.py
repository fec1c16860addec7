"""
Run one tariff simulation end to end and print the outcome.
Creates the simulation tables on first use.
"""

import asyncio
import logging
import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tariffsim.app import build_orchestrator
from tariffsim.db.config import DATABASE_URL
from tariffsim.db.models import Base
from tariffsim.db.session import engine, SessionLocal
from tariffsim.orchestrator.models import RunConfig, RunSettings


async def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] [%(name)s] %(message)s")
    print(f"Connecting to: {DATABASE_URL}")
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()

    orchestrator = build_orchestrator(session)
    try:
        config = RunConfig(
            parameters={
                "country": "Vietnam",
                "tariff_rate": 46.0,
                "time_horizon": 12,
                "product_categories": ["electronics", "textiles"],
                "scenarios": ["baseline", "retaliation"],
                "confidence_level": 0.95,
            },
            settings=RunSettings(iterations=5000, seed=42),
            name="Vietnam 46% reciprocal tariff",
        )

        print("\n📌 Running simulation...")
        output = await orchestrator.start_run(config, actor="cli")

        print(f"\n📊 Run {output.id}: {output.status.value}")
        if output.error:
            print(f"   Error: {output.error}")
            return

        summary = output.results["summary"]
        print(f"   Mean impact: {summary['mean']:.2f}%")
        print(f"   Std: {summary['std']:.2f}")
        for case, band in output.results["scenarios"].items():
            print(f"   {case:<12} p={band['probability']:.2f}")
        if output.analysis:
            print(f"\n{output.analysis.summary}")

        # Same parameters again are served from cache
        rerun = await orchestrator.start_run(config.model_copy(update={"input_id": output.input_id}))
        print(f"\n📌 Second run from cache: {rerun.from_cache}")
        print(f"   Cache stats: {orchestrator.cache.get_cache_stats()}")
    finally:
        await orchestrator.shutdown()
        session.close()


if __name__ == "__main__":
    asyncio.run(main())
