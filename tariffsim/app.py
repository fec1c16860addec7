"""Wires the orchestrator to its default collaborators."""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from tariffsim.analysis.generator import StatisticalAnalysisGenerator
from tariffsim.cache.service import SimulationCache
from tariffsim.comparison.engine import ComparisonEngine
from tariffsim.config.cache import CacheConfig
from tariffsim.config.orchestrator import OrchestratorConfig
from tariffsim.db.store import SqlSimulationStore
from tariffsim.orchestrator.interfaces import ComputeWorker
from tariffsim.orchestrator.memory_store import FallbackSimulationStore
from tariffsim.orchestrator.service import SimulationLifecycleOrchestrator
from tariffsim.workers.local import LocalComputeWorker

logger = logging.getLogger(__name__)


def build_orchestrator(
    session: Optional[Session] = None,
    worker: Optional[ComputeWorker] = None,
    config: Optional[OrchestratorConfig] = None,
    cache_config: Optional[CacheConfig] = None,
) -> SimulationLifecycleOrchestrator:
    """
    Build an orchestrator backed by the SQL store, with an in-memory
    fallback when the database fails.
    """
    if session is None:
        from tariffsim.db.session import SessionLocal
        session = SessionLocal()

    store = FallbackSimulationStore(SqlSimulationStore(session))
    orchestrator = SimulationLifecycleOrchestrator(
        cache=SimulationCache(cache_config or CacheConfig()),
        worker=worker or LocalComputeWorker(),
        store=store,
        analysis_generator=StatisticalAnalysisGenerator(),
        comparison_engine=ComparisonEngine(store),
        config=config or OrchestratorConfig.from_env(),
    )
    logger.info("Simulation orchestrator ready")
    return orchestrator
