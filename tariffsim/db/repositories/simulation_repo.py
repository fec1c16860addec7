"""Repositories for simulation inputs and outputs."""

from typing import List, Optional
from sqlalchemy.orm import Session

from tariffsim.db.models.simulation import SimulationInputRecord, SimulationOutputRecord
from .base import BaseRepository


class SimulationInputRepository(BaseRepository[SimulationInputRecord]):
    def __init__(self, session: Session):
        super().__init__(session, SimulationInputRecord)

    def list_inputs(self, created_by: Optional[str] = None, limit: int = 100) -> List[SimulationInputRecord]:
        """Most recent first."""
        query = self.session.query(SimulationInputRecord)
        if created_by:
            query = query.filter(SimulationInputRecord.created_by == created_by)
        return query.order_by(SimulationInputRecord.created_at.desc()).limit(limit).all()


class SimulationOutputRepository(BaseRepository[SimulationOutputRecord]):
    def __init__(self, session: Session):
        super().__init__(session, SimulationOutputRecord)

    def list_for_input(self, input_id: str) -> List[SimulationOutputRecord]:
        """All runs of one input, oldest first."""
        return (
            self.session.query(SimulationOutputRecord)
            .filter(SimulationOutputRecord.input_id == input_id)
            .order_by(SimulationOutputRecord.start_time.asc())
            .all()
        )
