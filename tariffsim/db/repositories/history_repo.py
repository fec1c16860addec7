"""Repositories for parameter history and saved comparisons."""

from typing import List
from sqlalchemy.orm import Session

from tariffsim.db.models.parameter_change import ParameterChangeRow
from tariffsim.db.models.comparison import SimulationComparisonRecord
from .base import BaseRepository


class ParameterChangeRepository(BaseRepository[ParameterChangeRow]):
    def __init__(self, session: Session):
        super().__init__(session, ParameterChangeRow)

    def list_for_simulation(self, simulation_id: str) -> List[ParameterChangeRow]:
        return (
            self.session.query(ParameterChangeRow)
            .filter(ParameterChangeRow.simulation_id == simulation_id)
            .order_by(ParameterChangeRow.timestamp.asc())
            .all()
        )


class ComparisonRepository(BaseRepository[SimulationComparisonRecord]):
    def __init__(self, session: Session):
        super().__init__(session, SimulationComparisonRecord)

    def list_all(self) -> List[SimulationComparisonRecord]:
        return (
            self.session.query(SimulationComparisonRecord)
            .order_by(SimulationComparisonRecord.created_at.asc())
            .all()
        )
