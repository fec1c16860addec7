from sqlalchemy import Column, String, Text, DateTime, JSON, Index
from .base import Base


class SimulationComparisonRecord(Base):
    __tablename__ = "simulation_comparisons"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    simulation_ids = Column(JSON, nullable=False)  # Baseline first
    difference_matrix = Column(JSON, nullable=False)
    outcome_comparison = Column(JSON)
    created_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_comparison_created", "created_at"),
    )
