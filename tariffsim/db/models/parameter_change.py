from sqlalchemy import Column, String, DateTime, JSON, ForeignKey, Index
from .base import Base


class ParameterChangeRow(Base):
    """Append-only audit of edited parameters."""

    __tablename__ = "parameter_changes"

    id = Column(String(36), primary_key=True)
    simulation_id = Column(String(36), ForeignKey("simulation_inputs.id"), nullable=False)
    parameter_id = Column(String(100), nullable=False)
    old_value = Column(JSON)
    new_value = Column(JSON)
    changed_by = Column(String(100), nullable=False)
    timestamp = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_param_change_simulation", "simulation_id", "timestamp"),
    )
