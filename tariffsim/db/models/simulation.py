"""SimulationInput and SimulationOutput SQLAlchemy models."""

from sqlalchemy import (
    Column,
    String,
    Integer,
    Float,
    Boolean,
    DateTime,
    Text,
    JSON,
    ForeignKey,
    Index,
)
from .base import Base


class SimulationInputRecord(Base):
    """
    Parameters a run was requested with. Never updated after insert,
    except for name/description when a simulation is saved.
    """

    __tablename__ = "simulation_inputs"

    id = Column(String(36), primary_key=True)
    kind = Column(String(20), nullable=False)  # 'tariff_rate' | 'product_code'
    country = Column(String(100), nullable=False)

    parameters = Column(JSON, nullable=False)  # Canonical key, incl. cache_version
    iterations = Column(Integer, nullable=False)
    seed = Column(Integer)

    name = Column(String(255))
    description = Column(Text)
    created_by = Column(String(100), nullable=False)
    created_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("idx_sim_input_country", "country"),
        Index("idx_sim_input_created_by", "created_by", "created_at"),
    )


class SimulationOutputRecord(Base):
    """One run of a simulation input."""

    __tablename__ = "simulation_outputs"

    id = Column(String(36), primary_key=True)
    input_id = Column(String(36), ForeignKey("simulation_inputs.id"), nullable=False)

    status = Column(String(20), nullable=False)  # SimulationStatus value
    progress_percentage = Column(Float, default=0.0)
    results = Column(JSON)
    analysis = Column(JSON)
    error = Column(Text)

    from_cache = Column(Boolean, default=False)
    compute_time_ms = Column(Float)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime)

    __table_args__ = (
        Index("idx_sim_output_input", "input_id", "start_time"),
        Index("idx_sim_output_status", "status"),
    )
