from .base import Base
from .simulation import SimulationInputRecord, SimulationOutputRecord
from .parameter_change import ParameterChangeRow
from .comparison import SimulationComparisonRecord
