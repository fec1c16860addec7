from .local import LocalComputeWorker
from .monte_carlo import simulate_tariff_impact
