"""Rule-based analysis of completed simulation results."""

import logging
from typing import List

from tariffsim.orchestrator.interfaces import AnalysisGenerator
from tariffsim.orchestrator.models import (
    AnalysisPayload,
    RiskFactor,
    SimulationInput,
    SimulationOutput,
)

logger = logging.getLogger(__name__)

HIGH_DOWNSIDE_PROBABILITY = 0.4
WIDE_SPREAD_STD = 8.0


class StatisticalAnalysisGenerator(AnalysisGenerator):
    """
    Turns the results payload into a short narrative.

    Reads summary, scenarios and convergence; payloads without a summary
    get a one-line analysis instead of an error.
    """

    async def generate(self, simulation_input: SimulationInput, output: SimulationOutput) -> AnalysisPayload:
        params = simulation_input.parameters
        results = output.results or {}
        summary = results.get("summary")
        if not summary:
            return AnalysisPayload(summary=f"No statistics available for {params.country}.")

        scenarios = results.get("scenarios", {})
        pessimistic = (scenarios.get("pessimistic") or {}).get("probability", 0.0)
        optimistic = (scenarios.get("optimistic") or {}).get("probability", 0.0)

        driver = (
            f"a {params.tariff_rate:g}% tariff" if params.kind == "tariff_rate"
            else f"tariffs on HS {params.product_code}"
        )
        text = (
            f"Over {params.time_horizon} months, {driver} changes {params.country} trade value "
            f"by {summary['mean']:.1f}% on average (median {summary['median']:.1f}%)."
        )

        findings = [
            f"Pessimistic outcome probability: {pessimistic:.0%}",
            f"Optimistic outcome probability: {optimistic:.0%}",
            f"Outcome range: {summary['min']:.1f}% to {summary['max']:.1f}%",
        ]
        if not results.get("convergence_achieved", True):
            findings.append("Simulation did not converge; increase iterations before relying on it")

        risk_factors = self._risk_factors(pessimistic, summary)
        recommendations = self._recommendations(pessimistic, risk_factors)

        logger.debug(f"Generated analysis for output {output.id}")
        return AnalysisPayload(
            summary=text,
            findings=findings,
            recommendations=recommendations,
            risk_factors=risk_factors,
        )

    def _risk_factors(self, pessimistic: float, summary: dict) -> List[RiskFactor]:
        factors = []
        if pessimistic >= HIGH_DOWNSIDE_PROBABILITY:
            factors.append(RiskFactor(
                factor="High probability of severe trade contraction",
                severity=min(1.0, pessimistic),
                mitigation="Diversify export markets and pre-negotiate supplier pricing",
            ))
        if summary.get("std", 0.0) >= WIDE_SPREAD_STD:
            factors.append(RiskFactor(
                factor="Wide dispersion of outcomes",
                severity=min(1.0, summary["std"] / (2 * WIDE_SPREAD_STD)),
                mitigation="Hedge exposure and revisit the forecast as tariff news arrives",
            ))
        return factors

    def _recommendations(self, pessimistic: float, risk_factors: List[RiskFactor]) -> List[str]:
        if not risk_factors:
            return ["Exposure is moderate; monitor tariff announcements"]
        recs = [rf.mitigation for rf in risk_factors]
        if pessimistic >= HIGH_DOWNSIDE_PROBABILITY:
            recs.append("Run the escalation scenario to size the worst case")
        return recs
