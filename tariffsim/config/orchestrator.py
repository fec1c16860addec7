import os
from pydantic import BaseModel, Field


class OrchestratorConfig(BaseModel):
    """Config for the simulation lifecycle orchestrator."""
    poll_interval_seconds: float = Field(default=2.0, gt=0)
    run_timeout_seconds: float = Field(default=5 * 60, gt=0)  # hard deadline per run
    generate_analysis: bool = True
    default_actor: str = "system"

    @classmethod
    def from_env(cls) -> "OrchestratorConfig":
        """Build config from TARIFFSIM_* environment variables."""
        defaults = cls()
        return cls(
            poll_interval_seconds=float(
                os.getenv("TARIFFSIM_POLL_INTERVAL", defaults.poll_interval_seconds)
            ),
            run_timeout_seconds=float(
                os.getenv("TARIFFSIM_RUN_TIMEOUT", defaults.run_timeout_seconds)
            ),
            generate_analysis=os.getenv("TARIFFSIM_GENERATE_ANALYSIS", "1") not in ("0", "false", "False"),
            default_actor=os.getenv("TARIFFSIM_DEFAULT_ACTOR", defaults.default_actor),
        )
