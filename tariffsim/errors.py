"""Exception hierarchy for tariffsim.

Cache misses are not errors: lookups return ``None``. Everything below is
raised at the seam where the failure happens and either propagates to the
caller or is turned into a ``failed`` run by the orchestrator.
"""


class TariffSimError(Exception):
    """Base class for all tariffsim errors."""
    pass


class KeyCollisionError(TariffSimError):
    """Two distinct canonical parameter keys produced the same fingerprint.

    This is a defect, never a recoverable condition.
    """

    def __init__(self, fingerprint: str, existing: str, incoming: str):
        self.fingerprint = fingerprint
        self.existing = existing
        self.incoming = incoming
        super().__init__(
            f"Fingerprint {fingerprint[:12]}... maps to two different keys: "
            f"{existing} != {incoming}"
        )


class CacheInvariantError(TariffSimError):
    """The cache store ended up in a state its invariants forbid."""
    pass


class WorkerUnavailableError(TariffSimError):
    """The compute worker cannot accept jobs."""
    pass


class WorkerError(TariffSimError):
    """The compute worker reported a failure for a job."""
    pass


class PersistenceError(TariffSimError):
    """A persistence backend failed to save or load a record."""
    pass


class InvalidTransitionError(TariffSimError):
    """A status transition the run state machine does not allow."""

    def __init__(self, current, message):
        self.current = current
        self.message = message
        super().__init__(f"Cannot apply {type(message).__name__} to a '{current}' run")


class RunAlreadyActiveError(TariffSimError):
    """Another output of the same input is still running or paused."""
    pass


class SimulationNotFoundError(TariffSimError):
    """No input, output or comparison exists for the requested id."""
    pass


class ComparisonError(TariffSimError):
    """The supplied outputs cannot be compared."""
    pass
