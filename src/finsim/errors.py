"""Error taxonomy for the simulation core.

Only malformed input is raised. Data gaps are recorded on the result as
data quality issues, and degenerate metrics come back as None or 0.
"""


class FinsimError(Exception):
    """Base class for all finsim errors."""


class ValidationError(FinsimError, ValueError):
    """Input rejected before any simulation work starts."""

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"{field}: {reason}")

    def __reduce__(self):
        # Keeps the error picklable across process-pool workers
        return self.__class__, (self.field, self.reason)
