# errors.py
"""
Error taxonomy shared by all stages.

Every error is final at the point it is raised: nothing in this code base
retries or partially recovers. Input problems derive from ValueError,
internal consistency / backend problems from RuntimeError.
"""


class MalformedNetworkError(ValueError):
    """Station/line records violate the network contract (names, times, references)."""


class DisconnectedNetworkError(ValueError):
    """The built graph has more than one connected component."""


class UnformulatableProblemError(ValueError):
    """The model cannot be solved to proven optimality (no exclusive station)."""


class BackendError(RuntimeError):
    """The optimisation backend failed or did not report an optimal solution."""

    def __init__(self, message: str, status: str = ""):
        super().__init__(message)
        self.status = status


class InvalidSolutionError(RuntimeError):
    """A solution vector or extracted tour is inconsistent with the model."""
