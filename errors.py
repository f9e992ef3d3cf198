"""
RangeGuard LP - Error taxonomy
Exceptions raised by the monitor core and its collaborators
"""
from typing import Optional


class MonitorError(Exception):
    """Base class for all monitor errors"""


class QueryError(MonitorError):
    """Position, price or balance lookup failed"""


class CollaboratorTimeout(QueryError):
    """A bounded call into an external collaborator did not finish in time"""

    def __init__(self, description: str, timeout: float):
        super().__init__(f"{description} timed out after {timeout:.0f}s")
        self.description = description
        self.timeout = timeout


class RouteNotFoundError(MonitorError):
    """The swap service returned no executable route"""


class SwapError(MonitorError):
    """A route was found but executing it failed"""


class TransactionError(MonitorError):
    """Transaction submission or confirmation failed"""

    def __init__(self, message: str, reference: Optional[str] = None):
        super().__init__(message)
        self.reference = reference


class RebalanceError(MonitorError):
    """
    A rebalance attempt was aborted.

    The operator has already been notified when this is raised; callers
    should log it and move on.
    """

    def __init__(self, stage: str, cause: Exception):
        super().__init__(f"Rebalance failed during {stage}: {cause}")
        self.stage = stage
        self.cause = cause
