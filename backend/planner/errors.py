"""Error kinds raised by the goal-to-plan pipeline.

Every kind carries a stable ``code`` and the HTTP status the views answer
with, so the presentation layer can tell rate limiting and quota exhaustion
apart from a generic failure.
"""

from typing import List, Optional


class PlanningError(Exception):
    code = "planning_error"
    http_status = 500
    default_message = "Failed to generate task plan"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidInput(PlanningError):
    code = "invalid_input"
    http_status = 400
    default_message = "Invalid goal"


class RateLimited(PlanningError):
    code = "rate_limited"
    http_status = 429
    default_message = "Rate limit exceeded. Please try again later."


class QuotaExceeded(PlanningError):
    code = "quota_exceeded"
    http_status = 402
    default_message = "Payment required. Please add credits to your workspace."


class UpstreamError(PlanningError):
    code = "upstream_error"
    default_message = "AI Gateway request failed"


class InvalidPlan(PlanningError):
    code = "invalid_plan"
    default_message = "The generated task plan is invalid"


class EmptyPlan(InvalidPlan):
    code = "empty_plan"
    default_message = "The generated task plan contains no tasks"


class CyclicDependency(PlanningError):
    code = "cyclic_dependency"
    default_message = "Circular dependencies detected"

    def __init__(self, cycles: List[List[int]], message: Optional[str] = None):
        self.cycles = cycles
        super().__init__(message or f"{self.default_message}: {cycles}")


class StorageError(PlanningError):
    code = "storage_error"
    default_message = "Failed to save task plan"


class TaskNotFound(PlanningError):
    code = "not_found"
    http_status = 404
    default_message = "Task not found"


class InvalidStatusTransition(PlanningError):
    code = "invalid_status_transition"
    http_status = 409
    default_message = "Task status transition is not allowed"


class GoalNotFound(PlanningError):
    code = "not_found"
    http_status = 404
    default_message = "Goal not found"
