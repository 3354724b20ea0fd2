"""Policy engine for automation and governance."""

from saasguard.core.policies.models import (
    ActionOutcome,
    ExecutionStatus,
    ExecutionTally,
    Policy,
    PolicyAction,
    PolicyContext,
    PolicyExecution,
    PolicyExecutionResult,
    PolicyStats,
)
from saasguard.core.policies.conditions import (
    ComparisonOperator,
    ConditionError,
    ConditionSet,
    parse_conditions,
)
from saasguard.core.policies.actions import ActionHandler, ActionRegistry, ActionResult
from saasguard.core.policies.engine import (
    EventHandlingResult,
    PolicyEngine,
    PolicyEngineError,
    PolicyNotFoundError,
)

__all__ = [
    "ActionHandler",
    "ActionOutcome",
    "ActionRegistry",
    "ActionResult",
    "ComparisonOperator",
    "ConditionError",
    "ConditionSet",
    "EventHandlingResult",
    "ExecutionStatus",
    "ExecutionTally",
    "Policy",
    "PolicyAction",
    "PolicyContext",
    "PolicyEngine",
    "PolicyEngineError",
    "PolicyExecution",
    "PolicyExecutionResult",
    "PolicyNotFoundError",
    "PolicyStats",
    "parse_conditions",
]
