"""Automation policy and policy-execution records."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from saasguard.core.events.topics import Topic


class ExecutionStatus(str, Enum):
    """Lifecycle of a single policy run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"

    @property
    def is_final(self) -> bool:
        return self in (ExecutionStatus.SUCCESS, ExecutionStatus.PARTIAL, ExecutionStatus.FAILED)


@dataclass
class PolicyAction:
    """One step of a policy's action chain."""

    type: str
    config: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PolicyAction":
        if "type" not in data or not data["type"]:
            raise ValueError(f"Policy action is missing a type: {data!r}")
        return cls(type=str(data["type"]), config=dict(data.get("config") or {}))

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "config": dict(self.config)}


@dataclass
class PolicyStats:
    """Execution counters by outcome."""

    total_executions: int = 0
    successful_executions: int = 0
    partial_executions: int = 0
    failed_executions: int = 0

    def record(self, status: ExecutionStatus) -> None:
        self.total_executions += 1
        if status == ExecutionStatus.SUCCESS:
            self.successful_executions += 1
        elif status == ExecutionStatus.PARTIAL:
            self.partial_executions += 1
        elif status == ExecutionStatus.FAILED:
            self.failed_executions += 1


@dataclass
class Policy:
    """Tenant-scoped declarative automation rule.

    Administrators own every field except ``last_executed_at`` and ``stats``,
    which the engine updates after each run.
    """

    id: str
    tenant_id: str
    name: str
    trigger_type: Topic
    actions: List[PolicyAction] = field(default_factory=list)
    conditions: Optional[Dict[str, Any]] = None
    enabled: bool = True
    description: Optional[str] = None
    cooldown_minutes: Optional[int] = None
    max_executions_per_day: Optional[int] = None
    last_executed_at: Optional[datetime] = None
    stats: PolicyStats = field(default_factory=PolicyStats)
    created_by: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_dict(cls, data: Dict[str, Any], tenant_id: Optional[str] = None) -> "Policy":
        """Build a policy from a configuration mapping.

        Args:
            data: Mapping with name, trigger, actions and optional limits
            tenant_id: Tenant to use when the mapping does not name one

        Returns:
            Policy instance

        Raises:
            ValueError: If required fields are missing or malformed
        """
        name = data.get("name")
        if not name:
            raise ValueError("Policy is missing a name")

        trigger = data.get("trigger_type") or data.get("trigger")
        if not trigger:
            raise ValueError(f"Policy '{name}' is missing a trigger")

        owner = data.get("tenant_id") or tenant_id
        if not owner:
            raise ValueError(f"Policy '{name}' is missing a tenant_id")

        raw_actions = data.get("actions") or []
        if not isinstance(raw_actions, list):
            raise ValueError(f"Policy '{name}' actions must be a list")

        return cls(
            id=str(data.get("id") or uuid.uuid4()),
            tenant_id=str(owner),
            name=str(name),
            description=data.get("description"),
            trigger_type=Topic.parse(trigger),
            enabled=bool(data.get("enabled", True)),
            conditions=data.get("conditions"),
            actions=[PolicyAction.from_dict(a) for a in raw_actions],
            cooldown_minutes=data.get("cooldown_minutes"),
            max_executions_per_day=data.get("max_executions_per_day"),
            created_by=data.get("created_by"),
        )


@dataclass
class PolicyContext:
    """What triggered a policy run."""

    tenant_id: str
    trigger_event: str
    trigger_data: Dict[str, Any] = field(default_factory=dict)
    user_id: Optional[str] = None
    policy_id: Optional[str] = None
    policy_name: Optional[str] = None


@dataclass
class ActionOutcome:
    """Result of running one action inside a policy execution."""

    action_type: str
    success: bool
    result: Any = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action_type": self.action_type,
            "success": self.success,
            "result": self.result,
            "error": self.error,
        }


@dataclass(frozen=True)
class ExecutionTally:
    """Counts folded from a list of action outcomes."""

    executed: int = 0
    succeeded: int = 0
    failed: int = 0

    @classmethod
    def from_outcomes(cls, outcomes: Iterable[ActionOutcome]) -> "ExecutionTally":
        succeeded = failed = 0
        for outcome in outcomes:
            if outcome.success:
                succeeded += 1
            else:
                failed += 1
        return cls(executed=succeeded + failed, succeeded=succeeded, failed=failed)

    @property
    def status(self) -> ExecutionStatus:
        """success with no failures, failed when nothing succeeded, else partial."""
        if self.failed == 0:
            return ExecutionStatus.SUCCESS
        if self.succeeded == 0:
            return ExecutionStatus.FAILED
        return ExecutionStatus.PARTIAL


@dataclass
class PolicyExecution:
    """Audit record for one policy run."""

    id: str
    tenant_id: str
    policy_id: str
    trigger_event: str
    trigger_data: Dict[str, Any] = field(default_factory=dict)
    status: ExecutionStatus = ExecutionStatus.RUNNING
    results: List[ActionOutcome] = field(default_factory=list)
    actions_executed: int = 0
    actions_succeeded: int = 0
    actions_failed: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None


@dataclass
class PolicyExecutionResult:
    """Structured outcome handed back to callers of ``execute_policy``."""

    success: bool
    execution_id: str
    policy_id: str
    status: ExecutionStatus
    actions_executed: int
    actions_succeeded: int
    actions_failed: int
    results: List[ActionOutcome] = field(default_factory=list)

    @classmethod
    def from_execution(cls, execution: PolicyExecution) -> "PolicyExecutionResult":
        return cls(
            success=execution.status == ExecutionStatus.SUCCESS,
            execution_id=execution.id,
            policy_id=execution.policy_id,
            status=execution.status,
            actions_executed=execution.actions_executed,
            actions_succeeded=execution.actions_succeeded,
            actions_failed=execution.actions_failed,
            results=list(execution.results),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "execution_id": self.execution_id,
            "policy_id": self.policy_id,
            "status": self.status.value,
            "actions_executed": self.actions_executed,
            "actions_succeeded": self.actions_succeeded,
            "actions_failed": self.actions_failed,
            "results": [r.to_dict() for r in self.results],
        }
