"""Policy automation engine.

Subscribes to every governance topic, matches incoming events against the
tenant's enabled policies and runs each matching policy's actions in order.
A policy is skipped while it is inside its cooldown window or once it has
reached its daily execution cap for the tenant's local calendar day.

Every run is recorded as a PolicyExecution: created ``running`` before the
first action and finalized, together with the policy's ``last_executed_at``
and stats, in a single atomic store call. Once started, a run always
finishes; there is no cancellation.
"""

import dataclasses
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from saasguard.core.events.bus import EventBus
from saasguard.core.events.topics import Event, Topic
from saasguard.core.policies.actions import ActionRegistry
from saasguard.core.policies.conditions import ConditionError, parse_conditions
from saasguard.core.policies.models import (
    ActionOutcome,
    ExecutionStatus,
    ExecutionTally,
    Policy,
    PolicyAction,
    PolicyContext,
    PolicyExecution,
    PolicyExecutionResult,
)

if TYPE_CHECKING:
    from saasguard.core.storage.base import GovernanceStore

logger = structlog.get_logger(__name__)

MANUAL_TRIGGER = "manual"


class PolicyEngineError(Exception):
    """Base error for policy engine operations."""

    pass


class PolicyNotFoundError(PolicyEngineError):
    pass


@dataclass
class EventHandlingResult:
    """Summary of how one event was handled."""

    topic: str
    tenant_id: str
    matched: int = 0
    executed: int = 0
    skipped_cooldown: int = 0
    skipped_conditions: int = 0
    errors: List[str] = field(default_factory=list)
    executions: List[PolicyExecutionResult] = field(default_factory=list)


class PolicyEngine:
    """Event-driven executor for tenant automation policies."""

    def __init__(
        self,
        store: "GovernanceStore",
        bus: EventBus,
        registry: Optional[ActionRegistry] = None,
        clock: Optional[Callable[[], datetime]] = None,
        tenant_timezones: Optional[Mapping[str, str]] = None,
        default_timezone: str = "UTC",
    ):
        """Initialize the engine.

        Args:
            store: Governance store holding policies and executions
            bus: Event bus to subscribe to
            registry: Action registry (defaults to the built-in actions)
            clock: Returns the current UTC time
            tenant_timezones: IANA timezone per tenant, for daily caps
            default_timezone: Timezone for tenants not listed
        """
        self.store = store
        self.bus = bus
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.registry = registry or ActionRegistry.with_defaults(store, bus, clock=self._clock)
        self.tenant_timezones = dict(tenant_timezones or {})
        self.default_timezone = default_timezone
        self._started = False

        logger.info(
            "policy_engine_initialized",
            actions=self.registry.registered_types(),
            default_timezone=default_timezone,
        )

    def start(self) -> None:
        """Subscribe to every topic. Calling it again has no effect."""
        if self._started:
            return
        for topic in Topic:
            self.bus.subscribe(topic, self.handle_event)
        self._started = True
        logger.info("policy_engine_started", topics=len(Topic))

    def stop(self) -> None:
        if not self._started:
            return
        for topic in Topic:
            self.bus.unsubscribe(topic, self.handle_event)
        self._started = False
        logger.info("policy_engine_stopped")

    async def handle_event(self, event: Event) -> EventHandlingResult:
        """Run every matching policy for an event, one at a time.

        A failure in one policy is logged and recorded in ``errors``; the
        remaining policies still run.
        """
        result = EventHandlingResult(topic=event.topic.value, tenant_id=event.tenant_id)

        if not event.tenant_id:
            logger.warning("event_missing_tenant_id", topic=event.topic.value, event_id=event.event_id)
            return result

        policies = await self.find_matching_policies(event.topic, event.tenant_id)
        result.matched = len(policies)
        data = event.data

        for policy in policies:
            try:
                if not await self.can_execute(policy):
                    result.skipped_cooldown += 1
                    continue

                if not self.evaluate_conditions(policy, data):
                    result.skipped_conditions += 1
                    continue

                execution = await self.execute_policy(
                    policy,
                    PolicyContext(
                        tenant_id=event.tenant_id,
                        trigger_event=event.topic.value,
                        trigger_data=data,
                    ),
                )
                result.executed += 1
                result.executions.append(execution)

            except Exception as e:
                result.errors.append(f"{policy.name}: {e}")
                logger.error(
                    "policy_execution_failed",
                    policy_id=policy.id,
                    tenant_id=event.tenant_id,
                    topic=event.topic.value,
                    error=str(e),
                    exc_info=True,
                )

        logger.info(
            "event_handled",
            topic=result.topic,
            tenant_id=result.tenant_id,
            matched=result.matched,
            executed=result.executed,
            skipped_cooldown=result.skipped_cooldown,
            skipped_conditions=result.skipped_conditions,
            errors=len(result.errors),
        )
        return result

    async def find_matching_policies(self, trigger_type: Topic, tenant_id: str) -> List[Policy]:
        """Enabled policies of a tenant that listen to a topic."""
        return await self.store.list_policies(tenant_id, trigger_type=trigger_type, enabled=True)

    def _tenant_timezone(self, tenant_id: str) -> ZoneInfo:
        name = self.tenant_timezones.get(tenant_id, self.default_timezone)
        try:
            return ZoneInfo(name)
        except ZoneInfoNotFoundError:
            logger.warning("unknown_tenant_timezone", tenant_id=tenant_id, timezone=name)
            return ZoneInfo("UTC")

    def start_of_tenant_day(self, tenant_id: str, now: Optional[datetime] = None) -> datetime:
        """Midnight of the current day in the tenant's timezone."""
        local = (now or self._clock()).astimezone(self._tenant_timezone(tenant_id))
        return local.replace(hour=0, minute=0, second=0, microsecond=0)

    async def can_execute(self, policy: Policy) -> bool:
        """Check the cooldown window and the daily execution cap."""
        now = self._clock()

        if policy.cooldown_minutes and policy.last_executed_at is not None:
            if now - policy.last_executed_at < timedelta(minutes=policy.cooldown_minutes):
                logger.debug("policy_in_cooldown", policy_id=policy.id)
                return False

        if policy.max_executions_per_day is not None:
            since = self.start_of_tenant_day(policy.tenant_id, now)
            count = await self.store.count_policy_executions_since(
                policy.id, policy.tenant_id, since
            )
            if count >= policy.max_executions_per_day:
                logger.debug(
                    "policy_daily_cap_reached",
                    policy_id=policy.id,
                    executions_today=count,
                    max_executions_per_day=policy.max_executions_per_day,
                )
                return False

        return True

    def evaluate_conditions(self, policy: Policy, data: Dict[str, Any]) -> bool:
        """Evaluate the policy's conditions; malformed conditions never match."""
        try:
            return parse_conditions(policy.conditions).matches(data)
        except ConditionError as e:
            logger.error("policy_conditions_invalid", policy_id=policy.id, error=str(e))
            return False

    async def _run_action(self, action: PolicyAction, context: PolicyContext) -> ActionOutcome:
        handler = self.registry.get_handler(action.type)
        if handler is None:
            logger.warning("action_handler_missing", action_type=action.type)
            return ActionOutcome(action_type=action.type, success=False, error="No handler found")

        try:
            result = await handler.execute(action.config, context)
        except Exception as e:
            logger.error(
                "policy_action_failed",
                action_type=action.type,
                policy_id=context.policy_id,
                error=str(e),
            )
            return ActionOutcome(
                action_type=action.type, success=False, error=str(e) or type(e).__name__
            )

        return ActionOutcome(
            action_type=action.type,
            success=result.success,
            result=result.data,
            error=result.error,
        )

    async def execute_policy(
        self, policy: Policy, context: PolicyContext
    ) -> PolicyExecutionResult:
        """Run a policy's actions in order and record the execution.

        Each action runs after the previous one finished, whatever its
        outcome. The execution is ``success`` when no action failed,
        ``failed`` when none succeeded and ``partial`` otherwise.

        Args:
            policy: Policy to run
            context: Trigger details passed to every action

        Returns:
            PolicyExecutionResult for the finalized execution
        """
        context = dataclasses.replace(context, policy_id=policy.id, policy_name=policy.name)
        execution = await self.store.create_policy_execution(
            PolicyExecution(
                id=str(uuid.uuid4()),
                tenant_id=policy.tenant_id,
                policy_id=policy.id,
                trigger_event=context.trigger_event,
                trigger_data=dict(context.trigger_data),
                status=ExecutionStatus.RUNNING,
                started_at=self._clock(),
            )
        )

        logger.info(
            "policy_execution_started",
            policy_id=policy.id,
            execution_id=execution.id,
            trigger_event=context.trigger_event,
            actions=len(policy.actions),
        )

        outcomes: List[ActionOutcome] = []
        for action in policy.actions:
            outcomes.append(await self._run_action(action, context))

        tally = ExecutionTally.from_outcomes(outcomes)
        finalized = dataclasses.replace(
            execution,
            status=tally.status,
            results=outcomes,
            actions_executed=tally.executed,
            actions_succeeded=tally.succeeded,
            actions_failed=tally.failed,
            completed_at=self._clock(),
        )
        await self.store.finalize_policy_execution(finalized)

        logger.info(
            "policy_execution_completed",
            policy_id=policy.id,
            execution_id=execution.id,
            status=tally.status.value,
            actions_succeeded=tally.succeeded,
            actions_failed=tally.failed,
        )
        return PolicyExecutionResult.from_execution(finalized)

    async def trigger_policy(
        self,
        policy_id: str,
        tenant_id: str,
        test_data: Optional[Dict[str, Any]] = None,
    ) -> PolicyExecutionResult:
        """Run a policy by hand, ignoring its cooldown, cap and conditions.

        Raises:
            PolicyNotFoundError: If the tenant has no such policy
        """
        policy = await self.store.get_policy(policy_id, tenant_id)
        if policy is None:
            raise PolicyNotFoundError(f"Policy {policy_id} not found for tenant {tenant_id}")

        logger.info("policy_triggered_manually", policy_id=policy_id, tenant_id=tenant_id)
        return await self.execute_policy(
            policy,
            PolicyContext(
                tenant_id=tenant_id,
                trigger_event=MANUAL_TRIGGER,
                trigger_data=dict(test_data or {}),
            ),
        )
