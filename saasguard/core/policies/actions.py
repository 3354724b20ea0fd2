"""Policy action handlers and the registry that resolves them by type.

Handlers are async callables with a common signature. The registry is the
extension point: new action types are added with ``register`` and need no
change to the engine.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)

import structlog

from saasguard.core.access_review.campaign_engine import AccessReviewCampaignEngine
from saasguard.core.access_review.models import CampaignConfig, ScopeType
from saasguard.core.events.bus import EventBus
from saasguard.core.policies.models import PolicyContext
from saasguard.core.storage.records import ApprovalStatus

if TYPE_CHECKING:
    from saasguard.core.remediation.revocation import RevocationService
    from saasguard.core.storage.base import GovernanceStore
    from saasguard.integrations.base import Notifier

logger = structlog.get_logger(__name__)


@dataclass
class ActionResult:
    success: bool
    data: Any = None
    error: Optional[str] = None


@runtime_checkable
class ActionHandler(Protocol):
    async def execute(self, config: Dict[str, Any], context: PolicyContext) -> ActionResult: ...


class _SafeFormatDict(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def render_template(template: str, context: PolicyContext) -> str:
    """Fill ``{field}`` placeholders from the trigger data.

    Unknown placeholders are left untouched.
    """
    values = _SafeFormatDict(context.trigger_data)
    values.setdefault("trigger_event", context.trigger_event)
    values.setdefault("tenant_id", context.tenant_id)
    try:
        return template.format_map(values)
    except (ValueError, AttributeError, IndexError, KeyError):
        return template


def _lookup(key: str, config: Dict[str, Any], context: PolicyContext) -> Optional[str]:
    value = config.get(key) or context.trigger_data.get(key)
    return str(value) if value else None


class NotifyAction:
    """Log a rendered message and deliver it through the configured notifiers."""

    DEFAULT_MESSAGE = "Policy triggered by {trigger_event}"

    def __init__(self, notifiers: Optional[Sequence["Notifier"]] = None):
        self.notifiers = list(notifiers or [])

    def _details(self, config: Dict[str, Any], context: PolicyContext) -> Dict[str, Any]:
        details = {
            "tenant_id": context.tenant_id,
            "trigger_event": context.trigger_event,
            "priority": config.get("priority", "medium"),
        }
        if context.policy_id:
            details["policy_id"] = context.policy_id
            details["policy_name"] = context.policy_name
        for key in ("app_id", "app_name", "risk_level", "user_id"):
            value = config.get(key) or context.trigger_data.get(key)
            if value is not None:
                details[key] = value
        return details

    async def _deliver(self, message: str, details: Dict[str, Any]) -> int:
        for notifier in self.notifiers:
            await notifier.send(message, details)
        return len(self.notifiers)

    async def execute(self, config: Dict[str, Any], context: PolicyContext) -> ActionResult:
        message = render_template(config.get("message", self.DEFAULT_MESSAGE), context)
        details = self._details(config, context)

        logger.info(
            "policy_notification",
            channel=config.get("channel", "default"),
            message=message,
            **details,
        )
        delivered = await self._deliver(message, details)
        return ActionResult(success=True, data={"message": message, "delivered": delivered})


class EscalateAction(NotifyAction):
    """Notify with an escalation target and priority attached."""

    DEFAULT_MESSAGE = "Escalation: {trigger_event} requires attention"

    async def execute(self, config: Dict[str, Any], context: PolicyContext) -> ActionResult:
        target = config.get("escalate_to", "security-team")
        priority = config.get("priority", "high")
        message = render_template(config.get("message", self.DEFAULT_MESSAGE), context)
        message = f"[ESCALATION:{priority}] @{target} {message}"

        details = self._details(dict(config, priority=priority), context)
        details["escalate_to"] = target

        logger.warning("policy_escalation", message=message, **details)
        delivered = await self._deliver(message, details)
        return ActionResult(
            success=True,
            data={"message": message, "escalate_to": target, "delivered": delivered},
        )


class AppApprovalAction:
    """Set the approval status of the triggering app in the catalog."""

    def __init__(self, store: "GovernanceStore", status: ApprovalStatus, blocked: bool = False):
        self.store = store
        self.status = status
        self.blocked = blocked

    async def execute(self, config: Dict[str, Any], context: PolicyContext) -> ActionResult:
        app_id = _lookup("app_id", config, context)
        if not app_id:
            return ActionResult(success=False, error="No app_id in action config or trigger data")

        app = await self.store.get_saas_app(app_id, context.tenant_id)
        if app is None:
            return ActionResult(success=False, error=f"App {app_id} not found")

        metadata = dict(app.metadata)
        if self.blocked:
            metadata["blocked"] = True
            metadata["block_reason"] = config.get("reason", f"Blocked by policy on {context.trigger_event}")

        await self.store.update_saas_app(
            app_id, context.tenant_id, approval_status=self.status, metadata=metadata
        )
        logger.info(
            "app_approval_status_changed",
            app_id=app_id,
            approval_status=self.status.value,
            blocked=self.blocked,
        )
        return ActionResult(
            success=True,
            data={"app_id": app_id, "approval_status": self.status.value, "blocked": self.blocked},
        )


class RevokeAccessAction:
    def __init__(self, revocation: "RevocationService"):
        self.revocation = revocation

    async def execute(self, config: Dict[str, Any], context: PolicyContext) -> ActionResult:
        user_id = _lookup("user_id", config, context)
        app_id = _lookup("app_id", config, context)
        if not user_id or not app_id:
            return ActionResult(
                success=False, error="revoke_access needs user_id and app_id"
            )

        result = await self.revocation.revoke_user_app_access(user_id, app_id, context.tenant_id)
        return ActionResult(success=True, data=result.to_dict())


class StartAccessReviewAction:
    """Open an access-review campaign for the triggering app."""

    def __init__(
        self,
        engine_factory: Callable[[str], AccessReviewCampaignEngine],
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.engine_factory = engine_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def execute(self, config: Dict[str, Any], context: PolicyContext) -> ActionResult:
        engine = self.engine_factory(context.tenant_id)
        app_id = _lookup("app_id", config, context)
        start = self._clock()

        campaign = await engine.create_campaign(
            CampaignConfig(
                name=render_template(
                    config.get("name", "Access review: {app_name}"), context
                ),
                description=config.get("description"),
                campaign_type="policy",
                scope_type=ScopeType.APPS if app_id else ScopeType.ALL,
                scope_config={"app_ids": [app_id]} if app_id else {},
                start_date=start,
                due_date=start + timedelta(days=int(config.get("due_in_days", 14))),
                auto_approve_on_timeout=bool(config.get("auto_approve_on_timeout", False)),
            ),
            created_by=config.get("created_by", "policy-engine"),
        )
        items = await engine.generate_review_items(campaign.id)
        return ActionResult(success=True, data={"campaign_id": campaign.id, "total_items": items})


LOG_LEVELS = ("debug", "info", "warning", "error", "critical")


class LogAction:
    async def execute(self, config: Dict[str, Any], context: PolicyContext) -> ActionResult:
        message = render_template(config.get("message", "Policy action logged"), context)
        level = str(config.get("level", "info")).lower()
        if level not in LOG_LEVELS:
            return ActionResult(success=False, error=f"Unknown log level: {level}")
        log = getattr(logger, level)
        log(
            "policy_action_log",
            message=message,
            tenant_id=context.tenant_id,
            trigger_event=context.trigger_event,
        )
        return ActionResult(success=True, data={"message": message})


class ActionRegistry:
    """Maps action type names to handlers."""

    def __init__(self) -> None:
        self._handlers: Dict[str, ActionHandler] = {}

    def register(self, action_type: str, handler: ActionHandler) -> None:
        """Register or replace the handler for an action type.

        Raises:
            TypeError: If the handler has no ``execute`` coroutine
        """
        if not isinstance(handler, ActionHandler):
            raise TypeError(f"Handler for '{action_type}' must define execute(config, context)")
        if action_type in self._handlers:
            logger.warning("action_handler_replaced", action_type=action_type)
        self._handlers[action_type] = handler

    def get_handler(self, action_type: str) -> Optional[ActionHandler]:
        return self._handlers.get(action_type)

    def registered_types(self) -> List[str]:
        return sorted(self._handlers)

    @classmethod
    def with_defaults(
        cls,
        store: "GovernanceStore",
        bus: Optional[EventBus] = None,
        revocation: Optional["RevocationService"] = None,
        notifiers: Optional[Sequence["Notifier"]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "ActionRegistry":
        """Registry with the built-in action types.

        ``revoke_access`` needs a revocation service; ``start_access_review``
        needs both a revocation service and an event bus.
        """
        registry = cls()
        registry.register("notify", NotifyAction(notifiers))
        registry.register("escalate", EscalateAction(notifiers))
        registry.register("log", LogAction())
        registry.register("approve_app", AppApprovalAction(store, ApprovalStatus.APPROVED))
        registry.register("deny_app", AppApprovalAction(store, ApprovalStatus.DENIED))
        registry.register(
            "block_app", AppApprovalAction(store, ApprovalStatus.DENIED, blocked=True)
        )

        if revocation is not None:
            registry.register("revoke_access", RevokeAccessAction(revocation))
            if bus is not None:
                registry.register(
                    "start_access_review",
                    StartAccessReviewAction(
                        lambda tenant_id: AccessReviewCampaignEngine(
                            tenant_id, store, bus, revocation, clock=clock
                        ),
                        clock=clock,
                    ),
                )

        return registry
