"""Segregation-of-duties rules and violations."""

import uuid
from collections import defaultdict
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Dict, FrozenSet, List, Optional, Set, Tuple

import structlog

from saasguard.core.access_review.models import SodRule, SodStatus, SodViolation
from saasguard.core.events.bus import EventBus
from saasguard.core.events.topics import SodViolationPayload
from saasguard.core.storage.records import AccessStatus

if TYPE_CHECKING:
    from saasguard.core.remediation.revocation import RevocationService
    from saasguard.core.storage.base import GovernanceStore

logger = structlog.get_logger(__name__)

SEVERITIES = ("low", "medium", "high", "critical")


class SodError(Exception):
    """Raised for invalid SoD rules or violation transitions."""

    pass


class SodService:
    """Detects and resolves users holding conflicting applications."""

    def __init__(
        self,
        tenant_id: str,
        store: "GovernanceStore",
        bus: EventBus,
        revocation: "RevocationService",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.tenant_id = tenant_id
        self.store = store
        self.bus = bus
        self.revocation = revocation
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def create_rule(
        self,
        name: str,
        conflicting_app_ids: List[str],
        severity: str = "medium",
        description: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> SodRule:
        """Create an active rule.

        Raises:
            SodError: If fewer than two distinct apps are given or the
                severity is unknown
        """
        app_ids = list(dict.fromkeys(conflicting_app_ids))
        if len(app_ids) < 2:
            raise SodError(f"SoD rule '{name}' needs at least two conflicting apps")
        if severity not in SEVERITIES:
            raise SodError(f"Unknown severity '{severity}' (expected one of {', '.join(SEVERITIES)})")

        rule = await self.store.create_sod_rule(
            SodRule(
                id=str(uuid.uuid4()),
                tenant_id=self.tenant_id,
                name=name,
                description=description,
                conflicting_app_ids=app_ids,
                severity=severity,
                created_by=created_by,
            )
        )
        logger.info("sod_rule_created", rule_id=rule.id, apps=len(app_ids), severity=severity)
        return rule

    async def toggle_rule(self, rule_id: str, is_active: Optional[bool] = None) -> SodRule:
        """Enable or disable a rule; flips the current state when not given."""
        rule = await self.store.get_sod_rule(rule_id, self.tenant_id)
        if rule is None:
            raise SodError(f"SoD rule {rule_id} not found")

        active = (not rule.is_active) if is_active is None else is_active
        rule = await self.store.update_sod_rule(rule_id, self.tenant_id, is_active=active)
        logger.info("sod_rule_toggled", rule_id=rule_id, is_active=active)
        return rule

    async def detect_violations(self) -> List[SodViolation]:
        """Scan active grants against active rules.

        A user who already has an open violation for a rule is not reported
        again, nor is one whose violation was accepted for the same set of
        conflicting apps.

        Returns:
            Violations created by this scan
        """
        rules = await self.store.list_sod_rules(self.tenant_id, active=True)
        if not rules:
            return []

        apps_by_user: Dict[str, Set[str]] = defaultdict(set)
        for access in await self.store.list_user_app_access(
            self.tenant_id, status=AccessStatus.ACTIVE
        ):
            apps_by_user[access.user_id].add(access.app_id)

        open_keys: Set[Tuple[str, str]] = set()
        accepted: Dict[Tuple[str, str], Set[FrozenSet[str]]] = defaultdict(set)
        for v in await self.store.list_sod_violations(self.tenant_id):
            if v.status == SodStatus.OPEN:
                open_keys.add((v.rule_id, v.user_id))
            elif v.status == SodStatus.ACCEPTED:
                accepted[(v.rule_id, v.user_id)].add(frozenset(v.app_ids))

        created: List[SodViolation] = []
        for rule in rules:
            for user_id, app_ids in apps_by_user.items():
                held = [a for a in rule.conflicting_app_ids if a in app_ids]
                if len(held) < 2 or (rule.id, user_id) in open_keys:
                    continue
                if frozenset(held) in accepted.get((rule.id, user_id), ()):
                    continue

                violation = await self.store.create_sod_violation(
                    SodViolation(
                        id=str(uuid.uuid4()),
                        tenant_id=self.tenant_id,
                        rule_id=rule.id,
                        user_id=user_id,
                        app_ids=held,
                        severity=rule.severity,
                        detected_at=self._clock(),
                    )
                )
                open_keys.add((rule.id, user_id))
                created.append(violation)

                await self.bus.publish(
                    SodViolationPayload(
                        tenant_id=self.tenant_id,
                        violation_id=violation.id,
                        rule_id=rule.id,
                        rule_name=rule.name,
                        user_id=user_id,
                        app_ids=held,
                        severity=rule.severity,
                    )
                )

        logger.info("sod_violations_detected", tenant_id=self.tenant_id, violations=len(created))
        return created

    async def _require_open(self, violation_id: str) -> SodViolation:
        violation = await self.store.get_sod_violation(violation_id, self.tenant_id)
        if violation is None:
            raise SodError(f"SoD violation {violation_id} not found")
        if violation.status != SodStatus.OPEN:
            raise SodError(f"SoD violation {violation_id} is already {violation.status.value}")
        return violation

    async def remediate_violation(
        self,
        violation_id: str,
        revoke_app_id: str,
        resolved_by: str,
        notes: Optional[str] = None,
    ) -> SodViolation:
        """Resolve a violation by revoking one of the conflicting apps.

        Raises:
            SodError: If the violation is not open, the app is not part of
                it, or the revocation fails (the violation stays open)
        """
        violation = await self._require_open(violation_id)
        if revoke_app_id not in violation.app_ids:
            raise SodError(f"App {revoke_app_id} is not part of violation {violation_id}")

        try:
            await self.revocation.revoke_user_app_access(
                violation.user_id, revoke_app_id, self.tenant_id
            )
        except Exception as e:
            logger.error("sod_remediation_failed", violation_id=violation_id, error=str(e))
            raise SodError(f"Failed to remediate violation {violation_id}: {e}") from e

        violation = await self.store.update_sod_violation(
            violation_id,
            self.tenant_id,
            status=SodStatus.REMEDIATED,
            resolved_by=resolved_by,
            resolved_at=self._clock(),
            resolution_notes=notes,
            revoked_app_id=revoke_app_id,
        )
        logger.info("sod_violation_remediated", violation_id=violation_id, app_id=revoke_app_id)
        return violation

    async def accept_violation(
        self, violation_id: str, resolved_by: str, justification: str
    ) -> SodViolation:
        """Accept a violation as a documented exception."""
        await self._require_open(violation_id)
        if not justification:
            raise SodError("Accepting a SoD violation requires a justification")

        violation = await self.store.update_sod_violation(
            violation_id,
            self.tenant_id,
            status=SodStatus.ACCEPTED,
            resolved_by=resolved_by,
            resolved_at=self._clock(),
            resolution_notes=justification,
        )
        logger.info("sod_violation_accepted", violation_id=violation_id, resolved_by=resolved_by)
        return violation
