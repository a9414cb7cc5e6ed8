"""Plan changes gated on downgrade violations."""

from __future__ import annotations

from academy_guard.core.exceptions import AcademyGuardError, InternalLookupError
from academy_guard.core.interfaces import DirectoryStore
from academy_guard.core.logging import get_logger
from academy_guard.core.types import PlanChangeApplied, PlanChangeOutcome
from academy_guard.saas.events import EventBus, PlanChanged, PlanDowngradeForced
from academy_guard.saas.quota import QuotaEvaluator

log = get_logger(__name__)


class PlanChanger:
    """Move an identity to another plan.

    Without ``force`` a change that would leave resources over the new limits
    is refused with the violation list. With ``force`` it is applied and the
    tenant is notified of exactly what must be pruned.
    """

    def __init__(
        self,
        directory: DirectoryStore,
        quota: QuotaEvaluator,
        events: EventBus | None = None,
    ) -> None:
        self._directory = directory
        self._quota = quota
        self._events = events

    async def change_plan(
        self,
        identity: str,
        target_plan_code: str,
        *,
        force: bool = False,
        actor: str | None = None,
    ) -> PlanChangeOutcome:
        """``actor`` is the identity acting on behalf of ``identity``, if any."""
        target = self._quota.catalog.get(target_plan_code)
        violations = await self._quota.check_plan_limit_violations(identity, target.code.value)

        if violations.requires_action and not force:
            log.info(
                "plan_change_blocked",
                identity=identity,
                target_plan=target.code.value,
                violations=len(violations.violations),
            )
            return violations

        current = await self._directory.get_active_subscription(identity)
        old_plan = current.plan_code if current else None

        try:
            await self._directory.set_subscription_plan(identity, target.code.value)
        except AcademyGuardError:
            raise
        except Exception as exc:
            log.error("subscription_update_failed", error=str(exc))
            raise InternalLookupError("Subscription update failed") from exc

        log.info(
            "plan_changed",
            identity=identity,
            old=old_plan,
            new=target.code.value,
            forced=violations.requires_action,
            actor=actor or identity,
        )

        if self._events is not None:
            self._events.emit(PlanChanged(identity=identity, old_plan=old_plan, new_plan=target.code.value))
            if violations.requires_action:
                self._events.emit(
                    PlanDowngradeForced(
                        identity=identity,
                        new_plan=target.code.value,
                        violations=violations.violations,
                    )
                )

        return PlanChangeApplied(
            identity=identity,
            old_plan=old_plan,
            new_plan=target.code,
            forced_violations=violations.violations,
        )
