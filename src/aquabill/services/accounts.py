"""Account and meter lifecycle transitions."""

from __future__ import annotations

import logging
from uuid import UUID

from aquabill.core.audit import AuditSink
from aquabill.core.clock import Clock
from aquabill.core.exceptions import AccountStateError, MeterStateError
from aquabill.core.models import Account, AccountStatus, Meter, MeterStatus
from aquabill.core.repositories.account import AccountRepository
from aquabill.core.repositories.meter import MeterRepository

logger = logging.getLogger(__name__)


class AccountService:
    """Moves accounts and meters between their lifecycle states."""

    def __init__(
        self,
        account_repo: AccountRepository,
        meter_repo: MeterRepository,
        audit: AuditSink,
        clock: Clock,
    ):
        self._account_repo = account_repo
        self._meter_repo = meter_repo
        self._audit = audit
        self._clock = clock

    async def _transition(
        self, account_id: UUID | str, target: AccountStatus, event: str
    ) -> Account:
        account = await self._account_repo.get_required(account_id)
        if account.status == target:
            raise AccountStateError(
                f"Account {account.account_number} is already {target.value}."
            )
        previous = account.status
        account.status = target
        if target == AccountStatus.ACTIVE:
            account.activated_at = self._clock.now()
            account.suspended_at = None
        elif target == AccountStatus.SUSPENDED:
            account.suspended_at = self._clock.now()
        await account.save()

        await self._audit.log_event(
            "account",
            account.id,
            event,
            {"from": previous.value, "to": target.value},
        )
        logger.info(
            "Account %s: %s -> %s", account.account_number, previous.value, target.value
        )
        return account

    async def activate(self, account_id: UUID | str) -> Account:
        return await self._transition(account_id, AccountStatus.ACTIVE, "activated")

    async def suspend(self, account_id: UUID | str) -> Account:
        return await self._transition(account_id, AccountStatus.SUSPENDED, "suspended")

    async def deactivate(self, account_id: UUID | str) -> Account:
        return await self._transition(account_id, AccountStatus.INACTIVE, "deactivated")

    async def activate_meter(self, meter_id: UUID | str) -> Meter:
        """Activates a meter; a sub-meter needs an active bulk meter above it."""
        meter = await self._meter_repo.get_required(meter_id)
        if meter.status == MeterStatus.ACTIVE:
            raise MeterStateError(f"Meter {meter.meter_number} is already active.")
        if meter.parent_meter_id is not None:
            parent = await self._meter_repo.get_required(meter.parent_meter_id)
            if parent.status != MeterStatus.ACTIVE:
                raise MeterStateError(
                    f"Cannot activate sub-meter {meter.meter_number}: "
                    f"parent meter {parent.meter_number} is {parent.status.value}."
                )
        meter.status = MeterStatus.ACTIVE
        await meter.save(update_fields=["status", "updated_at"])
        await self._audit.log_event("meter", meter.id, "activated")
        return meter

    async def deactivate_meter(
        self, meter_id: UUID | str, status: MeterStatus = MeterStatus.INACTIVE
    ) -> Meter:
        """Takes a meter out of service. Bulk meters must have no active sub-meters."""
        if status == MeterStatus.ACTIVE:
            raise MeterStateError("Use activate_meter to activate a meter.")
        meter = await self._meter_repo.get_required(meter_id)
        active_children = await self._meter_repo.count_active_sub_meters(meter.id)
        if active_children:
            raise MeterStateError(
                f"Meter {meter.meter_number} still feeds {active_children} "
                "active sub-meter(s)."
            )
        meter.status = status
        await meter.save(update_fields=["status", "updated_at"])
        await self._audit.log_event(
            "meter", meter.id, "deactivated", {"status": status.value}
        )
        return meter
