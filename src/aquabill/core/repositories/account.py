"""Repository for Account model."""

from __future__ import annotations

from collections.abc import Sequence
from uuid import UUID

from aquabill.core.models import Account, AccountStatus, MeterStatus
from aquabill.core.repositories.base import BaseRepository


class AccountRepository(BaseRepository[Account]):
    """Account-specific repository operations."""

    def __init__(self) -> None:
        super().__init__(Account)

    async def get_by_number(self, account_number: str) -> Account | None:
        """Get an account by its account number."""
        return await self.model.get_or_none(account_number=account_number)

    async def list_billable(
        self,
        limit: int,
        offset: int = 0,
        account_ids: Sequence[UUID | str] | None = None,
    ) -> list[Account]:
        """Active accounts with at least one active meter, in a stable order."""
        query = self.model.filter(
            status=AccountStatus.ACTIVE, meters__status=MeterStatus.ACTIVE
        )
        if account_ids is not None:
            query = query.filter(id__in=list(account_ids))
        return (
            await query.distinct()
            .order_by("account_number")
            .offset(offset)
            .limit(limit)
        )
