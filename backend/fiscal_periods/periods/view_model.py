from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from typing import Optional, Union

from fiscal_periods.core.exceptions import ConflictError
from fiscal_periods.periods.lifecycle import (
    ActionResult,
    FiscalPeriodLifecycleManager,
    PeriodsSnapshot,
)
from fiscal_periods.periods.schemas import FiscalYearCreate

logger = logging.getLogger(__name__)

# Processing key used while a new fiscal year is being created
NEW_FISCAL_YEAR = "new-fiscal-year"

ProcessingKey = Union[uuid.UUID, str]


class PeriodsViewModel:
    """Presentation-side state for the fiscal periods screen.

    Holds the latest snapshot, which years are expanded and which years or
    periods have an action in flight. All domain decisions are delegated to
    the lifecycle manager.
    """

    def __init__(
        self,
        manager: FiscalPeriodLifecycleManager,
        snapshot: Optional[PeriodsSnapshot] = None,
    ):
        self.manager = manager
        self.snapshot = snapshot if snapshot is not None else PeriodsSnapshot()
        self.expanded_year_ids: list[uuid.UUID] = list(self.snapshot.expanded_year_ids)
        self._processing: set[ProcessingKey] = set()

    async def refresh(self) -> PeriodsSnapshot:
        self._apply(await self.manager.load())
        return self.snapshot

    def toggle_year_expansion(self, year_id: uuid.UUID) -> None:
        if year_id in self.expanded_year_ids:
            self.expanded_year_ids.remove(year_id)
        else:
            self.expanded_year_ids.append(year_id)

    def is_expanded(self, year_id: uuid.UUID) -> bool:
        return year_id in self.expanded_year_ids

    def is_processing(self, key: ProcessingKey) -> bool:
        return key in self._processing

    # -- actions --------------------------------------------------------------

    async def create_fiscal_year(
        self, form: FiscalYearCreate, actor_id: Optional[uuid.UUID]
    ) -> ActionResult:
        return await self._dispatch(
            NEW_FISCAL_YEAR,
            lambda snapshot: self.manager.create_fiscal_year(form, actor_id),
        )

    async def initialize_monthly_periods(
        self, year_id: uuid.UUID, actor_id: Optional[uuid.UUID], confirmed: bool = False
    ) -> ActionResult:
        return await self._dispatch(
            year_id,
            lambda snapshot: self.manager.initialize_monthly_periods(
                snapshot, year_id, actor_id, confirmed
            ),
            keep_expanded=year_id,
        )

    async def close_fiscal_year(
        self, year_id: uuid.UUID, actor_id: Optional[uuid.UUID], confirmed: bool = False
    ) -> ActionResult:
        return await self._dispatch(
            year_id,
            lambda snapshot: self.manager.close_fiscal_year(snapshot, year_id, actor_id, confirmed),
        )

    async def reopen_fiscal_year(
        self, year_id: uuid.UUID, actor_id: Optional[uuid.UUID], reason: Optional[str]
    ) -> ActionResult:
        return await self._dispatch(
            year_id,
            lambda snapshot: self.manager.reopen_fiscal_year(snapshot, year_id, actor_id, reason),
        )

    async def toggle_fiscal_year_active(
        self,
        year_id: uuid.UUID,
        activate: bool,
        actor_id: Optional[uuid.UUID],
        confirmed: bool = False,
    ) -> ActionResult:
        return await self._dispatch(
            year_id,
            lambda snapshot: self.manager.toggle_fiscal_year_active(
                snapshot, year_id, activate, actor_id, confirmed
            ),
            keep_expanded=year_id if activate else None,
        )

    async def close_monthly_period(
        self, period_id: uuid.UUID, actor_id: Optional[uuid.UUID], confirmed: bool = False
    ) -> ActionResult:
        return await self._dispatch(
            period_id,
            lambda snapshot: self.manager.close_monthly_period(
                snapshot, period_id, actor_id, confirmed
            ),
        )

    async def toggle_monthly_period_active(
        self,
        period_id: uuid.UUID,
        activate: bool,
        actor_id: Optional[uuid.UUID],
        confirmed: bool = False,
    ) -> ActionResult:
        return await self._dispatch(
            period_id,
            lambda snapshot: self.manager.toggle_monthly_period_active(
                snapshot, period_id, activate, actor_id, confirmed
            ),
        )

    # -- helpers --------------------------------------------------------------

    async def _dispatch(
        self,
        key: ProcessingKey,
        operation: Callable[[PeriodsSnapshot], Awaitable[ActionResult]],
        keep_expanded: Optional[uuid.UUID] = None,
    ) -> ActionResult:
        if key in self._processing:
            logger.warning("Ignoring action on %s: another action is still in progress", key)
            return ActionResult.rejected(
                ConflictError("Another action on this item is still in progress.")
            )

        self._processing.add(key)
        try:
            result = await operation(self.snapshot)
        finally:
            self._processing.discard(key)

        if result.ok and result.snapshot is not None:
            self._apply(result.snapshot, keep_expanded)
        return result

    def _apply(self, snapshot: PeriodsSnapshot, keep_expanded: Optional[uuid.UUID] = None) -> None:
        self.snapshot = snapshot
        self.expanded_year_ids = list(snapshot.expanded_year_ids)
        if keep_expanded is not None and keep_expanded not in self.expanded_year_ids:
            self.expanded_year_ids.append(keep_expanded)
