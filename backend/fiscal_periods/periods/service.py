"""Persistence side of the fiscal period lifecycle.

:class:`PeriodBackend` is the contract the lifecycle manager talks to.
:class:`SqlPeriodBackend` implements it on an async SQLAlchemy session; each
year-level cascade is committed as one transaction.
"""

from __future__ import annotations

import calendar
import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Protocol

from dateutil.relativedelta import relativedelta
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fiscal_periods.core.exceptions import ConflictError, NotFoundError, ValidationError
from fiscal_periods.periods.lifecycle import FiscalYearSnapshot, MonthlyPeriodSnapshot
from fiscal_periods.periods.models import (
    FiscalYear,
    FiscalYearReopening,
    JournalEntry,
    MonthlyPeriod,
)
from fiscal_periods.periods.schemas import FiscalYearCreate

logger = logging.getLogger(__name__)


class PeriodBackend(Protocol):
    async def create_fiscal_year(
        self, form: FiscalYearCreate, actor_id: uuid.UUID, today: date
    ) -> FiscalYearSnapshot: ...

    async def fetch_fiscal_years(self) -> list[FiscalYearSnapshot]: ...

    async def fetch_monthly_periods(self) -> list[MonthlyPeriodSnapshot]: ...

    async def fetch_journal_entry_period_ids(self) -> list[Optional[uuid.UUID]]: ...

    async def close_fiscal_year(self, year_id: uuid.UUID, actor_id: uuid.UUID) -> None: ...

    async def reopen_fiscal_year(
        self, year_id: uuid.UUID, actor_id: uuid.UUID, reason: str
    ) -> None: ...

    async def toggle_fiscal_year_active(
        self, year_id: uuid.UUID, activate: bool, actor_id: uuid.UUID, today: date
    ) -> None: ...

    async def close_monthly_period(self, period_id: uuid.UUID, actor_id: uuid.UUID) -> None: ...

    async def toggle_monthly_period_active(
        self, period_id: uuid.UUID, activate: bool, actor_id: uuid.UUID
    ) -> None: ...

    async def initialize_monthly_periods(
        self, year_id: uuid.UUID, actor_id: uuid.UUID, today: date
    ) -> None: ...


# ---------------------------------------------------------------------------
# Monthly period generation
# ---------------------------------------------------------------------------


def month_spans(start: date, end: date) -> list[tuple[date, date]]:
    """Split [start, end] into calendar-month spans clipped to the range."""
    spans = []
    month_start = start.replace(day=1)
    while month_start <= end:
        month_end = month_start + relativedelta(months=1) - timedelta(days=1)
        spans.append((max(month_start, start), min(month_end, end)))
        month_start += relativedelta(months=1)
    return spans


def build_monthly_periods(fiscal_year: FiscalYear, today: date) -> list[MonthlyPeriod]:
    """Create (unsaved) monthly periods covering *fiscal_year*.

    When the year is already active the period for *today*'s month starts
    active as well.
    """
    periods = []
    for span_start, span_end in month_spans(fiscal_year.start_date, fiscal_year.end_date):
        is_current = (span_start.year, span_start.month) == (today.year, today.month)
        periods.append(
            MonthlyPeriod(
                fiscal_year_id=fiscal_year.id,
                name=f"{calendar.month_name[span_start.month]} {span_start.year}",
                start_date=span_start,
                end_date=span_end,
                year=span_start.year,
                month=span_start.month,
                is_closed=False,
                is_active=bool(fiscal_year.is_active and is_current),
            )
        )
    return periods


def _year_snapshot(fiscal_year: FiscalYear, periods_count: int) -> FiscalYearSnapshot:
    return FiscalYearSnapshot(
        id=fiscal_year.id,
        name=fiscal_year.name,
        start_date=fiscal_year.start_date,
        end_date=fiscal_year.end_date,
        fiscal_year_type=fiscal_year.fiscal_year_type,
        is_closed=fiscal_year.is_closed,
        is_active=fiscal_year.is_active,
        notes=fiscal_year.notes,
        monthly_periods_count=periods_count,
    )


# ---------------------------------------------------------------------------
# SQLAlchemy implementation
# ---------------------------------------------------------------------------


class SqlPeriodBackend:
    def __init__(self, db: AsyncSession):
        self.db = db

    # -- reads ----------------------------------------------------------------

    async def fetch_fiscal_years(self) -> list[FiscalYearSnapshot]:
        """Return all fiscal years, newest start date first, with period counts."""
        counts = (
            select(MonthlyPeriod.fiscal_year_id, func.count(MonthlyPeriod.id).label("n"))
            .group_by(MonthlyPeriod.fiscal_year_id)
            .subquery()
        )
        result = await self.db.execute(
            select(FiscalYear, func.coalesce(counts.c.n, 0))
            .outerjoin(counts, counts.c.fiscal_year_id == FiscalYear.id)
            .order_by(FiscalYear.start_date.desc())
            .execution_options(populate_existing=True)
        )
        return [_year_snapshot(year, count) for year, count in result.all()]

    async def fetch_monthly_periods(self) -> list[MonthlyPeriodSnapshot]:
        """Return all monthly periods, newest first, joined with their year's flags."""
        result = await self.db.execute(
            select(MonthlyPeriod, FiscalYear.name, FiscalYear.is_closed, FiscalYear.is_active)
            .join(FiscalYear, MonthlyPeriod.fiscal_year_id == FiscalYear.id)
            .order_by(MonthlyPeriod.start_date.desc())
            .execution_options(populate_existing=True)
        )
        return [
            MonthlyPeriodSnapshot(
                id=period.id,
                fiscal_year_id=period.fiscal_year_id,
                name=period.name,
                start_date=period.start_date,
                end_date=period.end_date,
                year=period.year,
                month=period.month,
                is_closed=period.is_closed,
                is_active=period.is_active,
                fiscal_year_name=year_name,
                fiscal_year_is_closed=year_closed,
                fiscal_year_is_active=year_active,
            )
            for period, year_name, year_closed, year_active in result.all()
        ]

    async def fetch_journal_entry_period_ids(self) -> list[Optional[uuid.UUID]]:
        result = await self.db.execute(select(JournalEntry.monthly_period_id))
        return list(result.scalars().all())

    # -- fiscal years ---------------------------------------------------------

    async def create_fiscal_year(
        self, form: FiscalYearCreate, actor_id: uuid.UUID, today: date
    ) -> FiscalYearSnapshot:
        name = form.name.strip()
        if form.start_date is None or form.end_date is None or form.end_date < form.start_date:
            raise ValidationError("The end date must be on or after the start date.")

        result = await self.db.execute(select(FiscalYear).where(FiscalYear.name == name))
        if result.scalar_one_or_none() is not None:
            raise ConflictError(f"A fiscal year named '{name}' already exists.")

        fiscal_year = FiscalYear(
            id=uuid.uuid4(),
            name=name,
            start_date=form.start_date,
            end_date=form.end_date,
            fiscal_year_type=form.fiscal_year_type,
            notes=form.notes,
            is_closed=False,
            is_active=False,
            created_by=actor_id,
        )
        self.db.add(fiscal_year)
        periods = build_monthly_periods(fiscal_year, today)
        self.db.add_all(periods)
        await self._commit()
        logger.info("Created fiscal year %s with %d monthly periods", name, len(periods))
        return _year_snapshot(fiscal_year, len(periods))

    async def close_fiscal_year(self, year_id: uuid.UUID, actor_id: uuid.UUID) -> None:
        fiscal_year = await self._get_year(year_id)
        if fiscal_year.is_closed:
            raise ConflictError(f"Fiscal year {fiscal_year.name} is already closed.")

        now = datetime.now(timezone.utc)
        fiscal_year.is_closed = True
        fiscal_year.is_active = False
        fiscal_year.closed_by = actor_id
        fiscal_year.closed_at = now
        await self.db.execute(
            update(MonthlyPeriod)
            .where(
                MonthlyPeriod.fiscal_year_id == year_id,
                MonthlyPeriod.is_closed == False,  # noqa: E712
            )
            .values(is_closed=True, is_active=False, closed_by=actor_id, closed_at=now)
        )
        await self._commit()
        logger.info("Closed fiscal year %s", fiscal_year.name)

    async def reopen_fiscal_year(
        self, year_id: uuid.UUID, actor_id: uuid.UUID, reason: str
    ) -> None:
        fiscal_year = await self._get_year(year_id)
        if not fiscal_year.is_closed:
            raise ValidationError(f"Fiscal year {fiscal_year.name} is already open.")
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to reopen a fiscal year.")

        fiscal_year.is_closed = False
        fiscal_year.is_active = False
        fiscal_year.closed_by = None
        fiscal_year.closed_at = None
        await self.db.execute(
            update(MonthlyPeriod)
            .where(MonthlyPeriod.fiscal_year_id == year_id)
            .values(is_closed=False, is_active=False, closed_by=None, closed_at=None)
        )
        self.db.add(
            FiscalYearReopening(
                fiscal_year_id=year_id,
                reason=reason.strip(),
                reopened_by=actor_id,
            )
        )
        await self._commit()
        logger.info("Reopened fiscal year %s", fiscal_year.name)

    async def toggle_fiscal_year_active(
        self, year_id: uuid.UUID, activate: bool, actor_id: uuid.UUID, today: date
    ) -> None:
        fiscal_year = await self._get_year(year_id, for_update=True)
        if fiscal_year.is_closed:
            raise ConflictError(f"Fiscal year {fiscal_year.name} is closed.")

        if activate:
            result = await self.db.execute(
                select(FiscalYear).where(FiscalYear.is_active.is_(True), FiscalYear.id != year_id)
            )
            other = result.scalars().first()
            if other is not None:
                raise ConflictError(
                    f"Fiscal year {other.name} is already active. "
                    "Deactivate it before activating another fiscal year."
                )
            fiscal_year.is_active = True
            await self._flush_activation(fiscal_year.name)
            await self.db.execute(
                update(MonthlyPeriod)
                .where(
                    MonthlyPeriod.fiscal_year_id == year_id,
                    MonthlyPeriod.year == today.year,
                    MonthlyPeriod.month == today.month,
                    MonthlyPeriod.is_closed == False,  # noqa: E712
                )
                .values(is_active=True)
            )
        else:
            fiscal_year.is_active = False
            await self.db.execute(
                update(MonthlyPeriod)
                .where(MonthlyPeriod.fiscal_year_id == year_id)
                .values(is_active=False)
            )
        await self._commit()
        logger.info(
            "%s fiscal year %s", "Activated" if activate else "Deactivated", fiscal_year.name
        )

    async def initialize_monthly_periods(
        self, year_id: uuid.UUID, actor_id: uuid.UUID, today: date
    ) -> None:
        fiscal_year = await self._get_year(year_id)
        if fiscal_year.is_closed:
            raise ConflictError(f"Fiscal year {fiscal_year.name} is closed.")
        existing = await self.db.scalar(
            select(func.count()).select_from(MonthlyPeriod).where(
                MonthlyPeriod.fiscal_year_id == year_id
            )
        )
        if existing:
            raise ConflictError(f"Fiscal year {fiscal_year.name} already has monthly periods.")

        periods = build_monthly_periods(fiscal_year, today)
        self.db.add_all(periods)
        await self._commit()
        logger.info(
            "Initialized %d monthly periods for fiscal year %s", len(periods), fiscal_year.name
        )

    # -- monthly periods ------------------------------------------------------

    async def close_monthly_period(self, period_id: uuid.UUID, actor_id: uuid.UUID) -> None:
        period = await self._get_period(period_id)
        if period.is_closed:
            raise ConflictError(f"Monthly period {period.name} is already closed.")

        period.is_closed = True
        period.is_active = False
        period.closed_by = actor_id
        period.closed_at = datetime.now(timezone.utc)
        await self._commit()
        logger.info("Closed monthly period %s", period.name)

    async def toggle_monthly_period_active(
        self, period_id: uuid.UUID, activate: bool, actor_id: uuid.UUID
    ) -> None:
        period = await self._get_period(period_id)
        if period.is_closed:
            raise ConflictError(f"Monthly period {period.name} is closed.")

        if not activate:
            period.is_active = False
            await self._commit()
        else:
            await self._get_year(period.fiscal_year_id, for_update=True)
            owner_active = (
                select(FiscalYear.id)
                .where(
                    FiscalYear.id == period.fiscal_year_id,
                    FiscalYear.is_active == True,  # noqa: E712
                )
                .exists()
            )
            # Re-check the owning year in the same statement that flips the flag
            result = await self.db.execute(
                update(MonthlyPeriod)
                .where(
                    MonthlyPeriod.id == period_id,
                    MonthlyPeriod.is_closed == False,  # noqa: E712
                    owner_active,
                )
                .values(is_active=True)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await self.db.rollback()
                raise ValidationError(
                    "A monthly period cannot be activated while its fiscal year is inactive."
                )
            await self._commit()
        logger.info(
            "%s monthly period %s", "Activated" if activate else "Deactivated", period.name
        )

    # -- helpers --------------------------------------------------------------

    async def _get_year(self, year_id: uuid.UUID, for_update: bool = False) -> FiscalYear:
        stmt = select(FiscalYear).where(FiscalYear.id == year_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        fiscal_year = result.scalar_one_or_none()
        if fiscal_year is None:
            raise NotFoundError("FiscalYear", str(year_id))
        return fiscal_year

    async def _get_period(self, period_id: uuid.UUID) -> MonthlyPeriod:
        result = await self.db.execute(
            select(MonthlyPeriod)
            .where(MonthlyPeriod.id == period_id)
            .execution_options(populate_existing=True)
        )
        period = result.scalar_one_or_none()
        if period is None:
            raise NotFoundError("MonthlyPeriod", str(period_id))
        return period

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

    async def _flush_activation(self, name: str) -> None:
        try:
            await self.db.flush()
        except IntegrityError as exc:
            await self.db.rollback()
            raise ConflictError(
                f"Another fiscal year became active before {name} could be activated. "
                "Deactivate it before activating another fiscal year."
            ) from exc
