"""Fiscal-year and monthly-period lifecycle.

The manager in this module never holds view state. Every operation takes the
caller's latest :class:`PeriodsSnapshot`, checks its preconditions against
it, asks for confirmation when the action needs one, delegates the mutation
to a :class:`~fiscal_periods.periods.service.PeriodBackend` and, on success,
reloads the whole projection and hands back a fresh snapshot.
"""

from __future__ import annotations

import enum
import logging
import uuid
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date
from types import MappingProxyType
from typing import TYPE_CHECKING, Optional

from fiscal_periods.core.exceptions import (
    AppError,
    ConfirmationRequiredError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from fiscal_periods.periods.models import FiscalYearType

if TYPE_CHECKING:
    from fiscal_periods.periods.schemas import FiscalYearCreate
    from fiscal_periods.periods.service import PeriodBackend

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# States and actions
# ---------------------------------------------------------------------------


class YearState(str, enum.Enum):
    OPEN_INACTIVE = "open_inactive"
    OPEN_ACTIVE = "open_active"
    CLOSED = "closed"


class PeriodState(str, enum.Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    CLOSED = "closed"


class Action(str, enum.Enum):
    INITIALIZE_PERIODS = "initialize_periods"
    CLOSE = "close"
    REOPEN = "reopen"
    ACTIVATE = "activate"
    DEACTIVATE = "deactivate"


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FiscalYearSnapshot:
    id: uuid.UUID
    name: str
    start_date: date
    end_date: date
    fiscal_year_type: FiscalYearType = FiscalYearType.CALENDAR
    is_closed: bool = False
    is_active: bool = False
    notes: Optional[str] = None
    monthly_periods_count: int = 0

    @property
    def has_monthly_periods(self) -> bool:
        return self.monthly_periods_count > 0

    @property
    def state(self) -> YearState:
        if self.is_closed:
            return YearState.CLOSED
        return YearState.OPEN_ACTIVE if self.is_active else YearState.OPEN_INACTIVE


@dataclass(frozen=True)
class MonthlyPeriodSnapshot:
    id: uuid.UUID
    fiscal_year_id: uuid.UUID
    name: str
    start_date: date
    end_date: date
    year: int
    month: int
    is_closed: bool = False
    is_active: bool = False
    # Owning year flags, as joined in by the loader
    fiscal_year_name: Optional[str] = None
    fiscal_year_is_closed: bool = False
    fiscal_year_is_active: bool = False

    @property
    def state(self) -> PeriodState:
        if self.is_closed:
            return PeriodState.CLOSED
        return PeriodState.ACTIVE if self.is_active else PeriodState.INACTIVE


@dataclass(frozen=True)
class PeriodsSnapshot:
    """Read-only projection of every fiscal year and monthly period."""

    fiscal_years: tuple[FiscalYearSnapshot, ...] = ()
    monthly_periods: tuple[MonthlyPeriodSnapshot, ...] = ()
    period_stats: Mapping[uuid.UUID, int] = field(default_factory=lambda: MappingProxyType({}))
    current_period_id: Optional[uuid.UUID] = None
    expanded_year_ids: tuple[uuid.UUID, ...] = ()

    def get_year(self, year_id: uuid.UUID) -> Optional[FiscalYearSnapshot]:
        return next((y for y in self.fiscal_years if y.id == year_id), None)

    def get_period(self, period_id: uuid.UUID) -> Optional[MonthlyPeriodSnapshot]:
        return next((p for p in self.monthly_periods if p.id == period_id), None)

    def periods_for(self, year_id: uuid.UUID) -> list[MonthlyPeriodSnapshot]:
        return [p for p in self.monthly_periods if p.fiscal_year_id == year_id]

    def active_years(self) -> list[FiscalYearSnapshot]:
        return [y for y in self.fiscal_years if y.is_active]


# ---------------------------------------------------------------------------
# Derived view
# ---------------------------------------------------------------------------


def compute_period_stats(
    period_ids: Iterable[uuid.UUID],
    entry_period_ids: Iterable[Optional[uuid.UUID]],
) -> dict[uuid.UUID, int]:
    """Count journal entries per known period. Unknown or missing references are ignored."""
    stats = {period_id: 0 for period_id in period_ids}
    for period_id in entry_period_ids:
        if period_id is not None and period_id in stats:
            stats[period_id] += 1
    return stats


def find_current_period(
    periods: Sequence[MonthlyPeriodSnapshot], today: date
) -> Optional[MonthlyPeriodSnapshot]:
    return next(
        (p for p in periods if p.year == today.year and p.month == today.month),
        None,
    )


def select_expanded_year_ids(
    years: Sequence[FiscalYearSnapshot],
    periods: Sequence[MonthlyPeriodSnapshot],
    today: date,
) -> tuple[uuid.UUID, ...]:
    """Expand the year owning this month's period, else the most recent year.

    *years* must already be ordered by start date, newest first.
    """
    current = find_current_period(periods, today)
    if current is not None:
        return (current.fiscal_year_id,)
    if years:
        return (years[0].id,)
    return ()


def build_snapshot(
    years: Sequence[FiscalYearSnapshot],
    periods: Sequence[MonthlyPeriodSnapshot],
    entry_period_ids: Iterable[Optional[uuid.UUID]],
    today: date,
) -> PeriodsSnapshot:
    current = find_current_period(periods, today)
    stats = compute_period_stats((p.id for p in periods), entry_period_ids)
    return PeriodsSnapshot(
        fiscal_years=tuple(years),
        monthly_periods=tuple(periods),
        period_stats=MappingProxyType(stats),
        current_period_id=current.id if current else None,
        expanded_year_ids=select_expanded_year_ids(years, periods, today),
    )


# ---------------------------------------------------------------------------
# Transition rules
# ---------------------------------------------------------------------------


def year_action_rejection(
    snapshot: PeriodsSnapshot, year: FiscalYearSnapshot, action: Action
) -> Optional[str]:
    """Return why *action* is not allowed on *year*, or None when it is."""
    if action is Action.REOPEN:
        if not year.is_closed:
            return f"Fiscal year {year.name} is not closed."
        return None

    if year.is_closed:
        return f"Fiscal year {year.name} is closed."

    if action is Action.CLOSE:
        return None
    if action is Action.INITIALIZE_PERIODS:
        if year.has_monthly_periods:
            return f"Fiscal year {year.name} already has monthly periods."
        return None
    if action is Action.ACTIVATE:
        if year.is_active:
            return f"Fiscal year {year.name} is already active."
        others = [y for y in snapshot.active_years() if y.id != year.id]
        if others:
            return (
                f"Fiscal year {others[0].name} is already active. "
                "Deactivate it before activating another fiscal year."
            )
        return None
    if action is Action.DEACTIVATE:
        if not year.is_active:
            return f"Fiscal year {year.name} is already inactive."
        return None
    raise ValueError(f"Unknown action {action!r}")


def period_action_rejection(
    snapshot: PeriodsSnapshot, period: MonthlyPeriodSnapshot, action: Action
) -> Optional[str]:
    """Return why *action* is not allowed on *period*, or None when it is."""
    if action in (Action.REOPEN, Action.INITIALIZE_PERIODS):
        return f"Monthly periods do not support '{action.value}'."
    if period.is_closed:
        return f"Monthly period {period.name} is closed."
    if action is Action.CLOSE:
        return None
    if action is Action.ACTIVATE:
        if period.is_active:
            return f"Monthly period {period.name} is already active."
        owner = snapshot.get_year(period.fiscal_year_id)
        if owner is None or not owner.is_active:
            return (
                "A monthly period cannot be activated while its fiscal year is inactive. "
                "Activate the fiscal year first."
            )
        return None
    if action is Action.DEACTIVATE:
        if not period.is_active:
            return f"Monthly period {period.name} is already inactive."
        return None
    raise ValueError(f"Unknown action {action!r}")


def allowed_year_actions(snapshot: PeriodsSnapshot, year: FiscalYearSnapshot) -> list[Action]:
    return [a for a in Action if year_action_rejection(snapshot, year, a) is None]


def allowed_period_actions(
    snapshot: PeriodsSnapshot, period: MonthlyPeriodSnapshot
) -> list[Action]:
    return [a for a in Action if period_action_rejection(snapshot, period, a) is None]


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class Outcome(str, enum.Enum):
    OK = "ok"
    NEEDS_CONFIRMATION = "needs_confirmation"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass(frozen=True)
class ActionResult:
    outcome: Outcome
    message: str
    snapshot: Optional[PeriodsSnapshot] = None
    error: Optional[AppError] = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.OK

    @classmethod
    def succeeded(cls, message: str, snapshot: Optional[PeriodsSnapshot]) -> ActionResult:
        return cls(Outcome.OK, message, snapshot=snapshot)

    @classmethod
    def needs_confirmation(cls, prompt: str) -> ActionResult:
        return cls(Outcome.NEEDS_CONFIRMATION, prompt, error=ConfirmationRequiredError(prompt))

    @classmethod
    def rejected(cls, error: AppError) -> ActionResult:
        return cls(Outcome.REJECTED, error.message, error=error)

    @classmethod
    def failed(cls, error: AppError) -> ActionResult:
        return cls(Outcome.FAILED, error.message, error=error)


SIGN_IN_REQUIRED = "You must be signed in to perform this action."
STALE_VIEW = "The change was saved but the view could not be refreshed."


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class FiscalPeriodLifecycleManager:
    """Guards and performs fiscal-year and monthly-period transitions."""

    def __init__(self, backend: PeriodBackend, today: Callable[[], date] = date.today):
        self.backend = backend
        self.today = today

    async def load(self) -> PeriodsSnapshot:
        years = await self.backend.fetch_fiscal_years()
        periods = await self.backend.fetch_monthly_periods()
        try:
            entry_period_ids = await self.backend.fetch_journal_entry_period_ids()
        except Exception as exc:
            # Entry counts are informational; show zeros rather than no view at all
            logger.warning("Could not load journal entry counts: %s", exc)
            entry_period_ids = []
        return build_snapshot(years, periods, entry_period_ids, self.today())

    async def create_fiscal_year(
        self, form: FiscalYearCreate, actor_id: Optional[uuid.UUID]
    ) -> ActionResult:
        if actor_id is None:
            return self._reject(SIGN_IN_REQUIRED)
        if not form.name or not form.name.strip():
            return self._reject("The fiscal year name is required.")
        if form.start_date is None or form.end_date is None:
            return self._reject("Both a start date and an end date are required.")
        if form.end_date < form.start_date:
            return self._reject("The end date must be on or after the start date.")

        return await self._execute(
            lambda: self.backend.create_fiscal_year(form, actor_id, self.today()),
            f"Fiscal year {form.name.strip()} created with its monthly periods.",
            "Could not create the fiscal year.",
        )

    async def initialize_monthly_periods(
        self,
        snapshot: PeriodsSnapshot,
        year_id: uuid.UUID,
        actor_id: Optional[uuid.UUID],
        confirmed: bool = False,
    ) -> ActionResult:
        year, rejection = self._check_year(snapshot, year_id, actor_id, Action.INITIALIZE_PERIODS)
        if rejection is not None:
            return rejection
        if not confirmed:
            return ActionResult.needs_confirmation(
                f"Initialize the monthly periods of fiscal year {year.name}? "
                "Every monthly period the year covers will be created."
            )
        return await self._execute(
            lambda: self.backend.initialize_monthly_periods(year.id, actor_id, self.today()),
            f"Monthly periods of fiscal year {year.name} initialized.",
            "Could not initialize the monthly periods.",
        )

    async def close_fiscal_year(
        self,
        snapshot: PeriodsSnapshot,
        year_id: uuid.UUID,
        actor_id: Optional[uuid.UUID],
        confirmed: bool = False,
    ) -> ActionResult:
        year, rejection = self._check_year(snapshot, year_id, actor_id, Action.CLOSE)
        if rejection is not None:
            return rejection
        if not confirmed:
            return ActionResult.needs_confirmation(
                f"Close fiscal year {year.name} and all of its monthly periods? "
                "Every monthly period that is still open will be closed."
            )
        return await self._execute(
            lambda: self.backend.close_fiscal_year(year.id, actor_id),
            f"Fiscal year {year.name} closed together with its monthly periods.",
            "Could not close the fiscal year.",
        )

    async def reopen_fiscal_year(
        self,
        snapshot: PeriodsSnapshot,
        year_id: uuid.UUID,
        actor_id: Optional[uuid.UUID],
        reason: Optional[str],
    ) -> ActionResult:
        if actor_id is not None and (reason is None or not reason.strip()):
            return self._reject("A reason is required to reopen a fiscal year.")
        year, rejection = self._check_year(snapshot, year_id, actor_id, Action.REOPEN)
        if rejection is not None:
            return rejection
        return await self._execute(
            lambda: self.backend.reopen_fiscal_year(year.id, actor_id, reason.strip()),
            f"Fiscal year {year.name} reopened together with its monthly periods.",
            "Could not reopen the fiscal year.",
        )

    async def toggle_fiscal_year_active(
        self,
        snapshot: PeriodsSnapshot,
        year_id: uuid.UUID,
        activate: bool,
        actor_id: Optional[uuid.UUID],
        confirmed: bool = False,
    ) -> ActionResult:
        action = Action.ACTIVATE if activate else Action.DEACTIVATE
        year, rejection = self._check_year(snapshot, year_id, actor_id, action)
        if rejection is not None:
            return rejection
        verb = "Activate" if activate else "Deactivate"
        scope = "the current month's period" if activate else "all of its monthly periods"
        if not confirmed:
            return ActionResult.needs_confirmation(f"{verb} fiscal year {year.name} and {scope}?")
        return await self._execute(
            lambda: self.backend.toggle_fiscal_year_active(
                year.id, activate, actor_id, self.today()
            ),
            f"Fiscal year {year.name} {verb.lower()}d together with {scope}.",
            f"Could not {verb.lower()} the fiscal year.",
        )

    async def close_monthly_period(
        self,
        snapshot: PeriodsSnapshot,
        period_id: uuid.UUID,
        actor_id: Optional[uuid.UUID],
        confirmed: bool = False,
    ) -> ActionResult:
        period, rejection = self._check_period(snapshot, period_id, actor_id, Action.CLOSE)
        if rejection is not None:
            return rejection
        if not confirmed:
            return ActionResult.needs_confirmation(
                f"Close monthly period {period.name}? "
                "No new journal entries can be recorded in it afterwards."
            )
        return await self._execute(
            lambda: self.backend.close_monthly_period(period.id, actor_id),
            f"Monthly period {period.name} closed.",
            "Could not close the monthly period.",
        )

    async def toggle_monthly_period_active(
        self,
        snapshot: PeriodsSnapshot,
        period_id: uuid.UUID,
        activate: bool,
        actor_id: Optional[uuid.UUID],
        confirmed: bool = False,
    ) -> ActionResult:
        action = Action.ACTIVATE if activate else Action.DEACTIVATE
        period, rejection = self._check_period(snapshot, period_id, actor_id, action)
        if rejection is not None:
            return rejection
        verb = "Activate" if activate else "Deactivate"
        if not confirmed:
            return ActionResult.needs_confirmation(f"{verb} monthly period {period.name}?")
        return await self._execute(
            lambda: self.backend.toggle_monthly_period_active(period.id, activate, actor_id),
            f"Monthly period {period.name} {verb.lower()}d.",
            f"Could not {verb.lower()} the monthly period.",
        )

    # -- helpers ------------------------------------------------------------

    def _reject(self, message: str) -> ActionResult:
        logger.warning("Rejected fiscal period action: %s", message)
        return ActionResult.rejected(ValidationError(message))

    def _check_year(self, snapshot, year_id, actor_id, action):
        if actor_id is None:
            return None, self._reject(SIGN_IN_REQUIRED)
        year = snapshot.get_year(year_id)
        if year is None:
            return None, ActionResult.rejected(NotFoundError("FiscalYear", str(year_id)))
        reason = year_action_rejection(snapshot, year, action)
        if reason is not None:
            return year, self._reject(reason)
        return year, None

    def _check_period(self, snapshot, period_id, actor_id, action):
        if actor_id is None:
            return None, self._reject(SIGN_IN_REQUIRED)
        period = snapshot.get_period(period_id)
        if period is None:
            return None, ActionResult.rejected(NotFoundError("MonthlyPeriod", str(period_id)))
        reason = period_action_rejection(snapshot, period, action)
        if reason is not None:
            return period, self._reject(reason)
        return period, None

    async def _execute(
        self,
        call: Callable[[], Awaitable[object]],
        success_message: str,
        failure_message: str,
    ) -> ActionResult:
        try:
            await call()
        except AppError as exc:
            logger.warning("%s %s", failure_message, exc.message)
            return ActionResult.failed(exc)
        except Exception:
            logger.exception(failure_message)
            return ActionResult.failed(InternalError(failure_message))

        logger.info(success_message)
        try:
            snapshot = await self.load()
        except Exception:
            logger.exception("Reload failed after: %s", success_message)
            return ActionResult.succeeded(f"{success_message} {STALE_VIEW}", None)
        return ActionResult.succeeded(success_message, snapshot)
