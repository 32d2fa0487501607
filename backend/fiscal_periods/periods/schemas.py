"""Pydantic schemas for fiscal years and monthly periods."""


from typing import Optional

import uuid
from datetime import date

from pydantic import BaseModel, Field

from fiscal_periods.periods.lifecycle import (
    Action,
    FiscalYearSnapshot,
    MonthlyPeriodSnapshot,
    PeriodState,
    PeriodsSnapshot,
    YearState,
    allowed_period_actions,
    allowed_year_actions,
)
from fiscal_periods.periods.models import FiscalYearType


class FiscalYearCreate(BaseModel):
    # Presence and date ordering are checked by the lifecycle manager so the
    # rejection comes back in the same shape as every other local rejection.
    name: str = Field("", max_length=100)
    fiscal_year_type: FiscalYearType = FiscalYearType.CALENDAR
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    notes: str | None = None


class FiscalYearReopen(BaseModel):
    reason: str = ""


class Confirmation(BaseModel):
    confirmed: bool = False


class FiscalYearResponse(BaseModel):
    id: uuid.UUID
    name: str
    start_date: date
    end_date: date
    fiscal_year_type: FiscalYearType
    is_closed: bool
    is_active: bool
    notes: str | None
    has_monthly_periods: bool
    monthly_periods_count: int
    state: YearState
    allowed_actions: list[Action] = []

    model_config = {"from_attributes": True}

    @classmethod
    def from_snapshot(
        cls, snapshot: PeriodsSnapshot, year: FiscalYearSnapshot
    ) -> "FiscalYearResponse":
        response = cls.model_validate(year)
        response.allowed_actions = allowed_year_actions(snapshot, year)
        return response


class MonthlyPeriodResponse(BaseModel):
    id: uuid.UUID
    fiscal_year_id: uuid.UUID
    name: str
    start_date: date
    end_date: date
    year: int
    month: int
    is_closed: bool
    is_active: bool
    fiscal_year_name: str | None
    fiscal_year_is_closed: bool
    fiscal_year_is_active: bool
    state: PeriodState
    entry_count: int = 0
    allowed_actions: list[Action] = []

    model_config = {"from_attributes": True}

    @classmethod
    def from_snapshot(
        cls, snapshot: PeriodsSnapshot, period: MonthlyPeriodSnapshot
    ) -> "MonthlyPeriodResponse":
        response = cls.model_validate(period)
        response.entry_count = snapshot.period_stats.get(period.id, 0)
        response.allowed_actions = allowed_period_actions(snapshot, period)
        return response


class PeriodsViewResponse(BaseModel):
    fiscal_years: list[FiscalYearResponse]
    monthly_periods: list[MonthlyPeriodResponse]
    current_period_id: uuid.UUID | None
    expanded_year_ids: list[uuid.UUID]
    period_stats: dict[uuid.UUID, int]

    @classmethod
    def from_snapshot(
        cls,
        snapshot: PeriodsSnapshot,
        expanded_year_ids: Optional[list[uuid.UUID]] = None,
    ) -> "PeriodsViewResponse":
        if expanded_year_ids is None:
            expanded_year_ids = list(snapshot.expanded_year_ids)
        return cls(
            fiscal_years=[FiscalYearResponse.from_snapshot(snapshot, y) for y in snapshot.fiscal_years],
            monthly_periods=[
                MonthlyPeriodResponse.from_snapshot(snapshot, p) for p in snapshot.monthly_periods
            ],
            current_period_id=snapshot.current_period_id,
            expanded_year_ids=expanded_year_ids,
            period_stats=dict(snapshot.period_stats),
        )


class ActionResponse(BaseModel):
    message: str
    view: PeriodsViewResponse
