"""FastAPI router for fiscal years and their monthly periods.

Every request gets its own :class:`PeriodsViewModel` built over the request's
session, so its processing markers only cover that request. Blocking a second
click on the same year or period is left to the client that holds a
long-lived view-model; concurrent requests are serialized by the database
(see :class:`SqlPeriodBackend`).
"""


import uuid
from datetime import date, datetime
from typing import Annotated
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from fiscal_periods.auth.models import Role, User
from fiscal_periods.config import Settings
from fiscal_periods.dependencies import get_current_user, get_db, get_settings, require_role
from fiscal_periods.periods.lifecycle import ActionResult, FiscalPeriodLifecycleManager
from fiscal_periods.periods.schemas import (
    ActionResponse,
    Confirmation,
    FiscalYearCreate,
    FiscalYearReopen,
    FiscalYearResponse,
    PeriodsViewResponse,
)
from fiscal_periods.periods.service import SqlPeriodBackend
from fiscal_periods.periods.view_model import PeriodsViewModel

router = APIRouter()

Admin = Annotated[User, Depends(require_role([Role.ADMIN]))]
Editor = Annotated[User, Depends(require_role([Role.ACCOUNTANT, Role.ADMIN]))]


def current_date(settings: Settings) -> date:
    return datetime.now(ZoneInfo(settings.timezone)).date()


async def get_view_model(
    db: Annotated[AsyncSession, Depends(get_db)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> PeriodsViewModel:
    manager = FiscalPeriodLifecycleManager(
        SqlPeriodBackend(db), today=lambda: current_date(settings)
    )
    view_model = PeriodsViewModel(manager)
    await view_model.refresh()
    return view_model


ViewModel = Annotated[PeriodsViewModel, Depends(get_view_model)]


def _respond(view_model: PeriodsViewModel, result: ActionResult) -> dict:
    if not result.ok:
        raise result.error
    view = PeriodsViewResponse.from_snapshot(view_model.snapshot, view_model.expanded_year_ids)
    return {"data": ActionResponse(message=result.message, view=view)}


@router.get("/view")
async def get_view(
    _: Annotated[User, Depends(get_current_user)],
    view_model: ViewModel,
) -> dict:
    """Return fiscal years, monthly periods, entry counts and expansion state."""
    return {
        "data": PeriodsViewResponse.from_snapshot(
            view_model.snapshot, view_model.expanded_year_ids
        )
    }


@router.get("/fiscal-years")
async def list_fiscal_years(
    _: Annotated[User, Depends(get_current_user)],
    view_model: ViewModel,
) -> dict:
    snapshot = view_model.snapshot
    return {
        "data": [FiscalYearResponse.from_snapshot(snapshot, y) for y in snapshot.fiscal_years]
    }


@router.post("/fiscal-years", status_code=201)
async def create_fiscal_year(
    data: FiscalYearCreate,
    current_user: Editor,
    view_model: ViewModel,
) -> dict:
    """Create a fiscal year together with its monthly periods."""
    result = await view_model.create_fiscal_year(data, current_user.id)
    return _respond(view_model, result)


@router.post("/fiscal-years/{year_id}/initialize-periods")
async def initialize_monthly_periods(
    year_id: uuid.UUID,
    data: Confirmation,
    current_user: Editor,
    view_model: ViewModel,
) -> dict:
    result = await view_model.initialize_monthly_periods(year_id, current_user.id, data.confirmed)
    return _respond(view_model, result)


@router.post("/fiscal-years/{year_id}/close")
async def close_fiscal_year(
    year_id: uuid.UUID,
    data: Confirmation,
    current_user: Admin,
    view_model: ViewModel,
) -> dict:
    """Close a fiscal year and every monthly period that is still open."""
    result = await view_model.close_fiscal_year(year_id, current_user.id, data.confirmed)
    return _respond(view_model, result)


@router.post("/fiscal-years/{year_id}/reopen")
async def reopen_fiscal_year(
    year_id: uuid.UUID,
    data: FiscalYearReopen,
    current_user: Admin,
    view_model: ViewModel,
) -> dict:
    result = await view_model.reopen_fiscal_year(year_id, current_user.id, data.reason)
    return _respond(view_model, result)


@router.post("/fiscal-years/{year_id}/activate")
async def activate_fiscal_year(
    year_id: uuid.UUID,
    data: Confirmation,
    current_user: Admin,
    view_model: ViewModel,
) -> dict:
    result = await view_model.toggle_fiscal_year_active(
        year_id, True, current_user.id, data.confirmed
    )
    return _respond(view_model, result)


@router.post("/fiscal-years/{year_id}/deactivate")
async def deactivate_fiscal_year(
    year_id: uuid.UUID,
    data: Confirmation,
    current_user: Admin,
    view_model: ViewModel,
) -> dict:
    result = await view_model.toggle_fiscal_year_active(
        year_id, False, current_user.id, data.confirmed
    )
    return _respond(view_model, result)


@router.post("/monthly-periods/{period_id}/close")
async def close_monthly_period(
    period_id: uuid.UUID,
    data: Confirmation,
    current_user: Admin,
    view_model: ViewModel,
) -> dict:
    result = await view_model.close_monthly_period(period_id, current_user.id, data.confirmed)
    return _respond(view_model, result)


@router.post("/monthly-periods/{period_id}/activate")
async def activate_monthly_period(
    period_id: uuid.UUID,
    data: Confirmation,
    current_user: Editor,
    view_model: ViewModel,
) -> dict:
    result = await view_model.toggle_monthly_period_active(
        period_id, True, current_user.id, data.confirmed
    )
    return _respond(view_model, result)


@router.post("/monthly-periods/{period_id}/deactivate")
async def deactivate_monthly_period(
    period_id: uuid.UUID,
    data: Confirmation,
    current_user: Editor,
    view_model: ViewModel,
) -> dict:
    result = await view_model.toggle_monthly_period_active(
        period_id, False, current_user.id, data.confirmed
    )
    return _respond(view_model, result)
