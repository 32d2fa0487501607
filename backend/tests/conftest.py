from __future__ import annotations

import uuid
from collections import Counter
from dataclasses import replace
from datetime import date, timedelta

import httpx
import pytest
from dateutil.relativedelta import relativedelta

from fiscal_periods.auth.models import Role, User
from fiscal_periods.auth.utils import create_access_token
from fiscal_periods.config import Settings
from fiscal_periods.database import build_engine, build_session_factory, create_all
from fiscal_periods.main import create_app
from fiscal_periods.periods.lifecycle import (
    FiscalPeriodLifecycleManager,
    FiscalYearSnapshot,
    MonthlyPeriodSnapshot,
)
from fiscal_periods.periods.service import month_spans

TODAY = date(2024, 3, 15)


class FakePeriodBackend:
    """In-memory period service that records every mutating call."""

    def __init__(self):
        self.years: dict[uuid.UUID, FiscalYearSnapshot] = {}
        self.periods: dict[uuid.UUID, MonthlyPeriodSnapshot] = {}
        self.entry_period_ids: list[uuid.UUID | None] = []
        self.calls: list[tuple] = []
        self.fail_with: Exception | None = None

    def add_year(self, year: FiscalYearSnapshot, *periods: MonthlyPeriodSnapshot) -> None:
        self.years[year.id] = year
        for period in periods:
            self.periods[period.id] = period

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        if self.fail_with is not None:
            raise self.fail_with

    def _periods_of(self, year_id):
        return [p for p in self.periods.values() if p.fiscal_year_id == year_id]

    def _generate_periods(self, year: FiscalYearSnapshot) -> None:
        for start, end in month_spans(year.start_date, year.end_date):
            period = MonthlyPeriodSnapshot(
                id=uuid.uuid4(),
                fiscal_year_id=year.id,
                name=start.strftime("%B %Y"),
                start_date=start,
                end_date=end,
                year=start.year,
                month=start.month,
            )
            self.periods[period.id] = period

    # -- reads --

    async def fetch_fiscal_years(self):
        counts = Counter(p.fiscal_year_id for p in self.periods.values())
        years = [replace(y, monthly_periods_count=counts[y.id]) for y in self.years.values()]
        return sorted(years, key=lambda y: y.start_date, reverse=True)

    async def fetch_monthly_periods(self):
        joined = []
        for period in self.periods.values():
            owner = self.years[period.fiscal_year_id]
            joined.append(
                replace(
                    period,
                    fiscal_year_name=owner.name,
                    fiscal_year_is_closed=owner.is_closed,
                    fiscal_year_is_active=owner.is_active,
                )
            )
        return sorted(joined, key=lambda p: p.start_date, reverse=True)

    async def fetch_journal_entry_period_ids(self):
        return list(self.entry_period_ids)

    # -- mutations --

    async def create_fiscal_year(self, form, actor_id, today):
        self._record("create_fiscal_year", form.name, actor_id)
        year = FiscalYearSnapshot(
            id=uuid.uuid4(),
            name=form.name.strip(),
            start_date=form.start_date,
            end_date=form.end_date,
            fiscal_year_type=form.fiscal_year_type,
            notes=form.notes,
        )
        self.years[year.id] = year
        self._generate_periods(year)
        return year

    async def initialize_monthly_periods(self, year_id, actor_id, today):
        self._record("initialize_monthly_periods", year_id, actor_id)
        self._generate_periods(self.years[year_id])

    async def close_fiscal_year(self, year_id, actor_id):
        self._record("close_fiscal_year", year_id, actor_id)
        self.years[year_id] = replace(self.years[year_id], is_closed=True, is_active=False)
        for period in self._periods_of(year_id):
            if not period.is_closed:
                self.periods[period.id] = replace(period, is_closed=True, is_active=False)

    async def reopen_fiscal_year(self, year_id, actor_id, reason):
        self._record("reopen_fiscal_year", year_id, actor_id, reason)
        self.years[year_id] = replace(self.years[year_id], is_closed=False, is_active=False)
        for period in self._periods_of(year_id):
            self.periods[period.id] = replace(period, is_closed=False, is_active=False)

    async def toggle_fiscal_year_active(self, year_id, activate, actor_id, today):
        self._record("toggle_fiscal_year_active", year_id, activate, actor_id)
        self.years[year_id] = replace(self.years[year_id], is_active=activate)
        for period in self._periods_of(year_id):
            if not activate:
                self.periods[period.id] = replace(period, is_active=False)
            elif (period.year, period.month) == (today.year, today.month) and not period.is_closed:
                self.periods[period.id] = replace(period, is_active=True)

    async def close_monthly_period(self, period_id, actor_id):
        self._record("close_monthly_period", period_id, actor_id)
        self.periods[period_id] = replace(self.periods[period_id], is_closed=True, is_active=False)

    async def toggle_monthly_period_active(self, period_id, activate, actor_id):
        self._record("toggle_monthly_period_active", period_id, activate, actor_id)
        self.periods[period_id] = replace(self.periods[period_id], is_active=activate)


# ---------------------------------------------------------------------------
# Snapshot builders
# ---------------------------------------------------------------------------


@pytest.fixture
def make_year():
    def _make(name: str, start: date, end: date, **kwargs) -> FiscalYearSnapshot:
        return FiscalYearSnapshot(id=uuid.uuid4(), name=name, start_date=start, end_date=end, **kwargs)

    return _make


@pytest.fixture
def make_period():
    def _make(fiscal_year: FiscalYearSnapshot, year: int, month: int, **kwargs) -> MonthlyPeriodSnapshot:
        start = date(year, month, 1)
        return MonthlyPeriodSnapshot(
            id=uuid.uuid4(),
            fiscal_year_id=fiscal_year.id,
            name=start.strftime("%B %Y"),
            start_date=start,
            end_date=start + relativedelta(months=1) - timedelta(days=1),
            year=year,
            month=month,
            **kwargs,
        )

    return _make


@pytest.fixture
def actor_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def backend() -> FakePeriodBackend:
    return FakePeriodBackend()


@pytest.fixture
def manager(backend) -> FiscalPeriodLifecycleManager:
    return FiscalPeriodLifecycleManager(backend, today=lambda: TODAY)


# ---------------------------------------------------------------------------
# Database and HTTP
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'fiscal_periods.db'}",
        secret_key="test-secret",
        timezone="UTC",
    )


@pytest.fixture
async def engine(settings):
    engine = build_engine(settings.database_url)
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db(engine):
    session_factory = build_session_factory(engine)
    async with session_factory() as session:
        yield session


async def _add_user(db, email: str, role: Role) -> User:
    user = User(email=email, full_name=email.split("@")[0].title(), role=role)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest.fixture
async def admin(db) -> User:
    return await _add_user(db, "admin@example.com", Role.ADMIN)


@pytest.fixture
async def accountant(db) -> User:
    return await _add_user(db, "accountant@example.com", Role.ACCOUNTANT)


@pytest.fixture
async def client(settings, engine):
    app = create_app(settings)
    app.state.session_factory = build_session_factory(engine)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client


@pytest.fixture
def auth_headers(settings):
    def _headers(user: User) -> dict:
        token = create_access_token(user.id, user.role.value, settings)
        return {"Authorization": f"Bearer {token}"}

    return _headers
