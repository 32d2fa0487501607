import asyncio
from datetime import date

from fiscal_periods.periods.lifecycle import Outcome
from fiscal_periods.periods.view_model import PeriodsViewModel


async def test_refresh_auto_expands_and_toggles(manager, backend, make_year, make_period):
    fy2024 = make_year("FY 2024", date(2024, 1, 1), date(2024, 12, 31))
    fy2023 = make_year("FY 2023", date(2023, 1, 1), date(2023, 12, 31))
    backend.add_year(fy2024, make_period(fy2024, 2024, 3))
    backend.add_year(fy2023, make_period(fy2023, 2023, 3))
    view_model = PeriodsViewModel(manager)

    await view_model.refresh()

    assert view_model.expanded_year_ids == [fy2024.id]
    view_model.toggle_year_expansion(fy2023.id)
    view_model.toggle_year_expansion(fy2024.id)
    assert view_model.is_expanded(fy2023.id)
    assert not view_model.is_expanded(fy2024.id)


async def test_activated_year_stays_expanded(manager, backend, actor_id, make_year, make_period):
    fy2024 = make_year("FY 2024", date(2024, 1, 1), date(2024, 12, 31))
    fy2025 = make_year("FY 2025", date(2025, 1, 1), date(2025, 12, 31))
    backend.add_year(fy2024, make_period(fy2024, 2024, 3))
    backend.add_year(fy2025, make_period(fy2025, 2025, 1))
    view_model = PeriodsViewModel(manager)
    await view_model.refresh()

    result = await view_model.toggle_fiscal_year_active(fy2025.id, True, actor_id, confirmed=True)

    assert result.ok
    assert set(view_model.expanded_year_ids) == {fy2024.id, fy2025.id}
    assert view_model.snapshot.get_year(fy2025.id).is_active


async def test_needs_confirmation_leaves_snapshot_untouched(manager, backend, actor_id, make_year):
    year = make_year("FY 2024", date(2024, 1, 1), date(2024, 12, 31))
    backend.add_year(year)
    view_model = PeriodsViewModel(manager)
    before = await view_model.refresh()

    result = await view_model.close_fiscal_year(year.id, actor_id)

    assert result.outcome is Outcome.NEEDS_CONFIRMATION
    assert view_model.snapshot is before
    assert not view_model.is_processing(year.id)


async def test_duplicate_action_is_blocked_while_processing(manager, backend, actor_id, make_year):
    year = make_year("FY 2024", date(2024, 1, 1), date(2024, 12, 31))
    backend.add_year(year)
    view_model = PeriodsViewModel(manager)
    await view_model.refresh()

    release = asyncio.Event()
    original_close = backend.close_fiscal_year

    async def slow_close(year_id, actor):
        await release.wait()
        await original_close(year_id, actor)

    backend.close_fiscal_year = slow_close

    first = asyncio.create_task(view_model.close_fiscal_year(year.id, actor_id, confirmed=True))
    await asyncio.sleep(0)
    assert view_model.is_processing(year.id)

    second = await view_model.close_fiscal_year(year.id, actor_id, confirmed=True)
    release.set()
    first_result = await first

    assert second.outcome is Outcome.REJECTED
    assert first_result.ok
    assert backend.call_names() == ["close_fiscal_year"]
    assert not view_model.is_processing(year.id)


async def test_processing_marker_released_after_failure(manager, backend, actor_id, make_year):
    year = make_year("FY 2024", date(2024, 1, 1), date(2024, 12, 31))
    backend.add_year(year)
    view_model = PeriodsViewModel(manager)
    await view_model.refresh()
    backend.fail_with = RuntimeError("backend unavailable")

    result = await view_model.close_fiscal_year(year.id, actor_id, confirmed=True)

    assert result.outcome is Outcome.FAILED
    assert not view_model.is_processing(year.id)
    assert not view_model.snapshot.get_year(year.id).is_closed


async def test_initialized_year_is_expanded(manager, backend, actor_id, make_year, make_period):
    fy2024 = make_year("FY 2024", date(2024, 1, 1), date(2024, 12, 31))
    fy2022 = make_year("FY 2022", date(2022, 1, 1), date(2022, 12, 31))
    backend.add_year(fy2024, make_period(fy2024, 2024, 3))
    backend.add_year(fy2022)
    view_model = PeriodsViewModel(manager)
    await view_model.refresh()

    result = await view_model.initialize_monthly_periods(fy2022.id, actor_id, confirmed=True)

    assert result.ok
    assert view_model.is_expanded(fy2022.id)
    assert view_model.is_expanded(fy2024.id)
    assert len(view_model.snapshot.periods_for(fy2022.id)) == 12
