import asyncio

from fiscal_periods.periods.router import current_date

BASE = "/api/fiscal-periods"


async def _create_current_year(client, headers, settings) -> dict:
    today = current_date(settings)
    response = await client.post(
        f"{BASE}/fiscal-years",
        json={
            "name": f"FY {today.year}",
            "fiscal_year_type": "calendar",
            "start_date": f"{today.year}-01-01",
            "end_date": f"{today.year}-12-31",
        },
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


async def test_health(client):
    response = await client.get("/api/system/health")

    assert response.status_code == 200
    assert response.json() == {"data": {"status": "healthy"}}


async def test_view_requires_token(client):
    response = await client.get(f"{BASE}/view")

    assert response.status_code in (401, 403)


async def test_empty_view(client, admin, auth_headers):
    response = await client.get(f"{BASE}/view", headers=auth_headers(admin))

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["fiscal_years"] == []
    assert data["expanded_year_ids"] == []
    assert data["current_period_id"] is None


async def test_create_year_returns_expanded_view(client, admin, auth_headers, settings):
    data = await _create_current_year(client, auth_headers(admin), settings)

    [year] = data["view"]["fiscal_years"]
    assert year["monthly_periods_count"] == 12
    assert year["state"] == "open_inactive"
    assert set(year["allowed_actions"]) == {"close", "activate"}
    assert data["view"]["expanded_year_ids"] == [year["id"]]
    assert data["view"]["current_period_id"] is not None
    assert len(data["view"]["monthly_periods"]) == 12


async def test_create_with_inverted_dates_is_rejected(client, admin, auth_headers):
    response = await client.post(
        f"{BASE}/fiscal-years",
        json={"name": "Backwards", "start_date": "2024-12-31", "end_date": "2024-01-01"},
        headers=auth_headers(admin),
    )

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


async def test_close_requires_confirmation_then_cascades(client, admin, auth_headers, settings):
    headers = auth_headers(admin)
    year = (await _create_current_year(client, headers, settings))["view"]["fiscal_years"][0]

    pending = await client.post(f"{BASE}/fiscal-years/{year['id']}/close", json={}, headers=headers)
    assert pending.status_code == 409
    assert pending.json()["error"]["code"] == "CONFIRMATION_REQUIRED"

    done = await client.post(
        f"{BASE}/fiscal-years/{year['id']}/close", json={"confirmed": True}, headers=headers
    )
    assert done.status_code == 200
    view = done.json()["data"]["view"]
    assert view["fiscal_years"][0]["is_closed"]
    assert all(p["is_closed"] for p in view["monthly_periods"])


async def test_reopen_with_blank_reason_is_rejected(client, admin, auth_headers, settings):
    headers = auth_headers(admin)
    year = (await _create_current_year(client, headers, settings))["view"]["fiscal_years"][0]
    await client.post(f"{BASE}/fiscal-years/{year['id']}/close", json={"confirmed": True}, headers=headers)

    blank = await client.post(f"{BASE}/fiscal-years/{year['id']}/reopen", json={"reason": "  "}, headers=headers)
    reopened = await client.post(
        f"{BASE}/fiscal-years/{year['id']}/reopen", json={"reason": "Audit finding"}, headers=headers
    )

    assert blank.status_code == 422
    assert reopened.status_code == 200
    assert reopened.json()["data"]["view"]["fiscal_years"][0]["state"] == "open_inactive"


async def test_period_activation_follows_year(client, admin, auth_headers, settings):
    headers = auth_headers(admin)
    view = (await _create_current_year(client, headers, settings))["view"]
    year_id = view["fiscal_years"][0]["id"]
    current_id = view["current_period_id"]
    other = next(p for p in view["monthly_periods"] if p["id"] != current_id)

    rejected = await client.post(
        f"{BASE}/monthly-periods/{other['id']}/activate", json={"confirmed": True}, headers=headers
    )
    assert rejected.status_code == 422

    activated = await client.post(
        f"{BASE}/fiscal-years/{year_id}/activate", json={"confirmed": True}, headers=headers
    )
    assert activated.status_code == 200
    periods = activated.json()["data"]["view"]["monthly_periods"]
    assert [p["id"] for p in periods if p["is_active"]] == [current_id]

    period = await client.post(
        f"{BASE}/monthly-periods/{other['id']}/activate", json={"confirmed": True}, headers=headers
    )
    assert period.status_code == 200


async def test_accountant_cannot_close_year(client, admin, accountant, auth_headers, settings):
    year = (await _create_current_year(client, auth_headers(admin), settings))["view"]["fiscal_years"][0]

    response = await client.post(
        f"{BASE}/fiscal-years/{year['id']}/close",
        json={"confirmed": True},
        headers=auth_headers(accountant),
    )

    assert response.status_code == 403


async def test_unknown_year_is_404(client, admin, auth_headers):
    response = await client.post(
        f"{BASE}/fiscal-years/00000000-0000-0000-0000-000000000000/close",
        json={"confirmed": True},
        headers=auth_headers(admin),
    )

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "FISCALYEAR_NOT_FOUND"


async def test_concurrent_year_activations_leave_one_active(client, admin, auth_headers, settings):
    headers = auth_headers(admin)
    current = (await _create_current_year(client, headers, settings))["view"]["fiscal_years"][0]
    last_year = current_date(settings).year - 1
    previous = await client.post(
        f"{BASE}/fiscal-years",
        json={"name": f"FY {last_year}", "start_date": f"{last_year}-01-01", "end_date": f"{last_year}-12-31"},
        headers=headers,
    )
    previous_id = next(
        y["id"] for y in previous.json()["data"]["view"]["fiscal_years"] if y["id"] != current["id"]
    )

    responses = await asyncio.gather(
        *(
            client.post(f"{BASE}/fiscal-years/{year_id}/activate", json={"confirmed": True}, headers=headers)
            for year_id in (current["id"], previous_id)
        )
    )

    statuses = sorted(r.status_code for r in responses)
    assert statuses[0] == 200
    assert statuses[1] in (409, 422)
    view = (await client.get(f"{BASE}/view", headers=headers)).json()["data"]
    assert sum(y["is_active"] for y in view["fiscal_years"]) == 1
