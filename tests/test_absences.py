from datetime import date

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from academy.api.v1.absences import service as absence_service


TODAY = date(2025, 3, 20)


async def _absent(client: AsyncClient, feed_body, student_id, day: date, **extra) -> None:
    response = await client.post(
        "/api/v1/feeds/save",
        json=feed_body(student_id, day, "absent", absence_reason="unexcused", **extra),
    )
    assert response.status_code == 201


@pytest.mark.asyncio
async def test_fourth_absence_in_month_meets_threshold(client: AsyncClient, db_session: AsyncSession, seeded, feed_body) -> None:
    for day in (3, 7, 12):
        await _absent(client, feed_body, seeded.student_b, date(2025, 3, day))
    # Last month and after today do not count.
    await _absent(client, feed_body, seeded.student_b, date(2025, 2, 27))
    await _absent(client, feed_body, seeded.student_b, date(2025, 3, 25))

    result = await absence_service.count_monthly_absences(db_session, seeded.tenant, seeded.student_b, today=TODAY)
    assert result.count == 3
    assert result.alert is False

    await _absent(client, feed_body, seeded.student_b, date(2025, 3, 18))
    result = await absence_service.count_monthly_absences(db_session, seeded.tenant, seeded.student_b, today=TODAY)
    assert result.count == 4
    assert result.threshold == 4
    assert result.alert is True
    assert result.month_start == date(2025, 3, 1)


@pytest.mark.asyncio
async def test_present_and_deleted_records_are_not_counted(client: AsyncClient, db_session: AsyncSession, seeded, feed_body) -> None:
    await _absent(client, feed_body, seeded.student_a, date(2025, 3, 3))
    await client.post("/api/v1/feeds/save", json=feed_body(seeded.student_a, date(2025, 3, 4)))
    deleted = await client.post(
        "/api/v1/feeds/save",
        json=feed_body(seeded.student_a, date(2025, 3, 5), "absent", absence_reason="sick"),
    )
    await client.delete(f"/api/v1/feeds/{deleted.json()['feed_id']}")

    result = await absence_service.count_monthly_absences(db_session, seeded.tenant, seeded.student_a, today=TODAY)
    assert result.count == 1


@pytest.mark.asyncio
async def test_absence_listing_carries_monthly_count(client: AsyncClient, db_session: AsyncSession, seeded, feed_body) -> None:
    today = date.today()
    await _absent(client, feed_body, seeded.student_a, today, notify_parent=True)

    response = await client.get(
        "/api/v1/absences",
        params={"start_date": today.isoformat(), "end_date": today.isoformat()},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["threshold"] == 4
    assert len(data["absences"]) == 1
    row = data["absences"][0]
    assert row["student_id"] == str(seeded.student_a)
    assert row["absence_reason"] == "unexcused"
    assert row["notify_parent"] is True
    assert row["monthly_count"] == 1
    assert row["alert"] is False

    monthly = (await client.get(f"/api/v1/absences/monthly/{seeded.student_a}")).json()
    assert monthly["count"] == 1
    assert monthly["as_of"] == today.isoformat()


@pytest.mark.asyncio
async def test_absence_listing_rejects_inverted_range(client: AsyncClient, seeded) -> None:
    response = await client.get(
        "/api/v1/absences",
        params={"start_date": "2025-03-10", "end_date": "2025-03-01"},
    )
    assert response.status_code == 400
