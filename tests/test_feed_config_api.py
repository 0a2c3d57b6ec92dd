import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_option_sets_in_display_order(client: AsyncClient, seeded) -> None:
    response = await client.get("/api/v1/feed-config/option-sets")
    assert response.status_code == 200
    sets = response.json()
    assert [s["set_key"] for s in sets] == ["homework", "attitude", "weekly_test"]
    assert [o["label"] for o in sets[0]["options"]] == ["Done", "Missed"]
    assert sets[2]["kind"] == "exam"


@pytest.mark.asyncio
async def test_settings_defaults_when_unconfigured(client: AsyncClient, db_session) -> None:
    response = await client.get("/api/v1/feed-config/settings")
    data = response.json()
    assert data["operation_mode"] == "homeroom"
    assert data["makeup_defaults"]["sick"] is True
    assert data["makeup_defaults"]["unexcused"] is False
    assert data["absence_alert_threshold"] == 4
    assert data["makeup_system_enabled"] is True
