"""
tests/test_api_routes.py — FastAPI Route Integration Tests
============================================================
Integration tests for the dashboard API using the FastAPI TestClient.

These tests verify:
- Health endpoint availability
- Shape of the public raid and quota listings
- Unknown guilds are 404 on reads and are not created by them
- Quota edits with a dashboard token
"""

from __future__ import annotations

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

import raidkeeper.api.routes.quotas as quota_routes
import raidkeeper.api.routes.raids as raid_routes
from raidkeeper.api.deps import issue_admin_token
from raidkeeper.database.models import GuildConfig
from raidkeeper.services.guild_repository import (
    RaidRecord,
    append_claim,
    get_or_create_guild,
    insert_raid,
    update_guild,
)
from raidkeeper.services.quota_service import configure_ledger, credit, get_ledger

GUILD = 123456789012345678
ROLE = 222


@pytest.fixture(autouse=True)
def _use_test_engine(db_engine):
    """Point every route's engine dependency at the in-memory database."""
    from raidkeeper.api.main import app

    app.dependency_overrides[quota_routes.get_engine] = lambda: db_engine
    app.dependency_overrides[raid_routes.get_engine] = lambda: db_engine
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def admin_token():
    return issue_admin_token(99999, [GUILD])


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


# ===========================================================================
# Health endpoint
# ===========================================================================
class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


# ===========================================================================
# Raids
# ===========================================================================
class TestRaidEndpoints:
    def test_empty_guild(self, client):
        resp = client.get(f"/api/guilds/{GUILD}/raids")
        assert resp.status_code == 200
        assert resp.json() == []

    def test_snowflakes_as_strings_and_claims_grouped(self, client, db_engine):
        insert_raid(db_engine, RaidRecord(
            guild_id=GUILD,
            vc_id=987654321098765432,
            section_identifier="main",
            dungeon_code="SHATTERS",
            initiator_id=7,
            afk_check_channel_id=11,
            control_panel_channel_id=12,
            afk_check_message_id=13,
            control_panel_message_id=14,
            phase="OPEN",
        ))
        append_claim(db_engine, 987654321098765432, 7, "KNIGHT")
        append_claim(db_engine, 987654321098765432, 8, "KNIGHT")

        data = client.get(f"/api/guilds/{GUILD}/raids").json()
        assert len(data) == 1
        raid = data[0]
        assert raid["vc_id"] == "987654321098765432"
        assert raid["guild_id"] == str(GUILD)
        assert raid["phase"] == "OPEN"
        assert raid["claims"] == {"KNIGHT": ["7", "8"]}


# ===========================================================================
# Quotas: public reads
# ===========================================================================
def _guild_rows(db_engine) -> int:
    with Session(db_engine) as session:
        return session.scalar(select(func.count()).select_from(GuildConfig))


class TestQuotaReads:
    def test_list(self, client, db_engine):
        get_or_create_guild(db_engine, GUILD)
        configure_ledger(db_engine, GUILD, ROLE, threshold=3, point_values={"Parse": 1})
        data = client.get(f"/api/guilds/{GUILD}/quotas").json()
        assert [q["role_id"] for q in data] == [str(ROLE)]
        assert data[0]["threshold"] == 3
        assert data[0]["next_reset"] is None  # manual resets by default

    def test_get_includes_standings(self, client, db_engine):
        get_or_create_guild(db_engine, GUILD)
        configure_ledger(db_engine, GUILD, ROLE, threshold=2, point_values={"Parse": 1})
        credit(db_engine, GUILD, ROLE, 7, "Parse", 2)

        resp = client.get(f"/api/guilds/{GUILD}/quotas/{ROLE}")
        assert resp.status_code == 200
        data = resp.json()
        assert data["entries"] == 1
        row = data["standings"][0]
        assert row["member_id"] == "7"
        assert row["points"] == 2
        assert row["breakdown"]["Parse"] == {"count": 2, "points": 2}

    def test_get_missing_returns_404(self, client, db_engine):
        get_or_create_guild(db_engine, GUILD)
        assert client.get(f"/api/guilds/{GUILD}/quotas/999").status_code == 404

    def test_unknown_guild_is_404_and_not_created(self, client, db_engine):
        assert client.get(f"/api/guilds/{GUILD}/quotas").status_code == 404
        resp = client.get(f"/api/guilds/{GUILD}/quotas/{ROLE}")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Guild not found"
        assert _guild_rows(db_engine) == 0

    def test_scheduled_guild_reports_next_reset(self, client, db_engine):
        get_or_create_guild(db_engine, GUILD)
        update_guild(db_engine, GUILD, quota_reset_day=0, quota_reset_time=2359)
        configure_ledger(db_engine, GUILD, ROLE, threshold=3)

        data = client.get(f"/api/guilds/{GUILD}/quotas").json()
        assert data[0]["next_reset"] is not None


# ===========================================================================
# Quotas: admin edits
# ===========================================================================
class TestQuotaEdits:
    def test_put_creates_ledger(self, client, db_engine, admin_token):
        resp = client.put(
            f"/api/guilds/{GUILD}/quotas/{ROLE}",
            json={"threshold": 5, "point_values": {"RunComplete:SHATTERS": 3}},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 200
        assert resp.json()["threshold"] == 5
        assert get_ledger(db_engine, GUILD, ROLE).point_values == {"RunComplete:SHATTERS": 3}
        # the write registers the guild, so reads work afterwards
        assert client.get(f"/api/guilds/{GUILD}/quotas/{ROLE}").status_code == 200

    def test_put_response_uses_reset_schedule(self, client, db_engine, admin_token):
        get_or_create_guild(db_engine, GUILD)
        update_guild(db_engine, GUILD, quota_reset_day=0, quota_reset_time=2359)

        resp = client.put(
            f"/api/guilds/{GUILD}/quotas/{ROLE}",
            json={"threshold": 5},
            headers=_auth(admin_token),
        )
        data = resp.json()
        assert data["next_reset"] is not None
        assert data["next_reset"] == client.get(f"/api/guilds/{GUILD}/quotas/{ROLE}").json()["next_reset"]

    def test_put_rejects_negative_threshold(self, client, admin_token):
        resp = client.put(
            f"/api/guilds/{GUILD}/quotas/{ROLE}",
            json={"threshold": -1},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 422

    def test_delete(self, client, db_engine, admin_token):
        configure_ledger(db_engine, GUILD, ROLE, threshold=1)
        resp = client.delete(f"/api/guilds/{GUILD}/quotas/{ROLE}", headers=_auth(admin_token))
        assert resp.status_code == 200
        assert resp.json() == {"deleted": True}
        assert get_ledger(db_engine, GUILD, ROLE) is None

    def test_delete_missing_returns_404(self, client, admin_token):
        resp = client.delete(f"/api/guilds/{GUILD}/quotas/{ROLE}", headers=_auth(admin_token))
        assert resp.status_code == 404
