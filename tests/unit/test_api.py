"""Tests for the REST API: routes, error mapping, acting user header."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import pytest
from fastapi.testclient import TestClient

from planpoker.api.app import create_app, status_for
from planpoker.config.schema import DatabaseConfig, PlanPokerConfig
from planpoker.core.errors import (
    ConfigError,
    NotFoundError,
    StateConflictError,
    StorageError,
    ValidationError,
)

if TYPE_CHECKING:
    from collections.abc import Iterator

# ── Helpers ──────────────────────────────────────────────────────


@pytest.fixture
def client() -> Iterator[TestClient]:
    """App on a fresh in-memory database, lifespan included."""
    config = PlanPokerConfig(database=DatabaseConfig(url="sqlite+aiosqlite://"))
    with TestClient(create_app(config)) as c:
        yield c


def _as(user: str) -> dict[str, str]:
    return {"X-User-Id": user}


def _create_session(client: TestClient, **body: Any) -> dict[str, Any]:
    payload = {"name": "Sprint 12", "session_code": "AB12CD", **body}
    resp = client.post("/api/sessions", json=payload, headers=_as("dealer"))
    assert resp.status_code == 201, resp.text
    return resp.json()["session"]  # type: ignore[no-any-return]


def _add_story(client: TestClient, session_id: str, title: str) -> dict[str, Any]:
    resp = client.post(f"/api/sessions/{session_id}/stories", json={"title": title})
    assert resp.status_code == 201, resp.text
    return resp.json()["story"]  # type: ignore[no-any-return]


# ── Error mapping ────────────────────────────────────────────────


class TestStatusFor:
    def test_mapping(self) -> None:
        assert status_for(NotFoundError("story", "x")) == 404
        assert status_for(ValidationError("bad")) == 422
        assert status_for(StateConflictError("nope")) == 409
        assert status_for(StorageError("down")) == 503
        assert status_for(ConfigError("broken")) == 500


# ── Health ───────────────────────────────────────────────────────


class TestHealth:
    def test_health(self, client: TestClient) -> None:
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_detailed(self, client: TestClient) -> None:
        data = client.get("/api/health/detailed").json()
        assert data["status"] == "ok"
        assert data["components"]["database"] == {"status": "ok", "sessions": {}}

    def test_detailed_counts_sessions(self, client: TestClient) -> None:
        _create_session(client)
        _create_session(client, session_code="ZZ99ZZ")
        data = client.get("/api/health/detailed").json()
        assert data["components"]["database"]["sessions"] == {"pending": 2}


# ── Sessions ─────────────────────────────────────────────────────


class TestSessionRoutes:
    def test_create_and_get(self, client: TestClient) -> None:
        created = _create_session(client)
        assert created["dealer"] == "dealer"
        assert created["status"] == "pending"
        assert created["session_code"] == "AB12CD"

        resp = client.get(f"/api/sessions/{created['id']}")
        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert resp.json()["session"]["name"] == "Sprint 12"

    def test_get_missing(self, client: TestClient) -> None:
        resp = client.get("/api/sessions/nope")
        assert resp.status_code == 404
        assert resp.json() == {"success": False, "error": "Session not found: nope"}

    def test_create_validation_error(self, client: TestClient) -> None:
        resp = client.post("/api/sessions", json={"name": "x", "session_code": "bad"})
        assert resp.status_code == 422
        assert resp.json()["success"] is False
        assert "Malformed session code" in resp.json()["error"]

    def test_list(self, client: TestClient) -> None:
        _create_session(client)
        data = client.get("/api/sessions").json()
        assert data["total"] == 1
        assert data["sessions"][0]["session_code"] == "AB12CD"

    def test_patch_status(self, client: TestClient) -> None:
        created = _create_session(client)
        resp = client.patch(
            f"/api/sessions/{created['id']}",
            json={"status": "active"},
            headers=_as("dealer"),
        )
        assert resp.status_code == 200
        session = resp.json()["session"]
        assert session["status"] == "active"
        assert session["started_at"] is not None

    def test_delete_active_conflicts(self, client: TestClient) -> None:
        created = _create_session(client, status="active")
        resp = client.delete(f"/api/sessions/{created['id']}")
        assert resp.status_code == 409
        assert resp.json()["success"] is False

    def test_delete_pending(self, client: TestClient) -> None:
        created = _create_session(client)
        resp = client.delete(f"/api/sessions/{created['id']}")
        assert resp.status_code == 200
        assert resp.json() == {"success": True}
        assert client.get(f"/api/sessions/{created['id']}").status_code == 404


class TestParticipantRoutes:
    def test_join_and_list(self, client: TestClient) -> None:
        created = _create_session(client)
        resp = client.post(
            "/api/sessions/join", json={"session_code": "ab12cd"}, headers=_as("amy")
        )
        assert resp.status_code == 200
        assert resp.json()["session"]["id"] == created["id"]

        data = client.get(f"/api/sessions/{created['id']}/participants").json()
        assert data["total"] == 1
        assert data["participants"][0]["user_id"] == "amy"

    def test_join_requires_user(self, client: TestClient) -> None:
        _create_session(client)
        resp = client.post("/api/sessions/join", json={"session_code": "AB12CD"})
        assert resp.status_code == 422
        assert "X-User-Id" in resp.json()["error"]

    def test_join_unknown_code(self, client: TestClient) -> None:
        resp = client.post(
            "/api/sessions/join", json={"session_code": "ZZZZZZ"}, headers=_as("amy")
        )
        assert resp.status_code == 404

    def test_leave(self, client: TestClient) -> None:
        created = _create_session(client)
        client.post(
            "/api/sessions/join", json={"session_code": "AB12CD"}, headers=_as("amy")
        )
        resp = client.post(f"/api/sessions/{created['id']}/leave", headers=_as("amy"))
        assert resp.json() == {"success": True}
        data = client.get(f"/api/sessions/{created['id']}/participants").json()
        assert data["total"] == 0


# ── Stories ──────────────────────────────────────────────────────


class TestStoryRoutes:
    def test_add_and_list(self, client: TestClient) -> None:
        session = _create_session(client)
        _add_story(client, session["id"], "One")
        _add_story(client, session["id"], "Two")
        data = client.get(f"/api/sessions/{session['id']}/stories").json()
        assert [s["sequence_order"] for s in data["stories"]] == [1, 2]

    def test_reorder_with_camel_case(self, client: TestClient) -> None:
        session = _create_session(client)
        _add_story(client, session["id"], "One")
        two = _add_story(client, session["id"], "Two")
        three = _add_story(client, session["id"], "Three")

        assert client.delete(f"/api/stories/{two['id']}").status_code == 200
        resp = client.post(
            "/api/stories/reorder",
            json={"orders": [{"storyId": three["id"], "newOrder": 2}]},
        )
        assert resp.status_code == 200
        data = client.get(f"/api/sessions/{session['id']}/stories").json()
        assert [s["sequence_order"] for s in data["stories"]] == [1, 2]

    def test_lifecycle(self, client: TestClient) -> None:
        session = _create_session(client, status="active")
        story = _add_story(client, session["id"], "One")
        _add_story(client, session["id"], "Two")

        started = client.post(f"/api/stories/{story['id']}/start").json()["story"]
        assert started["status"] == "voting"
        assert started["voting_started"] is not None

        done = client.post(
            f"/api/stories/{story['id']}/complete", json={"final_estimate": "5"}
        ).json()["story"]
        assert done["status"] == "completed"
        assert done["final_estimate"] == "5"
        assert done["consensus_achieved"] is True

        conflict = client.post(f"/api/stories/{story['id']}/start")
        assert conflict.status_code == 409

        reset = client.post(f"/api/stories/{story['id']}/reset").json()["story"]
        assert reset["status"] == "pending"
        assert reset["final_estimate"] is None

    def test_patch_unknown_status(self, client: TestClient) -> None:
        session = _create_session(client)
        story = _add_story(client, session["id"], "One")
        resp = client.patch(f"/api/stories/{story['id']}", json={"status": "done"})
        assert resp.status_code == 422

    def test_missing_story(self, client: TestClient) -> None:
        assert client.get("/api/stories/nope").status_code == 404
        assert client.post("/api/stories/nope/skip").status_code == 404


# ── Votes ────────────────────────────────────────────────────────


class TestVoteRoutes:
    def _voting(self, client: TestClient, voters: tuple[str, ...]) -> tuple[str, str]:
        session = _create_session(client, status="active")
        for voter in voters:
            client.post(
                "/api/sessions/join",
                json={"session_code": "AB12CD"},
                headers=_as(voter),
            )
        story = _add_story(client, session["id"], "One")
        client.post(f"/api/stories/{story['id']}/start")
        return session["id"], story["id"]

    def test_cast_and_revote(self, client: TestClient) -> None:
        session_id, story_id = self._voting(client, ("amy", "bob"))
        first = client.post(
            f"/api/stories/{story_id}/votes",
            json={"session_id": session_id, "vote_value": "5"},
            headers=_as("amy"),
        ).json()
        assert first["success"] is True
        assert first["version"] == 1
        assert first["revealed"] is False

        second = client.post(
            f"/api/stories/{story_id}/votes",
            json={"session_id": session_id, "vote_value": "8"},
            headers=_as("amy"),
        ).json()
        assert second["version"] == 2

        votes = client.get(f"/api/stories/{story_id}/votes").json()
        assert votes["total"] == 1
        assert votes["votes"][0]["vote_value"] == "8"
        history = client.get(
            f"/api/stories/{story_id}/votes", params={"include_history": "true"}
        ).json()
        assert history["total"] == 2

    def test_last_vote_reveals(self, client: TestClient) -> None:
        session_id, story_id = self._voting(client, ("amy", "bob"))
        for voter in ("amy", "bob"):
            result = client.post(
                f"/api/stories/{story_id}/votes",
                json={"session_id": session_id, "vote_value": "3"},
                headers=_as(voter),
            ).json()
        assert result["revealed"] is True
        story = client.get(f"/api/stories/{story_id}").json()["story"]
        assert story["status"] == "revealed"

    def test_voter_required(self, client: TestClient) -> None:
        session_id, story_id = self._voting(client, ("amy",))
        resp = client.post(
            f"/api/stories/{story_id}/votes",
            json={"session_id": session_id, "vote_value": "5"},
        )
        assert resp.status_code == 422

    def test_stats_and_clear(self, client: TestClient) -> None:
        session_id, story_id = self._voting(client, ("a", "b", "c", "d", "e"))
        for voter, value in zip("abcd", ["5", "5", "8", "?"], strict=True):
            client.post(
                f"/api/stories/{story_id}/votes",
                json={"session_id": session_id, "vote_value": value, "voter_id": voter},
            )
        stats = client.get(f"/api/stories/{story_id}/stats").json()
        assert stats["total_votes"] == 4
        assert stats["vote_counts"] == {"5": 2, "8": 1, "?": 1}
        assert stats["consensus"] is False
        assert stats["average"] == 6.0
        assert stats["median"] == 5.0
        assert stats["range"] == 3.0

        assert client.delete(f"/api/stories/{story_id}/votes").json() == {
            "success": True
        }
        assert client.get(f"/api/stories/{story_id}/stats").json()["total_votes"] == 0


# ── Analytics ────────────────────────────────────────────────────


class TestAnalyticsRoutes:
    def _estimate(self, client: TestClient) -> str:
        session = _create_session(client, status="active")
        for voter in ("amy", "bob"):
            client.post(
                "/api/sessions/join",
                json={"session_code": "AB12CD"},
                headers=_as(voter),
            )
        story = _add_story(client, session["id"], "One")
        client.post(f"/api/stories/{story['id']}/start")
        for voter, value in (("amy", "5"), ("bob", "8")):
            client.post(
                f"/api/stories/{story['id']}/votes",
                json={"session_id": session["id"], "vote_value": value},
                headers=_as(voter),
            )
        client.post(
            f"/api/stories/{story['id']}/complete", json={"final_estimate": "8"}
        )
        return session["id"]  # type: ignore[no-any-return]

    def test_metrics_empty(self, client: TestClient) -> None:
        resp = client.get("/api/analytics/metrics")
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["metrics"]["time_range"] == "30d"
        assert data["metrics"]["total_sessions"] == 0
        assert data["metrics"]["average_estimate"] is None

    def test_metrics(self, client: TestClient) -> None:
        self._estimate(client)
        metrics = client.get(
            "/api/analytics/metrics", params={"range": "7d"}
        ).json()["metrics"]
        assert metrics["time_range"] == "7d"
        assert metrics["completed_stories"] == 1
        assert metrics["average_velocity"] == 8.0
        assert metrics["consensus_rate"] == 100.0
        assert metrics["participant_engagement"] == 100.0

    def test_velocity_and_trends(self, client: TestClient) -> None:
        session_id = self._estimate(client)
        velocity = client.get("/api/analytics/velocity").json()["velocity"]
        assert len(velocity) == 1
        assert velocity[0]["session_id"] == session_id
        assert velocity[0]["story_points"] == 8.0

        trends = client.get("/api/analytics/trends", params={"range": "all"}).json()
        assert trends["trends"][0]["complexity"] == "Medium"
        assert trends["trends"][0]["session_count"] == 1

    def test_consensus(self, client: TestClient) -> None:
        self._estimate(client)
        rows = client.get("/api/analytics/consensus").json()["stories"]
        assert len(rows) == 1
        assert rows[0]["story_title"] == "One"
        assert rows[0]["voter_count"] == 2
        assert rows[0]["std_dev"] == 1.5

    def test_participants(self, client: TestClient) -> None:
        self._estimate(client)
        voters = client.get("/api/analytics/participants").json()["participants"]
        assert [v["user_id"] for v in voters] == ["amy", "bob"]
        assert [v["accuracy_score"] for v in voters] == [0.0, 100.0]

    @pytest.mark.parametrize(
        "path", ["metrics", "velocity", "trends", "consensus", "participants"]
    )
    def test_unknown_range(self, client: TestClient, path: str) -> None:
        resp = client.get(f"/api/analytics/{path}", params={"range": "1y"})
        assert resp.status_code == 422
        assert resp.json()["success"] is False
        assert "Unknown time range" in resp.json()["error"]
