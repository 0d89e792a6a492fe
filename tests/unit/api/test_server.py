"""
Unit Tests for the Mission API

Runs the FastAPI app in-process with an orchestrator whose runner is
mocked, so no Codex binary is needed.
"""

import pytest
from fastapi.testclient import TestClient

from conftest import CONTINUE, agent_run, plan_run
from missionforce.api.server import create_app
from missionforce.application.orchestrator import MissionOrchestrator
from missionforce.application.settings import MissionforceSettings


@pytest.fixture
def orchestrator(mock_runner):
    return MissionOrchestrator(runner=mock_runner)


@pytest.fixture
def client(orchestrator):
    app = create_app(orchestrator=orchestrator, settings=MissionforceSettings(debug=False))
    with TestClient(app) as test_client:
        yield test_client


def script_mission(mock_runner):
    mock_runner.run_once.side_effect = [
        plan_run({"name": "implementer"}, summary="Ship it"),
        agent_run(CONTINUE),
    ]


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["uptime"] >= 0


class TestMissions:
    def test_empty_list(self, client):
        response = client.get("/api/missions")
        assert response.status_code == 200
        assert response.json() == {"missions": []}

    @pytest.mark.parametrize("body", [{}, {"goal": ""}, {"goal": "   "}])
    def test_goal_is_required(self, client, body):
        response = client.post("/api/missions", json=body)
        assert response.status_code == 400
        assert response.json()["detail"] == "goal is required"

    def test_create_get_and_list(self, client, mock_runner):
        script_mission(mock_runner)

        response = client.post(
            "/api/missions", json={"goal": "Add /health", "context": {"repo": "api"}}
        )

        assert response.status_code == 201
        mission = response.json()["mission"]
        assert mission["status"] == "completed"
        assert mission["summary"] == "Ship it"
        assert mission["context"] == {"repo": "api"}
        assert [a["id"] for a in mission["agents"]] == ["implementer__iter0"]

        fetched = client.get(f"/api/missions/{mission['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["mission"]["id"] == mission["id"]

        listing = client.get("/api/missions").json()["missions"]
        assert listing == [
            {
                "id": mission["id"],
                "goal": "Add /health",
                "status": "completed",
                "createdAt": mission["created_at"],
                "updatedAt": mission["updated_at"],
                "agentCount": 1,
                "summary": "Ship it",
            }
        ]

    def test_failed_mission_is_still_created(self, client, mock_runner):
        mock_runner.run_once.side_effect = [plan_run({"name": "a"})] + [
            agent_run({"action": "abort"})
        ] * 3

        response = client.post("/api/missions", json={"goal": "Goal"})

        assert response.status_code == 201
        assert response.json()["mission"]["status"] == "failed"
        assert "Unsupported CONTROL_JSON action: abort" in response.json()["mission"]["error"]

    def test_unknown_mission(self, client):
        response = client.get("/api/missions/does-not-exist")
        assert response.status_code == 404
        assert response.json()["detail"] == "Mission not found"

    def test_orchestrator_crash_is_500(self, client, orchestrator, monkeypatch):
        async def boom(goal, context=None):
            raise RuntimeError("runner wiring broken")

        monkeypatch.setattr(orchestrator, "create_mission", boom)

        response = client.post("/api/missions", json={"goal": "Goal"})

        assert response.status_code == 500
        assert response.json()["detail"] == "runner wiring broken"


class TestWebSocket:
    def test_streams_lifecycle_events(self, client, mock_runner):
        script_mission(mock_runner)

        with client.websocket_connect("/ws") as websocket:
            client.post("/api/missions", json={"goal": "Add /health"})
            types = [websocket.receive_json()["type"] for _ in range(4)]

        assert types == [
            "mission:created",
            "mission:planning",
            "mission:planned",
            "mission:executing",
        ]
