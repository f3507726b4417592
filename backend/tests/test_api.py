"""
Tests for the HTTP and WebSocket surface.
"""
from types import SimpleNamespace

import jwt
import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from sprintsync.infrastructure.auth import TokenAuthenticator
from sprintsync.infrastructure.broadcast import BroadcastChannel
from sprintsync.infrastructure.exceptions import ForbiddenError, UnauthorizedError
from sprintsync.main import create_app
from sprintsync.models.common import new_id

from conftest import DEVELOPER, OUTSIDER, OWNER


@pytest.fixture
async def project_id(client, auth_headers, container):
    resp = await client.post("/api/projects", json={"name": "Apollo"}, headers=auth_headers())
    assert resp.status_code == 201
    pid = resp.json()["data"]["id"]
    resp = await client.post(
        f"/api/projects/{pid}/members",
        json={"userId": DEVELOPER, "role": "Developer"},
        headers=auth_headers(),
    )
    assert resp.status_code == 200
    return pid


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    async def test_root(self, client):
        response = await client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["service"] == "SprintSync API"

    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        components = response.json()["components"]
        assert "cache" in components
        assert "broadcast" in components

    async def test_readiness(self, client):
        response = await client.get("/health/ready")
        assert response.status_code == 200
        assert response.json()["checks"]["database"] == "ok"

    async def test_liveness(self, client):
        response = await client.get("/health/live")
        assert response.json() == {"alive": True}


class TestAuthentication:
    """Tests for bearer token handling."""

    async def test_missing_token(self, client):
        response = await client.get(f"/api/sprints/{new_id()}")
        assert response.status_code == 401
        assert response.json()["success"] is False

    async def test_tampered_token(self, client):
        response = await client.get(
            f"/api/sprints/{new_id()}", headers={"Authorization": f"Bearer {OWNER}.deadbeef"}
        )
        assert response.status_code == 401

    async def test_expired_token(self, client, container):
        token = container.authenticator.issue_token(OWNER, lifetime_seconds=-10)
        response = await client.get(f"/api/sprints/{new_id()}", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert response.json()["message"] == "Token expired"

    async def test_token_from_other_issuer(self, client):
        foreign = TokenAuthenticator("another-issuer-secret-0123456789abcdef").issue_token(OWNER)
        response = await client.get(f"/api/sprints/{new_id()}", headers={"Authorization": f"Bearer {foreign}"})
        assert response.status_code == 401

    async def test_token_carries_subject_audience_and_expiry(self):
        authenticator = TokenAuthenticator("sprintsync-claims-secret-0123456789abcdef", audience="sprintsync:api")
        token = authenticator.issue_token("alice")
        claims = jwt.decode(
            token, "sprintsync-claims-secret-0123456789abcdef",
            algorithms=["HS256"], audience="sprintsync:api",
        )
        assert claims["sub"] == "alice"
        assert claims["exp"] > claims["iat"]
        assert await authenticator.authenticate(token) == "alice"

        other_audience = TokenAuthenticator("sprintsync-claims-secret-0123456789abcdef", audience="elsewhere")
        with pytest.raises(UnauthorizedError):
            await other_audience.authenticate(token)


class TestSprintEndpoints:
    """Tests for the sprint routes."""

    async def test_sprint_lifecycle(self, client, auth_headers, project_id):
        headers = auth_headers()
        resp = await client.post(
            f"/api/projects/{project_id}/sprints",
            json={"name": "Sprint 1", "startDate": "2030-01-01T00:00:00Z", "endDate": "2030-01-15T00:00:00Z"},
            headers=headers,
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["success"] is True
        sprint = body["data"]
        assert sprint["status"] == "Planning"
        assert sprint["taskIds"] == []
        assert sprint["progressPercentage"] == 0
        assert sprint["durationDays"] == 14

        resp = await client.post(
            f"/api/projects/{project_id}/tasks", json={"title": "T1", "status": "ToDo"}, headers=headers
        )
        assert resp.status_code == 201
        task_id = resp.json()["data"]["id"]

        resp = await client.post(f"/api/sprints/{sprint['id']}/tasks/{task_id}", headers=headers)
        assert resp.status_code == 200
        assert resp.json()["data"]["taskIds"] == [task_id]

        resp = await client.put(f"/api/tasks/{task_id}", json={"status": "Done"}, headers=headers)
        assert resp.json()["data"]["sprintId"] == sprint["id"]

        resp = await client.post(f"/api/sprints/{sprint['id']}/recalculate-progress", headers=headers)
        assert resp.json()["data"] == {"sprintId": sprint["id"], "progressPercentage": 100}

        resp = await client.get(f"/api/sprints/{sprint['id']}", headers=auth_headers(DEVELOPER))
        fetched = resp.json()["data"]
        assert fetched["tasks"][0]["status"] == "Done"
        assert fetched["tasksCount"] == 1

        resp = await client.delete(f"/api/sprints/{sprint['id']}", headers=headers)
        assert resp.json()["message"] == "Sprint deleted successfully"
        resp = await client.get(f"/api/sprints/{sprint['id']}", headers=headers)
        assert resp.status_code == 404

    async def test_list_envelope(self, client, auth_headers, project_id):
        for name in ("Alpha", "Beta", "Gamma"):
            await client.post(f"/api/projects/{project_id}/sprints", json={"name": name}, headers=auth_headers())

        resp = await client.get(
            f"/api/projects/{project_id}/sprints",
            params={"sort": "name", "limit": 2, "page": 1},
            headers=auth_headers(DEVELOPER),
        )
        body = resp.json()
        assert [s["name"] for s in body["data"]] == ["Alpha", "Beta"]
        assert body["count"] == 2
        assert body["pagination"] == {"total": 3, "page": 1, "limit": 2, "pages": 2}

    @pytest.mark.parametrize("payload", [
        {"name": "ab"},
        {"name": "Sprint", "startDate": "2030-01-10T00:00:00Z", "endDate": "2030-01-01T00:00:00Z"},
        {"name": "Sprint", "startDate": "2030-01-10T00:00:00Z"},
    ])
    async def test_validation_errors_are_400(self, client, auth_headers, project_id, payload):
        resp = await client.post(f"/api/projects/{project_id}/sprints", json=payload, headers=auth_headers())
        assert resp.status_code == 400
        assert resp.json()["success"] is False

    async def test_malformed_id_is_400(self, client, auth_headers):
        resp = await client.get("/api/sprints/not-an-id", headers=auth_headers())
        assert resp.status_code == 400
        assert resp.json()["message"] == "Invalid sprint ID format"

    async def test_developer_cannot_create_sprint(self, client, auth_headers, project_id):
        resp = await client.post(
            f"/api/projects/{project_id}/sprints", json={"name": "Sprint 1"}, headers=auth_headers(DEVELOPER)
        )
        assert resp.status_code == 403

    async def test_outsider_cannot_list(self, client, auth_headers, project_id):
        resp = await client.get(f"/api/projects/{project_id}/sprints", headers=auth_headers(OUTSIDER))
        assert resp.status_code == 403

    async def test_cross_project_views(self, client, auth_headers, project_id):
        await client.post(
            f"/api/projects/{project_id}/sprints",
            json={"name": "Future", "startDate": "2030-01-01T00:00:00Z", "endDate": "2030-01-15T00:00:00Z"},
            headers=auth_headers(),
        )

        upcoming = (await client.get("/api/sprints/status/upcoming", headers=auth_headers(DEVELOPER))).json()
        assert [s["name"] for s in upcoming["data"]] == ["Future"]
        active = (await client.get("/api/sprints/status/active", headers=auth_headers(DEVELOPER))).json()
        assert active["count"] == 0

        stats = (await client.get("/api/sprints/statistics/completion-rate", headers=auth_headers())).json()
        assert stats["data"] == {
            "totalCompletedSprints": 0,
            "totalTasksPlanned": 0,
            "totalTasksCompleted": 0,
            "averageCompletionRate": 0.0,
        }


class TestProjectEndpoints:
    """Tests for the project and status vocabulary routes."""

    async def test_status_vocabulary_round_trip(self, client, auth_headers, project_id):
        statuses = [
            {"name": "Open"},
            {"name": "Review"},
            {"name": "Closed", "terminal": True},
        ]
        resp = await client.put(
            f"/api/projects/{project_id}/statuses", json={"statuses": statuses}, headers=auth_headers()
        )
        assert resp.status_code == 200
        assert resp.json()["data"]["tasksNeedingMigration"] == 0

        resp = await client.get(f"/api/projects/{project_id}/statuses", headers=auth_headers(DEVELOPER))
        assert [s["name"] for s in resp.json()["data"]] == ["Open", "Review", "Closed"]

    async def test_vocabulary_without_terminal_is_400(self, client, auth_headers, project_id):
        resp = await client.put(
            f"/api/projects/{project_id}/statuses",
            json={"statuses": [{"name": "Open"}, {"name": "Closed"}]},
            headers=auth_headers(),
        )
        assert resp.status_code == 400

    async def test_unknown_project_is_404(self, client, auth_headers):
        resp = await client.get(f"/api/projects/{new_id()}", headers=auth_headers())
        assert resp.status_code == 404
        assert resp.json()["message"] == "Project not found"


class TestWebSocket:
    """Tests for the /ws endpoint against stubbed services."""

    @pytest.fixture
    def ws_app(self, test_settings):
        async def get_project(project_id, user_id):
            if user_id != OWNER:
                raise ForbiddenError("Not a member of this project")

        app = create_app(test_settings)
        app.state.container = SimpleNamespace(
            authenticator=TokenAuthenticator("sprintsync-ws-test-secret-0123456789abcdef"),
            broadcast=BroadcastChannel(),
            projects=SimpleNamespace(get_project=get_project),
        )
        return app

    def token(self, app, user_id=OWNER):
        return app.state.container.authenticator.issue_token(user_id)

    def test_rejects_bad_token(self, ws_app):
        client = TestClient(ws_app)
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws?token=nobody.bad") as ws:
                ws.receive_json()
        assert exc_info.value.code == 1008

    def test_ping_and_room_join(self, ws_app):
        client = TestClient(ws_app)
        with client.websocket_connect(f"/ws?token={self.token(ws_app)}") as ws:
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

            ws.send_json({"type": "joinProject", "projectId": "p1"})
            assert ws.receive_json() == {
                "type": "joined", "room": "project:p1", "rooms": ["project:p1", f"user:{OWNER}"],
            }

            ws.send_json({"type": "leaveProject", "projectId": "p1"})
            assert ws.receive_json() == {"type": "left", "room": "project:p1", "rooms": [f"user:{OWNER}"]}

    def test_join_without_access_is_refused(self, ws_app):
        client = TestClient(ws_app)
        with client.websocket_connect(f"/ws?token={self.token(ws_app, DEVELOPER)}") as ws:
            ws.send_json({"type": "joinProject", "projectId": "p1"})
            reply = ws.receive_json()
            assert reply["type"] == "error"
            assert reply["room"] == "project:p1"

    def test_bad_messages(self, ws_app):
        client = TestClient(ws_app)
        with client.websocket_connect(f"/ws?token={self.token(ws_app)}") as ws:
            ws.send_text("not json")
            assert ws.receive_json()["error"] == "Invalid JSON format"
            ws.send_json({"type": "shout"})
            assert ws.receive_json()["error"] == "Unknown message type: shout"
            ws.send_json({"type": "joinSprint"})
            assert ws.receive_json()["error"] == "joinSprint requires sprintId"
