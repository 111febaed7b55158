"""Integration tests for the session API.

These run the full application lifespan with shell stand-ins for the
display server, compiler and runtime (see tests/conftest.py).
"""

from graphics_sandbox.config import settings

LONG_RUNNING_PROGRAM = "exec sleep 300\n"


def _init(client):
    response = client.post("/api/init")
    assert response.status_code == 200, response.text
    return response.json()


class TestInit:
    """Test session creation."""

    def test_init_returns_ready_session(self, client):
        data = _init(client)

        assert data["success"] is True
        assert data["streamReady"] is True
        assert data["nickname"]
        assert settings.base_display <= data["display"] < settings.base_display + settings.max_sessions
        assert len(data["sessionId"]) == 36

    def test_capacity_and_slot_reuse(self, client):
        sessions = [_init(client) for _ in range(settings.max_sessions)]
        displays = {s["display"] for s in sessions}
        assert len(displays) == settings.max_sessions

        rejected = client.post("/api/init")
        assert rejected.status_code == 503
        assert rejected.json()["success"] is False
        assert "maximum capacity" in rejected.json()["error"]

        freed = sessions[1]
        response = client.post("/api/teardown", json={"sessionId": freed["sessionId"]})
        assert response.status_code == 200

        reused = _init(client)
        assert reused["display"] == freed["display"]

    def test_init_without_body(self, client):
        response = client.post("/api/init", headers={"content-type": "application/json"})
        assert response.status_code == 200


class TestRun:
    """Test the compile-then-launch endpoint."""

    def test_run_success(self, client):
        session = _init(client)

        response = client.post(
            "/api/run", json={"sessionId": session["sessionId"], "code": LONG_RUNNING_PROGRAM}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert isinstance(data["pid"], int)
        assert "output" not in data

    def test_compile_failure_returns_diagnostics(self, client):
        session = _init(client)

        response = client.post(
            "/api/run", json={"sessionId": session["sessionId"], "code": "COMPILE_ERROR"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert "COMPILE_ERROR found" in data["output"]

    def test_session_survives_compile_failure(self, client):
        session = _init(client)
        client.post("/api/run", json={"sessionId": session["sessionId"], "code": "COMPILE_ERROR"})

        response = client.post(
            "/api/run", json={"sessionId": session["sessionId"], "code": LONG_RUNNING_PROGRAM}
        )
        assert response.json()["success"] is True

    def test_resubmission_replaces_program(self, client):
        session = _init(client)
        payload = {"sessionId": session["sessionId"], "code": LONG_RUNNING_PROGRAM}

        first = client.post("/api/run", json=payload).json()["pid"]
        second = client.post("/api/run", json=payload).json()["pid"]
        assert first != second

        sessions = client.get("/health/sessions").json()["sessions"]
        current = next(s for s in sessions if s["session_id"] == session["sessionId"])
        assert current["runtime_pid"] == second

    def test_unknown_session_is_expired(self, client):
        response = client.post("/api/run", json={"sessionId": "does-not-exist", "code": "x"})

        assert response.status_code == 404
        data = response.json()
        assert data["success"] is False
        assert data["expired"] is True
        assert data["output"] == "Session expired."

    def test_missing_code_is_validation_error(self, client):
        response = client.post("/api/run", json={"sessionId": "abc"})
        assert response.status_code == 422
        data = response.json()
        assert data["success"] is False
        assert data["error_type"] == "validation"
        assert [d["field"] for d in data["details"]] == ["code"]
        assert data["details"][0]["code"] == "missing"

    def test_oversized_code_rejected(self, client):
        session = _init(client)
        code = "x" * (settings.max_code_size_kb * 1024 + 1)

        response = client.post("/api/run", json={"sessionId": session["sessionId"], "code": code})
        assert response.status_code == 400

    def test_non_json_body_rejected(self, client):
        response = client.post(
            "/api/run", content="code=1", headers={"content-type": "text/plain"}
        )
        assert response.status_code == 415
        data = response.json()
        assert data["success"] is False
        assert data["error_type"] == "validation"
        assert "request_id" in data


class TestHeartbeatAndTeardown:
    """Test keep-alive and explicit teardown."""

    def test_heartbeat_alive(self, client):
        session = _init(client)
        response = client.post("/api/heartbeat", json={"sessionId": session["sessionId"]})
        assert response.json() == {"alive": True}

    def test_heartbeat_unknown(self, client):
        response = client.post("/api/heartbeat", json={"sessionId": "gone"})
        assert response.status_code == 200
        assert response.json() == {"alive": False, "expired": True}

    def test_teardown_ends_session(self, client):
        session = _init(client)
        sid = session["sessionId"]

        assert client.post("/api/teardown", json={"sessionId": sid}).json() == {"success": True}
        assert client.post("/api/heartbeat", json={"sessionId": sid}).json()["alive"] is False
        assert client.post("/api/run", json={"sessionId": sid, "code": "x"}).status_code == 404

    def test_teardown_unknown_session(self, client):
        response = client.post("/api/teardown", json={"sessionId": "gone"})
        assert response.status_code == 404


class TestHealthAndStatic:
    """Test monitoring endpoints and the UI page."""

    def test_basic_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.headers["x-content-type-options"] == "nosniff"
        assert response.headers["x-frame-options"] == "SAMEORIGIN"

    def test_detailed_health(self, client):
        _init(client)
        response = client.get("/health/detailed")

        assert response.status_code == 200
        data = response.json()
        assert data["collaborators"] == {"display": True, "compiler": True, "runtime": True}
        assert data["pool"]["held"] == 1
        assert data["active_sessions"] == 1
        assert data["sessions_by_state"] == {"ready": 1}
        assert data["reaper"]["running"] is True

    def test_detailed_health_reports_missing_command(self, client, monkeypatch):
        monkeypatch.setattr(settings, "runtime_command", "definitely-not-installed {artifact}")
        response = client.get("/health/detailed")
        assert response.status_code == 503
        assert response.json()["collaborators"]["runtime"] is False

    def test_sessions_listing(self, client):
        session = _init(client)
        data = client.get("/health/sessions").json()

        assert data["count"] == 1
        assert data["capacity"] == settings.max_sessions
        assert data["sessions"][0]["session_id"] == session["sessionId"]
        assert data["sessions"][0]["state"] == "ready"

    def test_index_page(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert "compiler" in response.text

    def test_missing_index_page_is_error_response(self, client, monkeypatch):
        monkeypatch.setattr(settings, "index_file", "missing.html")
        response = client.get("/")

        assert response.status_code == 404
        data = response.json()
        assert data["success"] is False
        assert data["error"] == "Not found"
        assert data["error_type"] == "resource_not_found"
