"""Tests for the session run HTTP API."""
import httpx
import pytest
import pytest_asyncio

from pdp_coach.api.routes.dependencies import RunRegistry, get_run_registry, get_runner_factory
from pdp_coach.core.exceptions import BusinessRuleError
from pdp_coach.core.metrics import registry as metrics_registry
from pdp_coach.main import create_app
from pdp_coach.services.session_runner import SessionRunner
from tests.factories import (
    FakeLogWriter,
    FakeNotifier,
    FakeResource,
    FakeScheduleUpdater,
    libre_exercise,
    make_module,
    make_session,
)


@pytest.fixture
def registry():
    return RunRegistry()


@pytest.fixture
def collaborators():
    return {
        "log_writer": FakeLogWriter(),
        "schedule_updater": FakeScheduleUpdater(),
        "notifier": FakeNotifier(),
    }


@pytest_asyncio.fixture
async def client(registry, collaborators, fast_settings, rules):
    app = create_app()

    def factory(payload):
        return SessionRunner(
            payload.session,
            override=payload.override,
            user_id=payload.user_id,
            schedule_task_id=payload.schedule_task_id,
            presentation=[FakeResource("audio_context")],
            settings=fast_settings,
            rules=rules,
            **collaborators,
        )

    app.dependency_overrides[get_run_registry] = lambda: registry
    app.dependency_overrides[get_runner_factory] = lambda: factory

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await registry.close_all()


def _payload(**kwargs):
    session = make_session(make_module("m1", protocol="T", name="Build", time_cap=240))
    return {"session": session.model_dump(mode="json"), **kwargs}


async def _create(client, **kwargs):
    response = await client.post("/runs", json=_payload(**kwargs))
    assert response.status_code == 201
    return response.json()["data"]["run_id"]


class TestRunLifecycle:
    @pytest.mark.asyncio
    async def test_create_returns_envelope(self, client, registry):
        response = await client.post("/runs", json=_payload(), headers={"X-Request-ID": "req-42"})

        assert response.status_code == 201
        assert response.headers["X-Request-ID"] == "req-42"
        body = response.json()
        assert body["errors"] == []
        assert body["meta"]["request_id"] == "req-42"
        assert body["data"]["current_type"] == "PLANNING"
        assert [s["type"] for s in body["data"]["timeline"]["steps"]] == ["PLANNING", "WORK", "SUMMARY"]
        assert body["data"]["run_id"] in registry

    @pytest.mark.asyncio
    async def test_generated_request_id(self, client):
        response = await client.post("/runs", json=_payload())

        assert response.headers["X-Request-ID"]
        assert response.json()["meta"]["request_id"] == response.headers["X-Request-ID"]

    @pytest.mark.asyncio
    async def test_unknown_run(self, client):
        response = await client.get("/runs/does-not-exist")

        assert response.status_code == 404
        body = response.json()
        assert body["data"] is None
        assert body["errors"][0]["code"] == "NF_RUN_001"

    @pytest.mark.asyncio
    async def test_cannot_advance_from_work(self, client):
        run_id = await _create(client)
        await client.post(f"/runs/{run_id}/advance")

        response = await client.post(f"/runs/{run_id}/advance")

        assert response.status_code == 422
        assert response.json()["errors"][0]["code"] == "BR_RUN_ADVANCE"

    @pytest.mark.asyncio
    async def test_invalid_reps_rejected(self, client):
        run_id = await _create(client)
        await client.post(f"/runs/{run_id}/advance")

        response = await client.post(f"/runs/{run_id}/reps", json={"exercise_index": 4, "reps": 10})

        assert response.status_code == 400
        assert response.json()["errors"][0]["code"] == "VAL_EXERCISE_INDEX_001"

    @pytest.mark.asyncio
    async def test_full_flow(self, client, registry, collaborators):
        run_id = await _create(client, schedule_task_id=9)

        response = await client.post(
            f"/runs/{run_id}/plan", json={"module_id": "m1", "exercise_index": 0, "weight": "40"}
        )
        assert response.status_code == 200

        state = (await client.post(f"/runs/{run_id}/advance")).json()["data"]
        assert state["current_type"] == "WORK"
        assert state["draft"]["weights"] == {"0": 40.0}
        assert state["timer"]["remaining"] == 240

        await client.post(f"/runs/{run_id}/reps", json={"exercise_index": 0, "reps": 50})
        state = (await client.post(f"/runs/{run_id}/reps", json={"exercise_index": 0, "delta": 5})).json()["data"]
        assert state["draft"]["reps"] == {"0": 55}

        outcome = (await client.post(f"/runs/{run_id}/complete", json={"feedback": {"rpe": 8}})).json()["data"]
        assert outcome["status"] == "advanced"
        assert outcome["next_index"] == 2

        analysis = (await client.post(f"/runs/{run_id}/analysis")).json()["data"]
        assert analysis["insights"][0]["type"] == "up"

        response = await client.post(
            f"/runs/{run_id}/finish", json={"feedback": {"rpe": 7, "duration_minutes": 45}}
        )
        assert response.status_code == 200
        body = response.json()
        assert body["data"]["summary"] == "45 min • RPE 7"
        assert body["meta"]["warnings"] == []
        assert run_id not in registry
        assert len(collaborators["log_writer"].blocks) == 1
        assert collaborators["schedule_updater"].completed[0][0] == 9

        assert (await client.get(f"/runs/{run_id}")).status_code == 404

    @pytest.mark.asyncio
    async def test_empty_step_needs_confirmation(self, client):
        run_id = await _create(client)
        await client.post(f"/runs/{run_id}/advance")

        outcome = (await client.post(f"/runs/{run_id}/complete", json={})).json()["data"]
        assert outcome["status"] == "needs_confirmation"

        outcome = (await client.post(f"/runs/{run_id}/complete", json={"confirm_empty": True})).json()["data"]
        assert outcome["status"] == "advanced"

    @pytest.mark.asyncio
    async def test_failed_write_then_retry(self, client, collaborators):
        collaborators["log_writer"].fail_blocks = 1
        run_id = await _create(client)
        await client.post(f"/runs/{run_id}/advance")
        await client.post(f"/runs/{run_id}/reps", json={"exercise_index": 0, "reps": 40})

        response = await client.post(f"/runs/{run_id}/complete", json={})
        assert response.status_code == 503
        assert response.json()["errors"][0]["details"]["retryable"] is True

        state = (await client.get(f"/runs/{run_id}")).json()["data"]
        assert state["pending_writes"] == [1]

        state = (await client.post(f"/runs/{run_id}/retry")).json()["data"]
        assert state["current_type"] == "SUMMARY"
        assert state["pending_writes"] == []

    @pytest.mark.asyncio
    async def test_finish_warnings(self, client, collaborators):
        collaborators["notifier"].fail = True
        run_id = await _create(client)
        await client.post(f"/runs/{run_id}/advance")
        await client.post(f"/runs/{run_id}/skip", json={"feedback": {"notes": "no time"}})

        body = (await client.post(f"/runs/{run_id}/finish", json={})).json()

        assert body["meta"]["warnings"] == ["Coach was not notified"]
        assert not body["data"]["notification_sent"]

    @pytest.mark.asyncio
    async def test_failed_start_releases_run(self, client, registry, monkeypatch):
        async def refuse(runner):
            raise BusinessRuleError("Session cannot start", code="BR_RUN_START")

        monkeypatch.setattr(SessionRunner, "begin", refuse)
        active_before = metrics_registry.get_sample_value("pdp_active_runs")

        response = await client.post("/runs", json=_payload())

        assert response.status_code == 422
        assert response.json()["errors"][0]["code"] == "BR_RUN_START"
        assert len(registry) == 0
        assert metrics_registry.get_sample_value("pdp_active_runs") == active_before

    @pytest.mark.asyncio
    async def test_superset_round(self, client):
        session = make_session(
            make_module("m4", protocol="LIBRE", exercises=[libre_exercise(0), libre_exercise(1, grouped=True)])
        )
        response = await client.post("/runs", json={"session": session.model_dump(mode="json")})
        run_id = response.json()["data"]["run_id"]
        await client.post(f"/runs/{run_id}/advance")

        response = await client.post(f"/runs/{run_id}/libre-rounds", json={"group_index": 0})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["draft"]["libre_set_reps"] == {"0": [10], "1": [10]}
        assert data["timer"]["groups"] == [[0, 1]]
        assert data["timer"]["round_rest"] is True

        response = await client.post(f"/runs/{run_id}/libre-rounds", json={"group_index": 3})
        assert response.status_code == 400
        assert response.json()["errors"][0]["code"] == "VAL_GROUP_INDEX_001"

    @pytest.mark.asyncio
    async def test_exit_run(self, client, registry):
        run_id = await _create(client)
        await client.post(f"/runs/{run_id}/advance")
        await client.post(f"/runs/{run_id}/timer/start")

        response = await client.delete(f"/runs/{run_id}")

        assert response.status_code == 204
        assert run_id not in registry
        assert (await client.get(f"/runs/{run_id}")).status_code == 404


class TestHealth:
    @pytest.mark.asyncio
    async def test_health_counts_active_runs(self, client):
        await _create(client)

        body = (await client.get("/health")).json()

        assert body["status"] == "healthy"
        assert body["active_runs"] == 1

    @pytest.mark.asyncio
    async def test_metrics(self, client):
        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "pdp_active_runs" in response.text
