"""
API tests for the workout and credit endpoints.

The app runs against an in-memory store injected through FastAPI's
dependency overrides, so no Snowflake connection is needed.
"""

import inspect

import pytest
from fastapi.routing import APIRoute
from fastapi.testclient import TestClient

from src.api.dependencies import get_document_store
from src.config.settings import Settings, get_settings
from src.core.records.store import StoreUnavailableError, TransactionConflictError, WriteOp
from src.infrastructure.memory.store import InMemoryDocumentStore
from src.main import create_app

ATHLETE = "athlete-1"
COACH = "coach-1"
API_KEY = "dev-key-1"


class ConflictingStore(InMemoryDocumentStore):
    """Every commit loses to a concurrent writer."""

    def commit(self, reads, writes):
        raise TransactionConflictError("lost the race")


class UnreachableStore(InMemoryDocumentStore):
    def read(self, path):
        raise StoreUnavailableError("Snowflake connection lost")

    def list_collection(self, collection_path, order_by=None, descending=False, limit=None):
        raise StoreUnavailableError("Snowflake connection lost")


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def make_client():
    clients = []

    def _make(store) -> TestClient:
        app = create_app()
        app.dependency_overrides[get_settings] = lambda: Settings(
            api_keys=API_KEY,
            snowflake_mock_mode=True,
            transaction_backoff_seconds=0.0,
        )
        app.dependency_overrides[get_document_store] = lambda: store
        client = TestClient(app)
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.close()


@pytest.fixture
def client(make_client, store) -> TestClient:
    return make_client(store)


def headers(user_id: str = ATHLETE) -> dict:
    return {"X-API-Key": API_KEY, "X-User-Id": user_id}


def log(client: TestClient, value: float, user_id: str = ATHLETE, is_proxy: bool = False, **extra):
    body = {
        "exercises": [{"id": "squat", "name": "Squat", "value": value}],
        "is_proxy": is_proxy,
        **extra,
    }
    return client.post(f"/api/v1/athletes/{ATHLETE}/workouts", json=body, headers=headers(user_id))


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

class TestAuthentication:

    def test_missing_api_key_is_forbidden(self, client):
        response = client.get(f"/api/v1/athletes/{ATHLETE}/credits")

        assert response.status_code == 403

    def test_invalid_api_key_is_forbidden(self, client):
        response = client.get(
            f"/api/v1/athletes/{ATHLETE}/credits",
            headers={"X-API-Key": "not-a-key"},
        )

        assert response.status_code == 403

    def test_logging_requires_user_id(self, client):
        response = client.post(
            f"/api/v1/athletes/{ATHLETE}/workouts",
            json={"exercises": [{"id": "squat", "value": 100}]},
            headers={"X-API-Key": API_KEY},
        )

        assert response.status_code == 400
        assert "X-User-Id" in response.json()["detail"]


# ---------------------------------------------------------------------------
# Workouts
# ---------------------------------------------------------------------------

class TestWorkoutEndpoints:

    def test_log_workout_updates_record(self, client):
        response = log(client, 100, payload={"notes": "opener"})

        assert response.status_code == 201
        body = response.json()
        assert body["logged"] is True
        assert body["is_proxy"] is False

        record = client.get(f"/api/v1/athletes/{ATHLETE}/exercises/squat", headers=headers()).json()
        assert record["current_best"] == 100
        assert record["last_workout_ref"] == body["workout_id"]
        assert len(record["history"]) == 1

    def test_coach_logs_as_proxy(self, client):
        response = log(client, 120, user_id=COACH, is_proxy=True)

        assert response.status_code == 201
        assert response.json()["is_proxy"] is True

        workouts = client.get(f"/api/v1/athletes/{ATHLETE}/workouts", headers=headers()).json()
        assert workouts["total"] == 1
        assert workouts["workouts"][0]["logged_by"] == COACH

    def test_coach_without_proxy_flag_is_rejected(self, client):
        response = log(client, 120, user_id=COACH, is_proxy=False)

        assert response.status_code == 422
        assert "proxy" in response.json()["detail"]

    def test_empty_workout_is_rejected(self, client):
        response = client.post(
            f"/api/v1/athletes/{ATHLETE}/workouts",
            json={"exercises": []},
            headers=headers(),
        )

        assert response.status_code == 422

    def test_progression_lists_milestones_in_order(self, client):
        for value in (100, 95, 110, 120):
            log(client, value)

        response = client.get(f"/api/v1/athletes/{ATHLETE}/exercises/squat/progression", headers=headers())

        assert response.status_code == 200
        assert [m["value"] for m in response.json()["history"]] == [100, 110, 120]

    def test_unknown_exercise_is_not_found(self, client):
        response = client.get(f"/api/v1/athletes/{ATHLETE}/exercises/deadlift", headers=headers())

        assert response.status_code == 404

    def test_persistent_conflict_returns_409(self, make_client):
        client = make_client(ConflictingStore())

        response = log(client, 100)

        assert response.status_code == 409

    def test_unreachable_store_returns_503(self, make_client):
        client = make_client(UnreachableStore())

        response = log(client, 100)

        assert response.status_code == 503


# ---------------------------------------------------------------------------
# Credits
# ---------------------------------------------------------------------------

class TestCreditEndpoints:

    def test_approve_then_consume_until_empty(self, client):
        approve = client.post(
            f"/api/v1/athletes/{ATHLETE}/subscription/approve",
            json={"credits": {"sessionsRemaining": 1, "controlVisitsRemaining": 2}},
            headers=headers(COACH),
        )
        assert approve.status_code == 200
        assert approve.json()["status"] == "approved"

        url = f"/api/v1/athletes/{ATHLETE}/credits/sessionsRemaining/consume"
        first = client.post(url, headers=headers(COACH)).json()
        second = client.post(url, headers=headers(COACH)).json()

        assert first == {"counter": "sessionsRemaining", "status": "consumed", "remaining": 0}
        assert second == {"counter": "sessionsRemaining", "status": "empty", "remaining": 0}

    def test_grant_and_balance(self, client):
        response = client.put(
            f"/api/v1/athletes/{ATHLETE}/credits/controlVisitsRemaining",
            json={"total": 4},
            headers=headers(COACH),
        )
        assert response.json() == {"counter": "controlVisitsRemaining", "granted": True, "total": 4}

        balance = client.get(f"/api/v1/athletes/{ATHLETE}/credits", headers=headers(COACH)).json()

        assert balance["credits"] == {"sessionsRemaining": 0, "controlVisitsRemaining": 4}

    def test_negative_grant_is_rejected(self, client):
        response = client.put(
            f"/api/v1/athletes/{ATHLETE}/credits/sessionsRemaining",
            json={"total": -1},
            headers=headers(COACH),
        )

        assert response.status_code == 422

    def test_unknown_counter_is_rejected(self, client):
        response = client.post(
            f"/api/v1/athletes/{ATHLETE}/credits/freeLunches/consume",
            headers=headers(COACH),
        )

        assert response.status_code == 422

    def test_reject_subscription(self, client, store):
        response = client.post(
            f"/api/v1/athletes/{ATHLETE}/subscription/reject",
            headers=headers(COACH),
        )

        assert response.json() == {"athlete_id": ATHLETE, "status": "rejected"}
        assert store.read(f"users/{ATHLETE}").data["status"] == "rejected"

    def test_list_athletes_by_status(self, client):
        client.post(f"/api/v1/athletes/{ATHLETE}/subscription/reject", headers=headers(COACH))
        client.post(
            "/api/v1/athletes/athlete-2/subscription/approve",
            json={"credits": {"sessionsRemaining": 8}},
            headers=headers(COACH),
        )

        approved = client.get("/api/v1/athletes", headers=headers(COACH)).json()
        rejected = client.get("/api/v1/athletes?status=rejected", headers=headers(COACH)).json()

        assert approved == {
            "athletes": [{
                "athlete_id": "athlete-2",
                "status": "approved",
                "role": "user",
                "credits": {"sessionsRemaining": 8, "controlVisitsRemaining": 0},
            }],
            "total": 1,
        }
        assert [a["athlete_id"] for a in rejected["athletes"]] == [ATHLETE]

    def test_list_pending_athletes(self, client, store):
        store.commit({}, [WriteOp("set", "users/athlete-3", {"status": "pending"})])

        response = client.get("/api/v1/athletes", params={"status": "pending"}, headers=headers(COACH))

        assert response.status_code == 200
        assert response.json()["total"] == 1
        assert response.json()["athletes"][0]["athlete_id"] == "athlete-3"
        assert response.json()["athletes"][0]["role"] is None

    def test_list_athletes_rejects_unknown_status(self, client):
        response = client.get("/api/v1/athletes?status=paused", headers=headers(COACH))

        assert response.status_code == 422

    def test_list_athletes_requires_api_key(self, client):
        response = client.get("/api/v1/athletes")

        assert response.status_code == 403

    def test_list_athletes_unreachable_store_returns_503(self, make_client):
        client = make_client(UnreachableStore())

        response = client.get("/api/v1/athletes", headers=headers(COACH))

        assert response.status_code == 503


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

class TestHealth:

    def test_liveness(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_readiness_with_store(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_readiness_fails_when_store_unreachable(self, make_client):
        client = make_client(UnreachableStore())

        response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"


class TestHandlers:
    """Store-backed handlers block, so they must not run on the event loop."""

    def test_store_handlers_are_sync(self):
        app = create_app()
        routes = [
            route for route in app.routes
            if isinstance(route, APIRoute)
            and (route.path.startswith("/api/v1") or route.path == "/health/ready")
        ]

        assert routes
        for route in routes:
            assert not inspect.iscoroutinefunction(route.endpoint), route.path
