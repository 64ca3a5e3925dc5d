from __future__ import annotations

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from progress_engine.utils.exceptions import UNSAVED_ANSWER_MESSAGE


API = "/api/v1"


def _open(client: TestClient, user_id: str = "learner-1") -> str:
    response = client.post(f"{API}/sessions/users/{user_id}")
    assert response.status_code == 201, response.text
    return response.json()["session_id"]


def test_full_session_over_http(client: TestClient, clock) -> None:
    session_id = _open(client)

    clock.advance(seconds=10)
    answer = client.post(
        f"{API}/sessions/{session_id}/answers",
        json={"item_id": 3, "correct": True, "latency_ms": 2500},
    )
    assert answer.status_code == 200, answer.text
    assert answer.json()["mastery_level"] == "learning"
    assert answer.json()["review_count"] == 1

    clock.advance(minutes=2)
    closed = client.post(f"{API}/sessions/{session_id}/close")
    assert closed.status_code == 200, closed.text
    summary = closed.json()
    assert summary["outcome"] == "complete"
    assert summary["committed_item_ids"] == [3]
    assert summary["accuracy"] == 1.0
    assert summary["duration_seconds"] == 130.0

    progress = client.get(f"{API}/progress/learner-1/3")
    assert progress.status_code == 200
    assert progress.json()["version"] == 1
    assert progress.json()["interval_seconds"] == 86400.0


def test_answers_after_close_are_rejected(client: TestClient) -> None:
    session_id = _open(client)
    client.post(f"{API}/sessions/{session_id}/close")

    response = client.post(
        f"{API}/sessions/{session_id}/answers", json={"item_id": 1, "correct": True}
    )

    assert response.status_code == 400
    assert "closed" in response.json()["detail"]


def test_unknown_item_returns_not_found(client: TestClient) -> None:
    session_id = _open(client)

    response = client.post(
        f"{API}/sessions/{session_id}/answers", json={"item_id": 4242, "correct": False}
    )

    assert response.status_code == 404


def test_invalid_answer_payload(client: TestClient) -> None:
    session_id = _open(client)

    response = client.post(
        f"{API}/sessions/{session_id}/answers", json={"item_id": 0, "correct": True, "latency_ms": -5}
    )

    assert response.status_code == 422
    assert response.json()["message"] == "Validation failed"


def test_persistence_outage_maps_to_service_unavailable(client: TestClient, learning_engine, monkeypatch) -> None:
    from progress_engine.utils.exceptions import PersistenceUnavailable

    def unavailable(user_id: str, item_id: int):
        raise PersistenceUnavailable("progress load failed after 3 attempts", details={"attempts": 3})

    monkeypatch.setattr(learning_engine.store, "get", unavailable)

    response = client.get(f"{API}/progress/learner-1/1")

    assert response.status_code == 503
    assert response.json()["detail"] == UNSAVED_ANSWER_MESSAGE


def test_catalog_outage_during_answer_maps_to_service_unavailable(client: TestClient, monkeypatch) -> None:
    session_id = _open(client)

    def unreachable(self, entity, ident, **kwargs):
        raise OperationalError("SELECT vocabulary_items", {}, Exception("connection refused"))

    monkeypatch.setattr(Session, "get", unreachable)

    response = client.post(f"{API}/sessions/{session_id}/answers", json={"item_id": 1, "correct": True})

    assert response.status_code == 503
    assert response.json()["detail"] == UNSAVED_ANSWER_MESSAGE


def test_analytics_endpoint_reports_no_data(client: TestClient) -> None:
    response = client.get(f"{API}/analytics/learner-1")

    assert response.status_code == 200
    body = response.json()
    assert body["sessions_completed"] == 0
    assert body["average_accuracy"] == "no data"
    assert body["mastery_distribution"] == {
        "new": 0,
        "learning": 0,
        "reviewing": 0,
        "mastered": 0,
    }


def test_analytics_endpoint_after_session(client: TestClient, clock) -> None:
    session_id = _open(client)
    client.post(f"{API}/sessions/{session_id}/answers", json={"item_id": 1, "correct": True})
    client.post(f"{API}/sessions/{session_id}/answers", json={"item_id": 2, "correct": False})
    clock.advance(minutes=5)
    client.post(f"{API}/sessions/{session_id}/close")

    body = client.get(f"{API}/analytics/learner-1").json()

    assert body["sessions_completed"] == 1
    assert body["average_accuracy"] == 0.5
    assert body["total_study_seconds"] == 300.0
    assert body["items_tracked"] == 2


def test_reversed_analytics_window_is_rejected(client: TestClient) -> None:
    response = client.get(
        f"{API}/analytics/learner-1",
        params={"start": "2024-03-10T00:00:00Z", "end": "2024-03-01T00:00:00Z"},
    )

    assert response.status_code == 400


def test_queue_and_delete(client: TestClient, clock) -> None:
    session_id = _open(client)
    client.post(f"{API}/sessions/{session_id}/answers", json={"item_id": 5, "correct": False})
    client.post(f"{API}/sessions/{session_id}/close")

    assert client.get(f"{API}/progress/learner-1/queue").json() == []
    clock.advance(hours=1)
    queue = client.get(f"{API}/progress/learner-1/queue", params={"limit": 5}).json()
    assert [entry["item_id"] for entry in queue] == [5]

    deleted = client.delete(f"{API}/progress/learner-1")
    assert deleted.status_code == 200
    assert deleted.json() == {"user_id": "learner-1", "removed": 2}
    assert client.get(f"{API}/progress/learner-1/queue").json() == []
