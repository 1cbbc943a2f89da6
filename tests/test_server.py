"""Tests for the REST and WebSocket endpoints."""

from __future__ import annotations

from fastapi.testclient import TestClient

from dip_search.server import create_app
from dip_search.search import MetadataCatalog

from conftest import TEST_DIM

CATALOG = {
    1: {"Document": {"Tipo": "Fattura elettronica", "Oggetto": "Acme invoice"}},
    2: {"Document": {"Tipo": "Contratto", "Oggetto": "Acme supply contract"}},
    3: {"Document": {"Tipo": "Fattura", "Oggetto": "Weather station"}},
}


def _receive_until(websocket, event_type: str) -> list[dict]:
    events = []
    while True:
        event = websocket.receive_json()
        events.append(event)
        if event["type"] == event_type:
            return events


def test_websocket_protocol_round_trip(index_factory) -> None:
    with TestClient(create_app(index_factory=index_factory)) as client:
        with client.websocket_connect("/ws/engine") as websocket:
            websocket.send_json({"type": "search", "query": "Acme invoice", "request_id": "early"})
            error = websocket.receive_json()
            assert error["type"] == "error"
            assert error["kind"] == "not_ready"
            assert error["request_id"] == "early"

            websocket.send_json({"type": "initialize", "embedding_dim": TEST_DIM})
            ready = websocket.receive_json()
            assert ready["type"] == "ready"
            assert ready["backing_mode"] == "durable"

            websocket.send_json(
                {
                    "type": "reindex_all",
                    "documents": [
                        {"id": 1, "text": "Invoice from Acme Corp"},
                        {"id": 2, "text": "Acme supply contract"},
                        {"id": 3, "text": "Weather station readings"},
                        {"id": 4},
                        {"id": 5, "text": "Minutes of the council meeting"},
                    ],
                }
            )
            events = _receive_until(websocket, "reindex_complete")
            assert [event["type"] for event in events] == ["reindex_progress", "reindex_complete"]
            assert events[0]["indexed_count"] == 5
            assert events[0]["total_count"] == 5

            websocket.send_json({"type": "search", "query": "Acme invoice", "request_id": "s1"})
            results = websocket.receive_json()
            assert results["type"] == "search_results"
            assert results["request_id"] == "s1"
            assert results["results"][0]["id"] == 1
            assert results["results"][0]["score"] > 0.25

            websocket.send_text("{not json")
            malformed = websocket.receive_json()
            assert malformed["type"] == "error"
            assert malformed["kind"] == "protocol"


def test_state_endpoint(index_factory) -> None:
    with TestClient(create_app(index_factory=index_factory)) as client:
        response = client.get("/api/state")

    assert response.status_code == 200
    assert response.json()["initialized"] is False
    assert response.json()["indexed_documents"] == 0


def test_search_endpoint_with_filters_only(index_factory) -> None:
    app = create_app(index_factory=index_factory, catalog=MetadataCatalog(CATALOG))
    with TestClient(app) as client:
        response = client.post(
            "/api/search",
            json={"filters": [{"key": "Tipo", "value": "fattura"}]},
        )

    assert response.status_code == 200
    data = response.json()
    assert data["ids"] == [1, 3]
    assert data["filters"] == [{"key": "Tipo", "value": "fattura"}]


def test_search_endpoint_intersects_semantic_and_filters(index_factory) -> None:
    with TestClient(create_app(index_factory=index_factory)) as client:
        with client.websocket_connect("/ws/engine") as websocket:
            websocket.send_json({"type": "initialize"})
            assert websocket.receive_json()["type"] == "ready"
            for doc_id, text in [(1, "Acme invoice"), (2, "Acme invoice contract"), (3, "Acme invoice")]:
                websocket.send_json({"type": "ingest", "id": doc_id, "text": text})
                assert websocket.receive_json()["type"] == "ingested"

        catalog = client.put("/api/catalog", json={"documents": CATALOG})
        assert catalog.json() == {"documents": 3}

        response = client.post(
            "/api/search",
            json={"query": "Acme invoice", "filters": "Tipo=fattura"},
        )

    assert response.status_code == 200
    assert response.json()["ids"] == [1, 3]


def test_search_endpoint_without_engine_degrades_to_filters(index_factory) -> None:
    with TestClient(create_app(index_factory=index_factory)) as client:
        response = client.post(
            "/api/search",
            json={
                "query": "Acme invoice",
                "filters": [{"key": "Tipo", "value": "contratto"}],
                "documents": CATALOG,
            },
        )

    assert response.status_code == 200
    assert response.json()["ids"] == []


def test_search_endpoint_rejects_bad_filter_syntax(index_factory) -> None:
    with TestClient(create_app(index_factory=index_factory)) as client:
        response = client.post("/api/search", json={"filters": "just words"})

    assert response.status_code == 400
    assert "Invalid filter syntax" in response.json()["error"]


def test_filter_keys_endpoint() -> None:
    with TestClient(create_app()) as client:
        response = client.post(
            "/api/filters/keys",
            json={"metadata": [CATALOG[1], {"Anno": 2024}]},
        )

    assert response.status_code == 200
    data = response.json()
    assert data["keys"] == ["Anno", "Document.Oggetto", "Document.Tipo", "Oggetto", "Tipo"]
    assert data["groups"][0]["groupLabel"] == "Document"
    assert {option["value"] for option in data["groups"][0]["options"]} == {"Tipo", "Oggetto"}
    assert data["groups"][1] == {
        "groupLabel": "Other",
        "groupPath": "",
        "options": [
            {"value": "Anno", "label": "Anno"},
            {"value": "Oggetto", "label": "Oggetto"},
            {"value": "Tipo", "label": "Tipo"},
        ],
    }


def test_websocket_disconnect_releases_subscription(index_factory) -> None:
    with TestClient(create_app(index_factory=index_factory)) as client:
        engine = client.app.state.engine
        with client.websocket_connect("/ws/engine") as websocket:
            websocket.send_json({"type": "state"})
            assert websocket.receive_json()["type"] == "state"

        assert engine._subscribers == []

        with client.websocket_connect("/ws/engine") as websocket:
            websocket.send_json({"type": "state"})
            assert websocket.receive_json()["initialized"] is False

        response = client.get("/api/state")

    assert response.status_code == 200
