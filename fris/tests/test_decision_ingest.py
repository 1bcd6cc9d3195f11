import pytest
from sqlalchemy import select

from fris.models import PolicyDecision
from fris.policy import PolicyEngine
from fris.services.decision_service import ingest_decision
from fris.services.declaration_service import get_declaration


def _declare(client, declaration_id, risk_scores, items=None):
    resp = client.post(
        "/api/declarations",
        json={
            "declaration_id": declaration_id,
            "arrival_port": "APAPA",
            "lodgement_ts": "2025-11-03T09:00:00Z",
            "items": items or [{"declared_hs": "8703", "invoice_value_usd": 5000, "country_origin": "DE"}],
            "risk_scores": risk_scores,
        },
    )
    assert resp.status_code == 201
    return resp.get_json()


def test_create_and_fetch_declaration(client):
    created = _declare(client, "DEC-300", {"overall": 0.4})
    assert created["status"] == "FILED"
    assert created["channel"] == "GREEN"

    resp = client.get("/api/declarations/DEC-300")
    assert resp.status_code == 200
    assert resp.get_json()["decisions"] == []

    assert client.get("/api/declarations/DEC-404").status_code == 404


def test_declaration_validation(client):
    _declare(client, "DEC-301", {})
    resp = client.post("/api/declarations", json={"declaration_id": "DEC-301", "items": [{"declared_hs": "1"}]})
    assert resp.status_code == 400
    resp = client.post("/api/declarations", json={"declaration_id": "DEC-302", "items": []})
    assert resp.status_code == 400


def test_ingest_doc_forgery_opens_stop_workflow(client):
    _declare(client, "DEC-310", {"doc_forgery": 0.92})
    resp = client.post("/api/decision/ingest", json={"declaration_id": "DEC-310", "actor": "risk-engine"})
    assert resp.status_code == 201
    body = resp.get_json()

    assert body["decision"]["action"] == "STOP"
    assert body["decision"]["ttl_minutes"] == 1440
    assert body["decision"]["rule_ids"] == ["DOC_FORGERY_HIGH"]
    assert body["result"]["triggered"] is True

    workflow = body["workflow"]
    assert workflow["action_type"] == "STOP"
    assert workflow["priority"] == "CRITICAL"
    assert workflow["sla_minutes"] == 1440
    assert workflow["review_required"] is True
    assert workflow["created_by"] == "risk-engine"
    assert body["decision"]["workflow_id"] == workflow["id"]

    declaration = client.get("/api/declarations/DEC-310").get_json()
    assert declaration["status"] == "STOPPED"
    assert declaration["channel"] == "RED"
    assert len(declaration["decisions"]) == 1


def test_ingest_undervaluation_opens_hold_workflow(client):
    _declare(client, "DEC-311", {"undervaluation": 0.9}, items=[{"declared_hs": "6109", "invoice_value_usd": 500}])
    body = client.post("/api/decision/ingest", json={"declaration_id": "DEC-311"}).get_json()
    assert body["decision"]["action"] == "HOLD"
    assert body["workflow"]["sla_minutes"] == 720
    assert body["workflow"]["priority"] == "HIGH"

    declaration = client.get("/api/declarations/DEC-311").get_json()
    assert declaration["status"] == "HELD"
    assert declaration["channel"] == "YELLOW"


def test_ingest_low_risk_releases_without_workflow(client):
    _declare(client, "DEC-312", {"overall": 0.1}, items=[{"declared_hs": "0901", "invoice_value_usd": 1000}])
    body = client.post("/api/decision/ingest", json={"declaration_id": "DEC-312"}).get_json()
    assert body["decision"]["action"] == "ALLOW"
    assert body["decision"]["rule_ids"] == ["LOW_RISK_FAST_TRACK"]
    assert body["workflow"] is None

    declaration = client.get("/api/declarations/DEC-312").get_json()
    assert declaration["status"] == "RELEASED"
    assert declaration["channel"] == "GREEN"


def test_ingest_without_risk_uses_default_allow(client):
    _declare(client, "DEC-313", {})
    body = client.post("/api/decision/ingest", json={"declaration_id": "DEC-313"}).get_json()
    assert body["decision"]["action"] == "ALLOW"
    assert body["decision"]["confidence"] == 0.1
    assert body["decision"]["rule_ids"] == []
    assert body["workflow"] is None


def test_ingest_is_idempotent(client):
    _declare(client, "DEC-320", {"doc_forgery": 0.95})
    headers = {"Idempotency-Key": "ingest-DEC-320-1"}
    first = client.post("/api/decision/ingest", json={"declaration_id": "DEC-320"}, headers=headers)
    second = client.post("/api/decision/ingest", json={"declaration_id": "DEC-320"}, headers=headers)
    assert first.status_code == 201
    assert second.status_code == 200

    first, second = first.get_json(), second.get_json()
    assert second["replayed"] is True
    assert second["decision"]["id"] == first["decision"]["id"]
    assert second["workflow"]["id"] == first["workflow"]["id"]

    workflows = client.get("/api/workflows?declaration_id=DEC-320").get_json()
    assert len(workflows) == 1


def test_ingest_errors(client):
    assert client.post("/api/decision/ingest", json={}).status_code == 400
    assert client.post("/api/decision/ingest", json={"declaration_id": "DEC-404"}).status_code == 404


def test_ingested_hold_is_auto_released_on_expiry(session_factory, manager, clock, add_declaration):
    add_declaration("DEC-330", risk_scores={"network_risk": 0.8})
    outcome = ingest_decision(session_factory, PolicyEngine(), manager, "DEC-330")
    assert outcome.decision.action == "HOLD"
    assert outcome.decision.workflow_id == outcome.workflow.id
    assert outcome.workflow.sla_minutes == 480

    clock.advance(481)
    result = manager.check_expired_workflows()
    assert result.auto_released == [outcome.workflow.id]

    session = session_factory()
    try:
        assert get_declaration(session, "DEC-330").status == "RELEASED"
    finally:
        session.close()


def test_hold_rule_without_reason_gets_fallback_workflow_reason(app, client):
    app.extensions["fris"]["engine"].add_rule(
        {
            "id": "BARE_HOLD",
            "priority": 50,
            "conditions": [{"field": "riskScores.bare", "operator": "greater_than", "value": 0.5}],
            "actions": [{"type": "HOLD"}],
        }
    )
    _declare(client, "DEC-340", {"bare": 0.9})
    resp = client.post("/api/decision/ingest", json={"declaration_id": "DEC-340"})
    assert resp.status_code == 201
    workflow = resp.get_json()["workflow"]
    assert workflow["reason"] == "Policy HOLD (BARE_HOLD)"
    assert workflow["sla_minutes"] == 720


def test_rejected_ingest_leaves_declaration_untouched(client):
    _declare(client, "DEC-341", {"doc_forgery": 0.95})
    headers = {"Idempotency-Key": "ingest-DEC-341"}
    resp = client.post("/api/decision/ingest", json={"declaration_id": "DEC-341", "actor": ""}, headers=headers)
    assert resp.status_code == 400

    declaration = client.get("/api/declarations/DEC-341").get_json()
    assert declaration["status"] == "FILED"
    assert declaration["decisions"] == []
    assert client.get("/api/workflows?declaration_id=DEC-341").get_json() == []

    retry = client.post("/api/decision/ingest", json={"declaration_id": "DEC-341", "actor": "officer-1"}, headers=headers)
    assert retry.status_code == 201
    assert retry.get_json()["workflow"]["created_by"] == "officer-1"


def test_failed_workflow_creation_rolls_back_decision(session_factory, manager, notifier, add_declaration, monkeypatch):
    add_declaration("DEC-342", risk_scores={"doc_forgery": 0.95})

    def broken_add_workflow(session, **kwargs):
        raise RuntimeError("workflow store unavailable")

    monkeypatch.setattr(manager, "add_workflow", broken_add_workflow)
    with pytest.raises(RuntimeError):
        ingest_decision(session_factory, PolicyEngine(), manager, "DEC-342", idempotency_key="key-342")

    session = session_factory()
    try:
        assert get_declaration(session, "DEC-342").status == "FILED"
        assert session.execute(select(PolicyDecision)).scalars().all() == []
    finally:
        session.close()
    assert notifier.events == []

    monkeypatch.undo()
    outcome = ingest_decision(session_factory, PolicyEngine(), manager, "DEC-342", idempotency_key="key-342")
    assert outcome.replayed is False
    assert outcome.decision.workflow_id == outcome.workflow.id
    assert notifier.events == [(outcome.workflow.id, "created")]
