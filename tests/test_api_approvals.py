"""
Tests: /api/v1/approvals — reviewer inbox and decisions over HTTP.

Setup strategy:
    A workstream with one gate round on ``l2-gate`` requiring role
    ``finance`` (two accounts) and role ``legal`` (one account), and an
    initiative sitting at ``l1``.  Submitting it opens round 0 with three
    tasks.
"""

import pytest

ROUND = {"approvers": [{"role": "finance", "rule": "any"}, {"role": "legal", "rule": "any"}]}
ASSIGNMENTS = [
    {"account_id": "fin-1", "role": "finance"},
    {"account_id": "fin-2", "role": "finance"},
    {"account_id": "legal-1", "role": "legal"},
]


@pytest.fixture()
def submitted(client):
    """Initiative at l1, submitted; returns its id."""
    res = client.post("/api/v1/workstreams", json={"id": "ws-1", "name": "Packaging", "gates": {"l2-gate": [ROUND]}})
    assert res.status_code == 201
    client.put("/api/v1/workstreams/ws-1/assignments", json={"assignments": ASSIGNMENTS})
    res = client.post("/api/v1/initiatives", json={
        "workstream_id": "ws-1",
        "name": "Recyclable trays",
        "active_stage": "l1",
        "owner_name": "Pat",
        "stages": {"l1": {"name": "Case", "financials": {"oneoff-costs": [{"distribution": {"m1": 40}}]}}},
    })
    initiative_id = res.get_json()["id"]
    assert client.post(f"/api/v1/initiatives/{initiative_id}/submit").status_code == 200
    return initiative_id


def _inbox(client, **params):
    res = client.get("/api/v1/approvals", query_string=params)
    assert res.status_code == 200
    return res.get_json()


def _task_for(client, account_id):
    (task,) = _inbox(client, account_id=account_id, status="pending")
    return task


def test_inbox_enriches_tasks(client, submitted):
    task = _task_for(client, "fin-1")

    assert task["initiative_id"] == submitted
    assert task["initiative_name"] == "Recyclable trays"
    assert task["workstream_name"] == "Packaging"
    assert task["owner_name"] == "Pat"
    assert task["stage_key"] == "l1"
    assert task["stage_payload"]["name"] == "Case"
    assert task["stage_state"] == {"status": "pending", "round_index": 0, "comment": None}
    assert task["totals"]["oneoff_costs"] == 40.0
    assert task["round_count"] == 1
    assert (task["role_total"], task["role_approved"], task["role_pending"]) == (2, 0, 2)
    assert len(_inbox(client)) == 3


def test_invalid_status_filter_is_400(client):
    res = client.get("/api/v1/approvals?status=maybe")
    assert res.status_code == 400
    assert res.get_json()["code"] == "invalid-input"


def test_approve_auto_approves_role_siblings(client, submitted):
    task = _task_for(client, "fin-1")

    res = client.post(f"/api/v1/approvals/{task['id']}/decision", json={"decision": "approve", "account_id": "fin-1"})

    assert res.status_code == 200
    assert res.get_json()["stage_state"]["l1"]["status"] == "pending"
    approved = {t["account_id"]: t for t in _inbox(client, status="approved")}
    assert set(approved) == {"fin-1", "fin-2"}
    assert approved["fin-2"]["comment"] == "Auto-approved (rule satisfied)"
    assert [t["account_id"] for t in _inbox(client, status="pending")] == ["legal-1"]


def test_last_role_approval_finalizes(client, submitted):
    for account in ("fin-2", "legal-1"):
        task = _task_for(client, account)
        res = client.post(
            f"/api/v1/approvals/{task['id']}/decision",
            json={"decision": "approve"},
            headers={"X-Account-Id": account},
        )
        assert res.status_code == 200

    body = res.get_json()
    assert body["active_stage"] == "l2"
    assert body["stages"]["l2"]["name"] == "Case"
    assert _inbox(client) == []


def test_return_closes_round(client, submitted):
    task = _task_for(client, "legal-1")

    res = client.post(f"/api/v1/approvals/{task['id']}/decision", json={
        "decision": "return", "account_id": "legal-1", "comment": "Missing supplier quotes",
    })

    assert res.status_code == 200
    assert res.get_json()["stage_state"]["l1"] == {
        "status": "returned", "round_index": 0, "comment": "Missing supplier quotes",
    }
    assert len(_inbox(client, status="returned")) == 3


def test_wrong_account_is_403(client, submitted):
    task = _task_for(client, "fin-1")

    res = client.post(f"/api/v1/approvals/{task['id']}/decision", json={"decision": "approve", "account_id": "fin-2"})

    assert res.status_code == 403
    assert res.get_json()["code"] == "forbidden"


def test_bad_decision_and_unknown_task(client, submitted):
    task = _task_for(client, "fin-1")
    res = client.post(f"/api/v1/approvals/{task['id']}/decision", json={"decision": "escalate", "account_id": "fin-1"})
    assert res.status_code == 400

    res = client.post("/api/v1/approvals/nope/decision", json={"decision": "approve", "account_id": "fin-1"})
    assert res.status_code == 404
    assert res.get_json()["code"] == "approval-not-found"
