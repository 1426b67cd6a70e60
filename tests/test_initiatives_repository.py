"""
Tests: SQLAlchemy initiatives repository.

Exercises the repository directly (no service) against the test database:
conditional versioned writes, transaction rollback and the approval-row
queries the workflow depends on.
"""

import pytest

from portfolio.models import db as _db
from portfolio.models.initiative import Initiative, InitiativeApproval, InitiativeEvent
from portfolio.models.records import NOT_FOUND, VERSION_CONFLICT, ApprovalTask, StageState, WorkstreamRecord
from portfolio.services.initiative_changes import build_create_event
from portfolio.services.initiative_payloads import sanitize_write_model
from portfolio.services.initiatives_repository import InitiativesRepository
from portfolio.services.workstreams_repository import WorkstreamsRepository


@pytest.fixture()
def repo():
    WorkstreamsRepository().create_workstream(WorkstreamRecord(id="ws-1", name="Logistics"))
    _db.session.commit()
    return InitiativesRepository()


def _model(initiative_id="init-1", **overrides):
    payload = {"id": initiative_id, "workstream_id": "ws-1", "name": "Dock scheduling"}
    payload.update(overrides)
    return sanitize_write_model(payload)


def _tasks(initiative_id="init-1", stage_key="l1", round_index=0, accounts=("a", "b"), role="finance"):
    return [
        ApprovalTask(
            id=f"{initiative_id}-{stage_key}-{round_index}-{account}",
            initiative_id=initiative_id,
            stage_key=stage_key,
            round_index=round_index,
            role=role,
            rule="any",
            account_id=account,
        )
        for account in accounts
    ]


def test_create_and_find_round_trip(repo):
    with repo.transaction():
        created = repo.create_initiative(_model(stages={"l2": {"name": "Design"}}))

    found = repo.find_initiative("init-1")
    assert found.version == 1
    assert found.stages["l2"]["name"] == "Design"
    assert found.stage_state["l3"] == StageState()
    assert found.created_at == created.created_at
    assert repo.find_initiative("missing") is None


def test_conditional_update_bumps_version(repo):
    with repo.transaction():
        repo.create_initiative(_model())

    with repo.transaction():
        updated = repo.update_initiative(_model(name="Dock scheduling v2"), expected_version=1)

    assert updated.version == 2
    assert updated.name == "Dock scheduling v2"


def test_version_conflict_leaves_row_untouched(repo):
    with repo.transaction():
        repo.create_initiative(_model())

    assert repo.update_initiative(_model(name="Lost write"), expected_version=7) == VERSION_CONFLICT
    assert repo.update_initiative(_model("ghost"), expected_version=1) == NOT_FOUND

    row = _db.session.get(Initiative, "init-1", populate_existing=True)
    assert row.version == 1
    assert row.name == "Dock scheduling"


def test_transaction_rollback_discards_every_write(repo):
    with repo.transaction():
        repo.create_initiative(_model())

    with pytest.raises(RuntimeError):
        with repo.transaction():
            repo.insert_approvals(_tasks())
            repo.insert_events(build_create_event(_model()))
            raise RuntimeError("boom")

    assert _db.session.query(InitiativeApproval).count() == 0
    assert _db.session.query(InitiativeEvent).count() == 0


def test_stage_queries_and_bulk_updates(repo):
    with repo.transaction():
        repo.create_initiative(_model())
        repo.insert_approvals(_tasks(round_index=0))
        repo.insert_approvals(_tasks(round_index=1, accounts=("c",), role="legal"))

    assert len(repo.list_approvals_for_stage("init-1", "l1")) == 3
    assert [t.account_id for t in repo.list_approvals_for_stage("init-1", "l1", 1)] == ["c"]

    with repo.transaction():
        repo.update_approval_status("init-1-l1-0-a", "approved", "fine")
        repo.update_approvals_for_role("init-1", "l1", 0, "finance", ["pending"], "approved", "auto")
        repo.update_approvals_for_stage("init-1", "l1", ["pending"], "returned", "stop", round_index=1)

    by_id = {t.id: t for t in repo.list_approvals_for_stage("init-1", "l1")}
    assert (by_id["init-1-l1-0-a"].status, by_id["init-1-l1-0-a"].comment) == ("approved", "fine")
    assert (by_id["init-1-l1-0-b"].status, by_id["init-1-l1-0-b"].comment) == ("approved", "auto")
    assert by_id["init-1-l1-1-c"].status == "returned"
    assert by_id["init-1-l1-1-c"].decided_at is not None

    assert [t.id for t in repo.list_approvals(status="returned")] == ["init-1-l1-1-c"]
    assert {t.id for t in repo.list_approvals(account_id="a")} == {"init-1-l1-0-a"}

    with repo.transaction():
        repo.delete_approvals_for_stage("init-1", "l1")
    assert repo.list_approvals_for_stage("init-1", "l1") == []


def test_delete_initiative_removes_children(repo):
    with repo.transaction():
        repo.create_initiative(_model())
        repo.insert_approvals(_tasks())
        repo.insert_events(build_create_event(_model()))

    with repo.transaction():
        assert repo.delete_initiative("init-1") is True

    assert repo.find_initiative("init-1") is None
    assert repo.list_events("init-1") == []
    assert repo.list_approvals() == []
    with repo.transaction():
        assert repo.delete_initiative("init-1") is False
