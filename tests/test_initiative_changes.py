"""Change audit: diffs, create/update events and timeline grouping."""

from portfolio.models.records import Actor, StageState
from portfolio.services.initiative_changes import (
    build_create_event,
    build_update_event,
    diff_models,
    group_timeline,
    plan_digest,
    stage_digest,
)
from portfolio.services.initiative_payloads import sanitize_write_model


def _model(**overrides):
    payload = {"id": "init-1", "workstream_id": "ws-1", "name": "Warehouse automation"}
    payload.update(overrides)
    return sanitize_write_model(payload)


def test_create_event_is_single_created_entry():
    entries = build_create_event(_model(), Actor(account_id="acc-1", name="Ada"))

    assert len(entries) == 1
    entry = entries[0]
    assert entry.event_type == "create"
    assert entry.field == "created"
    assert entry.previous_value is None
    assert entry.next_value["name"] == "Warehouse automation"
    assert (entry.actor_account_id, entry.actor_name) == ("acc-1", "Ada")


def test_update_without_changes_still_records_one_entry():
    model = _model()
    entries = build_update_event(model, model)

    assert [(e.field, e.previous_value, e.next_value) for e in entries] == [("updated", None, None)]
    assert entries[0].event_type == "update"
    assert entries[0].actor_account_id is None


def test_diff_covers_scalars_stage_payloads_states_and_plan():
    before = _model()
    after = _model(
        name="Warehouse automation II",
        stages={"l1": {"description": "Pilot"}},
        plan={"tasks": [{"name": "Kick-off", "start_date": "2026-01-05"}]},
    )
    after.active_stage = "l1"
    after.stage_state["l0"] = StageState(status="approved")

    fields = [field for field, _before, _after in diff_models(before, after)]
    assert fields == ["name", "active_stage", "stages.l1", "stage_state.l0", "plan"]


def test_regenerated_entity_ids_are_not_changes():
    stages = {"l1": {"kpis": [{"name": "Lead time"}]}}
    assert diff_models(_model(stages=stages), _model(stages=stages)) == []


def test_update_entries_share_one_event_id():
    entries = build_update_event(_model(), _model(name="Renamed", description="New scope"))
    assert len(entries) == 2
    assert len({e.event_id for e in entries}) == 1
    assert len({e.id for e in entries}) == 2


def test_digests():
    digest = stage_digest({
        "name": "Design",
        "financials": {"recurring-costs": [{"distribution": {"m1": 1.25, "m2": 2}}]},
        "kpis": [{"name": "b"}, {"name": "a"}],
    })
    assert digest["financials"]["recurring-costs"] == 3.25
    assert digest["financial_lines"] == 1
    assert digest["kpis"] == ["a", "b"]

    assert plan_digest({"tasks": [
        {"start_date": "2026-02-01", "end_date": "2026-03-01", "progress": 50, "milestone_type": "Value Step"},
        {"start_date": "2026-01-01", "end_date": "2026-01-15", "progress": 0},
    ]}) == {
        "task_count": 2,
        "start_date": "2026-01-01",
        "end_date": "2026-03-01",
        "milestones": 1,
        "progress": 25.0,
    }


def test_group_timeline_newest_first():
    create = build_create_event(_model())
    update = build_update_event(_model(), _model(name="Renamed", description="x"))
    for entry in create:
        entry.created_at = "2026-01-01T00:00:00+00:00"
    for entry in update:
        entry.created_at = "2026-01-02T00:00:00+00:00"

    timeline = group_timeline(create + update)

    assert [e["event_type"] for e in timeline] == ["update", "create"]
    assert [c["field"] for c in timeline[0]["changes"]] == ["name", "description"]
    assert timeline[0]["actor"] == {"account_id": None, "name": None}
