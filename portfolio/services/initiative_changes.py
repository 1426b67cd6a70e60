"""
Change audit for the initiative aggregate.

Each successful mutation becomes one *event*: a list of ChangeEntry rows
sharing a single ``event_id``.  Fields compared:

    name, description, owner_account_id, owner_name, current_status,
    l4_date, active_stage
    stages.<stage>       — digest of the stage payload
    stage_state.<stage>  — {status, round_index, comment}
    plan                 — timeline summary

Stage payloads and plans are compared through digests, not raw JSON, so
that regenerated ids or reordered keys do not show up as changes.
"""

import logging
import uuid
from datetime import datetime, timezone

from portfolio.models.records import Actor, ChangeEntry, InitiativeWriteModel
from portfolio.models.stages import STAGE_KEYS
from portfolio.services.initiative_payloads import FINANCIAL_KINDS

logger = logging.getLogger(__name__)

SCALAR_FIELDS = (
    "name",
    "description",
    "owner_account_id",
    "owner_name",
    "current_status",
    "l4_date",
    "active_stage",
)

CREATED_FIELD = "created"
UPDATED_FIELD = "updated"


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _distribution_total(entries) -> float:
    return round(sum(
        value
        for entry in entries or []
        for value in (entry.get("distribution") or {}).values()
        if isinstance(value, (int, float))
    ), 2)


def stage_digest(payload: dict | None) -> dict:
    """Comparable summary of one stage payload."""
    payload = payload or {}
    financials = payload.get("financials") or {}
    return {
        "name": payload.get("name") or "",
        "description": payload.get("description") or "",
        "period_month": payload.get("period_month"),
        "period_year": payload.get("period_year"),
        "l4_date": payload.get("l4_date"),
        "value_step_task_id": payload.get("value_step_task_id"),
        "additional_commentary": payload.get("additional_commentary") or "",
        "financials": {kind: _distribution_total(financials.get(kind)) for kind in FINANCIAL_KINDS},
        "financial_lines": sum(len(financials.get(kind) or []) for kind in FINANCIAL_KINDS),
        "kpis": sorted(kpi.get("name", "") for kpi in payload.get("kpis") or []),
        "business_case_files": len(payload.get("business_case_files") or []),
        "supporting_docs": len(payload.get("supporting_docs") or []),
    }


def plan_digest(plan: dict | None) -> dict:
    """Timeline summary: task count, span, milestones, mean progress."""
    tasks = (plan or {}).get("tasks") or []
    starts = [t["start_date"] for t in tasks if t.get("start_date")]
    ends = [t["end_date"] for t in tasks if t.get("end_date")]
    progress = [t.get("progress") or 0 for t in tasks]
    return {
        "task_count": len(tasks),
        "start_date": min(starts) if starts else None,
        "end_date": max(ends) if ends else None,
        "milestones": sum(1 for t in tasks if (t.get("milestone_type") or "Standard") != "Standard"),
        "progress": round(sum(progress) / len(progress), 1) if progress else 0,
    }


def _state_dict(state) -> dict | None:
    if state is None:
        return None
    return state.to_dict() if hasattr(state, "to_dict") else dict(state)


def diff_models(previous: InitiativeWriteModel, current: InitiativeWriteModel) -> list[tuple[str, object, object]]:
    """Return (field, previous, next) for every observable difference."""
    changes = []
    for field in SCALAR_FIELDS:
        before, after = getattr(previous, field), getattr(current, field)
        if before != after:
            changes.append((field, before, after))

    for key in STAGE_KEYS:
        before = stage_digest(previous.stages.get(key))
        after = stage_digest(current.stages.get(key))
        if before != after:
            changes.append((f"stages.{key}", before, after))

    for key in STAGE_KEYS:
        before = _state_dict(previous.stage_state.get(key))
        after = _state_dict(current.stage_state.get(key))
        if before != after:
            changes.append((f"stage_state.{key}", before, after))

    before, after = plan_digest(previous.plan), plan_digest(current.plan)
    if before != after:
        changes.append(("plan", before, after))
    return changes


def _entries(initiative_id, event_type, changes, actor: Actor | None) -> list[ChangeEntry]:
    event_id = str(uuid.uuid4())
    created_at = _utcnow_iso()
    actor = actor or Actor()
    return [
        ChangeEntry(
            id=str(uuid.uuid4()),
            event_id=event_id,
            initiative_id=initiative_id,
            event_type=event_type,
            field=field,
            previous_value=before,
            next_value=after,
            actor_account_id=actor.account_id,
            actor_name=actor.name,
            created_at=created_at,
        )
        for field, before, after in changes
    ]


def build_create_event(model: InitiativeWriteModel, actor: Actor | None = None) -> list[ChangeEntry]:
    """A create is always a single ``created`` entry with no prior value."""
    snapshot = {
        "name": model.name,
        "workstream_id": model.workstream_id,
        "active_stage": model.active_stage,
    }
    return _entries(model.id, "create", [(CREATED_FIELD, None, snapshot)], actor)


def build_update_event(
    previous: InitiativeWriteModel,
    current: InitiativeWriteModel,
    actor: Actor | None = None,
) -> list[ChangeEntry]:
    """Diff-based update event; never empty.

    A write with no observable difference still records one ``updated``
    entry so every mutation stays on the timeline.
    """
    changes = diff_models(previous, current)
    if not changes:
        logger.debug("No observable changes for initiative %s", current.id, extra={"initiative_id": current.id})
        changes = [(UPDATED_FIELD, None, None)]
    return _entries(current.id, "update", changes, actor)


def group_timeline(entries: list[ChangeEntry]) -> list[dict]:
    """Group change rows by event id, newest event first."""
    events: dict[str, dict] = {}
    for entry in entries:
        event = events.get(entry.event_id)
        if event is None:
            event = events[entry.event_id] = {
                "id": entry.event_id,
                "initiative_id": entry.initiative_id,
                "event_type": entry.event_type,
                "created_at": entry.created_at,
                "actor": {"account_id": entry.actor_account_id, "name": entry.actor_name},
                "changes": [],
            }
        event["changes"].append({
            "field": entry.field,
            "previous_value": entry.previous_value,
            "next_value": entry.next_value,
        })
    return sorted(events.values(), key=lambda e: e["created_at"] or "", reverse=True)
