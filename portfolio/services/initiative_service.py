"""
Initiative Stage-Gate Workflow Service.

Moves initiatives through the L0–L5 pipeline.  Leaving a stage requires
passing the approval gate configured on the initiative's workstream:

    submit_stage          draft/returned/rejected → pending (round 0 opened)
                          or straight to approved when the gate has no rounds
    decide_approval       one account votes on one task
        return / reject   whole round aborted, stage returned / rejected
        approve           role satisfied → siblings auto-approved;
                          round satisfied → next round, or finalize
    _finalize_stage       stage approved, payload carried into the successor,
                          active_stage advanced, approval rows dropped

Design decisions:
    - Every write to the aggregate goes through ``_write``: a conditional
      update on the version the caller last read plus exactly one change
      event.  ``"version-conflict"`` / ``"not-found"`` from the repository
      become VersionConflictError / NotFoundError.
    - Each public mutation runs inside ``repository.transaction()``; any
      exception (MISSING_APPROVERS, VERSION_CONFLICT, …) rolls back the
      approval rows written before it.
    - Round satisfaction is recomputed from persisted rows on every vote.
      Role lookups are built per call and never cached.
    - Stale votes (initiative moved on, stage no longer pending, round
      already closed) return the current initiative unchanged.
    - Repositories are injected, so the same service runs against the
      SQLAlchemy repositories or in-memory fakes.
"""

from __future__ import annotations

import copy
import logging

from portfolio.core.exceptions import (
    ApprovalNotFoundError,
    ForbiddenError,
    NotFoundError,
    StageAlreadyApprovedError,
    StagePendingError,
    ValidationError,
    VersionConflictError,
    WorkstreamNotFoundError,
)
from portfolio.models.records import (
    NOT_FOUND,
    VERSION_CONFLICT,
    Actor,
    InitiativeRecord,
    InitiativeWriteModel,
    StageState,
)
from portfolio.models.stages import gate_for_stage, next_stage
from portfolio.services.approval_rules import (
    build_role_lookup,
    compose_round_tasks,
    is_round_satisfied,
    summarize_roles,
)
from portfolio.services.initiative_changes import build_create_event, build_update_event, group_timeline
from portfolio.services.initiative_payloads import build_totals, clean_str, sanitize_write_model

logger = logging.getLogger(__name__)

DEFAULT_AUTO_APPROVE_COMMENT = "Auto-approved (rule satisfied)"

DECISION_STATUS = {
    "approve": "approved",
    "return": "returned",
    "reject": "rejected",
}


def to_response(record: InitiativeRecord) -> dict:
    """Initiative as returned to clients: the record plus financial totals."""
    data = record.to_dict()
    data["totals"] = build_totals(record.stages)
    return data


def _copy_states(record: InitiativeRecord) -> dict[str, StageState]:
    return {key: StageState(state.status, state.round_index, state.comment) for key, state in record.stage_state.items()}


def _require_version(expected_version) -> int:
    if not isinstance(expected_version, int) or isinstance(expected_version, bool):
        raise ValidationError(
            "expected_version must be an integer",
            details={"expected_version": "required"},
        )
    return expected_version


class InitiativesService:
    """Stage-gate workflow over an initiatives repository.

    Args:
        repository: Initiative / approval-row / event persistence
            (``InitiativesRepository`` or a fake with the same methods).
        workstreams: Gate configuration and role assignments
            (``find_workstream``, ``list_assignments_by_workstream``).
        auto_approve_comment: Comment stamped on sibling tasks approved
            because their role's rule is already satisfied.
    """

    def __init__(self, repository, workstreams, auto_approve_comment: str = DEFAULT_AUTO_APPROVE_COMMENT):
        self.repository = repository
        self.workstreams = workstreams
        self.auto_approve_comment = auto_approve_comment

    # ═════════════════════════════════════════════════════════════════════
    # CRUD
    # ═════════════════════════════════════════════════════════════════════

    def list_initiatives(self) -> list[dict]:
        return [to_response(record) for record in self.repository.list_initiatives()]

    def get_initiative(self, initiative_id: str) -> dict:
        return to_response(self._load(initiative_id))

    def create_initiative(self, payload, actor: Actor | None = None) -> dict:
        model = sanitize_write_model(payload)
        with self.repository.transaction():
            if self.repository.find_initiative(model.id) is not None:
                raise ValidationError(f"Initiative id={model.id} already exists", details={"id": "duplicate"})
            if self.workstreams.find_workstream(model.workstream_id) is None:
                raise WorkstreamNotFoundError(model.workstream_id)
            record = self.repository.create_initiative(model)
            self.repository.insert_events(build_create_event(model, actor))
        logger.info(
            "Initiative created",
            extra={"initiative_id": record.id, "workstream_id": record.workstream_id, "event_type": "create"},
        )
        return to_response(record)

    def update_initiative(self, initiative_id: str, payload, expected_version, actor: Actor | None = None) -> dict:
        """Replace the editable fields of an initiative.

        Stage states and ``active_stage`` are carried over from the stored
        record: only the workflow moves them.
        """
        expected_version = _require_version(expected_version)
        with self.repository.transaction():
            current = self._load(initiative_id)
            model = sanitize_write_model(payload, id_override=initiative_id)
            model.active_stage = current.active_stage
            model.stage_state = _copy_states(current)
            if model.workstream_id != current.workstream_id and self.workstreams.find_workstream(model.workstream_id) is None:
                raise WorkstreamNotFoundError(model.workstream_id)
            record = self._write(current, model, expected_version, actor)
        return to_response(record)

    def delete_initiative(self, initiative_id: str) -> str:
        with self.repository.transaction():
            if not self.repository.delete_initiative(initiative_id):
                raise NotFoundError(resource="Initiative", resource_id=initiative_id)
        logger.info("Initiative deleted", extra={"initiative_id": initiative_id})
        return initiative_id

    # ═════════════════════════════════════════════════════════════════════
    # Stage submission
    # ═════════════════════════════════════════════════════════════════════

    def submit_stage(self, initiative_id: str, expected_version=None, actor: Actor | None = None) -> dict:
        """Send the initiative's active stage for approval.

        Raises:
            NotFoundError, WorkstreamNotFoundError
            StagePendingError: the stage is already awaiting approval.
            StageAlreadyApprovedError: the stage has been approved.
            MissingApproversError: a role of round 0 has no assignee;
                nothing is written.
            VersionConflictError: *expected_version* is stale.
        """
        if expected_version is not None:
            expected_version = _require_version(expected_version)

        with self.repository.transaction():
            record = self._load(initiative_id)
            stage_key = record.active_stage
            state = record.stage_state[stage_key]
            if state.status == "pending":
                raise StagePendingError(stage_key)
            if state.status == "approved":
                raise StageAlreadyApprovedError(stage_key)
            version = record.version if expected_version is None else expected_version

            gate_key = gate_for_stage(stage_key)
            rounds = self._gate_rounds(record, gate_key)
            if not rounds:
                logger.info(
                    "No approval rounds configured, finalizing directly",
                    extra={"initiative_id": record.id, "stage_key": stage_key},
                )
                updated = self._finalize_stage(record, stage_key, 0, version, actor)
                return to_response(updated)

            lookup = build_role_lookup(self.workstreams.list_assignments_by_workstream(record.workstream_id))
            tasks = compose_round_tasks(record.id, stage_key, 0, rounds[0], lookup, gate_key=gate_key)

            self.repository.delete_approvals_for_stage(record.id, stage_key)
            self.repository.insert_approvals(tasks)
            states = _copy_states(record)
            states[stage_key] = StageState(status="pending", round_index=0, comment=None)
            updated = self._write(record, record.to_write_model(stage_state=states), version, actor)

        logger.info(
            "Stage submitted, round 0 opened with %d task(s)",
            len(tasks),
            extra={"initiative_id": record.id, "stage_key": stage_key, "round_index": 0},
        )
        return to_response(updated)

    # ═════════════════════════════════════════════════════════════════════
    # Decisions
    # ═════════════════════════════════════════════════════════════════════

    def decide_approval(
        self,
        approval_id: str,
        decision: str,
        account_id: str | None = None,
        comment: str | None = None,
        actor: Actor | None = None,
    ) -> dict:
        """Record one account's vote and advance the workflow if it completes a round.

        Votes on tasks that already left ``pending`` and stale votes are
        no-ops returning the current initiative.

        Raises:
            ValidationError: unknown decision.
            ApprovalNotFoundError / NotFoundError
            ForbiddenError: the task is bound to a different account.
            MissingApproversError: the next round cannot be composed; the
                whole decision is rolled back.
            VersionConflictError: the initiative changed concurrently.
        """
        decision = clean_str(decision).lower()
        if decision not in DECISION_STATUS:
            raise ValidationError(
                "decision must be one of: approve, return, reject",
                details={"decision": decision or None},
            )
        comment = clean_str(comment) or None
        actor = actor or Actor(account_id=account_id)

        with self.repository.transaction():
            task = self.repository.find_approval(approval_id)
            if task is None:
                raise ApprovalNotFoundError(approval_id)
            record = self._load(task.initiative_id)

            if task.status != "pending":
                logger.debug("Approval already decided, ignoring", extra={"approval_id": approval_id})
                return to_response(record)
            if task.account_id and task.account_id != account_id:
                logger.warning(
                    "Decision by an account the task is not bound to",
                    extra={"approval_id": approval_id, "account_id": account_id},
                )
                raise ForbiddenError(approval_id, account_id)

            state = record.stage_state.get(task.stage_key)
            if (
                record.active_stage != task.stage_key
                or state is None
                or state.status != "pending"
                or state.round_index != task.round_index
            ):
                logger.info(
                    "Stale vote ignored",
                    extra={"approval_id": approval_id, "initiative_id": record.id, "stage_key": task.stage_key},
                )
                return to_response(record)

            status = DECISION_STATUS[decision]
            log_extra = {
                "approval_id": approval_id,
                "initiative_id": record.id,
                "stage_key": task.stage_key,
                "round_index": task.round_index,
                "account_id": account_id,
            }
            self.repository.update_approval_status(task.id, status, comment)
            logger.info("Decision recorded: %s", decision, extra=log_extra)

            if status != "approved":
                updated = self._close_round(record, task, status, comment, actor)
            else:
                updated = self._after_approval(record, task, actor)

        return to_response(updated)

    def _close_round(self, record: InitiativeRecord, task, status: str, comment: str | None, actor):
        """One negative vote aborts the whole round."""
        self.repository.update_approvals_for_stage(
            record.id, task.stage_key, ["pending"], status, comment, round_index=task.round_index
        )
        states = _copy_states(record)
        states[task.stage_key] = StageState(status=status, round_index=task.round_index, comment=comment)
        return self._write(record, record.to_write_model(stage_state=states), record.version, actor)

    def _after_approval(self, record: InitiativeRecord, task, actor) -> InitiativeRecord:
        round_tasks = self.repository.list_approvals_for_stage(record.id, task.stage_key, task.round_index)
        role = summarize_roles(round_tasks).get(task.role)
        if role is not None and role.satisfied and role.pending:
            self.repository.update_approvals_for_role(
                record.id, task.stage_key, task.round_index, task.role,
                ["pending"], "approved", self.auto_approve_comment,
            )
            logger.info(
                "Role %s satisfied, %d sibling task(s) auto-approved",
                task.role,
                role.pending,
                extra={"initiative_id": record.id, "stage_key": task.stage_key, "round_index": task.round_index},
            )
            round_tasks = self.repository.list_approvals_for_stage(record.id, task.stage_key, task.round_index)

        if not is_round_satisfied(round_tasks):
            return record

        gate_key = gate_for_stage(task.stage_key)
        rounds = self._gate_rounds(record, gate_key)
        next_index = task.round_index + 1
        if next_index >= len(rounds):
            return self._finalize_stage(record, task.stage_key, task.round_index, record.version, actor)

        lookup = build_role_lookup(self.workstreams.list_assignments_by_workstream(record.workstream_id))
        tasks = compose_round_tasks(record.id, task.stage_key, next_index, rounds[next_index], lookup, gate_key=gate_key)
        self.repository.insert_approvals(tasks)
        states = _copy_states(record)
        states[task.stage_key] = StageState(status="pending", round_index=next_index, comment=None)
        updated = self._write(record, record.to_write_model(stage_state=states), record.version, actor)
        logger.info(
            "Round %d opened with %d task(s)",
            next_index,
            len(tasks),
            extra={"initiative_id": record.id, "stage_key": task.stage_key, "round_index": next_index},
        )
        return updated

    # ═════════════════════════════════════════════════════════════════════
    # Finalize + versioned write
    # ═════════════════════════════════════════════════════════════════════

    def _finalize_stage(
        self, record: InitiativeRecord, stage_key: str, round_index: int, expected_version: int, actor
    ) -> InitiativeRecord:
        states = _copy_states(record)
        states[stage_key] = StageState(status="approved", round_index=round_index, comment=None)
        stages = copy.deepcopy(record.stages)
        active_stage = record.active_stage
        successor = next_stage(stage_key)
        if successor is not None:
            stages[successor] = copy.deepcopy(stages[stage_key])
            active_stage = successor

        model = record.to_write_model(stages=stages, stage_state=states, active_stage=active_stage)
        updated = self._write(record, model, expected_version, actor)
        self.repository.delete_approvals_for_stage(record.id, stage_key)
        logger.info(
            "Stage finalized, active stage now %s",
            active_stage,
            extra={"initiative_id": record.id, "stage_key": stage_key, "round_index": round_index},
        )
        return updated

    def _write(
        self,
        previous: InitiativeRecord,
        model: InitiativeWriteModel,
        expected_version: int,
        actor: Actor | None,
    ) -> InitiativeRecord:
        result = self.repository.update_initiative(model, expected_version)
        if result == NOT_FOUND:
            raise NotFoundError(resource="Initiative", resource_id=model.id)
        if result == VERSION_CONFLICT:
            logger.warning(
                "Initiative version conflict (expected v%s)",
                expected_version,
                extra={"initiative_id": model.id},
            )
            raise VersionConflictError("Initiative", model.id, expected_version)
        self.repository.insert_events(build_update_event(previous, model, actor))
        return result

    # ═════════════════════════════════════════════════════════════════════
    # Inbox + timeline
    # ═════════════════════════════════════════════════════════════════════

    def list_approval_tasks(self, status: str | None = None, account_id: str | None = None) -> list[dict]:
        """Approval rows enriched with initiative, workstream and round progress."""
        initiatives: dict[str, InitiativeRecord | None] = {}
        workstreams: dict[str, object] = {}
        rounds: dict[tuple, dict] = {}
        items = []
        for task in self.repository.list_approvals(status=status, account_id=account_id):
            if task.initiative_id not in initiatives:
                initiatives[task.initiative_id] = self.repository.find_initiative(task.initiative_id)
            record = initiatives[task.initiative_id]
            if record is None:
                continue
            if record.workstream_id not in workstreams:
                workstreams[record.workstream_id] = self.workstreams.find_workstream(record.workstream_id)
            workstream = workstreams[record.workstream_id]

            round_key = (task.initiative_id, task.stage_key, task.round_index)
            if round_key not in rounds:
                rounds[round_key] = summarize_roles(
                    self.repository.list_approvals_for_stage(task.initiative_id, task.stage_key, task.round_index)
                )
            progress = rounds[round_key].get(task.role)

            gate_rounds = workstream.rounds_for(gate_for_stage(task.stage_key)) if workstream else []
            state = record.stage_state.get(task.stage_key)
            item = task.to_dict()
            item.update({
                "initiative_name": record.name,
                "workstream_id": record.workstream_id,
                "workstream_name": workstream.name if workstream else None,
                "owner_account_id": record.owner_account_id,
                "owner_name": record.owner_name,
                "stage_payload": copy.deepcopy(record.stages.get(task.stage_key)),
                "stage_state": state.to_dict() if state else None,
                "totals": build_totals(record.stages),
                "round_count": len(gate_rounds),
                "role_total": progress.total if progress else 0,
                "role_approved": progress.approved if progress else 0,
                "role_pending": progress.pending if progress else 0,
            })
            items.append(item)
        return items

    def list_events(self, initiative_id: str) -> list[dict]:
        self._load(initiative_id)
        return group_timeline(self.repository.list_events(initiative_id))

    # ── Internals ────────────────────────────────────────────────────────

    def _load(self, initiative_id: str) -> InitiativeRecord:
        record = self.repository.find_initiative(initiative_id)
        if record is None:
            raise NotFoundError(resource="Initiative", resource_id=initiative_id)
        return record

    def _gate_rounds(self, record: InitiativeRecord, gate_key: str | None):
        if gate_key is None:
            return []
        workstream = self.workstreams.find_workstream(record.workstream_id)
        if workstream is None:
            raise WorkstreamNotFoundError(record.workstream_id)
        return workstream.rounds_for(gate_key)
