"""
SQLAlchemy repository for the initiative aggregate, its approval rows and
its change events.

Every write method only ``flush()``es.  Callers group writes with
``transaction()`` so approval-row replacement, the stage-state write and
the change events commit together or not at all.
"""

from __future__ import annotations

import logging

from sqlalchemy import delete, select, update

from portfolio.models import db
from portfolio.models.initiative import Initiative, InitiativeApproval, InitiativeEvent
from portfolio.models.records import (
    NOT_FOUND,
    VERSION_CONFLICT,
    ApprovalTask,
    ChangeEntry,
    InitiativeRecord,
    InitiativeWriteModel,
    normalize_stage_state,
)
from portfolio.services.initiative_payloads import empty_plan, sanitize_stage_map
from portfolio.utils.helpers import from_iso, to_iso, unit_of_work, utcnow

logger = logging.getLogger(__name__)


# ── Row ↔ record mapping ─────────────────────────────────────────────────────


def _to_record(row: Initiative) -> InitiativeRecord:
    return InitiativeRecord(
        id=row.id,
        workstream_id=row.workstream_id,
        name=row.name,
        description=row.description or "",
        owner_account_id=row.owner_account_id,
        owner_name=row.owner_name,
        current_status=row.current_status,
        active_stage=row.active_stage,
        l4_date=row.l4_date,
        stages=sanitize_stage_map(row.stage_payload),
        stage_state=normalize_stage_state(row.stage_state),
        plan=row.plan_payload or empty_plan(),
        version=row.version,
        created_at=to_iso(row.created_at),
        updated_at=to_iso(row.updated_at),
    )


def _column_values(model: InitiativeWriteModel) -> dict:
    return {
        "workstream_id": model.workstream_id,
        "name": model.name,
        "description": model.description,
        "owner_account_id": model.owner_account_id,
        "owner_name": model.owner_name,
        "current_status": model.current_status,
        "active_stage": model.active_stage,
        "l4_date": model.l4_date,
        "stage_payload": model.stages,
        "stage_state": {key: state.to_dict() for key, state in model.stage_state.items()},
        "plan_payload": model.plan,
    }


def _to_task(row: InitiativeApproval) -> ApprovalTask:
    return ApprovalTask(
        id=row.id,
        initiative_id=row.initiative_id,
        stage_key=row.stage_key,
        round_index=row.round_index,
        role=row.role,
        rule=row.rule,
        account_id=row.account_id,
        status=row.status,
        comment=row.comment,
        created_at=to_iso(row.created_at),
        decided_at=to_iso(row.decided_at),
    )


def _to_entry(row: InitiativeEvent) -> ChangeEntry:
    return ChangeEntry(
        id=row.id,
        event_id=row.event_id,
        initiative_id=row.initiative_id,
        event_type=row.event_type,
        field=row.field,
        previous_value=row.previous_value,
        next_value=row.next_value,
        actor_account_id=row.actor_account_id,
        actor_name=row.actor_name,
        created_at=to_iso(row.created_at),
    )


class InitiativesRepository:
    """Persistence for initiatives, approval rows and change events."""

    def transaction(self):
        return unit_of_work()

    # ═════════════════════════════════════════════════════════════════════
    # Initiatives
    # ═════════════════════════════════════════════════════════════════════

    def list_initiatives(self) -> list[InitiativeRecord]:
        rows = db.session.execute(
            select(Initiative)
            .order_by(Initiative.updated_at.desc())
            .execution_options(populate_existing=True)
        ).scalars().all()
        return [_to_record(row) for row in rows]

    def find_initiative(self, initiative_id: str) -> InitiativeRecord | None:
        row = db.session.get(Initiative, initiative_id, populate_existing=True)
        return _to_record(row) if row else None

    def create_initiative(self, model: InitiativeWriteModel) -> InitiativeRecord:
        now = utcnow()
        row = Initiative(id=model.id, version=1, created_at=now, updated_at=now, **_column_values(model))
        db.session.add(row)
        db.session.flush()
        return _to_record(row)

    def update_initiative(self, model: InitiativeWriteModel, expected_version: int):
        """Conditional write guarded by *expected_version*.

        Returns the updated record, ``"version-conflict"`` when the stored
        version moved on, or ``"not-found"`` when the row is gone.
        """
        result = db.session.execute(
            update(Initiative)
            .where(Initiative.id == model.id, Initiative.version == expected_version)
            .values(version=Initiative.version + 1, updated_at=utcnow(), **_column_values(model))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            exists = db.session.scalar(select(Initiative.id).where(Initiative.id == model.id))
            outcome = NOT_FOUND if exists is None else VERSION_CONFLICT
            logger.info(
                "Conditional initiative update matched no row: %s",
                outcome,
                extra={"initiative_id": model.id},
            )
            return outcome
        row = db.session.get(Initiative, model.id, populate_existing=True)
        return _to_record(row)

    def delete_initiative(self, initiative_id: str) -> bool:
        db.session.execute(delete(InitiativeApproval).where(InitiativeApproval.initiative_id == initiative_id))
        db.session.execute(delete(InitiativeEvent).where(InitiativeEvent.initiative_id == initiative_id))
        result = db.session.execute(delete(Initiative).where(Initiative.id == initiative_id))
        db.session.flush()
        return result.rowcount > 0

    # ═════════════════════════════════════════════════════════════════════
    # Approval rows
    # ═════════════════════════════════════════════════════════════════════

    def find_approval(self, approval_id: str) -> ApprovalTask | None:
        row = db.session.get(InitiativeApproval, approval_id, populate_existing=True)
        return _to_task(row) if row else None

    def list_approvals(self, status: str | None = None, account_id: str | None = None) -> list[ApprovalTask]:
        stmt = select(InitiativeApproval)
        if status:
            stmt = stmt.where(InitiativeApproval.status == status)
        if account_id:
            stmt = stmt.where(InitiativeApproval.account_id == account_id)
        stmt = stmt.order_by(InitiativeApproval.created_at.desc()).execution_options(populate_existing=True)
        return [_to_task(row) for row in db.session.execute(stmt).scalars()]

    def list_approvals_for_stage(
        self, initiative_id: str, stage_key: str, round_index: int | None = None
    ) -> list[ApprovalTask]:
        stmt = select(InitiativeApproval).where(
            InitiativeApproval.initiative_id == initiative_id,
            InitiativeApproval.stage_key == stage_key,
        )
        if round_index is not None:
            stmt = stmt.where(InitiativeApproval.round_index == round_index)
        stmt = stmt.order_by(
            InitiativeApproval.round_index, InitiativeApproval.role, InitiativeApproval.created_at
        ).execution_options(populate_existing=True)
        return [_to_task(row) for row in db.session.execute(stmt).scalars()]

    def delete_approvals_for_stage(self, initiative_id: str, stage_key: str) -> None:
        db.session.execute(
            delete(InitiativeApproval).where(
                InitiativeApproval.initiative_id == initiative_id,
                InitiativeApproval.stage_key == stage_key,
            )
        )

    def insert_approvals(self, tasks: list[ApprovalTask]) -> None:
        now = utcnow()
        db.session.add_all(
            InitiativeApproval(
                id=task.id,
                initiative_id=task.initiative_id,
                stage_key=task.stage_key,
                round_index=task.round_index,
                role=task.role,
                rule=task.rule,
                account_id=task.account_id,
                status=task.status,
                comment=task.comment,
                created_at=now,
            )
            for task in tasks
        )
        db.session.flush()

    def update_approval_status(self, approval_id: str, status: str, comment: str | None) -> None:
        db.session.execute(
            update(InitiativeApproval)
            .where(InitiativeApproval.id == approval_id)
            .values(status=status, comment=comment, decided_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    def update_approvals_for_stage(
        self,
        initiative_id: str,
        stage_key: str,
        from_statuses: list[str],
        to_status: str,
        comment: str | None,
        round_index: int | None = None,
    ) -> None:
        stmt = update(InitiativeApproval).where(
            InitiativeApproval.initiative_id == initiative_id,
            InitiativeApproval.stage_key == stage_key,
            InitiativeApproval.status.in_(from_statuses),
        )
        if round_index is not None:
            stmt = stmt.where(InitiativeApproval.round_index == round_index)
        db.session.execute(
            stmt.values(status=to_status, comment=comment, decided_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    def update_approvals_for_role(
        self,
        initiative_id: str,
        stage_key: str,
        round_index: int,
        role: str,
        from_statuses: list[str],
        to_status: str,
        comment: str | None,
    ) -> None:
        db.session.execute(
            update(InitiativeApproval)
            .where(
                InitiativeApproval.initiative_id == initiative_id,
                InitiativeApproval.stage_key == stage_key,
                InitiativeApproval.round_index == round_index,
                InitiativeApproval.role == role,
                InitiativeApproval.status.in_(from_statuses),
            )
            .values(status=to_status, comment=comment, decided_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    # ═════════════════════════════════════════════════════════════════════
    # Change events
    # ═════════════════════════════════════════════════════════════════════

    def insert_events(self, entries: list[ChangeEntry]) -> None:
        if not entries:
            return
        db.session.add_all(
            InitiativeEvent(
                id=entry.id,
                event_id=entry.event_id,
                initiative_id=entry.initiative_id,
                event_type=entry.event_type,
                field=entry.field,
                previous_value=entry.previous_value,
                next_value=entry.next_value,
                actor_account_id=entry.actor_account_id,
                actor_name=entry.actor_name,
                created_at=from_iso(entry.created_at) or utcnow(),
            )
            for entry in entries
        )
        db.session.flush()

    def list_events(self, initiative_id: str) -> list[ChangeEntry]:
        rows = db.session.execute(
            select(InitiativeEvent)
            .where(InitiativeEvent.initiative_id == initiative_id)
            .order_by(InitiativeEvent.created_at.desc(), InitiativeEvent.event_id.desc())
        ).scalars()
        return [_to_entry(row) for row in rows]
