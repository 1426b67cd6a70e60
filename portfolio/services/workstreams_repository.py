"""SQLAlchemy repository for workstreams and their role assignments."""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import delete, func, select, update

from portfolio.models import db
from portfolio.models.initiative import Initiative
from portfolio.models.records import NOT_FOUND, VERSION_CONFLICT, RoleAssignment, WorkstreamRecord
from portfolio.models.workstream import Workstream, WorkstreamRoleAssignment
from portfolio.services.workstream_service import gates_to_json, normalize_gates
from portfolio.utils.helpers import to_iso, unit_of_work, utcnow

logger = logging.getLogger(__name__)


def _to_record(row: Workstream) -> WorkstreamRecord:
    return WorkstreamRecord(
        id=row.id,
        name=row.name,
        description=row.description or "",
        gates=normalize_gates(row.gates),
        version=row.version,
        created_at=to_iso(row.created_at),
        updated_at=to_iso(row.updated_at),
    )


def _to_assignment(row: WorkstreamRoleAssignment) -> RoleAssignment:
    return RoleAssignment(account_id=row.account_id, role=row.role, workstream_id=row.workstream_id, id=row.id)


class WorkstreamsRepository:

    def transaction(self):
        return unit_of_work()

    def list_workstreams(self) -> list[WorkstreamRecord]:
        rows = db.session.execute(
            select(Workstream).order_by(Workstream.name).execution_options(populate_existing=True)
        ).scalars()
        return [_to_record(row) for row in rows]

    def find_workstream(self, workstream_id: str) -> WorkstreamRecord | None:
        if not workstream_id:
            return None
        row = db.session.get(Workstream, workstream_id, populate_existing=True)
        return _to_record(row) if row else None

    def create_workstream(self, model: WorkstreamRecord) -> WorkstreamRecord:
        now = utcnow()
        row = Workstream(
            id=model.id,
            name=model.name,
            description=model.description,
            gates=gates_to_json(model.gates),
            version=1,
            created_at=now,
            updated_at=now,
        )
        db.session.add(row)
        db.session.flush()
        return _to_record(row)

    def update_workstream(self, model: WorkstreamRecord, expected_version: int):
        result = db.session.execute(
            update(Workstream)
            .where(Workstream.id == model.id, Workstream.version == expected_version)
            .values(
                name=model.name,
                description=model.description,
                gates=gates_to_json(model.gates),
                version=Workstream.version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            exists = db.session.scalar(select(Workstream.id).where(Workstream.id == model.id))
            outcome = NOT_FOUND if exists is None else VERSION_CONFLICT
            logger.info(
                "Conditional workstream update matched no row: %s",
                outcome,
                extra={"workstream_id": model.id},
            )
            return outcome
        return self.find_workstream(model.id)

    def delete_workstream(self, workstream_id: str) -> bool:
        db.session.execute(
            delete(WorkstreamRoleAssignment).where(WorkstreamRoleAssignment.workstream_id == workstream_id)
        )
        result = db.session.execute(delete(Workstream).where(Workstream.id == workstream_id))
        return result.rowcount > 0

    def has_initiatives(self, workstream_id: str) -> bool:
        count = db.session.scalar(
            select(func.count()).select_from(Initiative).where(Initiative.workstream_id == workstream_id)
        )
        return bool(count)

    # ── Role assignments ─────────────────────────────────────────────────

    def list_assignments_by_workstream(self, workstream_id: str) -> list[RoleAssignment]:
        rows = db.session.execute(
            select(WorkstreamRoleAssignment)
            .where(WorkstreamRoleAssignment.workstream_id == workstream_id)
            .order_by(WorkstreamRoleAssignment.role, WorkstreamRoleAssignment.created_at)
            .execution_options(populate_existing=True)
        ).scalars()
        return [_to_assignment(row) for row in rows]

    def replace_assignments(self, workstream_id: str, assignments: list[RoleAssignment]) -> list[RoleAssignment]:
        db.session.execute(
            delete(WorkstreamRoleAssignment).where(WorkstreamRoleAssignment.workstream_id == workstream_id)
        )
        now = utcnow()
        db.session.add_all(
            WorkstreamRoleAssignment(
                id=str(uuid.uuid4()),
                workstream_id=workstream_id,
                account_id=item.account_id,
                role=item.role,
                created_at=now,
                updated_at=now,
            )
            for item in assignments
        )
        db.session.flush()
        return self.list_assignments_by_workstream(workstream_id)
