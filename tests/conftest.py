"""
Shared pytest fixtures for the Transformation Portfolio test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - fake_repos / memory_services: in-memory repositories for pure
      service tests (same methods as the SQLAlchemy repositories)
    - services: parametrized over "memory" and "sql" so workflow
      properties run against both persistence backends
"""

import copy
import itertools
from contextlib import contextmanager
from dataclasses import dataclass, fields, replace
from datetime import datetime, timezone

import pytest

from portfolio import create_app
from portfolio.models import db as _db
from portfolio.models.records import (
    NOT_FOUND,
    VERSION_CONFLICT,
    InitiativeRecord,
    InitiativeWriteModel,
)
from portfolio.services.initiative_service import InitiativesService
from portfolio.services.workstream_service import WorkstreamsService


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── In-memory repositories ───────────────────────────────────────────────

_clock = itertools.count()


def _now() -> str:
    # Monotonic suffix keeps ordering stable for rows created in the same microsecond
    return f"{datetime.now(timezone.utc).isoformat()}#{next(_clock):08d}"


class FakeWorkstreamsRepository:
    """Dict-backed stand-in for WorkstreamsRepository."""

    def __init__(self, initiatives=None):
        self.workstreams = {}
        self.assignments = {}
        self.initiatives = initiatives

    @contextmanager
    def transaction(self):
        snapshot = copy.deepcopy((self.workstreams, self.assignments))
        try:
            yield self
        except Exception:
            self.workstreams, self.assignments = snapshot
            raise

    def list_workstreams(self):
        return [copy.deepcopy(w) for w in sorted(self.workstreams.values(), key=lambda w: w.name)]

    def find_workstream(self, workstream_id):
        record = self.workstreams.get(workstream_id)
        return copy.deepcopy(record) if record else None

    def create_workstream(self, model):
        now = _now()
        record = replace(model, version=1, created_at=now, updated_at=now)
        self.workstreams[record.id] = copy.deepcopy(record)
        return record

    def update_workstream(self, model, expected_version):
        stored = self.workstreams.get(model.id)
        if stored is None:
            return NOT_FOUND
        if stored.version != expected_version:
            return VERSION_CONFLICT
        record = replace(model, version=stored.version + 1, created_at=stored.created_at, updated_at=_now())
        self.workstreams[model.id] = copy.deepcopy(record)
        return record

    def delete_workstream(self, workstream_id):
        self.assignments.pop(workstream_id, None)
        return self.workstreams.pop(workstream_id, None) is not None

    def has_initiatives(self, workstream_id):
        if self.initiatives is None:
            return False
        return any(r.workstream_id == workstream_id for r in self.initiatives.initiatives.values())

    def list_assignments_by_workstream(self, workstream_id):
        return copy.deepcopy(self.assignments.get(workstream_id, []))

    def replace_assignments(self, workstream_id, assignments):
        self.assignments[workstream_id] = [
            replace(item, workstream_id=workstream_id, id=f"{workstream_id}:{idx}")
            for idx, item in enumerate(assignments)
        ]
        return self.list_assignments_by_workstream(workstream_id)


class FakeInitiativesRepository:
    """Dict-backed stand-in for InitiativesRepository.

    ``transaction()`` snapshots every table and restores it when the block
    raises, mirroring the SQL session rollback.
    """

    def __init__(self):
        self.initiatives = {}
        self.approvals = {}
        self.events = []
        self.commits = 0

    @contextmanager
    def transaction(self):
        snapshot = copy.deepcopy((self.initiatives, self.approvals, self.events))
        try:
            yield self
        except Exception:
            self.initiatives, self.approvals, self.events = snapshot
            raise
        self.commits += 1

    # Initiatives

    def list_initiatives(self):
        records = sorted(self.initiatives.values(), key=lambda r: r.updated_at, reverse=True)
        return [copy.deepcopy(r) for r in records]

    def find_initiative(self, initiative_id):
        record = self.initiatives.get(initiative_id)
        return copy.deepcopy(record) if record else None

    def _store(self, model, version, created_at):
        values = {f.name: copy.deepcopy(getattr(model, f.name)) for f in fields(InitiativeWriteModel)}
        record = InitiativeRecord(**values, version=version, created_at=created_at, updated_at=_now())
        self.initiatives[record.id] = record
        return copy.deepcopy(record)

    def create_initiative(self, model):
        return self._store(model, 1, _now())

    def update_initiative(self, model, expected_version):
        stored = self.initiatives.get(model.id)
        if stored is None:
            return NOT_FOUND
        if stored.version != expected_version:
            return VERSION_CONFLICT
        return self._store(model, stored.version + 1, stored.created_at)

    def delete_initiative(self, initiative_id):
        self.approvals = {k: t for k, t in self.approvals.items() if t.initiative_id != initiative_id}
        self.events = [e for e in self.events if e.initiative_id != initiative_id]
        return self.initiatives.pop(initiative_id, None) is not None

    # Approval rows

    def find_approval(self, approval_id):
        task = self.approvals.get(approval_id)
        return copy.deepcopy(task) if task else None

    def list_approvals(self, status=None, account_id=None):
        return [
            copy.deepcopy(t)
            for t in reversed(list(self.approvals.values()))
            if (not status or t.status == status) and (not account_id or t.account_id == account_id)
        ]

    def list_approvals_for_stage(self, initiative_id, stage_key, round_index=None):
        tasks = [
            t for t in self.approvals.values()
            if t.initiative_id == initiative_id
            and t.stage_key == stage_key
            and (round_index is None or t.round_index == round_index)
        ]
        return [copy.deepcopy(t) for t in sorted(tasks, key=lambda t: (t.round_index, t.role))]

    def delete_approvals_for_stage(self, initiative_id, stage_key):
        self.approvals = {
            k: t for k, t in self.approvals.items()
            if not (t.initiative_id == initiative_id and t.stage_key == stage_key)
        }

    def insert_approvals(self, tasks):
        now = _now()
        for task in tasks:
            self.approvals[task.id] = replace(task, created_at=now)

    def update_approval_status(self, approval_id, status, comment):
        task = self.approvals.get(approval_id)
        if task is not None:
            task.status, task.comment, task.decided_at = status, comment, _now()

    def update_approvals_for_stage(
        self, initiative_id, stage_key, from_statuses, to_status, comment, round_index=None
    ):
        for task in self.approvals.values():
            if (
                task.initiative_id == initiative_id
                and task.stage_key == stage_key
                and task.status in from_statuses
                and (round_index is None or task.round_index == round_index)
            ):
                task.status, task.comment, task.decided_at = to_status, comment, _now()

    def update_approvals_for_role(
        self, initiative_id, stage_key, round_index, role, from_statuses, to_status, comment
    ):
        for task in self.approvals.values():
            if (
                task.initiative_id == initiative_id
                and task.stage_key == stage_key
                and task.round_index == round_index
                and task.role == role
                and task.status in from_statuses
            ):
                task.status, task.comment, task.decided_at = to_status, comment, _now()

    # Change events

    def insert_events(self, entries):
        self.events.extend(copy.deepcopy(entries))

    def list_events(self, initiative_id):
        return [copy.deepcopy(e) for e in reversed(self.events) if e.initiative_id == initiative_id]


# ── Service fixtures ─────────────────────────────────────────────────────


@dataclass
class Services:
    """Both services plus the initiatives repository they share."""
    initiatives: InitiativesService
    workstreams: WorkstreamsService
    repository: object
    backend: str

    def approvals(self, initiative_id, stage_key, round_index=None):
        return self.repository.list_approvals_for_stage(initiative_id, stage_key, round_index)


@pytest.fixture()
def fake_repos():
    initiatives = FakeInitiativesRepository()
    return initiatives, FakeWorkstreamsRepository(initiatives)


@pytest.fixture()
def memory_services(fake_repos):
    initiatives_repo, workstreams_repo = fake_repos
    return Services(
        initiatives=InitiativesService(initiatives_repo, workstreams_repo),
        workstreams=WorkstreamsService(workstreams_repo),
        repository=initiatives_repo,
        backend="memory",
    )


@pytest.fixture()
def sql_services(app):
    initiatives = app.extensions["portfolio.initiatives"]
    return Services(
        initiatives=initiatives,
        workstreams=app.extensions["portfolio.workstreams"],
        repository=initiatives.repository,
        backend="sql",
    )


@pytest.fixture(params=["memory", "sql"])
def services(request):
    """Workflow services backed by the in-memory fakes or by SQLAlchemy."""
    return request.getfixturevalue(f"{request.param}_services")


# ── Convenience builders ─────────────────────────────────────────────────


def _make_workstream(svc, gates=None, assignments=None, workstream_id="ws-1"):
    svc.workstreams.create_workstream({"id": workstream_id, "name": "Procurement", "gates": gates or {}})
    if assignments:
        svc.workstreams.replace_assignments(
            workstream_id,
            [{"account_id": account, "role": role} for account, role in assignments],
        )
    return svc.workstreams.get_workstream(workstream_id)


def _make_initiative(svc, workstream_id="ws-1", active_stage="l0", stages=None, **extra):
    payload = {
        "workstream_id": workstream_id,
        "name": "Supplier consolidation",
        "active_stage": active_stage,
        "stages": stages or {},
    }
    payload.update(extra)
    return svc.initiatives.create_initiative(payload)


@pytest.fixture()
def make_workstream():
    """Builder: make_workstream(svc, gates, [(account, role), ...])."""
    return _make_workstream


@pytest.fixture()
def make_initiative():
    """Builder: make_initiative(svc, active_stage="l1", stages={...})."""
    return _make_initiative
