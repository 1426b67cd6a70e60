"""
Plain records exchanged between the workflow service and its repositories.

The service never touches ORM instances: repositories map rows to these
dataclasses and back, which keeps the workflow testable against an
in-memory fake repository.
"""

from __future__ import annotations

import copy
from dataclasses import asdict, dataclass, field, replace

from portfolio.models.stages import DEFAULT_STAGE_STATUS, STAGE_KEYS, STAGE_STATUSES

# ── Sentinels returned by versioned writes ───────────────────────────────────

VERSION_CONFLICT = "version-conflict"
NOT_FOUND = "not-found"


# ═════════════════════════════════════════════════════════════════════════════
# Initiative aggregate
# ═════════════════════════════════════════════════════════════════════════════

@dataclass
class StageState:
    """Review state of one stage."""
    status: str = DEFAULT_STAGE_STATUS
    round_index: int = 0
    comment: str | None = None

    @classmethod
    def from_dict(cls, value) -> StageState:
        if not isinstance(value, dict):
            return cls()
        status = value.get("status")
        if status not in STAGE_STATUSES:
            status = DEFAULT_STAGE_STATUS
        round_index = value.get("round_index", value.get("roundIndex", 0))
        if not isinstance(round_index, int) or isinstance(round_index, bool) or round_index < 0:
            round_index = 0
        comment = value.get("comment")
        return cls(status=status, round_index=round_index, comment=comment if isinstance(comment, str) else None)

    def to_dict(self) -> dict:
        return {"status": self.status, "round_index": self.round_index, "comment": self.comment}


def default_stage_state() -> dict[str, StageState]:
    return {key: StageState() for key in STAGE_KEYS}


def normalize_stage_state(value) -> dict[str, StageState]:
    """Every stage key always has an entry; unknown keys are dropped."""
    source = value if isinstance(value, dict) else {}
    result = {}
    for key in STAGE_KEYS:
        raw = source.get(key)
        result[key] = raw if isinstance(raw, StageState) else StageState.from_dict(raw)
    return result


@dataclass
class InitiativeWriteModel:
    """Everything a versioned write persists (version/timestamps excluded)."""
    id: str
    workstream_id: str
    name: str
    description: str
    owner_account_id: str | None
    owner_name: str | None
    current_status: str
    active_stage: str
    l4_date: str | None
    stages: dict
    stage_state: dict[str, StageState]
    plan: dict


@dataclass
class InitiativeRecord(InitiativeWriteModel):
    version: int = 1
    created_at: str | None = None
    updated_at: str | None = None

    def to_write_model(self, **changes) -> InitiativeWriteModel:
        """Deep-copied write model of this record with *changes* applied."""
        base = InitiativeWriteModel(
            id=self.id,
            workstream_id=self.workstream_id,
            name=self.name,
            description=self.description,
            owner_account_id=self.owner_account_id,
            owner_name=self.owner_name,
            current_status=self.current_status,
            active_stage=self.active_stage,
            l4_date=self.l4_date,
            stages=copy.deepcopy(self.stages),
            stage_state={key: replace(state) for key, state in self.stage_state.items()},
            plan=copy.deepcopy(self.plan),
        )
        return replace(base, **changes)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "workstream_id": self.workstream_id,
            "name": self.name,
            "description": self.description,
            "owner_account_id": self.owner_account_id,
            "owner_name": self.owner_name,
            "current_status": self.current_status,
            "active_stage": self.active_stage,
            "l4_date": self.l4_date,
            "version": self.version,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "stages": copy.deepcopy(self.stages),
            "stage_state": {key: state.to_dict() for key, state in self.stage_state.items()},
            "plan": copy.deepcopy(self.plan),
        }


# ═════════════════════════════════════════════════════════════════════════════
# Approvals
# ═════════════════════════════════════════════════════════════════════════════

@dataclass
class ApprovalTask:
    """One persisted voting slot."""
    id: str
    initiative_id: str
    stage_key: str
    round_index: int
    role: str
    rule: str
    account_id: str | None
    status: str = "pending"
    comment: str | None = None
    created_at: str | None = None
    decided_at: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ApproverRequirement:
    """(role, rule) pair: how many of the role's accounts must approve."""
    role: str
    rule: str = "any"
    id: str | None = None

    def to_dict(self) -> dict:
        return {"id": self.id, "role": self.role, "rule": self.rule}


@dataclass
class ApprovalRound:
    id: str
    approvers: list[ApproverRequirement] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"id": self.id, "approvers": [a.to_dict() for a in self.approvers]}


# ═════════════════════════════════════════════════════════════════════════════
# Workstreams
# ═════════════════════════════════════════════════════════════════════════════

@dataclass
class WorkstreamRecord:
    id: str
    name: str
    description: str = ""
    gates: dict[str, list[ApprovalRound]] = field(default_factory=dict)
    version: int = 1
    created_at: str | None = None
    updated_at: str | None = None

    def rounds_for(self, gate_key: str | None) -> list[ApprovalRound]:
        if not gate_key:
            return []
        return list(self.gates.get(gate_key) or [])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "gates": {key: [r.to_dict() for r in rounds] for key, rounds in self.gates.items()},
            "version": self.version,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class RoleAssignment:
    account_id: str
    role: str
    workstream_id: str | None = None
    id: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


# ═════════════════════════════════════════════════════════════════════════════
# Audit
# ═════════════════════════════════════════════════════════════════════════════

@dataclass
class Actor:
    """Who performed a mutation; both parts optional."""
    account_id: str | None = None
    name: str | None = None


@dataclass
class ChangeEntry:
    """One field-level change belonging to one event."""
    id: str
    event_id: str
    initiative_id: str
    event_type: str
    field: str
    previous_value: object = None
    next_value: object = None
    actor_account_id: str | None = None
    actor_name: str | None = None
    created_at: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)
