"""
Workstream configuration service.

Owns the approval gate configuration (gate key → ordered rounds of
role requirements) and the account → role assignments that the approval
workflow reads to compose tasks.

Gate normalization accepts what older clients stored:
    - legacy gate keys ``l1`` … ``l5`` for ``l1-gate`` … ``l5-gate``
    - a round-level ``rule``, or a rule found on any approver, as the
      default rule of requirements that carry none
Requirements without a role and rounds without requirements are dropped;
a role repeated inside one round keeps its first rule.
"""

from __future__ import annotations

import logging
import uuid

from portfolio.core.exceptions import NotFoundError, ValidationError, VersionConflictError
from portfolio.models.records import (
    NOT_FOUND,
    VERSION_CONFLICT,
    ApprovalRound,
    ApproverRequirement,
    RoleAssignment,
    WorkstreamRecord,
)
from portfolio.models.stages import GATE_KEYS, normalize_gate_key
from portfolio.services.approval_rules import DEFAULT_RULE, normalize_rule
from portfolio.utils.helpers import ACCOUNT_ID_MAX_LENGTH, ID_MAX_LENGTH, NAME_MAX_LENGTH, check_max_lengths

logger = logging.getLogger(__name__)

ROLE_MAX_LENGTH = 100


# ── Gate normalization ───────────────────────────────────────────────────────


def _clean(value) -> str:
    return value.strip() if isinstance(value, str) else ""


def _round_default_rule(raw: dict):
    if raw.get("rule") is not None:
        return normalize_rule(raw.get("rule"))
    for approver in raw.get("approvers") or []:
        if isinstance(approver, dict) and approver.get("rule") is not None:
            return normalize_rule(approver.get("rule"))
    return DEFAULT_RULE


def normalize_round(raw) -> ApprovalRound | None:
    if isinstance(raw, ApprovalRound):
        raw = raw.to_dict()
    if not isinstance(raw, dict):
        return None
    default_rule = _round_default_rule(raw)
    requirements: dict[str, ApproverRequirement] = {}
    for approver in raw.get("approvers") or []:
        if not isinstance(approver, dict):
            continue
        role = _clean(approver.get("role"))
        if not role or role in requirements:
            continue
        requirements[role] = ApproverRequirement(
            role=role,
            rule=normalize_rule(approver.get("rule"), default=default_rule).value,
            id=_clean(approver.get("id")) or str(uuid.uuid4()),
        )
    if not requirements:
        return None
    return ApprovalRound(id=_clean(raw.get("id")) or str(uuid.uuid4()), approvers=list(requirements.values()))


def normalize_gates(value) -> dict[str, list[ApprovalRound]]:
    """Every gate key present; canonical keys win over legacy aliases."""
    gates: dict[str, list[ApprovalRound]] = {key: [] for key in GATE_KEYS}
    if not isinstance(value, dict):
        return gates
    seen_canonical = set()
    for raw_key, raw_rounds in value.items():
        gate_key = normalize_gate_key(raw_key)
        if gate_key is None or not isinstance(raw_rounds, list):
            continue
        canonical = _clean(raw_key).lower() == gate_key
        if gate_key in seen_canonical and not canonical:
            continue
        rounds = [r for r in (normalize_round(item) for item in raw_rounds) if r]
        if canonical:
            seen_canonical.add(gate_key)
            gates[gate_key] = rounds
        elif not gates[gate_key]:
            gates[gate_key] = rounds
    return gates


def gates_to_json(gates: dict[str, list[ApprovalRound]]) -> dict:
    return {key: [r.to_dict() for r in rounds] for key, rounds in gates.items()}


def normalize_assignments(value) -> list[RoleAssignment]:
    """Blank account ids / roles dropped, duplicates collapsed, order kept."""
    if not isinstance(value, list):
        raise ValidationError("assignments must be a list")
    seen = set()
    result = []
    for item in value:
        if not isinstance(item, dict):
            continue
        account_id = _clean(item.get("account_id"))
        role = _clean(item.get("role"))
        if not account_id or not role or (account_id, role) in seen:
            continue
        check_max_lengths(("account_id", account_id, ACCOUNT_ID_MAX_LENGTH), ("role", role, ROLE_MAX_LENGTH))
        seen.add((account_id, role))
        result.append(RoleAssignment(account_id=account_id, role=role))
    return result


# ── Service ──────────────────────────────────────────────────────────────────


class WorkstreamsService:
    """Versioned workstream CRUD and role assignments."""

    def __init__(self, repository):
        self.repository = repository

    # ── Reads ────────────────────────────────────────────────────────────

    def list_workstreams(self) -> list[WorkstreamRecord]:
        return self.repository.list_workstreams()

    def get_workstream(self, workstream_id: str) -> WorkstreamRecord:
        record = self.repository.find_workstream(workstream_id)
        if record is None:
            raise NotFoundError(resource="Workstream", resource_id=workstream_id)
        return record

    def list_assignments(self, workstream_id: str) -> list[RoleAssignment]:
        self.get_workstream(workstream_id)
        return self.repository.list_assignments_by_workstream(workstream_id)

    # ── Writes ───────────────────────────────────────────────────────────

    def _sanitize(self, payload, id_override: str | None = None) -> WorkstreamRecord:
        if not isinstance(payload, dict):
            raise ValidationError("Request body must be a JSON object")
        name = _clean(payload.get("name"))
        if not name:
            raise ValidationError("name is required", details={"name": "required"})
        check_max_lengths(
            ("id", None if id_override else _clean(payload.get("id")), ID_MAX_LENGTH),
            ("name", name, NAME_MAX_LENGTH),
        )
        return WorkstreamRecord(
            id=id_override or _clean(payload.get("id")) or str(uuid.uuid4()),
            name=name,
            description=_clean(payload.get("description")),
            gates=normalize_gates(payload.get("gates")),
        )

    def create_workstream(self, payload) -> WorkstreamRecord:
        model = self._sanitize(payload)
        with self.repository.transaction():
            if self.repository.find_workstream(model.id) is not None:
                raise ValidationError(
                    f"Workstream id={model.id} already exists", details={"id": "duplicate"}
                )
            record = self.repository.create_workstream(model)
        logger.info("Workstream created", extra={"workstream_id": record.id})
        return record

    def update_workstream(self, workstream_id: str, payload, expected_version) -> WorkstreamRecord:
        if not isinstance(expected_version, int) or isinstance(expected_version, bool):
            raise ValidationError("expected_version must be an integer", details={"expected_version": "required"})
        model = self._sanitize(payload, id_override=workstream_id)
        with self.repository.transaction():
            result = self.repository.update_workstream(model, expected_version)
            if result == NOT_FOUND:
                raise NotFoundError(resource="Workstream", resource_id=workstream_id)
            if result == VERSION_CONFLICT:
                logger.warning(
                    "Workstream version conflict",
                    extra={"workstream_id": workstream_id},
                )
                raise VersionConflictError("Workstream", workstream_id, expected_version)
        logger.info("Workstream updated", extra={"workstream_id": workstream_id})
        return result

    def delete_workstream(self, workstream_id: str) -> str:
        with self.repository.transaction():
            if self.repository.has_initiatives(workstream_id):
                raise ValidationError(
                    "Workstream still has initiatives",
                    details={"workstream_id": workstream_id},
                )
            if not self.repository.delete_workstream(workstream_id):
                raise NotFoundError(resource="Workstream", resource_id=workstream_id)
        logger.info("Workstream deleted", extra={"workstream_id": workstream_id})
        return workstream_id

    def replace_assignments(self, workstream_id: str, assignments) -> list[RoleAssignment]:
        cleaned = normalize_assignments(assignments)
        with self.repository.transaction():
            if self.repository.find_workstream(workstream_id) is None:
                raise NotFoundError(resource="Workstream", resource_id=workstream_id)
            result = self.repository.replace_assignments(workstream_id, cleaned)
        logger.info(
            "Role assignments replaced (%d)",
            len(result),
            extra={"workstream_id": workstream_id},
        )
        return result
