"""
Approval rule engine & round composer.

Pure functions, no persistence:

    is_satisfied(rule, approved, total)     → does a role meet its rule?
    build_role_lookup(assignments)          → role → [account ids]
    compose_round_tasks(...)                → pending ApprovalTask rows
    summarize_roles(tasks)                  → per-role progress of a round
    is_round_satisfied(tasks)               → every role in the round met?

Lookups are built per call and never cached: the satisfaction check must
be re-evaluable from persisted rows at any time.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum

from portfolio.core.exceptions import MissingApproversError
from portfolio.models.records import ApprovalRound, ApprovalTask, RoleAssignment


class ApprovalRule(str, Enum):
    ANY = "any"
    ALL = "all"
    MAJORITY = "majority"


DEFAULT_RULE = ApprovalRule.ANY


def normalize_rule(value, default: ApprovalRule = DEFAULT_RULE) -> ApprovalRule:
    if isinstance(value, ApprovalRule):
        return value
    if isinstance(value, str):
        try:
            return ApprovalRule(value.strip().lower())
        except ValueError:
            pass
    return default


def required_approvals(rule, total: int) -> int:
    """Number of approvals *rule* needs out of *total* assigned accounts."""
    rule = normalize_rule(rule)
    if rule is ApprovalRule.ALL:
        return total
    if rule is ApprovalRule.MAJORITY:
        return total // 2 + 1
    return 1


def is_satisfied(rule, approved_count: int, total_count: int) -> bool:
    """Evaluate a role requirement.

    A role with nobody assigned can never be satisfied: that is a
    configuration error surfaced at submission, not an automatic pass.
    """
    if total_count <= 0:
        return False
    return approved_count >= required_approvals(rule, total_count)


def build_role_lookup(assignments: list[RoleAssignment]) -> dict[str, list[str]]:
    """Group a workstream's role assignments by role, preserving order."""
    lookup: dict[str, list[str]] = {}
    for assignment in assignments:
        accounts = lookup.setdefault(assignment.role, [])
        if assignment.account_id not in accounts:
            accounts.append(assignment.account_id)
    return lookup


def compose_round_tasks(
    initiative_id: str,
    stage_key: str,
    round_index: int,
    approval_round: ApprovalRound,
    role_lookup: dict[str, list[str]],
    gate_key: str | None = None,
) -> list[ApprovalTask]:
    """Materialize one pending task per (role, account) of a round.

    Raises:
        MissingApproversError: a required role has no assigned account.
            Raised before anything is returned, so callers that compose
            first and write second never persist a partial round.
    """
    tasks: list[ApprovalTask] = []
    for requirement in approval_round.approvers:
        accounts = role_lookup.get(requirement.role) or []
        if not accounts:
            raise MissingApproversError(requirement.role, gate_key=gate_key, round_index=round_index)
        rule = normalize_rule(requirement.rule).value
        for account_id in accounts:
            tasks.append(ApprovalTask(
                id=str(uuid.uuid4()),
                initiative_id=initiative_id,
                stage_key=stage_key,
                round_index=round_index,
                role=requirement.role,
                rule=rule,
                account_id=account_id,
                status="pending",
            ))
    return tasks


@dataclass
class RoleProgress:
    role: str
    rule: str
    total: int = 0
    approved: int = 0
    pending: int = 0

    @property
    def satisfied(self) -> bool:
        return is_satisfied(self.rule, self.approved, self.total)

    def to_dict(self) -> dict:
        return {
            "role": self.role,
            "rule": self.rule,
            "total": self.total,
            "approved": self.approved,
            "pending": self.pending,
            "satisfied": self.satisfied,
        }


def summarize_roles(tasks: list[ApprovalTask]) -> dict[str, RoleProgress]:
    """Per-role counters over the task rows of a single round."""
    progress: dict[str, RoleProgress] = {}
    for task in tasks:
        entry = progress.get(task.role)
        if entry is None:
            entry = progress[task.role] = RoleProgress(role=task.role, rule=normalize_rule(task.rule).value)
        entry.total += 1
        if task.status == "approved":
            entry.approved += 1
        elif task.status == "pending":
            entry.pending += 1
    return progress


def is_round_satisfied(tasks: list[ApprovalTask]) -> bool:
    """A round is complete only when every role requirement in it is met."""
    progress = summarize_roles(tasks)
    return bool(progress) and all(entry.satisfied for entry in progress.values())
