"""
Initiative aggregate models.

Models:
    - Initiative: the tracked entity, with per-stage payloads and states
      stored as JSON and an optimistic-concurrency ``version`` column.
    - InitiativeApproval: one voting slot per (initiative, stage, round,
      role, account).  Rows only exist for the stage currently in review.
    - InitiativeEvent: immutable change log; one row per changed field,
      grouped by ``event_id`` (one event per successful mutation).
"""

from datetime import datetime, timezone

from portfolio.models import db

APPROVAL_STATUSES = ("pending", "approved", "returned", "rejected")


def _utcnow():
    return datetime.now(timezone.utc)


class Initiative(db.Model):
    """Initiative tracked through the L0–L5 stage pipeline."""

    __tablename__ = "initiatives"
    __table_args__ = (
        db.Index("ix_initiatives_workstream_stage", "workstream_id", "active_stage"),
    )

    id = db.Column(db.String(36), primary_key=True)
    workstream_id = db.Column(
        db.String(36),
        db.ForeignKey("workstreams.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    owner_account_id = db.Column(db.String(64), nullable=True)
    owner_name = db.Column(db.String(255), nullable=True)
    current_status = db.Column(db.String(50), nullable=False, default="draft")
    active_stage = db.Column(db.String(10), nullable=False, default="l0")
    l4_date = db.Column(db.String(32), nullable=True, comment="ISO date of the L4 milestone")

    stage_payload = db.Column(db.JSON, nullable=False, default=dict, comment="stage key → stage payload")
    stage_state = db.Column(db.JSON, nullable=False, default=dict, comment="stage key → {status, round_index, comment}")
    plan_payload = db.Column(db.JSON, nullable=False, default=dict)

    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<Initiative {self.id} {self.active_stage} v{self.version}>"


class InitiativeApproval(db.Model):
    """One account's vote slot in one approval round."""

    __tablename__ = "initiative_approvals"
    __table_args__ = (
        db.UniqueConstraint(
            "initiative_id", "stage_key", "round_index", "role", "account_id",
            name="uq_initiative_approval_slot",
        ),
        db.Index("ix_initiative_approvals_round", "initiative_id", "stage_key", "round_index"),
        db.Index("ix_initiative_approvals_account_status", "account_id", "status"),
    )

    id = db.Column(db.String(36), primary_key=True)
    initiative_id = db.Column(
        db.String(36),
        db.ForeignKey("initiatives.id", ondelete="CASCADE"),
        nullable=False,
    )
    stage_key = db.Column(db.String(10), nullable=False)
    round_index = db.Column(db.Integer, nullable=False, default=0)
    role = db.Column(db.String(100), nullable=False)
    rule = db.Column(db.String(20), nullable=False, default="any", comment="any | all | majority")
    account_id = db.Column(db.String(64), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="pending", comment="pending | approved | returned | rejected")
    comment = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<InitiativeApproval {self.id} {self.stage_key}#{self.round_index} {self.role} {self.status}>"


class InitiativeEvent(db.Model):
    """Append-only field-level change row."""

    __tablename__ = "initiative_events"
    __table_args__ = (
        db.Index("ix_initiative_events_timeline", "initiative_id", "created_at"),
    )

    id = db.Column(db.String(36), primary_key=True)
    event_id = db.Column(db.String(36), nullable=False, index=True)
    initiative_id = db.Column(
        db.String(36),
        db.ForeignKey("initiatives.id", ondelete="CASCADE"),
        nullable=False,
    )
    event_type = db.Column(db.String(20), nullable=False, comment="create | update")
    field = db.Column(db.String(100), nullable=False)
    previous_value = db.Column(db.JSON, nullable=True)
    next_value = db.Column(db.JSON, nullable=True)
    actor_account_id = db.Column(db.String(64), nullable=True)
    actor_name = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<InitiativeEvent {self.event_id} {self.field}>"
