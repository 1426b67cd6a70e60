"""
Workstream configuration models.

Models:
    - Workstream: a portfolio slice with its approval gate configuration.
    - WorkstreamRoleAssignment: account → role bindings used to resolve
      the approvers of a gate round.

Gate configuration is stored as JSON keyed by gate key:

    {
        "l2-gate": [
            {"id": "...", "rule": "any",
             "approvers": [{"id": "...", "role": "finance", "rule": "all"}]},
            ...
        ],
        ...
    }

Rounds execute strictly in list order.  The workflow only ever reads
this structure; it is edited through the workstream service.
"""

from datetime import datetime, timezone

from portfolio.models import db


def _utcnow():
    return datetime.now(timezone.utc)


class Workstream(db.Model):
    """Workstream with versioned gate configuration."""

    __tablename__ = "workstreams"

    id = db.Column(db.String(36), primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    gates = db.Column(
        db.JSON,
        nullable=False,
        default=dict,
        comment="gate key → ordered list of approval rounds",
    )
    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    assignments = db.relationship(
        "WorkstreamRoleAssignment",
        backref="workstream",
        lazy="dynamic",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Workstream {self.id} v{self.version}>"


class WorkstreamRoleAssignment(db.Model):
    """One account holding one role inside a workstream."""

    __tablename__ = "workstream_role_assignments"
    __table_args__ = (
        db.UniqueConstraint("workstream_id", "account_id", "role", name="uq_workstream_role_assignment"),
        db.Index("ix_role_assignment_workstream_role", "workstream_id", "role"),
    )

    id = db.Column(db.String(36), primary_key=True)
    workstream_id = db.Column(
        db.String(36),
        db.ForeignKey("workstreams.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    account_id = db.Column(db.String(64), nullable=False, index=True)
    role = db.Column(db.String(100), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self) -> str:
        return f"<WorkstreamRoleAssignment {self.account_id}={self.role} @ {self.workstream_id}>"
