"""Shared helpers for repositories and blueprints.

unit_of_work:     commit-or-rollback scope around a group of flushed writes
to_iso / from_iso: timestamp conversion at the record boundary
check_max_lengths: ValidationError before a value overflows its column
json_body:        request JSON as a dict, or ValidationError
current_actor:    audit identity from request headers
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone

from flask import request
from sqlalchemy.exc import IntegrityError, OperationalError

from portfolio.core.exceptions import ValidationError
from portfolio.models import db
from portfolio.models.records import Actor

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    """ISO-8601 string; naive values (SQLite) are treated as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


# ── Database unit of work ────────────────────────────────────────────────────

@contextmanager
def unit_of_work():
    """Commit the session when the block succeeds, roll back on any error.

    Repository writes only ``flush()``; this is the single place a group of
    them becomes durable.  Usage::

        with repository.transaction():
            repository.delete_approvals_for_stage(initiative_id, "l1")
            repository.insert_approvals(tasks)
            repository.update_initiative(model, expected_version)

    IntegrityError / OperationalError are logged before being re-raised.
    """
    try:
        yield db.session
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error, transaction rolled back: %s", exc.orig)
        raise
    except OperationalError:
        db.session.rollback()
        logger.exception("Database operational error, transaction rolled back")
        raise
    except Exception:
        db.session.rollback()
        raise


# ── Column bounds ────────────────────────────────────────────────────────────

ID_MAX_LENGTH = 36
ACCOUNT_ID_MAX_LENGTH = 64
NAME_MAX_LENGTH = 255


def check_max_lengths(*fields):
    """Raise ValidationError for (field, value, limit) entries whose value is too long.

    Bounded String columns are checked here so that an oversized value is
    INVALID_INPUT on every backend, not a driver DataError.
    """
    too_long = {field: f"max-length-{limit}" for field, value, limit in fields if value and len(value) > limit}
    if too_long:
        raise ValidationError(f"Fields exceed their maximum length: {', '.join(too_long)}", details=too_long)


# ── Request helpers ──────────────────────────────────────────────────────────

def json_body() -> dict:
    """Return the request JSON object; anything else is INVALID_INPUT."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def current_actor() -> Actor:
    """Audit identity from X-Account-Id / X-Account-Name (not authenticated)."""
    actor = Actor(
        account_id=request.headers.get("X-Account-Id", "").strip() or None,
        name=request.headers.get("X-Account-Name", "").strip() or None,
    )
    check_max_lengths(
        ("X-Account-Id", actor.account_id, ACCOUNT_ID_MAX_LENGTH),
        ("X-Account-Name", actor.name, NAME_MAX_LENGTH),
    )
    return actor
