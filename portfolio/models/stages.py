"""
Initiative lifecycle — stage & gate model.

Initiatives move through a fixed, totally ordered sequence of stages.
Every stage after L0 is guarded by an approval gate that sits right
before it in the sequence:

    l0 → l1-gate → l1 → l2-gate → l2 → … → l5-gate → l5

Only stage keys (``l0`` … ``l5``) are ever stored as an initiative's
``active_stage``; gate keys index a workstream's configured approval rounds.
"""

# ── Sequence ─────────────────────────────────────────────────────────────────

STAGE_SEQUENCE = (
    ("l0", "stage"),
    ("l1-gate", "gate"),
    ("l1", "stage"),
    ("l2-gate", "gate"),
    ("l2", "stage"),
    ("l3-gate", "gate"),
    ("l3", "stage"),
    ("l4-gate", "gate"),
    ("l4", "stage"),
    ("l5-gate", "gate"),
    ("l5", "stage"),
)

STAGE_KEYS = tuple(key for key, kind in STAGE_SEQUENCE if kind == "stage")
GATE_KEYS = tuple(key for key, kind in STAGE_SEQUENCE if kind == "gate")

_POSITION = {key: idx for idx, (key, _kind) in enumerate(STAGE_SEQUENCE)}
_KIND = dict(STAGE_SEQUENCE)

DEFAULT_STAGE = "l0"

# ── Stage state ──────────────────────────────────────────────────────────────

STAGE_STATUSES = ("draft", "pending", "approved", "returned", "rejected")
DEFAULT_STAGE_STATUS = "draft"


def is_stage_key(value) -> bool:
    return isinstance(value, str) and _KIND.get(value) == "stage"


def is_gate_key(value) -> bool:
    return isinstance(value, str) and _KIND.get(value) == "gate"


def normalize_stage_key(value) -> str:
    """Lower-case and validate a stage key; anything unknown becomes ``l0``."""
    if isinstance(value, str):
        candidate = value.strip().lower()
        if is_stage_key(candidate):
            return candidate
    return DEFAULT_STAGE


def normalize_gate_key(value) -> str | None:
    """Resolve a gate key, accepting the legacy ``l1`` … ``l5`` aliases.

    Older workstream configurations keyed gates by the stage they open
    (``"l2"`` meaning "the gate before L2"). Returns ``None`` for keys
    that name neither a gate nor a gated stage.
    """
    if not isinstance(value, str):
        return None
    candidate = value.strip().lower()
    if is_gate_key(candidate):
        return candidate
    if is_stage_key(candidate):
        pos = _POSITION[candidate]
        if pos > 0 and STAGE_SEQUENCE[pos - 1][1] == "gate":
            return STAGE_SEQUENCE[pos - 1][0]
    return None


def next_stage(stage_key: str) -> str | None:
    """Return the stage that follows *stage_key*, skipping gates.

    ``None`` at the terminal stage.
    """
    pos = _POSITION.get(stage_key)
    if pos is None or _KIND[stage_key] != "stage":
        return None
    for key, kind in STAGE_SEQUENCE[pos + 1:]:
        if kind == "stage":
            return key
    return None


def gate_for_stage(stage_key: str) -> str | None:
    """Return the gate that must be passed to leave *stage_key*.

    That is the gate immediately preceding ``next_stage(stage_key)``.
    ``None`` when there is no successor or the successor is entered
    without a gate.
    """
    successor = next_stage(stage_key)
    if successor is None:
        return None
    pos = _POSITION[successor]
    key, kind = STAGE_SEQUENCE[pos - 1]
    return key if kind == "gate" else None
