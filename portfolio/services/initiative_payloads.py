"""Initiative payload sanitization and derived figures.

Untrusted JSON arrives at the HTTP boundary in arbitrary shapes. Everything
here coerces it into the one structure the workflow and the persistence
layer rely on:

sanitize_stage_payload:  one stage's form (period, financials, KPIs, docs)
sanitize_stage_map:      every stage key present, unknown keys dropped
normalize_plan:          plan tasks (dates ordered, progress/indent clamped)
sanitize_write_model:    full create/update body → InitiativeWriteModel
build_totals:            financial totals across all stages
"""
import math
import uuid
from datetime import date, datetime, timezone

from portfolio.core.exceptions import ValidationError
from portfolio.models.records import InitiativeWriteModel, default_stage_state
from portfolio.models.stages import STAGE_KEYS, normalize_stage_key
from portfolio.utils.helpers import ACCOUNT_ID_MAX_LENGTH, ID_MAX_LENGTH, NAME_MAX_LENGTH, check_max_lengths

FINANCIAL_KINDS = ("recurring-benefits", "recurring-costs", "oneoff-benefits", "oneoff-costs")

PLAN_MAX_INDENT = 2
PLAN_DEFAULT_ZOOM = 2
PLAN_DEFAULT_SPLIT = 0.45
VALUE_STEP_MILESTONE = "value step"

STATUS_MAX_LENGTH = 50
L4_DATE_MAX_LENGTH = 32


# ── Scalars ──────────────────────────────────────────────────────────────────

def clean_str(value) -> str:
    return value.strip() if isinstance(value, str) else ""


def optional_str(value) -> str | None:
    return clean_str(value) or None


def to_number(value):
    """Finite float from a number or numeric string; None otherwise.

    JSON integers beyond float range count as non-finite.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)) or (isinstance(value, str) and value.strip()):
        try:
            number = float(value.strip() if isinstance(value, str) else value)
        except (ValueError, OverflowError):
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _clamp(value, low, high):
    return min(high, max(low, value))


def to_iso_date(value) -> str | None:
    """Return YYYY-MM-DD for a date / ISO string, None for bad input."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = clean_str(value)
    if not text:
        return None
    try:
        return date.fromisoformat(text[:10]).isoformat()
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text).date().isoformat()
    except ValueError:
        return None


def _entity_id(value) -> str:
    return clean_str(value) or str(uuid.uuid4())


def sanitize_distribution(value) -> dict[str, float]:
    """Month key → finite number; blank keys and non-numeric values dropped."""
    if not isinstance(value, dict):
        return {}
    result = {}
    for raw_key, raw_value in value.items():
        key = str(raw_key).strip()
        number = to_number(raw_value)
        if key and number is not None:
            result[key] = number
    return result


# ── Stage payload ────────────────────────────────────────────────────────────

def empty_stage_payload() -> dict:
    return {
        "name": "",
        "description": "",
        "period_month": None,
        "period_year": None,
        "l4_date": None,
        "value_step_task_id": None,
        "additional_commentary": "",
        "calculation_logic": {kind: "" for kind in FINANCIAL_KINDS},
        "business_case_files": [],
        "supporting_docs": [],
        "kpis": [],
        "financials": {kind: [] for kind in FINANCIAL_KINDS},
    }


def sanitize_financial_entry(value) -> dict:
    payload = value if isinstance(value, dict) else {}
    return {
        "id": _entity_id(payload.get("id")),
        "label": clean_str(payload.get("label")),
        "category": clean_str(payload.get("category")),
        "line_code": optional_str(payload.get("line_code")),
        "distribution": sanitize_distribution(payload.get("distribution")),
        "actuals": sanitize_distribution(payload.get("actuals")),
    }


def _sanitize_file(value, *, with_comment=False) -> dict | None:
    if not isinstance(value, dict):
        return None
    file_name = clean_str(value.get("file_name"))
    data_url = value.get("data_url") if isinstance(value.get("data_url"), str) else ""
    if not file_name or not data_url:
        return None
    size = to_number(value.get("size"))
    result = {
        "id": _entity_id(value.get("id")),
        "file_name": file_name,
        "mime_type": optional_str(value.get("mime_type")),
        "size": max(0, int(size)) if size is not None else 0,
        "data_url": data_url,
        "uploaded_at": optional_str(value.get("uploaded_at")) or datetime.now(timezone.utc).isoformat(),
    }
    if with_comment:
        result["comment"] = clean_str(value.get("comment"))
    return result


def sanitize_kpi(value) -> dict | None:
    if not isinstance(value, dict):
        return None
    name = clean_str(value.get("name"))
    if not name:
        return None
    return {
        "id": _entity_id(value.get("id")),
        "name": name,
        "unit": clean_str(value.get("unit")),
        "source": clean_str(value.get("source")),
        "is_custom": bool(value.get("is_custom")),
        "baseline": to_number(value.get("baseline")),
        "distribution": sanitize_distribution(value.get("distribution")),
        "actuals": sanitize_distribution(value.get("actuals")),
    }


def sanitize_stage_payload(value) -> dict:
    result = empty_stage_payload()
    if not isinstance(value, dict):
        return result

    result["name"] = clean_str(value.get("name"))
    result["description"] = clean_str(value.get("description"))
    month = to_number(value.get("period_month"))
    result["period_month"] = int(month) if month is not None and 1 <= month <= 12 else None
    year = to_number(value.get("period_year"))
    result["period_year"] = int(year) if year else None
    result["l4_date"] = optional_str(value.get("l4_date"))
    result["value_step_task_id"] = optional_str(value.get("value_step_task_id"))
    result["additional_commentary"] = clean_str(value.get("additional_commentary"))

    logic = value.get("calculation_logic") if isinstance(value.get("calculation_logic"), dict) else {}
    result["calculation_logic"] = {kind: clean_str(logic.get(kind)) for kind in FINANCIAL_KINDS}

    files = value.get("business_case_files") if isinstance(value.get("business_case_files"), list) else []
    result["business_case_files"] = [f for f in (_sanitize_file(item) for item in files) if f]
    docs = value.get("supporting_docs") if isinstance(value.get("supporting_docs"), list) else []
    result["supporting_docs"] = [d for d in (_sanitize_file(item, with_comment=True) for item in docs) if d]
    kpis = value.get("kpis") if isinstance(value.get("kpis"), list) else []
    result["kpis"] = [k for k in (sanitize_kpi(item) for item in kpis) if k]

    financials = value.get("financials")
    if isinstance(financials, dict):
        for kind in FINANCIAL_KINDS:
            entries = financials.get(kind)
            if isinstance(entries, list):
                result["financials"][kind] = [sanitize_financial_entry(entry) for entry in entries]
    return result


def sanitize_stage_map(value) -> dict:
    source = value if isinstance(value, dict) else {}
    return {key: sanitize_stage_payload(source.get(key)) for key in STAGE_KEYS}


# ── Plan ─────────────────────────────────────────────────────────────────────

def _ordered_dates(start, end):
    if start and not end:
        return start, start
    if end and not start:
        return end, end
    if start and end and end < start:
        return start, start
    return start, end


def sanitize_plan_task(value) -> dict:
    payload = value if isinstance(value, dict) else {}
    start, end = _ordered_dates(to_iso_date(payload.get("start_date")), to_iso_date(payload.get("end_date")))
    progress = to_number(payload.get("progress"))
    capacity = to_number(payload.get("required_capacity"))
    indent = to_number(payload.get("indent"))
    dependencies = payload.get("dependencies") if isinstance(payload.get("dependencies"), list) else []
    return {
        "id": _entity_id(payload.get("id")),
        "name": clean_str(payload.get("name")),
        "description": clean_str(payload.get("description")),
        "start_date": start,
        "end_date": end,
        "responsible": clean_str(payload.get("responsible")),
        "progress": _clamp(round(progress), 0, 100) if progress is not None else 0,
        "required_capacity": max(0.0, round(capacity, 2)) if capacity is not None else None,
        "dependencies": list(dict.fromkeys(d.strip() for d in dependencies if isinstance(d, str) and d.strip())),
        "indent": _clamp(int(indent), 0, PLAN_MAX_INDENT) if indent is not None else 0,
        "color": optional_str(payload.get("color")),
        "milestone_type": clean_str(payload.get("milestone_type")) or "Standard",
    }


def sanitize_plan_settings(value) -> dict:
    payload = value if isinstance(value, dict) else {}
    zoom = to_number(payload.get("zoom_level"))
    split = to_number(payload.get("split_ratio"))
    return {
        "zoom_level": _clamp(int(zoom), 0, 6) if zoom is not None else PLAN_DEFAULT_ZOOM,
        "split_ratio": _clamp(split, 0.2, 0.8) if split is not None else PLAN_DEFAULT_SPLIT,
    }


def normalize_plan(value) -> dict:
    """Sanitize a plan model. Only the first "Value Step" milestone survives."""
    payload = value if isinstance(value, dict) else {}
    raw_tasks = payload.get("tasks") if isinstance(payload.get("tasks"), list) else []
    tasks = []
    value_step_claimed = False
    for raw in raw_tasks:
        task = sanitize_plan_task(raw)
        if task["milestone_type"].lower() == VALUE_STEP_MILESTONE:
            if value_step_claimed:
                task["milestone_type"] = "Standard"
            value_step_claimed = True
        tasks.append(task)
    return {"tasks": tasks, "settings": sanitize_plan_settings(payload.get("settings"))}


def empty_plan() -> dict:
    return normalize_plan(None)


# ── Write model ──────────────────────────────────────────────────────────────

def sanitize_write_model(payload, id_override: str | None = None) -> InitiativeWriteModel:
    """Build a write model from a request body.

    Stage states always start at their defaults here; callers updating an
    existing initiative carry the stored states over themselves.

    Raises:
        ValidationError: body is not an object, workstream_id / name missing,
            or a column-bound field is too long.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")

    workstream_id = clean_str(payload.get("workstream_id"))
    name = clean_str(payload.get("name"))
    missing = [field for field, present in (("workstream_id", workstream_id), ("name", name)) if not present]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            details={field: "required" for field in missing},
        )

    stages = sanitize_stage_map(payload.get("stages"))
    model = InitiativeWriteModel(
        id=id_override or _entity_id(payload.get("id")),
        workstream_id=workstream_id,
        name=name,
        description=clean_str(payload.get("description")),
        owner_account_id=optional_str(payload.get("owner_account_id")),
        owner_name=optional_str(payload.get("owner_name")),
        current_status=clean_str(payload.get("current_status")) or "draft",
        active_stage=normalize_stage_key(payload.get("active_stage")),
        l4_date=optional_str(payload.get("l4_date")) or stages["l4"]["l4_date"],
        stages=stages,
        stage_state=default_stage_state(),
        plan=normalize_plan(payload.get("plan")),
    )
    # A path id is looked up, never inserted, so only a body id is bounded here
    check_max_lengths(
        ("id", None if id_override else model.id, ID_MAX_LENGTH),
        ("workstream_id", model.workstream_id, ID_MAX_LENGTH),
        ("name", model.name, NAME_MAX_LENGTH),
        ("owner_account_id", model.owner_account_id, ACCOUNT_ID_MAX_LENGTH),
        ("owner_name", model.owner_name, NAME_MAX_LENGTH),
        ("current_status", model.current_status, STATUS_MAX_LENGTH),
        ("l4_date", model.l4_date, L4_DATE_MAX_LENGTH),
    )
    return model


# ── Totals ───────────────────────────────────────────────────────────────────

def _sum_kind(stages: dict, kind: str) -> float:
    total = 0.0
    for key in STAGE_KEYS:
        for entry in (stages.get(key) or {}).get("financials", {}).get(kind, []):
            for value in (entry.get("distribution") or {}).values():
                if isinstance(value, (int, float)) and math.isfinite(value):
                    total += value
    return total


def build_totals(stages: dict) -> dict:
    recurring_benefits = _sum_kind(stages, "recurring-benefits")
    recurring_costs = _sum_kind(stages, "recurring-costs")
    return {
        "recurring_benefits": recurring_benefits,
        "recurring_costs": recurring_costs,
        "oneoff_benefits": _sum_kind(stages, "oneoff-benefits"),
        "oneoff_costs": _sum_kind(stages, "oneoff-costs"),
        "recurring_impact": recurring_benefits - recurring_costs,
    }
