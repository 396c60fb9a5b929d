"""Setup wizard draft state: presets, templates and (de)serialization."""

import json
from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ValidationError

from budgetcycle.core.config import get_config
from budgetcycle.core.exceptions import InvalidDraft
from budgetcycle.core.models import (
    Category,
    CategoryDraft,
    CycleType,
    RolloverMode,
    SetupDraftTree,
    SubcategoryDraft,
)
from budgetcycle.engine.categories import build_category_tree
from budgetcycle.engine.ledger import AllocationLedger

CYCLE_PRESETS: dict[CycleType, int] = {
    CycleType.MONTHLY: 30,
    CycleType.SEMI_MONTHLY: 15,
    CycleType.BIWEEKLY: 14,
}

SETUP_STEPS: tuple[str, ...] = (
    "cycle",
    "income",
    "categories",
    "allocation",
    "carryover",
    "review",
)


class SetupTemplate(BaseModel):
    """Starter category set offered at the beginning of setup."""

    id: str
    categories: list[tuple[str, Decimal]]


SETUP_TEMPLATES: dict[str, SetupTemplate] = {
    "starter": SetupTemplate(
        id="starter",
        categories=[
            ("Groceries", Decimal(500)),
            ("Housing", Decimal(1200)),
            ("Utilities", Decimal(250)),
            ("Transportation", Decimal(220)),
            ("Dining Out", Decimal(180)),
        ],
    ),
    "essentials": SetupTemplate(
        id="essentials",
        categories=[
            ("Groceries", Decimal(500)),
            ("Housing", Decimal(1200)),
            ("Utilities", Decimal(250)),
        ],
    ),
    "none": SetupTemplate(id="none", categories=[]),
}


def get_template(template_id: str | None) -> SetupTemplate:
    """Template by id, falling back to 'starter'."""
    return SETUP_TEMPLATES.get(template_id or "", SETUP_TEMPLATES["starter"])


def cycle_length_for_type(cycle_type: CycleType) -> int:
    return CYCLE_PRESETS.get(cycle_type, get_config().default_cycle_days)


def cycle_type_for_length(days: int) -> CycleType:
    """Closest preset for an arbitrary cycle length."""
    if days <= 14:
        return CycleType.BIWEEKLY
    if days <= 15:
        return CycleType.SEMI_MONTHLY
    return CycleType.MONTHLY


def next_step(step: str) -> str | None:
    if step not in SETUP_STEPS:
        return None
    idx = SETUP_STEPS.index(step)
    return SETUP_STEPS[idx + 1] if idx + 1 < len(SETUP_STEPS) else None


def previous_step(step: str) -> str | None:
    if step not in SETUP_STEPS:
        return None
    idx = SETUP_STEPS.index(step)
    return SETUP_STEPS[idx - 1] if idx > 0 else None


def default_anchor_date(today: date | None = None) -> date:
    """First day of the current month."""
    return (today or date.today()).replace(day=1)


def default_draft(template_id: str = "starter", today: date | None = None) -> SetupDraftTree:
    """Fresh 'create' draft seeded from a template."""
    template = get_template(template_id)
    return SetupDraftTree(
        template_id=template.id,
        cycle_type=CycleType.MONTHLY,
        cycle_length_days=get_config().default_cycle_days,
        anchor_date=default_anchor_date(today),
        categories=[
            CategoryDraft(name=name, amount=amount, rollover_mode=RolloverMode.NONE)
            for name, amount in template.categories
        ],
    )


def draft_from_existing(
    categories: list[Category],
    ledger: AllocationLedger,
    period_start: date,
    cycle_length_days: int,
    anchor_date: date,
    income_per_cycle: Decimal = Decimal(0),
) -> SetupDraftTree:
    """'edit' draft mirroring persisted categories and their amounts.

    Every row carries its existing_id, so compute_diff on the unchanged
    draft yields only updates.
    """
    tree = build_category_tree(categories)
    drafts = [
        CategoryDraft(
            name=node.category.name,
            amount=ledger.amount_for(node.id, period_start),
            rollover_mode=node.category.rollover_mode,
            existing_id=node.id,
            subcategories=[
                SubcategoryDraft(
                    name=child.name,
                    amount=ledger.amount_for(child.id, period_start),
                    rollover_mode=child.rollover_mode,
                    existing_id=child.id,
                )
                for child in node.children
            ],
        )
        for node in tree.top_level
    ]
    return SetupDraftTree(
        mode="edit",
        cycle_type=cycle_type_for_length(cycle_length_days),
        cycle_length_days=cycle_length_days,
        anchor_date=anchor_date,
        income_per_cycle=income_per_cycle,
        categories=drafts,
        original_category_ids=[cat.id for cat in tree.all_categories()],
    )


def encode_draft(draft: SetupDraftTree) -> str:
    return draft.model_dump_json()


def decode_draft(raw: str | None, today: date | None = None) -> SetupDraftTree:
    """Lenient decode of wizard state.

    Unknown rollover modes become 'none', non-numeric amounts become 0,
    the cycle length is rounded and floored at 1 day, and anything that
    cannot be decoded yields the default draft.
    """
    if not raw:
        return default_draft(today=today)
    try:
        data = json.loads(raw)
    except ValueError:
        return default_draft(today=today)
    if not isinstance(data, dict):
        return default_draft(today=today)
    try:
        return SetupDraftTree.model_validate(_normalize_payload(data, today))
    except ValidationError:
        return default_draft(today=today)


def parse_draft(raw: str, today: date | None = None) -> SetupDraftTree:
    """Strict decode of a draft that is about to be applied.

    Field values are normalized the same way as decode_draft, but a file
    that is not a JSON object with a categories list is rejected instead
    of being replaced by the default draft.

    Raises:
        InvalidDraft: If the draft cannot be decoded.
    """
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise InvalidDraft(f"Draft is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise InvalidDraft("Draft must be a JSON object")
    if not isinstance(data.get("categories"), list):
        raise InvalidDraft("Draft must contain a categories list")
    try:
        return SetupDraftTree.model_validate(_normalize_payload(data, today))
    except ValidationError as e:
        raise InvalidDraft(f"Draft is invalid: {e}") from e


def _normalize_payload(data: dict, today: date | None) -> dict:
    try:
        cycle_length = max(1, round(float(data.get("cycle_length_days"))))
    except (TypeError, ValueError, OverflowError):
        cycle_length = get_config().default_cycle_days

    cycle_type = data.get("cycle_type")
    if cycle_type not in {member.value for member in CycleType}:
        cycle_type = CycleType.MONTHLY

    anchor = data.get("anchor_date")
    try:
        anchor_date = date.fromisoformat(anchor.strip()) if isinstance(anchor, str) else None
    except ValueError:
        anchor_date = None

    original_ids = data.get("original_category_ids")
    categories = data.get("categories")
    return {
        "mode": "edit" if data.get("mode") == "edit" else "create",
        "template_id": data.get("template_id") if isinstance(data.get("template_id"), str) else "starter",
        "cycle_type": cycle_type,
        "cycle_length_days": cycle_length,
        "anchor_date": anchor_date or default_anchor_date(today),
        "income_per_cycle": data.get("income_per_cycle"),
        "categories": [c for c in categories if isinstance(c, dict)] if isinstance(categories, list) else [],
        "original_category_ids": (
            [cid for cid in original_ids if isinstance(cid, str)] if isinstance(original_ids, list) else []
        ),
    }
