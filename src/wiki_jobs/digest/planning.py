"""Budget admission for planned page updates."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from wiki_jobs.digest.models import BudgetPlan, PageUpdate, SkippedUpdate

logger = logging.getLogger(__name__)

COST_BY_TIER: dict[str, float] = {
    "polish": 2.5,
    "standard": 6.5,
    "deep": 12.5,
}
DEFAULT_TIER_COST = 6.5


def estimate_cost(tier: str) -> float:
    """Estimated USD cost of one page-improve run at `tier`."""

    return COST_BY_TIER.get(tier, DEFAULT_TIER_COST)


def admit_updates(updates: Iterable[PageUpdate], budget: float) -> BudgetPlan:
    """Admit updates in order until the first one that would exceed `budget`.

    That update and every later one are skipped, even if a cheaper one would
    still fit, so admission never reorders the plan.
    """

    plan = BudgetPlan(budget=budget)
    exhausted = False
    for update in updates:
        cost = estimate_cost(update.tier)
        if not exhausted and plan.estimated_cost + cost > budget:
            exhausted = True
            logger.info(
                "Budget exceeded at %s ($%.2f used of $%.2f); skipping remaining updates",
                update.page_id,
                plan.estimated_cost,
                budget,
            )
        if exhausted:
            plan.skipped.append(
                SkippedUpdate(
                    page_id=update.page_id,
                    tier=update.tier,
                    cost=cost,
                    reason=f"budget exceeded (${plan.estimated_cost:.2f} of ${budget:.2f} used)",
                ),
            )
            continue
        plan.admitted.append(update)
        plan.estimated_cost += cost
    return plan
