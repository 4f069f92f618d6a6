"""
Budget aggregation for a single cycle.

Computes per-category spending and overall totals from categories and the
expenses already filtered to one cycle. Pure functions: nothing here touches
the database or mutates its inputs.

Note that ``total_spent`` includes uncategorized expenses while no
category's ``spent`` does, so the category rows can sum to less than the
total. Clients show the difference as unassigned spending.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence

from budget_period import BudgetPeriod

ZERO = Decimal("0.00")


def sum_amounts(amounts: Iterable[Decimal]) -> Decimal:
    return sum(amounts, ZERO)


@dataclass
class CategoryStats:
    """
    Spending status of one category for a cycle.

    Attributes:
        id: Category id
        name: Category name
        budget_limit: Allocation for the cycle
        color: Display color
        user_id: Owning user
        spent: Sum of the category's expenses in the cycle
        remaining: budget_limit - spent (negative when overspent)
    """
    id: int
    name: str
    budget_limit: Decimal
    color: str
    user_id: str
    spent: Decimal
    remaining: Decimal

    @property
    def is_over_budget(self) -> bool:
        return self.remaining < 0

    @property
    def percentage_used(self) -> float:
        if self.budget_limit <= 0:
            return 0.0 if self.spent <= 0 else 100.0
        return float(self.spent / self.budget_limit * 100)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "budget_limit": str(self.budget_limit),
            "color": self.color,
            "user_id": self.user_id,
            "spent": str(self.spent),
            "remaining": str(self.remaining),
            "is_over_budget": self.is_over_budget,
        }


@dataclass
class MonthlyStats:
    """Totals for one cycle plus the per-category breakdown."""
    total_budget: Decimal
    total_spent: Decimal
    remaining: Decimal
    categories: List[CategoryStats] = field(default_factory=list)
    period: Optional[BudgetPeriod] = None

    @property
    def uncategorized_spent(self) -> Decimal:
        """Spending not attributed to any category (the reconciliation gap)."""
        return self.total_spent - sum_amounts(c.spent for c in self.categories)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "total_budget": str(self.total_budget),
            "total_spent": str(self.total_spent),
            "remaining": str(self.remaining),
            "categories": [c.to_dict() for c in self.categories],
        }
        if self.period is not None:
            payload["month"] = self.period.label
            payload["period_start"] = self.period.start.isoformat()
            payload["period_end"] = self.period.end.isoformat()
        return payload


def spent_by_category(expenses: Iterable[Any]) -> Dict[Optional[int], Decimal]:
    """
    Group expense amounts by category id.

    Uncategorized expenses are grouped under ``None``.
    """
    totals: Dict[Optional[int], Decimal] = defaultdict(lambda: ZERO)
    for expense in expenses:
        totals[expense.category_id] += expense.amount
    return dict(totals)


def aggregate(
    categories: Sequence[Any],
    expenses: Sequence[Any],
    period: Optional[BudgetPeriod] = None
) -> MonthlyStats:
    """
    Aggregate a cycle's expenses against its categories.

    Args:
        categories: Objects exposing id, name, budget_limit, color, user_id
        expenses: Objects exposing amount and category_id, already limited to the cycle
        period: Optional cycle the figures describe

    Returns:
        MonthlyStats with one CategoryStats per category, in input order
    """
    grouped = spent_by_category(expenses)

    category_stats = []
    for category in categories:
        spent = grouped.get(category.id, ZERO)
        category_stats.append(CategoryStats(
            id=category.id,
            name=category.name,
            budget_limit=category.budget_limit,
            color=category.color,
            user_id=category.user_id,
            spent=spent,
            remaining=category.budget_limit - spent,
        ))

    total_budget = sum_amounts(category.budget_limit for category in categories)
    total_spent = sum_amounts(grouped.values())

    return MonthlyStats(
        total_budget=total_budget,
        total_spent=total_spent,
        remaining=total_budget - total_spent,
        categories=category_stats,
        period=period,
    )
