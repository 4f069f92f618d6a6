"""
Command-line rendering for budget data.

This module turns service results into readable tables using tabulate and
exports expense listings to CSV through pandas. Every ``render_*`` function
returns a string; printing is left to the caller.
"""

import logging
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

import pandas as pd
from tabulate import tabulate

from aggregation import MonthlyStats
from expense_management import ExpenseRecord
from settings_management import UserSettings

# Configure logging
logger = logging.getLogger(__name__)

TABLE_FORMAT = "grid"
DESCRIPTION_WIDTH = 50

EXPENSE_COLUMNS = ["id", "date", "description", "amount", "category_id", "category_name"]


def format_amount(amount: Optional[Decimal]) -> str:
    """
    Format amount as currency string.

    Args:
        amount: Decimal amount (can be None)

    Returns:
        Formatted string (e.g., "$1,234.56" or "-$123.45")
    """
    if amount is None:
        return "$0.00"
    if amount < 0:
        return f"-${-amount:,.2f}"
    return f"${amount:,.2f}"


def _truncate(text: str, width: int = DESCRIPTION_WIDTH) -> str:
    return text[:width] + "..." if len(text) > width else text


def _banner(title: str, body: str, width: int = 80) -> str:
    rule = "=" * width
    return "\n".join([rule, title, rule, body])


def render_categories(categories: Sequence) -> str:
    """Render categories as a table."""
    if not categories:
        return "No categories found."
    rows = [
        [category.id, category.name, format_amount(category.budget_limit), category.color]
        for category in categories
    ]
    table = tabulate(rows, headers=["ID", "Name", "Budget", "Color"], tablefmt=TABLE_FORMAT)
    return _banner(f"CATEGORIES ({len(categories)})", table)


def render_expenses(expenses: Sequence[ExpenseRecord]) -> str:
    """Render expenses (newest first, as listed) as a table."""
    if not expenses:
        return "No expenses found matching the criteria."
    rows = [
        [
            expense.id,
            expense.date.strftime("%Y-%m-%d %H:%M"),
            _truncate(expense.description),
            format_amount(expense.amount),
            expense.category_name or "Uncategorized",
        ]
        for expense in expenses
    ]
    table = tabulate(
        rows,
        headers=["ID", "Date", "Description", "Amount", "Category"],
        tablefmt=TABLE_FORMAT,
    )
    return _banner(f"EXPENSES ({len(expenses)} shown)", table, width=100)


def render_stats(stats: MonthlyStats) -> str:
    """
    Render monthly stats: one row per category followed by the totals.

    Over-budget categories are flagged. Spending with no category is shown on
    its own line so the category rows reconcile with the total.
    """
    rows = []
    for category in stats.categories:
        rows.append([
            category.name,
            format_amount(category.budget_limit),
            format_amount(category.spent),
            format_amount(category.remaining),
            f"{category.percentage_used:.1f}%",
            "OVER" if category.is_over_budget else "",
        ])
    table = tabulate(
        rows,
        headers=["Category", "Budget", "Spent", "Remaining", "Used %", ""],
        tablefmt=TABLE_FORMAT,
    )

    title = "BUDGET STATUS"
    if stats.period is not None:
        title = f"BUDGET STATUS: {stats.period}"

    lines = [
        _banner(title, table),
        "",
        f"Total Budget:    {format_amount(stats.total_budget)}",
        f"Total Spent:     {format_amount(stats.total_spent)}",
        f"Remaining:       {format_amount(stats.remaining)}",
    ]
    uncategorized = stats.uncategorized_spent
    if uncategorized != 0:
        lines.append(f"Uncategorized:   {format_amount(uncategorized)}")
    return "\n".join(lines)


def render_history(history: Sequence) -> str:
    if not history:
        return "No archived cycles yet."
    rows = [
        [
            entry.month,
            format_amount(entry.total_budget),
            format_amount(entry.total_spent),
            format_amount(entry.total_budget - entry.total_spent),
        ]
        for entry in history
    ]
    table = tabulate(rows, headers=["Month", "Budget", "Spent", "Difference"], tablefmt=TABLE_FORMAT)
    return _banner("BUDGET HISTORY", table)


def render_fixed_expenses(templates: Sequence, categories: Iterable = ()) -> str:
    """Render fixed-expense templates, resolving category names where known."""
    if not templates:
        return "No fixed expenses defined."
    names = {category.id: category.name for category in categories}
    rows = [
        [
            template.id,
            template.name,
            format_amount(template.amount),
            names.get(template.category_id, "Uncategorized") if template.category_id else "Uncategorized",
        ]
        for template in templates
    ]
    table = tabulate(rows, headers=["ID", "Name", "Amount", "Category"], tablefmt=TABLE_FORMAT)
    return _banner("FIXED EXPENSES", table)


def render_shopping_lists(shopping_lists: Sequence) -> str:
    if not shopping_lists:
        return "No shopping lists."
    blocks: List[str] = []
    for shopping_list in shopping_lists:
        title = f"[{shopping_list.id}] {shopping_list.name}"
        if shopping_list.is_recurring:
            title += " (recurring)"
        if shopping_list.items:
            rows = [
                ["x" if item.is_completed else " ", item.id, item.name, item.amount or ""]
                for item in shopping_list.items
            ]
            body = tabulate(rows, headers=["Done", "ID", "Item", "Amount"], tablefmt=TABLE_FORMAT)
        else:
            body = "  (empty)"
        blocks.append(f"{title}\n{body}")
    return "\n\n".join(blocks)


def render_settings(settings: UserSettings) -> str:
    last_reset = settings.last_reset_date.strftime("%Y-%m-%d %H:%M") if settings.last_reset_date else "never"
    lines = [
        f"Reset day:        {settings.reset_day}",
        f"Last rollover:    {last_reset}",
    ]
    if not settings.persisted:
        lines.append("(defaults; not saved yet)")
    return "\n".join(lines)


def expenses_to_dataframe(expenses: Sequence[ExpenseRecord]) -> pd.DataFrame:
    """
    Convert expense records to a DataFrame.

    Amounts are kept as decimal text so the CSV carries exact values.
    """
    records = [expense.to_dict() for expense in expenses]
    if not records:
        return pd.DataFrame(columns=EXPENSE_COLUMNS)
    return pd.DataFrame.from_records(records, columns=EXPENSE_COLUMNS)


def export_expenses_csv(expenses: Sequence[ExpenseRecord], file_path: str) -> int:
    """
    Export expenses to a CSV file.

    Args:
        expenses: Records to export
        file_path: Path to output CSV file

    Returns:
        Number of rows written

    Raises:
        IOError: If file cannot be written
    """
    df = expenses_to_dataframe(expenses)
    try:
        df.to_csv(file_path, index=False)
    except OSError as e:
        logger.error(f"Failed to export to CSV: {e}")
        raise IOError(f"Failed to export to CSV: {e}") from e
    logger.info(f"Exported {len(df)} expenses to {file_path}")
    return len(df)
