"""
Main module for the household budget tracker CLI.

This module wires configuration, logging and the database into a
``BudgetService`` and dispatches the subcommands:

- categories: list/create/update/delete budget categories
- move-budget: move allocation between two categories
- expenses: list (optionally export to CSV), add and delete expenses
- settings: show or change the cycle reset day
- stats: budget status for the current or a given month
- fixed: manage fixed-expense templates
- history: archived cycle totals
- shopping: shopping lists and items
- rollover: run the cycle rollover check explicitly
"""

import argparse
import logging
import sys
from typing import List, Optional

from budget_service import BudgetService
from cli_viewer import (
    export_expenses_csv,
    render_categories,
    render_expenses,
    render_fixed_expenses,
    render_history,
    render_settings,
    render_shopping_lists,
    render_stats,
)
from config_manager import load_config
from database_ops import DatabaseManager
from exceptions import BudgetTrackerError
from utils import ensure_data_dir, resolve_connection_string, resolve_log_path

# Configure module-level logger
logger = logging.getLogger(__name__)


def setup_logging(config: dict) -> None:
    """
    Configure logging based on config settings.

    Args:
        config: Configuration dictionary with logging settings
    """
    log_config = config.get("logging", {})
    log_level = getattr(logging, str(log_config.get("level", "INFO")).upper(), None)
    if not isinstance(log_level, int):
        log_level = logging.INFO
    log_format = log_config.get("format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    log_file = log_config.get("file")

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        try:
            log_path = resolve_log_path(log_file)
        except OSError as exc:
            raise RuntimeError(f"Unable to prepare log file path '{log_file}': {exc}") from exc
        handlers.append(logging.FileHandler(log_path))

    logging.basicConfig(
        level=log_level,
        format=log_format,
        handlers=handlers
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        description="Household budget tracker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Show this cycle's budget status
  python main.py stats

  # Move 150 from category 2 to category 5
  python main.py move-budget --from 2 --to 5 --amount 150

  # Record an expense and list last month's expenses to CSV
  python main.py expenses add --amount 42.50 --description "Weekly shop" --category-id 2
  python main.py expenses list --month 2024-05 --export may.csv
        """
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=None,
        help="Path to configuration file (default: config.yaml or $BUDGET_TRACKER_CONFIG)"
    )
    parser.add_argument(
        "--user",
        "-u",
        type=str,
        default=None,
        help="User to act as (default: cli.default_user from config)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Categories command
    cat_parser = subparsers.add_parser("categories", aliases=["cat"], help="Manage budget categories")
    cat_subparsers = cat_parser.add_subparsers(dest="category_action", help="Category actions")
    cat_subparsers.add_parser("list", help="List categories")
    cat_create = cat_subparsers.add_parser("create", help="Create a category")
    cat_create.add_argument("--name", type=str, required=True, help="Category name")
    cat_create.add_argument("--budget", type=str, required=True, help="Monthly budget (e.g. 500 or 499.99)")
    cat_create.add_argument("--color", type=str, help="Hex color (e.g. #3b82f6)")
    cat_update = cat_subparsers.add_parser("update", help="Update a category")
    cat_update.add_argument("--id", type=int, required=True, help="Category ID")
    cat_update.add_argument("--name", type=str, help="New name")
    cat_update.add_argument("--budget", type=str, help="New monthly budget")
    cat_update.add_argument("--color", type=str, help="New hex color")
    cat_delete = cat_subparsers.add_parser("delete", help="Delete a category (expenses are kept)")
    cat_delete.add_argument("--id", type=int, required=True, help="Category ID")

    # Move budget command
    move_parser = subparsers.add_parser("move-budget", aliases=["move"], help="Move budget between categories")
    move_parser.add_argument("--from", dest="from_id", type=int, required=True, help="Source category ID")
    move_parser.add_argument("--to", dest="to_id", type=int, required=True, help="Destination category ID")
    move_parser.add_argument("--amount", type=str, required=True, help="Amount to move")

    # Expenses command
    exp_parser = subparsers.add_parser("expenses", aliases=["exp"], help="Manage expenses")
    exp_subparsers = exp_parser.add_subparsers(dest="expense_action", help="Expense actions")
    exp_list = exp_subparsers.add_parser("list", help="List expenses")
    exp_list.add_argument("--month", type=str, help="Cycle to show (YYYY-MM)")
    exp_list.add_argument("--category-id", type=int, help="Only this category")
    exp_list.add_argument("--export", type=str, metavar="FILE", help="Export results to CSV file")
    exp_add = exp_subparsers.add_parser("add", help="Record an expense")
    exp_add.add_argument("--amount", type=str, required=True, help="Amount (e.g. 42.50)")
    exp_add.add_argument("--description", type=str, required=True, help="Description")
    exp_add.add_argument("--date", type=str, help="Date (YYYY-MM-DD or ISO timestamp; default now)")
    exp_add.add_argument("--category-id", type=int, help="Category ID")
    exp_delete = exp_subparsers.add_parser("delete", help="Delete an expense")
    exp_delete.add_argument("--id", type=int, required=True, help="Expense ID")

    # Settings command
    settings_parser = subparsers.add_parser("settings", help="Show or change settings")
    settings_parser.add_argument("--reset-day", type=int, help="Day of month on which a new cycle starts (1-31)")

    # Stats command
    stats_parser = subparsers.add_parser("stats", aliases=["status"], help="Show budget status")
    stats_parser.add_argument("--month", type=str, help="Cycle to show (YYYY-MM); default current")

    # Fixed expenses command
    fixed_parser = subparsers.add_parser("fixed", help="Manage fixed (recurring) expenses")
    fixed_subparsers = fixed_parser.add_subparsers(dest="fixed_action", help="Fixed expense actions")
    fixed_subparsers.add_parser("list", help="List fixed expenses")
    fixed_add = fixed_subparsers.add_parser("add", help="Add a fixed expense")
    fixed_add.add_argument("--name", type=str, required=True, help="Name (e.g. Rent)")
    fixed_add.add_argument("--amount", type=str, required=True, help="Amount charged every cycle")
    fixed_add.add_argument("--category-id", type=int, help="Category ID")
    fixed_delete = fixed_subparsers.add_parser("delete", help="Delete a fixed expense")
    fixed_delete.add_argument("--id", type=int, required=True, help="Fixed expense ID")

    # History command
    subparsers.add_parser("history", help="Show archived cycle totals")

    # Shopping command
    shop_parser = subparsers.add_parser("shopping", aliases=["shop"], help="Manage shopping lists")
    shop_subparsers = shop_parser.add_subparsers(dest="shopping_action", help="Shopping actions")
    shop_subparsers.add_parser("list", help="Show shopping lists")
    shop_create = shop_subparsers.add_parser("create", help="Create a shopping list")
    shop_create.add_argument("--name", type=str, required=True, help="List name")
    shop_create.add_argument("--recurring", action="store_true", help="Mark the list as recurring")
    shop_delete = shop_subparsers.add_parser("delete", help="Delete a shopping list")
    shop_delete.add_argument("--id", type=int, required=True, help="List ID")
    shop_add = shop_subparsers.add_parser("add-item", help="Add an item to a list")
    shop_add.add_argument("--list-id", type=int, required=True, help="List ID")
    shop_add.add_argument("--name", type=str, required=True, help="Item name")
    shop_add.add_argument("--amount", type=str, help="Quantity (free text, e.g. '2 kg')")
    shop_check = shop_subparsers.add_parser("check", help="Mark an item as done")
    shop_check.add_argument("--item-id", type=int, required=True, help="Item ID")
    shop_check.add_argument("--undo", action="store_true", help="Mark the item as not done")
    shop_remove = shop_subparsers.add_parser("delete-item", help="Delete an item")
    shop_remove.add_argument("--item-id", type=int, required=True, help="Item ID")

    # Rollover command
    subparsers.add_parser("rollover", help="Run the cycle rollover check now")

    return parser


def handle_categories_command(args: argparse.Namespace, service: BudgetService, user_id: str) -> None:
    """Handle category management commands."""
    action = args.category_action or "list"
    if action == "list":
        print(render_categories(service.list_categories(user_id)))
    elif action == "create":
        category = service.create_category(user_id, args.name, args.budget, args.color)
        print(f"Created category {category.id} '{category.name}' with budget {category.budget_limit}")
    elif action == "update":
        category = service.update_category(
            user_id,
            args.id,
            name=args.name,
            budget_limit=args.budget,
            color=args.color
        )
        print(f"Updated category {category.id} '{category.name}' (budget {category.budget_limit})")
    elif action == "delete":
        service.delete_category(user_id, args.id)
        print(f"Deleted category {args.id}")


def handle_move_budget_command(args: argparse.Namespace, service: BudgetService, user_id: str) -> None:
    result = service.move_budget(user_id, args.from_id, args.to_id, args.amount)
    print(result["message"])


def handle_expenses_command(args: argparse.Namespace, service: BudgetService, user_id: str) -> None:
    """Handle expense commands."""
    action = args.expense_action or "list"
    if action == "list":
        month = getattr(args, "month", None)
        category_id = getattr(args, "category_id", None)
        expenses = service.list_expenses(user_id, month=month, category_id=category_id)
        print(render_expenses(expenses))
        export_path = getattr(args, "export", None)
        if export_path:
            count = export_expenses_csv(expenses, export_path)
            print(f"\nExported {count} expenses to {export_path}")
    elif action == "add":
        expense = service.create_expense(
            user_id,
            amount=args.amount,
            description=args.description,
            date=args.date,
            category_id=args.category_id
        )
        print(f"Recorded expense {expense.id}: {expense.amount} '{expense.description}'")
    elif action == "delete":
        service.delete_expense(user_id, args.id)
        print(f"Deleted expense {args.id}")


def handle_settings_command(args: argparse.Namespace, service: BudgetService, user_id: str) -> None:
    if args.reset_day is not None:
        settings = service.update_settings(user_id, args.reset_day)
    else:
        settings = service.get_settings(user_id)
    print(render_settings(settings))


def handle_stats_command(args: argparse.Namespace, service: BudgetService, user_id: str) -> None:
    print(render_stats(service.get_monthly_stats(user_id, month=args.month)))


def handle_fixed_command(args: argparse.Namespace, service: BudgetService, user_id: str) -> None:
    """Handle fixed-expense template commands."""
    action = args.fixed_action or "list"
    if action == "list":
        templates = service.list_fixed_expenses(user_id)
        print(render_fixed_expenses(templates, service.budgets.get_categories(user_id)))
    elif action == "add":
        template = service.create_fixed_expense(user_id, args.name, args.amount, args.category_id)
        print(f"Created fixed expense {template.id} '{template.name}' ({template.amount})")
    elif action == "delete":
        service.delete_fixed_expense(user_id, args.id)
        print(f"Deleted fixed expense {args.id}")


def handle_history_command(args: argparse.Namespace, service: BudgetService, user_id: str) -> None:
    print(render_history(service.list_budget_history(user_id)))


def handle_shopping_command(args: argparse.Namespace, service: BudgetService, user_id: str) -> None:
    """Handle shopping list commands."""
    action = args.shopping_action or "list"
    if action == "list":
        print(render_shopping_lists(service.list_shopping_lists(user_id)))
    elif action == "create":
        shopping_list = service.create_shopping_list(user_id, args.name, args.recurring)
        print(f"Created shopping list {shopping_list.id} '{shopping_list.name}'")
    elif action == "delete":
        service.delete_shopping_list(user_id, args.id)
        print(f"Deleted shopping list {args.id}")
    elif action == "add-item":
        item = service.add_shopping_item(user_id, args.list_id, args.name, args.amount)
        print(f"Added item {item.id} '{item.name}' to list {args.list_id}")
    elif action == "check":
        item = service.update_shopping_item(user_id, args.item_id, is_completed=not args.undo)
        state = "done" if item.is_completed else "not done"
        print(f"Marked item {item.id} '{item.name}' as {state}")
    elif action == "delete-item":
        service.delete_shopping_item(user_id, args.item_id)
        print(f"Deleted item {args.item_id}")


def handle_rollover_command(args: argparse.Namespace, service: BudgetService, user_id: str) -> None:
    result = service.run_rollover(user_id)
    if result.performed:
        archived = result.archived_month or "nothing (already archived)"
        print(f"Rolled over: archived {archived}, injected {len(result.injected_expense_ids)} fixed expenses")
    elif result.reason == "no_settings":
        print("No settings saved for this user; set a reset day with 'settings --reset-day N' first.")
    else:
        print("Budget cycle is already up to date.")


COMMAND_HANDLERS = {
    "categories": handle_categories_command,
    "cat": handle_categories_command,
    "move-budget": handle_move_budget_command,
    "move": handle_move_budget_command,
    "expenses": handle_expenses_command,
    "exp": handle_expenses_command,
    "settings": handle_settings_command,
    "stats": handle_stats_command,
    "status": handle_stats_command,
    "fixed": handle_fixed_command,
    "history": handle_history_command,
    "shopping": handle_shopping_command,
    "shop": handle_shopping_command,
    "rollover": handle_rollover_command,
}


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the application.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Process exit code
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    # Handle case where no command is provided
    if not args.command:
        parser.print_help()
        return 1

    # Load configuration
    try:
        config = load_config(args.config)
    except BudgetTrackerError as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        return 1

    # Ensure data directory exists before logging/database work
    try:
        ensure_data_dir(config)
    except OSError as exc:
        print(f"Failed to prepare data directory: {exc}", file=sys.stderr)
        return 1

    setup_logging(config)
    user_id = args.user or config.get("cli", {}).get("default_user", "local")

    try:
        connection_string = resolve_connection_string(config)
        db_manager = DatabaseManager.from_config(connection_string, config)
    except (OSError, BudgetTrackerError) as e:
        logger.error(f"Failed to open database: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        db_manager.create_tables()
        service = BudgetService(db_manager, config)
        COMMAND_HANDLERS[args.command](args, service, user_id)
    except BudgetTrackerError as e:
        logger.error(f"Command '{args.command}' failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except IOError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        db_manager.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
