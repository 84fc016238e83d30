"""Command-line interface for the expense tracker server and client."""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

import requests

from .client import DEFAULT_BASE_URL, ExpenseClient
from .config import ConfigError, Settings, load_settings
from .logging import configure_cli_logging
from .rpc import RPCError

DESCRIPTION = "Expense tracker: RPC server and command-line client"
LOG = logging.getLogger(__name__)


def _parse_date(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as exc:  # pragma: no cover - argparse validation
        raise argparse.ArgumentTypeError("Expected YYYY-MM-DD date format") from exc


def _parse_amount(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation as exc:  # pragma: no cover - argparse validation
        raise argparse.ArgumentTypeError(f"Invalid amount {value!r}") from exc


def format_currency(amount: Decimal | float) -> str:
    """Format ``amount`` as US dollars, e.g. ``$1,234.50``."""

    value = Decimal(str(amount)).quantize(Decimal("0.01"))
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


def _add_serve_subparser(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> None:
    serve = subparsers.add_parser("serve", help="Run the RPC server")
    serve.add_argument("--host", default=None, help="Bind address (default from SERVER_HOST)")
    serve.add_argument("--port", type=int, default=None, help="TCP port (default from SERVER_PORT)")
    serve.add_argument("--database-url", default=None, help="SQLAlchemy database URL")


def _add_init_db_subparser(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> None:
    init_db = subparsers.add_parser("init-db", help="Create the database tables")
    init_db.add_argument("--database-url", default=None, help="SQLAlchemy database URL")


def _add_categories_subparser(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> None:
    categories = subparsers.add_parser("categories", help="Manage expense categories")
    actions = categories.add_subparsers(dest="action", required=True)
    actions.add_parser("list", help="List categories by name")
    add = actions.add_parser("add", help="Create a category")
    add.add_argument("name")
    rename = actions.add_parser("rename", help="Rename a category")
    rename.add_argument("id", type=int)
    rename.add_argument("name")
    delete = actions.add_parser("delete", help="Delete an unused category")
    delete.add_argument("id", type=int)


def _add_expenses_subparser(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> None:
    expenses = subparsers.add_parser("expenses", help="Manage expenses")
    actions = expenses.add_subparsers(dest="action", required=True)

    listing = actions.add_parser("list", help="List expenses, most recent first")
    listing.add_argument("--category", type=int, default=None, help="Only this category id")
    listing.add_argument("--from", dest="start_date", type=_parse_date, default=None)
    listing.add_argument("--to", dest="end_date", type=_parse_date, default=None)

    add = actions.add_parser("add", help="Record an expense")
    add.add_argument("amount", type=_parse_amount)
    add.add_argument("description")
    add.add_argument("--category", type=int, required=True, help="Category id")
    add.add_argument(
        "--date",
        dest="expense_date",
        type=_parse_date,
        default=None,
        help="Day of the expense (default: today)",
    )

    update = actions.add_parser("update", help="Change some fields of an expense")
    update.add_argument("id", type=int)
    update.add_argument("--amount", type=_parse_amount, default=None)
    update.add_argument("--description", default=None)
    update.add_argument("--date", dest="expense_date", type=_parse_date, default=None)
    update.add_argument("--category", type=int, default=None)

    delete = actions.add_parser("delete", help="Delete an expense")
    delete.add_argument("id", type=int)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="expense-tracker", description=DESCRIPTION)
    parser.add_argument(
        "--json-logs",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Mirror logs to artifacts/logs/expenses.log in JSON format",
    )
    parser.add_argument(
        "--url",
        default=DEFAULT_BASE_URL,
        help=f"Base URL of the RPC server (default {DEFAULT_BASE_URL})",
    )
    sub = parser.add_subparsers(dest="cmd", required=True)
    _add_serve_subparser(sub)
    _add_init_db_subparser(sub)
    _add_categories_subparser(sub)
    _add_expenses_subparser(sub)
    return parser


def _load_settings(args: argparse.Namespace) -> Settings:
    """Layer the flags given on the command line over the configured settings."""
    return load_settings(
        json_logs=args.json_logs,
        host=getattr(args, "host", None),
        port=getattr(args, "port", None),
        database_url=getattr(args, "database_url", None),
    )


def _handle_serve(settings: Settings) -> None:
    import uvicorn

    from .server import create_app

    LOG.info("Serving on %s:%s", settings.host, settings.port)
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


def _handle_init_db(settings: Settings) -> None:
    from .database import create_db_engine, init_db

    engine = create_db_engine(settings.database_url, echo=settings.sql_echo)
    try:
        init_db(engine)
    finally:
        engine.dispose()
    print(f"[expenses] schema ready url={engine.url.render_as_string(hide_password=True)}")


def _handle_categories(client: ExpenseClient, args: argparse.Namespace) -> None:
    if args.action == "list":
        for category in client.list_categories():
            print(f"{category.id:>5}  {category.name}")
    elif args.action == "add":
        category = client.create_category(args.name)
        print(f"[expenses] created category id={category.id} name={category.name}")
    elif args.action == "rename":
        category = client.update_category(args.id, args.name)
        print(f"[expenses] renamed category id={category.id} name={category.name}")
    elif args.action == "delete":
        client.delete_category(args.id)
        print(f"[expenses] deleted category id={args.id}")


def _handle_expenses(client: ExpenseClient, args: argparse.Namespace) -> None:
    if args.action == "list":
        expenses = client.list_expenses(
            category_id=args.category,
            start_date=args.start_date,
            end_date=args.end_date,
        )
        for expense in expenses:
            print(
                f"{expense.id:>5}  {expense.date.isoformat()}  {format_currency(expense.amount):>12}  "
                f"{expense.category.name:<20}  {expense.description}"
            )
        total = sum((expense.amount for expense in expenses), Decimal("0"))
        print(f"Total: {format_currency(total)} ({len(expenses)} expenses)")
    elif args.action == "add":
        expense = client.create_expense(
            args.amount,
            args.description,
            args.expense_date or date.today(),
            args.category,
        )
        print(
            f"[expenses] created expense id={expense.id} amount={format_currency(expense.amount)} "
            f"date={expense.date.isoformat()}"
        )
    elif args.action == "update":
        expense = client.update_expense(
            args.id,
            amount=args.amount,
            description=args.description,
            expense_date=args.expense_date,
            category_id=args.category,
        )
        print(
            f"[expenses] updated expense id={expense.id} amount={format_currency(expense.amount)} "
            f"date={expense.date.isoformat()}"
        )
    elif args.action == "delete":
        client.delete_expense(args.id)
        print(f"[expenses] deleted expense id={args.id}")


def main(argv: Sequence[str] | None = None, *, client: ExpenseClient | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        settings = _load_settings(args)
        configure_cli_logging(json_logs=settings.json_logs, level=settings.log_level)
        if args.cmd == "serve":
            _handle_serve(settings)
        elif args.cmd == "init-db":
            _handle_init_db(settings)
        else:
            client = client or ExpenseClient(args.url)
            if args.cmd == "categories":
                _handle_categories(client, args)
            else:
                _handle_expenses(client, args)
    except RPCError as exc:
        print(f"[expenses] error {exc.code}: {exc.message}", file=sys.stderr)
        return 1
    except requests.RequestException as exc:
        LOG.error("Request to %s failed: %s", args.url, exc)
        print(f"[expenses] server unreachable at {args.url}", file=sys.stderr)
        return 1
    except ConfigError as exc:
        print(f"[expenses] configuration error: {exc}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
