"""CRUD handlers for the expense tracking service.

Every handler receives the session it works in; the caller owns the
transaction, so an existence check and the mutation it guards are committed or
rolled back together.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from sqlalchemy import Select, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models, schemas

LOG = logging.getLogger(__name__)


class EntityNotFoundError(RuntimeError):
    """Raised when an entity cannot be located in the database."""


class EntityConflictError(RuntimeError):
    """Raised when an operation would break a relationship between entities."""


def locked_select(model: type, entity_id: int) -> Select:
    """Select one row by id, locking only that table.

    ``FOR UPDATE OF`` keeps eager-loaded joins out of the lock, which
    PostgreSQL refuses on the nullable side of an outer join. SQLite ignores
    the clause and serialises writers on its own.
    """
    return (
        select(model)
        .where(model.id == entity_id)
        .with_for_update(of=model)
        .execution_options(populate_existing=True)
    )


def _locked_get(session: Session, model: type, entity_id: int):
    return session.scalars(locked_select(model, entity_id)).first()


def list_categories(session: Session) -> List[models.Category]:
    stmt = select(models.Category).order_by(models.Category.name, models.Category.id)
    return list(session.scalars(stmt))


def get_category(session: Session, category_id: int, *, lock: bool = False) -> models.Category:
    if lock:
        category = _locked_get(session, models.Category, category_id)
    else:
        category = session.get(models.Category, category_id)
    if category is None:
        raise EntityNotFoundError(f"Category with id {category_id} not found")
    return category


def create_category(session: Session, category_in: schemas.CategoryCreate) -> models.Category:
    category = models.Category(name=category_in.name)
    session.add(category)
    session.flush()
    session.refresh(category)
    LOG.info("Created category %s (%r)", category.id, category.name)
    return category


def update_category(session: Session, update_in: schemas.CategoryUpdate) -> models.Category:
    category = get_category(session, update_in.id, lock=True)
    category.name = update_in.name
    session.flush()
    session.refresh(category)
    LOG.info("Renamed category %s to %r", category.id, category.name)
    return category


def count_category_expenses(session: Session, category_id: int) -> int:
    stmt = select(func.count(models.Expense.id)).where(models.Expense.category_id == category_id)
    return int(session.scalar(stmt) or 0)


def delete_category(session: Session, category_id: int) -> None:
    category = get_category(session, category_id, lock=True)
    in_use = count_category_expenses(session, category_id)
    if in_use:
        raise EntityConflictError(
            f"Cannot delete category with id {category_id}: {in_use} associated expense(s)"
        )
    session.delete(category)
    try:
        session.flush()
    except IntegrityError as exc:
        # An expense slipped in after the dependency check; the foreign key caught it.
        raise EntityConflictError(
            f"Cannot delete category with id {category_id}: associated expenses exist"
        ) from exc
    LOG.info("Deleted category %s", category_id)


def list_expenses(
    session: Session,
    expense_filter: Optional[schemas.ExpenseFilter] = None,
) -> List[models.Expense]:
    stmt = select(models.Expense).join(models.Expense.category)
    if expense_filter is not None:
        if expense_filter.category_id is not None:
            stmt = stmt.where(models.Expense.category_id == expense_filter.category_id)
        if expense_filter.start_date is not None:
            stmt = stmt.where(models.Expense.date >= expense_filter.start_date)
        if expense_filter.end_date is not None:
            stmt = stmt.where(models.Expense.date <= expense_filter.end_date)
    stmt = stmt.order_by(models.Expense.date.desc(), models.Expense.id.desc())
    return list(session.scalars(stmt).unique())


def get_expense(session: Session, expense_id: int, *, lock: bool = False) -> models.Expense:
    if lock:
        expense = _locked_get(session, models.Expense, expense_id)
    else:
        expense = session.get(models.Expense, expense_id)
    if expense is None:
        raise EntityNotFoundError(f"Expense with id {expense_id} not found")
    return expense


def create_expense(session: Session, expense_in: schemas.ExpenseCreate) -> models.Expense:
    if _locked_get(session, models.Category, expense_in.category_id) is None:
        raise EntityNotFoundError(f"Category with id {expense_in.category_id} does not exist")

    expense = models.Expense(**expense_in.model_dump())
    session.add(expense)
    session.flush()
    session.refresh(expense)
    LOG.info("Created expense %s in category %s", expense.id, expense.category_id)
    return expense


def update_expense(session: Session, update_in: schemas.ExpenseUpdate) -> models.Expense:
    expense = get_expense(session, update_in.id, lock=True)
    changes = update_in.changes()
    if "category_id" in changes:
        get_category(session, changes["category_id"], lock=True)

    for field, value in changes.items():
        setattr(expense, field, value)
    session.flush()
    session.refresh(expense)
    LOG.info("Updated expense %s fields=%s", expense.id, sorted(changes))
    return expense


def delete_expense(session: Session, expense_id: int) -> None:
    expense = get_expense(session, expense_id, lock=True)
    session.delete(expense)
    session.flush()
    LOG.info("Deleted expense %s", expense_id)
