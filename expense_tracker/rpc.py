"""Typed remote procedures multiplexed over a single HTTP endpoint.

A procedure couples a handler from :mod:`expense_tracker.crud` with the
pydantic adapters that parse its input and serialise its output. Inputs are
validated before a session is opened, so a rejected call never touches the
datastore.
"""
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional

from pydantic import TypeAdapter, ValidationError
from sqlalchemy.orm import Session

from . import crud, schemas
from .database import SessionFactory, session_scope

LOG = logging.getLogger(__name__)

ProcedureKind = Literal["query", "mutation"]

# Error code -> HTTP status of the error envelope.
ERROR_STATUS: Dict[str, int] = {
    "BAD_REQUEST": 400,
    "NOT_FOUND": 404,
    "METHOD_NOT_SUPPORTED": 405,
    "CONFLICT": 409,
    "INTERNAL_SERVER_ERROR": 500,
}


class RPCError(Exception):
    """Failure of a remote procedure call, raised on both ends of the wire."""

    def __init__(
        self,
        code: str,
        message: str,
        *,
        procedure: Optional[str] = None,
        details: Optional[list[dict[str, Any]]] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.procedure = procedure
        self.details = details

    @property
    def status(self) -> int:
        return ERROR_STATUS.get(self.code, 500)

    def to_payload(self) -> dict[str, Any]:
        error: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "procedure": self.procedure,
        }
        if self.details:
            error["details"] = self.details
        return {"error": error}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "RPCError":
        error = payload.get("error") or {}
        return cls(
            str(error.get("code", "INTERNAL_SERVER_ERROR")),
            str(error.get("message", "Unknown error")),
            procedure=error.get("procedure"),
            details=error.get("details"),
        )


@dataclass(frozen=True, slots=True)
class Procedure:
    name: str
    kind: ProcedureKind
    handler: Callable[..., Any]
    output: TypeAdapter
    input: Optional[TypeAdapter] = None
    uses_db: bool = True

    def parse_input(self, raw: Any) -> Any:
        if self.input is None:
            return None
        return self.input.validate_python(raw)


PROCEDURES: Dict[str, Procedure] = {}


def procedure(
    name: str,
    kind: ProcedureKind,
    *,
    output: Any,
    input: Any = None,
    uses_db: bool = True,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Register the decorated function as the remote procedure ``name``."""

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        if name in PROCEDURES:
            raise ValueError(f"Procedure {name!r} is already registered")
        PROCEDURES[name] = Procedure(
            name=name,
            kind=kind,
            handler=func,
            output=TypeAdapter(output),
            input=TypeAdapter(input) if input is not None else None,
            uses_db=uses_db,
        )
        return func

    return decorator


@procedure("healthcheck", "query", output=schemas.HealthStatus, uses_db=False)
def _healthcheck(_session: None, _input: None) -> schemas.HealthStatus:
    return schemas.HealthStatus()


@procedure("createCategory", "mutation", input=schemas.CategoryCreate, output=schemas.CategoryRead)
def _create_category(session: Session, category_in: schemas.CategoryCreate):
    return crud.create_category(session, category_in)


@procedure("getCategories", "query", output=List[schemas.CategoryRead])
def _get_categories(session: Session, _input: None):
    return crud.list_categories(session)


@procedure("updateCategory", "mutation", input=schemas.CategoryUpdate, output=schemas.CategoryRead)
def _update_category(session: Session, update_in: schemas.CategoryUpdate):
    return crud.update_category(session, update_in)


@procedure("deleteCategory", "mutation", input=int, output=None)
def _delete_category(session: Session, category_id: int) -> None:
    crud.delete_category(session, category_id)


@procedure("createExpense", "mutation", input=schemas.ExpenseCreate, output=schemas.ExpenseRead)
def _create_expense(session: Session, expense_in: schemas.ExpenseCreate):
    return crud.create_expense(session, expense_in)


@procedure(
    "getExpenses",
    "query",
    input=Optional[schemas.ExpenseFilter],
    output=List[schemas.ExpenseWithCategory],
)
def _get_expenses(session: Session, expense_filter: Optional[schemas.ExpenseFilter]):
    return crud.list_expenses(session, expense_filter)


@procedure("updateExpense", "mutation", input=schemas.ExpenseUpdate, output=schemas.ExpenseRead)
def _update_expense(session: Session, update_in: schemas.ExpenseUpdate):
    return crud.update_expense(session, update_in)


@procedure("deleteExpense", "mutation", input=int, output=None)
def _delete_expense(session: Session, expense_id: int) -> None:
    crud.delete_expense(session, expense_id)


def resolve(name: str, method: str = "POST") -> Procedure:
    """Look up ``name`` and check that ``method`` may invoke it."""

    proc = PROCEDURES.get(name)
    if proc is None:
        raise RPCError("NOT_FOUND", f"No procedure named {name!r}", procedure=name)
    if proc.kind == "mutation" and method.upper() != "POST":
        raise RPCError(
            "METHOD_NOT_SUPPORTED",
            f"Mutation {name!r} must be called with POST",
            procedure=name,
        )
    return proc


def _validation_details(exc: ValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": [str(part) for part in error["loc"]], "msg": error["msg"], "type": error["type"]}
        for error in exc.errors()
    ]


def classify(exc: Exception, name: str) -> RPCError:
    """Translate an exception raised by a procedure into an :class:`RPCError`."""

    if isinstance(exc, RPCError):
        return exc
    if isinstance(exc, ValidationError):
        return RPCError(
            "BAD_REQUEST",
            f"Invalid input for {name}",
            procedure=name,
            details=_validation_details(exc),
        )
    if isinstance(exc, crud.EntityNotFoundError):
        return RPCError("NOT_FOUND", str(exc), procedure=name)
    if isinstance(exc, crud.EntityConflictError):
        return RPCError("CONFLICT", str(exc), procedure=name)
    # Anything else, constraint violations included, reaches the caller unclassified.
    return RPCError("INTERNAL_SERVER_ERROR", f"{type(exc).__name__}: {exc}", procedure=name)


def _serialise(proc: Procedure, result: Any) -> Any:
    try:
        return proc.output.dump_python(
            proc.output.validate_python(result, from_attributes=True),
            mode="json",
        )
    except ValidationError as exc:
        raise RuntimeError(f"Procedure {proc.name} produced an invalid result") from exc


def _execute(proc: Procedure, session_factory: SessionFactory, parsed: Any) -> Any:
    if not proc.uses_db:
        return _serialise(proc, proc.handler(None, parsed))
    with session_scope(session_factory) as session:
        # Serialise inside the scope, while lazy attributes can still load.
        return _serialise(proc, proc.handler(session, parsed))


def call(proc: Procedure, session_factory: SessionFactory, raw_input: Any = None) -> Any:
    """Run ``proc`` in its own transaction and return its JSON-ready output.

    Raises:
      RPCError: For every failure, already classified.
    """

    started = time.perf_counter()
    try:
        parsed = proc.parse_input(raw_input)
        data = _execute(proc, session_factory, parsed)
    except Exception as exc:
        error = classify(exc, proc.name)
        elapsed_ms = (time.perf_counter() - started) * 1000
        extra = {"procedure": proc.name, "outcome": error.code, "process_time_ms": elapsed_ms}
        if error.code == "INTERNAL_SERVER_ERROR":
            LOG.exception("Procedure %s failed unexpectedly", proc.name, extra=extra)
        else:
            LOG.warning("Procedure %s rejected: %s", proc.name, error.message, extra=extra)
        if error is exc:
            raise
        raise error from exc

    elapsed_ms = (time.perf_counter() - started) * 1000
    LOG.info(
        "Procedure %s ok in %.1f ms",
        proc.name,
        elapsed_ms,
        extra={"procedure": proc.name, "outcome": "ok", "process_time_ms": elapsed_ms},
    )
    return data


__all__ = ["PROCEDURES", "Procedure", "RPCError", "call", "classify", "procedure", "resolve"]
