"""HTTP client for the expense tracking procedures."""
from __future__ import annotations

import json
import logging
from datetime import date
from decimal import Decimal
from typing import Any, List, Optional

import requests
from pydantic import TypeAdapter

from . import schemas
from .rpc import RPCError

LOG = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://127.0.0.1:2022"

_CATEGORIES = TypeAdapter(List[schemas.CategoryRead])
_EXPENSES = TypeAdapter(List[schemas.ExpenseWithCategory])


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, date):
        return value.isoformat()
    return value


def _compact(**fields: Any) -> dict[str, Any]:
    return {key: _jsonable(value) for key, value in fields.items() if value is not None}


class ExpenseClient:
    """Call the remote procedures and decode their results into read models.

    ``session`` may be any object exposing the ``requests.Session`` ``get``
    and ``post`` signatures, such as a FastAPI ``TestClient``.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        timeout: float = 5,
        session: Optional[Any] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()

    def _url(self, procedure: str) -> str:
        return f"{self.base_url}/rpc/{procedure}"

    def _unwrap(self, procedure: str, response: Any) -> Any:
        try:
            payload = response.json()
        except ValueError as exc:
            raise RPCError(
                "INTERNAL_SERVER_ERROR",
                f"Malformed response (HTTP {response.status_code})",
                procedure=procedure,
            ) from exc
        if "error" in payload:
            error = RPCError.from_payload(payload)
            LOG.warning("%s failed: %s %s", procedure, error.code, error.message)
            raise error
        return payload["result"]["data"]

    def query(self, procedure: str, payload: Any = None) -> Any:
        params = {"input": json.dumps(payload)} if payload is not None else None
        response = self.session.get(self._url(procedure), params=params, timeout=self.timeout)
        return self._unwrap(procedure, response)

    def mutate(self, procedure: str, payload: Any = None) -> Any:
        response = self.session.post(
            self._url(procedure), json={"input": payload}, timeout=self.timeout
        )
        return self._unwrap(procedure, response)

    def healthcheck(self) -> schemas.HealthStatus:
        return schemas.HealthStatus.model_validate(self.query("healthcheck"))

    def create_category(self, name: str) -> schemas.CategoryRead:
        return schemas.CategoryRead.model_validate(self.mutate("createCategory", {"name": name}))

    def list_categories(self) -> List[schemas.CategoryRead]:
        return _CATEGORIES.validate_python(self.query("getCategories"))

    def update_category(self, category_id: int, name: str) -> schemas.CategoryRead:
        data = self.mutate("updateCategory", {"id": category_id, "name": name})
        return schemas.CategoryRead.model_validate(data)

    def delete_category(self, category_id: int) -> None:
        self.mutate("deleteCategory", category_id)

    def create_expense(
        self,
        amount: Decimal | float,
        description: str,
        expense_date: date | str,
        category_id: int,
    ) -> schemas.ExpenseRead:
        payload = _compact(
            amount=amount,
            description=description,
            date=expense_date,
            category_id=category_id,
        )
        return schemas.ExpenseRead.model_validate(self.mutate("createExpense", payload))

    def list_expenses(
        self,
        category_id: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[schemas.ExpenseWithCategory]:
        expense_filter = _compact(category_id=category_id, start_date=start_date, end_date=end_date)
        return _EXPENSES.validate_python(self.query("getExpenses", expense_filter or None))

    def update_expense(
        self,
        expense_id: int,
        *,
        amount: Decimal | float | None = None,
        description: Optional[str] = None,
        expense_date: date | str | None = None,
        category_id: Optional[int] = None,
    ) -> schemas.ExpenseRead:
        payload = _compact(
            id=expense_id,
            amount=amount,
            description=description,
            date=expense_date,
            category_id=category_id,
        )
        return schemas.ExpenseRead.model_validate(self.mutate("updateExpense", payload))

    def delete_expense(self, expense_id: int) -> None:
        self.mutate("deleteExpense", expense_id)


__all__ = ["DEFAULT_BASE_URL", "ExpenseClient"]
