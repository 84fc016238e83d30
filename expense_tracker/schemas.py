"""Pydantic schemas for validating and serialising expense tracking data."""
from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated, Any, Literal, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
)

CENT = Decimal("0.01")
# NUMERIC(10, 2) holds at most eight integer digits.
AMOUNT_CEILING = Decimal("100000000")


def _quantize_amount(value: Decimal) -> Decimal:
    """Round to cents and reject anything that does not stay strictly positive."""
    if not value.is_finite():
        raise ValueError("Amount must be a finite number")
    if value >= AMOUNT_CEILING:
        raise ValueError(f"Amount must be less than {AMOUNT_CEILING}")
    try:
        rounded = value.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValueError("Amount cannot be rounded to cents") from exc
    if rounded <= 0:
        raise ValueError("Amount must be positive")
    if rounded >= AMOUNT_CEILING:
        raise ValueError(f"Amount must be less than {AMOUNT_CEILING}")
    return rounded


def _as_calendar_date(value: Any) -> Any:
    """Reduce timestamps to the calendar day they fall on in UTC.

    Plain ``YYYY-MM-DD`` strings and ``date`` objects pass through untouched so
    the day a user picked never shifts with the server timezone.
    """
    if isinstance(value, str) and "T" in value:
        value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value.date()
    return value


def _as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo; they were written as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


Amount = Annotated[
    Decimal,
    AfterValidator(_quantize_amount),
    PlainSerializer(float, return_type=float, when_used="json"),
]
CalendarDate = Annotated[date, BeforeValidator(_as_calendar_date)]
Timestamp = Annotated[datetime, AfterValidator(_as_utc)]
CategoryName = Annotated[str, Field(min_length=1, max_length=100)]
Description = Annotated[str, Field(min_length=1, max_length=500)]
EntityId = Annotated[int, Field(gt=0)]


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class InputModel(BaseModel):
    # Unknown keys are dropped, matching how the browser client's payloads are read.
    model_config = ConfigDict(extra="ignore")


class CategoryCreate(InputModel):
    name: CategoryName


class CategoryUpdate(InputModel):
    id: int
    name: CategoryName


class CategoryRead(ORMModel):
    id: int
    name: str
    created_at: Timestamp


class ExpenseCreate(InputModel):
    amount: Amount
    description: Description
    date: CalendarDate
    category_id: EntityId


class ExpenseUpdate(InputModel):
    """Partial update; only the fields present in the payload are written."""

    id: int
    amount: Optional[Amount] = None
    description: Optional[Description] = None
    date: Optional[CalendarDate] = None
    category_id: Optional[EntityId] = None

    def changes(self) -> dict[str, Any]:
        """Return the supplied fields, treating an explicit ``null`` as absent."""
        supplied = self.model_dump(exclude_unset=True, exclude={"id"})
        return {field: value for field, value in supplied.items() if value is not None}


class ExpenseFilter(InputModel):
    category_id: Optional[int] = None
    start_date: Optional[CalendarDate] = None
    end_date: Optional[CalendarDate] = None


class ExpenseRead(ORMModel):
    id: int
    amount: Amount
    description: str
    date: CalendarDate
    category_id: int
    created_at: Timestamp


class ExpenseWithCategory(ExpenseRead):
    category: CategoryRead


class HealthStatus(BaseModel):
    status: Literal["ok"] = "ok"
    timestamp: Timestamp = Field(default_factory=lambda: datetime.now(UTC))
