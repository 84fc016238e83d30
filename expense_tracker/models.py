"""SQLAlchemy models for the expense tracking service."""
from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Category(Base):
    __tablename__ = "categories"
    __table_args__ = {"sqlite_autoincrement": True}

    id: int = Column(Integer, primary_key=True, index=True)
    name: str = Column(String(100), nullable=False, index=True)
    created_at: datetime = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    expenses = relationship("Expense", back_populates="category", passive_deletes="all")


class Expense(Base):
    __tablename__ = "expenses"
    __table_args__ = {"sqlite_autoincrement": True}

    id: int = Column(Integer, primary_key=True, index=True)
    amount: Decimal = Column(Numeric(10, 2), nullable=False)
    description: str = Column(String(500), nullable=False)
    date: date = Column(Date, nullable=False, index=True)
    category_id: int = Column(
        Integer,
        ForeignKey("categories.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    created_at: datetime = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    category = relationship("Category", back_populates="expenses", lazy="joined", innerjoin=True)
