# swapsnipr/db.py
from __future__ import annotations

import os
from datetime import datetime
from decimal import Decimal
from functools import lru_cache
from typing import Optional

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, Field, create_engine, Session, select

from swapsnipr.core import PurchaseReceipt
from swapsnipr.settings import SWAPSNIPR_ROOT


class Purchase(SQLModel, table=True):
    """Audit row for one successful checkout. Never read back by the loop."""

    __tablename__ = "purchase"
    id: Optional[int] = Field(default=None, primary_key=True)
    timestamp: datetime = Field(index=True, description="Checkout time, timezone-aware UTC")
    url: str = Field(index=True)
    author: str
    unit_price: Decimal = Field(max_digits=12, decimal_places=2)
    units: int
    currency: str = Field(default="EUR", max_length=8)


def _default_url() -> str:
    data_dir = SWAPSNIPR_ROOT / "data"
    data_dir.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{data_dir / 'swapsnipr.sqlite'}"


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    engine = create_engine(os.getenv("SWAPSNIPR_DB_URL") or _default_url(), echo=False)
    SQLModel.metadata.create_all(engine)
    return engine


def record_purchase(receipt: PurchaseReceipt) -> Purchase:
    row = Purchase(
        timestamp=receipt.timestamp,
        url=receipt.url,
        author=receipt.author,
        unit_price=receipt.unit_price,
        units=receipt.units,
    )
    with Session(get_engine()) as s:
        s.add(row)
        s.commit()
        s.refresh(row)
        return row


def recent_purchases(limit: int = 20) -> list[Purchase]:
    with Session(get_engine()) as s:
        stmt = select(Purchase).order_by(Purchase.timestamp.desc()).limit(limit)
        return list(s.exec(stmt).all())


def units_purchased(since: Optional[datetime] = None) -> int:
    with Session(get_engine()) as s:
        stmt = select(Purchase)
        if since is not None:
            stmt = stmt.where(Purchase.timestamp >= since)
        return sum(row.units for row in s.exec(stmt).all())
