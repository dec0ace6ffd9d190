"""SQLAlchemy ORM model for the hosted receipt table.

The table and column names follow the hosted schema written by the
extraction workflow (``fisler``, ``fis_no``, ``tarih_saat``,
``total_kdv``); the mapped attribute names are the ones used across
the Python code base.

If you extend or modify this model remember to call the ``init_db``
helper during development to recreate the tables.
"""

from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import Column, String, DateTime, Float, JSON

from fisboard.core.database import Base


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class Receipt(Base):
    """Receipt record produced by the extraction workflow."""

    __tablename__ = "fisler"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    record_no = Column("fis_no", String, nullable=True, index=True)
    event_time = Column("tarih_saat", DateTime(timezone=True), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)
    total = Column(Float, nullable=True)
    total_tax = Column("total_kdv", Float, nullable=True)
    # Ordered list of {name, quantity, unit_price, tax_rate, line_total}
    items = Column(JSON, nullable=True)
