"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
There is one table: the listing catalog. Timestamps are integer milliseconds
since the epoch because clients order and diff on them directly.
"""

import uuid
from decimal import Decimal

from sqlalchemy import BigInteger, Boolean, Index, Numeric, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def new_listing_id() -> str:
    return uuid.uuid4().hex


class Listing(Base):
    """A product offered on the marketplace.

    Learn: `id` and `seller_id` never change after insert. `created_or_updated_at`
    is always written by the server and is the recency key every catalog
    query orders by.
    """

    __tablename__ = "listings"
    __table_args__ = (
        Index("ix_listings_recency", "created_or_updated_at", "id"),
        Index("ix_listings_seller_recency", "seller_id", "created_or_updated_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_listing_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    condition: Mapped[str] = mapped_column(String(50), nullable=False)
    negotiable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    location: Mapped[str] = mapped_column(String(200), nullable=False)
    payment_option: Mapped[str] = mapped_column(String(100), nullable=False)
    seller_contact: Mapped[str] = mapped_column(String(200), nullable=False)
    seller_id: Mapped[str] = mapped_column(String(100), nullable=False)
    image_ref: Mapped[str] = mapped_column(Text, nullable=False)
    created_or_updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
