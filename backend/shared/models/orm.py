"""
SQLAlchemy 2.0 ORM models for Live Crease.

Two logical collections, each keyed by the provider match id:
``live_matches`` (ephemeral, TTL-bearing) and ``completed_matches`` (durable).
The canonical record is stored as a JSON document; the columns beside it are
the bookkeeping and the fields the completed listing filters and sorts on.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Index, Integer, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
DocumentType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


class LiveMatchORM(Base):
    __tablename__ = "live_matches"

    match_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    document: Mapped[dict[str, Any]] = mapped_column(DocumentType, nullable=False, default=dict)
    update_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    start_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_live_matches_expires_at", "expires_at"),
    )


class CompletedMatchORM(Base):
    __tablename__ = "completed_matches"

    match_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    document: Mapped[dict[str, Any]] = mapped_column(DocumentType, nullable=False, default=dict)
    format: Mapped[Optional[str]] = mapped_column(String(20))
    series: Mapped[Optional[str]] = mapped_column(String(300))
    start_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    result_source: Mapped[str] = mapped_column(String(40), nullable=False)
    api_fetched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_completed_matches_end_time", "end_time"),
        Index("idx_completed_matches_format", "format"),
    )
