"""
SQLAlchemy ORM Models for the Anime Aggregation Service

This module defines the persistent cache table used by the database cache backend.
"""
from datetime import datetime, timezone
from sqlalchemy import String, Text, DateTime, Integer, Index
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models"""
    pass


class AnimeCacheEntry(Base):
    """Cached aggregator result keyed by operation and parameters"""
    __tablename__ = "anime_cache"

    cache_key: Mapped[str] = mapped_column(String, primary_key=True)
    payload: Mapped[str] = mapped_column(Text, nullable=False)  # JSON document
    fetched_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)  # naive UTC
    ttl_seconds: Mapped[int] = mapped_column(Integer, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=lambda: datetime.now(timezone.utc).replace(tzinfo=None),
        onupdate=lambda: datetime.now(timezone.utc).replace(tzinfo=None),
    )

    __table_args__ = (
        Index("idx_anime_cache_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<AnimeCacheEntry(cache_key={self.cache_key}, expires_at={self.expires_at})>"
