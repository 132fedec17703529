"""SQLAlchemy ORM models for the short-link service.

Data Model Layout
=================
::
    short_url
    ├─ id (BIGINT IDENTITY PRIMARY KEY)
    ├─ long_url (TEXT NOT NULL)
    ├─ long_url_hash (CHAR(64) NOT NULL, INDEXED)
    ├─ created_at (TIMESTAMPTZ, DEFAULT NOW())
    ├─ expiry (TIMESTAMPTZ NULL)
    ├─ owner (VARCHAR(255) NULL)
    └─ UNIQUE (long_url_hash, long_url)

    custom_url_code
    ├─ code (VARCHAR(100) PRIMARY KEY)
    └─ url_id (BIGINT NOT NULL → short_url.id)

    short_url_click_analytics
    ├─ time (TIMESTAMPTZ, PK part)
    ├─ url_id (BIGINT, PK part → short_url.id, INDEXED)
    └─ count (BIGINT NOT NULL)

Key Behaviours
===============
- ``expiry`` NULL means the record never expires.
- Alias uniqueness is enforced by the ``custom_url_code`` primary key.
- Click counts are only ever accumulated, never overwritten.

Classes:
    UrlRecord:  A stored long URL with its surrogate id.
    Alias:  A user-chosen code pointing at one UrlRecord.
    ClickCount:  Persisted clicks for one (bucket time, url id).
"""

import datetime

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from shortener.database import Base

__all__ = ["UrlRecord", "Alias", "ClickCount"]


class UrlRecord(Base):
    __tablename__ = "short_url"
    __table_args__ = (UniqueConstraint("long_url_hash", "long_url", name="uq_short_url_hash_url"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    long_url: Mapped[str] = mapped_column(Text, nullable=False)
    long_url_hash: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    expiry: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    owner: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def is_expired(self, now: datetime.datetime) -> bool:
        return self.expiry is not None and self.expiry <= now

    def __repr__(self) -> str:
        return f"<UrlRecord(id={self.id}, long_url='{self.long_url}', expiry={self.expiry})>"


class Alias(Base):
    __tablename__ = "custom_url_code"

    code: Mapped[str] = mapped_column(String(100), primary_key=True)
    url_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("short_url.id", name="fk_custom_url_code_url_id"), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Alias(code='{self.code}', url_id={self.url_id})>"


class ClickCount(Base):
    __tablename__ = "short_url_click_analytics"
    __table_args__ = (Index("idx_click_analytics_url_id", "url_id"),)

    time: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), primary_key=True)
    url_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("short_url.id", name="fk_short_url_click_analytics_url_id"),
        primary_key=True,
    )
    count: Mapped[int] = mapped_column(BigInteger, nullable=False)

    def __repr__(self) -> str:
        return f"<ClickCount(time={self.time}, url_id={self.url_id}, count={self.count})>"
