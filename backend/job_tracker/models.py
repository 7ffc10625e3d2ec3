"""SQLAlchemy ORM models for all database tables."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Shared declarative base for all models."""


# Response status vocabulary for Application.response
RESPONSE_VALUES = (
    "No Response",
    "Rejected",
    "Phone Screen",
    "Interview",
    "Offer",
    "Hired",
    "Other",
)
NO_RESPONSE = "No Response"


class Application(Base):
    """A tracked job application (one job record)."""

    __tablename__ = "applications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_title: Mapped[str] = mapped_column(String(300), nullable=False)
    company: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    company_location: Mapped[str | None] = mapped_column(String(200), nullable=True)
    applied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    response: Mapped[str] = mapped_column(String(50), nullable=False, default=NO_RESPONSE)
    external_job_id: Mapped[str | None] = mapped_column(String(80), nullable=True, index=True)
    website: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Enrichment fields
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    employment_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    location_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    wages_min: Mapped[float | None] = mapped_column(Float, nullable=True)
    wages_max: Mapped[float | None] = mapped_column(Float, nullable=True)
    wage_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    pending_enrichment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    enriched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    source: Mapped[str] = mapped_column(String(50), nullable=False, default="Email")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    status_checks: Mapped[list[StatusCheck]] = relationship(
        back_populates="application",
        cascade="all, delete-orphan",
        order_by="StatusCheck.id",
    )

    def __repr__(self) -> str:
        return (
            f"<Application id={self.id} company={self.company!r} "
            f"title={self.job_title!r} response={self.response!r}>"
        )


class StatusCheck(Base):
    """A dated note recorded against an application (views, reviews, replies)."""

    __tablename__ = "status_checks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    application_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("applications.id", ondelete="CASCADE"), nullable=False, index=True
    )
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")

    application: Mapped[Application] = relationship(back_populates="status_checks")

    def __repr__(self) -> str:
        return f"<StatusCheck app_id={self.application_id} date={self.date!r}>"


class EmailCredential(Base):
    """Mailbox connection settings for one email account."""

    __tablename__ = "email_credentials"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    address: Mapped[str] = mapped_column(String(300), nullable=False, unique=True)
    host: Mapped[str] = mapped_column(String(200), nullable=False)
    port: Mapped[int] = mapped_column(Integer, nullable=False, default=993)
    use_tls: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    reject_unauthorized: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    search_timeframe_days: Mapped[int] = mapped_column(Integer, nullable=False, default=90)
    search_folders: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=lambda: ["INBOX"])
    last_import_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    encrypted_password: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    def __repr__(self) -> str:
        return f"<EmailCredential id={self.id} address={self.address!r} host={self.host!r}>"
