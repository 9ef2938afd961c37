"""
quickscan_agent.db

Durable storage for basic scans and expanded reports.

- One SQLAlchemy engine per process, created by ``Store.from_url`` when the
  application context is built and reused by every request.
- Every database failure surfaces as ``StoreError`` so callers can apply their
  own policy (swallow for scans, fail the request for expanded reports).
- Without DATABASE_URL the service runs against ``UnavailableStore``.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

from sqlalchemy import JSON, Boolean, DateTime, String, Text, create_engine, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import ExpandedReport, ScanRecord

logger = logging.getLogger(__name__)


class StoreError(Exception):
    pass


class StoreUnavailable(StoreError):
    pass


def normalize_database_url(raw: str) -> str:
    """
    Normalize DATABASE_URL variants to something SQLAlchemy can reliably use.

    - postgres://  -> postgresql://
    - postgresql+psycopg:// -> postgresql+psycopg2://
    """
    url = (raw or "").strip()

    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://") :]

    if url.startswith("postgresql+psycopg://"):
        url = "postgresql+psycopg2://" + url[len("postgresql+psycopg://") :]

    return url


def _utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Base(DeclarativeBase):
    pass


class ScanRow(Base):
    __tablename__ = "scans"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    company_description: Mapped[str] = mapped_column(Text, nullable=False)
    opportunities: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    identity: Mapped[str | None] = mapped_column(String(320), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class ExpandedReportRow(Base):
    __tablename__ = "expanded_reports"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    linked_scan_id: Mapped[str | None] = mapped_column(String(64))
    email: Mapped[str] = mapped_column(String(320), nullable=False, index=True)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    report: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    email_sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    email_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class Store:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._sessions = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    @classmethod
    def from_url(cls, raw_url: str, *, timeout_s: float = 5.0) -> "Store":
        url = normalize_database_url(raw_url)
        kwargs: dict[str, Any] = {"pool_pre_ping": True}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False, "timeout": timeout_s}
            if url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
        else:
            kwargs["pool_timeout"] = timeout_s
            if url.startswith("postgresql"):
                kwargs["connect_args"] = {"connect_timeout": max(1, int(timeout_s))}
        try:
            engine = create_engine(url, **kwargs)
        except (SQLAlchemyError, ImportError) as e:
            raise StoreError(f"Could not create engine: {e}") from e
        return cls(engine)

    def create_all(self) -> None:
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise StoreError(f"Could not create tables: {e}") from e

    @contextmanager
    def session(self) -> Iterator[Session]:
        session: Session = self._sessions()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreError(str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # scans

    def create_scan(self, record: ScanRecord) -> str:
        with self.session() as s:
            s.add(
                ScanRow(
                    id=record.id,
                    url=record.url,
                    company_description=record.company_description,
                    opportunities=[o.model_dump(by_alias=True) for o in record.opportunities],
                    identity=record.identity,
                    created_at=record.created_at,
                )
            )
        return record.id

    def get_scan(self, scan_id: str) -> ScanRecord | None:
        with self.session() as s:
            row = s.get(ScanRow, scan_id)
            if row is None:
                return None
            return ScanRecord.model_validate(
                {
                    "id": row.id,
                    "url": row.url,
                    "companyDescription": row.company_description,
                    "opportunities": row.opportunities,
                    "identity": row.identity,
                    "createdAt": _utc(row.created_at),
                }
            )

    def count_scans(self, identity: str) -> int:
        with self.session() as s:
            stmt = select(func.count()).select_from(ScanRow).where(ScanRow.identity == identity)
            return int(s.scalar(stmt) or 0)

    # expanded reports

    def create_expanded_report(self, report: ExpandedReport) -> str:
        body = report.model_dump(
            by_alias=True,
            mode="json",
            include={"executive_summary", "detailed_opportunities", "overall_recommendation", "next_steps"},
        )
        with self.session() as s:
            s.add(
                ExpandedReportRow(
                    id=report.id,
                    linked_scan_id=report.linked_scan_id,
                    email=report.email,
                    url=report.url,
                    report=body,
                    email_sent=report.email_sent,
                    email_sent_at=report.email_sent_at,
                    created_at=report.created_at,
                )
            )
        return report.id

    def get_expanded_report(self, report_id: str) -> ExpandedReport | None:
        with self.session() as s:
            row = s.get(ExpandedReportRow, report_id)
            if row is None:
                return None
            return ExpandedReport.model_validate(
                {
                    **row.report,
                    "id": row.id,
                    "linkedScanId": row.linked_scan_id,
                    "email": row.email,
                    "url": row.url,
                    "emailSent": row.email_sent,
                    "emailSentAt": _utc(row.email_sent_at),
                    "createdAt": _utc(row.created_at),
                }
            )

    def mark_email_sent(self, report_id: str, sent_at: datetime) -> None:
        with self.session() as s:
            row = s.get(ExpandedReportRow, report_id)
            if row is None:
                raise StoreError(f"Expanded report {report_id} not found")
            row.email_sent = True
            row.email_sent_at = sent_at

    def count_expanded_reports(self, email: str) -> int:
        with self.session() as s:
            stmt = select(func.count()).select_from(ExpandedReportRow).where(ExpandedReportRow.email == email)
            return int(s.scalar(stmt) or 0)


class UnavailableStore(Store):
    """Stand-in used when DATABASE_URL is not configured."""

    def __init__(self, reason: str = "DATABASE_URL is not set") -> None:
        self.reason = reason

    def create_all(self) -> None:
        return None

    @contextmanager
    def session(self) -> Iterator[Session]:
        raise StoreUnavailable(self.reason)
        yield  # pragma: no cover
