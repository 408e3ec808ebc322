"""
tandem.db
=========

SQL persistence layer for Tandem.

This module exposes:

* ``engine`` – a global SQLModel engine pointing at :data:`tandem.settings.DB_URL`
* ``SessionLocal`` – a session factory used via ``with SessionLocal() as s:``
* ``PartnershipDB`` – the table mirroring :class:`tandem.models.Partnership`
* ``create_all()`` – helper to create tables at first run

The one‑active‑partnership rule is also enforced here by two partial
unique indexes, so that two processes racing to approve the same course
or project cannot both commit.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import Column, Index, JSON, or_, text, update
from sqlalchemy.engine import Engine
from sqlmodel import Field, Session, SQLModel, col, create_engine, select

from tandem.dimensions import as_utc
from tandem.models import (
    ACTIVE_STATUSES,
    LifecycleStatus,
    Message,
    Partnership,
    PartnershipStatus,
    SuccessMetrics,
)
from tandem.settings import DB_ECHO, DB_URL


def make_engine(url: str = DB_URL, echo: bool = DB_ECHO) -> Engine:
    """Build an engine; SQLite connections may be shared across threads."""
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, echo=echo, connect_args=connect_args)


# ---------------------------------------------------------------------------
# Engine (SQLite file lives in project root unless TANDEM_DB_URL is set)
# ---------------------------------------------------------------------------
engine = make_engine()


# ---------------------------------------------------------------------------
# Session factory
# ---------------------------------------------------------------------------
def SessionLocal(bind: Optional[Engine] = None) -> Session:  # noqa: N802
    """Return a new Session bound to *bind* or the global engine."""
    return Session(bind or engine)


# ---------------------------------------------------------------------------
# ORM model that mirrors tandem.models.Partnership
# ---------------------------------------------------------------------------
_ACTIVE_SQL = "status IN ({})".format(
    ", ".join(f"'{s.value}'" for s in sorted(ACTIVE_STATUSES, key=lambda s: s.value))
)


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    return as_utc(value) if value is not None else None


class PartnershipDB(SQLModel, table=True):
    """
    SQL‑backed representation of a :class:`tandem.models.Partnership`.

    Enum fields are stored as their lower‑case string values so the
    partial indexes can filter on them directly.
    """

    __tablename__ = "partnerships"

    id: str = Field(primary_key=True)
    course_id: str = Field(index=True)
    project_id: str = Field(index=True)
    requested_by_user_id: str = Field(index=True)
    requested_to_user_id: str = Field(index=True)
    status: str = Field(default=PartnershipStatus.PENDING.value, index=True)
    lifecycle_status: Optional[str] = Field(default=None, index=True)
    request_message: Optional[str] = None
    response_message: Optional[str] = None
    messages: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    created_at: datetime
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    is_complete: bool = Field(default=False, index=True)
    request_year: Optional[int] = Field(default=None, index=True)
    request_quarter: Optional[int] = Field(default=None, index=True)
    request_month: Optional[int] = None
    approval_time_in_days: Optional[int] = None
    partnership_duration_in_days: Optional[int] = None
    satisfaction: Optional[float] = None
    completion_rate: Optional[float] = None
    goal_achievement: Optional[float] = None
    version: int = Field(default=0)

    __table_args__ = (
        Index(
            "uq_partnerships_active_course",
            "course_id",
            unique=True,
            sqlite_where=text(_ACTIVE_SQL),
            postgresql_where=text(_ACTIVE_SQL),
        ),
        Index(
            "uq_partnerships_active_project",
            "project_id",
            unique=True,
            sqlite_where=text(_ACTIVE_SQL),
            postgresql_where=text(_ACTIVE_SQL),
        ),
        Index("ix_partnerships_request_period", "request_year", "request_quarter"),
    )

    # ---------------------------------------------------------------------
    # Converters
    # ---------------------------------------------------------------------
    @classmethod
    def from_partnership(cls, p: Partnership) -> "PartnershipDB":
        """Create a DB row from an in‑memory partnership."""
        metrics = p.success_metrics or SuccessMetrics()
        return cls(
            id=p.id,
            course_id=p.course_id,
            project_id=p.project_id,
            requested_by_user_id=p.requested_by_user_id,
            requested_to_user_id=p.requested_to_user_id,
            status=p.status.value,
            lifecycle_status=p.lifecycle_status.value if p.lifecycle_status else None,
            request_message=p.request_message,
            response_message=p.response_message,
            messages=[
                {"user_id": m.user_id, "text": m.text, "timestamp": as_utc(m.timestamp).isoformat()}
                for m in p.messages
            ],
            start_date=_utc(p.start_date),
            end_date=_utc(p.end_date),
            created_at=as_utc(p.created_at),
            approved_at=_utc(p.approved_at),
            rejected_at=_utc(p.rejected_at),
            canceled_at=_utc(p.canceled_at),
            completed_at=_utc(p.completed_at),
            is_complete=p.is_complete,
            request_year=p.request_year,
            request_quarter=p.request_quarter,
            request_month=p.request_month,
            approval_time_in_days=p.approval_time_in_days,
            partnership_duration_in_days=p.partnership_duration_in_days,
            satisfaction=metrics.satisfaction,
            completion_rate=metrics.completion_rate,
            goal_achievement=metrics.goal_achievement,
            version=p.version,
        )

    def to_partnership(self) -> Partnership:
        """Convert the DB row back into a plain Partnership."""
        metrics = SuccessMetrics(self.satisfaction, self.completion_rate, self.goal_achievement)
        has_metrics = any(v is not None for v in (self.satisfaction, self.completion_rate, self.goal_achievement))
        return Partnership(
            id=self.id,
            course_id=self.course_id,
            project_id=self.project_id,
            requested_by_user_id=self.requested_by_user_id,
            requested_to_user_id=self.requested_to_user_id,
            created_at=as_utc(self.created_at),
            status=PartnershipStatus(self.status),
            lifecycle_status=LifecycleStatus(self.lifecycle_status) if self.lifecycle_status else None,
            request_message=self.request_message,
            response_message=self.response_message,
            messages=[
                Message(m["user_id"], m["text"], as_utc(datetime.fromisoformat(m["timestamp"])))
                for m in self.messages or []
            ],
            start_date=_utc(self.start_date),
            end_date=_utc(self.end_date),
            approved_at=_utc(self.approved_at),
            rejected_at=_utc(self.rejected_at),
            canceled_at=_utc(self.canceled_at),
            completed_at=_utc(self.completed_at),
            is_complete=self.is_complete,
            request_year=self.request_year,
            request_quarter=self.request_quarter,
            request_month=self.request_month,
            approval_time_in_days=self.approval_time_in_days,
            partnership_duration_in_days=self.partnership_duration_in_days,
            success_metrics=metrics if has_metrics else None,
            version=self.version,
        )


# ---------------------------------------------------------------------------
# Convenience CRUD helpers
# ---------------------------------------------------------------------------
def insert_partnership(s: Session, p: Partnership) -> None:
    """Add a new partnership row (caller commits)."""
    s.add(PartnershipDB.from_partnership(p))


def update_partnership(s: Session, p: Partnership) -> bool:
    """
    Overwrite the stored row for *p* if its version still equals
    ``p.version`` and bump the stored version (caller commits).

    Returns False when no row matched, i.e. someone else saved first.
    """
    row = PartnershipDB.from_partnership(p)
    values = {
        c.name: getattr(row, c.name)
        for c in PartnershipDB.__table__.columns
        if c.name not in ("id", "version")
    }
    stmt = (
        update(PartnershipDB)
        .where(col(PartnershipDB.id) == p.id, col(PartnershipDB.version) == p.version)
        .values(**values, version=p.version + 1)
    )
    return s.connection().execute(stmt).rowcount == 1


def get_partnership(s: Session, partnership_id: str) -> Partnership | None:
    """Return a partnership by id or *None* if missing."""
    row = s.get(PartnershipDB, partnership_id)
    return row.to_partnership() if row else None


def find_active(
    s: Session, course_id: str, project_id: str, exclude_id: str | None = None
) -> Partnership | None:
    """Return one active partnership sharing *course_id* or *project_id*."""
    stmt = select(PartnershipDB).where(
        col(PartnershipDB.status).in_([st.value for st in ACTIVE_STATUSES]),
        or_(PartnershipDB.course_id == course_id, PartnershipDB.project_id == project_id),
    )
    if exclude_id is not None:
        stmt = stmt.where(col(PartnershipDB.id) != exclude_id)
    row = s.exec(stmt.limit(1)).first()
    return row.to_partnership() if row else None


def active_partnerships(s: Session) -> list[Partnership]:
    """Return every partnership currently holding an active status."""
    stmt = select(PartnershipDB).where(
        col(PartnershipDB.status).in_([st.value for st in ACTIVE_STATUSES])
    )
    return [row.to_partnership() for row in s.exec(stmt).all()]


def all_partnerships(s: Session) -> list[Partnership]:
    """Return every partnership in the database."""
    rows = s.exec(select(PartnershipDB)).all()
    return [row.to_partnership() for row in rows]


# ---------------------------------------------------------------------------
# Utility: create tables
# ---------------------------------------------------------------------------
def create_all(bind: Optional[Engine] = None) -> None:
    """Create all tables for imported SQLModel subclasses, including PartnershipDB."""
    SQLModel.metadata.create_all(bind or engine)
