"""Issue models with PostGIS location and append-only history tables."""

from datetime import datetime

from geoalchemy2 import Geometry
from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Sequence,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base

# Backs the human-readable ISS-<year>-<NNNNNN> numbers
issue_number_seq = Sequence("issue_number_seq", metadata=Base.metadata)


class IssueRecord(Base):
    """
    A citizen-submitted issue.

    `version` is the optimistic-lock counter; SQLAlchemy adds it to every
    UPDATE's WHERE clause and raises StaleDataError on a mismatch.
    """

    __tablename__ = "issues"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    number: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category_id: Mapped[str] = mapped_column(ForeignKey("categories.id"), nullable=False)
    subcategory: Mapped[str | None] = mapped_column(String(100))
    priority: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    is_emergency: Mapped[bool] = mapped_column(Boolean, server_default="false", nullable=False)
    is_anonymous: Mapped[bool] = mapped_column(Boolean, server_default="false", nullable=False)
    tags: Mapped[list] = mapped_column(JSONB, server_default="[]", nullable=False)

    # Location (PostGIS geometry for bounding box queries)
    location: Mapped[str] = mapped_column(
        Geometry("POINT", srid=4326, spatial_index=False), nullable=False
    )
    address: Mapped[dict] = mapped_column(JSONB, server_default="{}", nullable=False)

    reported_by: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)

    # Assignment & escalation
    assigned_department_id: Mapped[str | None] = mapped_column(
        ForeignKey("departments.id"), index=True
    )
    assigned_user_id: Mapped[str | None] = mapped_column(ForeignKey("users.id"))
    escalation_level: Mapped[int] = mapped_column(Integer, server_default="0", nullable=False)
    sla_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)
    sla_breach_notified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    actual_resolution_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Engagement
    voters: Mapped[dict] = mapped_column(JSONB, server_default="{}", nullable=False)
    followers: Mapped[list] = mapped_column(JSONB, server_default="[]", nullable=False)
    comments: Mapped[list] = mapped_column(JSONB, server_default="[]", nullable=False)
    view_count: Mapped[int] = mapped_column(Integer, server_default="0", nullable=False)
    share_count: Mapped[int] = mapped_column(Integer, server_default="0", nullable=False)
    feedback: Mapped[dict | None] = mapped_column(JSONB)

    urgency_score: Mapped[int | None] = mapped_column(Integer, index=True)

    # Duplicate linkage
    is_duplicate: Mapped[bool] = mapped_column(Boolean, server_default="false", nullable=False)
    original_issue_id: Mapped[str | None] = mapped_column(ForeignKey("issues.id"))
    duplicate_count: Mapped[int] = mapped_column(Integer, server_default="0", nullable=False)

    # Soft archive
    is_archived: Mapped[bool] = mapped_column(Boolean, server_default="false", nullable=False)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    archived_by: Mapped[str | None] = mapped_column(String(36))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        # Spatial index for bounding box queries
        Index("idx_issues_location", location, postgresql_using="gist"),
        # Duplicate detection narrows by category and creation window
        Index("idx_issues_category_created", category_id, created_at.desc()),
    )

    def __repr__(self) -> str:
        return f"<IssueRecord {self.number}: {self.status}>"


class IssueStatusHistoryRecord(Base):
    """One status change; rows are only ever inserted."""

    __tablename__ = "issue_status_history"

    id: Mapped[int] = mapped_column(primary_key=True)
    issue_id: Mapped[str] = mapped_column(
        ForeignKey("issues.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    previous_status: Mapped[str | None] = mapped_column(String(20))
    changed_by: Mapped[str] = mapped_column(String(36), nullable=False)
    comment: Mapped[str | None] = mapped_column(Text)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_status_history_issue", issue_id, position, unique=True),
    )

    def __repr__(self) -> str:
        return f"<IssueStatusHistoryRecord {self.issue_id}#{self.position}: {self.status}>"


class IssueEscalationRecord(Base):
    """One escalation step; rows are only ever inserted."""

    __tablename__ = "issue_escalations"

    id: Mapped[int] = mapped_column(primary_key=True)
    issue_id: Mapped[str] = mapped_column(
        ForeignKey("issues.id", ondelete="CASCADE"), nullable=False
    )
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    escalated_by: Mapped[str] = mapped_column(String(36), nullable=False)
    escalated_to: Mapped[str | None] = mapped_column(String(36))
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_escalations_issue", issue_id, level, unique=True),)

    def __repr__(self) -> str:
        return f"<IssueEscalationRecord {self.issue_id} L{self.level}>"
