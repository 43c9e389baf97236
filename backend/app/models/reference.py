"""Reference data models: categories, departments and users."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class DepartmentRecord(Base):
    """A municipal department that handles issues."""

    __tablename__ = "departments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    email: Mapped[str | None] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, server_default="true", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<DepartmentRecord {self.code}: {self.name}>"


class CategoryRecord(Base):
    """
    Issue category.

    `sla_hours` sets the resolution target used for SLA deadlines.
    """

    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    sla_hours: Mapped[int] = mapped_column(Integer, server_default="72", nullable=False)
    default_priority: Mapped[str] = mapped_column(
        String(10), server_default="medium", nullable=False
    )
    department_id: Mapped[str | None] = mapped_column(ForeignKey("departments.id"))
    is_active: Mapped[bool] = mapped_column(Boolean, server_default="true", nullable=False)

    def __repr__(self) -> str:
        return f"<CategoryRecord {self.code}: {self.sla_hours}h>"


class UserRecord(Base):
    """Citizen or staff account (only the fields notification routing needs)."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    full_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), unique=True)
    phone: Mapped[str | None] = mapped_column(String(20))
    push_token: Mapped[str | None] = mapped_column(String(255))
    role: Mapped[str] = mapped_column(
        String(20), server_default="citizen", nullable=False, index=True
    )
    department_id: Mapped[str | None] = mapped_column(
        ForeignKey("departments.id"), index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, server_default="true", nullable=False)
    # {"email": bool, "sms": bool, "push": bool, "in_app": bool, "issue_updates": bool}
    notification_preferences: Mapped[dict] = mapped_column(
        JSONB, server_default="{}", nullable=False
    )

    def __repr__(self) -> str:
        return f"<UserRecord {self.id}: {self.role}>"
