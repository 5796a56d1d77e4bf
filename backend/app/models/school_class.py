import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from app.db.base import Base


class ClassMentor(Base):
    __tablename__ = "class_mentors"

    class_id: Mapped[str] = mapped_column(String(36), ForeignKey("school_classes.id"), primary_key=True)
    employee_id: Mapped[str] = mapped_column(String(36), ForeignKey("employees.id"), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class SchoolClass(Base):
    __tablename__ = "school_classes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    department_id: Mapped[str] = mapped_column(String(36), ForeignKey("departments.id"), nullable=False, index=True)
    year: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    mentor_links: Mapped[list[ClassMentor]] = relationship(
        ClassMentor,
        order_by=ClassMentor.position,
        cascade="all, delete-orphan",
    )

    @property
    def mentor_ids(self) -> list[str]:
        return [link.employee_id for link in self.mentor_links]
