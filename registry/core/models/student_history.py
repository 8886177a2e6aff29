"""Student history: immutable timeline of every change to a student record."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import backref, relationship

from registry.db.session import Base


class StudentHistory(Base):
    """
    Append-only. Rows are only ever removed by the ON DELETE CASCADE of their student.
    field_name / old_value / new_value are set for field_update events only.
    """

    __tablename__ = "student_history"
    __table_args__ = (Index("ix_student_history_student_created", "student_id", "created_at"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(Uuid(as_uuid=True), ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    change_type = Column(String(30), nullable=False)  # created | start_studies | field_update | location_change | deleted
    field_name = Column(String(100), nullable=True)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)
    location = Column(String(255), nullable=True)
    changed_by = Column(String(255), nullable=True)
    change_description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    student = relationship(
        "Student",
        backref=backref("history_events", cascade="all", passive_deletes=True),
    )
