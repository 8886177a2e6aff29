import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, String, Uuid

from registry.db.session import Base


class Student(Base):
    """
    One enrolled individual. id_number is the natural key used to match roster imports.
    grade is NULL whenever the cycle is not active (ended or future).
    """

    __tablename__ = "students"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    id_number = Column(String(20), nullable=False, unique=True, index=True)
    last_name = Column(String(100), nullable=False)
    first_name = Column(String(100), nullable=False)
    grade = Column(String(10), nullable=True)
    stream = Column(String(10), nullable=False)
    gender = Column(String(20), nullable=False)
    track = Column(String(100), nullable=False)
    status = Column(String(50), nullable=False)  # studying | completed | discontinued
    cycle = Column(String(10), nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
