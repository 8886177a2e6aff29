from registry.core.models.student import Student
from registry.core.models.student_history import StudentHistory

__all__ = [
    "Student",
    "StudentHistory",
]
