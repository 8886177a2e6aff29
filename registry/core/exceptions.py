from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class DuplicateKeyError(ServiceError):
    """Natural key (id_number) already belongs to another student. Never retried."""

    def __init__(self, id_number: str) -> None:
        super().__init__(
            f"A student with ID number '{id_number}' already exists",
            status.HTTP_409_CONFLICT,
        )
        self.id_number = id_number


class NotFoundError(ServiceError):
    def __init__(self, message: str = "Student not found") -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class ValidationError(ServiceError):
    """Candidate state rejected before any storage write."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_422_UNPROCESSABLE_ENTITY)
