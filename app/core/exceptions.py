from typing import Any

from fastapi import HTTPException, status


class AppException(HTTPException):
    """HTTPException carrying a machine-readable code and field-level details."""

    error_code = "ERROR"

    def __init__(
        self,
        detail: str,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        errors: list[Any] | None = None,
        error_code: str | None = None,
    ):
        super().__init__(status_code=status_code, detail=detail)
        self.errors = errors or []
        if error_code:
            self.error_code = error_code


class BadRequestException(AppException):
    error_code = "VALIDATION_ERROR"

    def __init__(self, detail: str = "Validation failed", errors: list[Any] | None = None):
        super().__init__(detail, status.HTTP_400_BAD_REQUEST, errors)


class UnauthorizedException(AppException):
    error_code = "UNAUTHORIZED"

    def __init__(self, detail: str = "Not authorized, please log in."):
        super().__init__(detail, status.HTTP_401_UNAUTHORIZED)


class ForbiddenException(AppException):
    error_code = "FORBIDDEN"

    def __init__(self, detail: str = "Permission denied"):
        super().__init__(detail, status.HTTP_403_FORBIDDEN)


class SignatureInvalidException(ForbiddenException):
    error_code = "SIGNATURE_INVALID"

    def __init__(self, detail: str = "Signature verification failed."):
        super().__init__(detail)


class NotFoundException(AppException):
    error_code = "NOT_FOUND"

    def __init__(self, detail: str = "Resource not found"):
        super().__init__(detail, status.HTTP_404_NOT_FOUND)


class DoubtNotFoundException(NotFoundException):
    def __init__(self, doubt_id: int | None = None):
        detail = (
            f"Doubt with id {doubt_id} not found" if doubt_id else "Doubt not found"
        )
        super().__init__(detail)


class CourseNotFoundException(NotFoundException):
    def __init__(self, course_id: int | None = None):
        detail = (
            f"Course with id {course_id} not found" if course_id else "Course not found"
        )
        super().__init__(detail)


class ConflictException(AppException):
    error_code = "CONFLICT"

    def __init__(self, detail: str = "Resource already exists"):
        super().__init__(detail, status.HTTP_409_CONFLICT)


class BadGatewayException(AppException):
    error_code = "BAD_GATEWAY"

    def __init__(self, detail: str = "Payment gateway error"):
        super().__init__(detail, status.HTTP_502_BAD_GATEWAY)


class InternalServerException(AppException):
    error_code = "INTERNAL_ERROR"

    def __init__(self, detail: str = "Internal server error"):
        super().__init__(detail, status.HTTP_500_INTERNAL_SERVER_ERROR)
