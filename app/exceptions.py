from typing import Any, Dict, List, Optional

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse


class ErrorCodes:
    FILE_VALIDATION_ERROR = "FILE_VALIDATION_ERROR"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    FILE_PROCESSING_ERROR = "FILE_PROCESSING_ERROR"
    FILE_STORAGE_ERROR = "FILE_STORAGE_ERROR"
    ACCESS_DENIED = "ACCESS_DENIED"


class FileServiceError(Exception):
    """Base class for errors raised by the file pipeline and file service."""

    code: str = ErrorCodes.FILE_PROCESSING_ERROR
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class FileValidationError(FileServiceError):
    code = ErrorCodes.FILE_VALIDATION_ERROR
    status_code = 400

    def __init__(self, errors: List[str], details: Optional[Dict[str, Any]] = None):
        super().__init__(f"File validation failed: {', '.join(errors)}", details)
        self.errors = list(errors)


class FileRecordNotFoundError(FileServiceError):
    code = ErrorCodes.FILE_NOT_FOUND
    status_code = 404


class FileProcessingError(FileServiceError):
    code = ErrorCodes.FILE_PROCESSING_ERROR
    status_code = 500


class FileStorageError(FileServiceError):
    code = ErrorCodes.FILE_STORAGE_ERROR
    status_code = 500


class FileAccessDeniedError(FileServiceError):
    code = ErrorCodes.ACCESS_DENIED
    status_code = 403


def create_error_response(error_message: str, status_code: int = 400, code: Optional[str] = None) -> dict:
    """Create a standardized error response"""
    body = {
        "success": False,
        "data": None,
        "error": error_message,
    }
    if code:
        body["code"] = code
    return body


def create_success_response(data: Any) -> dict:
    """Create a standardized success response"""
    return {
        "success": True,
        "data": data,
        "error": None
    }


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Custom exception handler for HTTPException"""
    # HTTPBearer answers 403 when the header is missing; that is an auth problem
    if exc.status_code == 403 and "Not authenticated" in str(exc.detail):
        return JSONResponse(
            status_code=401,
            content=create_error_response("Authentication required", 401)
        )

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(exc.detail, exc.status_code)
    )


async def file_service_exception_handler(request: Request, exc: FileServiceError) -> JSONResponse:
    content = create_error_response(exc.message, exc.status_code, exc.code)
    if isinstance(exc, FileValidationError):
        content["details"] = {"errors": exc.errors}
    return JSONResponse(status_code=exc.status_code, content=content)
