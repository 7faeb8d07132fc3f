"""
Centralized error handling for the converter service.

This module defines the error taxonomy shared by the conversion pipeline
and the HTTP layer, and builds the wire-format error responses for each
route.
"""

from enum import Enum
from typing import Dict, Optional, Union

from fastapi.responses import JSONResponse, PlainTextResponse

from .logging_config import get_logger

logger = get_logger(__name__)


class ErrorCode(str, Enum):
    """Error codes for consistent error handling."""

    # Client errors
    MISSING_FILE = "MISSING_FILE"
    UNSUPPORTED_FORMAT = "UNSUPPORTED_FORMAT"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    EMPTY_WORKBOOK = "EMPTY_WORKBOOK"
    INVALID_FILE = "INVALID_FILE"

    # Server errors
    CONVERSION_FAILED = "CONVERSION_FAILED"
    CONVERTER_TIMEOUT = "CONVERTER_TIMEOUT"
    CONVERTER_UNAVAILABLE = "CONVERTER_UNAVAILABLE"
    OUTPUT_NOT_FOUND = "OUTPUT_NOT_FOUND"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# Error code to HTTP status code mapping
ERROR_STATUS_MAP: Dict[ErrorCode, int] = {
    ErrorCode.MISSING_FILE: 400,
    ErrorCode.UNSUPPORTED_FORMAT: 400,
    ErrorCode.EMPTY_WORKBOOK: 400,
    ErrorCode.INVALID_FILE: 400,
    ErrorCode.FILE_TOO_LARGE: 413,

    ErrorCode.CONVERSION_FAILED: 500,
    ErrorCode.CONVERTER_TIMEOUT: 500,
    ErrorCode.CONVERTER_UNAVAILABLE: 500,
    ErrorCode.OUTPUT_NOT_FOUND: 500,
    ErrorCode.INTERNAL_ERROR: 500,
}


class ConverterServiceError(Exception):
    """Base class for errors carrying an ErrorCode."""

    default_code = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, error_code: Optional[ErrorCode] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code

    @property
    def status_code(self) -> int:
        return ERROR_STATUS_MAP.get(self.error_code, 500)


class RequestValidationFailed(ConverterServiceError):
    """Client-caused failure reported before any workspace is created."""

    default_code = ErrorCode.UNSUPPORTED_FORMAT


class ConversionError(ConverterServiceError):
    """The external converter failed, timed out, or produced no output."""

    default_code = ErrorCode.CONVERSION_FAILED

    def __init__(self, message: str, error_code: Optional[ErrorCode] = None,
                 cause: Optional[BaseException] = None):
        super().__init__(message, error_code)
        self.cause = cause


def error_message(error: BaseException) -> str:
    """Human-readable message for any exception."""
    if isinstance(error, ConverterServiceError):
        return error.message
    return str(error) or error.__class__.__name__


def status_for(error: BaseException) -> int:
    if isinstance(error, ConverterServiceError):
        return error.status_code
    return 500


def create_text_error_response(error: Union[BaseException, str], status_code: Optional[int] = None) -> PlainTextResponse:
    """
    Plain-text error body used by the PDF route.

    Server errors are prefixed with 'Convert failed: ', client errors carry
    the bare message.
    """
    if isinstance(error, BaseException):
        message = error_message(error)
        status_code = status_code or status_for(error)
    else:
        message = error
        status_code = status_code or 500

    if status_code >= 500:
        message = f"Convert failed: {message}"
        logger.error(f"Error response {status_code}: {message}")
    else:
        logger.info(f"Rejected request {status_code}: {message}")

    return PlainTextResponse(content=message, status_code=status_code)


def create_json_error_response(error: Union[BaseException, str], status_code: Optional[int] = None) -> JSONResponse:
    """JSON error body ({"error": "..."}) used by the spreadsheet route."""
    if isinstance(error, BaseException):
        message = error_message(error)
        status_code = status_code or status_for(error)
    else:
        message = error
        status_code = status_code or 500

    if status_code >= 500:
        logger.error(f"Error response {status_code}: {message}")
    else:
        logger.info(f"Rejected request {status_code}: {message}")

    return JSONResponse(status_code=status_code, content={"error": message})
