from typing import Dict, Any, Optional
from fastapi import HTTPException
from starlette import status
import logging

logger = logging.getLogger(__name__)


class StagingError(Exception):
    """Base exception class for bulk import staging errors."""

    default_code = "INTERNAL_SERVER_ERROR"

    def __init__(self, message: str, error_code: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.error_code = error_code or self.default_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(StagingError):
    """Raised when input validation fails."""
    default_code = "VALIDATION_ERROR"


class InvalidUrlError(ValidationError):
    """Raised when a URL is malformed or points at a disallowed host."""
    default_code = "INVALID_URL"


class ArchiveError(StagingError):
    """Raised when an archive cannot be staged or read."""
    default_code = "CORRUPT_ARCHIVE"


class UnsupportedFormatError(ArchiveError):
    default_code = "UNSUPPORTED_FORMAT"


class EmptyArchiveError(ArchiveError):
    default_code = "EMPTY_ARCHIVE"


class FileTooLargeError(StagingError):
    default_code = "FILE_TOO_LARGE"


class DirectoryEntryError(ArchiveError):
    """Raised when extraction of a directory entry is attempted."""
    default_code = "DIRECTORY_ENTRY"


class ResourceNotFoundError(StagingError):
    """Raised when a requested resource is not found."""
    default_code = "NOT_FOUND"


class SessionNotFoundError(ResourceNotFoundError):
    default_code = "SESSION_NOT_FOUND"


class EntryNotFoundError(ResourceNotFoundError):
    default_code = "ENTRY_NOT_FOUND"


class NoImagesFoundError(ResourceNotFoundError):
    default_code = "NO_IMAGES_FOUND"


class FetchError(StagingError):
    """Raised when a remote fetch fails."""
    default_code = "FETCH_FAILED"


class FetchTimeoutError(FetchError):
    default_code = "TIMEOUT"


class NotAnImageError(FetchError):
    default_code = "NOT_AN_IMAGE"


class StorageError(StagingError):
    """Raised when storage operations fail."""
    default_code = "STORAGE_FAILED"


class ImageProcessingError(StagingError):
    """Raised when an image cannot be decoded or thumbnailed."""
    default_code = "IMAGE_PROCESSING_FAILED"


# Error code definitions
ERROR_CODES = {
    # Validation errors
    "VALIDATION_ERROR": {
        "code": "VALIDATION_ERROR",
        "message": "The request was invalid.",
        "http_status": status.HTTP_400_BAD_REQUEST,
        "category": "validation"
    },
    "INVALID_URL": {
        "code": "INVALID_URL",
        "message": "The URL is invalid or not allowed.",
        "http_status": status.HTTP_400_BAD_REQUEST,
        "category": "validation"
    },
    "FILE_TOO_LARGE": {
        "code": "FILE_TOO_LARGE",
        "message": "Uploaded file exceeds the maximum allowed size.",
        "http_status": status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
        "category": "validation"
    },

    # Archive errors
    "UNSUPPORTED_FORMAT": {
        "code": "UNSUPPORTED_FORMAT",
        "message": "Unsupported archive format.",
        "http_status": status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
        "category": "archive"
    },
    "EMPTY_ARCHIVE": {
        "code": "EMPTY_ARCHIVE",
        "message": "No image files found in the archive.",
        "http_status": status.HTTP_400_BAD_REQUEST,
        "category": "archive"
    },
    "CORRUPT_ARCHIVE": {
        "code": "CORRUPT_ARCHIVE",
        "message": "The archive could not be read.",
        "http_status": status.HTTP_400_BAD_REQUEST,
        "category": "archive"
    },
    "DIRECTORY_ENTRY": {
        "code": "DIRECTORY_ENTRY",
        "message": "Cannot extract a directory entry.",
        "http_status": status.HTTP_400_BAD_REQUEST,
        "category": "archive"
    },

    # Resource not found errors
    "NOT_FOUND": {
        "code": "NOT_FOUND",
        "message": "Resource not found.",
        "http_status": status.HTTP_404_NOT_FOUND,
        "category": "not_found"
    },
    "SESSION_NOT_FOUND": {
        "code": "SESSION_NOT_FOUND",
        "message": "Import session not found or expired.",
        "http_status": status.HTTP_404_NOT_FOUND,
        "category": "not_found"
    },
    "ENTRY_NOT_FOUND": {
        "code": "ENTRY_NOT_FOUND",
        "message": "Entry not found in session.",
        "http_status": status.HTTP_404_NOT_FOUND,
        "category": "not_found"
    },
    "NO_IMAGES_FOUND": {
        "code": "NO_IMAGES_FOUND",
        "message": "No images found on the page.",
        "http_status": status.HTTP_404_NOT_FOUND,
        "category": "not_found"
    },

    # Remote fetch errors
    "FETCH_FAILED": {
        "code": "FETCH_FAILED",
        "message": "Failed to fetch the remote resource.",
        "http_status": status.HTTP_502_BAD_GATEWAY,
        "category": "fetch"
    },
    "NOT_AN_IMAGE": {
        "code": "NOT_AN_IMAGE",
        "message": "Fetched resource is not an image.",
        "http_status": status.HTTP_502_BAD_GATEWAY,
        "category": "fetch"
    },
    "TIMEOUT": {
        "code": "TIMEOUT",
        "message": "Request timed out.",
        "http_status": status.HTTP_504_GATEWAY_TIMEOUT,
        "category": "fetch"
    },

    # Storage and processing errors
    "STORAGE_FAILED": {
        "code": "STORAGE_FAILED",
        "message": "Failed to write to file storage.",
        "http_status": status.HTTP_500_INTERNAL_SERVER_ERROR,
        "category": "storage"
    },
    "IMAGE_PROCESSING_FAILED": {
        "code": "IMAGE_PROCESSING_FAILED",
        "message": "Failed to process image.",
        "http_status": status.HTTP_400_BAD_REQUEST,
        "category": "processing"
    },

    # System errors
    "INTERNAL_SERVER_ERROR": {
        "code": "INTERNAL_SERVER_ERROR",
        "message": "An internal server error occurred.",
        "http_status": status.HTTP_500_INTERNAL_SERVER_ERROR,
        "category": "system"
    }
}


def create_http_exception(error_code: str, details: Optional[Dict[str, Any]] = None) -> HTTPException:
    """Create an HTTPException from an error code."""
    if error_code not in ERROR_CODES:
        error_code = "INTERNAL_SERVER_ERROR"

    error_info = ERROR_CODES[error_code]

    response_detail = {
        "error_code": error_info["code"],
        "message": error_info["message"],
        "category": error_info["category"]
    }

    if details:
        response_detail["details"] = details

    return HTTPException(
        status_code=error_info["http_status"],
        detail=response_detail
    )


def handle_staging_error(error: StagingError) -> HTTPException:
    """Convert a StagingError to an HTTPException."""
    response_detail = {
        "error_code": error.error_code,
        "message": error.message,
        "details": error.details
    }

    if error.error_code in ERROR_CODES:
        http_status = ERROR_CODES[error.error_code]["http_status"]
        response_detail["category"] = ERROR_CODES[error.error_code]["category"]
    else:
        http_status = status.HTTP_500_INTERNAL_SERVER_ERROR
        response_detail["category"] = "system"

    return HTTPException(
        status_code=http_status,
        detail=response_detail
    )


def handle_generic_error(error: Exception) -> HTTPException:
    """Handle generic exceptions and convert to HTTPException."""
    logger.error(f"Unhandled error: {error}", exc_info=True)

    return create_http_exception(
        "INTERNAL_SERVER_ERROR",
        {"original_error": str(error)}
    )
