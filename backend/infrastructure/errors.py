"""
Global Error Handling for the Auctionhouse backend
Error taxonomy for the enrichment pipeline with structured responses

Features:
- Custom exception classes (not-found, rate-limited, upstream-unavailable, ...)
- Automatic error logging
- Structured JSON error responses
- Error tracking and aggregation
"""

import logging
import traceback
from datetime import datetime
from typing import Any, Dict, List, Optional
from enum import Enum

from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("ErrorHandler")


# ============================================
# ERROR CODES
# ============================================

class ErrorCode(str, Enum):
    # Client errors (4xx)
    BAD_REQUEST = "BAD_REQUEST"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMITED = "RATE_LIMITED"

    # Server errors (5xx)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    CACHE_ERROR = "CACHE_ERROR"
    EXTERNAL_API_ERROR = "EXTERNAL_API_ERROR"
    BLOCKCHAIN_ERROR = "BLOCKCHAIN_ERROR"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"


# ============================================
# CUSTOM EXCEPTIONS
# ============================================

class AuctionhouseError(Exception):
    """Base exception for the Auctionhouse backend"""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: Dict = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict:
        return {
            "success": False,
            "error": {
                "code": self.code.value,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp.isoformat()
            }
        }


class ValidationError(AuctionhouseError):
    """Input validation error"""
    def __init__(self, message: str, details: Dict = None):
        super().__init__(message, ErrorCode.VALIDATION_ERROR, 400, details)


class NotFoundError(AuctionhouseError):
    """Resource not found"""
    def __init__(self, resource: str, identifier: str = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} '{identifier}' not found"
        super().__init__(message, ErrorCode.NOT_FOUND, 404)


class RateLimitError(AuctionhouseError):
    """Upstream rate limit exceeded after retries"""
    def __init__(self, retry_after: int = 60, upstream: str = None):
        details = {"retry_after": retry_after}
        if upstream:
            details["upstream"] = upstream
        super().__init__(
            f"Rate limit exceeded. Retry after {retry_after} seconds",
            ErrorCode.RATE_LIMITED,
            429,
            details
        )
        self.retry_after = retry_after
        self.upstream_status = 429


class UpstreamUnavailableError(AuctionhouseError):
    """Upstream not configured or unreachable"""
    def __init__(self, service: str, message: str = None):
        super().__init__(
            message or f"Upstream '{service}' is unavailable",
            ErrorCode.UPSTREAM_UNAVAILABLE,
            503,
            {"service": service}
        )
        self.service = service


class ExternalAPIError(AuctionhouseError):
    """External API call failed"""
    def __init__(
        self,
        api_name: str,
        upstream_status: int = None,
        message: str = None,
        errors: List[Any] = None
    ):
        details: Dict[str, Any] = {"api": api_name}
        if upstream_status:
            details["api_status_code"] = upstream_status
        if errors:
            details["errors"] = errors
        super().__init__(
            message or f"External API '{api_name}' failed",
            ErrorCode.EXTERNAL_API_ERROR,
            502,
            details
        )
        self.api_name = api_name
        self.upstream_status = upstream_status
        self.errors = errors or []


class BlockchainError(AuctionhouseError):
    """Blockchain read failed"""
    def __init__(self, chain: str, message: str):
        super().__init__(message, ErrorCode.BLOCKCHAIN_ERROR, 502, {"chain": chain})


# ============================================
# ERROR TRACKING
# ============================================

class ErrorTracker:
    """Tracks and aggregates errors for monitoring"""

    def __init__(self, max_errors: int = 1000):
        self.errors: list = []
        self.max_errors = max_errors
        self.error_counts: Dict[str, int] = {}

    def track(self, error: Exception, request_path: str = None):
        """Track an error"""
        error_type = type(error).__name__

        self.error_counts[error_type] = self.error_counts.get(error_type, 0) + 1

        error_info = {
            "type": error_type,
            "message": str(error),
            "path": request_path,
            "timestamp": datetime.now().isoformat(),
            "traceback": traceback.format_exc() if not isinstance(error, AuctionhouseError) else None
        }

        if isinstance(error, AuctionhouseError):
            error_info["code"] = error.code.value
            error_info["details"] = error.details

        self.errors.append(error_info)

        if len(self.errors) > self.max_errors:
            self.errors = self.errors[-self.max_errors:]

        if not isinstance(error, AuctionhouseError) or error.status_code >= 500:
            logger.error(f"Error tracked: {error_type} - {str(error)[:200]}")

    def get_stats(self) -> Dict:
        """Get error statistics"""
        return {
            "total_errors": len(self.errors),
            "error_counts": self.error_counts,
            "recent_errors": [
                {k: v for k, v in e.items() if k != "traceback"} for e in self.errors[-10:]
            ],
            "timestamp": datetime.now().isoformat()
        }

    def clear(self):
        """Clear error history"""
        self.errors.clear()
        self.error_counts.clear()


# Global error tracker
error_tracker = ErrorTracker()


# ============================================
# FASTAPI EXCEPTION HANDLERS
# ============================================

def _rate_limited_response(retry_after: int, upstream: Optional[str] = None) -> JSONResponse:
    err = RateLimitError(retry_after=retry_after, upstream=upstream)
    return JSONResponse(
        status_code=429,
        content=err.to_dict(),
        headers={"Retry-After": str(retry_after)}
    )


async def auctionhouse_exception_handler(request: Request, exc: AuctionhouseError) -> JSONResponse:
    """Handle AuctionhouseError exceptions"""
    from .retry import is_rate_limit_error

    error_tracker.track(exc, str(request.url.path))

    if isinstance(exc, RateLimitError):
        return _rate_limited_response(exc.retry_after, exc.details.get("upstream"))

    # Exhausted retries re-raise the upstream error unchanged
    if is_rate_limit_error(exc):
        return _rate_limited_response(60, getattr(exc, "api_name", None))

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict()
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTPExceptions"""
    error_tracker.track(exc, str(request.url.path))

    if exc.status_code == 404:
        code = ErrorCode.NOT_FOUND
    elif exc.status_code < 500:
        code = ErrorCode.BAD_REQUEST
    else:
        code = ErrorCode.INTERNAL_ERROR

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": {
                "code": code.value,
                "message": exc.detail,
                "timestamp": datetime.now().isoformat()
            }
        }
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions"""
    from .retry import is_rate_limit_error

    error_tracker.track(exc, str(request.url.path))

    if is_rate_limit_error(exc):
        logger.warning(f"Rate limited upstream surfaced at {request.url.path}: {exc}")
        return _rate_limited_response(60)

    logger.error(f"Unhandled exception: {''.join(traceback.format_exception(type(exc), exc, exc.__traceback__))}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": {
                "code": ErrorCode.INTERNAL_ERROR.value,
                "message": "An unexpected error occurred",
                "timestamp": datetime.now().isoformat()
            }
        }
    )


def register_exception_handlers(app):
    """Register all exception handlers with FastAPI app"""
    app.add_exception_handler(AuctionhouseError, auctionhouse_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    logger.info("Exception handlers registered")
