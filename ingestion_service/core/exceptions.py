"""
ingestion_service/core/exceptions.py
Custom exceptions for the ingestion service
"""

from typing import Optional


class ServiceException(Exception):
    """Base exception for all ingestion service errors"""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        error_code: str = "UNKNOWN_ERROR",
        details: Optional[dict] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert exception to dictionary for logging/response"""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details
        }


# ============================================================================
# Client Errors (4xx, never escalated)
# ============================================================================

class ClientError(ServiceException):
    """Request could not be accepted as sent"""

    status_code = 400

    def __init__(self, message: str, error_code: str = "BAD_REQUEST", details: Optional[dict] = None):
        super().__init__(message=message, error_code=error_code, details=details)


class PayloadTooLarge(ClientError):
    """Request body exceeds the configured limit"""

    status_code = 413

    def __init__(self, limit: int):
        super().__init__(
            message=f"Request body exceeds {limit} bytes",
            error_code="PAYLOAD_TOO_LARGE",
            details={"limit": limit}
        )


class MalformedBody(ClientError):
    """Request body could not be decoded"""

    def __init__(self, reason: str):
        super().__init__(
            message=f"Malformed request body: {reason}",
            error_code="MALFORMED_BODY",
            details={"reason": reason}
        )


class RateLimitExceeded(ClientError):
    """Too many requests from one client in the current window"""

    status_code = 429

    def __init__(self, retry_after: int):
        super().__init__(
            message="Too many requests, please try again later.",
            error_code="RATE_LIMITED",
            details={"retry_after": retry_after}
        )


# ============================================================================
# Route Errors
# ============================================================================

class RouteError(ServiceException):
    """Failure raised by a mounted route handler"""

    def __init__(self, reason: str = "Internal server error", details: Optional[dict] = None):
        super().__init__(
            message=reason,
            error_code="ROUTE_ERROR",
            details=details
        )


# ============================================================================
# Lifecycle Errors
# ============================================================================

class StartupError(ServiceException):
    """Service could not reach the listening state"""

    def __init__(self, stage: str, reason: str):
        super().__init__(
            message=f"Startup failed during {stage}: {reason}",
            error_code="STARTUP_FAILED",
            details={"stage": stage, "reason": reason}
        )


class WarmupError(ServiceException):
    """Best-effort cache warm-up trigger failed"""

    def __init__(self, target: str, reason: str):
        super().__init__(
            message=f"Cache warm-up '{target}' failed: {reason}",
            error_code="WARMUP_FAILED",
            details={"target": target, "reason": reason}
        )


class InvalidTransition(ServiceException):
    """Lifecycle state change that would revisit or skip states"""

    def __init__(self, component: str, current: str, requested: str):
        super().__init__(
            message=f"{component} cannot move from '{current}' to '{requested}'",
            error_code="INVALID_TRANSITION",
            details={"component": component, "current": current, "requested": requested}
        )


class PipelineOrderError(ServiceException):
    """Middleware pipeline stages violate their position constraints"""

    def __init__(self, reason: str):
        super().__init__(
            message=f"Invalid pipeline: {reason}",
            error_code="PIPELINE_ORDER",
            details={"reason": reason}
        )


__all__ = [
    "ServiceException",
    "ClientError",
    "PayloadTooLarge",
    "MalformedBody",
    "RateLimitExceeded",
    "RouteError",
    "StartupError",
    "WarmupError",
    "InvalidTransition",
    "PipelineOrderError",
]
