#!/usr/bin/env python3
"""Exception Hierarchy for the ZK device client and fleet sync engine.

This module provides a structured exception hierarchy for handling errors
across the device protocol client, the fleet sync orchestrator and the
PostgreSQL adapters.

Design Principles:
    - All exceptions inherit from ZKError base class
    - Exceptions preserve context (original error, timestamps, details)
    - Exceptions are categorized by recoverability
    - Each exception includes actionable information

Exception Hierarchy:
    ZKError (base)
    ├── ConfigurationError (unrecoverable - fix config)
    ├── TransportError (recoverable - retry / fall back to UDP)
    │   ├── DeviceTimeoutError
    │   └── PortPoolExhaustedError
    ├── AuthError (fatal for the session)
    ├── ProtocolError (fatal for the current operation)
    │   └── CommandRejectedError
    ├── ValidationError (rejected before any network call)
    ├── DeviceBusyError (another path holds the device lease)
    └── DatabaseError (may be recoverable)
        ├── ConnectionPoolError
        ├── TransactionError
        └── IntegrityError
"""
from datetime import datetime, timezone
from typing import Any, Optional

# ============================================
# Base Exception
# ============================================

class ZKError(Exception):
    """Base exception for all device client and sync errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "AUTH_REJECTED")
        details: Additional context as a dictionary
        timestamp: When the error occurred
        cause: The original exception that caused this error
        recoverable: Whether this error might be recoverable with retry
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__.upper()
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)
        self.cause = cause
        self.recoverable = recoverable

        if cause:
            self.__cause__ = cause

    def __str__(self) -> str:
        parts = [self.message]
        if self.code:
            parts.insert(0, f"[{self.code}]")
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            parts.append(f"({detail_str})")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"details={self.details!r}, "
            f"recoverable={self.recoverable})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "recoverable": self.recoverable,
            "cause": str(self.cause) if self.cause else None,
        }


# ============================================
# Configuration Errors (Unrecoverable)
# ============================================

class ConfigurationError(ZKError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list[str]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(
            message,
            code="CONFIGURATION_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )


# ============================================
# Transport Errors (Usually Recoverable)
# ============================================

class TransportError(ZKError):
    """Raised when a socket cannot be opened, written or read.

    Connect-time transport errors trigger the TCP -> UDP fallback.
    """

    def __init__(
        self,
        message: str,
        host: Optional[str] = None,
        port: Optional[int] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if host:
            details["host"] = host
        if port:
            details["port"] = port
        kwargs.setdefault("code", "TRANSPORT_ERROR")
        kwargs.setdefault("recoverable", True)
        super().__init__(message, details=details, **kwargs)


class DeviceTimeoutError(TransportError):
    """Raised when a device does not answer within the allotted time.

    Attributes:
        timeout_seconds: The timeout that expired
        bytes_received: Bytes accumulated so far (chunked transfers only)
        bytes_expected: Bytes the device declared (chunked transfers only)
    """

    def __init__(
        self,
        message: str = "Device did not respond in time",
        timeout_seconds: Optional[float] = None,
        bytes_received: Optional[int] = None,
        bytes_expected: Optional[int] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if timeout_seconds is not None:
            details["timeout_seconds"] = timeout_seconds
        if bytes_expected is not None:
            details["bytes_received"] = bytes_received or 0
            details["bytes_expected"] = bytes_expected
        super().__init__(
            message,
            code="DEVICE_TIMEOUT",
            details=details,
            **kwargs,
        )
        self.timeout_seconds = timeout_seconds
        self.bytes_received = bytes_received
        self.bytes_expected = bytes_expected


class PortPoolExhaustedError(TransportError):
    """Raised when no local UDP port could be bound after all attempts."""

    def __init__(
        self,
        message: str = "No free local UDP port in pool",
        attempts: int = 0,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["attempts"] = attempts
        super().__init__(
            message,
            code="PORT_POOL_EXHAUSTED",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.attempts = attempts


# ============================================
# Authentication Errors
# ============================================

class AuthError(ZKError):
    """Raised when the device rejects the comm key.

    Fatal for the session. Retrying is the orchestrator's decision.
    """

    def __init__(
        self,
        message: str = "Device rejected authentication",
        reply_code: Optional[int] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if reply_code is not None:
            details["reply_code"] = reply_code
        super().__init__(
            message,
            code="AUTH_REJECTED",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.reply_code = reply_code


# ============================================
# Protocol Errors
# ============================================

class ProtocolError(ZKError):
    """Raised on malformed packets or unexpected command ids."""

    def __init__(
        self,
        message: str,
        command: Optional[int] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if command is not None:
            details["command"] = command
        kwargs.setdefault("code", "PROTOCOL_ERROR")
        super().__init__(message, details=details, **kwargs)
        self.command = command


class CommandRejectedError(ProtocolError):
    """Raised when the device answers a command with a non-ACK reply."""

    def __init__(
        self,
        operation: str,
        reply_code: int,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["operation"] = operation
        super().__init__(
            f"Device rejected {operation} (reply {reply_code})",
            command=reply_code,
            code="COMMAND_REJECTED",
            details=details,
            **kwargs,
        )
        self.operation = operation
        self.reply_code = reply_code


# ============================================
# Validation Errors
# ============================================

class ValidationError(ZKError):
    """Raised when input is rejected before any network call."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.field = field


# ============================================
# Concurrency Errors
# ============================================

class DeviceBusyError(ZKError):
    """Raised when the per-device lease could not be acquired in time."""

    def __init__(
        self,
        device_key: str,
        waited_seconds: Optional[float] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["device"] = device_key
        if waited_seconds is not None:
            details["waited_seconds"] = waited_seconds
        super().__init__(
            f"Device {device_key} is busy with another session",
            code="DEVICE_BUSY",
            details=details,
            recoverable=True,
            **kwargs,
        )
        self.device_key = device_key


# ============================================
# Database Errors
# ============================================

class DatabaseError(ZKError):
    """Base class for database-related errors."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)


class ConnectionPoolError(DatabaseError):
    """Raised when database connection pool is exhausted or unavailable."""

    def __init__(
        self,
        message: str = "Database connection pool error",
        **kwargs,
    ):
        super().__init__(message, code="CONNECTION_POOL_ERROR", **kwargs)


class TransactionError(DatabaseError):
    """Raised when database transaction fails."""

    def __init__(
        self,
        message: str = "Database transaction failed",
        operation: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation
        super().__init__(
            message,
            code="TRANSACTION_ERROR",
            details=details,
            **kwargs,
        )


class IntegrityError(DatabaseError):
    """Raised when database integrity constraint is violated."""

    def __init__(
        self,
        message: str = "Database integrity error",
        constraint: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if constraint:
            details["constraint"] = constraint
        super().__init__(
            message,
            code="INTEGRITY_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )


__all__ = [
    "ZKError",
    "ConfigurationError",
    "TransportError",
    "DeviceTimeoutError",
    "PortPoolExhaustedError",
    "AuthError",
    "ProtocolError",
    "CommandRejectedError",
    "ValidationError",
    "DeviceBusyError",
    "DatabaseError",
    "ConnectionPoolError",
    "TransactionError",
    "IntegrityError",
]
