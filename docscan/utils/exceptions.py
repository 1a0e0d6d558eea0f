"""
Custom Exceptions Module.

Every error raised by the scanner derives from DocScanError and carries an
ErrorKind, so asset-level failures can be recorded and aggregated by kind.

Exception Hierarchy:
    DocScanError (base)
    ├── ConfigurationError
    ├── ScanPreconditionError
    │   ├── PermissionDeniedError
    │   └── DeviceConditionError
    ├── OCRError
    │   ├── EngineInitError
    │   ├── OCRProcessingError
    │   └── EngineFailureError
    ├── AssetError
    │   ├── AssetProcessingTimeout
    │   └── AssetReadError
    ├── PersistenceError
    └── CriticalMemoryPressure
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Error categories used when recording failures."""

    PERMISSION_DENIED = "permission_denied"
    DEVICE_CONDITION_UNMET = "device_condition_unmet"
    ENGINE_INIT_FAILURE = "engine_init_failure"
    ENGINE_FAILURE = "engine_failure"
    ASSET_PROCESSING_TIMEOUT = "asset_processing_timeout"
    ASSET_READ_FAILURE = "asset_read_failure"
    PERSISTENCE_FAILURE = "persistence_failure"
    CRITICAL_MEMORY_PRESSURE = "critical_memory_pressure"
    CONFIGURATION = "configuration"
    UNEXPECTED = "unexpected"


class DocScanError(Exception):
    """
    Base exception for all scanner errors.

    Attributes:
        message: Human-readable error message.
        details: Dictionary with additional error context.
        kind: ErrorKind for failure bookkeeping.
    """

    kind = ErrorKind.UNEXPECTED

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(DocScanError):
    """Raised when a setting is missing or has an invalid value."""

    kind = ErrorKind.CONFIGURATION


# =============================================================================
# SCAN PRECONDITIONS
# =============================================================================

class ScanPreconditionError(DocScanError):
    """Base exception for conditions that prevent a scan from starting."""
    pass


class PermissionDeniedError(ScanPreconditionError):
    """Raised when the asset source refuses read access."""

    kind = ErrorKind.PERMISSION_DENIED

    def __init__(self, source: str, reason: str = "read access denied"):
        message = f"Permission denied for asset source '{source}': {reason}"
        super().__init__(message, {"source": source, "reason": reason})


class DeviceConditionError(ScanPreconditionError):
    """
    Raised when battery or network policy forbids scanning.

    Example:
        >>> raise DeviceConditionError("Battery too low (15%)")
    """

    kind = ErrorKind.DEVICE_CONDITION_UNMET

    def __init__(self, reason: str, details: dict = None):
        super().__init__(f"Device conditions not met: {reason}", details)
        self.reason = reason


# =============================================================================
# OCR ERRORS
# =============================================================================

class OCRError(DocScanError):
    """Base exception for OCR errors."""

    kind = ErrorKind.ENGINE_FAILURE


class EngineInitError(OCRError):
    """Raised when an OCR engine cannot be initialized. The engine is excluded."""

    kind = ErrorKind.ENGINE_INIT_FAILURE

    def __init__(self, engine_name: str, reason: str):
        message = f"OCR engine '{engine_name}' failed to initialize"
        super().__init__(message, {"engine": engine_name, "reason": reason})
        self.engine_name = engine_name


class OCRProcessingError(OCRError):
    """Raised when a single engine fails on an image."""

    def __init__(self, engine_name: str, image_path: str, reason: str):
        message = f"OCR engine '{engine_name}' failed to process image"
        details = {"engine": engine_name, "image": image_path, "reason": reason}
        super().__init__(message, details)
        self.engine_name = engine_name


class EngineFailureError(OCRError):
    """Raised when every available engine failed on an asset."""

    def __init__(self, image_path: str, failures: dict):
        message = f"All OCR engines failed for '{image_path}'"
        super().__init__(message, {"image": image_path, "failures": failures})
        self.failures = failures


# =============================================================================
# ASSET ERRORS
# =============================================================================

class AssetError(DocScanError):
    """Base exception for per-asset failures."""
    pass


class AssetProcessingTimeout(AssetError):
    """Raised when OCR for an asset exceeds its time budget."""

    kind = ErrorKind.ASSET_PROCESSING_TIMEOUT

    def __init__(self, uri: str, timeout: float):
        message = f"Processing timed out after {timeout:.1f}s"
        super().__init__(message, {"uri": uri, "timeout": timeout})
        self.uri = uri
        self.timeout = timeout


class AssetReadError(AssetError):
    """Raised when asset content cannot be read or decoded."""

    kind = ErrorKind.ASSET_READ_FAILURE

    def __init__(self, uri: str, reason: str):
        super().__init__(f"Cannot read asset '{uri}'", {"uri": uri, "reason": reason})
        self.uri = uri


# =============================================================================
# PERSISTENCE AND RESOURCES
# =============================================================================

class PersistenceError(DocScanError):
    """Raised on document store or state store failures."""

    kind = ErrorKind.PERSISTENCE_FAILURE

    def __init__(self, operation: str, reason: str):
        message = f"Storage operation '{operation}' failed"
        super().__init__(message, {"operation": operation, "reason": reason})
        self.operation = operation


class CriticalMemoryPressure(DocScanError):
    """Raised when available memory falls below the critical threshold."""

    kind = ErrorKind.CRITICAL_MEMORY_PRESSURE

    def __init__(self, available_mb: float = None):
        details = {"available_mb": available_mb} if available_mb is not None else None
        super().__init__("Critical memory pressure", details)
