"""
TopicGraph Exceptions
=====================

Every error raised by the graph core derives from ``TopicGraphError`` and
carries a machine-readable ``error_code``, a ``category`` and a ``context``
dict that ends up in logs and in ``to_dict()`` payloads.

    TopicGraphError
    ├── RecoverableError          StorageTimeoutError, ClassifierError
    ├── IrrecoverableError        ConfigurationError, DataCorruptionError,
    │                             ValidationError, NotFoundError
    │                             (GraphNotFoundError), UnsupportedOperationError
    ├── StorageError              StorageTimeoutError, DataCorruptionError
    └── VectorError               DimensionMismatchError, EmptyDatasetError

Outcomes that are part of normal operation are not errors: lookups return
None, a known link makes ingestion return a skipped result, and a
broader_than edge that would close a cycle is simply not created.
"""

import os
import traceback
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(Enum):
    STORAGE = "STORAGE"
    VECTOR = "VECTOR"
    CONFIG = "CONFIG"
    VALIDATION = "VALIDATION"
    GRAPH = "GRAPH"
    PROVIDER = "PROVIDER"
    SYSTEM = "SYSTEM"


def _merged(base: Dict[str, Any], extra: Optional[dict]) -> Dict[str, Any]:
    if extra:
        base.update(extra)
    return base


class TopicGraphError(Exception):
    """
    Root of the TopicGraph error hierarchy.

    Args:
        message: Human-readable description.
        context: Structured details (ids, sizes, operation names).
        error_code: Overrides the class-level code.
        recoverable: Overrides the class-level recoverability.
    """

    error_code: str = "TOPIC_GRAPH_ERROR"
    recoverable: bool = True
    category: ErrorCategory = ErrorCategory.SYSTEM

    def __init__(
        self,
        message: str,
        context: Optional[dict] = None,
        error_code: Optional[str] = None,
        recoverable: Optional[bool] = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})
        if error_code is not None:
            self.error_code = error_code
        if recoverable is not None:
            self.recoverable = recoverable

    def __str__(self) -> str:
        if not self.context:
            return self.message
        return f"{self.message} | context={self.context}"

    def to_dict(self, include_traceback: Optional[bool] = None) -> Dict[str, Any]:
        """Serializable view; the traceback is attached in debug mode unless told otherwise."""
        if include_traceback is None:
            include_traceback = is_debug_mode()
        payload: Dict[str, Any] = {
            "error": self.message,
            "code": self.error_code,
            "recoverable": self.recoverable,
        }
        if self.context:
            payload["context"] = self.context
        if include_traceback:
            payload["traceback"] = traceback.format_exc()
        return payload


class RecoverableError(TopicGraphError):
    """Transient failure; the same call may succeed later (locked database, flaky model)."""
    recoverable = True


class IrrecoverableError(TopicGraphError):
    """The input or the stored state is wrong; retrying will not help."""
    recoverable = False


# =============================================================================
# Storage
# =============================================================================

class StorageError(TopicGraphError):
    """A read or write against the SQLite store failed."""
    error_code = "STORAGE_ERROR"
    category = ErrorCategory.STORAGE


class StorageTimeoutError(RecoverableError, StorageError):
    error_code = "STORAGE_TIMEOUT_ERROR"

    def __init__(self, backend: str, operation: str, context: Optional[dict] = None):
        super().__init__(
            f"[{backend}] Operation '{operation}' timed out",
            _merged({"backend": backend, "operation": operation}, context),
        )
        self.backend = backend
        self.operation = operation


class DataCorruptionError(IrrecoverableError, StorageError):
    """A stored row or vector blob cannot be decoded."""
    error_code = "DATA_CORRUPTION_ERROR"

    def __init__(self, resource_id: str, reason: str = "Data corruption detected", context: Optional[dict] = None):
        super().__init__(f"{reason} for resource '{resource_id}'", _merged({"resource_id": resource_id}, context))
        self.resource_id = resource_id


# =============================================================================
# Vectors
# =============================================================================

class VectorError(TopicGraphError):
    error_code = "VECTOR_ERROR"
    category = ErrorCategory.VECTOR


class DimensionMismatchError(IrrecoverableError, VectorError):
    """Embeddings of a graph must all share one dimensionality."""
    error_code = "DIMENSION_MISMATCH_ERROR"

    def __init__(self, expected: int, actual: int, operation: str = "operation", context: Optional[dict] = None):
        super().__init__(
            f"Dimension mismatch in {operation}: expected {expected}, got {actual}",
            _merged({"expected": expected, "actual": actual, "operation": operation}, context),
        )
        self.expected = expected
        self.actual = actual
        self.operation = operation


class EmptyDatasetError(IrrecoverableError, VectorError):
    """Mean, PCA or medoid asked for over zero vectors."""
    error_code = "EMPTY_DATASET_ERROR"

    def __init__(self, operation: str, context: Optional[dict] = None):
        super().__init__(f"Cannot compute {operation} of an empty dataset", _merged({"operation": operation}, context))
        self.operation = operation


# =============================================================================
# Configuration and input
# =============================================================================

class ConfigurationError(IrrecoverableError):
    error_code = "CONFIGURATION_ERROR"
    category = ErrorCategory.CONFIG

    def __init__(self, config_key: str, reason: str, context: Optional[dict] = None):
        super().__init__(f"Configuration error for '{config_key}': {reason}", _merged({"config_key": config_key}, context))
        self.config_key = config_key


class ValidationError(IrrecoverableError):
    """
    A page, graph name or settings payload was rejected.

    ``value`` is echoed into the context, cut to 100 characters.
    """
    error_code = "VALIDATION_ERROR"
    category = ErrorCategory.VALIDATION

    def __init__(self, field: str, reason: str, value: Any = None, context: Optional[dict] = None):
        details: Dict[str, Any] = {"field": field}
        if value is not None:
            shown = str(value)
            details["value"] = shown if len(shown) <= 100 else shown[:100] + "..."
        super().__init__(f"Validation error for '{field}': {reason}", _merged(details, context))
        self.field = field
        self.reason = reason


# =============================================================================
# Graph resources
# =============================================================================

class NotFoundError(IrrecoverableError):
    error_code = "NOT_FOUND_ERROR"
    category = ErrorCategory.GRAPH

    def __init__(self, resource_type: str, resource_id: str, context: Optional[dict] = None):
        super().__init__(
            f"{resource_type} '{resource_id}' not found",
            _merged({"resource_type": resource_type, "resource_id": resource_id}, context),
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class GraphNotFoundError(NotFoundError):
    error_code = "GRAPH_NOT_FOUND_ERROR"

    def __init__(self, graph_id: str, context: Optional[dict] = None):
        super().__init__("Graph", graph_id, context)
        self.graph_id = graph_id


class UnsupportedOperationError(IrrecoverableError):
    """The operation exists but is refused for this resource (e.g. deleting the default graph)."""
    error_code = "UNSUPPORTED_OPERATION_ERROR"
    category = ErrorCategory.GRAPH

    def __init__(self, operation: str, reason: str, context: Optional[dict] = None):
        super().__init__(f"Operation '{operation}' not supported: {reason}", _merged({"operation": operation}, context))
        self.operation = operation


class ClassifierError(RecoverableError):
    """The relationship classifier failed or answered with something unusable."""
    error_code = "CLASSIFIER_ERROR"
    category = ErrorCategory.PROVIDER

    def __init__(self, reason: str, context: Optional[dict] = None):
        super().__init__(f"Relationship classification failed: {reason}", context)
        self.reason = reason


# =============================================================================
# Helpers
# =============================================================================

def wrap_storage_exception(backend: str, operation: str, exc: Exception) -> StorageError:
    """
    Map a driver exception onto the storage hierarchy.

    SQLite reports lock contention as "database is locked"; that and any
    timeout become StorageTimeoutError, everything else a plain StorageError.
    """
    name = type(exc).__name__
    text = str(exc)
    lowered = text.lower()
    if "locked" in lowered or "timeout" in lowered or "Timeout" in name:
        return StorageTimeoutError(backend, operation, {"original_exception": name})
    return StorageError(
        f"[{backend}] {operation} failed: {text}",
        {"backend": backend, "operation": operation, "original_exception": name},
    )


def is_debug_mode() -> bool:
    """TOPICGRAPH_DEBUG=true|1|yes turns on tracebacks in error payloads."""
    return os.environ.get("TOPICGRAPH_DEBUG", "").lower() in ("true", "1", "yes")


__all__ = [
    "TopicGraphError",
    "RecoverableError",
    "IrrecoverableError",
    "ErrorCategory",
    "StorageError",
    "StorageTimeoutError",
    "DataCorruptionError",
    "VectorError",
    "DimensionMismatchError",
    "EmptyDatasetError",
    "ConfigurationError",
    "ValidationError",
    "NotFoundError",
    "GraphNotFoundError",
    "UnsupportedOperationError",
    "ClassifierError",
    "wrap_storage_exception",
    "is_debug_mode",
]
