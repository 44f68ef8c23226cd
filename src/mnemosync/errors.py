"""Error taxonomy shared by every engine component.

Each error carries a stable ``error_code`` so the MCP layer can turn it
into a rejected result without inspecting the message.
"""

from __future__ import annotations


class MemoryEngineError(Exception):
    """Base class for engine errors."""

    error_code = "internal_error"


class NotFoundError(MemoryEngineError):
    """A referenced memory, request, pool or job does not exist."""

    error_code = "not_found"


class UnauthorizedError(MemoryEngineError):
    """An agent is not allowed to perform the requested action."""

    error_code = "forbidden"


class InvalidStateError(MemoryEngineError):
    """A state transition was attempted from the wrong state."""

    error_code = "invalid_state"


class ExternalServiceError(MemoryEngineError):
    """An external provider (embeddings) failed."""

    error_code = "external_service_failure"


class InvalidInputError(MemoryEngineError, ValueError):
    """Caller supplied arguments outside the accepted domain."""

    error_code = "validation_error"
