"""Domain-level exception primitives with stable machine-readable codes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(eq=False)
class DomainError(Exception):
    """Use-case level error with stable code and HTTP mapping."""

    code: str
    http_status: int
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


class Unauthenticated(DomainError):
    """No resolvable viewer identity."""

    def __init__(self, message: str = "Authentication required", *, details: dict[str, Any] | None = None):
        super().__init__(code="UNAUTHENTICATED", http_status=401, message=message, details=details)


class Forbidden(DomainError):
    def __init__(self, message: str, *, code: str = "FORBIDDEN", details: dict[str, Any] | None = None):
        super().__init__(code=code, http_status=403, message=message, details=details)


class NotFound(DomainError):
    """Referenced project/message absent."""

    def __init__(self, message: str, *, code: str = "NOT_FOUND", details: dict[str, Any] | None = None):
        super().__init__(code=code, http_status=404, message=message, details=details)


class ValidationError(DomainError):
    """Rejected input; never retried automatically."""

    def __init__(self, message: str, *, code: str = "VALIDATION_ERROR", details: dict[str, Any] | None = None):
        super().__init__(code=code, http_status=422, message=message, details=details)


class NoRecipients(DomainError):
    def __init__(self, message: str = "No eligible contractors for this project", *, details: dict[str, Any] | None = None):
        super().__init__(code="NO_RECIPIENTS", http_status=409, message=message, details=details)


class StoreUnavailable(DomainError):
    """Transient I/O failure against the persistent or blob store."""

    def __init__(self, message: str = "Storage temporarily unavailable", *, details: dict[str, Any] | None = None):
        super().__init__(code="STORE_UNAVAILABLE", http_status=503, message=message, details=details)


class AliasMissing(DomainError):
    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(code="ALIAS_MISSING", http_status=500, message=message, details=details)
