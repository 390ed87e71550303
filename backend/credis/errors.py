# Overview: Typed error taxonomy shared by services, routes and the CLI.

"""
Every error the core raises carries a stable machine-readable ``kind`` and an
HTTP status so the API layer can map it without inspecting messages.

Business errors (validation, not found, conflict, auth) are terminal for the
call. Storage errors never cross this boundary with their driver text:
the app-level handler in ``credis/__init__.py`` replaces them with a generic
500 body.
"""

from __future__ import annotations


class CredisError(Exception):
    """Base class for all domain errors."""

    kind = "error"
    status_code = 500
    default_message = "Unexpected error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class ValidationError(CredisError, ValueError):
    """400-level input problem. Fix the input and retry."""

    kind = "validation"
    status_code = 400
    default_message = "Invalid input"


class CreditLimitExceededError(ValidationError):
    """A credit would push the customer's outstanding balance over the limit."""

    kind = "credit_limit_exceeded"
    default_message = "Credit limit exceeded"

    def __init__(self, message: str | None = None, *, outstanding_cents: int | None = None,
                 credit_limit_cents: int | None = None):
        super().__init__(message)
        self.outstanding_cents = outstanding_cents
        self.credit_limit_cents = credit_limit_cents

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["outstanding_cents"] = self.outstanding_cents
        data["credit_limit_cents"] = self.credit_limit_cents
        return data


class NotFoundError(CredisError):
    """Referenced entity does not exist (or is outside the caller's store)."""

    kind = "not_found"
    status_code = 404
    default_message = "Not found"


class ConflictError(CredisError):
    """409-level uniqueness violation (e.g., duplicate phone)."""

    kind = "conflict"
    status_code = 409
    default_message = "Conflict"


class AuthError(CredisError):
    """
    Credential or token failure.

    Messages are deliberately generic: callers must not be able to tell an
    unknown phone from a wrong password, or a revoked token from a forged one.
    """

    kind = "auth"
    status_code = 401
    default_message = "Invalid credentials"


class ConsistencyError(CredisError):
    """A balance row diverged from the fold of its ledger entries."""

    kind = "consistency"
    status_code = 409
    default_message = "Balance does not match ledger"

    def __init__(self, message: str | None = None, *, stored: dict | None = None,
                 expected: dict | None = None):
        super().__init__(message)
        self.stored = stored
        self.expected = expected

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["stored"] = self.stored
        data["expected"] = self.expected
        return data
