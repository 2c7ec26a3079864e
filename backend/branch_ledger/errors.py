# Overview: Domain error taxonomy shared by services, routes and the CLI.

"""
Every failure a ledger operation reports to its caller is one of these.

Each class carries the HTTP status the API answers with and a short
machine-readable kind, so routes can translate any of them the same way:

    except LedgerError as e:
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code
"""
from __future__ import annotations


class LedgerError(Exception):
    """Base class for business failures raised by the ledger services."""

    status_code = 400
    kind = "ledger_error"

    def to_dict(self) -> dict:
        return {"error": str(self), "kind": self.kind}


class ValidationError(LedgerError, ValueError):
    """400-level input problem."""

    status_code = 400
    kind = "validation_error"


class InsufficientStockError(LedgerError):
    """Requested quantity exceeds what the product has in store."""

    status_code = 400
    kind = "insufficient_stock"


class NotFoundError(LedgerError):
    status_code = 404
    kind = "not_found"


class ConflictError(LedgerError, ValueError):
    """409-level business rule conflict (e.g., paid flag without the money)."""

    status_code = 409
    kind = "conflict"


class AuthorizationError(LedgerError):
    """No actor, or an actor that may not perform the operation."""

    status_code = 401
    kind = "authorization_error"
