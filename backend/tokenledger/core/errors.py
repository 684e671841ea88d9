"""Typed errors raised by the ledger services.

Each error carries a stable ``code`` that collaborators switch on, an HTTP
status for the API layer, and any structured amounts needed to render a
precise message (``required``/``available`` and so on).
"""

from __future__ import annotations


class LedgerError(Exception):
    code = "ledger_error"
    status_code = 400

    def __init__(self, message: str, **detail):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict:
        return {"success": False, "error": self.code, "detail": self.message, **self.detail}


class ValidationError(LedgerError):
    code = "validation_error"
    status_code = 422


class AuthorizationError(LedgerError):
    code = "authorization_error"
    status_code = 403


class InsufficientPrivilegeError(AuthorizationError):
    code = "insufficient_privilege"


class InvalidTargetError(AuthorizationError):
    code = "invalid_target"
    status_code = 400


class UnknownActionError(LedgerError):
    code = "bad_action"

    def __init__(self, action_type: str):
        super().__init__(f"Unknown action type: {action_type}", action_type=action_type)


class ActionDisabledError(LedgerError):
    code = "action_disabled"

    def __init__(self, action_type: str):
        super().__init__("This action is disabled", action_type=action_type)


class NoAllocationError(LedgerError):
    code = "no_allocation"

    def __init__(self):
        super().__init__("No token allocation found")


class InsufficientBalanceError(LedgerError):
    code = "insufficient_balance"
    status_code = 402

    def __init__(self, required: int, available: int):
        super().__init__("Insufficient token balance", required=required, available=available)
        self.required = required
        self.available = available


class InsufficientOrgPoolError(LedgerError):
    code = "insufficient_org_pool"
    status_code = 409

    def __init__(self, available: int, requested: int):
        super().__init__("Insufficient organization tokens", available=available, requested=requested)
        self.available = available
        self.requested = requested


class WalletNotFoundError(LedgerError):
    code = "wallet_not_found"
    status_code = 404

    def __init__(self):
        super().__init__("Organization wallet not found")


class StorageError(LedgerError):
    code = "storage_error"
    status_code = 503
