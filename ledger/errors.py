__all__ = [
    "LedgerError",
    "InvalidPayment",
    "UnknownFund",
    "InsufficientQuantity",
    "InvalidAdjustment",
    "InvalidDate",
    "DuplicatePosting",
    "InvalidLifecycleAction",
    "ConfigurationError",
    "RecordNotFound",
]


class LedgerError(ValueError):
    """Base class for every validation failure raised by the engine.

    `code` is the short machine-readable tag used in error dictionaries
    handed to the dashboard (see ledger.functional.attempt).
    """

    code = "ledger_error"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message, **self.details}


class InvalidPayment(LedgerError):
    code = "invalid_payment"


class UnknownFund(LedgerError):
    code = "unknown_fund"


class InsufficientQuantity(LedgerError):
    code = "insufficient_quantity"


class InvalidAdjustment(LedgerError):
    code = "invalid_adjustment"


class InvalidDate(LedgerError):
    code = "invalid_date"


class DuplicatePosting(LedgerError):
    code = "duplicate_posting"


class InvalidLifecycleAction(LedgerError):
    code = "invalid_lifecycle_action"


class ConfigurationError(LedgerError):
    code = "configuration_error"


class RecordNotFound(LedgerError, KeyError):
    code = "record_not_found"

    def __str__(self) -> str:
        return self.message
