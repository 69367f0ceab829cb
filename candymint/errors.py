"""Typed failures surfaced by the workflow stages."""


class WorkflowError(Exception):
    kind = "error"

    def __init__(self, message, detail=None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def __str__(self):
        if self.detail:
            return f"{self.message} ({self.detail})"
        return self.message


class NetworkError(WorkflowError):
    """The cluster or metadata host could not be reached, or rejected the call."""

    kind = "network"


class ValidationError(WorkflowError):
    """Malformed input, or an operation the ledger refuses."""

    kind = "validation"


class AccountNotFoundError(ValidationError):
    def __init__(self, address, what="account"):
        super().__init__(f"{what} not found: {address}")
        self.address = address


class GuardRejectedError(ValidationError):
    def __init__(self, guard, message):
        super().__init__(f"{guard} guard: {message}")
        self.guard = guard


class InventoryError(ValidationError):
    pass


class InsufficientFundsError(WorkflowError):
    kind = "insufficient_funds"

    def __init__(self, needed=None, available=None, purpose="transaction", detail=None):
        if needed is None:
            message = f"insufficient funds for {purpose}"
        else:
            message = f"insufficient funds for {purpose}: need {needed} lamports, have {available}"
        super().__init__(message, detail)
        self.needed = needed
        self.available = available
