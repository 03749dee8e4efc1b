"""Exception hierarchy shared by the ledger, dialogue and HTTP layers."""

from __future__ import annotations

from typing import Any


class ExpenseEngineError(Exception):
    """Base class for failures the engine reports to its callers."""

    error_code = "expense_engine_error"


class TaxonomyError(ExpenseEngineError):
    """Raised when a taxonomy registry violates key or synonym uniqueness."""

    error_code = "invalid_taxonomy"


class InvalidTransaction(ExpenseEngineError):
    """Validation failure at commit/edit time; the ledger is left unchanged."""

    error_code = "invalid_transaction"

    def __init__(self, message: str, *, field: str | None = None, value: Any = None) -> None:
        super().__init__(message)
        self.field = field
        self.value = value


class NotFound(ExpenseEngineError):
    """Raised when an edit or delete targets an id the ledger does not hold."""

    error_code = "transaction_not_found"

    def __init__(self, transaction_id: str) -> None:
        super().__init__(f"Transaction '{transaction_id}' was not found.")
        self.transaction_id = transaction_id


class ConversationExpired(ExpenseEngineError):
    """The clarification turn cap was hit; the pending capture has been discarded."""

    error_code = "conversation_expired"

    def __init__(self, conversation_id: str, turns_asked: int, *, capture_id: str | None = None) -> None:
        super().__init__(
            f"Conversation '{conversation_id}' gave up after {turns_asked} clarification turns."
        )
        self.conversation_id = conversation_id
        self.turns_asked = turns_asked
        self.capture_id = capture_id
