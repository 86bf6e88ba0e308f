"""Backend services for transaction tracking and the finance assistant."""

from .chat_service import (
    ChatService, ChatReply, TransactionAdded, TransactionDeleted, detect_intent,
)
from .csv_processor import CSVProcessor, CSVValidationError
from .extractor import (
    extract_transaction, infer_category,
    EXPENSE_CATEGORY_KEYWORDS, INCOME_CATEGORY_KEYWORDS,
)
from .timeframe import TimeWindow, resolve_timeframe, month_window
from .transaction_store import (
    TransactionStore, TransactionStats, TransactionNotFoundError,
    summarize, totals_by_category,
)
from .user_service import (
    UserService, EmailAlreadyExistsError, InvalidPasswordError,
    UserNotFoundError, UserDeletionError,
)

__all__ = [
    "ChatService",
    "ChatReply",
    "TransactionAdded",
    "TransactionDeleted",
    "detect_intent",
    "CSVProcessor",
    "CSVValidationError",
    "extract_transaction",
    "infer_category",
    "EXPENSE_CATEGORY_KEYWORDS",
    "INCOME_CATEGORY_KEYWORDS",
    "TimeWindow",
    "resolve_timeframe",
    "month_window",
    "TransactionStore",
    "TransactionStats",
    "TransactionNotFoundError",
    "summarize",
    "totals_by_category",
    "UserService",
    "EmailAlreadyExistsError",
    "InvalidPasswordError",
    "UserNotFoundError",
    "UserDeletionError",
]
