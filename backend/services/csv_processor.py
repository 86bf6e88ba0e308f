"""
CSV import and export of a user's transactions.

File format (header row required):
    type,amount,description,category,date

Validates:
    - All columns exist (names are case/whitespace insensitive)
    - Type is income or expense
    - Amount is a positive number
    - Date is parseable

Author: Finance Tracker Team
"""

import math
import re
from datetime import datetime
from io import StringIO
from typing import List

import pandas as pd

from .extractor import FALLBACK_CATEGORY
from .observability import logger, timed
from .transaction_store import TransactionStore, TRANSACTION_TYPES


class CSVValidationError(ValueError):
    """Exception for CSV files that cannot be imported."""

    def __init__(self, message: str, errors: List[str] = None):
        super().__init__(message)
        self.errors = errors or []


class CSVProcessor:
    """Parse, validate and write transaction CSVs."""

    COLUMNS = ["type", "amount", "description", "category", "date"]
    MAX_ROWS = 10000
    MAX_REPORTED_ERRORS = 10

    def __init__(self, store: TransactionStore):
        self.store = store

    # =========================================================================
    # Export
    # =========================================================================

    @staticmethod
    def export_csv(transactions: list) -> str:
        """Serialize transactions with the date reduced to YYYY-MM-DD."""
        rows = [
            {
                "type": t.type,
                "amount": t.amount,
                "description": t.description,
                "category": t.category,
                "date": t.date.strftime("%Y-%m-%d"),
            }
            for t in transactions
        ]
        df = pd.DataFrame(rows, columns=CSVProcessor.COLUMNS)
        return df.to_csv(index=False)

    @staticmethod
    def export_filename(today: datetime) -> str:
        return f"transactions-{today.strftime('%Y-%m-%d')}.csv"

    # =========================================================================
    # Import
    # =========================================================================

    def parse_csv(self, content: bytes) -> list[dict]:
        """
        Parse CSV bytes into transaction dicts.

        Raises:
            CSVValidationError: Empty file, missing columns or bad rows.
        """
        try:
            text = content.decode("utf-8-sig")
        except UnicodeDecodeError:
            text = content.decode("latin-1")

        try:
            df = pd.read_csv(StringIO(text), dtype=str, keep_default_na=False)
        except pd.errors.EmptyDataError:
            raise CSVValidationError("Invalid CSV format: file is empty")
        except pd.errors.ParserError as e:
            raise CSVValidationError(f"Invalid CSV format: {e}")

        if len(df) == 0:
            raise CSVValidationError("File is empty or has no valid data rows")

        if len(df) > self.MAX_ROWS:
            raise CSVValidationError(
                f"File too large: {len(df)} rows. Maximum allowed: {self.MAX_ROWS}"
            )

        df.columns = df.columns.str.lower().str.strip()
        self._validate_columns(df)

        parsed = []
        errors = []
        # Header is line 1
        for line_number, row in enumerate(df.to_dict("records"), start=2):
            try:
                parsed.append(self._parse_row(row))
            except ValueError as e:
                errors.append(f"Row {line_number}: {e}")

        if errors:
            raise CSVValidationError(
                "Invalid CSV format: " + "; ".join(errors[:self.MAX_REPORTED_ERRORS]),
                errors=errors,
            )

        return parsed

    def _validate_columns(self, df: pd.DataFrame) -> None:
        missing = [col for col in self.COLUMNS if col not in df.columns]
        if missing:
            raise CSVValidationError(f"Missing required columns: {', '.join(missing)}")

    def _parse_row(self, row: dict) -> dict:
        transaction_type = str(row["type"]).strip().lower()
        if transaction_type not in TRANSACTION_TYPES:
            raise ValueError(f"unknown type '{row['type']}'")

        amount_str = re.sub(r"[$,]", "", str(row["amount"]).strip())
        try:
            amount = float(amount_str)
        except ValueError:
            raise ValueError(f"invalid amount '{row['amount']}'")
        if not math.isfinite(amount):
            raise ValueError(f"invalid amount '{row['amount']}'")
        amount = round(amount, 2)
        if amount <= 0:
            raise ValueError(f"amount must be positive, got {row['amount']}")

        date_val = pd.to_datetime(str(row["date"]).strip(), errors="coerce")
        if pd.isna(date_val):
            raise ValueError(f"cannot parse date '{row['date']}'")

        return {
            "type": transaction_type,
            "amount": amount,
            "description": re.sub(r"\s+", " ", str(row["description"])).strip() or "Unspecified",
            "category": str(row["category"]).strip() or FALLBACK_CATEGORY[transaction_type],
            "date": date_val.to_pydatetime().replace(tzinfo=None),
        }

    @timed("csv.import")
    async def import_csv(self, user_id: str, content: bytes) -> int:
        """Validate the whole file, then write every row in one batch. Returns the count."""
        rows = self.parse_csv(content)

        await self.store.create_transactions(user_id, rows)

        logger.info("CSV imported", user_id=user_id[:8], rows=len(rows))
        return len(rows)
