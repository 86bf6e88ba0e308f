"""
Module: chat_service.py
Description: Rule-based finance assistant that answers questions and
records/deletes transactions from natural-language prompts.

This service provides:
    - Ordered regex intent routing (first match wins)
    - Balance, listing and category spending summaries
    - "Add expense of $50 for groceries" style transaction entry
    - "Delete last transaction"
    - Savings tips and help text

Every prompt is handled on its own; there is no conversation memory.

Author: Finance Tracker Team

Usage:
    chat_service = ChatService(TransactionStore(db, source="chat"))
    reply = await chat_service.interpret("What's my balance?", user_id)
    print(reply.text)
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

from .extractor import extract_transaction, find_query_category
from .formatting import format_currency, format_date
from .observability import logger, log_chat_intent, timed
from .timeframe import month_window, resolve_timeframe
from .transaction_store import summarize, totals_by_category


LISTING_LIMIT = 5
HIGH_EXPENSE_RATIO = 0.8


class RecordStore(Protocol):
    """What the assistant needs from the transaction store."""

    async def list_transactions(self, user_id: str) -> list: ...

    async def create_transaction(
        self, user_id: str, type: str, amount: float,
        description: str, category: str, date: datetime,
    ) -> Any: ...

    async def delete_transaction(self, transaction_id: str) -> None: ...


# =============================================================================
# Reply types
# =============================================================================

@dataclass
class TransactionAdded:
    transaction: Any

    action = "add"

    def payload(self) -> dict:
        return self.transaction.to_dict()


@dataclass
class TransactionDeleted:
    transaction_id: str

    action = "delete"

    def payload(self) -> dict:
        return {"id": self.transaction_id}


ChatOutcome = Union[TransactionAdded, TransactionDeleted]


@dataclass
class ChatReply:
    """Text for the user plus an optional side effect the client should apply."""
    text: str
    outcome: Optional[ChatOutcome] = None

    @property
    def action(self) -> Optional[str]:
        return self.outcome.action if self.outcome else None

    @property
    def data(self) -> Optional[dict]:
        return self.outcome.payload() if self.outcome else None

    def to_dict(self) -> dict:
        result: dict = {"text": self.text}
        if self.outcome:
            result["action"] = self.action
            result["data"] = self.data
        return result


# =============================================================================
# Canned text
# =============================================================================

FALLBACK_TEXT = (
    "I'm not sure how to help with that. Here's what you can ask me about:\n\n"
    "📊 Financial Overview:\n"
    "• 'What's my current balance?'\n"
    "• 'Show my recent transactions'\n"
    "• 'How much did I spend on groceries?'\n\n"
    "💰 Transaction Management:\n"
    "• 'Add new expense of $50 for groceries'\n"
    "• 'Record income of $1000 for salary'\n"
    "• 'Delete last transaction'\n\n"
    "💡 Insights & Help:\n"
    "• 'Give me savings tips'\n"
    "• 'How do I use this app?'\n"
    "• 'What features are available?'"
)

ERROR_TEXT = (
    "😕 Sorry, something went wrong while processing your request. "
    "Please try again in a moment."
)

AMOUNT_CLARIFICATION_TEXT = (
    "I couldn't understand the amount. Please specify it clearly, like:\n"
    "• 'Add expense of $50 for groceries'\n"
    "• 'New income of $1000 from salary'"
)

ADD_FAILED_TEXT = "❌ Sorry, I couldn't add the transaction. Please try again or add it manually."

DELETE_INSTRUCTIONS_TEXT = (
    "Please specify which transaction to delete. You can:\n"
    "• Say 'delete last transaction'\n"
    "• Use the delete button in the transaction list"
)

SAVINGS_TEMPLATE = (
    "1. 💰 Budgeting Strategy:\n"
    "• Follow the 50/30/20 rule:\n"
    "  - 50% for needs (housing, food, utilities)\n"
    "  - 30% for wants (entertainment, shopping)\n"
    "  - 20% for savings and debt payment\n\n"
    "2. 📉 Expense Reduction:\n"
    "• Review and cancel unused subscriptions\n"
    "• Compare prices before purchases\n"
    "• Use cashback and rewards programs\n\n"
    "3. 📈 Income Growth:\n"
    "• Explore side hustle opportunities\n"
    "• Develop high-demand skills\n"
    "• Look for passive income sources\n\n"
    "4. 🎯 Smart Financial Habits:\n"
    "• Set up automatic savings transfers\n"
    "• Create an emergency fund\n"
    "• Track expenses regularly\n\n"
    "Would you like more specific tips for any category?"
)

HIGH_EXPENSE_WARNING = (
    "🚨 High Expense Alert:\n"
    "• Your expenses are over 80% of your income\n"
    "• Consider reviewing non-essential spending\n"
    "• Look for areas to cut back\n\n"
)

HELP_ADD_TEXT = (
    "📝 How to Add Transactions:\n\n"
    "You can say things like:\n"
    "• 'Add expense of $50 for groceries'\n"
    "• 'Record income of $1000 from salary'\n"
    "• 'New payment of $30 for entertainment'\n\n"
    "Or use the Add Transaction form in the dashboard."
)

HELP_DELETE_TEXT = (
    "❌ How to Delete Transactions:\n\n"
    "You can:\n"
    "• Say 'delete last transaction'\n"
    "• Use the delete button in the transaction list\n\n"
    "Note: Deletions cannot be undone!"
)

HELP_GENERAL_TEXT = (
    "🤖 Finance Assistant Help:\n\n"
    "1. 💰 View Finances:\n"
    "• 'What's my balance?'\n"
    "• 'Show recent transactions'\n"
    "• 'How much did I spend on food?'\n\n"
    "2. 📝 Manage Transactions:\n"
    "• 'Add expense of $50 for groceries'\n"
    "• 'Record income of $1000'\n"
    "• 'Delete last transaction'\n\n"
    "3. 💡 Get Insights:\n"
    "• 'Give me savings tips'\n"
    "• 'Analyze my spending'\n"
    "• 'Show my top expenses'\n\n"
    "What would you like to know more about?"
)


# =============================================================================
# Intent predicates
# =============================================================================

def _matches(pattern: str) -> Callable[[str], bool]:
    compiled = re.compile(pattern)
    return lambda text: bool(compiled.search(text))


_ADD_VERB = _matches(r"add|new|create|record")
_ADD_OBJECT = _matches(r"transaction|expense|income|spent|earned|paid|received")
_DELETE_VERB = _matches(r"delete|remove|cancel")


def _is_add_request(text: str) -> bool:
    return _ADD_VERB(text) and _ADD_OBJECT(text)


def _is_delete_request(text: str) -> bool:
    return _DELETE_VERB(text) and "transaction" in text


# (intent name, predicate over the lower-cased prompt); order matters
INTENT_RULES: tuple[tuple[str, Callable[[str], bool]], ...] = (
    ("balance", _matches(r"balance|how much.*have")),
    ("transactions", _matches(r"recent|show|list|view.*transactions")),
    ("category_spending", _matches(r"spend.*on|spent.*on|expenses.*for")),
    ("add_transaction", _is_add_request),
    ("delete_transaction", _is_delete_request),
    ("savings_tips", _matches(r"saving|save money|tips|advice|help.*save")),
    ("help", _matches(r"help|how to|what can you do|features")),
)


def detect_intent(text: str) -> str:
    """Name of the first intent whose predicate matches, else "fallback"."""
    lowered = text.lower()
    for intent, predicate in INTENT_RULES:
        if predicate(lowered):
            return intent
    return "fallback"


class ChatService:
    """
    Rule-based financial assistant.

    Reads and writes through a record store; never raises to the caller.
    Store failures become an apology reply.
    """

    def __init__(self, store: RecordStore, clock: Callable[[], datetime] = datetime.now):
        """
        Initialize the chat service.

        Args:
            store: Transaction store (see RecordStore).
            clock: Source of "now" when interpret() is not given one.
        """
        self.store = store
        self.clock = clock
        self._handlers: dict[str, Callable[[str, str, datetime], Awaitable[ChatReply]]] = {
            "balance": self._handle_balance,
            "transactions": self._handle_transactions,
            "category_spending": self._handle_category_spending,
            "add_transaction": self._handle_add_transaction,
            "delete_transaction": self._handle_delete_transaction,
            "savings_tips": self._handle_savings_tips,
            "help": self._handle_help,
            "fallback": self._handle_fallback,
        }

    @timed("chat.interpret")
    async def interpret(
        self,
        prompt_text: str,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> ChatReply:
        """
        Classify a prompt and run the matching handler.

        Args:
            prompt_text: The user's message.
            user_id: Owner of the transactions to read/modify.
            now: Reference time for "this month"/"today"; defaults to the clock.

        Returns:
            ChatReply with text and, for add/delete, the applied outcome.
        """
        now = now or self.clock()
        intent = detect_intent(prompt_text)
        log_chat_intent(intent)

        log = logger.bind(user_id=user_id[:8], intent=intent)
        try:
            return await self._handlers[intent](prompt_text, user_id, now)
        except Exception as e:
            log.exception("Chat handler failed", error=str(e))
            return ChatReply(text=ERROR_TEXT)

    # ==========================================================================
    # Handlers
    # ==========================================================================

    async def _handle_balance(self, text: str, user_id: str, now: datetime) -> ChatReply:
        transactions = await self.store.list_transactions(user_id)
        all_time = summarize(transactions)

        window = month_window(now)
        monthly = summarize([t for t in transactions if window.contains(t.date)])

        return ChatReply(
            text=f"💰 Current Balance: {format_currency(all_time.savings)}\n\n"
                 f"This Month:\n"
                 f"📈 Income: {format_currency(monthly.total_income)}\n"
                 f"📉 Expenses: {format_currency(monthly.total_expenses)}\n"
                 f"💵 Net: {format_currency(monthly.savings)}\n\n"
                 f"All Time:\n"
                 f"📈 Total Income: {format_currency(all_time.total_income)}\n"
                 f"📉 Total Expenses: {format_currency(all_time.total_expenses)}"
        )

    async def _handle_transactions(self, text: str, user_id: str, now: datetime) -> ChatReply:
        window = resolve_timeframe(text, now)
        transactions = await self.store.list_transactions(user_id)

        in_window = sorted(
            (t for t in transactions if window.contains(t.date)),
            key=lambda t: t.date,
            reverse=True,
        )
        period = f"{format_date(window.start)} to {format_date(window.end)}"

        if not in_window:
            return ChatReply(
                text=f"No transactions found between {format_date(window.start)} "
                     f"and {format_date(window.end)}.\n\n"
                     f"Try adding some transactions or checking a different time period."
            )

        response = f"📋 Transactions ({period}):\n\n"

        for t in in_window[:LISTING_LIMIT]:
            icon = "💵" if t.type == "income" else "💸"
            sign = "+" if t.type == "income" else "-"
            response += (
                f"{icon} {format_date(t.date)}\n"
                f"{sign}{format_currency(t.amount)} - {t.description}\n"
                f"Category: {t.category}\n\n"
            )

        if len(in_window) > LISTING_LIMIT:
            response += f"...and {len(in_window) - LISTING_LIMIT} more transactions.\n\n"

        totals = summarize(in_window)
        response += (
            f"📊 Summary:\n"
            f"📈 Income: {format_currency(totals.total_income)}\n"
            f"📉 Expenses: {format_currency(totals.total_expenses)}\n"
            f"💰 Net: {format_currency(totals.savings)}"
        )

        return ChatReply(text=response)

    async def _handle_category_spending(self, text: str, user_id: str, now: datetime) -> ChatReply:
        window = resolve_timeframe(text, now)
        category = find_query_category(text)
        transactions = await self.store.list_transactions(user_id)

        matching = [
            t for t in transactions
            if window.contains(t.date)
            and (not category or category.lower() in t.category.lower())
        ]

        if not matching:
            if category:
                return ChatReply(text=f'No transactions found for category "{category}" in this period.')
            return ChatReply(text="No transactions found for this period.")

        by_category = totals_by_category(matching)

        response = f'📊 Spending for "{category}":\n\n' if category else "📊 Category breakdown:\n\n"
        for name, amount in by_category.items():
            icon = "💵" if "income" in name.lower() else "💸"
            response += f"{icon} {name}: {format_currency(amount)}\n"

        response += f"\n💰 Total: {format_currency(sum(by_category.values()))}"

        return ChatReply(text=response)

    async def _handle_add_transaction(self, text: str, user_id: str, now: datetime) -> ChatReply:
        extracted = extract_transaction(text)
        if extracted is None:
            return ChatReply(text=AMOUNT_CLARIFICATION_TEXT)

        description = extracted.description or "Unspecified"

        try:
            # Chat entries are always stamped with the current time.
            transaction = await self.store.create_transaction(
                user_id,
                extracted.type,
                extracted.amount,
                description,
                extracted.category,
                now,
            )
        except Exception as e:
            logger.exception("Chat add failed", error=str(e))
            return ChatReply(text=ADD_FAILED_TEXT)

        return ChatReply(
            text=f"✅ Successfully added {extracted.type}:\n"
                 f"💰 Amount: {format_currency(extracted.amount)}\n"
                 f"📝 Description: {description}\n"
                 f"🏷️ Category: {extracted.category}",
            outcome=TransactionAdded(transaction),
        )

    async def _handle_delete_transaction(self, text: str, user_id: str, now: datetime) -> ChatReply:
        if "last" not in text.lower():
            return ChatReply(text=DELETE_INSTRUCTIONS_TEXT)

        transactions = await self.store.list_transactions(user_id)
        if not transactions:
            return ChatReply(text="❌ No transactions found to delete.")

        # The store lists the most recently created transaction first.
        last = transactions[0]
        await self.store.delete_transaction(last.id)

        return ChatReply(
            text=f"✅ Deleted last transaction:\n"
                 f"💰 Amount: {format_currency(last.amount)}\n"
                 f"📝 Description: {last.description}\n"
                 f"🏷️ Category: {last.category}",
            outcome=TransactionDeleted(last.id),
        )

    async def _handle_savings_tips(self, text: str, user_id: str, now: datetime) -> ChatReply:
        transactions = await self.store.list_transactions(user_id)
        window = month_window(now)
        monthly = summarize([t for t in transactions if window.contains(t.date)])

        response = "💡 Smart Savings Tips:\n\n"
        if monthly.total_expenses > monthly.total_income * HIGH_EXPENSE_RATIO:
            response += HIGH_EXPENSE_WARNING
        response += SAVINGS_TEMPLATE

        return ChatReply(text=response)

    async def _handle_help(self, text: str, user_id: str, now: datetime) -> ChatReply:
        lowered = text.lower()

        if re.search(r"add|create|record", lowered):
            return ChatReply(text=HELP_ADD_TEXT)

        if re.search(r"delete|remove", lowered):
            return ChatReply(text=HELP_DELETE_TEXT)

        return ChatReply(text=HELP_GENERAL_TEXT)

    async def _handle_fallback(self, text: str, user_id: str, now: datetime) -> ChatReply:
        return ChatReply(text=FALLBACK_TEXT)

    def get_suggested_prompts(self) -> list[str]:
        """Example prompts shown next to the chat box."""
        return [
            "What's my current balance?",
            "Show my recent transactions",
            "How much did I spend on food this month?",
            "Add expense of $50 for groceries",
            "Delete last transaction",
            "Give me savings tips",
        ]
