"""
Keyword-based extraction of transaction details from chat commands.

Best effort only: "Add expense of $50 for groceries" yields
amount=50.0, type="expense", description="groceries",
category="Food & Dining". Misreads are acceptable, crashes are not.
"""

import re
from dataclasses import dataclass
from typing import Optional


# Ordered (category, trigger keywords). Order decides ties.
EXPENSE_CATEGORY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Housing", ("rent", "mortgage", "utilities")),
    ("Food & Dining", ("food", "grocery", "restaurant")),
    ("Transportation", ("transport", "fuel", "gas", "bus")),
    ("Shopping", ("shopping", "clothes", "electronics")),
    ("Entertainment", ("entertainment", "movie", "subscription")),
)

INCOME_CATEGORY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Salary", ("salary", "wage", "paycheck")),
    ("Business Income", ("business", "company")),
    ("Investments", ("investment", "dividend", "interest")),
    ("Freelancing/Side Hustles", ("freelance", "freelancing", "contract")),
    ("Bonuses", ("bonus", "commission")),
)

# Names recognised in "how much did I spend on ..." prompts. Slash names are
# cut to their first part so both "Freelancing" and
# "Freelancing/Side Hustles" rows match the containment filter.
SPENDING_QUERY_CATEGORIES: tuple[str, ...] = tuple(
    name.split("/")[0] for name, _ in EXPENSE_CATEGORY_KEYWORDS + INCOME_CATEGORY_KEYWORDS
)

FALLBACK_CATEGORY = {
    "income": "Other Income",
    "expense": "Other Expenses",
}

AMOUNT_PATTERN = re.compile(r"\$?\s?(\d+(?:\.\d{2})?)")
INCOME_PATTERN = re.compile(r"income|salary|earned|received", re.I)
DESCRIPTION_SPLIT_PATTERN = re.compile(r"\b(?:for|from)\b", re.I)


@dataclass
class ExtractedTransaction:
    amount: float
    type: str
    description: str
    category: str


def extract_amount(text: str) -> Optional[float]:
    match = AMOUNT_PATTERN.search(text)
    if not match:
        return None
    return float(match.group(1))


def extract_type(text: str) -> str:
    """Income only when an income keyword is present, expense otherwise."""
    return "income" if INCOME_PATTERN.search(text) else "expense"


def extract_description(text: str) -> str:
    """Text after the first "for"/"from", or an empty string."""
    parts = DESCRIPTION_SPLIT_PATTERN.split(text, maxsplit=1)
    if len(parts) < 2:
        return ""
    return parts[1].strip()


def infer_category(description: str, transaction_type: str) -> str:
    """First category whose keyword appears in the description."""
    table = INCOME_CATEGORY_KEYWORDS if transaction_type == "income" else EXPENSE_CATEGORY_KEYWORDS
    lowered = description.lower()

    for category, keywords in table:
        if any(keyword in lowered for keyword in keywords):
            return category

    return FALLBACK_CATEGORY[transaction_type]


def extract_transaction(text: str) -> Optional[ExtractedTransaction]:
    """
    Pull amount, type, description and category out of a command.

    Returns None when no positive amount can be found, in which case
    nothing should be recorded.
    """
    amount = extract_amount(text)
    if amount is None or amount <= 0:
        return None

    transaction_type = extract_type(text)
    description = extract_description(text)

    return ExtractedTransaction(
        amount=amount,
        type=transaction_type,
        description=description,
        category=infer_category(description, transaction_type),
    )


def find_query_category(text: str) -> Optional[str]:
    """
    Find the category a spending question is about.

    Matches either the full category name or its first word
    ("food" -> "Food & Dining").
    """
    lowered = text.lower()

    for category in SPENDING_QUERY_CATEGORIES:
        first_word = re.split(r"[\s/&]+", category)[0].lower()
        if category.lower() in lowered or first_word in lowered:
            return category

    return None
