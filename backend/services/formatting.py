"""Currency and date rendering for chat replies."""

from datetime import datetime


def format_currency(amount: float) -> str:
    """Render as US dollars: 1234.5 -> "$1,234.50", -200 -> "-$200.00"."""
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def format_date(moment: datetime) -> str:
    """Medium date, e.g. "Oct 19, 2026"."""
    return f"{moment.strftime('%b')} {moment.day}, {moment.year}"
