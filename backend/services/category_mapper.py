"""Map Plaid category hierarchies onto the app's fixed categories.

Plaid reports categories as a path from general to specific, e.g.
``["Food and Drink", "Restaurants", "Coffee Shop"]``. Rules are checked
in order and the first match wins, so more specific buckets (income,
debt payments) must come before broad ones (transfers, savings).
"""

from enum import Enum


class TransactionCategory(str, Enum):
    INCOME = "income"
    HOUSING = "housing"
    TRANSPORTATION = "transportation"
    FOOD = "food"
    UTILITIES = "utilities"
    HEALTHCARE = "healthcare"
    ENTERTAINMENT = "entertainment"
    SHOPPING = "shopping"
    DEBT_PAYMENT = "debt_payment"
    SAVINGS = "savings"
    OTHER = "other"


def _has(text: str, *needles: str) -> bool:
    return any(n in text for n in needles)


def map_plaid_category(category: list[str] | None) -> TransactionCategory:
    """Return the app category for a Plaid category path."""
    if not category:
        return TransactionCategory.OTHER

    levels = [(c or "").lower() for c in category[:3]]
    levels += [""] * (3 - len(levels))
    primary, sub, tertiary = levels

    if _has(primary, "income", "payroll", "transfer in") or _has(
        sub, "salary", "wages", "payroll"
    ):
        return TransactionCategory.INCOME

    if (
        _has(primary, "credit card", "loan")
        or _has(sub, "credit card", "loan payment", "student loan")
        or ("transfer" in primary and "credit" in sub)
        or ("payment" in primary and _has(sub, "credit", "loan"))
    ):
        return TransactionCategory.DEBT_PAYMENT

    if (
        _has(primary, "rent", "mortgage", "home improvement")
        or _has(sub, "rent", "mortgage", "property insurance")
        or ("service" in primary and "home insurance" in sub)
    ):
        return TransactionCategory.HOUSING

    if (
        "utilities" in primary
        or "utilities" in sub
        or _has(tertiary, "electric", "gas", "water")
        or (
            "service" in primary
            and _has(
                sub, "electric", "gas utility", "water", "internet", "phone",
                "telephone", "cable", "sewage", "telecommunication",
            )
        )
    ):
        return TransactionCategory.UTILITIES

    if _has(primary, "transportation", "automotive", "public transit") or _has(
        sub, "gas", "parking", "tolls", "auto insurance", "car wash", "taxi", "bike"
    ):
        return TransactionCategory.TRANSPORTATION

    if _has(primary, "food", "restaurants", "groceries") or _has(
        sub, "restaurants", "fast food", "coffee", "groceries", "supermarkets", "pizza"
    ):
        return TransactionCategory.FOOD

    if _has(primary, "healthcare", "medical") or _has(
        sub, "doctors", "dentist", "pharmacy", "hospital", "health insurance", "eyecare"
    ):
        return TransactionCategory.HEALTHCARE

    if _has(primary, "entertainment", "recreation", "arts") or _has(
        sub, "movies", "music", "games", "sports", "concerts", "streaming",
        "gyms and fitness", "entertainment",
    ):
        return TransactionCategory.ENTERTAINMENT

    if _has(primary, "shops", "shopping", "retail") or _has(
        sub, "clothing", "electronics", "bookstores", "department stores", "sporting goods"
    ):
        return TransactionCategory.SHOPPING

    # Generic payments that are not debt (credit/loan handled above)
    if "payment" in primary:
        return TransactionCategory.OTHER

    if _has(primary, "transfer", "deposit", "savings") or _has(
        sub, "investment", "retirement", "third party", "savings", "deposit"
    ):
        return TransactionCategory.SAVINGS

    return TransactionCategory.OTHER
