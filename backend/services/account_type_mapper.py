"""Map Plaid account type/subtype pairs onto the app's account types."""

from enum import Enum


class AccountType(str, Enum):
    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT_CARD = "credit_card"
    INVESTMENT = "investment"
    RETIREMENT = "retirement"
    LOAN = "loan"
    MORTGAGE = "mortgage"
    OTHER = "other"


_SAVINGS_SUBTYPES = frozenset({"savings", "hsa", "cd", "money market"})

_RETIREMENT_SUBTYPES = frozenset({
    "401k", "403b", "401a", "457b", "ira", "roth", "roth 401k", "roth ira",
    "sep ira", "simple ira", "sarsep", "pension", "profit sharing plan",
    "stock plan", "keogh", "retirement",
    # Canadian / UK registered plans
    "rrsp", "rrif", "tfsa", "lira", "lif", "lrsp", "lrif", "rlif", "prif",
    "rdsp", "resp", "sipp",
})

_MORTGAGE_SUBTYPES = frozenset({"mortgage", "home equity"})


def map_plaid_account_type(account_type: str | None, subtype: str | None) -> AccountType:
    """Return the app account type for a Plaid ``type``/``subtype``."""
    if not account_type:
        return AccountType.OTHER

    kind = account_type.lower()
    sub = (subtype or "").lower()

    if kind == "depository":
        return AccountType.SAVINGS if sub in _SAVINGS_SUBTYPES else AccountType.CHECKING
    if kind == "credit":
        return AccountType.CREDIT_CARD
    if kind == "investment":
        return AccountType.RETIREMENT if sub in _RETIREMENT_SUBTYPES else AccountType.INVESTMENT
    if kind == "loan":
        return AccountType.MORTGAGE if sub in _MORTGAGE_SUBTYPES else AccountType.LOAN
    # Legacy Plaid type
    if kind == "brokerage":
        return AccountType.INVESTMENT
    return AccountType.OTHER
