"""Plaid error-code metadata.

Maps Plaid ``error_code`` values to a user-facing message and to the two
properties the sync pipeline cares about: whether the failure is
transient (worth retrying) and whether the user must reconnect the Item.
"""

from dataclasses import dataclass

from integrations.exceptions import ProviderError


@dataclass(frozen=True)
class PlaidErrorInfo:
    """Description of a Plaid error code."""

    error_code: str
    user_message: str
    requires_reconnect: bool = False
    is_transient: bool = False
    suggested_action: str | None = None


UNKNOWN_ERROR_CODE = "UNKNOWN_ERROR"

PLAID_ERROR_MAPPINGS: dict[str, PlaidErrorInfo] = {
    info.error_code: info
    for info in (
        # Authentication errors - require user action
        PlaidErrorInfo(
            "ITEM_LOGIN_REQUIRED",
            "Your account connection has expired. Please reconnect your "
            "account to continue syncing data.",
            requires_reconnect=True,
            suggested_action='Click "Reconnect" to update your credentials.',
        ),
        PlaidErrorInfo(
            "INVALID_CREDENTIALS",
            "The username or password you provided is incorrect. Please "
            "check your credentials and try again.",
            requires_reconnect=True,
            suggested_action="Verify your login credentials with your bank.",
        ),
        PlaidErrorInfo(
            "INVALID_MFA",
            "The multi-factor authentication code is invalid or has "
            "expired. Please try again.",
            requires_reconnect=True,
            suggested_action="Request a new verification code from your institution.",
        ),
        PlaidErrorInfo(
            "ITEM_LOCKED",
            "Your account has been locked by your financial institution. "
            "Please contact your bank to unlock it.",
            requires_reconnect=True,
            suggested_action="Contact your financial institution for assistance.",
        ),
        PlaidErrorInfo(
            "USER_SETUP_REQUIRED",
            "Your account requires additional setup at your financial "
            "institution before it can be connected.",
            requires_reconnect=True,
            suggested_action="Complete the setup process with your institution.",
        ),
        PlaidErrorInfo(
            "ITEM_NOT_FOUND",
            "The account connection could not be found. It may have been removed.",
            requires_reconnect=True,
            suggested_action="Please reconnect your account.",
        ),
        # Transient errors - may resolve on their own
        PlaidErrorInfo(
            "INSTITUTION_DOWN",
            "Your financial institution is currently unavailable. This is "
            "usually temporary.",
            is_transient=True,
            suggested_action="Please try again in a few minutes.",
        ),
        PlaidErrorInfo(
            "INSTITUTION_NOT_RESPONDING",
            "Your financial institution is not responding. This is "
            "typically temporary.",
            is_transient=True,
            suggested_action="We will automatically retry this connection.",
        ),
        PlaidErrorInfo(
            "RATE_LIMIT_EXCEEDED",
            "Too many requests have been made. Please wait a moment before "
            "trying again.",
            is_transient=True,
            suggested_action="Wait a few minutes before retrying.",
        ),
        PlaidErrorInfo(
            "PRODUCTS_NOT_READY",
            "Account data is still being retrieved. Please try again in a "
            "few moments.",
            is_transient=True,
            suggested_action="Wait 30 seconds and try again.",
        ),
        PlaidErrorInfo(
            "INTERNAL_SERVER_ERROR",
            "A server error occurred. We have been notified and are working "
            "to resolve it.",
            is_transient=True,
            suggested_action="Please try again later.",
        ),
        PlaidErrorInfo(
            "PLANNED_MAINTENANCE",
            "Plaid is undergoing scheduled maintenance. Service will resume shortly.",
            is_transient=True,
            suggested_action="Check back in 30 minutes.",
        ),
        # Request / configuration errors
        PlaidErrorInfo(
            "INVALID_REQUEST",
            "An error occurred while processing your request. Please try again.",
            suggested_action="Contact support if this issue persists.",
        ),
        PlaidErrorInfo(
            "INVALID_API_KEYS",
            "There is a configuration error. Please contact support for assistance.",
            suggested_action="Contact support for assistance.",
        ),
        PlaidErrorInfo(
            "ITEM_NO_ERROR",
            "No error detected. Your account is connected successfully.",
        ),
    )
}

_UNKNOWN = PlaidErrorInfo(
    UNKNOWN_ERROR_CODE,
    "An unexpected error occurred. Please try again.",
    suggested_action="Contact support if this issue persists.",
)


def describe_plaid_error(
    error_code: str | None,
    display_message: str | None = None,
) -> PlaidErrorInfo:
    """Look up metadata for a Plaid error code.

    Plaid's own ``display_message`` (meant for end users) wins over the
    canned message when present. Unknown codes get a generic,
    non-transient description.
    """
    info = PLAID_ERROR_MAPPINGS.get(error_code or "")
    if info is None:
        info = PlaidErrorInfo(
            error_code or UNKNOWN_ERROR_CODE,
            _UNKNOWN.user_message,
            suggested_action=_UNKNOWN.suggested_action,
        )
    if display_message:
        return PlaidErrorInfo(
            info.error_code,
            display_message,
            requires_reconnect=info.requires_reconnect,
            is_transient=info.is_transient,
            suggested_action=info.suggested_action,
        )
    return info


def is_transient_error(error: BaseException) -> bool:
    """Retry predicate shared by every provider call site."""
    return isinstance(error, ProviderError) and error.retriable


def requires_reconnect(error: BaseException) -> bool:
    """True when the user must go back through Plaid Link."""
    return bool(getattr(error, "requires_reconnect", False))
