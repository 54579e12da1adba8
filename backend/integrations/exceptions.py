"""Typed exception hierarchy for aggregation-provider errors.

Provider failures are classified once, where the SDK exception is
caught, into one of three variants. Everything downstream (retry, sync
orchestration, item status updates) branches on the type instead of
re-parsing the raw provider error.
"""


class ProviderError(Exception):
    """Base exception for all provider-related errors.

    Carries the provider name and the provider's own error code (e.g.
    ``ITEM_LOGIN_REQUIRED``) when one was reported.
    """

    retriable = False

    def __init__(
        self,
        message: str,
        provider_name: str = "",
        error_code: str | None = None,
    ):
        self.provider_name = provider_name
        self.error_code = error_code
        super().__init__(message)


class TransientProviderError(ProviderError):
    """Institution down, rate limited, provider-internal failure.

    A later attempt may succeed, so the retry engine backs off and tries
    again.
    """

    retriable = True

    def __init__(
        self,
        message: str,
        provider_name: str = "",
        error_code: str | None = None,
        status_code: int | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, provider_name, error_code)


class PermanentProviderError(ProviderError):
    """Invalid request or credential; retrying cannot help.

    ``requires_reconnect`` is set when the user has to go back through
    Plaid Link (expired login, locked account, removed Item).
    """

    def __init__(
        self,
        message: str,
        provider_name: str = "",
        error_code: str | None = None,
        status_code: int | None = None,
        requires_reconnect: bool = False,
    ):
        self.status_code = status_code
        self.requires_reconnect = requires_reconnect
        super().__init__(message, provider_name, error_code)


class MalformedResponseError(ProviderError):
    """The provider answered with a payload we could not interpret."""

    pass
