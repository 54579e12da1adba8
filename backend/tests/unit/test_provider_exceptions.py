"""Tests for provider exception types and Plaid error metadata."""

from integrations.exceptions import (
    MalformedResponseError,
    PermanentProviderError,
    ProviderError,
    TransientProviderError,
)
from integrations.plaid_errors import (
    PLAID_ERROR_MAPPINGS,
    UNKNOWN_ERROR_CODE,
    describe_plaid_error,
    is_transient_error,
    requires_reconnect,
)


class TestExceptionHierarchy:
    def test_all_variants_are_provider_errors(self):
        for cls in (TransientProviderError, PermanentProviderError, MalformedResponseError):
            assert issubclass(cls, ProviderError)

    def test_base_attributes(self):
        err = ProviderError("boom", provider_name="Plaid", error_code="X")
        assert str(err) == "boom"
        assert err.provider_name == "Plaid"
        assert err.error_code == "X"

    def test_transient_carries_status(self):
        err = TransientProviderError("slow", status_code=503)
        assert err.status_code == 503
        assert err.retriable is True

    def test_permanent_defaults(self):
        err = PermanentProviderError("bad")
        assert err.retriable is False
        assert err.requires_reconnect is False


class TestDescribePlaidError:
    def test_known_code(self):
        info = describe_plaid_error("ITEM_LOGIN_REQUIRED")
        assert info.requires_reconnect is True
        assert info.is_transient is False
        assert "reconnect" in info.user_message.lower()

    def test_transient_codes(self):
        for code in ("INSTITUTION_DOWN", "RATE_LIMIT_EXCEEDED", "INTERNAL_SERVER_ERROR"):
            assert describe_plaid_error(code).is_transient is True

    def test_display_message_wins(self):
        info = describe_plaid_error("ITEM_LOCKED", "Call your bank")
        assert info.user_message == "Call your bank"
        assert info.requires_reconnect is True

    def test_unknown_code(self):
        info = describe_plaid_error("BRAND_NEW_CODE")
        assert info.error_code == "BRAND_NEW_CODE"
        assert info.is_transient is False
        assert info.requires_reconnect is False

    def test_missing_code(self):
        assert describe_plaid_error(None).error_code == UNKNOWN_ERROR_CODE

    def test_mapping_keys_match_codes(self):
        for code, info in PLAID_ERROR_MAPPINGS.items():
            assert info.error_code == code


class TestPredicates:
    def test_is_transient_error(self):
        assert is_transient_error(TransientProviderError("x")) is True
        assert is_transient_error(PermanentProviderError("x")) is False
        assert is_transient_error(MalformedResponseError("x")) is False
        assert is_transient_error(ConnectionError("x")) is False

    def test_requires_reconnect(self):
        assert requires_reconnect(PermanentProviderError("x", requires_reconnect=True)) is True
        assert requires_reconnect(PermanentProviderError("x")) is False
        assert requires_reconnect(ValueError("x")) is False
