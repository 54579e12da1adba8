"""Plaid API client.

Thin typed wrapper over the plaid-python SDK implementing the
``AggregationClient`` protocol: link/exchange flow, account and balance
listing, and the cursor-paginated ``/transactions/sync`` feed.

No business logic lives here. The one thing this module does decide is
how a failed call is classified: every ``plaid.ApiException`` is turned
into a :class:`TransientProviderError`, :class:`PermanentProviderError`
or :class:`MalformedResponseError` exactly once, at this boundary.
"""

import json
import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from plaid import ApiException, Environment
from plaid.api.plaid_api import PlaidApi
from plaid.api_client import ApiClient
from plaid.configuration import Configuration
from plaid.model.accounts_balance_get_request import AccountsBalanceGetRequest
from plaid.model.accounts_get_request import AccountsGetRequest
from plaid.model.country_code import CountryCode
from plaid.model.item_get_request import ItemGetRequest
from plaid.model.item_public_token_exchange_request import ItemPublicTokenExchangeRequest
from plaid.model.item_remove_request import ItemRemoveRequest
from plaid.model.link_token_create_request import LinkTokenCreateRequest
from plaid.model.link_token_create_request_user import LinkTokenCreateRequestUser
from plaid.model.products import Products
from plaid.model.transactions_sync_request import TransactionsSyncRequest
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from config import settings
from integrations.exceptions import (
    MalformedResponseError,
    PermanentProviderError,
    ProviderError,
    TransientProviderError,
)
from integrations.plaid_errors import describe_plaid_error
from integrations.provider_protocol import (
    ProviderAccount,
    ProviderItem,
    ProviderTransaction,
    RemovedTransaction,
    TransactionSyncPage,
)

logger = logging.getLogger(__name__)

PROVIDER_NAME = "Plaid"

# Map PLAID_ENVIRONMENT setting to SDK host URLs.
# Plaid's Development environment is deprecated; only sandbox and production
# are supported.
_ENVIRONMENT_MAP: dict[str, str] = {
    "sandbox": Environment.Sandbox,
    "production": Environment.Production,
}

# Codes Plaid may pair with a 5xx/429 that must still not be retried
_KNOWN_PERMANENT = frozenset({
    "INVALID_API_KEYS",
    "INVALID_REQUEST",
    "INVALID_ACCESS_TOKEN",
    "ITEM_LOGIN_REQUIRED",
    "ITEM_NOT_FOUND",
})


def _split_setting(value: str) -> list[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


class PlaidClient:
    """Wrapper around the Plaid API."""

    def __init__(
        self,
        client_id: str | None = None,
        secret: str | None = None,
        environment: str | None = None,
    ):
        self._client_id = client_id or settings.PLAID_CLIENT_ID
        self._secret = secret or settings.PLAID_SECRET
        self._environment = environment or settings.PLAID_ENVIRONMENT

        # Lazily created on first use
        self._api: PlaidApi | None = None

    def _get_api(self) -> PlaidApi:
        """Return (and cache) a PlaidApi instance."""
        if self._api is None:
            env_key = self._environment.lower()
            host = _ENVIRONMENT_MAP.get(env_key)
            if host is None:
                logger.warning(
                    "Unknown PLAID_ENVIRONMENT=%r, falling back to sandbox. "
                    "Valid values: sandbox, production",
                    self._environment,
                )
                host = Environment.Sandbox
            logger.info(
                "Plaid API client: environment=%s, host=%s, client_id=<configured>",
                env_key,
                host,
            )
            configuration = Configuration(
                host=host,
                api_key={
                    "clientId": self._client_id,
                    "secret": self._secret,
                },
            )
            api_client = ApiClient(configuration)
            self._api = PlaidApi(api_client)
        return self._api

    @property
    def provider_name(self) -> str:
        return PROVIDER_NAME

    def is_configured(self) -> bool:
        """Check if Plaid credentials are configured."""
        return bool(self._client_id) and bool(self._secret)

    def _call(self, method_name: str, request):
        """Invoke a PlaidApi method, classifying any failure."""
        api = self._get_api()
        try:
            return getattr(api, method_name)(request)
        except ApiException as exc:
            raise self._map_plaid_error(exc) from exc
        except Urllib3HTTPError as exc:
            raise TransientProviderError(
                f"Network error calling Plaid {method_name}: {exc}",
                provider_name=PROVIDER_NAME,
            ) from exc

    # ------------------------------------------------------------------
    # Link Token & Token Exchange
    # ------------------------------------------------------------------

    def create_link_token(self, user_id: str) -> str:
        """Create a Plaid Link token for the browser-based auth flow.

        Args:
            user_id: Our user id; Plaid uses it to key the Link session.

        Returns:
            The link_token string to be passed to Plaid Link.
        """
        kwargs = {}
        if settings.PLAID_WEBHOOK_URL:
            kwargs["webhook"] = settings.PLAID_WEBHOOK_URL
        request = LinkTokenCreateRequest(
            user=LinkTokenCreateRequestUser(client_user_id=user_id),
            client_name="FinSync",
            products=[Products(p) for p in _split_setting(settings.PLAID_PRODUCTS)],
            country_codes=[CountryCode(c) for c in _split_setting(settings.PLAID_COUNTRY_CODES)],
            language="en",
            **kwargs,
        )
        response = self._call("link_token_create", request)
        return response["link_token"]

    def exchange_public_token(self, public_token: str) -> dict:
        """Exchange a Plaid Link public_token for a permanent access_token.

        Returns:
            Dict with ``access_token`` and ``item_id``.
        """
        request = ItemPublicTokenExchangeRequest(public_token=public_token)
        response = self._call("item_public_token_exchange", request)
        access_token = response.get("access_token")
        item_id = response.get("item_id")
        if not access_token or not item_id:
            raise MalformedResponseError(
                "Token exchange response missing access_token or item_id",
                provider_name=PROVIDER_NAME,
            )
        return {"access_token": access_token, "item_id": item_id}

    def remove_item(self, access_token: str) -> None:
        """Revoke an access token via Plaid's /item/remove endpoint."""
        self._call("item_remove", ItemRemoveRequest(access_token=access_token))

    def get_item(self, access_token: str) -> ProviderItem:
        response = self._call("item_get", ItemGetRequest(access_token=access_token))
        item = response.get("item") or {}
        error = item.get("error") or {}
        expiration = item.get("consent_expiration_time")
        return ProviderItem(
            item_id=item.get("item_id", ""),
            institution_id=item.get("institution_id"),
            error_code=error.get("error_code") if error else None,
            consent_expiration_time=str(expiration) if expiration else None,
        )

    # ------------------------------------------------------------------
    # Accounts & balances
    # ------------------------------------------------------------------

    def get_accounts(self, access_token: str) -> list[ProviderAccount]:
        """List the accounts on an Item with cached balances."""
        response = self._call("accounts_get", AccountsGetRequest(access_token=access_token))
        return [self._map_account(a) for a in response.get("accounts", []) or []]

    def get_account_balances(self, access_token: str) -> list[ProviderAccount]:
        """List accounts with balances refreshed from the institution."""
        response = self._call(
            "accounts_balance_get", AccountsBalanceGetRequest(access_token=access_token)
        )
        return [self._map_account(a) for a in response.get("accounts", []) or []]

    def _map_account(self, acct) -> ProviderAccount:
        account_id = acct.get("account_id")
        if not account_id:
            raise MalformedResponseError(
                "Plaid account missing account_id", provider_name=PROVIDER_NAME
            )
        balances = acct.get("balances") or {}
        subtype = acct.get("subtype")
        return ProviderAccount(
            account_id=account_id,
            name=acct.get("name") or acct.get("official_name") or "Plaid Account",
            type=str(acct.get("type") or "other"),
            subtype=str(subtype) if subtype else None,
            mask=acct.get("mask"),
            official_name=acct.get("official_name"),
            current_balance=self._to_decimal(balances.get("current")),
            available_balance=self._to_decimal(balances.get("available")),
            iso_currency_code=balances.get("iso_currency_code"),
        )

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def sync_transactions(
        self, access_token: str, cursor: str | None = None
    ) -> TransactionSyncPage:
        """Fetch one page of the /transactions/sync change feed.

        Args:
            access_token: The Item's access token.
            cursor: Cursor from the previous page, or None on first sync.
                Plaid rejects an empty-string cursor differently from an
                absent one, so None is omitted from the request.
        """
        if cursor is None:
            request = TransactionsSyncRequest(access_token=access_token)
        else:
            request = TransactionsSyncRequest(access_token=access_token, cursor=cursor)
        response = self._call("transactions_sync", request)

        next_cursor = response.get("next_cursor")
        if next_cursor is None:
            raise MalformedResponseError(
                "transactions/sync response missing next_cursor",
                provider_name=PROVIDER_NAME,
            )

        return TransactionSyncPage(
            added=[self._map_transaction(t) for t in response.get("added", []) or []],
            modified=[self._map_transaction(t) for t in response.get("modified", []) or []],
            removed=[
                RemovedTransaction(
                    transaction_id=r.get("transaction_id"),
                    account_id=r.get("account_id"),
                )
                for r in response.get("removed", []) or []
                if r.get("transaction_id")
            ],
            next_cursor=next_cursor,
            has_more=bool(response.get("has_more", False)),
        )

    def _map_transaction(self, txn) -> ProviderTransaction:
        """Map a Plaid transaction to a ProviderTransaction."""
        transaction_id = txn.get("transaction_id")
        account_id = txn.get("account_id")
        amount = self._to_decimal(txn.get("amount"))
        txn_date = self._to_date(txn.get("date"))
        if not transaction_id or not account_id or amount is None or txn_date is None:
            raise MalformedResponseError(
                f"Plaid transaction {transaction_id or '<unknown>'} is missing "
                "required fields",
                provider_name=PROVIDER_NAME,
            )

        return ProviderTransaction(
            transaction_id=transaction_id,
            account_id=account_id,
            amount=amount,
            date=txn_date,
            name=txn.get("name") or "",
            merchant_name=txn.get("merchant_name"),
            category=self._category_path(txn),
            pending=bool(txn.get("pending", False)),
            iso_currency_code=txn.get("iso_currency_code"),
        )

    @staticmethod
    def _category_path(txn) -> list[str]:
        """Return the category hierarchy, most general first.

        Newer Items may only carry ``personal_finance_category``
        (``FOOD_AND_DRINK`` / ``FOOD_AND_DRINK_COFFEE``); it is turned into
        the same human-readable path shape as the legacy ``category`` list.
        """
        legacy = txn.get("category")
        if legacy:
            return [str(c) for c in legacy]

        pfc = txn.get("personal_finance_category")
        if not pfc:
            return []
        primary = str(pfc.get("primary") or "")
        detailed = str(pfc.get("detailed") or "")
        path = []
        if primary:
            path.append(primary.replace("_", " ").title())
        if detailed:
            if primary and detailed.startswith(primary + "_"):
                detailed = detailed[len(primary) + 1:]
            path.append(detailed.replace("_", " ").title())
        return path

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _map_plaid_error(exc: ApiException) -> ProviderError:
        """Classify a Plaid ApiException as transient or permanent."""
        status = exc.status or 0
        message = str(exc)

        error_code = None
        display_message = None
        try:
            body = json.loads(exc.body) if exc.body else {}
            error_code = body.get("error_code") or None
            display_message = body.get("display_message") or None
            error_message = body.get("error_message", "")
            if error_message:
                message = f"Plaid error ({error_code}): {error_message}"
        except (ValueError, TypeError, AttributeError):
            logger.debug("Unparseable Plaid error body (status %s)", status)

        info = describe_plaid_error(error_code, display_message)

        if info.is_transient or (
            error_code not in _KNOWN_PERMANENT and (status == 429 or status >= 500)
        ):
            return TransientProviderError(
                message,
                provider_name=PROVIDER_NAME,
                error_code=error_code,
                status_code=status or None,
            )

        return PermanentProviderError(
            message,
            provider_name=PROVIDER_NAME,
            error_code=error_code,
            status_code=status or None,
            requires_reconnect=info.requires_reconnect
            or status in (401, 403)
            or error_code == "INVALID_ACCESS_TOKEN",
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _to_decimal(value) -> Decimal | None:
        """Convert a value to Decimal, returning None on failure."""
        if value is None:
            return None
        try:
            return Decimal(str(value))
        except (InvalidOperation, ValueError):
            return None

    @staticmethod
    def _to_date(value) -> date | None:
        if value is None:
            return None
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        try:
            return date.fromisoformat(str(value)[:10])
        except ValueError:
            return None

