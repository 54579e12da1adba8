"""Financial account management service."""

import logging

from sqlalchemy.orm import Session

from integrations.provider_protocol import ProviderAccount
from models import FinancialAccount, PlaidItem
from services.account_type_mapper import map_plaid_account_type

logger = logging.getLogger(__name__)


class AccountService:
    """Creates and refreshes the local accounts behind a linked Item."""

    @staticmethod
    def upsert_linked_accounts(
        db: Session,
        user_id: str,
        item: PlaidItem,
        remote_accounts: list[ProviderAccount],
    ) -> tuple[int, int]:
        """Create or update local accounts for an Item's Plaid accounts.

        Existing rows are matched on (Item, Plaid account id). The account
        name is left alone on update so a user rename survives re-linking.

        Returns:
            ``(created, updated)`` counts. Flushes only; the caller commits.
        """
        created = 0
        updated = 0
        for remote in remote_accounts:
            account_type = map_plaid_account_type(remote.type, remote.subtype).value
            last4 = remote.mask[-4:] if remote.mask else None
            currency = (remote.iso_currency_code or "USD").upper()

            existing = (
                db.query(FinancialAccount)
                .filter_by(plaid_item_id=item.id, plaid_account_id=remote.account_id)
                .first()
            )
            if existing:
                existing.account_type = account_type
                existing.account_number_last4 = last4
                existing.current_balance = remote.current_balance
                existing.available_balance = remote.available_balance
                existing.currency = currency
                existing.institution_name = item.institution_name
                updated += 1
            else:
                db.add(
                    FinancialAccount(
                        user_id=user_id,
                        name=remote.name,
                        account_type=account_type,
                        institution_name=item.institution_name,
                        account_number_last4=last4,
                        current_balance=remote.current_balance,
                        available_balance=remote.available_balance,
                        currency=currency,
                        is_manual=False,
                        plaid_account_id=remote.account_id,
                        plaid_item_id=item.id,
                    )
                )
                created += 1

        db.flush()
        logger.info(
            "Item %s: accounts upserted (%d new, %d existing)",
            item.item_id, created, updated,
        )
        return created, updated
