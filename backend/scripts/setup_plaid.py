#!/usr/bin/env python3
"""Plaid setup script.

Validates Plaid API credentials by creating a link token, generates the
AES-256 key used to encrypt stored access tokens, and optionally saves
everything to the system keychain.

Usage:
    1. Sign up at https://dashboard.plaid.com/
    2. Get your client_id and secret from the Keys page
    3. Run this script and follow the prompts
    4. Add the printed env vars to your .env file (or store them in the keychain)
"""

import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from plaid import Environment
from plaid.api.plaid_api import PlaidApi
from plaid.api_client import ApiClient
from plaid.configuration import Configuration
from plaid.model.country_code import CountryCode
from plaid.model.link_token_create_request import LinkTokenCreateRequest
from plaid.model.link_token_create_request_user import LinkTokenCreateRequestUser
from plaid.model.products import Products

from services.credential_manager import set_credential
from services.token_vault import generate_encryption_key


def offer_keychain_store(credentials: dict[str, str]) -> int:
    """Prompt the user to store credentials in the system keychain.

    Returns:
        Number of credentials stored.
    """
    answer = input("\nStore these credentials in the system keychain? [Y/n] ").strip().lower()
    if answer not in ("", "y", "yes"):
        print("  Skipped keychain storage.")
        return 0

    stored = 0
    for key, value in credentials.items():
        if set_credential(key, value):
            print(f"  Stored {key} in keychain")
            stored += 1
        else:
            print(f"  Failed to store {key}")
    return stored


def validate_credentials(client_id: str, secret: str, env: str) -> None:
    """Validate Plaid credentials by creating a test link token.

    Args:
        client_id: Plaid client_id.
        secret: Plaid secret.
        env: Environment name (sandbox or production).

    Raises:
        Exception: If the API call fails.
    """
    env_map = {
        "sandbox": Environment.Sandbox,
        "production": Environment.Production,
    }
    host = env_map.get(env.lower(), Environment.Sandbox)

    configuration = Configuration(
        host=host,
        api_key={"clientId": client_id, "secret": secret},
    )
    api = PlaidApi(ApiClient(configuration))

    request = LinkTokenCreateRequest(
        user=LinkTokenCreateRequestUser(client_user_id="setup-test"),
        client_name="FinSync",
        products=[Products("transactions")],
        country_codes=[CountryCode("US")],
        language="en",
    )
    response = api.link_token_create(request)
    if not response["link_token"]:
        raise ValueError("No link_token in response")


def main():
    """Prompt for credentials, validate them and generate an encryption key."""
    print("Plaid Setup")
    print("=" * 50)
    print()
    print("To get Plaid API credentials:")
    print("  1. Sign up at https://dashboard.plaid.com/")
    print("  2. Go to Developers > Keys")
    print("  3. Copy your client_id and secret")
    print()

    client_id = input("Enter your Plaid client_id: ").strip()
    if not client_id:
        print("Error: No client_id provided")
        sys.exit(1)

    secret = input("Enter your Plaid secret: ").strip()
    if not secret:
        print("Error: No secret provided")
        sys.exit(1)

    print()
    print("Choose environment:")
    print("  1. sandbox (for testing with fake data)")
    print("  2. production (for live use)")
    env_choice = input("Enter choice (1 or 2) [1]: ").strip() or "1"
    env = {"1": "sandbox", "2": "production"}.get(env_choice, "sandbox")

    print()
    print(f"Validating credentials against {env} environment...")

    try:
        validate_credentials(client_id, secret, env)
    except Exception as e:
        print(f"Error: {e}")
        print()
        print("Common issues:")
        print("  - Incorrect client_id or secret")
        print("  - Wrong environment selected")
        print("  - Network connectivity issue")
        sys.exit(1)

    encryption_key = generate_encryption_key()

    print()
    print("Success! Add the following to your .env file:")
    print()
    print(f"PLAID_CLIENT_ID={client_id}")
    print(f"PLAID_SECRET={secret}")
    print(f"PLAID_ENVIRONMENT={env}")
    print(f"PLAID_ENCRYPTION_KEY={encryption_key}")
    print()
    print("Changing PLAID_ENCRYPTION_KEY later makes stored access tokens")
    print("unreadable; every institution would have to be linked again.")

    offer_keychain_store({
        "PLAID_CLIENT_ID": client_id,
        "PLAID_SECRET": secret,
        "PLAID_ENCRYPTION_KEY": encryption_key,
    })


if __name__ == "__main__":
    main()
