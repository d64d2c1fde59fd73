"""
Polymarket Authentication Module.

The bot trades from a plain EOA (signature_type=0): the private key signs
orders and the signer address is also the funder.

Key concepts:
- Private Key: signs EIP-712 orders (L1)
- API Credentials: key / secret / passphrase for L2 requests, derived from
  the private key at startup (created on first use)
- Builder dashboard keys are NOT user trading credentials
"""

import logging
from typing import Optional, Tuple

from eth_account import Account
from py_clob_client.client import ClobClient
from py_clob_client.clob_types import ApiCreds

from .config import Settings
from .errors import CredentialError

logger = logging.getLogger(__name__)

EOA_SIGNATURE_TYPE = 0


def signer_address(private_key: str) -> str:
    return Account.from_key(private_key).address


def build_clob_client(settings: Settings, creds: Optional[ApiCreds] = None) -> ClobClient:
    """Create a CLOB client for the configured signer."""
    return ClobClient(
        host=settings.clob_host,
        key=settings.private_key,
        chain_id=settings.chain_id,
        creds=creds,
        signature_type=EOA_SIGNATURE_TYPE,
        funder=signer_address(settings.private_key),
    )


def _is_complete(creds) -> bool:
    return bool(
        creds is not None
        and getattr(creds, "api_key", None)
        and getattr(creds, "api_secret", None)
        and getattr(creds, "api_passphrase", None)
    )


def derive_api_credentials(client: ClobClient) -> ApiCreds:
    """
    Derive the L2 credentials for this signer, creating them if none exist.

    Raises:
        CredentialError: if neither derive nor create yields a full set
    """
    creds = None
    try:
        creds = client.derive_api_key()
    except Exception as e:
        logger.debug(f"derive_api_key failed: {e}")

    if not _is_complete(creds):
        logger.info("No existing API key for this signer, creating one...")
        try:
            creds = client.create_api_key()
        except Exception as e:
            raise CredentialError(f"Could not create API credentials: {e}") from e

    if not _is_complete(creds):
        raise CredentialError(f"Could not generate API creds: {creds!r}")

    return creds


def validate_api_credentials(client: ClobClient) -> dict:
    """
    Call an authenticated endpoint to prove the credentials work.

    Raises:
        CredentialError: on an error payload or HTTP status >= 400
    """
    try:
        result = client.get_api_keys()
    except Exception as e:
        raise CredentialError(str(e)) from e

    if isinstance(result, dict):
        status = result.get("status")
        if result.get("error") or (isinstance(status, int) and status >= 400):
            raise CredentialError(result.get("error") or f"API returned status {status}")

    return result


def create_authenticated_client(settings: Settings) -> Tuple[ClobClient, ApiCreds]:
    """
    Build a CLOB client with derived, validated L2 credentials.

    Returns:
        (client, creds)
    """
    client = build_clob_client(settings)

    logger.info("Deriving API credentials from private key...")
    creds = derive_api_credentials(client)
    client.set_api_creds(creds)

    validate_api_credentials(client)

    logger.info("CLOB client initialized with derived API credentials")
    logger.info(f"  API Key: {creds.api_key[:8]}...{creds.api_key[-4:]}")
    logger.info(f"  Wallet: {client.get_address()}")
    return client, creds


def generate_credentials(settings: Settings) -> ApiCreds:
    """Derive (or create) credentials and print them as .env lines."""
    if not settings.private_key:
        raise CredentialError("Missing PRIVATE_KEY in .env")

    creds = derive_api_credentials(build_clob_client(settings))

    print("POLYMARKET_USER_API_KEY=" + creds.api_key)
    print("POLYMARKET_USER_SECRET=" + creds.api_secret)
    print("POLYMARKET_USER_PASSPHRASE=" + creds.api_passphrase)
    return creds


def check_static_credentials(settings: Settings) -> bool:
    """
    Validate the statically configured POLYMARKET_USER_* credentials.

    Returns:
        True if valid, False otherwise
    """
    if not settings.private_key:
        logger.error("Missing PRIVATE_KEY in .env")
        return False
    if not settings.has_static_creds:
        logger.error(
            "Missing POLYMARKET_USER_API_KEY / POLYMARKET_USER_SECRET / "
            "POLYMARKET_USER_PASSPHRASE in .env"
        )
        return False

    creds = ApiCreds(
        api_key=settings.api_key,
        api_secret=settings.api_secret,
        api_passphrase=settings.api_passphrase,
    )
    client = build_clob_client(settings, creds)

    try:
        result = validate_api_credentials(client)
    except CredentialError as e:
        logger.error(f"API credential validation failed: {e}")
        if "invalid api key" in str(e).lower():
            logger.error("Hint: Builder dashboard keys are not user trading credentials.")
            logger.error("Generate user credentials from PRIVATE_KEY with: python -m polymarket_copybot generate-creds")
        return False

    logger.info("Static API credentials are valid for this signer")
    logger.info(f"{result}")
    return True
