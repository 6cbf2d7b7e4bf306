"""
polyalgo Infrastructure: CLOB HTTP adapters

- ClobPriceFeed: midpoint prices from the public order book API
- ClobCredentialsClient: derive or create L2 API credentials using an
  EIP-712 "ClobAuth" signature from the session signer (L1 auth)
"""

import time
import logging
from typing import Any, Callable, Dict, Optional

import requests
from eth_account.messages import encode_typed_data
from web3 import Web3

from core.retry import RetryPolicy, retry_with_backoff
from core.trading_session import ApiCredentials

logger = logging.getLogger(__name__)

DEFAULT_CLOB_URL = "https://clob.polymarket.com"
POLYGON_CHAIN_ID = 137

CLOB_AUTH_DOMAIN = "ClobAuthDomain"
CLOB_AUTH_VERSION = "1"
CLOB_AUTH_MESSAGE = "This message attests that I control the given wallet"


def build_clob_auth_typed_data(address: str, timestamp: int, nonce: int, chain_id: int) -> Dict[str, Any]:
    """EIP-712 payload signed for L1 (wallet) authentication."""
    return {
        "types": {
            "EIP712Domain": [
                {"name": "name", "type": "string"},
                {"name": "version", "type": "string"},
                {"name": "chainId", "type": "uint256"},
            ],
            "ClobAuth": [
                {"name": "address", "type": "address"},
                {"name": "timestamp", "type": "string"},
                {"name": "nonce", "type": "uint256"},
                {"name": "message", "type": "string"},
            ],
        },
        "primaryType": "ClobAuth",
        "domain": {"name": CLOB_AUTH_DOMAIN, "version": CLOB_AUTH_VERSION, "chainId": chain_id},
        "message": {
            "address": address,
            "timestamp": str(timestamp),
            "nonce": nonce,
            "message": CLOB_AUTH_MESSAGE,
        },
    }


class ClobPriceFeed:
    """PriceFeed backed by GET /midpoint."""

    def __init__(
        self,
        base_url: str = DEFAULT_CLOB_URL,
        timeout_seconds: float = 10.0,
        retry_policy: Optional[RetryPolicy] = None,
        http: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout_seconds
        self.retry_policy = retry_policy or RetryPolicy(max_retries=1, initial_delay_ms=500)
        self.http = http or requests.Session()

    def _fetch_midpoint(self, token_id: str) -> Optional[float]:
        response = self.http.get(
            f"{self.base_url}/midpoint",
            params={"token_id": token_id},
            timeout=self.timeout,
        )
        if response.status_code == 404:
            return None
        response.raise_for_status()
        mid = response.json().get("mid")
        return float(mid) if mid not in (None, "") else None

    def get_price(self, token_id: str) -> Optional[float]:
        """Current midpoint, or None when the book has no price or the call keeps failing."""
        try:
            price = retry_with_backoff(
                lambda: self._fetch_midpoint(token_id),
                policy=self.retry_policy,
                label=f"get_price({token_id[:10]})",
            )
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Price unavailable for {token_id}: {e}")
            return None
        if price is None or price <= 0:
            return None
        return price


class ClobCredentialsClient:
    """CredentialsClient backed by /auth/derive-api-key and /auth/api-key."""

    def __init__(
        self,
        base_url: str = DEFAULT_CLOB_URL,
        chain_id: int = POLYGON_CHAIN_ID,
        timeout_seconds: float = 10.0,
        http: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.base_url = base_url.rstrip("/")
        self.chain_id = chain_id
        self.timeout = timeout_seconds
        self.http = http or requests.Session()
        self._clock = clock

    def l1_headers(self, signer: Any, nonce: int = 0) -> Dict[str, str]:
        timestamp = int(self._clock())
        typed_data = build_clob_auth_typed_data(signer.address, timestamp, nonce, self.chain_id)
        signed = signer.sign_message(encode_typed_data(full_message=typed_data))
        return {
            "POLY_ADDRESS": signer.address,
            "POLY_SIGNATURE": Web3.to_hex(signed.signature),
            "POLY_TIMESTAMP": str(timestamp),
            "POLY_NONCE": str(nonce),
        }

    def _credentials(self, response: requests.Response, action: str) -> ApiCredentials:
        response.raise_for_status()
        creds = ApiCredentials.from_response(response.json())
        if creds is None or not creds.is_complete():
            raise ValueError(f"{action}: response did not contain API credentials")
        return creds

    def derive_api_key(self, signer: Any, proxy_address: str) -> ApiCredentials:
        logger.debug(f"Deriving API key for {signer.address} (proxy {proxy_address})")
        response = self.http.get(
            f"{self.base_url}/auth/derive-api-key",
            headers=self.l1_headers(signer),
            timeout=self.timeout,
        )
        return self._credentials(response, "derive-api-key")

    def create_api_key(self, signer: Any, proxy_address: str) -> ApiCredentials:
        logger.info(f"Creating API key for {signer.address} (proxy {proxy_address})")
        response = self.http.post(
            f"{self.base_url}/auth/api-key",
            headers=self.l1_headers(signer),
            timeout=self.timeout,
        )
        return self._credentials(response, "create-api-key")
