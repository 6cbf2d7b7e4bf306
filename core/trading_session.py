"""
polyalgo Core: Trading Session Manager

Owns the in-memory signing session that gates every order submission.

States: UNINITIALIZED → ACTIVE → (EXPIRED | CLEARED)

Security:
- Secret key and API credentials live in process memory only
- Cleared on explicit lock, inactivity timeout, or process exit
- Expiry is checked on every access; every successful access is a heartbeat
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Optional

from eth_account import Account

from core.algo_order import utc_now
from core.exceptions import SessionError
from core.interfaces import CredentialsClient
from core.proxy_wallet import ProxyWalletConfig, derive_proxy_address
from core.retry import RetryPolicy, retry_with_backoff

logger = logging.getLogger(__name__)

# 1 hour of inactivity
DEFAULT_SESSION_TIMEOUT_SECONDS = 3600


class SessionState(Enum):
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    EXPIRED = "expired"
    CLEARED = "cleared"


@dataclass(frozen=True)
class ApiCredentials:
    key: str
    secret: str = field(repr=False)
    passphrase: str = field(repr=False)

    def is_complete(self) -> bool:
        return bool(self.key and self.secret and self.passphrase)

    @classmethod
    def from_response(cls, data: Optional[Dict[str, Any]]) -> Optional["ApiCredentials"]:
        if not data:
            return None
        key = data.get("apiKey") or data.get("key") or ""
        return cls(key=key, secret=data.get("secret") or "", passphrase=data.get("passphrase") or "")


@dataclass
class TradingSession:
    eoa_address: str
    proxy_address: str
    api_credentials: ApiCredentials = field(repr=False)
    signer: Any = field(repr=False)
    created_at: datetime
    last_activity: datetime

    def addresses(self) -> Dict[str, str]:
        return {"eoa_address": self.eoa_address, "proxy_address": self.proxy_address}


class TradingSessionManager:
    """
    Single owner of the active trading session.

    One instance per process identity; the clock is injectable so expiry is
    testable without sleeping.
    """

    def __init__(
        self,
        credentials_client: CredentialsClient,
        proxy_config: Optional[ProxyWalletConfig] = None,
        timeout_seconds: float = DEFAULT_SESSION_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utc_now,
        retry_policy: Optional[RetryPolicy] = None,
        account_factory: Callable[[str], Any] = Account.from_key,
    ):
        self.credentials_client = credentials_client
        self.proxy_config = proxy_config or ProxyWalletConfig(init_code_template=None)
        self.timeout = timedelta(seconds=timeout_seconds)
        self._clock = clock
        self._retry_policy = retry_policy or RetryPolicy()
        self._account_factory = account_factory

        self._session: Optional[TradingSession] = None
        self._state = SessionState.UNINITIALIZED
        self._lock = threading.Lock()

    @property
    def state(self) -> SessionState:
        with self._lock:
            self._expire_if_stale()
            return self._state

    def initialize(self, secret_key: str, proxy_address: Optional[str] = None) -> TradingSession:
        """
        Start a session from a secret key.

        Derives the EOA, derives (or accepts) the proxy address, then derives
        existing API credentials or creates new ones.

        Raises:
            SessionError: if any step fails (previous session is left untouched)
        """
        logger.info("Initializing trading session")
        try:
            key = secret_key if secret_key.startswith("0x") else f"0x{secret_key}"
            signer = self._account_factory(key)
            eoa_address = signer.address
            logger.info(f"EOA address: {eoa_address}")

            derived_proxy = proxy_address or derive_proxy_address(eoa_address, self.proxy_config)
            logger.info(f"Proxy address: {derived_proxy}")

            credentials = self._create_or_derive_credentials(signer, derived_proxy)
        except SessionError:
            raise
        except Exception as exc:
            logger.error(f"Failed to initialize trading session: {exc}")
            raise SessionError("Failed to initialize trading session") from exc

        now = self._clock()
        session = TradingSession(
            eoa_address=eoa_address,
            proxy_address=derived_proxy,
            api_credentials=credentials,
            signer=signer,
            created_at=now,
            last_activity=now,
        )
        with self._lock:
            self._session = session
            self._state = SessionState.ACTIVE

        logger.info(f"✅ Trading session initialized for {eoa_address}")
        return session

    def _create_or_derive_credentials(self, signer: Any, proxy_address: str) -> ApiCredentials:
        try:
            creds = retry_with_backoff(
                lambda: self.credentials_client.derive_api_key(signer, proxy_address),
                policy=self._retry_policy,
                label="derive_api_key",
            )
            if creds is not None and creds.is_complete():
                logger.info("Derived existing API credentials")
                return creds
        except Exception as exc:
            logger.warning(f"Failed to derive API credentials, creating new ones: {exc}")

        logger.info("Creating new API credentials")
        creds = retry_with_backoff(
            lambda: self.credentials_client.create_api_key(signer, proxy_address),
            policy=self._retry_policy,
            label="create_api_key",
        )
        if creds is None or not creds.is_complete():
            raise SessionError("Exchange returned incomplete API credentials")
        return creds

    def _expire_if_stale(self) -> bool:
        """Caller holds the lock. Returns True if the session was just expired."""
        if self._session is None:
            return False
        if self._clock() - self._session.last_activity > self.timeout:
            logger.info("Trading session expired due to inactivity")
            self._session = None
            self._state = SessionState.EXPIRED
            return True
        return False

    def get_active_session(self) -> Optional[TradingSession]:
        """Return the live session (refreshing its activity clock) or None."""
        with self._lock:
            if self._session is None or self._expire_if_stale():
                return None
            self._session.last_activity = self._clock()
            return self._session

    def require_session(self) -> TradingSession:
        """
        Like get_active_session() but raises.

        Raises:
            SessionError: no session, or it expired
        """
        with self._lock:
            if self._session is None:
                expired = self._state == SessionState.EXPIRED
            elif self._expire_if_stale():
                expired = True
            else:
                self._session.last_activity = self._clock()
                return self._session
        raise SessionError("Trading session expired" if expired else "No active trading session")

    def has_session(self) -> bool:
        return self.get_active_session() is not None

    def get_wallet_addresses(self) -> Optional[Dict[str, str]]:
        session = self.get_active_session()
        if session is None or not session.proxy_address:
            return None
        return session.addresses()

    def describe(self) -> Dict[str, Any]:
        """Read model for UI/CLI: addresses plus activity flag (no heartbeat)."""
        with self._lock:
            self._expire_if_stale()
            session = self._session
            return {
                "eoa_address": session.eoa_address if session else None,
                "proxy_address": session.proxy_address if session else None,
                "is_active": session is not None,
                "state": self._state.value,
            }

    def clear(self) -> None:
        """Drop all session state. Safe to call repeatedly."""
        with self._lock:
            if self._session is not None:
                logger.info("Clearing trading session")
            self._session = None
            if self._state != SessionState.UNINITIALIZED:
                self._state = SessionState.CLEARED
