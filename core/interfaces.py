"""
polyalgo Core: Collaborator Interfaces

Structural types for the external systems the execution core talks to.
Concrete adapters live in infra/ (HTTP price feed, credentials client,
paper exchange, JSON order store).
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from core.algo_order import AlgoOrder
    from core.trading_session import ApiCredentials, TradingSession

# Balance asset references
COLLATERAL = "COLLATERAL"
CONDITIONAL = "CONDITIONAL"


@dataclass(frozen=True)
class AssetRef:
    """COLLATERAL (USDC) or CONDITIONAL outcome shares of `token_id`."""
    asset_type: str
    token_id: Optional[str] = None

    @classmethod
    def collateral(cls) -> "AssetRef":
        return cls(COLLATERAL)

    @classmethod
    def shares(cls, token_id: str) -> "AssetRef":
        return cls(CONDITIONAL, token_id)


@dataclass(frozen=True)
class OrderMeta:
    """Order-metadata lookups required by the exchange before submission."""
    tick_size: str
    neg_risk: bool
    order_type: str = "GTC"


@dataclass
class SubmitResult:
    success: bool
    order_id: Optional[str] = None
    error: Optional[str] = None


class PriceFeed(Protocol):
    def get_price(self, token_id: str) -> Optional[float]:
        """Current price, or None when unavailable."""


class ExchangeClient(Protocol):
    def get_balance(self, asset: AssetRef, session: "TradingSession") -> float:
        ...

    def get_tick_size(self, token_id: str) -> str:
        ...

    def get_neg_risk(self, token_id: str) -> bool:
        ...

    def submit_order(
        self,
        token_id: str,
        side: str,
        size: float,
        price: float,
        meta: OrderMeta,
        session: "TradingSession",
    ) -> SubmitResult:
        ...


class CredentialsClient(Protocol):
    def derive_api_key(self, signer: Any, proxy_address: str) -> "ApiCredentials":
        ...

    def create_api_key(self, signer: Any, proxy_address: str) -> "ApiCredentials":
        ...


class AlgoOrderStore(Protocol):
    def load(self, order_id: str) -> Optional["AlgoOrder"]:
        ...

    def save(self, order: "AlgoOrder") -> None:
        ...

    def list_active(self) -> List["AlgoOrder"]:
        ...

    def update(self, order_id: str, mutate: Callable[["AlgoOrder"], Any]) -> Optional["AlgoOrder"]:
        ...


class Notifier(Protocol):
    def notify(self, severity: Any, title: str, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        ...
