"""
Test helpers for the algo scheduler test suite.

Stubs for the external collaborators (clock, price feed, credentials
client, exchange) plus small order builders. Use these instead of Mocks
where behaviour matters across several calls.
"""

from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Deque, Dict, List, Optional, Union

from core.algo_order import (
    AlgoOrder,
    AlgoOrderStatus,
    AlgoOrderType,
    OrderSide,
    StopLossParams,
    TrailingStopParams,
    TWAPParams,
)
from core.interfaces import COLLATERAL, AssetRef, OrderMeta, SubmitResult
from core.trading_session import ApiCredentials

# Well-known throwaway key (never funded)
TEST_PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
TEST_PROXY_ADDRESS = "0x1111111111111111111111111111111111111111"
TOKEN_ID = "71321045679252212594626385532706912750332728571942532289631379312455583992563"

START = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakePriceFeed:
    """Returns scripted prices per token; a list is consumed one value per call."""

    def __init__(self, prices: Optional[Dict[str, Any]] = None):
        self.prices: Dict[str, Any] = dict(prices or {})
        self.calls: List[str] = []

    def set(self, token_id: str, price: Optional[float]) -> None:
        self.prices[token_id] = price

    def get_price(self, token_id: str) -> Optional[float]:
        self.calls.append(token_id)
        value = self.prices.get(token_id)
        if isinstance(value, list):
            return value.pop(0) if value else None
        if isinstance(value, Exception):
            raise value
        return value


class FakeCredentialsClient:
    def __init__(
        self,
        derive_result: Union[ApiCredentials, Exception, None] = None,
        create_result: Union[ApiCredentials, Exception, None] = None,
    ):
        self.derive_result = derive_result or ApiCredentials("derived-key", "derived-secret", "derived-pass")
        self.create_result = create_result or ApiCredentials("created-key", "created-secret", "created-pass")
        self.derive_calls: List[str] = []
        self.create_calls: List[str] = []

    def derive_api_key(self, signer: Any, proxy_address: str) -> ApiCredentials:
        self.derive_calls.append(proxy_address)
        if isinstance(self.derive_result, Exception):
            raise self.derive_result
        return self.derive_result

    def create_api_key(self, signer: Any, proxy_address: str) -> ApiCredentials:
        self.create_calls.append(proxy_address)
        if isinstance(self.create_result, Exception):
            raise self.create_result
        return self.create_result


class StubExchange:
    """
    ExchangeClient with fixed balances and scripted submissions.

    `submit_outcomes` items are SubmitResult or Exception, consumed in order;
    once exhausted every submission succeeds.
    """

    def __init__(
        self,
        collateral: float = 1000.0,
        shares: Optional[Dict[str, float]] = None,
        submit_outcomes: Optional[List[Union[SubmitResult, Exception]]] = None,
        tick_size: str = "0.01",
        neg_risk: bool = False,
    ):
        self.collateral = collateral
        self.shares = dict(shares or {})
        self.outcomes: Deque = deque(submit_outcomes or [])
        self.tick_size = tick_size
        self.neg_risk = neg_risk
        self.balance_calls: List[AssetRef] = []
        self.submissions: List[Dict[str, Any]] = []
        self.before_submit = None

    def get_balance(self, asset: AssetRef, session=None) -> float:
        self.balance_calls.append(asset)
        if asset.asset_type == COLLATERAL:
            return self.collateral
        return self.shares.get(asset.token_id, 0.0)

    def get_tick_size(self, token_id: str) -> str:
        return self.tick_size

    def get_neg_risk(self, token_id: str) -> bool:
        return self.neg_risk

    def submit_order(self, token_id, side, size, price, meta: OrderMeta, session=None) -> SubmitResult:
        if self.before_submit is not None:
            self.before_submit()
        self.submissions.append(
            {"token_id": token_id, "side": side, "size": size, "price": price, "meta": meta, "session": session}
        )
        if self.outcomes:
            outcome = self.outcomes.popleft()
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return SubmitResult(success=True, order_id=f"ex-{len(self.submissions)}")


def make_twap_order(
    order_id: str = "twap-1",
    size: float = 10.0,
    duration: float = 10.0,
    interval: float = 2.0,
    start: datetime = START,
    side: OrderSide = OrderSide.BUY,
    **kwargs,
) -> AlgoOrder:
    return AlgoOrder(
        id=order_id,
        type=AlgoOrderType.TWAP,
        side=side,
        token_id=kwargs.pop("token_id", TOKEN_ID),
        size=size,
        params=TWAPParams(total_size=size, duration_minutes=duration, interval_minutes=interval, start_time=start),
        created_at=kwargs.pop("created_at", start),
        updated_at=start,
        **kwargs,
    )


def make_stop_order(
    order_id: str = "stop-1",
    side: OrderSide = OrderSide.BUY,
    stop: Optional[float] = None,
    take: Optional[float] = None,
    size: float = 10.0,
    **kwargs,
) -> AlgoOrder:
    return AlgoOrder(
        id=order_id,
        type=AlgoOrderType.STOP_LOSS,
        side=side,
        token_id=kwargs.pop("token_id", TOKEN_ID),
        size=size,
        params=StopLossParams(stop_loss_price=stop, take_profit_price=take),
        **kwargs,
    )


def make_trailing_order(
    order_id: str = "trail-1",
    side: OrderSide = OrderSide.BUY,
    trail_percent: float = 10.0,
    trigger: Optional[float] = None,
    size: float = 10.0,
    **kwargs,
) -> AlgoOrder:
    return AlgoOrder(
        id=order_id,
        type=AlgoOrderType.TRAILING_STOP,
        side=side,
        token_id=kwargs.pop("token_id", TOKEN_ID),
        size=size,
        params=TrailingStopParams(trail_percent=trail_percent, trigger_price=trigger),
        **kwargs,
    )


def paused(order: AlgoOrder) -> AlgoOrder:
    order.status = AlgoOrderStatus.PAUSED
    return order
