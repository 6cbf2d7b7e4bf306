"""
polyalgo Infrastructure: Paper Exchange

In-process ExchangeClient for PAPER mode. Orders fill immediately and in
full at the submitted price against simulated USDC and share balances.
"""

import threading
import uuid
import logging
from typing import Dict, List, Optional

from core.interfaces import AssetRef, COLLATERAL, OrderMeta, SubmitResult

logger = logging.getLogger(__name__)


class PaperExchange:
    def __init__(
        self,
        collateral: float = 0.0,
        shares: Optional[Dict[str, float]] = None,
        tick_size: str = "0.01",
        neg_risk: bool = False,
    ):
        self._collateral = float(collateral)
        self._shares: Dict[str, float] = dict(shares or {})
        self._tick_size = tick_size
        self._neg_risk = neg_risk
        self._lock = threading.Lock()
        self.orders: List[Dict] = []

    def get_balance(self, asset: AssetRef, session=None) -> float:
        with self._lock:
            if asset.asset_type == COLLATERAL:
                return self._collateral
            return self._shares.get(asset.token_id, 0.0)

    def get_tick_size(self, token_id: str) -> str:
        return self._tick_size

    def get_neg_risk(self, token_id: str) -> bool:
        return self._neg_risk

    def submit_order(
        self,
        token_id: str,
        side: str,
        size: float,
        price: float,
        meta: OrderMeta,
        session=None,
    ) -> SubmitResult:
        notional = size * price
        with self._lock:
            if side.upper() == "BUY":
                if notional > self._collateral:
                    return SubmitResult(success=False, error="not enough balance / allowance")
                self._collateral -= notional
                self._shares[token_id] = self._shares.get(token_id, 0.0) + size
            else:
                held = self._shares.get(token_id, 0.0)
                if size > held:
                    return SubmitResult(success=False, error="not enough balance / allowance")
                self._shares[token_id] = held - size
                self._collateral += notional

            order_id = f"paper_{uuid.uuid4().hex[:16]}"
            self.orders.append({
                "order_id": order_id,
                "token_id": token_id,
                "side": side.upper(),
                "size": size,
                "price": price,
                "order_type": meta.order_type,
            })

        logger.info(f"PAPER: Filled {side.upper()} {size} of {token_id} @ {price:.4f} ({order_id})")
        return SubmitResult(success=True, order_id=order_id)
