"""
polyalgo Infrastructure: Order History Journal

Append-only journal of every algo execution that reached the exchange,
successful or not. One JSON object per line.
"""

import json
import threading
import uuid
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)


@dataclass
class OrderHistoryEntry:
    algo_order_id: str
    algo_type: str
    token_id: str
    side: str
    size: float
    price: float
    status: str  # EXECUTED | FAILED
    order_type: str = "ALGO"
    executed_price: Optional[float] = None
    exchange_order_id: Optional[str] = None
    error: Optional[str] = None
    reason: Optional[str] = None
    market_question: Optional[str] = None
    outcome: Optional[str] = None
    id: str = field(default_factory=lambda: f"algo-{uuid.uuid4().hex[:12]}")
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class OrderHistoryLog:
    """JSON-lines journal with bounded reads."""

    def __init__(self, history_file: str = "data/order_history.jsonl"):
        self.history_file = Path(history_file)
        self.history_file.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def record(self, entry: OrderHistoryEntry) -> None:
        line = json.dumps(entry.to_dict(), sort_keys=True)
        with self._lock:
            with open(self.history_file, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        logger.debug(f"Journaled {entry.status} execution for {entry.algo_order_id}")

    def entries(self, algo_order_id: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Newest last; optionally filtered to one algo order."""
        if not self.history_file.exists():
            return []

        results: List[Dict[str, Any]] = []
        with self._lock:
            with open(self.history_file, "r", encoding="utf-8") as f:
                for line_no, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        record = json.loads(line)
                    except json.JSONDecodeError:
                        logger.warning(f"Skipping malformed history line {line_no}")
                        continue
                    if algo_order_id and record.get("algo_order_id") != algo_order_id:
                        continue
                    results.append(record)

        if limit is not None:
            results = results[-limit:]
        return results
