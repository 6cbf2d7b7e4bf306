"""Infrastructure modules for polyalgo"""

from .alerting import AlertService, AlertSeverity  # noqa: F401
from .order_history import OrderHistoryEntry, OrderHistoryLog  # noqa: F401
from .order_store import JsonAlgoOrderStore  # noqa: F401
from .paper_exchange import PaperExchange  # noqa: F401

__all__ = [
	"AlertService",
	"AlertSeverity",
	"OrderHistoryEntry",
	"OrderHistoryLog",
	"JsonAlgoOrderStore",
	"PaperExchange",
]
