"""Settlement: the atomic Record Settlement operation and its recorder."""

from wallet_engine.settlement.backend import (
    SettlementBackend,
    SettlementRequest,
    SettlementResult,
    SqlSettlementBackend,
    format_receipt_number,
)
from wallet_engine.settlement.recorder import SettlementRecorder, new_cash_session_id

__all__ = [
    "SettlementBackend",
    "SettlementRecorder",
    "SettlementRequest",
    "SettlementResult",
    "SqlSettlementBackend",
    "format_receipt_number",
    "new_cash_session_id",
]
