"""Inter-account transfer detection."""

from statement_ledger.transfers.detector import detect_transfers, summarize_transfers

__all__ = ["detect_transfers", "summarize_transfers"]
